"""
Runtime Configuration for Relay.

Provides a singleton RuntimeConfig class holding every tunable of the chat
orchestration core (mode models, classifier, token limits, storage, extraction),
adjustable at runtime without a service restart.

Usage:
    from config import runtime_config
    budget = runtime_config.max_document_chars
    runtime_config.update(image_window=2, classifier_timeout=3.0)
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List
from threading import Lock
from urllib.parse import quote_plus

logger = logging.getLogger(__name__)


DEFAULT_ALLOWED_MIME_TYPES = (
    "image/jpeg,image/jpg,image/png,image/gif,image/webp,"
    "application/pdf,application/msword,"
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
)


def _first_env(*keys: str, default: str) -> str:
    """Return the first non-empty environment value from keys, else default."""
    for key in keys:
        value = os.environ.get(key, "").strip()
        if value:
            return value
    return default


def _env_bool(key: str, default: str = "false") -> bool:
    return os.environ.get(key, default).strip().lower() in ("1", "true", "yes", "on")


def _build_database_url_default() -> str:
    """
    Build a PostgreSQL URL from env vars when DATABASE_URL is not explicitly set.

    Password is URL-encoded to avoid auth breakage with special characters.
    """
    explicit = os.environ.get("DATABASE_URL", "").strip()
    if explicit:
        return explicit

    user = os.environ.get("POSTGRES_USER", "relay").strip() or "relay"
    password = os.environ.get("POSTGRES_PASSWORD", "relay-local-dev")
    host = os.environ.get("POSTGRES_HOST", "localhost").strip() or "localhost"
    port = os.environ.get("POSTGRES_PORT", "5432").strip() or "5432"
    db = os.environ.get("POSTGRES_DB", "relay").strip() or "relay"
    return f"postgresql://{quote_plus(user)}:{quote_plus(password)}@{host}:{port}/{db}"


@dataclass
class RuntimeConfig:
    """
    Singleton configuration for runtime-adjustable parameters.

    All values have defaults from environment variables, but can be
    changed at runtime via the update() method.
    """

    # Operational modes
    fast_model: str = field(default_factory=lambda: _first_env("AI_TEXT_MODEL", default="llama-3.1-8b-instant"))
    fast_max_tokens: int = field(default_factory=lambda: int(os.environ.get("FAST_MAX_TOKENS", "500")))
    fast_temperature: float = field(default_factory=lambda: float(os.environ.get("FAST_TEMPERATURE", "0.5")))
    thinking_model: str = field(
        default_factory=lambda: _first_env("AI_TOOL_MODEL", default="llama-3.3-70b-versatile")
    )
    thinking_max_tokens: int = field(default_factory=lambda: int(os.environ.get("THINKING_MAX_TOKENS", "4000")))
    thinking_temperature: float = field(
        default_factory=lambda: float(os.environ.get("THINKING_TEMPERATURE", "0.7"))
    )
    vision_model: str = field(
        default_factory=lambda: _first_env(
            "AI_VISION_MODEL",
            default="meta-llama/llama-4-scout-17b-16e-instruct",
        )
    )
    classifier_model: str = field(
        default_factory=lambda: _first_env("AI_CLASSIFIER_MODEL", "AI_TEXT_MODEL", default="llama-3.1-8b-instant")
    )

    # Model provider (any OpenAI-compatible endpoint)
    llm_base_url: str = field(
        default_factory=lambda: _first_env("LLM_BASE_URL", default="https://api.groq.com/openai")
    )
    llm_api_key: str = field(default_factory=lambda: _first_env("LLM_API_KEY", "GROQ_API_KEY", default=""))
    llm_timeout: float = field(default_factory=lambda: float(os.environ.get("LLM_TIMEOUT", "120")))

    # Auto-classification
    classifier_timeout: float = field(default_factory=lambda: float(os.environ.get("CLASSIFIER_TIMEOUT", "5.0")))
    short_query_threshold: int = field(default_factory=lambda: int(os.environ.get("SHORT_QUERY_THRESHOLD", "15")))
    classification_cache_size: int = field(
        default_factory=lambda: int(os.environ.get("CLASSIFICATION_CACHE_SIZE", "1000"))
    )
    classification_cache_ttl: float = field(
        default_factory=lambda: float(os.environ.get("CLASSIFICATION_CACHE_TTL", "300"))
    )
    classification_cache_sweep_interval: float = field(
        default_factory=lambda: float(os.environ.get("CLASSIFICATION_CACHE_SWEEP_INTERVAL", "60"))
    )

    # Token limits (approximate, chars_per_token heuristic)
    max_document_tokens: int = field(default_factory=lambda: int(os.environ.get("MAX_DOCUMENT_TOKENS", "32000")))
    max_total_context_tokens: int = field(
        default_factory=lambda: int(os.environ.get("MAX_TOTAL_CONTEXT_TOKENS", "64000"))
    )
    chars_per_token: int = 4
    image_window: int = field(default_factory=lambda: int(os.environ.get("IMAGE_WINDOW", "3")))

    # Uploads
    max_upload_size_bytes: int = field(
        default_factory=lambda: int(os.environ.get("MAX_UPLOAD_SIZE_BYTES", str(10 * 1024 * 1024)))
    )
    allowed_mime_types: str = field(
        default_factory=lambda: os.environ.get("ALLOWED_MIME_TYPES", DEFAULT_ALLOWED_MIME_TYPES)
    )

    # Storage backend ("local" or "remote")
    storage_backend: str = field(default_factory=lambda: os.environ.get("STORAGE_TYPE", "local").strip().lower())
    upload_dir: str = field(default_factory=lambda: os.environ.get("UPLOAD_DIR", "./uploads"))
    storage_bucket: str = field(default_factory=lambda: os.environ.get("STORAGE_BUCKET", ""))
    storage_region: str = field(default_factory=lambda: os.environ.get("STORAGE_REGION", "nyc3"))
    storage_endpoint: str = field(default_factory=lambda: os.environ.get("STORAGE_ENDPOINT", ""))
    storage_cdn_url: str = field(default_factory=lambda: os.environ.get("STORAGE_CDN_URL", ""))
    storage_access_token: str = field(default_factory=lambda: os.environ.get("STORAGE_ACCESS_TOKEN", ""))

    # Attachment extraction
    extraction_workers: int = field(default_factory=lambda: int(os.environ.get("EXTRACTION_WORKERS", "2")))
    extraction_max_retries: int = field(default_factory=lambda: int(os.environ.get("EXTRACTION_MAX_RETRIES", "0")))
    extraction_retry_delay: float = field(
        default_factory=lambda: float(os.environ.get("EXTRACTION_RETRY_DELAY", "2.0"))
    )
    thumbnail_max_size: int = 300
    thumbnail_quality: int = 80
    ocr_language: str = field(default_factory=lambda: os.environ.get("OCR_LANGUAGE", "eng"))

    # Turn handling
    duplicate_window: int = field(default_factory=lambda: int(os.environ.get("DUPLICATE_WINDOW", "1")))
    message_persist_retries: int = field(
        default_factory=lambda: int(os.environ.get("MESSAGE_PERSIST_RETRIES", "1"))
    )

    # PostgreSQL
    database_url: str = field(default_factory=_build_database_url_default)
    database_pool_size: int = field(default_factory=lambda: int(os.environ.get("DATABASE_POOL_SIZE", "10")))

    # Web search tool (SearXNG)
    web_search_enabled: bool = field(default_factory=lambda: _env_bool("WEB_SEARCH_ENABLED", "true"))
    searxng_url: str = field(default_factory=lambda: os.environ.get("SEARXNG_URL", "http://localhost:8080"))
    searxng_timeout_s: float = field(default_factory=lambda: float(os.environ.get("SEARXNG_TIMEOUT_S", "10")))
    web_search_max_results: int = field(default_factory=lambda: int(os.environ.get("WEB_SEARCH_MAX_RESULTS", "5")))
    web_search_history_depth: int = 6
    max_tool_iterations: int = 5

    # Internal state
    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)
    _update_count: int = field(default=0, repr=False, compare=False)

    # Validation ranges for numeric config values
    _VALIDATION_RANGES: Dict[str, tuple] = field(default_factory=lambda: {
        "fast_temperature": (0.0, 2.0),
        "thinking_temperature": (0.0, 2.0),
        "fast_max_tokens": (16, 32768),
        "thinking_max_tokens": (16, 32768),
        "classifier_timeout": (0.1, 60.0),
        "short_query_threshold": (0, 1000),
        "classification_cache_size": (1, 1_000_000),
        "classification_cache_ttl": (1.0, 86400.0),
        "classification_cache_sweep_interval": (1.0, 3600.0),
        "max_document_tokens": (100, 1_000_000),
        "max_total_context_tokens": (1000, 2_000_000),
        "image_window": (0, 20),
        "extraction_workers": (1, 32),
        "extraction_max_retries": (0, 10),
        "duplicate_window": (1, 20),
        "message_persist_retries": (1, 10),
        "searxng_timeout_s": (1.0, 60.0),
        "web_search_max_results": (1, 25),
    }, repr=False, compare=False)

    @property
    def max_document_chars(self) -> int:
        """Per-document character budget for inlined attachment text."""
        return self.max_document_tokens * self.chars_per_token

    @property
    def max_total_context_chars(self) -> int:
        """Advisory character ceiling for the whole assembled context."""
        return self.max_total_context_tokens * self.chars_per_token

    def get_allowed_mime_types(self) -> List[str]:
        """Get allowed upload MIME types as a list."""
        return [m.strip().lower() for m in self.allowed_mime_types.split(",") if m.strip()]

    def update(self, **kwargs) -> Dict[str, Any]:
        """
        Update configuration values at runtime.

        Args:
            **kwargs: Key-value pairs to update (e.g., image_window=2)

        Returns:
            Dict with 'updated' (changed keys) and 'ignored' (unknown or rejected keys)
        """
        updated = []
        ignored = []

        with self._lock:
            for key, value in kwargs.items():
                if key.startswith("_") or not hasattr(self, key):
                    ignored.append(key)
                    logger.warning(f"Config ignored unknown key: {key}")
                    continue

                if key in {"searxng_url", "llm_base_url"} and isinstance(value, str):
                    cleaned = value.strip()
                    if not cleaned.startswith(("http://", "https://")):
                        ignored.append(key)
                        logger.warning(f"Config rejected invalid URL: {key}={value!r}")
                        continue
                    value = cleaned.rstrip("/")

                if key == "storage_backend" and value not in ("local", "remote"):
                    ignored.append(key)
                    logger.warning(f"Config rejected storage backend {value!r} (must be 'local' or 'remote')")
                    continue

                if key in self._VALIDATION_RANGES:
                    lo, hi = self._VALIDATION_RANGES[key]
                    if not (lo <= value <= hi):
                        ignored.append(key)
                        logger.warning(f"Config rejected {key}={value} (must be {lo}-{hi})")
                        continue

                old_value = getattr(self, key)
                setattr(self, key, value)
                updated.append(key)
                logger.info(f"Config updated: {key} = {value} (was {old_value})")

            self._update_count += 1

        return {"updated": updated, "ignored": ignored, "update_count": self._update_count}

    def to_dict(self) -> Dict[str, Any]:
        """Export current config as dict (excludes internal fields and secrets)."""
        from dataclasses import fields as dataclass_fields

        secret_fields = {"llm_api_key", "storage_access_token", "database_url"}
        result = {}
        for field_info in dataclass_fields(self):
            if field_info.name.startswith("_") or field_info.name in secret_fields:
                continue
            result[field_info.name] = getattr(self, field_info.name)
        return result

    def reset_to_defaults(self) -> Dict[str, Any]:
        """Reset all values to environment defaults."""
        defaults = RuntimeConfig()
        changes = {}

        with self._lock:
            for key in self.to_dict().keys():
                old_value = getattr(self, key)
                new_value = getattr(defaults, key)
                if old_value != new_value:
                    setattr(self, key, new_value)
                    changes[key] = {"old": old_value, "new": new_value}
                    logger.info(f"Config reset: {key} = {new_value}")

            self._update_count += 1

        return {"reset": True, "changes": changes, "update_count": self._update_count}


# Singleton instance
runtime_config = RuntimeConfig()


def get_config() -> RuntimeConfig:
    """Get the singleton config instance."""
    return runtime_config
