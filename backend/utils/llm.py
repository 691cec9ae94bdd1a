"""LLM client utilities."""

import logging
from typing import Optional

from config import runtime_config
from services.llm_client import LLMClient

logger = logging.getLogger(__name__)

# Singleton client for the configured provider
_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Get the shared LLM client.

    Returns:
        LLMClient pointing at runtime_config.llm_base_url
    """
    global _client
    if _client is None:
        if not runtime_config.llm_api_key:
            logger.warning("LLM_API_KEY is not set, provider calls will likely be rejected")
        _client = LLMClient(
            base_url=runtime_config.llm_base_url,
            api_key=runtime_config.llm_api_key,
            timeout=runtime_config.llm_timeout,
        )
    return _client


async def close_llm_client() -> None:
    """Close the shared client (call on shutdown)."""
    global _client
    if _client is not None:
        await _client.close()
        _client = None
