"""
Classification Cache - bounded, TTL-based query → effective mode cache.

Eviction is by insertion order (FIFO), not recency of use. Expired entries
are dropped lazily on read; a periodic sweep task removes the rest.

One instance is constructed at process start and injected into the
AutoClassifier; tests build their own.
"""

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from .mode_config import EFFECTIVE_MODES
from utils.parts import extract_text, last_user_message

logger = logging.getLogger(__name__)

EMPTY_KEY = "empty"


def cache_key(history: List[Dict[str, Any]]) -> str:
    """MD5 of the trimmed text of the latest user message, or a sentinel."""
    message = last_user_message(history)
    if message is None:
        return EMPTY_KEY
    text = extract_text(message).strip()
    return hashlib.md5(text.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    mode: str
    expires_at: float


class ClassificationCache:
    """Thread-safe FIFO cache of classification decisions.

    Args:
        max_size: Capacity bound; never exceeded after set() returns
        ttl: Entry lifetime in seconds
        sweep_interval: Seconds between background sweeps
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        max_size: int = 1000,
        ttl: float = 300.0,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl = ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = Lock()
        self._sweep_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> Optional[str]:
        """Return the cached mode, or None when absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._entries[key]
                return None
            logger.debug(f"Classification cache hit: {key}")
            return entry.mode

    def set(self, key: str, mode: str) -> None:
        """Insert a decision, evicting the oldest insertion when full."""
        if mode not in EFFECTIVE_MODES:
            raise ValueError(f"Only concrete modes can be cached, got {mode!r}")

        with self._lock:
            expires_at = self._clock() + self.ttl
            existing = self._entries.get(key)
            if existing is not None:
                # Refresh in place; insertion position is unchanged
                existing.mode = mode
                existing.expires_at = expires_at
                return

            while len(self._entries) >= self.max_size:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
                logger.debug(f"Classification cache full, evicted oldest entry: {oldest}")

            self._entries[key] = CacheEntry(mode=mode, expires_at=expires_at)

    def sweep(self) -> int:
        """Remove all expired entries. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, entry in self._entries.items() if now > entry.expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired classification entries")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Classification cache cleared")

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {"size": len(self._entries), "max_size": self.max_size, "ttl_s": self.ttl}

    # --- Lifecycle -------------------------------------------------------------

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception as e:
                logger.warning(f"Classification cache sweep failed: {e}")

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.info(
                f"Classification cache started (ttl={self.ttl:.0f}s, max_size={self.max_size}, "
                f"sweep every {self.sweep_interval:.0f}s)"
            )

    async def stop(self) -> None:
        """Cancel the sweep task."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
