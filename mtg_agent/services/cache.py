"""Thread-safe in-memory LRU cache with a byte-size ceiling and optional TTL.

Two clients share this implementation:

• ``ScryfallClient`` caches search responses keyed by the full query
  string.  Scryfall data changes at most daily, so a long TTL is fine.
• ``TrackerClient`` caches the backend's API schema so that building the
  tool catalog and dispatching a ``tracker_*`` call do not re-download it
  on every request.

Entries are sized via ``json.dumps`` byte length; anything expired is
treated as absent and dropped lazily on the next read.

>>> cache = LRUCache(max_bytes=5 * 1024 * 1024, ttl_seconds=600)
>>> cache.put('q:name:"Stomping Ground"', result)
>>> cache.get('q:name:"Stomping Ground"')
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 10 * 1024 * 1024


class LRUCache:
    """Least-Recently-Used cache bounded by total estimated byte size."""

    def __init__(
        self,
        max_bytes: int = DEFAULT_MAX_BYTES,
        ttl_seconds: float | None = None,
    ) -> None:
        self._max_bytes = max_bytes
        self._ttl = ttl_seconds
        self._current_bytes = 0
        # key → (value, estimated_size_bytes, expires_at | None)
        self._store: OrderedDict[str, tuple[Any, int, float | None]] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def _estimate_bytes(value: Any) -> int:
        try:
            return len(json.dumps(value, default=str).encode("utf-8"))
        except (TypeError, ValueError, OverflowError):
            return len(str(value).encode("utf-8"))

    def _expired(self, expires_at: float | None) -> bool:
        return expires_at is not None and time.monotonic() >= expires_at

    # ── Core operations ──────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Return the cached value (promoting it to MRU) or ``None``."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, size, expires_at = entry
            if self._expired(expires_at):
                del self._store[key]
                self._current_bytes -= size
                logger.debug("Cache: expired %s", key)
                return None
            self._store.move_to_end(key)
            return value

    def put(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Insert or overwrite *key*, evicting LRU entries when over budget.

        ``ttl_seconds`` overrides the cache-wide TTL for this entry.
        """
        size = self._estimate_bytes(value)
        if size > self._max_bytes:
            logger.debug(
                "Cache: skipping key %s (size %d > max %d)",
                key, size, self._max_bytes,
            )
            return

        ttl = ttl_seconds if ttl_seconds is not None else self._ttl
        expires_at = time.monotonic() + ttl if ttl is not None else None

        with self._lock:
            if key in self._store:
                _, old_size, _ = self._store.pop(key)
                self._current_bytes -= old_size

            while self._current_bytes + size > self._max_bytes and self._store:
                evicted_key, (_, evicted_size, _) = self._store.popitem(last=False)
                self._current_bytes -= evicted_size
                logger.debug("Cache: evicted %s (%d bytes)", evicted_key, evicted_size)

            self._store[key] = (value, size, expires_at)
            self._current_bytes += size

    def invalidate(self, key: str) -> bool:
        """Remove a single key.  Returns ``True`` if the key existed."""
        with self._lock:
            if key in self._store:
                _, size, _ = self._store.pop(key)
                self._current_bytes -= size
                return True
            return False

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._current_bytes = 0

    # ── Introspection ────────────────────────────────────────────────

    @property
    def current_bytes(self) -> int:
        return self._current_bytes

    @property
    def entry_count(self) -> int:
        return len(self._store)

    def has(self, key: str) -> bool:
        """Check if a live key is present *without* promoting it."""
        entry = self._store.get(key)
        return entry is not None and not self._expired(entry[2])
