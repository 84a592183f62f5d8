"""In-memory read-through cache with per-entry expiry.

Dashboards read aggregates through this cache; writes do not invalidate it,
so readers may see results up to `ttl_seconds` old.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

_MAX_CACHE_SIZE = 1_000


class TTLCache:
    """Bounded key/value cache whose entries expire after a fixed age."""

    def __init__(
        self,
        ttl_seconds: float,
        max_size: int = _MAX_CACHE_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> tuple[bool, Any]:
        """Return (hit, value). Expired entries are dropped on read."""
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return False, None
        self._entries.move_to_end(key)
        return True, value

    def put(self, key: str, value: Any) -> None:
        if self._ttl <= 0:
            return
        self._entries[key] = (self._clock() + self._ttl, value)
        self._entries.move_to_end(key)
        if len(self._entries) > self._max_size:
            self._entries.popitem(last=False)

    def invalidate(self, key: str | None = None) -> None:
        """Drop one key, or everything when key is None."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value for key, awaiting loader() on a miss."""
        hit, value = self.get(key)
        if hit:
            logger.debug("Cache hit: %s", key)
            return value
        value = await loader()
        self.put(key, value)
        return value
