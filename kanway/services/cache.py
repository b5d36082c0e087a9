"""In-memory TTL cache for non-sensitive reads"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any


class ResponseCache:
    """TTL cache injected into services that serve directory-style listings.

    Only reads that never feed a state-machine guard may go through this
    cache: request status, acceptances and wallet balances are always read
    from the store.
    """

    def __init__(self, ttl_seconds: float = 30.0, max_entries: int = 1024, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        # Store: {key: (value, expires_at)}
        self._entries: dict[str, tuple[Any, float]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            if len(self._entries) >= self.max_entries:
                self._evict_expired()
            if len(self._entries) >= self.max_entries:
                # Drop the entry closest to expiry
                oldest = min(self._entries, key=lambda k: self._entries[k][1])
                del self._entries[oldest]
            self._entries[key] = (value, self._clock() + self.ttl_seconds)

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        cached = await self.get(key)
        if cached is not None:
            return cached
        value = await loader()
        await self.set(key, value)
        return value

    async def invalidate(self, prefix: str = "") -> None:
        async with self._lock:
            for key in [k for k in self._entries if k.startswith(prefix)]:
                del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def _evict_expired(self) -> None:
        now = self._clock()
        for key in [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)
