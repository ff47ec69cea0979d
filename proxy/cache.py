"""Time-boxed preview URL cache keyed by (sandbox_id, port).

Entries are derived state: losing one only costs a provider round-trip.
Concurrent misses for the same key share one in-flight resolution.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

Resolver = Callable[[str, int], Awaitable[str]]
CacheKey = tuple[str, int]


@dataclass
class CacheEntry:
    url: str
    fetched_at: float


class PreviewUrlCache:
    def __init__(self, resolver: Resolver, ttl_sec: float, clock: Callable[[], float] = time.monotonic):
        self._resolver = resolver
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._inflight: dict[CacheKey, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, sandbox_id: str, port: int) -> str:
        key = (sandbox_id, port)
        entry = self._entries.get(key)
        if entry and self._clock() - entry.fetched_at < self.ttl_sec:
            logger.debug("Preview cache hit %s:%d", sandbox_id, port)
            return entry.url

        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        logger.debug("Preview cache miss %s:%d", sandbox_id, port)
        task = asyncio.ensure_future(self._resolve(key))
        self._inflight[key] = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]

    async def _resolve(self, key: CacheKey) -> str:
        url = await self._resolver(*key)
        self._entries[key] = CacheEntry(url=url, fetched_at=self._clock())
        return url

    def invalidate(self, sandbox_id: str, port: int) -> None:
        self._entries.pop((sandbox_id, port), None)

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now - entry.fetched_at >= self.ttl_sec]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info("Swept %d expired preview URLs", len(expired))
        return len(expired)

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        entries = []
        for (sandbox_id, port), entry in self._entries.items():
            age = now - entry.fetched_at
            entries.append({
                "key": f"{sandbox_id}:{port}",
                "age": int(age),
                "remaining": max(0, int(self.ttl_sec - age)),
            })
        return {"totalCached": len(self._entries), "entries": entries}

    def clear(self) -> None:
        self._entries.clear()
