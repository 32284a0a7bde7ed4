"""
Time-based snapshot cache.

One instance per namespace ("exercises", "search"); the service owns both
and hands them to the store and search engine by reference. Concurrent
misses on the same key share a single in-flight load.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional

from loguru import logger

_MISSING = object()


@dataclass
class CacheEntry:
    data: Any
    timestamp: float


class TTLCache:
    """Key/value cache whose entries expire after ``ttl_seconds``."""

    def __init__(
        self,
        name: str,
        ttl_seconds: float = 300.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.name = name
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def get(self, key: str, default: Any = None) -> Any:
        """Return a live entry, evicting it if expired."""
        entry = self._entries.get(key)
        if entry is None:
            return default
        if self._clock() - entry.timestamp < self.ttl_seconds:
            return entry.data
        del self._entries[key]
        return default

    def set(self, key: str, data: Any) -> None:
        self._entries[key] = CacheEntry(data=data, timestamp=self._clock())

    def clear(self) -> None:
        self._entries.clear()

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        """
        Return the cached value for ``key`` or populate it with ``loader``.

        Callers arriving while a load for the same key is pending await
        that load instead of starting another. A failed load caches nothing.
        """
        cached = self.get(key, _MISSING)
        if cached is not _MISSING:
            logger.debug(f"Cache hit [{self.name}] {key}")
            return cached

        pending = self._inflight.get(key)
        if pending is not None:
            logger.debug(f"Joining in-flight load [{self.name}] {key}")
            return await asyncio.shield(pending)

        logger.debug(f"Cache miss [{self.name}] {key}")
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            data = await loader()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Nobody may be waiting; retrieve to silence "never retrieved"
            future.exception()
            raise
        else:
            self.set(key, data)
            future.set_result(data)
            return data
        finally:
            self._inflight.pop(key, None)
