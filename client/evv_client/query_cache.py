"""Keyed cache of server data with optimistic update support.

Screens read through :class:`QueryCache`; mutations wrap their server call in
:class:`OptimisticUpdate`, which shows the expected result immediately and puts
back the exact previous value if the call fails.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
Fetcher = Callable[[], Awaitable[Any]]


@dataclass(slots=True)
class _Entry:
    data: Any = None
    has_data: bool = False
    stale: bool = True
    updated_at: float = 0.0
    task: Optional["asyncio.Task[Any]"] = field(default=None, repr=False)


@dataclass(frozen=True, slots=True)
class Snapshot:
    """A deep copy of one cache entry taken before an optimistic change."""

    key: Hashable
    has_data: bool
    data: Any


class QueryCache:
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: Dict[Hashable, _Entry] = {}

    def _entry(self, key: Hashable) -> _Entry:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        return entry

    def has_data(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return bool(entry and entry.has_data)

    def get_data(self, key: Hashable) -> Any:
        entry = self._entries.get(key)
        return entry.data if entry else None

    def is_stale(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is None or entry.stale

    def set_data(self, key: Hashable, value: Any) -> Any:
        """Store ``value``, or the result of calling it with the current data."""

        entry = self._entry(key)
        if callable(value):
            value = value(entry.data)
        entry.data = value
        entry.has_data = True
        entry.stale = False
        entry.updated_at = self._clock()
        return value

    def invalidate(self, key: Hashable) -> None:
        entry = self._entries.get(key)
        if entry is not None:
            entry.stale = True
            logger.debug("Invalidated %r", key)

    def clear(self) -> None:
        for entry in self._entries.values():
            if entry.task is not None and not entry.task.done():
                entry.task.cancel()
        self._entries.clear()

    def snapshot(self, key: Hashable) -> Snapshot:
        entry = self._entries.get(key)
        if entry is None or not entry.has_data:
            return Snapshot(key=key, has_data=False, data=None)
        return Snapshot(key=key, has_data=True, data=copy.deepcopy(entry.data))

    def restore(self, snapshot: Snapshot) -> None:
        if not snapshot.has_data:
            entry = self._entries.get(snapshot.key)
            if entry is not None:
                entry.data = None
                entry.has_data = False
            return
        entry = self._entry(snapshot.key)
        entry.data = snapshot.data
        entry.has_data = True
        entry.updated_at = self._clock()

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------
    async def fetch(self, key: Hashable, fetcher: Fetcher) -> Any:
        """Run ``fetcher`` and store its result, sharing an in-flight fetch.

        A fetch cancelled by :meth:`cancel` leaves the entry untouched and
        returns whatever the cache holds at that point. A failed fetch also
        leaves the entry untouched and re-raises.
        """

        entry = self._entry(key)
        task = entry.task
        if task is None or task.done():
            task = asyncio.ensure_future(self._run(key, fetcher))
            entry.task = task

        await asyncio.wait({task})
        if entry.task is task:
            entry.task = None
        if task.cancelled():
            return self.get_data(key)
        return task.result()

    async def _run(self, key: Hashable, fetcher: Fetcher) -> Any:
        data = await fetcher()
        self.set_data(key, data)
        return data

    async def read(self, key: Hashable, fetcher: Fetcher) -> Any:
        """Return cached data, fetching first when missing or stale."""

        entry = self._entries.get(key)
        if entry is not None and entry.has_data and not entry.stale:
            return entry.data
        return await self.fetch(key, fetcher)

    async def cancel(self, key: Hashable) -> None:
        """Cancel an in-flight fetch so it cannot overwrite newer data."""

        entry = self._entries.get(key)
        if entry is None or entry.task is None or entry.task.done():
            return
        task = entry.task
        task.cancel()
        await asyncio.wait({task})
        if entry.task is task:
            entry.task = None
        logger.debug("Cancelled in-flight fetch for %r", key)


class OptimisticUpdate(Generic[T]):
    """Async context manager applying a provisional change to one cache key.

    On entry any in-flight fetch for the key is cancelled and the current value
    is snapshotted. If the block raises, the snapshot is restored. Either way
    the key is invalidated on exit so the next read reconciles with the server.
    """

    def __init__(self, cache: QueryCache, key: Hashable) -> None:
        self.cache = cache
        self.key = key
        self.snapshot: Optional[Snapshot] = None
        self.rolled_back = False

    async def __aenter__(self) -> "OptimisticUpdate[T]":
        await self.cache.cancel(self.key)
        self.snapshot = self.cache.snapshot(self.key)
        return self

    def apply(self, updater: Callable[[T], T]) -> None:
        if not self.cache.has_data(self.key):
            return
        self.cache.set_data(self.key, updater)

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None and self.snapshot is not None:
            self.cache.restore(self.snapshot)
            self.rolled_back = True
            logger.info("Rolled back optimistic update of %r: %s", self.key, exc)
        self.cache.invalidate(self.key)
        return False


__all__ = ["OptimisticUpdate", "QueryCache", "Snapshot"]
