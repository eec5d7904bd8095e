"""Process-wide client state.

Each object here is created once per process or login session and handed to
the API client explicitly. Nothing outside the reliability layer should mutate
the queue or the cache directly.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
import time
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Tuple

from .models import AuthUser, Priority, QueuedRequest, RequestSpec

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Listener = Callable[[], None]


class SessionState:
    """Bearer token and user of the current login, plus expiry listeners."""

    def __init__(self, token: Optional[str] = None, user: Optional[AuthUser] = None) -> None:
        self._lock = RLock()
        self._token = token
        self._user = user
        self._expired_listeners: List[Listener] = []

    @property
    def token(self) -> Optional[str]:
        with self._lock:
            return self._token

    @property
    def user(self) -> Optional[AuthUser]:
        with self._lock:
            return self._user

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None

    def set(self, token: str, user: Optional[AuthUser]) -> None:
        with self._lock:
            self._token = token
            self._user = user

    def clear(self) -> None:
        with self._lock:
            self._token = None
            self._user = None

    def on_expired(self, listener: Listener) -> Callable[[], None]:
        """Register a session-expired listener; returns a function removing it."""
        with self._lock:
            self._expired_listeners.append(listener)

        def remove() -> None:
            with self._lock:
                if listener in self._expired_listeners:
                    self._expired_listeners.remove(listener)

        return remove

    def expire(self) -> None:
        self.clear()
        with self._lock:
            listeners = list(self._expired_listeners)
        logger.warning("Session expired; notifying %d listener(s)", len(listeners))
        for listener in listeners:
            listener()


class ConnectivityState:
    """Online flag maintained by whoever watches the network."""

    def __init__(self, online: bool = True) -> None:
        self._lock = RLock()
        self._online = online

    @property
    def online(self) -> bool:
        with self._lock:
            return self._online

    def set_online(self, online: bool) -> bool:
        """Update the flag and report whether it flipped from offline to online."""
        with self._lock:
            came_online = online and not self._online
            self._online = online
        return came_online


class OfflineQueue:
    """Requests deferred while offline, drained by priority then enqueue time."""

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._items: List[QueuedRequest] = []
        self._sequence = itertools.count()

    def __len__(self) -> int:
        return len(self._items)

    def enqueue(self, spec: RequestSpec, priority: Priority) -> "asyncio.Future[Any]":
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        item = QueuedRequest(
            spec=spec,
            priority=priority,
            timestamp=self._clock(),
            sequence=next(self._sequence),
            future=future,
        )
        self._items.append(item)
        logger.info("Queued %s %s while offline (priority=%s)", spec.method, spec.path, priority.name.lower())
        return future

    def drain(self) -> List[QueuedRequest]:
        """Remove and return every queued request in dispatch order."""
        items = sorted(self._items, key=QueuedRequest.sort_key)
        self._items.clear()
        return items

    def requeue(self, items: List[QueuedRequest]) -> None:
        """Put back drained requests, keeping their original position."""
        self._items.extend(item for item in items if not item.future.done())

    def pending(self) -> List[RequestSpec]:
        return [item.spec for item in sorted(self._items, key=QueuedRequest.sort_key)]

    def clear(self, error: BaseException) -> int:
        items, self._items = self._items, []
        for item in items:
            if not item.future.done():
                item.future.set_exception(error)
        return len(items)


class ReadCache:
    """Payloads keyed by request, served while younger than the TTL."""

    def __init__(self, ttl_seconds: float = 300.0, clock: Clock = time.time) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = RLock()
        self._entries: Dict[str, Tuple[Any, float]] = {}

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            payload, stored_at = entry
            if self._clock() - stored_at < self.ttl_seconds:
                return copy.deepcopy(payload)
            del self._entries[key]
            return None

    def set(self, key: str, payload: Any) -> None:
        with self._lock:
            self._entries[key] = (copy.deepcopy(payload), self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


__all__ = ["ConnectivityState", "OfflineQueue", "ReadCache", "SessionState"]
