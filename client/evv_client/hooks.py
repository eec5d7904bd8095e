"""Visit mutations with optimistic cache updates.

The updaters below are pure: they take the cached ``{"shifts": [...]}``
payload and return a new one, never touching the input. :class:`VisitMutations`
applies them through :class:`~evv_client.query_cache.OptimisticUpdate` around
the real API call.
"""

from __future__ import annotations

import asyncio
import copy
import datetime as dt
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .api_client import ApiClient, ApiError
from .models import Location, VisitAction, VisitLog
from .query_cache import OptimisticUpdate, QueryCache

logger = logging.getLogger(__name__)

SHIFTS_KEY = ("shifts", "list")
FAILED_TO_LOG_VISIT = "Failed to log visit"

Payload = Optional[Dict[str, Any]]
Notifier = Callable[[str], None]


def _iso(timestamp: dt.datetime) -> str:
    return timestamp.astimezone(dt.timezone.utc).isoformat()


def _visit_entry(
    shift: Dict[str, Any],
    entry_id: str,
    action: VisitAction,
    location: Location,
    timestamp: dt.datetime,
) -> Dict[str, Any]:
    # Same shape as the visits the server returns for a shift.
    return {
        "id": entry_id,
        "type": action.value.upper(),
        "latitude": location.latitude,
        "longitude": location.longitude,
        "timestamp": _iso(timestamp),
        "shiftId": shift.get("id"),
        "caregiverId": shift.get("caregiverId"),
    }


def _latest_open_start(visits: Sequence[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """The most recent START that no later END has closed."""
    for entry in reversed(visits):
        if entry.get("type") == "END":
            return None
        if entry.get("type") == "START":
            return entry
    return None


def _record_start(shift: Dict[str, Any], entry_id: str, location: Location, timestamp: dt.datetime) -> None:
    entry = _visit_entry(shift, entry_id, VisitAction.START, location, timestamp)
    shift["visits"] = [*(shift.get("visits") or []), entry]
    shift["startTime"] = entry["timestamp"]
    shift["status"] = "in_progress"


def _record_end(shift: Dict[str, Any], entry_id: str, location: Location, timestamp: dt.datetime) -> None:
    visits = list(shift.get("visits") or [])
    opened = _latest_open_start(visits)
    entry = _visit_entry(shift, entry_id, VisitAction.END, location, timestamp)
    shift["visits"] = [*visits, entry]
    if opened is not None:
        shift["startTime"] = opened["timestamp"]
    shift["endTime"] = entry["timestamp"]
    shift["status"] = "completed"


def _map_shifts(payload: Payload, shift_ids: Iterable[str], change: Callable[[Dict[str, Any]], None]) -> Payload:
    if not payload:
        return payload
    targets = set(shift_ids)
    shifts = []
    for shift in payload.get("shifts") or []:
        if shift.get("id") in targets:
            shift = copy.deepcopy(shift)
            change(shift)
        shifts.append(shift)
    return {**payload, "shifts": shifts}


def apply_visit_start(
    payload: Payload,
    shift_id: str,
    location: Location,
    *,
    timestamp: dt.datetime,
    temp_id: str,
) -> Payload:
    return _map_shifts(payload, [shift_id], lambda shift: _record_start(shift, temp_id, location, timestamp))


def apply_visit_end(
    payload: Payload,
    shift_id: str,
    location: Location,
    *,
    timestamp: dt.datetime,
    temp_id: str,
) -> Payload:
    """Append an END and close the latest open START of the shift."""

    return _map_shifts(payload, [shift_id], lambda shift: _record_end(shift, temp_id, location, timestamp))


def apply_visit_batch(
    payload: Payload,
    logs: Sequence[VisitLog],
    *,
    timestamp: dt.datetime,
    temp_id_prefix: str,
) -> Payload:
    """Apply a whole batch in submission order.

    A shift ends up ``completed`` if any END in the batch targets it and
    ``in_progress`` otherwise.
    """

    def change(shift: Dict[str, Any]) -> None:
        own = [(index, log) for index, log in enumerate(logs) if log.shift_id == shift.get("id")]
        for index, log in own:
            record = _record_start if log.type == VisitAction.START else _record_end
            record(shift, f"{temp_id_prefix}-{index}", log.location, timestamp)
        ended = any(log.type == VisitAction.END for _, log in own)
        shift["status"] = "completed" if ended else "in_progress"

    return _map_shifts(payload, [log.shift_id for log in logs], change)


class VisitMutations:
    """Visit logging for the caregiver screens."""

    def __init__(
        self,
        api: ApiClient,
        cache: QueryCache,
        notify: Optional[Notifier] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.api = api
        self.cache = cache
        self._notify = notify or (lambda message: None)
        self._clock = clock

    def _now(self) -> dt.datetime:
        return dt.datetime.fromtimestamp(self._clock(), tz=dt.timezone.utc)

    def _temp_id(self) -> str:
        return f"temp-{int(self._clock() * 1000)}"

    async def shifts(self) -> Dict[str, Any]:
        """The caregiver's upcoming shifts, falling back to an empty list."""

        async def fetch() -> Dict[str, Any]:
            return await self.api.get_caregiver_shifts() or {"shifts": []}

        # A failed read leaves the cache entry as it was.
        try:
            return await self.cache.read(SHIFTS_KEY, fetch)
        except ApiError as exc:
            logger.warning("Could not load shifts: %s", exc)
            return {"shifts": []}

    async def _mutate(self, updater: Callable[[Payload], Payload], send: Callable[[], Any]) -> Any:
        try:
            async with OptimisticUpdate(self.cache, SHIFTS_KEY) as update:
                update.apply(updater)
                return await send()
        except ApiError as exc:
            self._notify(str(exc) or FAILED_TO_LOG_VISIT)
            raise

    async def log_visit_start(self, shift_id: str, location: Location) -> Dict[str, Any]:
        timestamp, temp_id = self._now(), self._temp_id()
        return await self._mutate(
            lambda payload: apply_visit_start(payload, shift_id, location, timestamp=timestamp, temp_id=temp_id),
            lambda: self.api.log_visit_start(shift_id, location),
        )

    async def log_visit_end(self, shift_id: str, location: Location) -> Dict[str, Any]:
        timestamp, temp_id = self._now(), self._temp_id()
        return await self._mutate(
            lambda payload: apply_visit_end(payload, shift_id, location, timestamp=timestamp, temp_id=temp_id),
            lambda: self.api.log_visit_end(shift_id, location),
        )

    async def batch_visit_logs(self, logs: Sequence[VisitLog]) -> List[Dict[str, Any]]:
        """Submit every log concurrently; any failure rolls back the whole batch."""

        logs = list(logs)
        timestamp, prefix = self._now(), self._temp_id()

        async def send() -> List[Dict[str, Any]]:
            calls = [
                self.api.log_visit_start(log.shift_id, log.location)
                if log.type == VisitAction.START
                else self.api.log_visit_end(log.shift_id, log.location)
                for log in logs
            ]
            return list(await asyncio.gather(*calls))

        return await self._mutate(
            lambda payload: apply_visit_batch(payload, logs, timestamp=timestamp, temp_id_prefix=prefix),
            send,
        )


__all__ = [
    "SHIFTS_KEY",
    "VisitMutations",
    "apply_visit_batch",
    "apply_visit_end",
    "apply_visit_start",
]
