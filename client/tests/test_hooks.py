from __future__ import annotations

import asyncio
import copy
import datetime as dt
from typing import Any, Optional

import pytest

from evv_client.api_client import ApiError
from evv_client.hooks import (
    SHIFTS_KEY,
    VisitMutations,
    apply_visit_batch,
    apply_visit_end,
    apply_visit_start,
)
from evv_client.models import Location, VisitAction, VisitLog
from evv_client.query_cache import QueryCache

NOW = dt.datetime(2023, 11, 14, 22, 13, 20, tzinfo=dt.timezone.utc)
NOW_ISO = "2023-11-14T22:13:20+00:00"
HOME = Location(40.7128, -74.006)


def shift(shift_id: str, **extra: Any) -> dict[str, Any]:
    data = {
        "id": shift_id,
        "date": "2023-11-14",
        "startTime": None,
        "endTime": None,
        "status": "pending",
        "clientId": "client-1",
        "caregiverId": "cg-1",
        "visits": [],
    }
    data.update(extra)
    return data


def shifts_payload() -> dict[str, Any]:
    return {"shifts": [shift("s1"), shift("s2")]}


class FakeApi:
    def __init__(self, *, fail: Optional[set[str]] = None, shifts: Any = None) -> None:
        self.fail = fail or set()
        self.shifts = shifts
        self.calls: list[tuple[str, str]] = []
        self.seen: list[Any] = []
        self.cache: Optional[QueryCache] = None
        self.hold: Optional[asyncio.Event] = None
        self.fetch_cancelled = False
        self.fetches = 0

    async def _log(self, action: str, shift_id: str) -> dict[str, Any]:
        self.calls.append((action, shift_id))
        if self.cache is not None:
            self.seen.append(copy.deepcopy(self.cache.get_data(SHIFTS_KEY)))
        await asyncio.sleep(0)
        if f"{action}:{shift_id}" in self.fail:
            raise ApiError("Visit already started")
        return {"visit": {"id": f"{action}-{shift_id}"}}

    async def log_visit_start(self, shift_id: str, location: Location) -> dict[str, Any]:
        return await self._log("start", shift_id)

    async def log_visit_end(self, shift_id: str, location: Location) -> dict[str, Any]:
        return await self._log("end", shift_id)

    async def get_caregiver_shifts(self) -> Any:
        self.fetches += 1
        if self.hold is not None:
            try:
                await self.hold.wait()
            except asyncio.CancelledError:
                self.fetch_cancelled = True
                raise
        if isinstance(self.shifts, Exception):
            raise self.shifts
        return self.shifts


def make_mutations(api: FakeApi, payload: Any = None):
    cache = QueryCache()
    if payload is not None:
        cache.set_data(SHIFTS_KEY, payload)
    api.cache = cache
    toasts: list[str] = []
    mutations = VisitMutations(api, cache, notify=toasts.append, clock=lambda: NOW.timestamp())
    return mutations, cache, toasts


def test_apply_visit_start_matches_server_shape():
    payload = shifts_payload()
    before = copy.deepcopy(payload)

    updated = apply_visit_start(payload, "s1", HOME, timestamp=NOW, temp_id="temp-1")

    assert payload == before
    started = updated["shifts"][0]
    assert started["status"] == "in_progress"
    assert started["startTime"] == NOW_ISO
    assert started["visits"] == [
        {
            "id": "temp-1",
            "type": "START",
            "latitude": 40.7128,
            "longitude": -74.006,
            "timestamp": NOW_ISO,
            "shiftId": "s1",
            "caregiverId": "cg-1",
        }
    ]
    assert updated["shifts"][1] is payload["shifts"][1]


def test_apply_visit_end_closes_latest_open_start():
    earlier = {"id": "a", "type": "START", "timestamp": "2023-11-14T08:00:00+00:00"}
    later = {"id": "b", "type": "START", "timestamp": "2023-11-14T09:00:00+00:00"}
    payload = {
        "shifts": [
            shift("s1", status="in_progress", startTime=earlier["timestamp"], visits=[earlier, later]),
        ]
    }
    before = copy.deepcopy(payload)

    updated = apply_visit_end(payload, "s1", Location(1.0, 2.0), timestamp=NOW, temp_id="temp-2")

    ended = updated["shifts"][0]
    assert payload == before
    assert ended["status"] == "completed"
    assert ended["startTime"] == later["timestamp"]
    assert ended["endTime"] == NOW_ISO
    assert [visit["type"] for visit in ended["visits"]] == ["START", "START", "END"]
    assert ended["visits"][-1]["latitude"] == 1.0
    assert ended["visits"][-1]["id"] == "temp-2"


def test_apply_visit_batch_sets_status_per_shift():
    logs = [
        VisitLog("s1", HOME, VisitAction.START),
        VisitLog("s2", HOME, VisitAction.START),
        VisitLog("s1", HOME, VisitAction.END),
    ]

    updated = apply_visit_batch(shifts_payload(), logs, timestamp=NOW, temp_id_prefix="temp-9")

    s1, s2 = updated["shifts"]
    assert s1["status"] == "completed"
    assert [(visit["id"], visit["type"]) for visit in s1["visits"]] == [("temp-9-0", "START"), ("temp-9-2", "END")]
    assert s1["startTime"] == s1["endTime"] == NOW_ISO
    assert s2["status"] == "in_progress"
    assert s2["visits"][0]["id"] == "temp-9-1"
    assert s2["endTime"] is None


def test_updaters_leave_missing_payload_alone():
    assert apply_visit_start(None, "s1", HOME, timestamp=NOW, temp_id="t") is None


@pytest.mark.asyncio
async def test_visit_start_shows_optimistic_state_then_invalidates():
    api = FakeApi()
    mutations, cache, toasts = make_mutations(api, shifts_payload())

    result = await mutations.log_visit_start("s1", HOME)

    assert result == {"visit": {"id": "start-s1"}}
    seen = api.seen[0]["shifts"][0]
    assert seen["status"] == "in_progress"
    assert seen["visits"][0]["id"] == f"temp-{int(NOW.timestamp() * 1000)}"
    assert cache.is_stale(SHIFTS_KEY)
    assert toasts == []


@pytest.mark.asyncio
async def test_failed_visit_restores_cache_and_notifies():
    api = FakeApi(fail={"start:s1"})
    mutations, cache, toasts = make_mutations(api, shifts_payload())

    with pytest.raises(ApiError):
        await mutations.log_visit_start("s1", HOME)

    assert api.seen[0]["shifts"][0]["status"] == "in_progress"
    assert cache.get_data(SHIFTS_KEY) == shifts_payload()
    assert cache.is_stale(SHIFTS_KEY)
    assert toasts == ["Visit already started"]


@pytest.mark.asyncio
async def test_batch_failure_rolls_back_everything():
    api = FakeApi(fail={"end:s2"})
    mutations, cache, toasts = make_mutations(api, shifts_payload())
    logs = [
        VisitLog("s1", HOME, VisitAction.START),
        VisitLog("s2", HOME, VisitAction.END),
    ]

    with pytest.raises(ApiError):
        await mutations.batch_visit_logs(logs)

    assert sorted(api.calls) == [("end", "s2"), ("start", "s1")]
    assert cache.get_data(SHIFTS_KEY) == shifts_payload()
    assert len(toasts) == 1


@pytest.mark.asyncio
async def test_batch_success_returns_results_in_order():
    api = FakeApi()
    mutations, cache, _ = make_mutations(api, shifts_payload())

    results = await mutations.batch_visit_logs(
        [VisitLog("s1", HOME, VisitAction.START), VisitLog("s1", HOME, VisitAction.END)]
    )

    assert results == [{"visit": {"id": "start-s1"}}, {"visit": {"id": "end-s1"}}]
    assert cache.get_data(SHIFTS_KEY)["shifts"][0]["status"] == "completed"


@pytest.mark.asyncio
async def test_mutation_cancels_in_flight_shift_fetch():
    api = FakeApi(shifts={"shifts": []})
    mutations, cache, _ = make_mutations(api, shifts_payload())
    cache.invalidate(SHIFTS_KEY)
    api.hold = asyncio.Event()

    reading = asyncio.create_task(mutations.shifts())
    for _ in range(3):
        await asyncio.sleep(0)
    await mutations.log_visit_start("s1", HOME)

    assert api.fetch_cancelled
    assert len((await reading)["shifts"]) == 2
    assert cache.get_data(SHIFTS_KEY)["shifts"][0]["status"] == "in_progress"


@pytest.mark.asyncio
async def test_shift_query_falls_back_to_empty_list():
    api = FakeApi(shifts=ApiError("Network error. Please check your connection."))
    mutations, cache, _ = make_mutations(api)

    assert await mutations.shifts() == {"shifts": []}
    assert not cache.has_data(SHIFTS_KEY)


@pytest.mark.asyncio
async def test_failed_shift_query_is_retried_on_next_read():
    api = FakeApi(shifts=ApiError("Network error. Please check your connection."))
    mutations, cache, _ = make_mutations(api)

    first = await mutations.shifts()
    api.shifts = shifts_payload()
    second = await mutations.shifts()

    assert first == {"shifts": []}
    assert second == shifts_payload()
    assert api.fetches == 2
    assert not cache.is_stale(SHIFTS_KEY)


@pytest.mark.asyncio
async def test_failed_refetch_keeps_previous_shifts_stale():
    api = FakeApi(shifts=ApiError("Network error. Please check your connection."))
    mutations, cache, _ = make_mutations(api, shifts_payload())
    cache.invalidate(SHIFTS_KEY)

    assert await mutations.shifts() == {"shifts": []}
    assert cache.get_data(SHIFTS_KEY) == shifts_payload()
    assert cache.is_stale(SHIFTS_KEY)
