from __future__ import annotations

import asyncio
import itertools

import pytest

from evv_client.api_client import ApiClient, ApiError
from evv_client.models import Location, Priority, RequestSpec
from evv_client.state import ConnectivityState, OfflineQueue, SessionState

from fakes import BlockingTransport, FakeTransport, RecordingSleep, make_response


def offline_client(transport: FakeTransport) -> ApiClient:
    clock = itertools.count(100).__next__
    return ApiClient(
        "http://evv.test",
        session=SessionState(token="tok"),
        connectivity=ConnectivityState(online=False),
        queue=OfflineQueue(clock=clock),
        http=transport,
        sleep=RecordingSleep(),
    )


async def wait_for_queue(client: ApiClient, size: int) -> None:
    while len(client.queue) < size:
        await asyncio.sleep(0)


async def wait_until(condition) -> None:
    while not condition():
        await asyncio.sleep(0.01)


def test_connectivity_reports_reconnects_only():
    state = ConnectivityState(online=True)
    assert state.set_online(True) is False
    assert state.set_online(False) is False
    assert state.set_online(True) is True


@pytest.mark.asyncio
async def test_drain_order_is_priority_then_time_then_insertion():
    queue = OfflineQueue(clock=lambda: 5.0)
    queue.enqueue(RequestSpec("GET", "/caregiver/shifts"), Priority.MEDIUM)
    queue.enqueue(RequestSpec("POST", "/visits/start"), Priority.HIGH)
    queue.enqueue(RequestSpec("GET", "/health"), Priority.LOW)
    queue.enqueue(RequestSpec("POST", "/visits/end"), Priority.HIGH)

    drained = queue.drain()

    assert [item.spec.path for item in drained] == ["/visits/start", "/visits/end", "/caregiver/shifts", "/health"]
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_offline_requests_are_replayed_in_priority_order():
    transport = FakeTransport(
        make_response(201, {"data": {"visit": {"id": "v1"}}}),
        make_response(200, {"data": {"visits": []}}),
        make_response(200, {"data": {"shifts": []}}),
    )
    client = offline_client(transport)

    shifts = asyncio.create_task(client.get_caregiver_shifts())
    start = asyncio.create_task(client.log_visit_start("s1", Location(1.0, 2.0)))
    visits = asyncio.create_task(client.get_shift_visits("s1"))
    await wait_for_queue(client, 3)
    assert transport.calls == []

    await client.set_online(True)

    assert [call["url"] for call in transport.calls] == [
        "http://evv.test/visits/start",
        "http://evv.test/visits/shift/s1",
        "http://evv.test/caregiver/shifts",
    ]
    assert await start == {"visit": {"id": "v1"}}
    assert await visits == {"visits": []}
    assert await shifts == {"shifts": []}
    assert len(client.queue) == 0


@pytest.mark.asyncio
async def test_failed_replay_rejects_the_waiting_caller():
    transport = FakeTransport(make_response(400, {"status": "error", "message": "Visit not started"}))
    client = offline_client(transport)

    end = asyncio.create_task(client.log_visit_end("s1", Location(1.0, 2.0)))
    await wait_for_queue(client, 1)
    await client.set_online(True)

    with pytest.raises(ApiError, match="Visit not started"):
        await end


@pytest.mark.asyncio
async def test_going_offline_keeps_requests_queued():
    transport = FakeTransport()
    client = offline_client(transport)

    pending = asyncio.create_task(client.health())
    await wait_for_queue(client, 1)
    await client.set_online(False)

    assert len(client.queue) == 1
    assert transport.calls == []
    client.logout()
    with pytest.raises(ApiError, match="Logged out"):
        await pending


@pytest.mark.asyncio
async def test_logout_clears_session_and_queue():
    client = offline_client(FakeTransport())
    queued = asyncio.create_task(client.log_visit_start("s1", Location(1.0, 2.0)))
    await wait_for_queue(client, 1)

    client.logout()

    assert client.session.token is None
    assert len(client.queue) == 0
    with pytest.raises(ApiError, match="Logged out"):
        await queued


@pytest.mark.asyncio
async def test_enqueue_time_beats_insertion_order_within_priority():
    times = iter([30.0, 10.0, 20.0, 0.0])
    queue = OfflineQueue(clock=lambda: next(times))
    queue.enqueue(RequestSpec("POST", "/visits/end"), Priority.HIGH)
    queue.enqueue(RequestSpec("POST", "/visits/start"), Priority.HIGH)
    queue.enqueue(RequestSpec("GET", "/visits/shift/s1"), Priority.HIGH)
    queue.enqueue(RequestSpec("GET", "/caregiver/shifts"), Priority.MEDIUM)

    assert [spec.path for spec in queue.pending()] == [
        "/visits/start",
        "/visits/shift/s1",
        "/visits/end",
        "/caregiver/shifts",
    ]


@pytest.mark.asyncio
async def test_interrupted_flush_rejects_unsent_requests():
    transport = BlockingTransport(make_response(201, {"data": {"visit": {"id": "v1"}}}))
    client = offline_client(transport)
    start = asyncio.create_task(client.log_visit_start("s1", Location(1.0, 2.0)))
    end = asyncio.create_task(client.log_visit_end("s1", Location(1.0, 2.0)))
    await wait_for_queue(client, 2)

    flush = asyncio.create_task(client.set_online(True))
    try:
        await wait_until(transport.started.is_set)
        flush.cancel()
        await asyncio.wait({flush})

        for caller in (start, end):
            with pytest.raises(ApiError, match="interrupted"):
                await asyncio.wait_for(caller, 1)
        assert len(client.queue) == 0
    finally:
        transport.release.set()


@pytest.mark.asyncio
async def test_interrupted_flush_while_offline_keeps_requests_queued():
    transport = BlockingTransport(
        make_response(201, {"data": {"visit": {"id": "lost"}}}),
        make_response(201, {"data": {"visit": {"id": "v1"}}}),
        make_response(201, {"data": {"visit": {"id": "v2"}}}),
    )
    client = offline_client(transport)
    start = asyncio.create_task(client.log_visit_start("s1", Location(1.0, 2.0)))
    end = asyncio.create_task(client.log_visit_end("s1", Location(1.0, 2.0)))
    await wait_for_queue(client, 2)

    flush = asyncio.create_task(client.set_online(True))
    try:
        await wait_until(transport.started.is_set)
        await client.set_online(False)
        flush.cancel()
        await asyncio.wait({flush})

        assert [spec.path for spec in client.queue.pending()] == ["/visits/start", "/visits/end"]
        assert not start.done()
        assert not end.done()
    finally:
        transport.release.set()

    await wait_until(lambda: len(transport.outcomes) == 2)
    await client.set_online(True)

    assert await start == {"visit": {"id": "v1"}}
    assert await end == {"visit": {"id": "v2"}}
