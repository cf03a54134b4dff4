from __future__ import annotations

import asyncio
import random
from datetime import datetime, timedelta, timezone

import pytest

from uptime_monitor.errors import StoreError
from uptime_monitor.incidents.manager import IncidentManager
from uptime_monitor.models import CheckResult, Incident
from uptime_monitor.storage.memory import MemoryCheckLog, MemoryIncidentStore


T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _result(status: str, minute: float, target_id: str = "t1", error: str | None = None) -> CheckResult:
    return CheckResult(
        target_id=target_id,
        status=status,
        response_time_ms=12,
        checked_at=T0 + timedelta(minutes=minute),
        worker_id="w",
        error_message=error if status == "down" else None,
    )


async def _run(manager: IncidentManager, log: MemoryCheckLog, results: list[CheckResult]):
    events = []
    for r in results:
        log.append(r)
        events.append(await manager.evaluate(r))
    return events


@pytest.mark.asyncio
async def test_single_outage_opens_and_resolves_once() -> None:
    log, store = MemoryCheckLog(), MemoryIncidentStore()
    manager = IncidentManager(log, store)

    events = await _run(
        manager,
        log,
        [_result("up", 0), _result("down", 5, error="timed_out"), _result("down", 10), _result("up", 17.5)],
    )

    assert [e.kind if e else None for e in events] == [None, "opened", None, "resolved"]
    incidents = store.incidents_for("t1")
    assert len(incidents) == 1
    incident = incidents[0]
    assert incident.started_at == T0 + timedelta(minutes=5)
    assert incident.resolved_at == T0 + timedelta(minutes=17.5)
    assert incident.duration_minutes == 12
    assert incident.status == "resolved"
    assert incident.description == "timed_out"
    assert events[1].incident.id == events[3].incident.id == incident.id


@pytest.mark.asyncio
async def test_first_result_down_opens_incident() -> None:
    log, store = MemoryCheckLog(), MemoryIncidentStore()
    manager = IncidentManager(log, store)

    events = await _run(manager, log, [_result("down", 0)])

    assert events[0] is not None and events[0].kind == "opened"
    assert events[0].incident.description == "target unreachable"
    assert store.open_for("t1") is not None


@pytest.mark.asyncio
async def test_steady_state_produces_no_events() -> None:
    log, store = MemoryCheckLog(), MemoryIncidentStore()
    manager = IncidentManager(log, store)
    events = await _run(manager, log, [_result("up", i) for i in range(5)])
    assert events == [None] * 5
    assert store.incidents_for("t1") == []


@pytest.mark.asyncio
async def test_events_match_status_edges_for_random_sequences() -> None:
    rng = random.Random(7)
    for _ in range(20):
        log, store = MemoryCheckLog(), MemoryIncidentStore()
        manager = IncidentManager(log, store)
        statuses = [rng.choice(["up", "down"]) for _ in range(30)]
        events = await _run(manager, log, [_result(s, i) for i, s in enumerate(statuses)])

        previous = "up"
        for status, event in zip(statuses, events):
            if previous == "up" and status == "down":
                assert event is not None and event.kind == "opened"
            elif previous == "down" and status == "up":
                assert event is not None and event.kind == "resolved"
            else:
                assert event is None
            previous = status

        open_incidents = [i for i in store.incidents_for("t1") if i.is_open]
        assert len(open_incidents) <= 1
        assert (len(open_incidents) == 1) == (statuses[-1] == "down")


@pytest.mark.asyncio
async def test_replaying_same_status_is_idempotent() -> None:
    log, store = MemoryCheckLog(), MemoryIncidentStore()
    manager = IncidentManager(log, store)
    await _run(manager, log, [_result("down", 0)])
    repeat = await _run(manager, log, [_result("down", 1), _result("down", 2)])
    assert repeat == [None, None]
    assert len(store.incidents_for("t1")) == 1


@pytest.mark.asyncio
async def test_cold_start_uses_logged_history_and_open_incident() -> None:
    log, store = MemoryCheckLog(), MemoryIncidentStore()
    log.append(_result("down", 0))
    store.create(Incident(id="inc-1", target_id="t1", started_at=T0, description="timed_out"))

    manager = IncidentManager(log, store)
    still_down = _result("down", 1)
    log.append(still_down)
    assert await manager.evaluate(still_down) is None

    recovered = _result("up", 2)
    log.append(recovered)
    event = await manager.evaluate(recovered)
    assert event is not None and event.kind == "resolved"
    assert event.incident.id == "inc-1"
    assert event.incident.duration_minutes == 2
    assert store.open_for("t1") is None


@pytest.mark.asyncio
async def test_cold_start_down_after_logged_down_without_incident_opens_nothing() -> None:
    log, store = MemoryCheckLog(), MemoryIncidentStore()
    log.append(_result("down", 0))
    manager = IncidentManager(log, store)
    r = _result("down", 1)
    log.append(r)
    assert await manager.evaluate(r) is None


@pytest.mark.asyncio
async def test_never_opens_second_incident_when_one_is_open() -> None:
    log, store = MemoryCheckLog(), MemoryIncidentStore()
    log.append(_result("up", 0))
    store.create(Incident(id="stale", target_id="t1", started_at=T0, description="old"))
    manager = IncidentManager(log, store)

    r = _result("down", 1)
    log.append(r)
    assert await manager.evaluate(r) is None
    assert len(store.incidents_for("t1")) == 1


@pytest.mark.asyncio
async def test_recovery_without_open_incident_emits_nothing() -> None:
    log, store = MemoryCheckLog(), MemoryIncidentStore()
    log.append(_result("down", 0))
    manager = IncidentManager(log, store)
    r = _result("up", 1)
    log.append(r)
    assert await manager.evaluate(r) is None
    assert manager.last_status("t1") == "up"


@pytest.mark.asyncio
async def test_store_failure_does_not_block_events() -> None:
    class _BrokenStore(MemoryIncidentStore):
        def create(self, incident: Incident) -> None:
            raise StoreError("db locked")

        def update(self, incident: Incident) -> None:
            raise StoreError("db locked")

    log = MemoryCheckLog()
    manager = IncidentManager(log, _BrokenStore())
    events = await _run(manager, log, [_result("down", 0), _result("up", 3)])
    assert [e.kind for e in events] == ["opened", "resolved"]
    assert events[0].incident.id == events[1].incident.id


@pytest.mark.asyncio
async def test_targets_are_independent() -> None:
    log, store = MemoryCheckLog(), MemoryIncidentStore()
    manager = IncidentManager(log, store)
    results = [_result("down", 0, target_id="a"), _result("up", 0, target_id="b")]
    for r in results:
        log.append(r)
    events = await asyncio.gather(*(manager.evaluate(r) for r in results))
    assert events[0] is not None and events[0].kind == "opened"
    assert events[1] is None
    assert store.open_for("b") is None


@pytest.mark.asyncio
async def test_forget_reloads_state_from_stores() -> None:
    log, store = MemoryCheckLog(), MemoryIncidentStore()
    manager = IncidentManager(log, store)
    await _run(manager, log, [_result("down", 0)])
    manager.forget("t1")
    assert manager.last_status("t1") is None

    events = await _run(manager, log, [_result("up", 4)])
    assert events[0] is not None and events[0].kind == "resolved"


@pytest.mark.asyncio
async def test_older_result_does_not_resolve_open_incident() -> None:
    log, store = MemoryCheckLog(), MemoryIncidentStore()
    manager = IncidentManager(log, store)
    opened, late = await _run(manager, log, [_result("down", 10), _result("up", 5)])

    assert opened is not None and opened.kind == "opened"
    assert late is None
    assert manager.last_status("t1") == "down"
    assert store.open_for("t1") is not None

    (resolved,) = await _run(manager, log, [_result("up", 15)])
    assert resolved is not None and resolved.kind == "resolved"
    assert resolved.incident.resolved_at >= resolved.incident.started_at
    assert resolved.incident.duration_minutes == 5


@pytest.mark.asyncio
async def test_equal_checked_at_is_evaluated_in_arrival_order() -> None:
    log, store = MemoryCheckLog(), MemoryIncidentStore()
    manager = IncidentManager(log, store)
    events = await _run(manager, log, [_result("down", 3), _result("up", 3)])
    assert [e.kind for e in events] == ["opened", "resolved"]
    assert events[1].incident.duration_minutes == 0


@pytest.mark.asyncio
async def test_cold_start_ignores_result_older_than_logged_history() -> None:
    log, store = MemoryCheckLog(), MemoryIncidentStore()
    log.append(_result("down", 10))
    store.create(Incident(id="inc-1", target_id="t1", started_at=T0 + timedelta(minutes=10), description="x"))

    manager = IncidentManager(log, store)
    (late,) = await _run(manager, log, [_result("up", 5)])
    assert late is None
    assert manager.last_status("t1") == "down"
    assert store.open_for("t1").id == "inc-1"

    (recovered,) = await _run(manager, log, [_result("up", 12)])
    assert recovered is not None and recovered.incident.id == "inc-1"


@pytest.mark.asyncio
async def test_cold_start_tie_uses_insertion_order() -> None:
    log, store = MemoryCheckLog(), MemoryIncidentStore()
    log.append(_result("down", 0))
    store.create(Incident(id="inc-1", target_id="t1", started_at=T0, description="x"))

    manager = IncidentManager(log, store)
    (event,) = await _run(manager, log, [_result("up", 0)])
    assert event is not None and event.kind == "resolved"
    assert event.incident.id == "inc-1"


@pytest.mark.asyncio
async def test_forget_during_evaluation_waits_for_it_to_finish() -> None:
    log, store = MemoryCheckLog(), MemoryIncidentStore()
    manager = IncidentManager(log, store)
    lock = manager._lock_for("t1")
    await lock.acquire()

    r = _result("down", 0)
    log.append(r)
    pending = asyncio.create_task(manager.evaluate(r))
    await asyncio.sleep(0)

    manager.forget("t1")
    assert manager._lock_for("t1") is lock

    lock.release()
    event = await pending
    assert event is not None and event.kind == "opened"
    assert manager.last_status("t1") is None
    assert manager.open_incident("t1") is None
    assert "t1" not in manager._locks

    # State comes back from the stores on the next evaluation.
    recovered = _result("up", 2)
    (resolved,) = await _run(manager, log, [recovered])
    assert resolved is not None and resolved.incident.id == event.incident.id
