import asyncio

import pytest

from scheduler import ConcurrentOperationScheduler, ScheduleState
from tests.conftest import wait_until


class Target:
    pass


@pytest.fixture
def scheduler(oplog):
    return ConcurrentOperationScheduler(oplog, interval_ms=2, max_in_flight=16)


async def _shutdown(scheduler):
    scheduler.cancel_all()
    await scheduler.drain(2.0)


def test_arm_requires_running_loop(scheduler):
    async def op(target):
        return None

    with pytest.raises(RuntimeError):
        scheduler.arm(Target(), {"op": op})


@pytest.mark.asyncio
async def test_state_machine(scheduler, oplog):
    target = Target()
    calls = []

    async def op(t):
        calls.append(t)

    assert scheduler.state(target) is ScheduleState.IDLE
    entries = scheduler.arm(target, {"op": op}, label="t")
    try:
        assert scheduler.state(target) is ScheduleState.ARMED
        assert scheduler.armed_targets == [target]
        await wait_until(lambda: len(calls) >= 3)
        assert all(c is target for c in calls)
    finally:
        await _shutdown(scheduler)
    assert scheduler.state(target) is ScheduleState.CANCELLED
    assert all(e.cancelled for e in entries)
    assert oplog.count("arm") == 1
    assert oplog.count("cancel") == 1


@pytest.mark.asyncio
async def test_rearm_while_armed_returns_existing_entries(scheduler):
    target = Target()

    async def op(t):
        return None

    try:
        first = scheduler.arm(target, {"op": op})
        second = scheduler.arm(target, {"other": op})
        assert [e.name for e in second] == ["op"]
        assert second[0] is first[0]
    finally:
        await _shutdown(scheduler)


@pytest.mark.asyncio
async def test_cancelled_target_cannot_be_rearmed(scheduler):
    target = Target()

    async def op(t):
        return None

    scheduler.arm(target, {"op": op})
    scheduler.cancel_target(target)
    assert scheduler.arm(target, {"op": op}) == []
    assert scheduler.state(target) is ScheduleState.CANCELLED
    assert scheduler.forget(target) is True
    assert scheduler.state(target) is ScheduleState.IDLE
    await scheduler.drain(1.0)


@pytest.mark.asyncio
async def test_cancel_is_idempotent(scheduler, oplog):
    target = Target()

    async def op(t):
        return None

    a, b = scheduler.arm(target, {"a": op, "b": op})
    assert scheduler.cancel(a) is True
    assert scheduler.cancel(a) is False
    assert a.cancel() is False
    assert scheduler.state(target) is ScheduleState.ARMED
    assert scheduler.cancel(b) is True
    assert scheduler.state(target) is ScheduleState.CANCELLED
    assert scheduler.cancel_target(target) == 0
    assert oplog.count("cancel") == 1
    await scheduler.drain(1.0)


@pytest.mark.asyncio
async def test_cancel_stops_future_firings(scheduler):
    target = Target()

    async def op(t):
        return None

    (entry,) = scheduler.arm(target, {"op": op})
    await wait_until(lambda: entry.fired >= 2)
    scheduler.cancel_target(target)
    fired = entry.fired
    await asyncio.sleep(0.03)
    assert entry.fired == fired
    assert entry.handle is None
    await scheduler.drain(1.0)


@pytest.mark.asyncio
async def test_in_flight_operations_finish_after_cancel(scheduler):
    target = Target()
    release = asyncio.Event()

    async def op(t):
        await release.wait()

    (entry,) = scheduler.arm(target, {"op": op})
    await wait_until(lambda: entry.fired >= 1)
    scheduler.cancel_all()
    assert scheduler.in_flight() >= 1
    release.set()
    await scheduler.drain(2.0)
    assert entry.completed == entry.fired
    assert scheduler.in_flight() == 0


@pytest.mark.asyncio
async def test_firings_overlap_up_to_cap(oplog):
    scheduler = ConcurrentOperationScheduler(oplog, interval_ms=1, max_in_flight=3)
    target = Target()
    release = asyncio.Event()

    async def op(t):
        await release.wait()

    (entry,) = scheduler.arm(target, {"op": op})
    try:
        await wait_until(lambda: entry.skipped >= 3)
        assert len(entry.in_flight) == 3
        assert entry.fired == 3
    finally:
        release.set()
        await _shutdown(scheduler)


@pytest.mark.asyncio
async def test_slow_operation_does_not_hold_back_others(scheduler):
    target = Target()
    fast_calls = []

    async def slow(t):
        await asyncio.sleep(0.2)

    async def fast(t):
        fast_calls.append(1)

    slow_entry, fast_entry = scheduler.arm(target, {"slow": slow, "fast": fast})
    try:
        await wait_until(lambda: len(fast_calls) >= 5)
        assert slow_entry.completed == 0
        assert slow_entry.fired >= 1
    finally:
        await _shutdown(scheduler)


@pytest.mark.asyncio
async def test_each_firing_is_logged(scheduler, oplog):
    target = Target()

    async def op(t):
        return None

    (entry,) = scheduler.arm(target, {"styles": op})
    await wait_until(lambda: entry.completed >= 3)
    await _shutdown(scheduler)
    firings = [e.details["firing"] for e in oplog.read_all() if e.operation == "styles"]
    assert firings == list(range(1, entry.fired + 1))


@pytest.mark.asyncio
async def test_raising_operation_keeps_firing(scheduler, oplog):
    target = Target()

    async def op(t):
        raise ValueError("boom")

    (entry,) = scheduler.arm(target, {"op": op})
    try:
        await wait_until(lambda: oplog.count("fault") >= 5)
        assert scheduler.state(target) is ScheduleState.ARMED
    finally:
        await _shutdown(scheduler)
    assert oplog.count("fault") == entry.completed


@pytest.mark.asyncio
async def test_operations_interleave_in_the_log(oplog):
    scheduler = ConcurrentOperationScheduler(oplog, interval_ms=5)
    names = ("attributes", "styles", "events")

    async def op(t):
        await asyncio.sleep(0)

    scheduler.arm(Target(), {name: op for name in names})
    try:
        await asyncio.sleep(0.05)
    finally:
        await _shutdown(scheduler)

    order = [e.operation for e in oplog.read_all() if e.operation in names]
    assert set(order) == set(names)
    runs = 1 + sum(1 for prev, cur in zip(order, order[1:]) if prev != cur)
    # not one contiguous block per operation
    assert runs > len(names)
