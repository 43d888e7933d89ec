"""
Repeating, overlapping, uncoordinated operations against a shared target.

Each roster member gets its own timer on the running asyncio loop. A timer
re-arms itself *before* launching its operation, so a slow operation never
delays its own next firing and several instances of the same operation can be
in flight at once. Nothing orders one operation against another, or against a
traversal of the same target; that lack of ordering is what surfaces races in
the target.

Per target: IDLE -> ARMED -> CANCELLED. There is no way back to IDLE and no
completion; the roster runs until every entry is cancelled or the loop ends.
Cancelling stops future firings only: in-flight operations run to completion.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set

from containment import guard
from oplog import OperationLog

log = logging.getLogger(__name__)

Operation = Callable[[Any], Awaitable[Any]]


class ScheduleState(Enum):
    IDLE = "idle"
    ARMED = "armed"
    CANCELLED = "cancelled"


@dataclass(eq=False)
class ScheduleEntry:
    name: str
    operation: Operation
    interval_ms: float
    target: Any
    handle: Optional[asyncio.TimerHandle] = None
    cancelled: bool = False
    fired: int = 0
    completed: int = 0
    skipped: int = 0
    in_flight: Set[asyncio.Task] = field(default_factory=set)

    @property
    def armed(self) -> bool:
        return not self.cancelled

    def cancel(self) -> bool:
        """Stop future firings. Returns False when already cancelled."""
        if self.cancelled:
            return False
        self.cancelled = True
        if self.handle is not None:
            self.handle.cancel()
            self.handle = None
        return True


@dataclass(eq=False)
class _TargetSchedule:
    target: Any
    label: str
    entries: List[ScheduleEntry]
    state: ScheduleState = ScheduleState.ARMED


class ConcurrentOperationScheduler:
    def __init__(self, oplog: OperationLog, interval_ms: float = 5.0, max_in_flight: int = 16):
        self.oplog = oplog
        self.interval_ms = interval_ms
        self.max_in_flight = max_in_flight
        self._schedules: Dict[int, _TargetSchedule] = {}

    # --- arming ---
    def arm(self, target: Any, roster: Mapping[str, Operation],
            interval_ms: Optional[float] = None, label: Optional[str] = None) -> List[ScheduleEntry]:
        key = id(target)
        existing = self._schedules.get(key)
        if existing is not None:
            if existing.state is ScheduleState.ARMED:
                return list(existing.entries)
            log.warning("refusing to re-arm cancelled target %s", existing.label)
            return []

        loop = asyncio.get_running_loop()
        interval = self.interval_ms if interval_ms is None else interval_ms
        label = label or f"{type(target).__name__}@{key:x}"
        entries = [ScheduleEntry(name, op, interval, target) for name, op in roster.items()]
        schedule = _TargetSchedule(target, label, entries)
        self._schedules[key] = schedule
        for entry in entries:
            self._arm_timer(loop, entry)
        self.oplog.append("arm", {"target": label, "operations": [e.name for e in entries], "interval_ms": interval})
        log.info("armed %d operations on %s every %.2fms", len(entries), label, interval)
        return list(entries)

    def _arm_timer(self, loop: asyncio.AbstractEventLoop, entry: ScheduleEntry):
        entry.handle = loop.call_later(entry.interval_ms / 1000.0, self._fire, loop, entry)

    def _fire(self, loop: asyncio.AbstractEventLoop, entry: ScheduleEntry):
        if entry.cancelled:
            return
        self._arm_timer(loop, entry)
        if len(entry.in_flight) >= self.max_in_flight:
            entry.skipped += 1
            return
        entry.fired += 1
        task = loop.create_task(self._run(entry, entry.fired))
        entry.in_flight.add(task)
        task.add_done_callback(entry.in_flight.discard)

    async def _run(self, entry: ScheduleEntry, firing: int):
        self.oplog.append(entry.name, {"firing": firing})
        await guard(self.oplog, entry.name, entry.operation, entry.target)
        entry.completed += 1

    # --- cancellation ---
    def cancel(self, entry: ScheduleEntry) -> bool:
        changed = entry.cancel()
        schedule = self._schedules.get(id(entry.target))
        if schedule is not None and schedule.state is ScheduleState.ARMED and all(e.cancelled for e in schedule.entries):
            self._mark_cancelled(schedule)
        return changed

    def cancel_target(self, target: Any) -> int:
        schedule = self._schedules.get(id(target))
        if schedule is None:
            return 0
        n = sum(1 for e in schedule.entries if e.cancel())
        if schedule.state is ScheduleState.ARMED:
            self._mark_cancelled(schedule)
        return n

    def cancel_all(self) -> int:
        return sum(self.cancel_target(s.target) for s in list(self._schedules.values()))

    def _mark_cancelled(self, schedule: _TargetSchedule):
        schedule.state = ScheduleState.CANCELLED
        self.oplog.append("cancel", {
            "target": schedule.label,
            "fired": sum(e.fired for e in schedule.entries),
            "skipped": sum(e.skipped for e in schedule.entries),
        })
        log.info("cancelled all operations on %s", schedule.label)

    def forget(self, target: Any) -> bool:
        """Drop a cancelled target's bookkeeping so the reference can be released."""
        schedule = self._schedules.get(id(target))
        if schedule is None or schedule.state is not ScheduleState.CANCELLED:
            return False
        del self._schedules[id(target)]
        return True

    # --- inspection ---
    def state(self, target: Any) -> ScheduleState:
        schedule = self._schedules.get(id(target))
        return ScheduleState.IDLE if schedule is None else schedule.state

    def entries(self, target: Any) -> List[ScheduleEntry]:
        schedule = self._schedules.get(id(target))
        return [] if schedule is None else list(schedule.entries)

    def all_entries(self) -> List[ScheduleEntry]:
        return [e for s in self._schedules.values() for e in s.entries]

    @property
    def armed_targets(self) -> List[Any]:
        return [s.target for s in self._schedules.values() if s.state is ScheduleState.ARMED]

    def in_flight(self) -> int:
        return sum(len(e.in_flight) for e in self.all_entries())

    async def drain(self, timeout: Optional[float] = None):
        """Wait for operations already fired; does not stop armed timers."""
        tasks = [t for e in self.all_entries() for t in e.in_flight]
        if not tasks:
            return
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            log.warning("%d operations still in flight after %.1fs", len(pending), timeout)
