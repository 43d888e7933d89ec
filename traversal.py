import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from adapters.base import TargetAdapter
from config import FuzzConfig
from containment import guard, guard_sync
from errors import AdapterFault, GenerationFault, TraversalFault
from mutators.string_mutator import StringMutator
from oplog import OperationLog
from pool import ValuePool

log = logging.getLogger(__name__)

Operation = Callable[[Any], Awaitable[Any]]


class FuzzRoutine:
    """
    The per-target mutation steps, shared by the traversal and the scheduler.

    Each step calls the adapter through guard() and pauses for throttle_ms
    between calls; those pauses are where other operations interleave.
    """

    def __init__(self, adapter: TargetAdapter, pool: ValuePool, mutator: StringMutator,
                 oplog: OperationLog, config: Optional[FuzzConfig] = None):
        self.adapter = adapter
        self.pool = pool
        self.mutator = mutator
        self.oplog = oplog
        self.config = config or FuzzConfig()

    async def throttle(self):
        await asyncio.sleep(self.config.throttle_ms / 1000.0)

    def draw(self, kind: str = "string"):
        return guard_sync(self.oplog, "draw", self.pool.draw, kind, fault=GenerationFault)

    def fuzz_value(self, kind: str = "string"):
        seed = self.draw(kind)
        mutated = guard_sync(self.oplog, "mutate", self.mutator.mutate, seed, fault=GenerationFault)
        return "" if mutated is None else mutated

    async def fuzz_random_attributes(self, target):
        for _ in range(self.config.iterations_per_batch):
            key = f"data-fuzz-{self.pool.random_token(5)}"
            await guard(self.oplog, "set_key", self.adapter.set_key, target, key, self.draw())
            await guard(self.oplog, "set_key", self.adapter.set_key, target, key, self.fuzz_value())
            await self.throttle()

    async def modify_attributes(self, target):
        for name in self.adapter.attribute_names:
            await guard(self.oplog, "set_key", self.adapter.set_key, target, name, self.fuzz_value())
            await self.throttle()

    async def modify_styles(self, target):
        for dimension in self.adapter.style_dimensions:
            value = guard_sync(self.oplog, "style_value", self.adapter.style_value, dimension)
            await guard(self.oplog, "set_style_like", self.adapter.set_style_like, target, dimension, value)
            await self.throttle()

    async def trigger_events(self, target):
        for kind in self.adapter.event_kinds:
            await guard(self.oplog, "dispatch", self.adapter.dispatch, target, kind)
            await self.throttle()

    async def modify_content(self, target):
        await guard(self.oplog, "mutate_content", self.adapter.mutate_content, target)
        await self.throttle()

    async def structural_changes(self, target):
        await guard(self.oplog, "mutate_structure", self.adapter.mutate_structure, target)
        await self.throttle()

    async def fuzz_node(self, target):
        await self.fuzz_random_attributes(target)
        await self.modify_attributes(target)
        await self.modify_styles(target)
        await self.trigger_events(target)
        await self.modify_content(target)

    def operations(self) -> Dict[str, Operation]:
        """Full roster: the five base operations plus the adapter's extras."""
        roster: Dict[str, Operation] = {
            "attributes": self.modify_attributes,
            "styles": self.modify_styles,
            "events": self.trigger_events,
            "content": self.modify_content,
            "structure": self.structural_changes,
        }
        for name, fn in self.adapter.extra_operations().items():
            roster[name] = self._extra(name, fn)
        return roster

    def _extra(self, name: str, fn) -> Operation:
        async def run(target):
            await guard(self.oplog, name, fn, target)
            await self.throttle()
        run.__name__ = name
        return run


class RecursiveTraversal:
    """
    Depth-first, parent before children, bounded by config.max_depth.

    The children list is snapshotted before recursing; the live tree may keep
    changing underneath (other operations are racing it), and a child that has
    been detached meanwhile is still visited as a plain object.
    """

    def __init__(self, routine: FuzzRoutine, on_visit: Optional[Callable[[Any, int], None]] = None):
        self.routine = routine
        self.on_visit = on_visit
        self.visits = 0

    @property
    def max_depth(self) -> int:
        return self.routine.config.max_depth

    async def traverse(self, target, depth: int = 0):
        if depth > self.max_depth:
            return
        self.visits += 1
        routine = self.routine
        if log.isEnabledFor(logging.DEBUG):
            label = guard_sync(routine.oplog, "describe", routine.adapter.describe, target, fault=AdapterFault)
            log.debug("visit depth=%d %s", depth, label)
        await routine.fuzz_node(target)
        if self.on_visit is not None:
            self.on_visit(target, depth)
        kids = await guard(routine.oplog, "children", routine.adapter.children, target, fault=TraversalFault)
        for child in list(kids or ()):
            await self.traverse(child, depth + 1)
