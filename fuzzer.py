import argparse
import asyncio
import json
import logging
import random
import shlex
import sys
import xml.etree.ElementTree as ET
from typing import Any, Dict, Iterable, List, Optional

from adapters.base import TargetAdapter
from adapters.buffer import BufferAdapter
from adapters.element import ElementAdapter
from adapters.objects import ObjectAdapter
from adapters.process import ProcessAdapter, ProcessSession
from config import FuzzConfig, load_config
from containment import FAULT, guard_sync
from errors import AdapterFault, ConfigError
from mutators.string_mutator import StringMutator
from oplog import OperationLog
from pool import ValuePool
from scheduler import ConcurrentOperationScheduler, ScheduleEntry
from traversal import FuzzRoutine, RecursiveTraversal

log = logging.getLogger("racefuzz")

REPORT_EVERY = 4.0
DRAIN_TIMEOUT = 5.0
DEFAULT_DURATION = 60.0
IDLE_SLEEP = 0.01


# --- Adapter factory ---
def get_adapter_by_family(family: str, pool: ValuePool, mutator: StringMutator,
                          oplog: OperationLog, **kwargs) -> TargetAdapter:
    mapping = {
        "dom": ElementAdapter,
        "gpu": BufferAdapter,
        "buffer": BufferAdapter,
        "object": ObjectAdapter,
        "process": ProcessAdapter,
    }
    cls = mapping.get(family)
    if cls is None:
        raise ValueError(f"unknown target family {family!r}")
    if cls in (ObjectAdapter, ProcessAdapter):
        kwargs.setdefault("oplog", oplog)
    return cls(pool, mutator, **kwargs)


def build_components(config: FuzzConfig):
    rng = random.Random(config.seed) if config.seed is not None else random.Random()
    pool = ValuePool.default(config.random_strings, config.random_string_length, rng=rng)
    mutator = StringMutator(rng=rng)
    return pool, mutator, OperationLog()


# --- Fuzzer class wiring traversal and scheduler ---
class Fuzzer:
    """One target family: its adapter, routine and traversal over a scheduler that may be shared."""

    def __init__(self, adapter: TargetAdapter, config: Optional[FuzzConfig] = None, oplog: Optional[OperationLog] = None,
                 scheduler: Optional[ConcurrentOperationScheduler] = None):
        self.adapter = adapter
        self.config = config or FuzzConfig()
        if oplog is None:
            oplog = getattr(adapter, "oplog", None)
        self.oplog = oplog if oplog is not None else OperationLog()
        self.routine = FuzzRoutine(adapter, adapter.pool, adapter.mutator, self.oplog, self.config)
        if scheduler is None:
            scheduler = ConcurrentOperationScheduler(self.oplog, self.config.interval_ms, self.config.max_in_flight)
        self.scheduler = scheduler
        on_visit = self._arm_descendant if self.config.race_descendants else None
        self.traversal = RecursiveTraversal(self.routine, on_visit=on_visit)
        self.targets: List[Any] = []
        self.passes = 0

    def roster(self) -> Dict[str, Any]:
        full = self.routine.operations()
        wanted = self.config.operation_roster
        if not wanted:
            return full
        for name in wanted:
            if name not in full:
                log.warning("[*] unknown operation '%s' for %s targets (ignored)", name, self.adapter.family)
        return {name: op for name, op in full.items() if name in wanted}

    def arm(self, target) -> List[ScheduleEntry]:
        label = guard_sync(self.oplog, "describe", self.adapter.describe, target, fault=AdapterFault)
        return self.scheduler.arm(target, self.roster(), label=label)

    def _arm_descendant(self, target, depth: int):
        if depth > 0:
            self.arm(target)

    def attach(self, targets: Iterable[Any]):
        for target in targets:
            if target is None:
                continue
            self.targets.append(target)
            self.oplog.append("startFuzzing", f"Starting {self.adapter.family} fuzzing")
            self.arm(target)

    async def run_pass(self, target):
        await self.traversal.traverse(target)
        self.passes += 1

    async def run_passes(self) -> bool:
        for target in list(self.targets):
            await self.run_pass(target)
        return bool(self.targets)

    async def start(self, targets: Iterable[Any]):
        """Arm every target, then run one traversal pass over each."""
        self.attach(targets)
        await self.run_passes()

    async def run(self, targets: Iterable[Any], duration: float = DEFAULT_DURATION) -> dict:
        combined = CombinedFuzzer(self.config, self.oplog, self.scheduler)
        combined.include(self, targets)
        await combined.run(duration)
        return self.summary(combined.elapsed)

    async def stop(self):
        self.scheduler.cancel_all()
        await self.scheduler.drain(DRAIN_TIMEOUT)
        await self.close()

    async def close(self):
        closer = getattr(self.adapter, "close", None)
        if closer is None:
            return
        for target in self.targets:
            await closer(target)

    def report(self, elapsed: float):
        s = self.summary(elapsed)
        rate = s["fired"] / elapsed if elapsed > 0 else 0.0
        log.info("[*] %s: fired=%d (%.0f/s) passes=%d faults=%d crashes=%d in_flight=%d elapsed=%.1fs",
                 self.adapter.family, s["fired"], rate, s["passes"], s["faults"], s["crashes"],
                 self.scheduler.in_flight(), elapsed)

    def summary(self, elapsed: float = 0.0) -> dict:
        return _summary(self.oplog, self.scheduler, self.passes, elapsed)


class CombinedFuzzer:
    """
    Several target families in one run.

    Every family shares the OperationLog and the scheduler, and the caller
    hands them the same pool and mutator, so operations against a DOM tree,
    a buffer and a live process all race on one event loop. The run is bounded
    by wall-clock duration: a traversal pass still going when time is up is
    cancelled, not waited for.
    """

    def __init__(self, config: Optional[FuzzConfig] = None, oplog: Optional[OperationLog] = None,
                 scheduler: Optional[ConcurrentOperationScheduler] = None):
        self.config = config or FuzzConfig()
        self.oplog = oplog if oplog is not None else OperationLog()
        if scheduler is None:
            scheduler = ConcurrentOperationScheduler(self.oplog, self.config.interval_ms, self.config.max_in_flight)
        self.scheduler = scheduler
        self.fuzzers: List[Fuzzer] = []
        self._pending: List[tuple] = []
        self.elapsed = 0.0

    def add(self, adapter: TargetAdapter, targets: Iterable[Any]) -> Fuzzer:
        fuzzer = Fuzzer(adapter, self.config, self.oplog, self.scheduler)
        self.include(fuzzer, targets)
        return fuzzer

    def include(self, fuzzer: Fuzzer, targets: Iterable[Any]):
        self.fuzzers.append(fuzzer)
        self._pending.append((fuzzer, list(targets)))

    @property
    def families(self) -> List[str]:
        return [f.adapter.family for f in self.fuzzers]

    @property
    def passes(self) -> int:
        return sum(f.passes for f in self.fuzzers)

    async def start(self):
        """Arm every family's targets, then run one pass per family in order."""
        pending, self._pending = self._pending, []
        for fuzzer, targets in pending:
            fuzzer.attach(targets)
        for fuzzer, _ in pending:
            await fuzzer.run_passes()

    async def run(self, duration: float = DEFAULT_DURATION) -> dict:
        loop = asyncio.get_running_loop()
        start = loop.time()
        last_report = start
        deadline = asyncio.timeout(duration)
        try:
            async with deadline:
                await self.start()
                while True:
                    traversed = False
                    for fuzzer in self.fuzzers:
                        traversed = await fuzzer.run_passes() or traversed
                        now = loop.time()
                        if now - last_report >= REPORT_EVERY:
                            self.report(now - start)
                            last_report = now
                    # let the armed operations run even when there is nothing to traverse
                    await asyncio.sleep(0 if traversed else IDLE_SLEEP)
        except TimeoutError:
            if not deadline.expired():
                raise
        finally:
            await self.stop()
            self.elapsed = loop.time() - start
        summary = self.summary(self.elapsed)
        log.info("[*] Finished fuzzing %s targets. %s", ", ".join(self.families),
                 " ".join(f"{k}={v}" for k, v in summary.items()))
        return summary

    async def stop(self):
        self.scheduler.cancel_all()
        await self.scheduler.drain(DRAIN_TIMEOUT)
        for fuzzer in self.fuzzers:
            await fuzzer.close()

    def report(self, elapsed: float):
        s = self.summary(elapsed)
        rate = s["fired"] / elapsed if elapsed > 0 else 0.0
        log.info("[*] %s: fired=%d (%.0f/s) passes=%d faults=%d crashes=%d in_flight=%d elapsed=%.1fs",
                 "+".join(self.families), s["fired"], rate, s["passes"], s["faults"], s["crashes"],
                 self.scheduler.in_flight(), elapsed)

    def summary(self, elapsed: float = 0.0) -> dict:
        return _summary(self.oplog, self.scheduler, self.passes, elapsed)


def _summary(oplog: OperationLog, scheduler: ConcurrentOperationScheduler, passes: int, elapsed: float) -> dict:
    entries = scheduler.all_entries()
    return {
        "events": len(oplog),
        "faults": oplog.count(FAULT),
        "crashes": oplog.count("crash"),
        "fired": sum(e.fired for e in entries),
        "skipped": sum(e.skipped for e in entries),
        "passes": passes,
        "elapsed": round(elapsed, 1),
    }


async def fuzz_target(args, config: FuzzConfig) -> dict:
    pool, mutator, oplog = build_components(config)
    combined = CombinedFuzzer(config, oplog)
    if args.xml:
        root = ET.parse(args.xml).getroot()
        combined.add(get_adapter_by_family("dom", pool, mutator, oplog, document=root), [root])
        log.info("[*] Fuzzing DOM of %s for %.0f seconds.", args.xml, args.duration)
    if args.binary:
        adapter = get_adapter_by_family("process", pool, mutator, oplog, exec_timeout=args.exec_timeout)
        combined.add(adapter, [ProcessSession(argv=shlex.split(args.binary))])
        log.info("[*] Fuzzing session %s for %.0f seconds.", args.binary, args.duration)

    summary = await combined.run(args.duration)
    if args.dump_log:
        json.dump([e.as_dict() for e in oplog.read_all()], sys.stdout, indent=2, default=repr)
        sys.stdout.write("\n")
    return summary


def parse_args(argv=None):
    ap = argparse.ArgumentParser(prog="racefuzz", description="Race-oriented mutation fuzzer for live targets.")
    ap.add_argument("--xml", help="fuzz the element tree of this XML document")
    ap.add_argument("--binary", help="fuzz a long-running program (command line, shell-quoted)")
    ap.add_argument("--config", help="JSON or TOML configuration file")
    ap.add_argument("--duration", type=float, default=DEFAULT_DURATION, help="seconds to run (default: %(default)s)")
    ap.add_argument("--exec-timeout", type=float, default=1.0, help="per-call timeout for process targets")
    ap.add_argument("--max-depth", type=int, help="override max_depth")
    ap.add_argument("--interval-ms", type=float, help="override interval_ms")
    ap.add_argument("--roster", help="comma separated operation names to enable")
    ap.add_argument("--seed", type=int, help="seed the value pool and mutator")
    ap.add_argument("--dump-log", action="store_true", help="print the operation log as JSON on exit")
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args(argv)
    if not args.xml and not args.binary:
        ap.error("at least one of --xml or --binary is required")
    return args


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        config = load_config(args.config, {
            "max_depth": args.max_depth,
            "interval_ms": args.interval_ms,
            "operation_roster": args.roster,
            "seed": args.seed,
        })
    except ConfigError as e:
        log.error("[config] %s", e)
        return 2
    try:
        asyncio.run(fuzz_target(args, config))
    except KeyboardInterrupt:
        log.info("[*] interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
