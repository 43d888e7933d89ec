"""
Session family: a long-running native program driven over stdin and signals.

The session is (re)spawned lazily. Environment keys and argv flags set through
the adapter take effect at the next spawn, which mutate_structure forces. A
session found dead by a crash signal is recorded as a ``crash`` event; nothing
is written to disk.
"""
import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from adapters.base import TargetAdapter
from errors import AdapterFault
from oplog import OperationLog
from utils import is_crash_signal, parse_signal, signal_name, triage_key

log = logging.getLogger(__name__)

EXEC_TIMEOUT = 1.0
STDERR_TAIL = 4096
MAX_PAYLOAD = 1 << 16
SIGNALS = ("SIGUSR1", "SIGUSR2", "SIGHUP", "SIGWINCH", "SIGCONT")
ENV_KEYS = ("LANG", "LC_ALL", "TZ", "HOME", "TERM", "MALLOC_PERTURB_")
FLAGS = ("verbose", "mode", "size", "format", "threads")


@dataclass
class ProcessSession:
    argv: List[str]
    env: Dict[str, str] = field(default_factory=dict)
    flags: Dict[str, str] = field(default_factory=dict)
    proc: Optional[asyncio.subprocess.Process] = None
    stderr_tail: bytearray = field(default_factory=bytearray)
    spawns: int = 0
    crash_keys: set = field(default_factory=set)
    _reader: Optional[asyncio.Task] = None
    # guards the harness's own spawn bookkeeping, not the target
    _spawn_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def name(self) -> str:
        return os.path.basename(self.argv[0]) if self.argv else "<none>"

    @property
    def alive(self) -> bool:
        return self.proc is not None and self.proc.returncode is None


class ProcessAdapter(TargetAdapter):
    family = "process"
    attribute_names = ENV_KEYS
    style_dimensions = FLAGS
    event_kinds = SIGNALS

    def __init__(self, pool, mutator, oplog: Optional[OperationLog] = None, exec_timeout: float = EXEC_TIMEOUT):
        super().__init__(pool, mutator)
        self.oplog = oplog if oplog is not None else OperationLog()
        self.exec_timeout = exec_timeout

    # --- capability set ---
    def set_key(self, session: ProcessSession, key, value):
        key = str(key)
        if not key or "=" in key or "\x00" in key:
            raise AdapterFault(f"invalid environment key {key[:40]!r}")
        session.env[key] = _as_arg(value)

    def set_style_like(self, session: ProcessSession, dimension, value):
        session.flags[str(dimension)] = _as_arg(value)

    def style_value(self, dimension):
        return self.mutator.mutate(self.pool.draw("string"))[:256]

    async def dispatch(self, session: ProcessSession, event_kind):
        sig = parse_signal(event_kind)
        await self.ensure_running(session)
        try:
            session.proc.send_signal(sig)
        except ProcessLookupError:
            pass
        await self.reap(session, wait=0.01)

    async def mutate_content(self, session: ProcessSession):
        await self.ensure_running(session)
        seed = self.pool.rng.choice([self.pool.draw("bytes"), self.pool.random_module_bytes(),
                                     self.fresh_value().encode("utf-8", "surrogatepass")])
        payload = self.mutator.mutate_bytes(seed)[:MAX_PAYLOAD]
        stdin = session.proc.stdin
        try:
            stdin.write(payload)
            await asyncio.wait_for(stdin.drain(), self.exec_timeout)
        except (BrokenPipeError, ConnectionResetError):
            await self.reap(session, wait=self.exec_timeout)
            raise
        except asyncio.TimeoutError:
            raise AdapterFault(f"{session.name}: stdin stalled for {self.exec_timeout}s")

    async def mutate_structure(self, session: ProcessSession):
        async with session._spawn_lock:
            await self.terminate(session)
            await self.spawn(session)

    def children(self, session: ProcessSession):
        return []

    # --- session lifecycle ---
    async def ensure_running(self, session: ProcessSession):
        if session.alive:
            return
        async with session._spawn_lock:
            if session.alive:
                return
            if session.proc is not None:
                await self.reap(session, wait=0)
            await self.spawn(session)

    async def spawn(self, session: ProcessSession):
        env = os.environ.copy()
        env.update(session.env)
        argv = list(session.argv) + [f"--{k}={v}" for k, v in session.flags.items()]
        # fresh buffer per child: a late reaper still reads the one its child wrote
        session.stderr_tail = bytearray()
        session.proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
        session.spawns += 1
        session._reader = asyncio.ensure_future(self._drain_stderr(session.stderr_tail, session.proc))
        log.debug("[*] %s: spawned pid=%s (spawn #%d)", session.name, session.proc.pid, session.spawns)

    async def reap(self, session: ProcessSession, wait: float = 0.0) -> Optional[int]:
        proc = session.proc
        if proc is None:
            return None
        if proc.returncode is None and wait > 0:
            try:
                await asyncio.wait_for(proc.wait(), wait)
            except asyncio.TimeoutError:
                return None
        rc = proc.returncode
        if rc is None:
            return None
        if session.proc is not proc:
            # another reaper already claimed this child and records its death
            return rc
        # claim before the next await so exactly one reaper records the event
        session.proc = None
        reader, session._reader = session._reader, None
        tail = session.stderr_tail
        if reader is not None:
            try:
                await asyncio.wait_for(reader, self.exec_timeout)
            except asyncio.TimeoutError:
                pass
        sig = -rc if rc < 0 else None
        if is_crash_signal(sig):
            self._record_crash(session, sig, bytes(tail))
        else:
            self.oplog.append("exit", {"target": session.name, "rc": rc})
        return rc

    async def terminate(self, session: ProcessSession):
        proc = session.proc
        if proc is None:
            return
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(proc.wait(), self.exec_timeout)
            except asyncio.TimeoutError:
                log.warning("[*] %s: pid=%s did not exit after SIGKILL", session.name, proc.pid)
        if proc.stdin is not None:
            proc.stdin.close()
        await self.reap(session, wait=0)

    async def close(self, session: ProcessSession):
        await self.terminate(session)

    async def _drain_stderr(self, tail: bytearray, proc):
        while True:
            chunk = await proc.stderr.read(4096)
            if not chunk:
                break
            tail.extend(chunk)
            del tail[:-STDERR_TAIL]

    def _record_crash(self, session: ProcessSession, sig: int, stderr_tail: bytes):
        triage = triage_key(b"", stderr_tail)
        key = (sig, triage)
        new_unique = key not in session.crash_keys
        session.crash_keys.add(key)
        self.oplog.append("crash", {
            "target": session.name,
            "signal": signal_name(sig),
            "triage": triage,
            "unique": new_unique,
            "env": dict(session.env),
            "flags": dict(session.flags),
        })
        if new_unique:
            log.warning("[!] Crash detected in %s (%s), triage=%s", session.name, signal_name(sig), triage)


def _as_arg(value) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("latin-1")
    return value if isinstance(value, str) else str(value)
