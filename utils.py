import hashlib
import inspect
import signal
from datetime import datetime, timezone

CRASH_SIGNALS = (signal.SIGSEGV, signal.SIGABRT, signal.SIGBUS, signal.SIGILL, signal.SIGFPE)


def signal_name(sig: int) -> str:
    try:
        return signal.Signals(sig).name
    except ValueError:
        return f"SIG{sig}"


def parse_signal(kind) -> signal.Signals:
    """Resolve 'SIGUSR1', 'usr1', 10 or a Signals member to a Signals member."""
    if isinstance(kind, signal.Signals):
        return kind
    if isinstance(kind, int):
        return signal.Signals(kind)
    name = str(kind).strip().upper()
    if not name.startswith("SIG"):
        name = "SIG" + name
    return signal.Signals[name]


def is_crash_signal(sig) -> bool:
    return sig is not None and sig in CRASH_SIGNALS


def triage_key(out: bytes, err: bytes) -> str:
    return hashlib.blake2b(
        (out[:256] if out else b"") + b"|" + (err[:256] if err else b""),
        digest_size=16,
    ).hexdigest()


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


async def maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value
