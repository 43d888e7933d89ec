"""
Single place where the log-and-continue policy lives.

Every adapter call and every hot-path draw or mutation goes through guard().
A fault aborts only that one call: it is classified, recorded as a ``fault``
event in the OperationLog and turned into ``None``. Faults are never retried;
the failed operation waits for its next scheduled firing.
"""
import logging
from typing import Any, Callable, Optional

from errors import AdapterFault, GenerationFault, RaceFuzzError, TraversalFault
from oplog import OperationLog
from utils import maybe_await

log = logging.getLogger(__name__)

FAULT = "fault"


def classify_fault(exc: BaseException, default=AdapterFault) -> type:
    if isinstance(exc, RaceFuzzError):
        return type(exc)
    # Containers resized under an iterating caller.
    if isinstance(exc, RuntimeError) and "changed size during iteration" in str(exc):
        return TraversalFault
    if isinstance(exc, (IndexError, KeyError, StopIteration)) and default is TraversalFault:
        return TraversalFault
    return default


def _record(oplog: OperationLog, operation: str, exc: Exception, default) -> None:
    kind = classify_fault(exc, default)
    message = str(exc) or exc.__class__.__name__
    oplog.append(FAULT, {
        "operation": operation,
        "fault": kind.__name__,
        "error": exc.__class__.__name__,
        "message": message[:512],
    })
    log.debug("[%s] %s contained: %s", operation, kind.__name__, message[:200])


async def guard(oplog: OperationLog, operation: str, fn: Callable, *args,
                fault=AdapterFault, **kwargs) -> Optional[Any]:
    try:
        return await maybe_await(fn(*args, **kwargs))
    except Exception as exc:
        _record(oplog, operation, exc, fault)
        return None


def guard_sync(oplog: OperationLog, operation: str, fn: Callable, *args,
               fault=GenerationFault, **kwargs) -> Optional[Any]:
    try:
        return fn(*args, **kwargs)
    except Exception as exc:
        _record(oplog, operation, exc, fault)
        return None
