import logging
import threading
from dataclasses import dataclass, asdict
from typing import Any, List

from utils import utc_timestamp

log = logging.getLogger("racefuzz.oplog")


@dataclass(frozen=True)
class LogEvent:
    timestamp: str
    operation: str
    details: Any

    def as_dict(self) -> dict:
        return asdict(self)


class OperationLog:
    """
    Append-only record of what the harness did to its targets.

    Ordering is arrival order. Entries are never mutated after append; read_all
    hands back a copy so a reader cannot disturb later appends.
    """

    def __init__(self):
        self._events: List[LogEvent] = []
        # asyncio callbacks never preempt each other, but the process adapter's
        # reader and a driver thread may both append.
        self._lock = threading.Lock()

    def append(self, operation: str, details: Any = None, timestamp: str = None) -> LogEvent:
        event = LogEvent(timestamp or utc_timestamp(), operation, details)
        with self._lock:
            self._events.append(event)
        log.debug("%s: %s", operation, details)
        return event

    def log(self, operation: str, details: Any = None) -> LogEvent:
        return self.append(operation, details)

    def read_all(self) -> List[LogEvent]:
        with self._lock:
            return list(self._events)

    def clear(self):
        with self._lock:
            self._events = []

    def count(self, operation: str) -> int:
        with self._lock:
            return sum(1 for e in self._events if e.operation == operation)

    def __len__(self):
        with self._lock:
            return len(self._events)
