"""
Append-only, thread-safe history of a run.

Writers are the transport callbacks and the telemetry loop; the single
reader is the report reduction, which works on snapshot().
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, List, Optional, Tuple

LOG = logging.getLogger(__name__)


class EventKind(Enum):
    CONNECTION_STATUS = "connection_status"
    RECEIVE = "receive"


@dataclass(frozen=True)
class LogEntry:
    sequence: int
    kind: EventKind
    timestamp: float
    payload: Any


class EventLog:
    """
    Ordered sequence of LogEntry objects.

    There is no removal. When an optional capacity is reached, or memory
    runs out, the entry is dropped and counted instead of failing the caller.
    """

    def __init__(self, max_entries: Optional[int] = None):
        if max_entries is not None and max_entries < 0:
            raise ValueError("max_entries must be non-negative")
        self._lock = threading.Lock()
        self._entries: List[LogEntry] = []
        self._max_entries = max_entries
        self._sequence = 0
        self._dropped = 0

    def append(self, kind: EventKind, timestamp: float, payload: Any = None) -> bool:
        """
        Append an entry at the tail.

        Returns:
            True if stored, False if dropped
        """
        with self._lock:
            if self._max_entries is not None and len(self._entries) >= self._max_entries:
                self._dropped += 1
                LOG.warning(
                    f"Event log full ({self._max_entries} entries), dropped {kind.value} "
                    f"(dropped so far: {self._dropped})"
                )
                return False
            try:
                self._entries.append(LogEntry(self._sequence, kind, timestamp, payload))
            except MemoryError:
                self._dropped += 1
                LOG.warning(f"Out of memory, dropped {kind.value} event")
                return False
            self._sequence += 1
            return True

    def snapshot(self) -> Tuple[LogEntry, ...]:
        """Immutable point-in-time view of all stored entries."""
        with self._lock:
            return tuple(self._entries)

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(self.snapshot())

    def release(self) -> None:
        """Bulk release at teardown."""
        with self._lock:
            self._entries = []
