"""
Run statistics aggregation.

StatisticsAggregator is the only state shared between the telemetry loop
and the transport callbacks. Every mutating operation runs inside one
critical section per aggregator instance.
"""

import logging
import statistics
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Tuple

from longhaul.errors import DoubleCompletion, DuplicateTrackingId, UnknownTrackingId
from longhaul.event_log import EventKind, EventLog
from longhaul.models import (
    ConnectionStatus,
    ConnectionStatusEvent,
    ConnectionStatusReason,
    LatencyStats,
    LoopState,
    ReceiveRecord,
    RunReport,
    SendOutcome,
    SendRecord,
)

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunSnapshot:
    """Consistent point-in-time copy of everything the aggregator holds."""

    status_events: Tuple[ConnectionStatusEvent, ...]
    sends: Tuple[SendRecord, ...]
    receives: Tuple[ReceiveRecord, ...]
    dropped_events: int
    double_completions: int
    fatal_errors: Tuple[str, ...]
    taken_at: float


class StatisticsAggregator:
    """
    Central mutable state of a run.

    Holds the connection status history and the receive history in one
    EventLog each, and the send records in a dict keyed by tracking id.
    ``max_events`` caps each log separately, so a busy receive stream cannot
    crowd status changes out of the report.

    Wall-clock ``clock`` readings are kept for display; send latency is
    measured with ``monotonic_clock``.
    """

    def __init__(
        self,
        max_events: Optional[int] = None,
        clock: Callable[[], float] = time.time,
        monotonic_clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._monotonic = monotonic_clock
        self._lock = threading.RLock()
        self._settled = threading.Condition(self._lock)
        self._status_log = EventLog(max_events)
        self._receive_log = EventLog(max_events)
        self._sends: Dict[int, SendRecord] = {}
        self._pending = 0
        self._status = ConnectionStatus.UNSET
        self._reason = ConnectionStatusReason.UNSET
        self._last_status_time = 0.0
        self._double_completions = 0
        self._fatal_errors: List[str] = []
        self.created_at = clock()

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    def record_connection_status(
        self, status: ConnectionStatus, reason: ConnectionStatusReason
    ) -> ConnectionStatusEvent:
        """Record a status transition; the previous fields come from the last call."""
        with self._lock:
            # Keep the timeline monotonic even if the wall clock steps back
            timestamp = max(self._clock(), self._last_status_time)
            event = ConnectionStatusEvent(
                timestamp=timestamp,
                previous_status=self._status,
                previous_reason=self._reason,
                current_status=status,
                current_reason=reason,
            )
            self._status = status
            self._reason = reason
            self._last_status_time = timestamp
            self._status_log.append(EventKind.CONNECTION_STATUS, timestamp, event)

        LOG.info(
            f"Connection status: {event.previous_status.value}/{event.previous_reason.value} "
            f"-> {status.value}/{reason.value}"
        )
        return event

    def begin_send(self, tracking_id: int, message_id: Optional[str] = None) -> None:
        """
        Register a message about to be dispatched.

        Raises:
            DuplicateTrackingId: tracking id already used in this run (fatal)
        """
        with self._lock:
            if tracking_id in self._sends:
                error = DuplicateTrackingId(tracking_id)
                self._fatal_errors.append(str(error))
                raise error
            self._sends[tracking_id] = SendRecord(
                tracking_id=tracking_id,
                time_sent=self._clock(),
                message_id=message_id,
                sent_monotonic=self._monotonic(),
            )
            self._pending += 1

    def complete_send(
        self, tracking_id: int, outcome: SendOutcome, detail: Optional[str] = None
    ) -> SendRecord:
        """
        Resolve a pending send.

        Raises:
            UnknownTrackingId: no such send (fatal, nothing is modified)
            DoubleCompletion: send already resolved (non-fatal, first result kept)
        """
        if outcome == SendOutcome.PENDING:
            raise ValueError("a send cannot be completed as pending")

        with self._lock:
            record = self._sends.get(tracking_id)
            if record is None:
                error = UnknownTrackingId(tracking_id)
                self._fatal_errors.append(str(error))
                raise error
            if not record.is_pending:
                self._double_completions += 1
                raise DoubleCompletion(tracking_id, record.outcome.value, outcome.value)

            record.time_confirmed = self._clock()
            record.confirmed_monotonic = self._monotonic()
            record.outcome = outcome
            record.detail = detail
            self._pending -= 1
            if self._pending == 0:
                self._settled.notify_all()
            return replace(record)

    def record_receive(self, record: ReceiveRecord) -> None:
        with self._lock:
            self._receive_log.append(EventKind.RECEIVE, record.timestamp, record)

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    @property
    def current_status(self) -> Tuple[ConnectionStatus, ConnectionStatusReason]:
        with self._lock:
            return self._status, self._reason

    @property
    def pending_count(self) -> int:
        with self._lock:
            return self._pending

    @property
    def valid(self) -> bool:
        with self._lock:
            return not self._fatal_errors

    def get_send(self, tracking_id: int) -> Optional[SendRecord]:
        """Copy of a send record, or None."""
        with self._lock:
            record = self._sends.get(tracking_id)
            return replace(record) if record is not None else None

    def wait_for_drain(self, timeout: float) -> bool:
        """
        Block until no send is pending or the timeout elapses.

        Returns:
            True if every send has been resolved
        """
        with self._settled:
            return self._settled.wait_for(lambda: self._pending == 0, timeout=max(0.0, timeout))

    def snapshot(self) -> RunSnapshot:
        with self._lock:
            return RunSnapshot(
                status_events=tuple(e.payload for e in self._status_log.snapshot()),
                sends=tuple(replace(r) for r in self._sends.values()),
                receives=tuple(e.payload for e in self._receive_log.snapshot()),
                dropped_events=self._status_log.dropped + self._receive_log.dropped,
                double_completions=self._double_completions,
                fatal_errors=tuple(self._fatal_errors),
                taken_at=self._clock(),
            )

    def reduce(
        self,
        state: LoopState = LoopState.RUNNING,
        duration_seconds: Optional[float] = None,
        abort_reason: Optional[str] = None,
    ) -> RunReport:
        """Build a RunReport from the current snapshot. Safe to call mid-run."""
        snap = self.snapshot()
        if duration_seconds is None:
            duration_seconds = snap.taken_at - self.created_at
        return build_report(snap, state, duration_seconds, abort_reason)

    def release(self) -> None:
        """Drop all history at teardown. Counters and the current status are kept."""
        with self._lock:
            self._status_log.release()
            self._receive_log.release()
            self._sends.clear()
            self._pending = 0


def _latency_stats(samples_seconds: List[float]) -> LatencyStats:
    if not samples_seconds:
        return LatencyStats()
    samples_ms = [s * 1000.0 for s in samples_seconds]
    return LatencyStats(
        samples=len(samples_ms),
        min_ms=min(samples_ms),
        avg_ms=statistics.fmean(samples_ms),
        p50_ms=statistics.median(samples_ms),
        max_ms=max(samples_ms),
    )


def build_report(
    snap: RunSnapshot,
    state: LoopState,
    duration_seconds: float,
    abort_reason: Optional[str] = None,
) -> RunReport:
    """Reduce a snapshot to a RunReport. Pure function."""
    ok = failed = pending = 0
    latencies: List[float] = []
    for record in snap.sends:
        if record.outcome == SendOutcome.OK:
            ok += 1
            latencies.append(record.latency_seconds)
        elif record.outcome == SendOutcome.FAILED:
            failed += 1
        else:
            pending += 1

    return RunReport(
        total_sends=len(snap.sends),
        confirmed_ok=ok,
        confirmed_failed=failed,
        pending=pending,
        dropped_events=snap.dropped_events,
        double_completions=snap.double_completions,
        connection_status_changes=len(snap.status_events),
        timeline=list(snap.status_events),
        receive_count=len(snap.receives),
        duration_seconds=max(0.0, duration_seconds),
        latency=_latency_stats(latencies),
        state=state,
        valid=not snap.fatal_errors,
        fatal_errors=list(snap.fatal_errors),
        abort_reason=abort_reason,
    )
