"""
Time-bounded telemetry send loop.

NOT_STARTED -> RUNNING -> (COMPLETED | ABORTED)

The loop sends one telemetry message per interval until the wall-clock
duration has elapsed or an abort is signalled. A failed send is recorded
and the loop goes on; only the abort signal ends a run early.
"""

import itertools
import json
import logging
import random
import threading
import time
import uuid
from typing import Callable, Optional

from longhaul.errors import DuplicateTrackingId, HarnessStateError, TrackingError
from longhaul.models import ConnectionStatus, LoopState, RunReport, SendOutcome, TelemetryMessage
from longhaul.statistics import StatisticsAggregator
from longhaul.transport import Transport

LOG = logging.getLogger(__name__)


class AbortSignal:
    """Cooperative cancellation flag. The first reason given wins."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: Optional[str] = None

    def trigger(self, reason: str) -> bool:
        """Returns True if this call set the signal."""
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
        LOG.warning(f"Abort requested: {reason}")
        return True

    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        with self._lock:
            return self._reason

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)


class TelemetryPayloadFactory:
    """Builds the wind-speed telemetry body sent on every cycle."""

    def __init__(
        self,
        device_id: str = "myFirstDevice",
        base_wind_speed: float = 10.0,
        rng: Optional[random.Random] = None,
    ):
        self.device_id = device_id
        self.base_wind_speed = base_wind_speed
        self._rng = rng or random.Random()

    def create(self, tracking_id: int, message_id: Optional[str] = None) -> TelemetryMessage:
        wind_speed = self.base_wind_speed + self._rng.randint(2, 5)
        body = json.dumps({"deviceId": self.device_id, "windSpeed": round(wind_speed, 2)})
        return TelemetryMessage(
            tracking_id=tracking_id,
            body=body.encode("utf-8"),
            message_id=message_id,
            properties={"trackingId": str(tracking_id)},
        )


class TelemetryLoop:
    """
    Drives the send cadence of one run.

    Sends are fire-and-forget: confirmations reach the aggregator through
    the ConfirmationCorrelator, possibly after run() has left RUNNING.
    run() waits up to ``drain_timeout_seconds`` for them before reducing
    the final report.
    """

    def __init__(
        self,
        transport: Transport,
        aggregator: StatisticsAggregator,
        payload_factory: Optional[TelemetryPayloadFactory] = None,
        abort_signal: Optional[AbortSignal] = None,
        run_id: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.transport = transport
        self.aggregator = aggregator
        self.payload_factory = payload_factory or TelemetryPayloadFactory()
        self.abort_signal = abort_signal or AbortSignal()
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self._clock = clock
        self._tracking_ids = itertools.count()
        self._state = LoopState.NOT_STARTED
        self._state_lock = threading.Lock()

    @property
    def state(self) -> LoopState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: LoopState) -> None:
        with self._state_lock:
            previous, self._state = self._state, state
        LOG.info(f"Telemetry loop {previous.value} -> {state.value}")

    def abort(self, reason: str) -> None:
        self.abort_signal.trigger(reason)

    def run(
        self,
        duration_seconds: float,
        interval_seconds: float,
        drain_timeout_seconds: float = 0.0,
    ) -> RunReport:
        """
        Run until the duration elapses or an abort is signalled.

        Blocks the calling thread. Returns the final report, reduced after
        the drain window.
        """
        if duration_seconds <= 0:
            raise ValueError("duration_seconds must be positive")
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        with self._state_lock:
            if self._state != LoopState.NOT_STARTED:
                raise HarnessStateError(
                    f"telemetry loop already {self._state.value}", {"run_id": self.run_id}
                )
            self._state = LoopState.RUNNING

        LOG.info(
            f"🚀 Long-haul run {self.run_id} started: duration={duration_seconds}s, "
            f"interval={interval_seconds}s"
        )
        start = self._clock()

        while True:
            if self.abort_signal.is_set():
                self._set_state(LoopState.ABORTED)
                break
            if self._clock() - start >= duration_seconds:
                self._set_state(LoopState.COMPLETED)
                break

            self._run_cycle()
            # Wakes up early on abort
            self.abort_signal.wait(interval_seconds)

        elapsed = self._clock() - start
        drained = self.aggregator.wait_for_drain(drain_timeout_seconds)
        if drained:
            LOG.info("All confirmations received")
        else:
            LOG.warning(
                f"Drain window of {drain_timeout_seconds}s elapsed with "
                f"{self.aggregator.pending_count} confirmation(s) still pending"
            )

        report = self.aggregator.reduce(
            state=self.state,
            duration_seconds=elapsed,
            abort_reason=self.abort_signal.reason,
        )
        LOG.info(
            f"Run {self.run_id} finished ({report.state.value}) after {elapsed:.1f}s: "
            f"sent={report.total_sends} ok={report.confirmed_ok} "
            f"failed={report.confirmed_failed} pending={report.pending}"
        )
        return report

    def _run_cycle(self) -> None:
        tracking_id = next(self._tracking_ids)
        message_id = f"{self.run_id}:{tracking_id}"

        status, reason = self.aggregator.current_status
        if status == ConnectionStatus.UNAUTHENTICATED:
            LOG.debug(f"Sending {tracking_id} while unauthenticated ({reason.value})")

        try:
            self.aggregator.begin_send(tracking_id, message_id)
        except DuplicateTrackingId as e:
            LOG.error(f"❌ {e}")
            self.abort(str(e))
            return

        try:
            message = self.payload_factory.create(tracking_id, message_id)
            self.transport.send_event_async(message)
        except Exception as e:
            LOG.warning(f"Send {tracking_id} failed to dispatch: {e}")
            try:
                self.aggregator.complete_send(
                    tracking_id, SendOutcome.FAILED, detail=f"dispatch error: {e}"
                )
            except TrackingError as tracking_error:
                LOG.warning(f"Could not record dispatch failure: {tracking_error}")
            return

        LOG.debug(f"Dispatched telemetry message {tracking_id}")
