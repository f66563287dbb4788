"""
Bridge between transport callbacks and the run statistics.

The transport invokes these handlers from its own threads. Nothing raised
here may propagate back into the transport: errors are logged and turned
into aggregator state or an abort request.
"""

import logging
import time
from typing import Callable, Union

from longhaul.errors import TrackingError
from longhaul.models import (
    ConfirmationResult,
    ConnectionStatus,
    ConnectionStatusReason,
    ContentKind,
    DispositionResult,
    NULL_ID,
    InboundMessage,
    ReceiveRecord,
    SendOutcome,
    is_unrecoverable,
)
from longhaul.statistics import StatisticsAggregator
from longhaul.telemetry_loop import AbortSignal

LOG = logging.getLogger(__name__)


def is_stop_sentinel(body: Union[bytes, str, None], sentinel: str) -> bool:
    """Exact comparison of a message body with the stop sentinel."""
    if body is None:
        return False
    if isinstance(body, (bytes, bytearray)):
        return bytes(body) == sentinel.encode("utf-8")
    return body == sentinel


def extract_receive_record(message: InboundMessage, timestamp: float) -> ReceiveRecord:
    body = message.body
    if isinstance(body, (bytes, bytearray)):
        kind, size = ContentKind.BYTEARRAY, len(body)
    elif isinstance(body, str):
        kind, size = ContentKind.STRING, len(body.encode("utf-8"))
    else:
        kind, size = ContentKind.UNKNOWN, 0

    return ReceiveRecord(
        timestamp=timestamp,
        message_id=message.message_id or NULL_ID,
        correlation_id=message.correlation_id or NULL_ID,
        content_kind=kind,
        size=size,
        property_count=len(message.properties),
        content_type=message.content_type or NULL_ID,
        content_encoding=message.content_encoding or NULL_ID,
    )


class ConfirmationCorrelator:
    """Transport callback handlers for one run."""

    def __init__(
        self,
        aggregator: StatisticsAggregator,
        abort_signal: AbortSignal,
        stop_sentinel: str = "quit",
        clock: Callable[[], float] = time.time,
    ):
        self.aggregator = aggregator
        self.abort_signal = abort_signal
        self.stop_sentinel = stop_sentinel
        self._clock = clock

    def on_confirmation(self, tracking_id: int, result: ConfirmationResult) -> None:
        outcome = SendOutcome.from_confirmation(result)
        try:
            record = self.aggregator.complete_send(tracking_id, outcome, detail=result.value)
        except TrackingError as e:
            if e.fatal:
                LOG.error(f"❌ Tracking consistency violated: {e}")
                self.abort_signal.trigger(str(e))
            else:
                LOG.warning(f"⚠️ {e}")
            return
        except Exception:
            LOG.exception(f"Unexpected error handling confirmation for {tracking_id}")
            return

        if outcome == SendOutcome.OK:
            LOG.debug(
                f"Confirmation for {tracking_id}: {result.value} "
                f"({record.latency_seconds * 1000:.1f} ms)"
            )
        else:
            LOG.warning(f"Send {tracking_id} confirmed with {result.value}")

    def on_connection_status(
        self, status: ConnectionStatus, reason: ConnectionStatusReason
    ) -> None:
        try:
            self.aggregator.record_connection_status(status, reason)
        except Exception:
            LOG.exception("Failed to record connection status")
            return
        if is_unrecoverable(status, reason):
            LOG.error(f"❌ Connection lost permanently: {reason.value}")
            self.abort_signal.trigger(f"connection lost: {status.value}/{reason.value}")

    def on_receive(self, message: InboundMessage) -> DispositionResult:
        try:
            record = extract_receive_record(message, self._clock())
            self.aggregator.record_receive(record)
        except Exception:
            LOG.exception("Failed to process inbound message")
            return DispositionResult.ABANDONED

        LOG.debug(
            f"Received message {record.message_id} (correlation {record.correlation_id}, "
            f"{record.content_kind.value}, {record.size} bytes, {record.property_count} properties)"
        )
        if is_stop_sentinel(message.body, self.stop_sentinel):
            LOG.info(f"🛑 Stop message '{self.stop_sentinel}' received")
            self.abort_signal.trigger(f"stop message '{self.stop_sentinel}' received")
        return DispositionResult.ACCEPTED

    def attach(self, transport) -> None:
        """Register all handlers on a transport."""
        transport.set_confirmation_callback(self.on_confirmation)
        transport.set_connection_status_callback(self.on_connection_status)
        transport.set_message_callback(self.on_receive)
