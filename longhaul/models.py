"""
Data model of a long-haul run.

- ConnectionStatus / ConnectionStatusReason / ConfirmationResult /
  DispositionResult: values reported by the device client under test
- ConnectionStatusEvent, SendRecord, ReceiveRecord: entries of the run history
- TelemetryMessage / InboundMessage: what crosses the transport boundary
- RunReport: reduced summary of a run
"""

import json
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class ConnectionStatus(Enum):
    """Connection status reported by the transport"""

    UNSET = "unset"  # Nothing recorded yet
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


class ConnectionStatusReason(Enum):
    """Reason accompanying a connection status change"""

    UNSET = "unset"
    OK = "ok"
    EXPIRED_SAS_TOKEN = "expired_sas_token"
    DEVICE_DISABLED = "device_disabled"
    BAD_CREDENTIAL = "bad_credential"
    RETRY_EXPIRED = "retry_expired"
    NO_NETWORK = "no_network"
    COMMUNICATION_ERROR = "communication_error"
    NO_PING_RESPONSE = "no_ping_response"


# The client will not recover from these on its own
UNRECOVERABLE_REASONS = frozenset(
    {
        ConnectionStatusReason.DEVICE_DISABLED,
        ConnectionStatusReason.BAD_CREDENTIAL,
        ConnectionStatusReason.RETRY_EXPIRED,
    }
)


# Placeholder for absent message and correlation ids
NULL_ID = "<null>"


def is_unrecoverable(status: ConnectionStatus, reason: ConnectionStatusReason) -> bool:
    return status == ConnectionStatus.UNAUTHENTICATED and reason in UNRECOVERABLE_REASONS


class ConfirmationResult(Enum):
    """Final delivery result of a dispatched telemetry message"""

    OK = "ok"
    BECAUSE_DESTROY = "because_destroy"
    MESSAGE_TIMEOUT = "message_timeout"
    ERROR = "error"


class DispositionResult(Enum):
    """Answer given to the transport for an inbound message"""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ABANDONED = "abandoned"


class SendOutcome(Enum):
    PENDING = "pending"
    OK = "ok"
    FAILED = "failed"

    @classmethod
    def from_confirmation(cls, result: ConfirmationResult) -> "SendOutcome":
        return cls.OK if result == ConfirmationResult.OK else cls.FAILED


class ContentKind(Enum):
    BYTEARRAY = "bytearray"
    STRING = "string"
    UNKNOWN = "unknown"


class LoopState(Enum):
    """Lifecycle of the telemetry loop"""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


def _iso(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp).isoformat()


@dataclass(frozen=True)
class ConnectionStatusEvent:
    """One connection status transition. Never mutated once recorded."""

    timestamp: float
    previous_status: ConnectionStatus
    previous_reason: ConnectionStatusReason
    current_status: ConnectionStatus
    current_reason: ConnectionStatusReason

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": _iso(self.timestamp),
            "previous_status": self.previous_status.value,
            "previous_reason": self.previous_reason.value,
            "current_status": self.current_status.value,
            "current_reason": self.current_reason.value,
        }


@dataclass
class SendRecord:
    """
    Bookkeeping for one dispatched telemetry message.

    Created with outcome PENDING by begin_send(); completed exactly once.
    """

    tracking_id: int
    time_sent: float
    message_id: Optional[str] = None
    time_confirmed: Optional[float] = None
    outcome: SendOutcome = SendOutcome.PENDING
    detail: Optional[str] = None  # Confirmation result or dispatch error
    # Monotonic readings for latency; time_sent/time_confirmed are wall time for display
    sent_monotonic: Optional[float] = None
    confirmed_monotonic: Optional[float] = None

    @property
    def is_pending(self) -> bool:
        return self.outcome == SendOutcome.PENDING

    @property
    def latency_seconds(self) -> Optional[float]:
        if self.time_confirmed is None:
            return None
        if self.sent_monotonic is not None and self.confirmed_monotonic is not None:
            return self.confirmed_monotonic - self.sent_monotonic
        return self.time_confirmed - self.time_sent

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tracking_id": self.tracking_id,
            "message_id": self.message_id,
            "time_sent": _iso(self.time_sent),
            "time_confirmed": _iso(self.time_confirmed),
            "outcome": self.outcome.value,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class ReceiveRecord:
    """Summary of one inbound message."""

    timestamp: float
    message_id: str
    correlation_id: str
    content_kind: ContentKind
    size: int
    property_count: int
    content_type: str = NULL_ID
    content_encoding: str = NULL_ID

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": _iso(self.timestamp),
            "message_id": self.message_id,
            "correlation_id": self.correlation_id,
            "content_kind": self.content_kind.value,
            "size": self.size,
            "property_count": self.property_count,
            "content_type": self.content_type,
            "content_encoding": self.content_encoding,
        }


@dataclass
class TelemetryMessage:
    """Outbound device-to-cloud message."""

    tracking_id: int
    body: bytes
    message_id: Optional[str] = None
    properties: Dict[str, str] = field(default_factory=dict)
    content_type: Optional[str] = "application/json"
    content_encoding: Optional[str] = "utf-8"


@dataclass
class InboundMessage:
    """Cloud-to-device message as delivered by the transport."""

    body: Union[bytes, str, None]
    message_id: Optional[str] = None
    correlation_id: Optional[str] = None
    content_type: Optional[str] = None
    content_encoding: Optional[str] = None
    properties: Dict[str, str] = field(default_factory=dict)


@dataclass
class LatencyStats:
    """Confirmation latency summary in milliseconds"""

    samples: int = 0
    min_ms: float = 0.0
    avg_ms: float = 0.0
    p50_ms: float = 0.0
    max_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RunReport:
    """
    Reduced summary of a run.

    The field set is stable: tests and downstream tooling assert on it.
    """

    total_sends: int = 0
    confirmed_ok: int = 0
    confirmed_failed: int = 0
    pending: int = 0
    dropped_events: int = 0
    double_completions: int = 0
    connection_status_changes: int = 0
    timeline: List[ConnectionStatusEvent] = field(default_factory=list)
    receive_count: int = 0
    duration_seconds: float = 0.0
    latency: LatencyStats = field(default_factory=LatencyStats)
    state: LoopState = LoopState.NOT_STARTED
    valid: bool = True
    fatal_errors: List[str] = field(default_factory=list)
    abort_reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state == LoopState.COMPLETED and self.valid

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_sends": self.total_sends,
            "confirmed_ok": self.confirmed_ok,
            "confirmed_failed": self.confirmed_failed,
            "pending": self.pending,
            "dropped_events": self.dropped_events,
            "double_completions": self.double_completions,
            "connection_status_changes": self.connection_status_changes,
            "timeline": [event.to_dict() for event in self.timeline],
            "receive_count": self.receive_count,
            "duration_seconds": round(self.duration_seconds, 3),
            "latency": self.latency.to_dict(),
            "state": self.state.value,
            "valid": self.valid,
            "fatal_errors": list(self.fatal_errors),
            "abort_reason": self.abort_reason,
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)
