"""
Exception hierarchy for the long-haul harness.

Tracking errors describe violations of the tracking-id correlation between
dispatched sends and their asynchronous confirmations. Each one declares
whether it invalidates the run (``fatal``).
"""

import time
from typing import Any, Dict, Optional


class HarnessError(Exception):
    """Base exception for all harness errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}
        self.timestamp = time.time()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": str(self),
            "context": self.context,
            "timestamp": self.timestamp,
        }


class TrackingError(HarnessError):
    """Tracking-id bookkeeping error."""

    fatal = True

    def __init__(self, tracking_id: int, message: str, context: Optional[Dict[str, Any]] = None):
        context = dict(context or {})
        context.setdefault("tracking_id", tracking_id)
        super().__init__(message, context)
        self.tracking_id = tracking_id


class DuplicateTrackingId(TrackingError):
    """begin_send() called twice with the same tracking id."""

    fatal = True

    def __init__(self, tracking_id: int):
        super().__init__(tracking_id, f"tracking id {tracking_id} was already used in this run")


class UnknownTrackingId(TrackingError):
    """Confirmation received for a tracking id that was never sent."""

    fatal = True

    def __init__(self, tracking_id: int):
        super().__init__(tracking_id, f"confirmation for unknown tracking id {tracking_id}")


class DoubleCompletion(TrackingError):
    """Second confirmation for an already completed send. The first result wins."""

    fatal = False

    def __init__(self, tracking_id: int, first_outcome: str, second_outcome: str):
        super().__init__(
            tracking_id,
            f"tracking id {tracking_id} already completed with {first_outcome}, "
            f"ignoring {second_outcome}",
            {"first_outcome": first_outcome, "second_outcome": second_outcome},
        )


class TransportError(HarnessError):
    """Synchronous dispatch failure reported by a transport."""

    pass


class ConfigurationError(HarnessError):
    """Exception raised for configuration loading/validation errors"""

    pass


class HarnessStateError(HarnessError):
    """Operation not allowed in the current lifecycle state."""

    pass
