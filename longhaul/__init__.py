"""Long-haul reliability harness for device-to-cloud messaging clients."""

from longhaul.config import HarnessConfig, LoopbackOptions
from longhaul.correlator import ConfirmationCorrelator
from longhaul.errors import (
    ConfigurationError,
    DoubleCompletion,
    DuplicateTrackingId,
    HarnessError,
    TransportError,
    UnknownTrackingId,
)
from longhaul.event_log import EventLog
from longhaul.harness import LongHaulHarness, exit_code
from longhaul.models import LoopState, RunReport
from longhaul.statistics import StatisticsAggregator
from longhaul.telemetry_loop import AbortSignal, TelemetryLoop
from longhaul.transport import LoopbackTransport, Transport

__version__ = "0.1.0"

__all__ = [
    "AbortSignal",
    "ConfigurationError",
    "ConfirmationCorrelator",
    "DoubleCompletion",
    "DuplicateTrackingId",
    "EventLog",
    "HarnessConfig",
    "HarnessError",
    "LongHaulHarness",
    "LoopState",
    "LoopbackOptions",
    "LoopbackTransport",
    "RunReport",
    "StatisticsAggregator",
    "TelemetryLoop",
    "Transport",
    "TransportError",
    "UnknownTrackingId",
    "exit_code",
]
