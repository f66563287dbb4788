"""
Pytest configuration and shared fixtures for long-haul harness tests.

This module provides common fixtures and configuration for all test modules.
"""

import logging
import random
import threading

import pytest

from longhaul.config import HarnessConfig
from longhaul.correlator import ConfirmationCorrelator
from longhaul.statistics import StatisticsAggregator
from longhaul.telemetry_loop import AbortSignal
from longhaul.transport import LoopbackTransport


# Configure logging for tests
logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

# Per-send debug lines are noisy in timing tests
logging.getLogger('longhaul.telemetry_loop').setLevel(logging.INFO)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds

    def set(self, value: float) -> None:
        with self._lock:
            self.now = value


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def aggregator():
    return StatisticsAggregator()


@pytest.fixture
def clocked_aggregator(fake_clock):
    return StatisticsAggregator(clock=fake_clock, monotonic_clock=fake_clock)


@pytest.fixture
def abort_signal():
    return AbortSignal()


@pytest.fixture
def correlator(aggregator, abort_signal):
    return ConfirmationCorrelator(aggregator, abort_signal, stop_sentinel="quit")


@pytest.fixture
def loopback():
    """Connected loopback transport confirming OK after 50 ms."""
    transport = LoopbackTransport(confirm_latency_seconds=0.05)
    yield transport
    transport.close()


@pytest.fixture
def fast_config():
    """Short run suitable for timing tests."""
    return HarnessConfig(
        duration_seconds=3.0,
        send_interval_seconds=1.0,
        drain_timeout_seconds=2.0,
    )


@pytest.fixture
def seeded_rng():
    return random.Random(42)
