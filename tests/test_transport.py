"""
Tests for the loopback transport.
"""

import logging
import threading

import pytest

from longhaul.errors import TransportError
from longhaul.models import (
    ConfirmationResult,
    ConnectionStatus,
    ConnectionStatusReason,
    DispositionResult,
    TelemetryMessage,
)
from longhaul.transport import LoopbackTransport, Transport, TransportOptions


class Recorder:
    def __init__(self, expected=1):
        self.confirmations = []
        self.statuses = []
        self.messages = []
        self._done = threading.Event()
        self._expected = expected

    def on_confirmation(self, tracking_id, result):
        self.confirmations.append((tracking_id, result))
        if len(self.confirmations) >= self._expected:
            self._done.set()

    def on_status(self, status, reason):
        self.statuses.append((status, reason))

    def on_message(self, message):
        self.messages.append(message)
        return DispositionResult.ACCEPTED

    def wait(self, timeout=5.0):
        return self._done.wait(timeout)

    def attach(self, transport):
        transport.set_confirmation_callback(self.on_confirmation)
        transport.set_connection_status_callback(self.on_status)
        transport.set_message_callback(self.on_message)


def message(tracking_id):
    return TelemetryMessage(tracking_id=tracking_id, body=b"{}", message_id=f"run:{tracking_id}")


class TestLoopbackTransport:
    def test_is_a_transport(self):
        assert isinstance(LoopbackTransport(), Transport)

    def test_connect_reports_authenticated(self):
        transport = LoopbackTransport()
        recorder = Recorder()
        recorder.attach(transport)
        transport.connect()

        assert transport.connected
        assert recorder.statuses == [(ConnectionStatus.AUTHENTICATED, ConnectionStatusReason.OK)]

    def test_send_before_connect_fails(self):
        with pytest.raises(TransportError):
            LoopbackTransport().send_event_async(message(0))

    def test_confirmation_delivered_asynchronously(self):
        transport = LoopbackTransport(confirm_latency_seconds=0.05)
        recorder = Recorder()
        recorder.attach(transport)
        transport.connect()

        assert transport.send_event_async(message(3)) == 3
        assert recorder.wait()
        assert recorder.confirmations == [(3, ConfirmationResult.OK)]
        transport.close()

    def test_fail_every(self):
        transport = LoopbackTransport(confirm_latency_seconds=0.0, fail_every=3)
        recorder = Recorder(expected=6)
        recorder.attach(transport)
        transport.connect()
        for tid in range(6):
            transport.send_event_async(message(tid))

        assert recorder.wait()
        results = [r for _, r in recorder.confirmations]
        assert results.count(ConfirmationResult.ERROR) == 2
        transport.close()

    def test_fail_dispatch(self):
        transport = LoopbackTransport(fail_dispatch=lambda tid: tid == 2)
        transport.connect()
        transport.send_event_async(message(1))
        with pytest.raises(TransportError) as exc_info:
            transport.send_event_async(message(2))
        assert exc_info.value.context["tracking_id"] == 2
        transport.close()

    def test_echo_correlates_to_sent_message(self):
        transport = LoopbackTransport(confirm_latency_seconds=0.01, echo=True)
        recorder = Recorder()
        recorder.attach(transport)
        transport.connect()
        transport.send_event_async(message(4))

        assert recorder.wait()
        assert len(recorder.messages) == 1
        assert recorder.messages[0].correlation_id == "run:4"
        assert recorder.messages[0].body == b"{}"
        transport.close()

    def test_close_flushes_outstanding_with_because_destroy(self):
        transport = LoopbackTransport(confirm_latency_seconds=10.0)
        recorder = Recorder(expected=2)
        recorder.attach(transport)
        transport.connect()
        transport.send_event_async(message(0))
        transport.send_event_async(message(1))

        transport.close()

        assert sorted(recorder.confirmations) == [
            (0, ConfirmationResult.BECAUSE_DESTROY),
            (1, ConfirmationResult.BECAUSE_DESTROY),
        ]
        assert not transport.connected

    def test_options_are_kept(self):
        transport = LoopbackTransport()
        options = TransportOptions(product_info="probe", service_keep_alive_seconds=60)
        transport.set_options(options)
        assert transport.options is options

    @pytest.mark.parametrize("kwargs", [{"confirm_latency_seconds": -1}, {"fail_every": -2}])
    def test_invalid_arguments(self, kwargs):
        with pytest.raises(ValueError):
            LoopbackTransport(**kwargs)

    def test_inject_without_handler(self):
        assert LoopbackTransport().inject_message(b"quit") is None

    def test_trace_logging_follows_options(self, caplog):
        transport = LoopbackTransport(confirm_latency_seconds=0.0)
        recorder = Recorder(expected=2)
        recorder.attach(transport)
        transport.connect()

        with caplog.at_level(logging.DEBUG, logger="longhaul.transport"):
            transport.set_options(TransportOptions(log_trace=False))
            transport.send_event_async(message(0))
            transport.set_options(TransportOptions(log_trace=True))
            transport.send_event_async(message(1))
            assert recorder.wait()
        transport.close()

        traced = [r.getMessage() for r in caplog.records if r.getMessage().startswith("->")]
        assert traced == ["-> run:1 (2 bytes)"]
