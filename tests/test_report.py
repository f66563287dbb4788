"""
Tests for report serialization, rendering and receive verification.
"""

import json
from io import StringIO

from rich.console import Console

from longhaul.models import (
    ConnectionStatus,
    ConnectionStatusReason,
    ContentKind,
    LoopState,
    ReceiveRecord,
    RunReport,
    SendOutcome,
)
from longhaul.report import (
    render_report,
    report_to_dict,
    save_report,
    verify_telemetry_messages_received,
)
from longhaul.statistics import StatisticsAggregator


def receive(correlation_id):
    return ReceiveRecord(
        timestamp=1.0,
        message_id="echo",
        correlation_id=correlation_id,
        content_kind=ContentKind.BYTEARRAY,
        size=10,
        property_count=1,
    )


def populated_aggregator():
    aggregator = StatisticsAggregator()
    aggregator.record_connection_status(ConnectionStatus.AUTHENTICATED, ConnectionStatusReason.OK)
    for tid in range(4):
        aggregator.begin_send(tid, message_id=f"run:{tid}")
    aggregator.complete_send(0, SendOutcome.OK)
    aggregator.complete_send(1, SendOutcome.OK)
    aggregator.complete_send(2, SendOutcome.FAILED)
    return aggregator


class TestVerification:
    def setup_method(self):
        self.aggregator = populated_aggregator()

    def test_matches_by_correlation_id(self):
        aggregator = self.aggregator
        aggregator.record_receive(receive("run:0"))
        aggregator.record_receive(receive("run:2"))  # Failed send, not expected
        aggregator.record_receive(receive("other:9"))
        aggregator.record_receive(receive("<null>"))

        result = verify_telemetry_messages_received(aggregator.snapshot())

        assert result.expected == 2
        assert result.matched == 1
        assert result.missing == [1]
        assert result.unexpected == ["other:9"]
        assert not result.complete

    def test_complete_when_every_ok_send_echoed(self):
        aggregator = self.aggregator
        aggregator.record_receive(receive("run:0"))
        aggregator.record_receive(receive("run:1"))

        result = verify_telemetry_messages_received(aggregator.snapshot())
        assert result.complete
        assert result.to_dict()["complete"] is True

    def test_no_sends(self):
        result = verify_telemetry_messages_received(StatisticsAggregator().snapshot())
        assert result.expected == 0
        assert result.complete


class TestReportOutput:
    def test_save_report_writes_json(self, tmp_path):
        aggregator = populated_aggregator()
        report = aggregator.reduce(state=LoopState.COMPLETED, duration_seconds=4.0)
        verification = verify_telemetry_messages_received(aggregator.snapshot())

        path = save_report(report, tmp_path / "reports" / "run.json", verification)

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["total_sends"] == 4
        assert data["confirmed_ok"] == 2
        assert data["confirmed_failed"] == 1
        assert data["pending"] == 1
        assert data["state"] == "completed"
        assert data["timeline"][0]["previous_status"] == "unset"
        assert data["timeline"][0]["current_status"] == "authenticated"
        assert data["verification"]["expected"] == 2

    def test_report_to_dict_without_verification(self):
        data = report_to_dict(RunReport())
        assert "verification" not in data
        assert data["state"] == "not_started"

    def test_to_json_is_parseable(self):
        report = populated_aggregator().reduce(duration_seconds=1.0)
        assert json.loads(report.to_json())["connection_status_changes"] == 1

    def _render(self, report, **kwargs):
        buffer = StringIO()
        render_report(report, console=Console(file=buffer, width=120), **kwargs)
        return buffer.getvalue()

    def test_render_passed(self):
        report = populated_aggregator().reduce(state=LoopState.COMPLETED, duration_seconds=2.0)
        output = self._render(report)
        assert "PASSED" in output
        assert "Sends attempted" in output
        assert "Connection status timeline" in output

    def test_render_aborted_with_reason(self):
        report = RunReport(state=LoopState.ABORTED, abort_reason="stop message 'quit' received")
        output = self._render(report)
        assert "ABORTED" in output
        assert "quit" in output

    def test_render_invalid_lists_fatal_errors(self):
        report = RunReport(
            state=LoopState.COMPLETED,
            valid=False,
            fatal_errors=["confirmation for unknown tracking id 12"],
        )
        output = self._render(report)
        assert "FAILED" in output
        assert "unknown tracking id 12" in output
