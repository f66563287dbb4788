"""
Report output: JSON files, console rendering and receive verification.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from longhaul.models import NULL_ID, LoopState, RunReport, SendOutcome
from longhaul.statistics import RunSnapshot

LOG = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    """Which confirmed telemetry messages came back as inbound messages."""

    expected: int = 0
    matched: int = 0
    missing: List[int] = field(default_factory=list)
    unexpected: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.matched == self.expected

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expected": self.expected,
            "matched": self.matched,
            "missing": list(self.missing),
            "unexpected": list(self.unexpected),
            "complete": self.complete,
        }


def verify_telemetry_messages_received(snap: RunSnapshot) -> VerificationResult:
    """
    Match inbound messages back to confirmed sends.

    A send counts as received when an inbound message carries its message
    id as correlation id. Inbound messages without a correlation id are
    ignored; ones correlating to no known send are listed as unexpected.
    """
    received = {
        r.correlation_id for r in snap.receives if r.correlation_id and r.correlation_id != NULL_ID
    }
    sent_ids = {r.message_id for r in snap.sends if r.message_id}

    result = VerificationResult()
    for record in snap.sends:
        if record.outcome != SendOutcome.OK:
            continue
        result.expected += 1
        if record.message_id in received:
            result.matched += 1
        else:
            result.missing.append(record.tracking_id)
    result.unexpected = sorted(received - sent_ids)
    return result


def report_to_dict(
    report: RunReport, verification: Optional[VerificationResult] = None
) -> Dict[str, Any]:
    data = report.to_dict()
    if verification is not None:
        data["verification"] = verification.to_dict()
    return data


def save_report(
    report: RunReport,
    path: Union[str, Path],
    verification: Optional[VerificationResult] = None,
) -> Path:
    """Write the report as JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(report_to_dict(report, verification), f, indent=2)
    LOG.info(f"Report saved to {path}")
    return path


def render_report(
    report: RunReport,
    console: Optional[Console] = None,
    verification: Optional[VerificationResult] = None,
) -> None:
    console = console or Console()

    if report.succeeded:
        verdict = "[bold green]PASSED[/bold green]"
    elif report.state == LoopState.ABORTED:
        verdict = f"[bold red]ABORTED[/bold red] ({report.abort_reason or 'unknown reason'})"
    else:
        verdict = "[bold red]FAILED[/bold red]"
    console.print(Panel(f"Long-haul run {verdict}", expand=False))

    table = Table(title="Run summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("State", report.state.value)
    table.add_row("Duration", f"{report.duration_seconds:.1f}s")
    table.add_row("Sends attempted", str(report.total_sends))
    table.add_row("Confirmed OK", f"[green]{report.confirmed_ok}[/green]")
    table.add_row("Confirmed failed", f"[red]{report.confirmed_failed}[/red]")
    table.add_row("Still pending", str(report.pending))
    table.add_row("Dropped events", str(report.dropped_events))
    table.add_row("Double completions", str(report.double_completions))
    table.add_row("Messages received", str(report.receive_count))
    table.add_row("Status changes", str(report.connection_status_changes))
    if report.latency.samples:
        table.add_row(
            "Latency min/avg/p50/max",
            f"{report.latency.min_ms:.1f} / {report.latency.avg_ms:.1f} / "
            f"{report.latency.p50_ms:.1f} / {report.latency.max_ms:.1f} ms",
        )
    if verification is not None:
        table.add_row("Echo verification", f"{verification.matched}/{verification.expected}")
    console.print(table)

    if report.timeline:
        timeline = Table(title="Connection status timeline")
        timeline.add_column("Time")
        timeline.add_column("From")
        timeline.add_column("To")
        for event in report.timeline:
            event_dict = event.to_dict()
            timeline.add_row(
                event_dict["timestamp"],
                f"{event.previous_status.value} ({event.previous_reason.value})",
                f"{event.current_status.value} ({event.current_reason.value})",
            )
        console.print(timeline)

    for error in report.fatal_errors:
        console.print(f"[bold red]✗[/bold red] {error}")
