#!/usr/bin/env python3
"""
CLI for long-haul runs.

Commands:
- run         - Run against the loopback transport and print the report
- show-config - Print the effective configuration
"""

import logging
import sys
import threading
from typing import Optional

import click
from rich.console import Console

from longhaul.config import LOG_LEVELS, HarnessConfig
from longhaul.errors import ConfigurationError
from longhaul.harness import LongHaulHarness, exit_code
from longhaul.report import render_report

console = Console()

EXIT_USAGE = 2


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)-7s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        force=True,
    )


def load_config(config_path: Optional[str], **overrides) -> HarnessConfig:
    config = HarnessConfig.load_from_file(config_path) if config_path else HarnessConfig()
    return config.with_overrides(**overrides)


@click.group()
def cli():
    """Long-haul telemetry reliability harness"""
    pass


@cli.command()
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="JSON config file")
@click.option("--duration", type=float, help="Run duration (seconds)")
@click.option("--interval", type=float, help="Send interval (seconds)")
@click.option("--drain", type=float, help="Drain window after the loop (seconds)")
@click.option("--report", "report_path", type=click.Path(dir_okay=False), help="JSON report output")
@click.option("--fail-every", type=int, help="Loopback: every N-th confirmation fails")
@click.option("--echo/--no-echo", default=None, help="Loopback: echo sent messages back")
@click.option("--log-level", type=click.Choice(LOG_LEVELS, case_sensitive=False))
@click.option(
    "--progress-every",
    type=click.FloatRange(min=0, min_open=True),
    default=60.0,
    show_default=True,
    help="Progress print period (seconds)",
)
def run(
    config_path, duration, interval, drain, report_path, fail_every, echo, log_level, progress_every
):
    """Run a long-haul test against the loopback transport"""
    try:
        config = load_config(
            config_path,
            duration_seconds=duration,
            send_interval_seconds=interval,
            drain_timeout_seconds=drain,
            report_path=report_path,
            fail_every=fail_every,
            echo=echo,
            log_level=log_level,
        )
    except ConfigurationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        sys.exit(EXIT_USAGE)

    setup_logging(config.log_level)
    harness = LongHaulHarness.with_loopback(config)

    console.print(f"🚀 Starting long-haul run [bold]{harness.run_id}[/bold]")
    console.print(f"   Duration: {config.duration_seconds}s")
    console.print(f"   Send interval: {config.send_interval_seconds}s")
    console.print(f"   Drain window: {config.drain_timeout_seconds}s")

    outcome = {}

    def worker():
        try:
            outcome["report"] = harness.run()
        except Exception as e:
            outcome["error"] = e

    thread = threading.Thread(target=worker, name="longhaul-run", daemon=True)
    thread.start()
    try:
        while thread.is_alive():
            thread.join(progress_every)
            if thread.is_alive():
                progress = harness.progress()
                console.print(
                    f"[dim]{progress.duration_seconds:.0f}s: sent={progress.total_sends} "
                    f"ok={progress.confirmed_ok} failed={progress.confirmed_failed} "
                    f"pending={progress.pending}[/dim]"
                )
    except KeyboardInterrupt:
        console.print("\n🛑 Stopping run...")
        harness.stop("interrupted by user")
        thread.join()

    if "error" in outcome:
        raise outcome["error"]

    report = outcome["report"]
    render_report(report, console=console, verification=harness.verification)
    if config.report_path:
        console.print(f"Report written to {config.report_path}")
    sys.exit(exit_code(report))


@cli.command("show-config")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="JSON config file")
def show_config(config_path):
    """Print the effective configuration as JSON"""
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        sys.exit(EXIT_USAGE)
    click.echo(config.to_json())


def main():
    cli()


if __name__ == "__main__":
    main()
