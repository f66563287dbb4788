"""
Long-haul harness: wires a transport to the statistics, runs the telemetry
loop and produces the final report and verdict.
"""

import logging
import random
from typing import Optional

from longhaul.config import HarnessConfig
from longhaul.correlator import ConfirmationCorrelator
from longhaul.models import RunReport
from longhaul.report import VerificationResult, save_report, verify_telemetry_messages_received
from longhaul.statistics import StatisticsAggregator
from longhaul.telemetry_loop import AbortSignal, TelemetryLoop, TelemetryPayloadFactory
from longhaul.transport import LoopbackTransport, Transport

LOG = logging.getLogger(__name__)

EXIT_PASSED = 0
EXIT_FAILED = 1


class LongHaulHarness:
    """
    One long-haul run against one transport.

    All shared state lives in the harness's StatisticsAggregator; the
    transport callbacks reach it through the ConfirmationCorrelator.
    """

    def __init__(
        self,
        transport: Transport,
        config: Optional[HarnessConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.transport = transport
        self.config = config or HarnessConfig()
        self.aggregator = StatisticsAggregator(max_events=self.config.max_events)
        self.abort_signal = AbortSignal()
        self.correlator = ConfirmationCorrelator(
            self.aggregator, self.abort_signal, stop_sentinel=self.config.stop_sentinel
        )
        self.loop = TelemetryLoop(
            transport,
            self.aggregator,
            payload_factory=TelemetryPayloadFactory(self.config.device_id, rng=rng),
            abort_signal=self.abort_signal,
        )
        self.report: Optional[RunReport] = None
        self.verification: Optional[VerificationResult] = None

    @classmethod
    def with_loopback(cls, config: Optional[HarnessConfig] = None) -> "LongHaulHarness":
        """Harness over a simulated transport configured from ``config.loopback``."""
        config = config or HarnessConfig()
        transport = LoopbackTransport(
            confirm_latency_seconds=config.loopback.confirm_latency_seconds,
            fail_every=config.loopback.fail_every,
            echo=config.loopback.echo,
        )
        return cls(transport, config)

    @property
    def run_id(self) -> str:
        return self.loop.run_id

    def run(
        self,
        duration_seconds: Optional[float] = None,
        send_interval_seconds: Optional[float] = None,
    ) -> RunReport:
        """
        Run to completion or abort and return the final report.

        Blocks the calling thread. Defaults come from the configuration.
        """
        duration = duration_seconds if duration_seconds is not None else self.config.duration_seconds
        interval = (
            send_interval_seconds
            if send_interval_seconds is not None
            else self.config.send_interval_seconds
        )

        self.transport.set_options(self.config.transport_options())
        self.correlator.attach(self.transport)
        try:
            self.transport.connect()
        except Exception as e:
            LOG.error(f"❌ Transport connect failed: {e}")
            self.abort_signal.trigger(f"connect failed: {e}")

        try:
            report = self.loop.run(duration, interval, self.config.drain_timeout_seconds)
            self.verification = verify_telemetry_messages_received(self.aggregator.snapshot())
        finally:
            self.transport.close()

        self.report = report
        if self.config.report_path:
            save_report(report, self.config.report_path, self.verification)
        self.aggregator.release()

        LOG.info(f"Verdict: {'PASSED' if report.succeeded else 'FAILED'}")
        return report

    def stop(self, reason: str = "stopped by operator") -> None:
        self.abort_signal.trigger(reason)

    def progress(self) -> RunReport:
        """Mid-run report for progress polling."""
        return self.aggregator.reduce(state=self.loop.state)


def exit_code(report: RunReport) -> int:
    """0 on a completed run with consistent bookkeeping, 1 otherwise."""
    return EXIT_PASSED if report.succeeded else EXIT_FAILED
