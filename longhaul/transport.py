"""
Transport collaborator contract and an in-process loopback implementation.

A real device client (AMQP, MQTT, ...) is adapted to ``Transport`` by the
caller. ``LoopbackTransport`` simulates one: confirmations and inbound
messages are delivered from timer threads, like a client's own delivery
thread would.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from longhaul.errors import TransportError
from longhaul.models import (
    ConfirmationResult,
    ConnectionStatus,
    ConnectionStatusReason,
    DispositionResult,
    InboundMessage,
    TelemetryMessage,
)

LOG = logging.getLogger(__name__)

ConfirmationCallback = Callable[[int, ConfirmationResult], None]
ConnectionStatusCallback = Callable[[ConnectionStatus, ConnectionStatusReason], None]
MessageCallback = Callable[[InboundMessage], DispositionResult]


@dataclass
class TransportOptions:
    """Client options applied before connecting."""

    product_info: str = "C-SDK-LongHaul"
    service_keep_alive_seconds: int = 120
    remote_idle_timeout_ratio: float = 0.5
    log_trace: bool = True


class Transport(ABC):
    """What the harness needs from a device client."""

    @abstractmethod
    def set_options(self, options: TransportOptions) -> None:
        pass

    @abstractmethod
    def set_confirmation_callback(self, callback: ConfirmationCallback) -> None:
        pass

    @abstractmethod
    def set_connection_status_callback(self, callback: ConnectionStatusCallback) -> None:
        pass

    @abstractmethod
    def set_message_callback(self, callback: MessageCallback) -> None:
        pass

    @abstractmethod
    def connect(self) -> None:
        pass

    @abstractmethod
    def send_event_async(self, message: TelemetryMessage) -> int:
        """
        Queue a message for delivery.

        Returns:
            The message's tracking id; the result arrives later through the
            confirmation callback

        Raises:
            TransportError: message could not be queued
        """

    @abstractmethod
    def close(self) -> None:
        pass


class LoopbackTransport(Transport):
    """
    Simulated device client.

    - every ``fail_every``-th confirmation is ERROR (0 disables)
    - ``fail_dispatch(tracking_id)`` returning True makes the send fail synchronously
    - ``echo`` delivers every sent message back as an inbound message whose
      correlation id is the sent message id
    """

    def __init__(
        self,
        confirm_latency_seconds: float = 0.05,
        fail_every: int = 0,
        echo: bool = False,
        fail_dispatch: Optional[Callable[[int], bool]] = None,
        confirmation_policy: Optional[Callable[[int], ConfirmationResult]] = None,
    ):
        if confirm_latency_seconds < 0:
            raise ValueError("confirm_latency_seconds must be non-negative")
        if fail_every < 0:
            raise ValueError("fail_every must be non-negative")
        self.confirm_latency_seconds = confirm_latency_seconds
        self.fail_every = fail_every
        self.echo = echo
        self.fail_dispatch = fail_dispatch
        self.confirmation_policy = confirmation_policy or self._default_policy
        self.options: Optional[TransportOptions] = None

        self._lock = threading.Lock()
        self._timers: Dict[int, threading.Timer] = {}
        self._confirmations = 0
        self._connected = False
        self._on_confirmation: Optional[ConfirmationCallback] = None
        self._on_status: Optional[ConnectionStatusCallback] = None
        self._on_message: Optional[MessageCallback] = None
        self.dispositions: list = []
        self.sent_count = 0

    def _default_policy(self, tracking_id: int) -> ConfirmationResult:
        with self._lock:
            self._confirmations += 1
            n = self._confirmations
        if self.fail_every and n % self.fail_every == 0:
            return ConfirmationResult.ERROR
        return ConfirmationResult.OK

    def set_options(self, options: TransportOptions) -> None:
        self.options = options
        LOG.debug(f"Transport options: {options}")

    @property
    def trace_enabled(self) -> bool:
        return self.options is not None and self.options.log_trace

    def set_confirmation_callback(self, callback: ConfirmationCallback) -> None:
        self._on_confirmation = callback

    def set_connection_status_callback(self, callback: ConnectionStatusCallback) -> None:
        self._on_status = callback

    def set_message_callback(self, callback: MessageCallback) -> None:
        self._on_message = callback

    @property
    def connected(self) -> bool:
        with self._lock:
            return self._connected

    def connect(self) -> None:
        with self._lock:
            self._connected = True
        self.report_status(ConnectionStatus.AUTHENTICATED, ConnectionStatusReason.OK)

    def report_status(self, status: ConnectionStatus, reason: ConnectionStatusReason) -> None:
        """Simulate a connection status change notification."""
        if self._on_status is not None:
            self._on_status(status, reason)

    def send_event_async(self, message: TelemetryMessage) -> int:
        if not self.connected:
            raise TransportError("transport is not connected", {"tracking_id": message.tracking_id})
        if self.fail_dispatch is not None and self.fail_dispatch(message.tracking_id):
            raise TransportError(
                f"send of {message.tracking_id} rejected", {"tracking_id": message.tracking_id}
            )

        timer = threading.Timer(self.confirm_latency_seconds, self._deliver, args=(message,))
        timer.daemon = True
        with self._lock:
            self._timers[message.tracking_id] = timer
            self.sent_count += 1
        timer.start()
        if self.trace_enabled:
            LOG.debug(f"-> {message.message_id} ({len(message.body)} bytes)")
        return message.tracking_id

    def _deliver(self, message: TelemetryMessage) -> None:
        with self._lock:
            if self._timers.pop(message.tracking_id, None) is None:
                return
        # Echo first so that a drained run has also seen its echoes
        if self.echo:
            self.inject_message(
                message.body,
                message_id=f"echo-{message.tracking_id}",
                correlation_id=message.message_id,
                properties=dict(message.properties),
            )
        self._confirm(message.tracking_id, self.confirmation_policy(message.tracking_id))

    def _confirm(self, tracking_id: int, result: ConfirmationResult) -> None:
        if self.trace_enabled:
            LOG.debug(f"<- confirmation {tracking_id}: {result.value}")
        if self._on_confirmation is not None:
            self._on_confirmation(tracking_id, result)

    def inject_message(
        self,
        body,
        message_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
        properties: Optional[Dict[str, str]] = None,
    ) -> Optional[DispositionResult]:
        """Simulate a cloud-to-device message."""
        if self._on_message is None:
            return None
        disposition = self._on_message(
            InboundMessage(
                body=body,
                message_id=message_id,
                correlation_id=correlation_id,
                content_type="application/json" if isinstance(body, bytes) else "text/plain",
                properties=properties or {},
            )
        )
        with self._lock:
            self.dispositions.append(disposition)
        return disposition

    def close(self) -> None:
        """Disconnect; outstanding confirmations complete with BECAUSE_DESTROY."""
        with self._lock:
            self._connected = False
            outstanding = list(self._timers.items())
            self._timers.clear()
        for tracking_id, timer in outstanding:
            timer.cancel()
            self._confirm(tracking_id, ConfirmationResult.BECAUSE_DESTROY)
