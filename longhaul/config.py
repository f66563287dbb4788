"""
Harness configuration and validation.

Configuration is a JSON document mapped onto ``HarnessConfig``; invalid
values raise ConfigurationError at construction time.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

from longhaul.errors import ConfigurationError
from longhaul.transport import TransportOptions

LOG = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass
class LoopbackOptions:
    """Settings of the simulated transport"""

    confirm_latency_seconds: float = 0.05
    fail_every: int = 0  # Every N-th confirmation fails, 0 = never
    echo: bool = False

    def __post_init__(self):
        if self.confirm_latency_seconds < 0:
            raise ConfigurationError("loopback.confirm_latency_seconds must be non-negative")
        if self.fail_every < 0:
            raise ConfigurationError("loopback.fail_every must be non-negative")


@dataclass
class HarnessConfig:
    """Configuration of one long-haul run"""

    duration_seconds: float = 3600.0
    send_interval_seconds: float = 1.0
    drain_timeout_seconds: float = 10.0
    device_id: str = "myFirstDevice"
    stop_sentinel: str = "quit"
    max_events: Optional[int] = None

    # Transport options
    product_info: str = "C-SDK-LongHaul"
    service_keep_alive_seconds: int = 120
    remote_idle_timeout_ratio: float = 0.5
    log_trace: bool = True

    log_level: str = "INFO"
    report_path: Optional[str] = None
    loopback: LoopbackOptions = field(default_factory=LoopbackOptions)

    def __post_init__(self):
        if self.duration_seconds <= 0:
            raise ConfigurationError("duration_seconds must be positive")
        if self.send_interval_seconds <= 0:
            raise ConfigurationError("send_interval_seconds must be positive")
        if self.drain_timeout_seconds < 0:
            raise ConfigurationError("drain_timeout_seconds must be non-negative")
        if not self.device_id:
            raise ConfigurationError("device_id cannot be empty")
        if not self.stop_sentinel:
            raise ConfigurationError("stop_sentinel cannot be empty")
        if self.max_events is not None and self.max_events < 0:
            raise ConfigurationError("max_events must be non-negative")
        if self.service_keep_alive_seconds <= 0:
            raise ConfigurationError("service_keep_alive_seconds must be positive")
        if not 0 < self.remote_idle_timeout_ratio <= 1:
            raise ConfigurationError("remote_idle_timeout_ratio must be in (0, 1]")

        self.log_level = self.log_level.upper()
        if self.log_level not in LOG_LEVELS:
            raise ConfigurationError(
                f"log_level must be one of {', '.join(LOG_LEVELS)}, got '{self.log_level}'"
            )

        if self.send_interval_seconds > self.duration_seconds:
            LOG.warning(
                f"send interval ({self.send_interval_seconds}s) exceeds run duration "
                f"({self.duration_seconds}s): only one message will be sent"
            )

    def transport_options(self) -> TransportOptions:
        return TransportOptions(
            product_info=self.product_info,
            service_keep_alive_seconds=self.service_keep_alive_seconds,
            remote_idle_timeout_ratio=self.remote_idle_timeout_ratio,
            log_trace=self.log_trace,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for serialization"""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HarnessConfig":
        """Create configuration from dictionary"""
        data = dict(data)
        try:
            if isinstance(data.get("loopback"), dict):
                data["loopback"] = LoopbackOptions(**data["loopback"])
            return cls(**data)
        except ConfigurationError:
            raise
        except TypeError as e:
            raise ConfigurationError(f"Failed to create configuration from dictionary: {e}")

    def with_overrides(self, **overrides: Any) -> "HarnessConfig":
        """Copy with every non-None override applied, validated again."""
        data = self.to_dict()
        for key, value in overrides.items():
            if value is None:
                continue
            if key in ("confirm_latency_seconds", "fail_every", "echo"):
                data["loopback"][key] = value
            else:
                data[key] = value
        return HarnessConfig.from_dict(data)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, json_str: str) -> "HarnessConfig":
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON format: {e}")
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration must be a JSON object")
        return cls.from_dict(data)

    def save_to_file(self, file_path: Union[str, Path]) -> None:
        path = Path(file_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(self.to_json(), encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration to file: {e}")
        LOG.info(f"Configuration saved to {path}")

    @classmethod
    def load_from_file(cls, file_path: Union[str, Path]) -> "HarnessConfig":
        path = Path(file_path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")
        try:
            json_str = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration file: {e}")
        config = cls.from_json(json_str)
        LOG.info(f"Configuration loaded from {path}")
        return config
