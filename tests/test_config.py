"""
Tests for HarnessConfig loading, validation and serialization.
"""

import json

import pytest

from longhaul.config import HarnessConfig, LoopbackOptions
from longhaul.errors import ConfigurationError


class TestHarnessConfigValidation:
    def test_defaults(self):
        config = HarnessConfig()
        assert config.duration_seconds == 3600.0
        assert config.send_interval_seconds == 1.0
        assert config.stop_sentinel == "quit"
        assert config.device_id == "myFirstDevice"
        assert config.loopback == LoopbackOptions()

    @pytest.mark.parametrize(
        "field,value",
        [
            ("duration_seconds", 0),
            ("send_interval_seconds", -1),
            ("drain_timeout_seconds", -0.1),
            ("device_id", ""),
            ("stop_sentinel", ""),
            ("max_events", -5),
            ("service_keep_alive_seconds", 0),
            ("remote_idle_timeout_ratio", 0),
            ("remote_idle_timeout_ratio", 1.5),
            ("log_level", "VERBOSE"),
        ],
    )
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ConfigurationError):
            HarnessConfig(**{field: value})

    def test_log_level_normalized(self):
        assert HarnessConfig(log_level="debug").log_level == "DEBUG"

    def test_invalid_loopback_options(self):
        with pytest.raises(ConfigurationError):
            LoopbackOptions(fail_every=-1)

    def test_transport_options(self):
        options = HarnessConfig(
            product_info="probe", service_keep_alive_seconds=30, remote_idle_timeout_ratio=0.25
        ).transport_options()
        assert options.product_info == "probe"
        assert options.service_keep_alive_seconds == 30
        assert options.remote_idle_timeout_ratio == 0.25
        assert options.log_trace is True

    def test_log_trace_passed_to_transport(self):
        assert HarnessConfig(log_trace=False).transport_options().log_trace is False


class TestHarnessConfigSerialization:
    def test_dict_round_trip_keeps_nested_options(self):
        config = HarnessConfig(duration_seconds=60, loopback=LoopbackOptions(fail_every=2, echo=True))
        restored = HarnessConfig.from_dict(config.to_dict())
        assert restored == config
        assert isinstance(restored.loopback, LoopbackOptions)

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigurationError):
            HarnessConfig.from_dict({"duration_seconds": 10, "bogus": True})

    def test_unknown_loopback_key_rejected(self):
        with pytest.raises(ConfigurationError):
            HarnessConfig.from_dict({"loopback": {"latency": 1}})

    def test_invalid_json(self):
        with pytest.raises(ConfigurationError):
            HarnessConfig.from_json("{not json")

    def test_json_must_be_object(self):
        with pytest.raises(ConfigurationError):
            HarnessConfig.from_json("[1, 2]")

    def test_file_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "config.json"
        config = HarnessConfig(duration_seconds=120, report_path="out/report.json")
        config.save_to_file(path)

        assert json.loads(path.read_text())["duration_seconds"] == 120
        assert HarnessConfig.load_from_file(path) == config

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            HarnessConfig.load_from_file(tmp_path / "missing.json")

    def test_with_overrides(self):
        config = HarnessConfig().with_overrides(
            duration_seconds=5, send_interval_seconds=None, fail_every=4, echo=True
        )
        assert config.duration_seconds == 5
        assert config.send_interval_seconds == 1.0
        assert config.loopback.fail_every == 4
        assert config.loopback.echo is True

    def test_with_overrides_validates(self):
        with pytest.raises(ConfigurationError):
            HarnessConfig().with_overrides(duration_seconds=-1)
