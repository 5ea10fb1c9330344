"""Tests for sync_config.yaml loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.integrations import config_loader
from src.integrations.config_loader import (
    ConfigValidationError,
    SyncConfig,
    _validate_and_build,
    load_sync_config,
    reload_sync_config,
)


class TestConfigLoading:
    """Tests for loading the bundled sync_config.yaml."""

    def test_load_default_config(self, sync_config: SyncConfig) -> None:
        """The bundled file loads without errors."""
        assert sync_config.version == "1.0"
        assert sync_config.sync.window_days == 30
        assert sync_config.sync.smoke_test_days == 7
        assert sync_config.summary_window_days == 7

    def test_provider_timeouts(self, sync_config: SyncConfig) -> None:
        assert sync_config.provider_timeout("apple_health") == 5.0
        assert sync_config.provider_timeout("oura") == 20.0
        assert sync_config.provider_timeout("garmin") == sync_config.sync.default_timeout_seconds

    def test_resting_strides(self, sync_config: SyncConfig) -> None:
        assert sync_config.stride_for("oura") == 3
        assert sync_config.stride_for("apple_health") == 1
        assert sync_config.stride_for("unknown") == 1

    def test_mock_bounds(self, sync_config: SyncConfig) -> None:
        assert sync_config.mock_data.steps == (5000, 10000)
        assert sync_config.mock_data.sleep_hours == (6.0, 8.0)
        assert sync_config.mock_data.workout_probability == 0.6

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_sync_config(tmp_path / "nope.yaml")

    def test_non_mapping_raises(self, tmp_path: Path) -> None:
        config_file = tmp_path / "sync_config.yaml"
        config_file.write_text("- just\n- a list\n")
        with pytest.raises(ConfigValidationError, match="mapping"):
            load_sync_config(config_file)


class TestConfigValidation:
    """Tests for config validation logic."""

    def test_empty_config_uses_defaults(self) -> None:
        config = _validate_and_build({})
        assert config.sync.window_days == 30
        assert config.sleep_defaults.efficiency_percent == 85.0
        assert config.resting_sample_stride == {}

    def test_all_errors_reported_together(self) -> None:
        raw = {
            "sync": {"window_days": 0, "provider_timeouts_seconds": {"oura": "slow"}},
            "heart_rate": {"resting_sample_stride": {"oura": 0}},
            "mock_data": {"steps": [10000, 5000]},
        }
        with pytest.raises(ConfigValidationError) as exc_info:
            _validate_and_build(raw)
        message = str(exc_info.value)
        assert "4 validation error(s)" in message
        assert "sync.window_days" in message
        assert "sync.provider_timeouts_seconds.oura" in message
        assert "resting_sample_stride.oura" in message
        assert "mock_data.steps" in message

    def test_zero_smoke_test_days_rejected(self) -> None:
        with pytest.raises(ConfigValidationError, match="sync.smoke_test_days"):
            _validate_and_build({"sync": {"smoke_test_days": 0}})

    def test_probability_out_of_range(self) -> None:
        with pytest.raises(ConfigValidationError, match="out of range"):
            _validate_and_build({"mock_data": {"workout_probability": 1.5}})

    def test_sleep_ratios_must_fit_in_one(self) -> None:
        with pytest.raises(ConfigValidationError, match="rem_ratio"):
            _validate_and_build({"sleep_defaults": {"deep_ratio": 0.6, "rem_ratio": 0.5}})

    def test_malformed_range_raises(self) -> None:
        with pytest.raises(ConfigValidationError, match="pair"):
            _validate_and_build({"mock_data": {"heart_rate_bpm": [60]}})


class TestHotReload:
    def test_reload_replaces_singleton(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(config_loader, "_config", None)
        config_file = tmp_path / "sync_config.yaml"
        config_file.write_text('version: "2.0-test"\nsync:\n  window_days: 14\n')

        config = reload_sync_config(config_file)

        assert config.version == "2.0-test"
        assert config_loader.get_sync_config() is config
        assert config_loader.get_sync_config().sync.window_days == 14

    def test_failed_reload_keeps_old_config(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, sync_config: SyncConfig
    ) -> None:
        monkeypatch.setattr(config_loader, "_config", sync_config)
        config_file = tmp_path / "sync_config.yaml"
        config_file.write_text("sync:\n  window_days: -3\n")

        with pytest.raises(ConfigValidationError):
            reload_sync_config(config_file)

        assert config_loader.get_sync_config() is sync_config
