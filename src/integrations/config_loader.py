"""Load, validate, and hot-reload the health sync configuration.

The config lives in ``sync_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_sync_config()`` to re-read from
disk after an edit; no restart required.

Usage::

    from src.integrations.config_loader import get_sync_config

    config = get_sync_config()
    config.sync.window_days                     # 30
    config.provider_timeout("oura")             # 20.0
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger("forela.integrations.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SyncWindowConfig:
    """Fetch windows and per-provider timeouts."""

    window_days: int = 30
    smoke_test_days: int = 7
    default_timeout_seconds: float = 10.0
    provider_timeouts_seconds: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class SleepDefaults:
    """Ratios applied when a provider only reports an in-bed interval."""

    efficiency_percent: float = 85.0
    deep_ratio: float = 0.20
    rem_ratio: float = 0.25


@dataclass(frozen=True)
class MockDataConfig:
    """Bounds for synthetic readings generated when a provider is unavailable."""

    steps: tuple[int, int] = (5000, 10000)
    heart_rate_bpm: tuple[int, int] = (60, 100)
    heart_rate_samples_per_day: tuple[int, int] = (1, 3)
    sleep_hours: tuple[float, float] = (6.0, 8.0)
    workout_probability: float = 0.6
    workout_minutes: tuple[int, int] = (30, 90)
    workout_calories: tuple[int, int] = (200, 500)
    mindfulness_probability: float = 0.4
    mindfulness_minutes: tuple[int, int] = (5, 20)


@dataclass(frozen=True)
class SyncConfig:
    """Complete, validated sync configuration.

    Attributes:
        version:               Config schema version string.
        sync:                  Fetch windows and timeouts.
        sleep_defaults:        Placeholder sleep-stage ratios.
        resting_sample_stride: provider → stride used for the resting heart rate.
        mock_data:             Synthetic reading bounds.
        summary_window_days:   Default dashboard summary window.
    """

    version: str = "1.0"
    sync: SyncWindowConfig = field(default_factory=SyncWindowConfig)
    sleep_defaults: SleepDefaults = field(default_factory=SleepDefaults)
    resting_sample_stride: dict[str, int] = field(default_factory=dict)
    mock_data: MockDataConfig = field(default_factory=MockDataConfig)
    summary_window_days: int = 7

    def provider_timeout(self, provider: str) -> float:
        """Return the fetch timeout in seconds for a provider slug."""
        return self.sync.provider_timeouts_seconds.get(
            provider, self.sync.default_timeout_seconds
        )

    def stride_for(self, provider: str) -> int:
        return self.resting_sample_stride.get(provider, 1)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    import yaml

    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Collects every problem before raising so a broken file is fixed in one pass.

    Raises:
        ConfigValidationError: If any value is missing, mistyped or out of range.
    """
    errors: list[str] = []

    def _number(section: dict, key: str, path: str, default: float, *, minimum: float = 0.0) -> float:
        value = section.get(key, default)
        try:
            number = float(value)
        except (TypeError, ValueError):
            errors.append(f"{path}.{key} must be a number, got {value!r}")
            return default
        if number < minimum:
            errors.append(f"{path}.{key} = {number} must be >= {minimum}")
        return number

    def _range(section: dict, key: str, path: str, default: tuple) -> tuple:
        value = section.get(key, list(default))
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            errors.append(f"{path}.{key} must be a [low, high] pair, got {value!r}")
            return default
        try:
            low, high = (type(default[0])(v) for v in value)
        except (TypeError, ValueError):
            errors.append(f"{path}.{key} must contain numbers, got {value!r}")
            return default
        if low < 0 or low > high:
            errors.append(f"{path}.{key} = [{low}, {high}] must satisfy 0 <= low <= high")
        return (low, high)

    def _probability(section: dict, key: str, path: str, default: float) -> float:
        p = _number(section, key, path, default)
        if p > 1.0:
            errors.append(f"{path}.{key} = {p} is out of range [0.0, 1.0]")
        return p

    version = str(raw.get("version", "1.0"))

    # ── Sync windows ──
    sync_raw = raw.get("sync") or {}
    timeouts: dict[str, float] = {}
    for provider, value in (sync_raw.get("provider_timeouts_seconds") or {}).items():
        try:
            timeouts[provider] = float(value)
        except (TypeError, ValueError):
            errors.append(f"sync.provider_timeouts_seconds.{provider} must be a number, got {value!r}")
            continue
        if timeouts[provider] <= 0:
            errors.append(f"sync.provider_timeouts_seconds.{provider} must be positive")
    sync = SyncWindowConfig(
        window_days=int(_number(sync_raw, "window_days", "sync", 30, minimum=1)),
        smoke_test_days=int(_number(sync_raw, "smoke_test_days", "sync", 7, minimum=1)),
        default_timeout_seconds=_number(sync_raw, "default_timeout_seconds", "sync", 10.0),
        provider_timeouts_seconds=timeouts,
    )

    # ── Sleep defaults ──
    sd_raw = raw.get("sleep_defaults") or {}
    sleep_defaults = SleepDefaults(
        efficiency_percent=_number(sd_raw, "efficiency_percent", "sleep_defaults", 85.0),
        deep_ratio=_probability(sd_raw, "deep_ratio", "sleep_defaults", 0.20),
        rem_ratio=_probability(sd_raw, "rem_ratio", "sleep_defaults", 0.25),
    )
    if sleep_defaults.efficiency_percent > 100:
        errors.append("sleep_defaults.efficiency_percent must be <= 100")
    if sleep_defaults.deep_ratio + sleep_defaults.rem_ratio > 1.0:
        errors.append("sleep_defaults.deep_ratio + rem_ratio must not exceed 1.0")

    # ── Heart rate ──
    hr_raw = raw.get("heart_rate") or {}
    strides: dict[str, int] = {}
    for provider, value in (hr_raw.get("resting_sample_stride") or {}).items():
        if not isinstance(value, int) or value < 1:
            errors.append(
                f"heart_rate.resting_sample_stride.{provider} must be a positive integer, got {value!r}"
            )
            continue
        strides[provider] = value

    # ── Mock data ──
    md_raw = raw.get("mock_data") or {}
    defaults = MockDataConfig()
    mock_data = MockDataConfig(
        steps=_range(md_raw, "steps", "mock_data", defaults.steps),
        heart_rate_bpm=_range(md_raw, "heart_rate_bpm", "mock_data", defaults.heart_rate_bpm),
        heart_rate_samples_per_day=_range(
            md_raw, "heart_rate_samples_per_day", "mock_data", defaults.heart_rate_samples_per_day
        ),
        sleep_hours=_range(md_raw, "sleep_hours", "mock_data", defaults.sleep_hours),
        workout_probability=_probability(md_raw, "workout_probability", "mock_data", 0.6),
        workout_minutes=_range(md_raw, "workout_minutes", "mock_data", defaults.workout_minutes),
        workout_calories=_range(md_raw, "workout_calories", "mock_data", defaults.workout_calories),
        mindfulness_probability=_probability(md_raw, "mindfulness_probability", "mock_data", 0.4),
        mindfulness_minutes=_range(
            md_raw, "mindfulness_minutes", "mock_data", defaults.mindfulness_minutes
        ),
    )

    # ── Summary ──
    summary_raw = raw.get("summary") or {}
    summary_window_days = int(
        _number(summary_raw, "default_window_days", "summary", 7, minimum=1)
    )

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        sync=sync,
        sleep_defaults=sleep_defaults,
        resting_sample_stride=strides,
        mock_data=mock_data,
        summary_window_days=summary_window_days,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw: Any = _load_yaml(target)
    if not isinstance(raw, dict):
        raise ConfigValidationError(f"{target} must contain a mapping at the top level")
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_sync_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
