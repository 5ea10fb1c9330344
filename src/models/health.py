"""Pydantic models for unified health data and per-user integration settings."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import Field, model_validator

from src.models.base import ForelaBase


class ProviderId(str, Enum):
    """External health data providers a user can connect."""

    APPLE_HEALTH = "apple_health"
    OURA = "oura"


class DataSource(str, Enum):
    """Origin of a unified day record."""

    APPLE_HEALTH = "apple_health"
    OURA = "oura"
    MANUAL = "manual"


class CapabilityFlag(str, Enum):
    """Data categories a provider can be granted permission to read."""

    STEPS = "steps"
    HEART_RATE = "heart_rate"
    SLEEP = "sleep"
    WORKOUTS = "workouts"
    MINDFULNESS = "mindfulness"
    BODY_MEASUREMENTS = "body_measurements"
    PERSONAL_INFO = "personal_info"
    DAILY_SLEEP = "daily_sleep"
    DAILY_ACTIVITY = "daily_activity"
    DAILY_READINESS = "daily_readiness"
    SESSIONS = "sessions"
    TAGS = "tags"


# ---------- Unified day record ----------


class HeartRateSummary(ForelaBase):
    resting: int | None = Field(default=None, ge=0)
    average: int | None = Field(default=None, ge=0)
    max: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_ordering(self) -> "HeartRateSummary":
        if None not in (self.resting, self.average, self.max):
            if not (self.resting <= self.average <= self.max):
                raise ValueError(
                    f"heart rate must satisfy resting <= average <= max, got "
                    f"{self.resting}/{self.average}/{self.max}"
                )
        return self


class SleepSummary(ForelaBase):
    duration_hours: float | None = Field(default=None, ge=0)
    efficiency_percent: float | None = Field(default=None, ge=0, le=100)
    deep_sleep_hours: float | None = Field(default=None, ge=0)
    rem_sleep_hours: float | None = Field(default=None, ge=0)
    score: int | None = Field(default=None, ge=0, le=100)


class ActivitySummary(ForelaBase):
    calories_burned: float | None = Field(default=None, ge=0)
    active_minutes: int | None = Field(default=None, ge=0)
    score: int | None = Field(default=None, ge=0, le=100)


class ReadinessSummary(ForelaBase):
    score: int | None = Field(default=None, ge=0, le=100)
    hrv: float | None = None
    temperature_deviation: float | None = None


class WorkoutEntry(ForelaBase):
    type: str
    duration_minutes: int = Field(ge=0)
    calories: float = Field(default=0, ge=0)
    intensity: str | None = None


class MindfulnessSummary(ForelaBase):
    duration_minutes: int = Field(default=0, ge=0)
    session_count: int = Field(default=0, ge=0)


class UnifiedDayRecord(ForelaBase):
    """Canonical per-day, per-source health record.

    Exactly one exists per (user, date, source); the store upserts on that key.
    """

    date: date
    source: DataSource
    steps: int | None = Field(default=None, ge=0)
    heart_rate: HeartRateSummary | None = None
    sleep: SleepSummary | None = None
    activity: ActivitySummary | None = None
    readiness: ReadinessSummary | None = None
    workouts: list[WorkoutEntry] | None = None
    mindfulness: MindfulnessSummary | None = None


# ---------- Integration settings ----------


class ProviderSettings(ForelaBase):
    enabled: bool = False
    credentials: dict[str, Any] | None = None
    granted_permissions: set[CapabilityFlag] = Field(default_factory=set)
    last_sync: datetime | None = None


class IntegrationSettings(ForelaBase):
    """Per-user provider settings. A fresh user has every provider disabled."""

    apple_health: ProviderSettings = Field(default_factory=ProviderSettings)
    oura: ProviderSettings = Field(default_factory=ProviderSettings)

    def provider(self, provider_id: ProviderId) -> ProviderSettings:
        return getattr(self, provider_id.value)

    def set_provider(self, provider_id: ProviderId, value: ProviderSettings) -> None:
        setattr(self, provider_id.value, value)

    def enabled_providers(self) -> list[ProviderId]:
        return [p for p in ProviderId if self.provider(p).enabled]


class ProviderSettingsRead(ForelaBase):
    """Settings as exposed over HTTP: credentials are never echoed back."""

    enabled: bool
    has_credentials: bool
    granted_permissions: list[CapabilityFlag]
    last_sync: datetime | None = None

    @classmethod
    def from_settings(cls, settings: ProviderSettings) -> "ProviderSettingsRead":
        return cls(
            enabled=settings.enabled,
            has_credentials=bool(settings.credentials),
            granted_permissions=sorted(settings.granted_permissions, key=lambda c: c.value),
            last_sync=settings.last_sync,
        )


class IntegrationSettingsRead(ForelaBase):
    apple_health: ProviderSettingsRead
    oura: ProviderSettingsRead

    @classmethod
    def from_settings(cls, settings: IntegrationSettings) -> "IntegrationSettingsRead":
        return cls(
            apple_health=ProviderSettingsRead.from_settings(settings.apple_health),
            oura=ProviderSettingsRead.from_settings(settings.oura),
        )


class SyncResponse(ForelaBase):
    records: list[UnifiedDayRecord]
    record_count: int
    settings: IntegrationSettingsRead


class OuraAuthorizeUrl(ForelaBase):
    url: str
    state: str


class EnableProviderRequest(ForelaBase):
    access_token: str | None = None
    refresh_token: str | None = None


class OuraCallbackRequest(ForelaBase):
    code: str = Field(min_length=1)


# ---------- Dashboard summary ----------


class HealthSummary(ForelaBase):
    """Trailing-window averages, each over the days that carry the field."""

    average_steps: int = 0
    average_sleep: float = 0.0
    average_heart_rate: int = 0
    total_workouts: int = 0
    average_readiness_score: int = 0
    average_activity_score: int = 0
