"""Unification engine: one provider's raw readings → canonical day records.

``unify`` is a pure function.  It performs no I/O and reads no clock, so the
same input always yields the same output, ordered by ascending date.

Reduction rules per reading kind:
    steps        summed
    heart_rate   running min/max and incremental mean; the resting value is
                 the minimum over every Nth sample (N = profile stride)
    sleep        pre-scored nightly records are taken as-is; bare intervals
                 get their duration from the interval and the configured
                 default ratios for everything else; last write wins per day
    workout      appended in input order
    mindfulness  duration and session count summed
    activity     pre-aggregated values, last write wins; workouts add to it
                 when the profile says so
    readiness    pre-aggregated values, last write wins
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable

from src.integrations.base import RawReading, ReadingKind, round_half_up
from src.integrations.config_loader import SleepDefaults, SyncConfig
from src.models.health import (
    ActivitySummary,
    DataSource,
    HeartRateSummary,
    MindfulnessSummary,
    ReadinessSummary,
    SleepSummary,
    UnifiedDayRecord,
    WorkoutEntry,
)

logger = logging.getLogger("forela.integrations.unification")


@dataclass(frozen=True)
class UnificationProfile:
    """Provider-specific knobs for the reduction.

    Attributes:
        source:                  Source tag written on every emitted record.
        resting_sample_stride:   Resting HR = min over samples 0, N, 2N, ...
        sleep_defaults:          Ratios for interval-only sleep readings.
        workouts_feed_activity:  Add workout calories/minutes to the day's activity.
    """

    source: DataSource
    resting_sample_stride: int = 1
    sleep_defaults: SleepDefaults = field(default_factory=SleepDefaults)
    workouts_feed_activity: bool = False

    @classmethod
    def for_provider(cls, source: DataSource, config: SyncConfig) -> "UnificationProfile":
        return cls(
            source=source,
            resting_sample_stride=config.stride_for(source.value),
            sleep_defaults=config.sleep_defaults,
            workouts_feed_activity=source is DataSource.APPLE_HEALTH,
        )


# ---------------------------------------------------------------------------
# Per-day accumulators
# ---------------------------------------------------------------------------


@dataclass
class _HeartRateAccumulator:
    count: int = 0
    average: float = 0.0
    maximum: float | None = None
    resting: float | None = None

    def add(self, bpm: float, stride: int) -> None:
        if self.count % stride == 0:
            self.resting = bpm if self.resting is None else min(self.resting, bpm)
        self.count += 1
        self.average += (bpm - self.average) / self.count
        self.maximum = bpm if self.maximum is None else max(self.maximum, bpm)

    def summary(self) -> HeartRateSummary:
        average = round_half_up(self.average)
        maximum = round_half_up(self.maximum)
        # A strided minimum can sit above the mean; resting never exceeds average.
        resting = min(round_half_up(self.resting), average)
        return HeartRateSummary(resting=resting, average=average, max=maximum)


@dataclass
class _DayAccumulator:
    day: date
    steps: float | None = None
    heart_rate: _HeartRateAccumulator | None = None
    sleep: SleepSummary | None = None
    activity: ActivitySummary | None = None
    readiness: ReadinessSummary | None = None
    workouts: list[WorkoutEntry] = field(default_factory=list)
    workout_calories: float = 0.0
    workout_minutes: int = 0
    mindfulness_minutes: float = 0.0
    mindfulness_sessions: int = 0

    def to_record(self, profile: UnificationProfile) -> UnifiedDayRecord:
        activity = self.activity
        if profile.workouts_feed_activity and self.workouts:
            base = activity or ActivitySummary(calories_burned=0, active_minutes=0)
            activity = base.model_copy(
                update={
                    "calories_burned": (base.calories_burned or 0) + self.workout_calories,
                    "active_minutes": (base.active_minutes or 0) + self.workout_minutes,
                }
            )

        mindfulness = None
        if self.mindfulness_sessions:
            mindfulness = MindfulnessSummary(
                duration_minutes=round_half_up(self.mindfulness_minutes),
                session_count=self.mindfulness_sessions,
            )

        return UnifiedDayRecord(
            date=self.day,
            source=profile.source,
            steps=round_half_up(self.steps) if self.steps is not None else None,
            heart_rate=self.heart_rate.summary() if self.heart_rate else None,
            sleep=self.sleep,
            activity=activity,
            readiness=self.readiness,
            workouts=list(self.workouts) or None,
            mindfulness=mindfulness,
        )


# ---------------------------------------------------------------------------
# Reducers
# ---------------------------------------------------------------------------


def _sleep_from_reading(reading: RawReading, defaults: SleepDefaults) -> SleepSummary | None:
    details = reading.details
    if "duration_hours" in details:
        return SleepSummary(
            duration_hours=details.get("duration_hours"),
            efficiency_percent=details.get("efficiency_percent"),
            deep_sleep_hours=details.get("deep_sleep_hours"),
            rem_sleep_hours=details.get("rem_sleep_hours"),
            score=details.get("score"),
        )

    if reading.value is not None:
        hours = reading.value
    elif reading.duration_minutes is not None:
        hours = reading.duration_minutes / 60.0
    else:
        logger.debug("Skipping sleep reading without duration on %s", reading.attributed_date)
        return None

    hours = max(hours, 0.0)
    deep = details.get("deep_sleep_hours")
    rem = details.get("rem_sleep_hours")
    return SleepSummary(
        duration_hours=round(hours, 2),
        efficiency_percent=details.get("efficiency_percent", defaults.efficiency_percent),
        deep_sleep_hours=round(deep if deep is not None else hours * defaults.deep_ratio, 2),
        rem_sleep_hours=round(rem if rem is not None else hours * defaults.rem_ratio, 2),
        score=details.get("score"),
    )


def _workout_from_reading(reading: RawReading) -> WorkoutEntry:
    details = reading.details
    minutes = details.get("duration_minutes")
    if minutes is None:
        minutes = reading.duration_minutes or 0
    return WorkoutEntry(
        type=details.get("type") or "other",
        duration_minutes=round_half_up(max(minutes, 0)),
        calories=max(details.get("calories") or 0, 0),
        intensity=details.get("intensity"),
    )


def _apply(day: _DayAccumulator, reading: RawReading, profile: UnificationProfile) -> None:
    kind = reading.kind

    if kind is ReadingKind.STEPS:
        if reading.value is not None:
            day.steps = (day.steps or 0) + reading.value

    elif kind is ReadingKind.HEART_RATE:
        if reading.value is not None:
            if day.heart_rate is None:
                day.heart_rate = _HeartRateAccumulator()
            day.heart_rate.add(reading.value, profile.resting_sample_stride)

    elif kind is ReadingKind.SLEEP:
        sleep = _sleep_from_reading(reading, profile.sleep_defaults)
        if sleep is not None:
            day.sleep = sleep

    elif kind is ReadingKind.WORKOUT:
        workout = _workout_from_reading(reading)
        day.workouts.append(workout)
        day.workout_calories += workout.calories
        day.workout_minutes += workout.duration_minutes

    elif kind is ReadingKind.MINDFULNESS:
        minutes = reading.value if reading.value is not None else reading.duration_minutes
        day.mindfulness_minutes += max(minutes or 0, 0)
        day.mindfulness_sessions += 1

    elif kind is ReadingKind.ACTIVITY:
        details = reading.details
        day.activity = ActivitySummary(
            calories_burned=details.get("calories_burned"),
            active_minutes=details.get("active_minutes"),
            score=details.get("score"),
        )

    elif kind is ReadingKind.READINESS:
        details = reading.details
        day.readiness = ReadinessSummary(
            score=details.get("score"),
            hrv=details.get("hrv"),
            temperature_deviation=details.get("temperature_deviation"),
        )


def unify(readings: Iterable[RawReading], profile: UnificationProfile) -> list[UnifiedDayRecord]:
    """Reduce one provider's raw readings to one UnifiedDayRecord per date.

    Args:
        readings: Raw readings from a single provider, in provider order.
        profile:  Reduction settings for that provider.

    Returns:
        Records ordered by ascending date, all tagged ``profile.source``.
    """
    days: dict[date, _DayAccumulator] = {}
    for reading in readings:
        day_key = reading.attributed_date
        day = days.get(day_key)
        if day is None:
            day = days[day_key] = _DayAccumulator(day=day_key)
        _apply(day, reading, profile)

    return [days[d].to_record(profile) for d in sorted(days)]
