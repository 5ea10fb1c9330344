"""Tests for the dashboard summary averages."""

from __future__ import annotations

from datetime import date, timedelta

from src.integrations.summary import summarize_records
from src.models.health import (
    ActivitySummary,
    DataSource,
    HeartRateSummary,
    ReadinessSummary,
    SleepSummary,
    UnifiedDayRecord,
    WorkoutEntry,
)

DAY = date(2026, 2, 24)


def _day(offset: int, source: DataSource = DataSource.OURA, **fields) -> UnifiedDayRecord:
    return UnifiedDayRecord(date=DAY - timedelta(days=offset), source=source, **fields)


def test_empty_input_is_all_zero() -> None:
    summary = summarize_records([])
    assert summary.average_steps == 0
    assert summary.average_sleep == 0.0
    assert summary.average_heart_rate == 0
    assert summary.total_workouts == 0
    assert summary.average_readiness_score == 0
    assert summary.average_activity_score == 0


def test_each_metric_averages_over_its_own_records() -> None:
    records = [
        _day(0, steps=6000, readiness=ReadinessSummary(score=80)),
        _day(1, steps=9000, sleep=SleepSummary(duration_hours=7.26)),
        _day(2, sleep=SleepSummary(duration_hours=6.5), readiness=ReadinessSummary(score=91)),
    ]
    summary = summarize_records(records)
    assert summary.average_steps == 7500
    assert summary.average_sleep == 6.9
    assert summary.average_readiness_score == 86


def test_heart_rate_present_on_three_of_seven_days() -> None:
    records = [_day(i, steps=5000) for i in range(4)]
    records += [
        _day(4, heart_rate=HeartRateSummary(resting=55, average=64, max=110)),
        _day(5, heart_rate=HeartRateSummary(resting=58, average=71, max=120)),
        _day(6, heart_rate=HeartRateSummary(resting=52, average=69, max=131)),
    ]
    assert summarize_records(records).average_heart_rate == 68


def test_workouts_counted_across_sources() -> None:
    run = WorkoutEntry(type="running", duration_minutes=40, calories=400)
    yoga = WorkoutEntry(type="yoga", duration_minutes=30)
    records = [
        _day(0, DataSource.APPLE_HEALTH, workouts=[run, yoga]),
        _day(0, DataSource.OURA, workouts=[run]),
        _day(1, DataSource.OURA, workouts=[]),
    ]
    assert summarize_records(records).total_workouts == 3


def test_zero_step_day_counts_towards_average() -> None:
    records = [_day(0, steps=0), _day(1, steps=8000)]
    assert summarize_records(records).average_steps == 4000


def test_activity_score_rounded_to_integer() -> None:
    records = [
        _day(0, activity=ActivitySummary(score=74)),
        _day(1, activity=ActivitySummary(score=81)),
    ]
    summary = summarize_records(records)
    assert summary.average_activity_score == 78
    assert isinstance(summary.average_activity_score, int)


def test_halves_round_up() -> None:
    records = [
        _day(0, steps=7500, sleep=SleepSummary(duration_hours=6.0),
             heart_rate=HeartRateSummary(resting=50, average=60, max=90)),
        _day(1, steps=7501, sleep=SleepSummary(duration_hours=6.5),
             heart_rate=HeartRateSummary(resting=50, average=61, max=90)),
    ]
    summary = summarize_records(records)
    assert summary.average_steps == 7501
    assert summary.average_heart_rate == 61
    assert summary.average_sleep == 6.3
