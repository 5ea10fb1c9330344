"""Dashboard summary over a trailing window of unified records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from src.integrations.base import round_half_up
from src.models.health import HealthSummary, UnifiedDayRecord


@dataclass
class _Mean:
    total: float = 0.0
    count: int = 0

    def add(self, value: float | None) -> None:
        if value is None:
            return
        self.total += value
        self.count += 1

    def value(self) -> float:
        return self.total / self.count if self.count else 0.0


def summarize_records(records: Iterable[UnifiedDayRecord]) -> HealthSummary:
    """Average each metric over only the records that carry it.

    Steps, heart rate and scores are rounded to integers; sleep hours to one
    decimal.  A metric with no data averages to 0.
    """
    steps, sleep, heart_rate = _Mean(), _Mean(), _Mean()
    readiness, activity = _Mean(), _Mean()
    total_workouts = 0

    for record in records:
        steps.add(record.steps)
        sleep.add(record.sleep.duration_hours if record.sleep else None)
        heart_rate.add(record.heart_rate.average if record.heart_rate else None)
        readiness.add(record.readiness.score if record.readiness else None)
        activity.add(record.activity.score if record.activity else None)
        if record.workouts:
            total_workouts += len(record.workouts)

    return HealthSummary(
        average_steps=round_half_up(steps.value()),
        average_sleep=round_half_up(sleep.value(), 1),
        average_heart_rate=round_half_up(heart_rate.value()),
        total_workouts=total_workouts,
        average_readiness_score=round_half_up(readiness.value()),
        average_activity_score=round_half_up(activity.value()),
    )
