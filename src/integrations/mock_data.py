"""Synthetic provider payloads for development without a live device.

Each generator returns a payload in the provider's own wire shape, so mock
data travels through exactly the same parsing path as real data.  Pass a
seeded ``random.Random`` for reproducible output.
"""

from __future__ import annotations

import random
from datetime import date, datetime, time, timedelta, timezone

from src.integrations.base import iter_days
from src.integrations.config_loader import MockDataConfig

_WORKOUT_TYPES = ["Running", "Walking", "Cycling", "Yoga"]
_OURA_WORKOUT_TYPES = ["walking", "running", "cycling", "yoga", "strength_training"]
_OURA_INTENSITIES = ["easy", "moderate", "hard"]
_OURA_MINDFUL_TYPES = ["meditation", "breathing", "relaxation"]


def _at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=timezone.utc)


def generate_apple_health_payload(
    start: date, end: date, config: MockDataConfig, rng: random.Random
) -> dict:
    """Build a HealthKit-bridge style payload covering every day in [start, end]."""
    payload: dict[str, list] = {
        "steps": [],
        "heartRate": [],
        "sleep": [],
        "workouts": [],
        "mindfulness": [],
    }

    for day in iter_days(start, end):
        day_str = day.isoformat()

        payload["steps"].append({
            "value": rng.randint(*config.steps),
            "unit": "count",
            "date": day_str,
            "source": "iPhone",
        })

        for _ in range(rng.randint(*config.heart_rate_samples_per_day)):
            payload["heartRate"].append({
                "value": rng.randint(*config.heart_rate_bpm),
                "unit": "bpm",
                "date": day_str,
                "source": "Apple Watch",
            })

        hours = round(rng.uniform(*config.sleep_hours), 2)
        bedtime = _at(day, 23)
        payload["sleep"].append({
            "startDate": bedtime.isoformat(),
            "endDate": (bedtime + timedelta(hours=hours)).isoformat(),
            "value": hours,
            "category": "asleep",
            "source": "iPhone",
        })

        if rng.random() < config.workout_probability:
            minutes = rng.randint(*config.workout_minutes)
            workout_start = _at(day, 7)
            payload["workouts"].append({
                "workoutType": rng.choice(_WORKOUT_TYPES),
                "startDate": workout_start.isoformat(),
                "endDate": (workout_start + timedelta(minutes=minutes)).isoformat(),
                "duration": minutes,
                "totalEnergyBurned": rng.randint(*config.workout_calories),
                "totalDistance": round(rng.uniform(2, 7), 2),
                "source": "Apple Watch",
            })

        if rng.random() < config.mindfulness_probability:
            minutes = rng.randint(*config.mindfulness_minutes)
            session_start = _at(day, 19)
            payload["mindfulness"].append({
                "startDate": session_start.isoformat(),
                "endDate": (session_start + timedelta(minutes=minutes)).isoformat(),
                "duration": minutes,
                "source": "iPhone",
            })

    return payload


def generate_oura_payload(
    start: date, end: date, config: MockDataConfig, rng: random.Random
) -> dict:
    """Build an Oura API v2 style payload ({collection: [documents]}) for [start, end]."""
    payload: dict[str, list] = {
        "daily_sleep": [],
        "sleep": [],
        "daily_activity": [],
        "daily_readiness": [],
        "heartrate": [],
        "workout": [],
        "session": [],
    }

    for day in iter_days(start, end):
        day_str = day.isoformat()

        total_secs = int(rng.uniform(*config.sleep_hours) * 3600)
        bedtime = _at(day - timedelta(days=1), 23)
        payload["sleep"].append({
            "id": f"sleep_{day_str}",
            "day": day_str,
            "type": "long_sleep",
            "bedtime_start": bedtime.isoformat(),
            "bedtime_end": (bedtime + timedelta(seconds=total_secs + 1800)).isoformat(),
            "total_sleep_duration": total_secs,
            "deep_sleep_duration": int(total_secs * rng.uniform(0.12, 0.25)),
            "rem_sleep_duration": int(total_secs * rng.uniform(0.18, 0.28)),
            "efficiency": rng.randint(80, 98),
        })
        payload["daily_sleep"].append({
            "id": f"daily_sleep_{day_str}",
            "day": day_str,
            "score": rng.randint(70, 99),
        })

        payload["daily_activity"].append({
            "id": f"activity_{day_str}",
            "day": day_str,
            "score": rng.randint(70, 99),
            "steps": rng.randint(*config.steps),
            "active_calories": rng.randint(300, 800),
            "high_activity_time": rng.randint(1800, 5400),
            "medium_activity_time": rng.randint(1800, 5400),
        })

        payload["daily_readiness"].append({
            "id": f"readiness_{day_str}",
            "day": day_str,
            "score": rng.randint(70, 99),
            "temperature_deviation": round(rng.uniform(-1, 1), 2),
            "contributors": {"hrv_balance": rng.randint(70, 99)},
        })

        for i in range(rng.randint(*config.heart_rate_samples_per_day)):
            payload["heartrate"].append({
                "bpm": rng.randint(*config.heart_rate_bpm),
                "source": "awake",
                "timestamp": _at(day, 9 + 4 * i).isoformat(),
            })

        if rng.random() < config.workout_probability:
            minutes = rng.randint(*config.workout_minutes)
            workout_start = _at(day, 17)
            payload["workout"].append({
                "id": f"workout_{day_str}",
                "day": day_str,
                "activity": rng.choice(_OURA_WORKOUT_TYPES),
                "calories": rng.randint(*config.workout_calories),
                "intensity": rng.choice(_OURA_INTENSITIES),
                "start_datetime": workout_start.isoformat(),
                "end_datetime": (workout_start + timedelta(minutes=minutes)).isoformat(),
            })

        if rng.random() < config.mindfulness_probability:
            minutes = rng.randint(*config.mindfulness_minutes)
            session_start = _at(day, 21)
            payload["session"].append({
                "id": f"session_{day_str}",
                "day": day_str,
                "type": rng.choice(_OURA_MINDFUL_TYPES),
                "start_datetime": session_start.isoformat(),
                "end_datetime": (session_start + timedelta(minutes=minutes)).isoformat(),
            })

    return payload
