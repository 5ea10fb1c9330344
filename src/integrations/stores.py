"""Settings and canonical data stores.

Two interchangeable implementations of each store:

* ``Postgres*Store``  Supabase Postgres through the asyncpg pool in
  ``src.services.supabase``.  Writes are ``INSERT ... ON CONFLICT DO UPDATE``
  so repeated syncs overwrite rows.
* ``InMemory*Store``  process-local dicts with the same semantics, used for
  local development (no ``SUPABASE_DB_URL``) and tests.

Store failures are raised as ``PersistenceError``; callers must not swallow
them.

Tables::

    health_data (
        user_id uuid, date date, source text,
        steps int,
        heart_rate_resting int, heart_rate_average int, heart_rate_max int,
        sleep_duration real, sleep_efficiency real, sleep_deep real,
        sleep_rem real, sleep_score int,
        activity_calories real, activity_active_minutes int, activity_score int,
        readiness_score int, readiness_hrv real, readiness_temperature real,
        workouts jsonb,
        mindfulness_duration int, mindfulness_sessions int,
        created_at timestamptz, updated_at timestamptz,
        UNIQUE (user_id, date, source)
    )

    health_integration_settings (
        user_id uuid PRIMARY KEY,
        apple_health jsonb NOT NULL DEFAULT '{}',
        oura jsonb NOT NULL DEFAULT '{}',
        updated_at timestamptz
    )
"""

from __future__ import annotations

import json
import logging
from datetime import date
from typing import Any, Iterable, Mapping, Protocol
from uuid import UUID

import asyncpg

from src.integrations.sync.dedup import build_upsert_query, collapse_duplicates
from src.models.health import (
    ActivitySummary,
    HeartRateSummary,
    IntegrationSettings,
    MindfulnessSummary,
    ProviderId,
    ProviderSettings,
    ReadinessSummary,
    SleepSummary,
    UnifiedDayRecord,
    WorkoutEntry,
)
from src.services import supabase as db

logger = logging.getLogger("forela.integrations.stores")

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class PersistenceError(RuntimeError):
    """A settings or health data store read/write failed."""


# ---------------------------------------------------------------------------
# Store contracts
# ---------------------------------------------------------------------------


class SettingsStore(Protocol):
    async def get(self, user_id: UUID) -> IntegrationSettings:
        """Return the user's settings, or all-disabled defaults if none are stored."""

    async def put(
        self,
        user_id: UUID,
        settings: IntegrationSettings,
        providers: Iterable[ProviderId] | None = None,
    ) -> None:
        """Upsert settings.  With ``providers``, only those sub-objects are written."""


class HealthDataStore(Protocol):
    async def upsert_many(self, user_id: UUID, records: list[UnifiedDayRecord]) -> None:
        """Insert or overwrite records keyed on (user_id, date, source)."""

    async def query_range(self, user_id: UUID, start: date, end: date) -> list[UnifiedDayRecord]:
        """Return records with start <= date <= end, ascending by date."""


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------

HEALTH_DATA_COLUMNS = [
    "user_id",
    "date",
    "source",
    "steps",
    "heart_rate_resting",
    "heart_rate_average",
    "heart_rate_max",
    "sleep_duration",
    "sleep_efficiency",
    "sleep_deep",
    "sleep_rem",
    "sleep_score",
    "activity_calories",
    "activity_active_minutes",
    "activity_score",
    "readiness_score",
    "readiness_hrv",
    "readiness_temperature",
    "workouts",
    "mindfulness_duration",
    "mindfulness_sessions",
]


def record_to_row(user_id: UUID, record: UnifiedDayRecord) -> dict[str, Any]:
    """Flatten a UnifiedDayRecord into health_data column values."""
    hr = record.heart_rate
    sleep = record.sleep
    activity = record.activity
    readiness = record.readiness
    mindfulness = record.mindfulness
    return {
        "user_id": user_id,
        "date": record.date,
        "source": record.source.value,
        "steps": record.steps,
        "heart_rate_resting": hr.resting if hr else None,
        "heart_rate_average": hr.average if hr else None,
        "heart_rate_max": hr.max if hr else None,
        "sleep_duration": sleep.duration_hours if sleep else None,
        "sleep_efficiency": sleep.efficiency_percent if sleep else None,
        "sleep_deep": sleep.deep_sleep_hours if sleep else None,
        "sleep_rem": sleep.rem_sleep_hours if sleep else None,
        "sleep_score": sleep.score if sleep else None,
        "activity_calories": activity.calories_burned if activity else None,
        "activity_active_minutes": activity.active_minutes if activity else None,
        "activity_score": activity.score if activity else None,
        "readiness_score": readiness.score if readiness else None,
        "readiness_hrv": readiness.hrv if readiness else None,
        "readiness_temperature": readiness.temperature_deviation if readiness else None,
        "workouts": (
            [w.model_dump(mode="json") for w in record.workouts]
            if record.workouts is not None
            else None
        ),
        "mindfulness_duration": mindfulness.duration_minutes if mindfulness else None,
        "mindfulness_sessions": mindfulness.session_count if mindfulness else None,
    }


def _group(row: Mapping[str, Any], fields: dict[str, str]) -> dict[str, Any] | None:
    """Pick ``{model_field: row[column]}``; None when every column is NULL."""
    values = {name: row.get(column) for name, column in fields.items()}
    if all(v is None for v in values.values()):
        return None
    return values


def row_to_record(row: Mapping[str, Any]) -> UnifiedDayRecord:
    """Rebuild a UnifiedDayRecord from a health_data row.

    A nested group is present only if at least one of its columns is non-NULL.
    """
    hr = _group(row, {"resting": "heart_rate_resting", "average": "heart_rate_average",
                      "max": "heart_rate_max"})
    sleep = _group(row, {"duration_hours": "sleep_duration", "efficiency_percent": "sleep_efficiency",
                         "deep_sleep_hours": "sleep_deep", "rem_sleep_hours": "sleep_rem",
                         "score": "sleep_score"})
    activity = _group(row, {"calories_burned": "activity_calories",
                            "active_minutes": "activity_active_minutes", "score": "activity_score"})
    readiness = _group(row, {"score": "readiness_score", "hrv": "readiness_hrv",
                             "temperature_deviation": "readiness_temperature"})
    mindfulness = _group(row, {"duration_minutes": "mindfulness_duration",
                               "session_count": "mindfulness_sessions"})

    workouts = row.get("workouts")
    if isinstance(workouts, str):
        workouts = json.loads(workouts)

    return UnifiedDayRecord(
        date=row["date"],
        source=row["source"],
        steps=row.get("steps"),
        heart_rate=HeartRateSummary(**hr) if hr else None,
        sleep=SleepSummary(**sleep) if sleep else None,
        activity=ActivitySummary(**activity) if activity else None,
        readiness=ReadinessSummary(**readiness) if readiness else None,
        workouts=[WorkoutEntry(**w) for w in workouts] if workouts is not None else None,
        mindfulness=MindfulnessSummary(
            duration_minutes=mindfulness["duration_minutes"] or 0,
            session_count=mindfulness["session_count"] or 0,
        ) if mindfulness else None,
    )


def _settings_to_json(settings: ProviderSettings) -> str:
    return json.dumps(settings.model_dump(mode="json"))


def _settings_from_json(value: Any) -> ProviderSettings:
    if value is None:
        return ProviderSettings()
    if isinstance(value, str):
        value = json.loads(value)
    return ProviderSettings.model_validate(value)


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------


class InMemorySettingsStore:
    """Settings store backed by a dict; stored objects are copied on read and write."""

    def __init__(self) -> None:
        self._settings: dict[UUID, IntegrationSettings] = {}

    async def get(self, user_id: UUID) -> IntegrationSettings:
        stored = self._settings.get(user_id)
        return stored.model_copy(deep=True) if stored else IntegrationSettings()

    async def put(
        self,
        user_id: UUID,
        settings: IntegrationSettings,
        providers: Iterable[ProviderId] | None = None,
    ) -> None:
        if providers is None:
            self._settings[user_id] = settings.model_copy(deep=True)
            return
        current = self._settings.get(user_id) or IntegrationSettings()
        for provider_id in providers:
            current.set_provider(provider_id, settings.provider(provider_id).model_copy(deep=True))
        self._settings[user_id] = current


class InMemoryHealthDataStore:
    """Canonical data store backed by a dict keyed on (user_id, date, source)."""

    def __init__(self) -> None:
        self._rows: dict[tuple[UUID, date, str], UnifiedDayRecord] = {}

    async def upsert_many(self, user_id: UUID, records: list[UnifiedDayRecord]) -> None:
        for record in records:
            self._rows[(user_id, record.date, record.source.value)] = record.model_copy(deep=True)

    async def query_range(self, user_id: UUID, start: date, end: date) -> list[UnifiedDayRecord]:
        matches = [
            record.model_copy(deep=True)
            for (uid, day, _source), record in self._rows.items()
            if uid == user_id and start <= day <= end
        ]
        return sorted(matches, key=lambda r: (r.date, r.source.value))

    def __len__(self) -> int:
        return len(self._rows)


# ---------------------------------------------------------------------------
# Postgres implementations
# ---------------------------------------------------------------------------


_PROVIDER_COLUMNS = [p.value for p in ProviderId]


class PostgresSettingsStore:
    """health_integration_settings, one JSONB column per provider."""

    table = "health_integration_settings"

    async def get(self, user_id: UUID) -> IntegrationSettings:
        try:
            row = await db.fetchrow(
                f"SELECT {', '.join(_PROVIDER_COLUMNS)} FROM {self.table} WHERE user_id = $1",
                user_id,
                user_id=user_id,
            )
        except _DB_ERRORS as exc:
            logger.error("Failed to load integration settings for user %s: %s", user_id, exc)
            raise PersistenceError(f"could not load integration settings: {exc}") from exc

        if row is None:
            return IntegrationSettings()
        return IntegrationSettings(
            **{column: _settings_from_json(row[column]) for column in _PROVIDER_COLUMNS}
        )

    async def put(
        self,
        user_id: UUID,
        settings: IntegrationSettings,
        providers: Iterable[ProviderId] | None = None,
    ) -> None:
        selected = [p.value for p in providers] if providers is not None else _PROVIDER_COLUMNS
        columns = ["user_id", *selected]
        query = build_upsert_query(self.table, columns, ["user_id"])
        values = [_settings_to_json(settings.provider(ProviderId(c))) for c in selected]
        try:
            await db.execute(query, user_id, *values, user_id=user_id)
        except _DB_ERRORS as exc:
            logger.error("Failed to save integration settings for user %s: %s", user_id, exc)
            raise PersistenceError(f"could not save integration settings: {exc}") from exc


class PostgresHealthDataStore:
    """health_data, one row per (user_id, date, source)."""

    table = "health_data"

    async def upsert_many(self, user_id: UUID, records: list[UnifiedDayRecord]) -> None:
        if not records:
            return
        query = build_upsert_query(self.table, HEALTH_DATA_COLUMNS, ["user_id", "date", "source"])
        rows = []
        for record in collapse_duplicates(user_id, records):
            row = record_to_row(user_id, record)
            if row["workouts"] is not None:
                row["workouts"] = json.dumps(row["workouts"])
            rows.append([row[column] for column in HEALTH_DATA_COLUMNS])
        try:
            await db.executemany(query, rows, user_id=user_id)
        except _DB_ERRORS as exc:
            logger.error("Failed to upsert %d health rows for user %s: %s", len(rows), user_id, exc)
            raise PersistenceError(f"could not store health data: {exc}") from exc
        logger.debug("Upserted %d health rows for user %s", len(rows), user_id)

    async def query_range(self, user_id: UUID, start: date, end: date) -> list[UnifiedDayRecord]:
        try:
            rows = await db.fetch(
                f"SELECT {', '.join(HEALTH_DATA_COLUMNS)} FROM {self.table} "
                "WHERE user_id = $1 AND date >= $2 AND date <= $3 "
                "ORDER BY date ASC, source ASC",
                user_id,
                start,
                end,
                user_id=user_id,
            )
        except _DB_ERRORS as exc:
            logger.error("Failed to query health data for user %s: %s", user_id, exc)
            raise PersistenceError(f"could not read health data: {exc}") from exc
        return [row_to_record(dict(row)) for row in rows]
