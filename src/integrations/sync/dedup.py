"""Deduplication keys and upsert SQL for unified health records.

Dedup keys:
    - health_data:                 (user_id, date, source), UNIQUE constraint
    - health_integration_settings: (user_id), PRIMARY KEY

The database constraint is the authoritative dedup mechanism; repeated
syncs overwrite rows instead of adding new ones.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Iterable
from uuid import UUID

from src.models.health import DataSource, UnifiedDayRecord

logger = logging.getLogger("forela.integrations.sync.dedup")


def health_record_key(user_id: UUID, record_date: date, source: DataSource | str) -> str:
    """Generate the dedup key matching the UNIQUE constraint on health_data.

    Returns:
        Colon-separated dedup key string.
    """
    source_value = source.value if isinstance(source, DataSource) else source
    return f"{user_id}:{record_date.isoformat()}:{source_value}"


def collapse_duplicates(user_id: UUID, records: Iterable[UnifiedDayRecord]) -> list[UnifiedDayRecord]:
    """Keep the last record per (date, source), preserving first-seen order.

    A single upsert batch must not touch the same row twice.
    """
    latest: dict[str, UnifiedDayRecord] = {}
    for record in records:
        key = health_record_key(user_id, record.date, record.source)
        if key in latest:
            logger.debug("Replacing duplicate record in batch: %s", key)
        latest[key] = record
    return list(latest.values())


def build_upsert_query(
    table: str,
    columns: list[str],
    conflict_columns: list[str],
    update_columns: list[str] | None = None,
) -> str:
    """Build a PostgreSQL INSERT ... ON CONFLICT DO UPDATE (upsert) query.

    Generates idempotent writes, safe to call multiple times with the same
    data.  On conflict, updates the non-key columns (or only
    ``update_columns`` for a partial upsert).

    Args:
        table:            Target table name.
        columns:          All columns to insert.
        conflict_columns: Columns that define the UNIQUE constraint.
        update_columns:   Columns to update on conflict (defaults to non-key columns).

    Returns:
        Parameterized SQL string.
    """
    if update_columns is None:
        update_columns = [c for c in columns if c not in conflict_columns]

    placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
    col_list = ", ".join(columns)
    conflict_target = ", ".join(conflict_columns)

    if update_columns:
        update_set = ", ".join(f"{col} = EXCLUDED.{col}" for col in update_columns)
        update_set += ", updated_at = NOW()"
        do_clause = f"DO UPDATE SET {update_set}"
    else:
        do_clause = "DO NOTHING"

    return (
        f"INSERT INTO {table} ({col_list}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_target}) {do_clause}"
    )
