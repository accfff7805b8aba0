"""Natural keys and idempotent-write helpers for cached vendor data.

Dedup keys:
    - whoop_data:      (user_id, date)              — UNIQUE constraint
    - whoop_workouts:  (user_id, whoop_workout_id)  — UNIQUE constraint
    - daily_summaries: (user_id, date)              — UNIQUE constraint

The database constraints are the authoritative dedup mechanism; every write
is one ``INSERT ... ON CONFLICT DO UPDATE`` so a re-sync replaces rows
instead of adding them.
"""

from __future__ import annotations

import logging
from datetime import date

logger = logging.getLogger("healthlog.sync.dedup")


def day_key(user_id: str, target_date: date) -> str:
    """Dedup key matching the UNIQUE (user_id, date) constraint."""
    return f"{user_id}:day:{target_date.isoformat()}"


def workout_key(user_id: str, whoop_workout_id: str) -> str:
    """Dedup key matching the UNIQUE (user_id, whoop_workout_id) constraint."""
    return f"{user_id}:workout:{whoop_workout_id}"


class InMemoryDedupCache:
    """In-process dedup cache for one sync run.

    Overlapping pages or two cycles that start on the same UTC date would
    otherwise upsert the same key twice in one run and count it twice.

    Usage::

        cache = InMemoryDedupCache()
        if cache.is_seen(key):
            logger.debug("Skipping duplicate: %s", key)
        else:
            cache.mark_seen(key)
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def is_seen(self, key: str) -> bool:
        return key in self._seen

    def mark_seen(self, key: str) -> None:
        self._seen.add(key)


def build_upsert_query(
    table: str,
    columns: list[str],
    conflict_columns: list[str],
    report_inserted: bool = False,
) -> str:
    """Build a PostgreSQL INSERT ... ON CONFLICT DO UPDATE (upsert) query.

    On conflict, the non-key columns are replaced and ``updated_at`` is
    bumped.  With ``report_inserted`` the statement returns one boolean
    column ``inserted`` that is true only when a new row was created
    (``xmax = 0`` on the resulting tuple).

    Args:
        table:            Target table name.
        columns:          All columns to insert.
        conflict_columns: Columns that define the UNIQUE constraint.
        report_inserted:  Append ``RETURNING (xmax = 0) AS inserted``.

    Returns:
        Parameterized SQL string.
    """
    update_columns = [c for c in columns if c not in conflict_columns]
    placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
    col_list = ", ".join(columns)
    conflict_target = ", ".join(conflict_columns)

    update_set = ", ".join(f"{col} = EXCLUDED.{col}" for col in update_columns)
    if update_set:
        update_set += ", "
    update_set += "updated_at = NOW()"

    query = (
        f"INSERT INTO {table} ({col_list}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_target}) DO UPDATE SET {update_set}"
    )
    if report_inserted:
        query += " RETURNING (xmax = 0) AS inserted"
    return query
