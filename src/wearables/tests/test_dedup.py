"""Tests for natural keys and the upsert SQL builder."""

from __future__ import annotations

from datetime import date

from src.wearables.sync.dedup import InMemoryDedupCache, build_upsert_query, day_key, workout_key


class TestDedupKeys:
    def test_keys_are_scoped_by_user_and_kind(self) -> None:
        assert day_key("u1", date(2024, 3, 1)) == "u1:day:2024-03-01"
        assert workout_key("u1", "wk-9") == "u1:workout:wk-9"
        assert day_key("u1", date(2024, 3, 1)) != day_key("u2", date(2024, 3, 1))

    def test_cache_tracks_seen_keys(self) -> None:
        cache = InMemoryDedupCache()
        assert not cache.is_seen("k")
        cache.mark_seen("k")
        cache.mark_seen("k")
        assert cache.is_seen("k")
        assert not cache.is_seen("other")


class TestBuildUpsertQuery:
    def test_updates_non_key_columns_and_timestamp(self) -> None:
        query = build_upsert_query("whoop_data", ["user_id", "date", "strain_score"], ["user_id", "date"])

        assert query == (
            "INSERT INTO whoop_data (user_id, date, strain_score) VALUES ($1, $2, $3) "
            "ON CONFLICT (user_id, date) DO UPDATE SET strain_score = EXCLUDED.strain_score, "
            "updated_at = NOW()"
        )

    def test_report_inserted_appends_returning(self) -> None:
        query = build_upsert_query(
            "whoop_workouts", ["user_id", "whoop_workout_id"], ["user_id", "whoop_workout_id"],
            report_inserted=True,
        )

        assert "DO UPDATE SET updated_at = NOW()" in query
        assert query.endswith("RETURNING (xmax = 0) AS inserted")
