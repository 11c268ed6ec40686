from __future__ import annotations

import sqlite3
from pathlib import Path

from authbridge.core.migrations import apply_migrations


def test_apply_migrations_creates_rate_limit_tables(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "state.db"

    first = apply_migrations(db_path)
    second = apply_migrations(db_path)

    assert first == [
        "0001_auth_rate_limits.sql",
        "0002_auth_rate_limits_locked_index.sql",
    ]
    assert second == []

    connection = sqlite3.connect(str(db_path))
    try:
        cursor = connection.cursor()
        tables = {
            row[0]
            for row in cursor.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
        }

        assert "schema_migrations" in tables
        assert "auth_rate_limits" in tables

        migration_ids = [
            row[0]
            for row in cursor.execute(
                "SELECT migration_id FROM schema_migrations ORDER BY migration_id"
            ).fetchall()
        ]
        assert migration_ids == [
            "0001_auth_rate_limits.sql",
            "0002_auth_rate_limits_locked_index.sql",
        ]
    finally:
        connection.close()
