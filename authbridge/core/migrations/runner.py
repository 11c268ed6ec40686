"""Schema migrations for the SQLite rate-limit state database."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import closing
from pathlib import Path
from threading import Lock

LOGGER = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "sql"

# Login and send limiters open the same file at startup.
_APPLY_LOCK = Lock()


def pending_migrations(connection: sqlite3.Connection) -> list[Path]:
    applied = {
        row[0] for row in connection.execute("SELECT migration_id FROM schema_migrations")
    }
    return [path for path in sorted(MIGRATIONS_DIR.glob("*.sql")) if path.name not in applied]


def apply_migrations(database_path: Path) -> list[str]:
    """Bring ``database_path`` up to date and return the ids applied by this call.

    Each script is recorded in ``schema_migrations`` in the same transaction
    that runs it, so a failed script is retried on the next start.
    """
    database_path.parent.mkdir(parents=True, exist_ok=True)
    applied: list[str] = []
    with _APPLY_LOCK, closing(sqlite3.connect(str(database_path))) as connection:
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
              migration_id TEXT PRIMARY KEY,
              applied_at INTEGER NOT NULL
            )
            """
        )
        connection.commit()
        for path in pending_migrations(connection):
            statements = path.read_text(encoding="utf-8")
            connection.executescript(f"BEGIN;\n{statements}\n")
            connection.execute(
                "INSERT INTO schema_migrations(migration_id, applied_at) "
                "VALUES (?, strftime('%s','now'))",
                (path.name,),
            )
            connection.commit()
            applied.append(path.name)
    if applied:
        LOGGER.info("state_migrations_applied: %s", ", ".join(applied))
    return applied
