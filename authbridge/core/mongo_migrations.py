"""Versioned MongoDB schema migrations for authentication collections."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from authbridge.core.config import StorageConfig
from authbridge.core.logging import CORRELATION_ID_CTX

try:
    import pymongo
except Exception:  # pragma: no cover
    pymongo = None  # type: ignore[assignment]

LOGGER = logging.getLogger(__name__)

MigrationFn = Callable[[Any], None]


def _migration_20261001_01_employee_indexes(db: Any) -> None:
    db["employees"].create_index("id", unique=True)
    db["employees"].create_index([("phone", 1), ("is_active", 1)])
    db["employees"].create_index([("email", 1), ("is_active", 1)])
    db["employees"].create_index([("username", 1), ("is_active", 1)])


def _migration_20261001_02_otp_challenges(db: Any) -> None:
    db["otp_challenges"].create_index(
        [("channel", 1), ("address", 1)],
        unique=True,
        name="idx_otp_challenges_channel_address",
    )
    # Expired rows stay readable for an hour so verify can still report "expired".
    db["otp_challenges"].create_index(
        "expires_at_dt",
        expireAfterSeconds=3600,
        name="idx_otp_challenges_expires_at_ttl",
    )


def _migration_20261001_03_qr_sessions(db: Any) -> None:
    db["qr_auth_sessions"].create_index("session_id", unique=True)
    db["qr_auth_sessions"].create_index("status")
    db["qr_auth_sessions"].create_index(
        "expires_at_dt",
        expireAfterSeconds=600,
        name="idx_qr_auth_sessions_expires_at_ttl",
    )


MIGRATIONS: list[tuple[str, MigrationFn]] = [
    ("20261001_01_employee_indexes", _migration_20261001_01_employee_indexes),
    ("20261001_02_otp_challenges", _migration_20261001_02_otp_challenges),
    ("20261001_03_qr_sessions", _migration_20261001_03_qr_sessions),
]


def apply_mongo_migrations(config: StorageConfig) -> None:
    """Apply MongoDB migrations if a Mongo URI is configured."""
    if not config.mongo_uri or pymongo is None:
        return

    client: Any = pymongo.MongoClient(config.mongo_uri, serverSelectionTimeoutMS=3000)
    try:
        try:
            client.admin.command("ping")
            db = client[config.mongo_db]
            migration_collection = db["schema_migrations"]
            migration_collection.create_index("migration_id", unique=True)

            for migration_id, migration_fn in MIGRATIONS:
                if migration_collection.find_one({"migration_id": migration_id}):
                    continue
                migration_fn(db)
                migration_collection.insert_one(
                    {
                        "migration_id": migration_id,
                        "applied_at": datetime.now(timezone.utc),
                        "correlation_id": CORRELATION_ID_CTX.get(),
                    }
                )
        except Exception:
            LOGGER.exception("Mongo migrations failed; continuing with fallback stores.")
            return
    finally:
        client.close()
