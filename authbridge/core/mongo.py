"""MongoDB connection helper shared by repositories and stores."""

from __future__ import annotations

import logging
from typing import Any

from authbridge.core.config import StorageConfig

try:
    from pymongo import MongoClient
except Exception:  # pragma: no cover
    MongoClient = None  # type: ignore[assignment]

LOGGER = logging.getLogger(__name__)


def connect_database(config: StorageConfig) -> Any | None:
    """Return a pinged Mongo database handle, or ``None`` when unavailable."""
    if not config.mongo_uri or MongoClient is None:
        return None
    try:
        client = MongoClient(config.mongo_uri, serverSelectionTimeoutMS=3000)
        client.admin.command("ping")
        return client[config.mongo_db]
    except Exception:
        LOGGER.warning("MongoDB unreachable; using fallback storage.")
        return None
