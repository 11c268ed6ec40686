"""Client-side persisted session state under one well-known key."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Lock
from typing import Protocol

from pydantic import ValidationError

from authbridge.session.unifier import AuthSession

LOGGER = logging.getLogger(__name__)

EMPLOYEE_SESSION_KEY = "employee_session"


class SessionStorage(Protocol):
    """Key/value storage of serialized values, like browser local storage."""

    def get_item(self, key: str) -> str | None:
        """Return stored value or ``None``."""

    def set_item(self, key: str, value: str) -> None:
        """Store value, replacing any previous one."""

    def remove_item(self, key: str) -> None:
        """Remove value if present."""


class MemorySessionStorage:
    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class JsonFileSessionStorage:
    """Storage persisted as one JSON object file."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = Lock()

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except Exception:
            return {}
        return payload if isinstance(payload, dict) else {}

    def _write(self, items: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(items, ensure_ascii=False, indent=2), encoding="utf-8")

    def get_item(self, key: str) -> str | None:
        with self._lock:
            value = self._read().get(key)
        return str(value) if value is not None else None

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            items = self._read()
            items[key] = value
            self._write(items)

    def remove_item(self, key: str) -> None:
        with self._lock:
            items = self._read()
            if items.pop(key, None) is not None:
                self._write(items)


def persist_session(storage: SessionStorage, session: AuthSession) -> None:
    """Write ``session`` under the well-known key, superseding the previous login."""
    storage.set_item(EMPLOYEE_SESSION_KEY, session.model_dump_json())


def load_session(storage: SessionStorage) -> AuthSession | None:
    raw = storage.get_item(EMPLOYEE_SESSION_KEY)
    if not raw:
        return None
    try:
        return AuthSession.model_validate_json(raw)
    except ValidationError:
        LOGGER.warning("stored_session_unreadable")
        return None


def clear_session(storage: SessionStorage) -> None:
    storage.remove_item(EMPLOYEE_SESSION_KEY)
