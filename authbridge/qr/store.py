"""QR session stores: in-memory, MongoDB and the client-local degraded store."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Protocol

from authbridge.employees.models import EmployeeSnapshot
from authbridge.qr.models import QRSession, QRStatus

try:
    from pymongo import ReturnDocument
except Exception:  # pragma: no cover
    ReturnDocument = None  # type: ignore[assignment]

LOGGER = logging.getLogger(__name__)


class QRStoreUnavailable(RuntimeError):
    """The backing store could not be reached."""


class QRSessionStore(Protocol):
    """Storage contract for cross-device sessions keyed by ``session_id``."""

    def create(self, session: QRSession) -> None:
        """Persist a new waiting session."""

    def get(self, session_id: str) -> QRSession | None:
        """Return the stored record or ``None``."""

    def mark_authenticated(
        self, session_id: str, employee_data: EmployeeSnapshot, now: float
    ) -> QRSession | None:
        """Atomically move a live waiting session to authenticated."""

    def claim(self, session_id: str) -> QRSession | None:
        """Atomically take an authenticated session so it cannot be claimed twice."""

    def delete(self, session_id: str) -> bool:
        """Remove the session; True if it existed."""


def _authenticated(session: QRSession, employee_data: EmployeeSnapshot, now: float) -> QRSession:
    return session.model_copy(
        update={
            "status": QRStatus.AUTHENTICATED,
            "employee_data": employee_data,
            "authenticated_at": now,
        }
    )


def _live(doc: dict[str, Any], now: float) -> bool:
    return float(doc.get("expires_at") or 0) > now


class MemoryQRSessionStore:
    """Process-local store; a restart drops all sessions."""

    degraded = False

    def __init__(self) -> None:
        self._items: dict[str, QRSession] = {}
        self._lock = Lock()

    def create(self, session: QRSession) -> None:
        with self._lock:
            # Nothing else sweeps abandoned sessions from process memory.
            self._items = {
                key: found
                for key, found in self._items.items()
                if not found.is_expired(session.created_at)
            }
            self._items[session.session_id] = session.model_copy()

    def get(self, session_id: str) -> QRSession | None:
        with self._lock:
            found = self._items.get(session_id)
            return found.model_copy() if found else None

    def mark_authenticated(
        self, session_id: str, employee_data: EmployeeSnapshot, now: float
    ) -> QRSession | None:
        with self._lock:
            found = self._items.get(session_id)
            if found is None or found.status != QRStatus.WAITING or found.is_expired(now):
                return None
            updated = _authenticated(found, employee_data, now)
            self._items[session_id] = updated
            return updated.model_copy()

    def claim(self, session_id: str) -> QRSession | None:
        with self._lock:
            found = self._items.get(session_id)
            if found is None or found.status != QRStatus.AUTHENTICATED:
                return None
            del self._items[session_id]
            return found

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._items.pop(session_id, None) is not None


class MongoQRSessionStore:
    """Store shared by every device through the ``qr_auth_sessions`` collection."""

    degraded = False

    def __init__(self, collection: Any) -> None:
        self._collection = collection

    @staticmethod
    def _load(doc: dict[str, Any] | None) -> QRSession | None:
        if not doc:
            return None
        doc.pop("_id", None)
        doc.pop("expires_at_dt", None)
        return QRSession.model_validate(doc)

    def create(self, session: QRSession) -> None:
        doc = session.model_dump(mode="json")
        doc["expires_at_dt"] = datetime.fromtimestamp(session.expires_at, tz=timezone.utc)
        try:
            self._collection.insert_one(doc)
        except Exception as exc:
            raise QRStoreUnavailable("QR session store is unavailable") from exc

    def get(self, session_id: str) -> QRSession | None:
        try:
            doc = self._collection.find_one({"session_id": session_id})
        except Exception as exc:
            raise QRStoreUnavailable("QR session store is unavailable") from exc
        return self._load(doc)

    def mark_authenticated(
        self, session_id: str, employee_data: EmployeeSnapshot, now: float
    ) -> QRSession | None:
        # Single conditional update so two scanners cannot both win.
        try:
            doc = self._collection.find_one_and_update(
                {
                    "session_id": session_id,
                    "status": QRStatus.WAITING.value,
                    "expires_at": {"$gt": now},
                },
                {
                    "$set": {
                        "status": QRStatus.AUTHENTICATED.value,
                        "employee_data": employee_data.model_dump(mode="json"),
                        "authenticated_at": now,
                    }
                },
                return_document=ReturnDocument.AFTER,
            )
        except Exception as exc:
            raise QRStoreUnavailable("QR session store is unavailable") from exc
        return self._load(doc)

    def claim(self, session_id: str) -> QRSession | None:
        query = {"session_id": session_id, "status": QRStatus.AUTHENTICATED.value}
        try:
            return self._load(self._collection.find_one_and_delete(query))
        except Exception:
            LOGGER.warning("qr_claim_delete_failed", extra={"session_id": session_id})

        # Delete failed: consume the record in place so it can never be claimed again.
        try:
            doc = self._collection.find_one_and_update(
                query,
                {"$set": {"status": QRStatus.CONSUMED.value}},
                return_document=ReturnDocument.BEFORE,
            )
        except Exception as exc:
            raise QRStoreUnavailable("QR session store is unavailable") from exc
        return self._load(doc)

    def delete(self, session_id: str) -> bool:
        try:
            result = self._collection.delete_one({"session_id": session_id})
        except Exception as exc:
            raise QRStoreUnavailable("QR session store is unavailable") from exc
        return bool(result.deleted_count)


class LocalQRSessionStore:
    """Client-local JSON file store used when the shared store is unreachable.

    Sessions here are only visible to processes on the same machine, so a
    scan from another physical device can never complete against them.
    """

    degraded = True

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = Lock()

    def _read(self) -> dict[str, dict[str, Any]]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except Exception:
            return {}
        return payload if isinstance(payload, dict) else {}

    def _write(self, items: dict[str, dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(items, ensure_ascii=False, indent=2), encoding="utf-8")

    def create(self, session: QRSession) -> None:
        with self._lock:
            items = {
                key: doc for key, doc in self._read().items() if _live(doc, session.created_at)
            }
            items[session.session_id] = session.model_dump(mode="json")
            self._write(items)

    def get(self, session_id: str) -> QRSession | None:
        with self._lock:
            doc = self._read().get(session_id)
        return QRSession.model_validate(doc) if doc else None

    def mark_authenticated(
        self, session_id: str, employee_data: EmployeeSnapshot, now: float
    ) -> QRSession | None:
        with self._lock:
            items = self._read()
            doc = items.get(session_id)
            if not doc:
                return None
            found = QRSession.model_validate(doc)
            if found.status != QRStatus.WAITING or found.is_expired(now):
                return None
            updated = _authenticated(found, employee_data, now)
            items[session_id] = updated.model_dump(mode="json")
            self._write(items)
            return updated

    def claim(self, session_id: str) -> QRSession | None:
        with self._lock:
            items = self._read()
            doc = items.get(session_id)
            if not doc or doc.get("status") != QRStatus.AUTHENTICATED.value:
                return None
            del items[session_id]
            self._write(items)
        return QRSession.model_validate(doc)

    def delete(self, session_id: str) -> bool:
        with self._lock:
            items = self._read()
            if items.pop(session_id, None) is None:
                return False
            self._write(items)
            return True
