"""Repository for employee lookups with MongoDB primary and file-store fallback."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Lock
from typing import Any

from authbridge.employees.models import Employee

LOGGER = logging.getLogger(__name__)


class EmployeeLookupError(RuntimeError):
    """Raised when the employee store cannot answer a lookup."""


class EmployeeRepository:
    """Employee repository with MongoDB primary and file-store fallback."""

    def __init__(self, app_root: Path, database: Any | None = None) -> None:
        """Initialize repository storage backends."""
        self._fallback_dir = app_root / "runtime" / "employee_store"
        self._fallback_dir.mkdir(parents=True, exist_ok=True)
        self._employees_file = self._fallback_dir / "employees.json"
        self._file_lock = Lock()
        self._mongo_employees = database["employees"] if database is not None else None

    def _read_json_file(self, path: Path) -> list[dict[str, Any]]:
        """Read list payload from JSON file with empty fallback."""
        if not path.exists():
            return []
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except Exception:
            return []
        return payload if isinstance(payload, list) else []

    def _write_json_file(self, path: Path, items: list[dict[str, Any]]) -> None:
        """Persist list payload to JSON file."""
        path.write_text(json.dumps(items, ensure_ascii=False, indent=2), encoding="utf-8")

    def _find_active(self, field: str, value: str) -> Employee | None:
        """Return the single active employee whose ``field`` equals ``value``."""
        if not value:
            return None
        if self._mongo_employees is not None:
            try:
                docs = list(
                    self._mongo_employees.find(
                        {field: value, "is_active": True}, {"_id": 0}
                    ).limit(2)
                )
            except Exception as exc:
                raise EmployeeLookupError(f"Employee lookup by {field} failed") from exc
        else:
            docs = [
                row
                for row in self._read_json_file(self._employees_file)
                if row.get(field) == value and bool(row.get("is_active"))
            ]

        if len(docs) > 1:
            raise EmployeeLookupError(f"Multiple active employees share this {field}")
        return Employee.model_validate(docs[0]) if docs else None

    def find_active_by_phone(self, phone: str) -> Employee | None:
        """Get active employee by E.164 phone number."""
        return self._find_active("phone", phone)

    def find_active_by_email(self, email: str) -> Employee | None:
        """Get active employee by lowercase email."""
        return self._find_active("email", email.strip().lower())

    def find_active_by_username(self, username: str) -> Employee | None:
        """Get active employee by username."""
        return self._find_active("username", username.strip())

    def get_by_id(self, employee_id: str) -> Employee | None:
        """Get employee by id regardless of active flag."""
        if self._mongo_employees is not None:
            try:
                doc = self._mongo_employees.find_one({"id": employee_id}, {"_id": 0})
            except Exception as exc:
                raise EmployeeLookupError("Employee lookup by id failed") from exc
            return Employee.model_validate(doc) if doc else None

        for row in self._read_json_file(self._employees_file):
            if str(row.get("id", "")) == employee_id:
                return Employee.model_validate(row)
        return None

    def list_employees(self) -> list[Employee]:
        """Return all employee records."""
        if self._mongo_employees is not None:
            docs = list(self._mongo_employees.find({}, {"_id": 0}))
        else:
            docs = self._read_json_file(self._employees_file)
        return [Employee.model_validate(doc) for doc in docs]

    def upsert_employee(self, employee: Employee) -> None:
        """Create or update employee record."""
        doc = employee.model_dump()
        if doc.get("email"):
            doc["email"] = str(doc["email"]).strip().lower()
        if self._mongo_employees is not None:
            self._mongo_employees.update_one({"id": employee.id}, {"$set": doc}, upsert=True)
            return

        with self._file_lock:
            items = self._read_json_file(self._employees_file)
            next_items = [row for row in items if str(row.get("id", "")) != employee.id]
            next_items.append(doc)
            self._write_json_file(self._employees_file, next_items)

    def update_phone(self, employee_id: str, phone: str | None) -> bool:
        """Write the employee phone field; returns whether a record changed."""
        if self._mongo_employees is not None:
            result = self._mongo_employees.update_one(
                {"id": employee_id}, {"$set": {"phone": phone}}
            )
            updated = bool(result.matched_count)
        else:
            with self._file_lock:
                items = self._read_json_file(self._employees_file)
                updated = False
                for row in items:
                    if str(row.get("id", "")) == employee_id:
                        row["phone"] = phone
                        updated = True
                if updated:
                    self._write_json_file(self._employees_file, items)
        if updated:
            LOGGER.info("employee_phone_updated", extra={"employee_id": employee_id})
        return updated
