"""Pydantic models for employee identity records."""

from __future__ import annotations

from pydantic import BaseModel


class OrganizationRef(BaseModel):
    """Organization reference embedded in session snapshots."""

    id: str = ""
    name: str = ""


class Employee(BaseModel):
    """Employee record owned by the external identity store."""

    id: str
    employee_id: str = ""
    organization_id: str = ""
    organization_name: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str | None = None
    phone: str | None = None
    username: str = ""
    password_hash: str = ""
    role: str = "employee"
    is_active: bool = True
    can_expense: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def snapshot(self) -> "EmployeeSnapshot":
        """Return the credential-free view carried by sessions."""
        return EmployeeSnapshot(
            id=self.id,
            employee_id=self.employee_id,
            organization_id=self.organization_id,
            first_name=self.first_name,
            last_name=self.last_name,
            email=self.email,
            phone=self.phone,
            role=self.role,
            username=self.username,
            is_active=self.is_active,
            can_expense=self.can_expense,
            organization=OrganizationRef(
                id=self.organization_id, name=self.organization_name
            ),
        )


class EmployeeSnapshot(BaseModel):
    """Employee fields every authentication channel must agree on."""

    id: str
    employee_id: str = ""
    organization_id: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str | None = None
    phone: str | None = None
    role: str = "employee"
    username: str = ""
    is_active: bool = True
    can_expense: bool = False
    organization: OrganizationRef = OrganizationRef()
