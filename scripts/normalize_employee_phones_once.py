#!/usr/bin/env python3
"""One-shot normalization of stored employee phone numbers to E.164."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any


def _parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Normalize employee phone numbers to E.164.",
    )
    parser.add_argument(
        "mode",
        choices=("analyze", "migrate"),
        help="analyze reports what would change; migrate writes normalized phones.",
    )
    parser.add_argument(
        "--default-country-code",
        default="+1",
        help="Country code prepended to 10-digit numbers.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Plan migrate actions without writing changes.",
    )
    return parser.parse_args()


def _import_project(project_root: Path) -> tuple[Any, Any, Any, Any]:
    """Import project helpers lazily from project source."""
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))
    from authbridge.auth.addresses import normalize_phone
    from authbridge.core.config import AppConfig
    from authbridge.core.mongo import connect_database
    from authbridge.employees.repository import EmployeeRepository

    return normalize_phone, AppConfig, connect_database, EmployeeRepository


def plan_phone_updates(
    employees: list[Any], normalize: Any, default_country_code: str
) -> tuple[list[tuple[str, str, str]], list[tuple[str, str]]]:
    """Split employees into (id, old, new) updates and (id, raw) invalid phones."""
    updates: list[tuple[str, str, str]] = []
    invalid: list[tuple[str, str]] = []
    for employee in employees:
        raw = (employee.phone or "").strip()
        if not raw:
            continue
        try:
            normalized = normalize(raw, default_country_code)
        except ValueError:
            invalid.append((employee.id, raw))
            continue
        if normalized != employee.phone:
            updates.append((employee.id, raw, normalized))
    return updates, invalid


def main() -> int:
    """Run phone normalization workflow."""
    args = _parse_args()
    project_root = Path(__file__).resolve().parents[1]
    normalize_phone, app_config_class, connect_database, repo_class = _import_project(project_root)

    config = app_config_class.from_env()
    repo = repo_class(project_root, connect_database(config.storage))
    employees = repo.list_employees()
    updates, invalid = plan_phone_updates(employees, normalize_phone, args.default_country_code)

    for employee_id, old, new in updates:
        print(f"{employee_id}: {old} -> {new}")
    for employee_id, raw in invalid:
        print(f"{employee_id}: invalid phone {raw!r} left unchanged")

    updated = 0
    failed = 0
    if args.mode == "migrate" and not args.dry_run:
        for employee_id, _, new in updates:
            if repo.update_phone(employee_id, new):
                updated += 1
            else:
                failed += 1

    mode = args.mode if not args.dry_run else f"{args.mode} (dry-run)"
    print(f"Mode: {mode}")
    print(f"Scanned employees: {len(employees)}")
    print(f"Phones needing normalization: {len(updates)}")
    print(f"Invalid phones: {len(invalid)}")
    print(f"Updated: {updated}")
    print(f"Failed: {failed}")
    return 0 if failed == 0 else 2


if __name__ == "__main__":
    raise SystemExit(main())
