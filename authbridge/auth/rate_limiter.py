"""Attempt throttling backed by SQLite runtime state."""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from threading import Lock
from typing import Callable

from authbridge.api.errors import ApiError, ApiErrorCode
from authbridge.core.migrations import apply_migrations


class AttemptRateLimiter:
    """Rate limiter for one scope of attempts by (principal, ip) tuple.

    ``scope`` separates independent policies sharing the same database, e.g.
    password logins and code sends.
    """

    def __init__(
        self,
        *,
        database_path: Path,
        scope: str,
        max_attempts: int,
        window_seconds: int,
        lock_seconds: int,
        label: str = "attempts",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize limiter storage and policy parameters."""
        apply_migrations(database_path)
        self._connection = sqlite3.connect(str(database_path), check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._lock = Lock()
        self._scope = scope
        self._label = label
        self._max_attempts = max(1, int(max_attempts))
        self._window_seconds = max(1, int(window_seconds))
        self._lock_seconds = max(1, int(lock_seconds))
        self._clock = clock

    def _key(self, principal: str, client_ip: str) -> tuple[str, str, str]:
        return (self._scope, principal.strip().lower(), client_ip.strip() or "unknown")

    def assert_allowed(self, *, principal: str, client_ip: str) -> None:
        """Raise 429 when attempts are currently locked for the principal."""
        now = int(self._clock())
        key = self._key(principal, client_ip)
        with self._lock:
            row = self._connection.execute(
                """
                SELECT attempts, first_attempt_at, locked_until
                FROM auth_rate_limits
                WHERE scope = ? AND principal = ? AND client_ip = ?
                """,
                key,
            ).fetchone()
            if row is None:
                return

            locked_until = int(row["locked_until"] or 0)
            if locked_until > now:
                retry_after = locked_until - now
                raise ApiError(
                    status_code=429,
                    error_code=ApiErrorCode.AUTH_RATE_LIMITED,
                    message=f"Too many {self._label}. Retry after {retry_after} seconds.",
                    headers={"Retry-After": str(retry_after)},
                )

            first_attempt_at = int(row["first_attempt_at"] or 0)
            if first_attempt_at and (now - first_attempt_at) > self._window_seconds:
                self._connection.execute(
                    "DELETE FROM auth_rate_limits WHERE scope = ? AND principal = ? AND client_ip = ?",
                    key,
                )
                self._connection.commit()

    def reset(self, *, principal: str, client_ip: str) -> None:
        """Clear limiter state, e.g. after a successful login."""
        with self._lock:
            self._connection.execute(
                "DELETE FROM auth_rate_limits WHERE scope = ? AND principal = ? AND client_ip = ?",
                self._key(principal, client_ip),
            )
            self._connection.commit()

    def record_attempt(self, *, principal: str, client_ip: str) -> None:
        """Count one attempt and apply the lock when the threshold is reached."""
        now = int(self._clock())
        key = self._key(principal, client_ip)
        with self._lock:
            row = self._connection.execute(
                """
                SELECT attempts, first_attempt_at
                FROM auth_rate_limits
                WHERE scope = ? AND principal = ? AND client_ip = ?
                """,
                key,
            ).fetchone()

            if row is None:
                attempts = 1
                first_attempt_at = now
            else:
                previous_first = int(row["first_attempt_at"] or 0)
                if previous_first and (now - previous_first) > self._window_seconds:
                    attempts = 1
                    first_attempt_at = now
                else:
                    attempts = int(row["attempts"] or 0) + 1
                    first_attempt_at = previous_first or now

            locked_until = now + self._lock_seconds if attempts >= self._max_attempts else 0

            self._connection.execute(
                """
                INSERT INTO auth_rate_limits(
                  scope, principal, client_ip, attempts, first_attempt_at, last_attempt_at, locked_until
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(scope, principal, client_ip) DO UPDATE SET
                  attempts = excluded.attempts,
                  first_attempt_at = excluded.first_attempt_at,
                  last_attempt_at = excluded.last_attempt_at,
                  locked_until = excluded.locked_until
                """,
                (*key, attempts, first_attempt_at, now, locked_until),
            )
            self._connection.commit()

    def close(self) -> None:
        """Close SQLite resources."""
        with self._lock:
            self._connection.close()
