"""One-time code challenges: storage backends and the issue/verify policy."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from threading import Lock
from typing import Any, Callable, Protocol

from pydantic import BaseModel

from authbridge.core.logging import mask_address
from authbridge.core.security import codes_match, digest_code, generate_otp_code

try:
    from pymongo import ReturnDocument
except Exception:  # pragma: no cover
    ReturnDocument = None  # type: ignore[assignment]

LOGGER = logging.getLogger(__name__)

CODE_LENGTH = 6


class OTPChallenge(BaseModel):
    """Outstanding one-time code for a (channel, address) pair."""

    channel: str
    address: str
    code_hash: str
    created_at: float
    expires_at: float
    attempts: int = 0
    max_attempts: int = 3


class VerifyStatus(StrEnum):
    """Result kinds of a verify attempt."""

    SUCCESS = "success"
    INVALID = "invalid"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class VerifyResult:
    """Structured verify outcome with its user-facing message."""

    status: VerifyStatus
    attempts_left: int = 0

    @property
    def ok(self) -> bool:
        return self.status is VerifyStatus.SUCCESS

    @property
    def message(self) -> str:
        if self.status is VerifyStatus.SUCCESS:
            return "Code verified"
        if self.status is VerifyStatus.INVALID:
            return f"Invalid code. {self.attempts_left} attempts remaining."
        if self.status is VerifyStatus.EXPIRED:
            return "Code has expired. Please request a new code."
        if self.status is VerifyStatus.EXHAUSTED:
            return "Too many incorrect attempts. Please request a new code."
        return "No code found for this address. Please request a new code."


class ChallengeStore(Protocol):
    """Storage contract for challenges; one record per (channel, address)."""

    def save(self, challenge: OTPChallenge) -> None:
        """Insert or replace the challenge for its (channel, address)."""

    def get(self, channel: str, address: str) -> OTPChallenge | None:
        """Return the current challenge or ``None``."""

    def increment_attempts(
        self, channel: str, address: str, created_at: float
    ) -> OTPChallenge | None:
        """Atomically bump the failure counter of one issuance."""

    def delete(self, channel: str, address: str, created_at: float | None = None) -> bool:
        """Delete the challenge (optionally only a given issuance); True if removed."""

    def purge_expired(self, before: float) -> int:
        """Remove challenges that expired before ``before``; returns the count."""


class InMemoryChallengeStore:
    """Process-local challenge store; a restart drops all outstanding codes."""

    def __init__(self) -> None:
        self._items: dict[tuple[str, str], OTPChallenge] = {}
        self._lock = Lock()

    def save(self, challenge: OTPChallenge) -> None:
        with self._lock:
            self._items[(challenge.channel, challenge.address)] = challenge.model_copy()

    def get(self, channel: str, address: str) -> OTPChallenge | None:
        with self._lock:
            found = self._items.get((channel, address))
            return found.model_copy() if found else None

    def increment_attempts(
        self, channel: str, address: str, created_at: float
    ) -> OTPChallenge | None:
        with self._lock:
            found = self._items.get((channel, address))
            if found is None or found.created_at != created_at:
                return None
            found.attempts += 1
            return found.model_copy()

    def delete(self, channel: str, address: str, created_at: float | None = None) -> bool:
        with self._lock:
            found = self._items.get((channel, address))
            if found is None:
                return False
            if created_at is not None and found.created_at != created_at:
                return False
            del self._items[(channel, address)]
            return True

    def purge_expired(self, before: float) -> int:
        with self._lock:
            expired = [key for key, item in self._items.items() if item.expires_at < before]
            for key in expired:
                del self._items[key]
        return len(expired)


class MongoChallengeStore:
    """Challenge store shared across processes through a Mongo collection."""

    def __init__(self, collection: Any) -> None:
        self._collection = collection

    def save(self, challenge: OTPChallenge) -> None:
        doc = challenge.model_dump()
        doc["expires_at_dt"] = datetime.fromtimestamp(challenge.expires_at, tz=timezone.utc)
        self._collection.replace_one(
            {"channel": challenge.channel, "address": challenge.address},
            doc,
            upsert=True,
        )

    def get(self, channel: str, address: str) -> OTPChallenge | None:
        doc = self._collection.find_one(
            {"channel": channel, "address": address}, {"_id": 0, "expires_at_dt": 0}
        )
        return OTPChallenge.model_validate(doc) if doc else None

    def increment_attempts(
        self, channel: str, address: str, created_at: float
    ) -> OTPChallenge | None:
        doc = self._collection.find_one_and_update(
            {"channel": channel, "address": address, "created_at": created_at},
            {"$inc": {"attempts": 1}},
            projection={"_id": 0, "expires_at_dt": 0},
            return_document=ReturnDocument.AFTER,
        )
        return OTPChallenge.model_validate(doc) if doc else None

    def delete(self, channel: str, address: str, created_at: float | None = None) -> bool:
        query: dict[str, Any] = {"channel": channel, "address": address}
        if created_at is not None:
            query["created_at"] = created_at
        result = self._collection.delete_one(query)
        return bool(result.deleted_count)

    def purge_expired(self, before: float) -> int:
        result = self._collection.delete_many({"expires_at": {"$lt": before}})
        return int(result.deleted_count)


class ChallengeService:
    """Issue and verify single-use numeric codes with expiry and attempt caps."""

    def __init__(
        self,
        store: ChallengeStore,
        *,
        secret_key: str,
        ttl_seconds: int = 300,
        max_attempts: int = 3,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._secret_key = secret_key
        self._ttl_seconds = max(1, int(ttl_seconds))
        self._max_attempts = max(1, int(max_attempts))
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def issue(self, channel: str, address: str, *, ttl_seconds: int | None = None) -> str:
        """Create a fresh code for (channel, address), replacing any previous one."""
        code = generate_otp_code(CODE_LENGTH)
        now = self._clock()
        # Expired rows linger one window so verify can still report "expired".
        self._store.purge_expired(now - self._ttl_seconds)
        self._store.save(
            OTPChallenge(
                channel=channel,
                address=address,
                code_hash=digest_code(code, self._secret_key),
                created_at=now,
                expires_at=now + (ttl_seconds or self._ttl_seconds),
                attempts=0,
                max_attempts=self._max_attempts,
            )
        )
        LOGGER.info(
            "challenge_issued: %s", mask_address(address), extra={"channel": channel}
        )
        return code

    def discard(self, channel: str, address: str) -> None:
        """Drop an outstanding challenge, e.g. after its delivery failed."""
        self._store.delete(channel, address)

    def verify(self, channel: str, address: str, submitted_code: str) -> VerifyResult:
        """Check ``submitted_code`` against the outstanding challenge.

        Failed compares are counted against the challenge and retained; once the
        cap is reached the next attempt reports exhaustion and deletes it. A
        successful compare deletes the challenge so the code cannot be replayed.
        """
        challenge = self._store.get(channel, address)
        if challenge is None:
            return VerifyResult(VerifyStatus.NOT_FOUND)

        if self._clock() > challenge.expires_at:
            self._store.delete(channel, address, challenge.created_at)
            return VerifyResult(VerifyStatus.EXPIRED)

        if challenge.attempts >= challenge.max_attempts:
            self._store.delete(channel, address, challenge.created_at)
            return VerifyResult(VerifyStatus.EXHAUSTED)

        if not codes_match(submitted_code or "", challenge.code_hash, self._secret_key):
            updated = self._store.increment_attempts(channel, address, challenge.created_at)
            if updated is None:
                return VerifyResult(VerifyStatus.NOT_FOUND)
            attempts_left = max(0, updated.max_attempts - updated.attempts)
            LOGGER.info(
                "challenge_mismatch: %s attempts_left=%s",
                mask_address(address),
                attempts_left,
                extra={"channel": channel},
            )
            return VerifyResult(VerifyStatus.INVALID, attempts_left=attempts_left)

        # Losing the delete race means another request already consumed this code.
        if not self._store.delete(channel, address, challenge.created_at):
            return VerifyResult(VerifyStatus.NOT_FOUND)
        LOGGER.info("challenge_verified: %s", mask_address(address), extra={"channel": channel})
        return VerifyResult(VerifyStatus.SUCCESS)
