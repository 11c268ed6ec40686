from __future__ import annotations

from authbridge.auth.challenges import ChallengeService, InMemoryChallengeStore, VerifyStatus
from tests.fakes import Clock

PHONE = "+15551234567"


def _service(clock: Clock, store: InMemoryChallengeStore | None = None) -> ChallengeService:
    return ChallengeService(
        store or InMemoryChallengeStore(),
        secret_key="test-secret",
        ttl_seconds=300,
        max_attempts=3,
        clock=clock,
    )


def test_issue_returns_six_digit_code_and_stores_only_digest() -> None:
    store = InMemoryChallengeStore()
    service = _service(Clock(), store)

    code = service.issue("sms", PHONE)
    stored = store.get("sms", PHONE)

    assert len(code) == 6 and code.isdigit()
    assert stored is not None
    assert stored.code_hash != code
    assert code not in stored.model_dump_json()


def test_verify_success_consumes_code() -> None:
    service = _service(Clock())
    code = service.issue("sms", PHONE)

    first = service.verify("sms", PHONE, code)
    replay = service.verify("sms", PHONE, code)

    assert first.status is VerifyStatus.SUCCESS
    assert replay.status is VerifyStatus.NOT_FOUND


def test_reissue_replaces_previous_code() -> None:
    service = _service(Clock())
    old = service.issue("sms", PHONE)
    new = service.issue("sms", PHONE)

    if old != new:
        assert service.verify("sms", PHONE, old).status is VerifyStatus.INVALID
    assert service.verify("sms", PHONE, new).status is VerifyStatus.SUCCESS


def test_codes_are_scoped_per_channel() -> None:
    service = _service(Clock())
    code = service.issue("whatsapp", PHONE)

    assert service.verify("sms", PHONE, code).status is VerifyStatus.NOT_FOUND
    assert service.verify("whatsapp", PHONE, code).ok


def test_verify_after_ttl_reports_expired_and_deletes() -> None:
    clock = Clock()
    service = _service(clock)
    code = service.issue("sms", PHONE)

    clock.advance(301)
    expired = service.verify("sms", PHONE, code)
    again = service.verify("sms", PHONE, code)

    assert expired.status is VerifyStatus.EXPIRED
    assert again.status is VerifyStatus.NOT_FOUND


def test_three_failures_then_exhausted_even_with_correct_code() -> None:
    service = _service(Clock())
    code = service.issue("sms", PHONE)
    wrong = "000000" if code != "000000" else "111111"

    results = [service.verify("sms", PHONE, wrong) for _ in range(3)]
    fourth = service.verify("sms", PHONE, code)

    assert [r.status for r in results] == [VerifyStatus.INVALID] * 3
    assert [r.attempts_left for r in results] == [2, 1, 0]
    assert results[0].message == "Invalid code. 2 attempts remaining."
    assert fourth.status is VerifyStatus.EXHAUSTED
    assert service.verify("sms", PHONE, code).status is VerifyStatus.NOT_FOUND


def test_discard_removes_outstanding_challenge() -> None:
    service = _service(Clock())
    code = service.issue("sms", PHONE)

    service.discard("sms", PHONE)

    assert service.verify("sms", PHONE, code).status is VerifyStatus.NOT_FOUND


def test_purge_keeps_recently_expired_rows_for_one_window() -> None:
    clock = Clock()
    store = InMemoryChallengeStore()
    service = _service(clock, store)
    service.issue("sms", PHONE)

    clock.advance(400)
    service.issue("sms", "+15550000000")
    assert store.get("sms", PHONE) is not None

    clock.advance(300)
    service.issue("sms", "+15550000001")
    assert store.get("sms", PHONE) is None


def test_increment_attempts_ignores_superseded_issuance() -> None:
    clock = Clock()
    store = InMemoryChallengeStore()
    service = _service(clock, store)
    service.issue("sms", PHONE)
    first = store.get("sms", PHONE)
    assert first is not None

    clock.advance(1)
    service.issue("sms", PHONE)

    assert store.increment_attempts("sms", PHONE, first.created_at) is None
    assert store.delete("sms", PHONE, first.created_at) is False
