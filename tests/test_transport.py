from __future__ import annotations

from typing import Any

import requests

from authbridge.transport.base import OutboundMessage, ProviderChain
from authbridge.transport.email import MailgunEmailProvider, ResendEmailProvider
from authbridge.transport.sms import twilio_sms_provider
from authbridge.transport.whatsapp import (
    MetaWhatsAppProvider,
    WebhookWhatsAppProvider,
    twilio_whatsapp_provider,
)
from tests.fakes import FakeProvider


class _Response:
    def __init__(self, payload: Any, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self) -> Any:
        return self._payload


class _Session:
    def __init__(self, payload: Any = None, status_code: int = 200) -> None:
        self.payload = payload or {}
        self.status_code = status_code
        self.posts: list[dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any) -> _Response:
        self.posts.append({"url": url, **kwargs})
        return _Response(self.payload, self.status_code)


MESSAGE = OutboundMessage(to="+15551234567", body="Your code is 123456")


def test_chain_skips_unconfigured_and_first_success_wins() -> None:
    skipped = FakeProvider(name="a", configured=False)
    winner = FakeProvider(name="b")
    never = FakeProvider(name="c")
    chain = ProviderChain("whatsapp", [skipped, winner, never])

    result = chain.deliver(MESSAGE)

    assert result.ok and result.provider == "b"
    assert skipped.sent == [] and never.sent == []


def test_chain_falls_through_errors_and_rejections() -> None:
    broken = FakeProvider(name="a", error=RuntimeError("timeout"))
    rejecting = FakeProvider(name="b", ok=False)
    working = FakeProvider(name="c")
    chain = ProviderChain("whatsapp", [broken, rejecting, working])

    result = chain.deliver(MESSAGE)

    assert result.ok and result.provider == "c"


def test_chain_reports_failures_when_all_configured_fail() -> None:
    chain = ProviderChain(
        "sms", [FakeProvider(name="a", error=RuntimeError("down")), FakeProvider(name="b", ok=False)]
    )

    result = chain.deliver(MESSAGE)

    assert not result.ok
    assert result.any_configured is True
    assert result.error == "No sms provider available"
    assert result.failures == ("a: down", "b: rejected by gateway")


def test_chain_with_nothing_configured_flags_no_provider() -> None:
    result = ProviderChain("email", [FakeProvider(configured=False)]).deliver(MESSAGE)

    assert not result.ok
    assert result.any_configured is False


def test_twilio_sms_posts_form_with_basic_auth() -> None:
    session = _Session({"sid": "SM123"})
    provider = twilio_sms_provider("AC1", "tok", "+15550001111", session=session)

    result = provider.send(MESSAGE)

    assert result.message_id == "SM123"
    post = session.posts[0]
    assert post["url"] == "https://api.twilio.com/2010-04-01/Accounts/AC1/Messages.json"
    assert post["data"] == {"From": "+15550001111", "To": "+15551234567", "Body": MESSAGE.body}
    assert post["auth"] == ("AC1", "tok")


def test_twilio_whatsapp_prefixes_both_addresses() -> None:
    session = _Session({"sid": "SM9"})
    provider = twilio_whatsapp_provider("AC1", "tok", "+15550001111", session=session)

    provider.send(MESSAGE)

    assert provider.name == "twilio_whatsapp"
    assert session.posts[0]["data"]["From"] == "whatsapp:+15550001111"
    assert session.posts[0]["data"]["To"] == "whatsapp:+15551234567"


def test_twilio_unconfigured_without_credentials() -> None:
    assert twilio_sms_provider("", "", "").configured is False


def test_meta_whatsapp_strips_plus_and_reads_message_id() -> None:
    session = _Session({"messages": [{"id": "wamid.1"}]})
    provider = MetaWhatsAppProvider(access_token="meta", phone_number_id="42", session=session)

    result = provider.send(MESSAGE)

    assert result.message_id == "wamid.1"
    assert session.posts[0]["json"]["to"] == "15551234567"
    assert session.posts[0]["headers"] == {"Authorization": "Bearer meta"}


def test_webhook_whatsapp_sends_api_key_when_present() -> None:
    session = _Session()
    provider = WebhookWhatsAppProvider(webhook_url="https://hook.test", api_key="k", session=session)

    provider.send(MESSAGE)

    assert session.posts[0]["json"] == {
        "phone": "+15551234567",
        "message": MESSAGE.body,
        "type": "authentication",
    }
    assert session.posts[0]["headers"] == {"Authorization": "Bearer k"}


def test_http_error_raises_so_chain_moves_on() -> None:
    failing = ResendEmailProvider(api_key="re", from_email="a@b.c", session=_Session(status_code=500))
    fallback_session = _Session({"id": "mg-1"})
    fallback = MailgunEmailProvider(
        api_key="mg", domain="mg.test", from_email="a@b.c", session=fallback_session
    )
    chain = ProviderChain("email", [failing, fallback])

    result = chain.deliver(OutboundMessage(to="ada@example.com", subject="Hi", body="<p>x</p>"))

    assert result.ok and result.provider == "mailgun"
    assert fallback_session.posts[0]["auth"] == ("api", "mg")
    assert fallback_session.posts[0]["data"]["to"] == "ada@example.com"
