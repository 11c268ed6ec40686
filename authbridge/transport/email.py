"""Email gateway providers tried in priority order: Resend, SendGrid, Mailgun."""

from __future__ import annotations

from typing import Any

from authbridge.transport.base import DeliveryResult, HttpDeliveryProvider, OutboundMessage

RESEND_URL = "https://api.resend.com/emails"
SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
MAILGUN_URL = "https://api.mailgun.net/v3/{domain}/messages"


class ResendEmailProvider(HttpDeliveryProvider):
    name = "resend"

    def __init__(
        self, *, api_key: str, from_email: str, timeout: float = 10.0, session: Any | None = None
    ) -> None:
        super().__init__(timeout=timeout, session=session)
        self._api_key = api_key
        self._from_email = from_email

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def send(self, message: OutboundMessage) -> DeliveryResult:
        payload = self._post(
            RESEND_URL,
            json={
                "from": self._from_email,
                "to": [message.to],
                "subject": message.subject,
                "html": message.body,
            },
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        return DeliveryResult(ok=True, provider=self.name, message_id=str(payload.get("id") or ""))


class SendGridEmailProvider(HttpDeliveryProvider):
    name = "sendgrid"

    def __init__(
        self, *, api_key: str, from_email: str, timeout: float = 10.0, session: Any | None = None
    ) -> None:
        super().__init__(timeout=timeout, session=session)
        self._api_key = api_key
        self._from_email = from_email

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def send(self, message: OutboundMessage) -> DeliveryResult:
        self._post(
            SENDGRID_URL,
            json={
                "personalizations": [{"to": [{"email": message.to}]}],
                "from": {"email": self._from_email},
                "subject": message.subject,
                "content": [{"type": "text/html", "value": message.body}],
            },
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        return DeliveryResult(ok=True, provider=self.name)


class MailgunEmailProvider(HttpDeliveryProvider):
    name = "mailgun"

    def __init__(
        self,
        *,
        api_key: str,
        domain: str,
        from_email: str,
        timeout: float = 10.0,
        session: Any | None = None,
    ) -> None:
        super().__init__(timeout=timeout, session=session)
        self._api_key = api_key
        self._domain = domain
        self._from_email = from_email

    @property
    def configured(self) -> bool:
        return bool(self._api_key and self._domain)

    def send(self, message: OutboundMessage) -> DeliveryResult:
        payload = self._post(
            MAILGUN_URL.format(domain=self._domain),
            data={
                "from": self._from_email,
                "to": message.to,
                "subject": message.subject,
                "html": message.body,
            },
            auth=("api", self._api_key),
        )
        return DeliveryResult(ok=True, provider=self.name, message_id=str(payload.get("id") or ""))
