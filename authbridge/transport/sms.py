"""SMS gateway providers."""

from __future__ import annotations

from typing import Any

from authbridge.transport.base import DeliveryResult, HttpDeliveryProvider, OutboundMessage

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


class TwilioMessagingProvider(HttpDeliveryProvider):
    """Twilio Programmable Messaging; ``address_prefix`` selects the network."""

    def __init__(
        self,
        *,
        name: str,
        account_sid: str,
        auth_token: str,
        from_address: str,
        address_prefix: str = "",
        timeout: float = 10.0,
        session: Any | None = None,
    ) -> None:
        super().__init__(timeout=timeout, session=session)
        self.name = name
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_address = from_address
        self._address_prefix = address_prefix

    @property
    def configured(self) -> bool:
        return bool(self._account_sid and self._auth_token and self._from_address)

    def send(self, message: OutboundMessage) -> DeliveryResult:
        payload = self._post(
            TWILIO_MESSAGES_URL.format(sid=self._account_sid),
            data={
                "From": self._from_address,
                "To": f"{self._address_prefix}{message.to}",
                "Body": message.body,
            },
            auth=(self._account_sid, self._auth_token),
        )
        return DeliveryResult(ok=True, provider=self.name, message_id=str(payload.get("sid") or ""))


def twilio_sms_provider(
    account_sid: str,
    auth_token: str,
    from_number: str,
    *,
    timeout: float = 10.0,
    session: Any | None = None,
) -> TwilioMessagingProvider:
    """Build the Twilio provider for plain SMS."""
    return TwilioMessagingProvider(
        name="twilio_sms",
        account_sid=account_sid,
        auth_token=auth_token,
        from_address=from_number,
        timeout=timeout,
        session=session,
    )
