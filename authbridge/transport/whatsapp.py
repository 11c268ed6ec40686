"""WhatsApp gateway providers tried in priority order: Twilio, Meta, webhook."""

from __future__ import annotations

from typing import Any

from authbridge.transport.base import DeliveryResult, HttpDeliveryProvider, OutboundMessage
from authbridge.transport.sms import TwilioMessagingProvider

META_MESSAGES_URL = "https://graph.facebook.com/v18.0/{phone_number_id}/messages"


def twilio_whatsapp_provider(
    account_sid: str,
    auth_token: str,
    whatsapp_number: str,
    *,
    timeout: float = 10.0,
    session: Any | None = None,
) -> TwilioMessagingProvider:
    """Build the Twilio provider for WhatsApp (``whatsapp:`` addressed)."""
    from_address = whatsapp_number
    if from_address and not from_address.startswith("whatsapp:"):
        from_address = f"whatsapp:{from_address}"
    return TwilioMessagingProvider(
        name="twilio_whatsapp",
        account_sid=account_sid,
        auth_token=auth_token,
        from_address=from_address,
        address_prefix="whatsapp:",
        timeout=timeout,
        session=session,
    )


class MetaWhatsAppProvider(HttpDeliveryProvider):
    """WhatsApp Business Cloud API."""

    name = "meta_whatsapp"

    def __init__(
        self,
        *,
        access_token: str,
        phone_number_id: str,
        timeout: float = 10.0,
        session: Any | None = None,
    ) -> None:
        super().__init__(timeout=timeout, session=session)
        self._access_token = access_token
        self._phone_number_id = phone_number_id

    @property
    def configured(self) -> bool:
        return bool(self._access_token and self._phone_number_id)

    def send(self, message: OutboundMessage) -> DeliveryResult:
        payload = self._post(
            META_MESSAGES_URL.format(phone_number_id=self._phone_number_id),
            json={
                "messaging_product": "whatsapp",
                "to": message.to.lstrip("+"),
                "type": "text",
                "text": {"body": message.body},
            },
            headers={"Authorization": f"Bearer {self._access_token}"},
        )
        messages = payload.get("messages") or [{}]
        return DeliveryResult(
            ok=True, provider=self.name, message_id=str(messages[0].get("id") or "")
        )


class WebhookWhatsAppProvider(HttpDeliveryProvider):
    """Generic webhook relay for self-hosted WhatsApp gateways."""

    name = "whatsapp_webhook"

    def __init__(
        self,
        *,
        webhook_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        session: Any | None = None,
    ) -> None:
        super().__init__(timeout=timeout, session=session)
        self._webhook_url = webhook_url
        self._api_key = api_key

    @property
    def configured(self) -> bool:
        return bool(self._webhook_url)

    def send(self, message: OutboundMessage) -> DeliveryResult:
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        self._post(
            self._webhook_url,
            json={"phone": message.to, "message": message.body, "type": "authentication"},
            headers=headers,
        )
        return DeliveryResult(ok=True, provider=self.name)
