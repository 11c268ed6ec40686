"""Delivery provider contract and the ordered provider fallback chain."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests

from authbridge.core.logging import mask_address

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutboundMessage:
    """One message handed to a transport gateway."""

    to: str
    body: str
    subject: str = ""


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of a delivery attempt through one provider or a whole chain."""

    ok: bool
    provider: str = ""
    message_id: str = ""
    error: str = ""
    any_configured: bool = True
    failures: tuple[str, ...] = field(default_factory=tuple)


class DeliveryProvider(Protocol):
    """Uniform capability every transport provider exposes."""

    name: str

    @property
    def configured(self) -> bool:
        """Whether credentials for this provider are present."""

    def send(self, message: OutboundMessage) -> DeliveryResult:
        """Attempt delivery; may raise on transport errors."""


class HttpDeliveryProvider:
    """Base for providers that talk to an HTTP API through ``requests``."""

    name = "http"

    def __init__(self, *, timeout: float = 10.0, session: Any | None = None) -> None:
        self._timeout = timeout
        self._session = session or requests.Session()

    def _post(self, url: str, **kwargs: Any) -> Any:
        """POST and return decoded JSON (or ``{}``), raising on HTTP errors."""
        response = self._session.post(url, timeout=self._timeout, **kwargs)
        response.raise_for_status()
        try:
            return response.json()
        except ValueError:
            return {}


class ProviderChain:
    """Try providers in fixed priority order; the first success wins.

    Unconfigured providers are skipped without counting as failures.
    """

    def __init__(self, channel: str, providers: list[DeliveryProvider]) -> None:
        self._channel = channel
        self._providers = list(providers)

    @property
    def channel(self) -> str:
        return self._channel

    @property
    def provider_names(self) -> list[str]:
        return [provider.name for provider in self._providers]

    def deliver(self, message: OutboundMessage) -> DeliveryResult:
        """Deliver ``message`` through the first provider that succeeds."""
        failures: list[str] = []
        any_configured = False
        for provider in self._providers:
            if not provider.configured:
                LOGGER.debug(
                    "provider_skipped_unconfigured",
                    extra={"channel": self._channel, "provider": provider.name},
                )
                continue
            any_configured = True
            try:
                result = provider.send(message)
            except Exception as exc:
                LOGGER.warning(
                    "provider_failed: %s",
                    exc,
                    extra={"channel": self._channel, "provider": provider.name},
                )
                failures.append(f"{provider.name}: {exc}")
                continue
            if result.ok:
                LOGGER.info(
                    "delivery_succeeded: %s",
                    mask_address(message.to),
                    extra={"channel": self._channel, "provider": provider.name},
                )
                return result
            failures.append(f"{provider.name}: {result.error or 'rejected'}")

        return DeliveryResult(
            ok=False,
            error=f"No {self._channel} provider available",
            any_configured=any_configured,
            failures=tuple(failures),
        )
