"""SMS to magic-link fallback when SMS delivery fails."""

from __future__ import annotations

import logging
from dataclasses import replace

from authbridge.auth.channels import MAGIC_LINK, ChannelOutcome, MagicLinkSender, SmsSender
from authbridge.core.logging import mask_address

LOGGER = logging.getLogger(__name__)


class FallbackOrchestrator:
    """Send an SMS code, falling back once to a magic link on transport failure.

    Only delivery failures trigger the fallback. Invalid numbers, unknown
    employees and lookup failures are returned unchanged.
    """

    def __init__(self, sms: SmsSender, magic_link: MagicLinkSender) -> None:
        self._sms = sms
        self._magic_link = magic_link

    def send_sms(self, raw_phone: str) -> ChannelOutcome:
        outcome = self._sms.send(raw_phone)
        if outcome.ok or not outcome.transport_failure:
            return outcome

        employee = outcome.employee
        if employee is None or not employee.email:
            return outcome

        LOGGER.info(
            "sms_fallback_to_magic_link: %s",
            mask_address(employee.email),
            extra={"channel": MAGIC_LINK, "employee_id": employee.id},
        )
        fallback = self._magic_link.send(employee.email, employee=employee)
        if not fallback.ok:
            return replace(
                outcome,
                message=f"SMS failed: {outcome.message}. Magic link also failed: {fallback.message}",
            )
        return replace(
            fallback,
            channel=outcome.channel,
            effective_channel=MAGIC_LINK,
            message=(
                f"SMS not available. Magic link sent to {fallback.address}! "
                "Check your email and click the link to login."
            ),
        )
