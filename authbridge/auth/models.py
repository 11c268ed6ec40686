"""Pydantic request models for the authentication endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PhoneSendRequest(BaseModel):
    """SMS send request payload."""

    phone: str = Field(min_length=1)


class WhatsAppSendRequest(BaseModel):
    """WhatsApp send request payload."""

    phone: str = Field(min_length=1)
    type: str = "authentication"


class CodeVerifyRequest(BaseModel):
    """Code verification request payload."""

    phone: str = Field(min_length=1)
    code: str = Field(min_length=1, max_length=12)


class MagicLinkSendRequest(BaseModel):
    """Magic link request payload."""

    email: str = Field(min_length=1)
    redirect_to: str | None = None


class MagicLinkCompleteRequest(BaseModel):
    """Magic link return trip payload.

    Either ``token`` (taken from the link) or ``access_token`` (an active
    provider session observed on page load) must be present.
    """

    email: str = Field(min_length=1)
    state: str = Field(min_length=1)
    token: str = ""
    access_token: str = ""


class LoginRequest(BaseModel):
    """Username/password login payload."""

    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class LogoutRequest(BaseModel):
    """Logout request payload."""

    access_token: str | None = None
