"""
rijig_portal/models/provider.py: Identity provider payloads and call results.

Every provider call returns a ``ProviderResult``: either a parsed value or a
``ProviderFailure`` classified by ``ErrorKind``. Provider failures are values,
not exceptions, so each step handler has to decide what to do with them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Generic, TypeVar

from pydantic import Field

from rijig_portal.models.common import PortalBase
from rijig_portal.models.enums import ErrorKind, RegistrationStatus, TokenType

T = TypeVar("T")


class TokenBundle(PortalBase):
    """Credentials issued after a successful OTP, profile or PIN step."""
    access_token: str = Field(..., min_length=1)
    refresh_token: str = ""
    session_id: str = ""
    token_type: TokenType | None = None
    registration_status: RegistrationStatus | None = None
    next_step: str | None = None
    expires_in: int | None = None
    message: str = ""


class OtpSent(PortalBase):
    """Acknowledgement of an issued OTP challenge."""
    message: str = ""
    expires_in_seconds: int = 300
    remaining_time: str | None = None
    can_resend: bool = True
    sent_at: datetime


class ApprovalStatus(PortalBase):
    """Answer of the approval check while a pengelola awaits an administrator."""
    message: str = ""
    registration_status: RegistrationStatus
    next_step: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    token_type: TokenType | None = None
    session_id: str | None = None

    @property
    def approved(self) -> bool:
        return self.registration_status in (
            RegistrationStatus.APPROVED,
            RegistrationStatus.COMPLETE,
        )


class ProviderFailure(PortalBase):
    """Classified failure of a provider call."""
    kind: ErrorKind
    message: str = ""
    status_code: int | None = None


@dataclass(frozen=True)
class ProviderResult(Generic[T]):
    """Either ``value`` (success) or ``failure``, never both."""

    value: T | None = None
    failure: ProviderFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T) -> "ProviderResult[T]":
        return cls(value=value)

    @classmethod
    def error(
        cls, kind: ErrorKind, message: str = "", status_code: int | None = None,
    ) -> "ProviderResult[T]":
        return cls(failure=ProviderFailure(kind=kind, message=message, status_code=status_code))
