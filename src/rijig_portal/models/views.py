"""
rijig_portal/models/views.py: View models rendered by the step routes.

The UI layer only sees these: OTP countdowns, step hints and the authorized
session summary for dashboards. Tokens, OTP codes and PINs never appear here.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import Field

from rijig_portal.models.common import PortalBase
from rijig_portal.models.enums import RegistrationStatus, UserRole
from rijig_portal.models.session import Session, utcnow


def format_remaining(seconds: int) -> str:
    """``125`` → ``"2:05"``."""
    minutes, rest = divmod(max(seconds, 0), 60)
    return f"{minutes}:{rest:02d}"


class OtpCountdown(PortalBase):
    """Cosmetic countdown; the identity provider is authoritative for expiry."""
    sent_at: datetime
    expires_at: datetime
    remaining_seconds: int
    remaining_time: str
    expired: bool

    @classmethod
    def from_sent_at(
        cls, sent_at: datetime, expiry_minutes: int, now: datetime | None = None,
    ) -> "OtpCountdown":
        now = now or utcnow()
        expires_at = sent_at + timedelta(minutes=expiry_minutes)
        remaining = max(int((expires_at - now).total_seconds()), 0)
        return cls(
            sent_at=sent_at,
            expires_at=expires_at,
            remaining_seconds=remaining,
            remaining_time=format_remaining(remaining),
            expired=remaining == 0,
        )


class StepView(PortalBase):
    """Payload of a step page (GET) or of a non-redirecting step action."""
    step: str
    message: str = ""
    phone: str | None = None
    email: str | None = None
    registration_status: RegistrationStatus | None = None
    next_step: str | None = None
    otp: OtpCountdown | None = None
    approved: bool | None = None
    restart_path: str | None = None


class AuthorizedSession(PortalBase):
    """What dashboards get to know about the signed-in user."""
    role: UserRole
    phone: str | None = None
    email: str | None = None
    registration_status: RegistrationStatus | None = None
    session_id: str | None = None
    checked_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_session(cls, session: Session) -> "AuthorizedSession":
        return cls(
            role=session.role,
            phone=session.phone,
            email=session.email,
            registration_status=session.registration_status,
            session_id=session.session_id,
        )
