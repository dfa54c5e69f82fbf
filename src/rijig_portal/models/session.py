"""
rijig_portal/models/session.py: Server-held session value.

``Session`` is an immutable value: handlers never mutate it, they derive a
new one with ``merge`` / ``unset`` / ``with_tokens`` and hand it to the
session store, which replaces the whole cookie.

Stable identity (role, tokens, contact) lives at the top level. The login
sub-flow keeps its transient data in ``LoginContext`` until the PIN is
verified; nothing in that context authorizes a request.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import Field

from rijig_portal.models.common import PortalBase
from rijig_portal.models.enums import RegistrationStatus, TokenType, UserRole
from rijig_portal.models.provider import TokenBundle


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LoginContext(PortalBase):
    """Transient state between the login OTP request and PIN verification."""

    model_config = {"frozen": True}

    pending_phone: str
    pending_device_id: str
    pending_token_bundle: TokenBundle | None = None
    otp_sent_at: datetime
    started_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, ttl_seconds: int, now: datetime | None = None) -> bool:
        """Abandonment timeout, measured from the start of the login attempt."""
        now = now or utcnow()
        return now >= self.started_at + timedelta(seconds=ttl_seconds)


class Session(PortalBase):
    """One per browser client. Empty session == unauthenticated."""

    model_config = {"frozen": True}

    role: UserRole = UserRole.NONE
    registration_status: RegistrationStatus | None = None

    access_token: str | None = None
    refresh_token: str | None = None
    token_type: TokenType | None = None
    session_id: str | None = None

    device_id: str | None = None
    phone: str | None = None
    email: str | None = None
    next_step: str | None = None
    otp_sent_at: datetime | None = None

    login: LoginContext | None = None

    # ── Queries ───────────────────────────────────────────────────────────

    @property
    def is_empty(self) -> bool:
        return self == Session()

    @property
    def has_tokens(self) -> bool:
        return bool(self.access_token)

    # ── Derivation ────────────────────────────────────────────────────────

    def merge(self, **fields: Any) -> "Session":
        """Returns a new validated session with ``fields`` replaced."""
        data = self.model_dump()
        data.update(fields)
        return Session.model_validate(data)

    def unset(self, *names: str) -> "Session":
        """Returns a new session with ``names`` reset to their defaults."""
        unknown = set(names) - set(Session.model_fields)
        if unknown:
            raise KeyError(f"Unknown session fields: {sorted(unknown)}")
        defaults = {name: Session.model_fields[name].get_default() for name in names}
        return self.merge(**defaults)

    def with_tokens(self, bundle: TokenBundle, **fields: Any) -> "Session":
        """
        Stores a freshly issued token bundle.

        Optional bundle fields the provider left out keep their current
        value, so a status check that only reports ``registration_status``
        does not wipe the tokens.
        """
        update: dict[str, Any] = {"access_token": bundle.access_token}
        if bundle.refresh_token:
            update["refresh_token"] = bundle.refresh_token
        if bundle.session_id:
            update["session_id"] = bundle.session_id
        if bundle.token_type is not None:
            update["token_type"] = bundle.token_type
        if bundle.registration_status is not None:
            update["registration_status"] = bundle.registration_status
        if bundle.next_step is not None:
            update["next_step"] = bundle.next_step
        update.update(fields)
        return self.merge(**update)

    def to_cookie_payload(self) -> str:
        return self.model_dump_json(exclude_none=True, exclude_defaults=True)
