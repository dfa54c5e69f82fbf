"""
═══════════════════════════════════════════════════════════════════════════════
Rijig Portal: Session Store (cookie transport)
═══════════════════════════════════════════════════════════════════════════════

The session travels in one httpOnly cookie holding the ``Session`` JSON as a
compact JWE (``dir`` + ``A256GCM``, DEFLATE-compressed):

    • tamper-evident: AES-GCM authentication tag;
    • opaque: tokens and phone numbers cannot be read client-side;
    • replace-on-write: every save overwrites the whole cookie,
      concurrent tabs follow last-write-wins.

Secrets rotate: the first configured secret encrypts, all of them decrypt.
A missing, foreign or corrupted cookie loads as an empty session.
"""

from __future__ import annotations

import hashlib
import logging
import zlib
from functools import lru_cache
from typing import Protocol, Sequence

from fastapi import Request, Response
from fastapi.responses import RedirectResponse
from jose import jwe
from jose.exceptions import JOSEError
from pydantic import ValidationError

from rijig_portal.config import get_settings
from rijig_portal.exceptions import SessionTooLargeError
from rijig_portal.models.session import Session, utcnow

logger = logging.getLogger(__name__)

MAX_COOKIE_BYTES = 4096


def _derive_key(secret: str) -> bytes:
    """A256GCM needs exactly 32 bytes of key material."""
    return hashlib.sha256(secret.encode("utf-8")).digest()


class SessionStore(Protocol):
    """Capability interface used by guards and step handlers."""

    def load(self, request: Request) -> Session: ...

    def save(self, response: Response, session: Session) -> None: ...

    def destroy(self, response: Response) -> None: ...


class CookieSessionStore:
    """``SessionStore`` backed by an encrypted cookie."""

    def __init__(
        self,
        cookie_name: str,
        secrets: Sequence[str],
        max_age: int,
        secure: bool,
        login_context_ttl: int,
    ) -> None:
        if not secrets:
            raise ValueError("At least one session secret is required")
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.secure = secure
        self.login_context_ttl = login_context_ttl
        self._keys = [_derive_key(s) for s in secrets]

    # ── Codec ─────────────────────────────────────────────────────────────

    def encode(self, session: Session) -> str:
        token = jwe.encrypt(
            session.to_cookie_payload(),
            self._keys[0],
            algorithm="dir",
            encryption="A256GCM",
            zip="DEF",
        )
        value = token.decode("ascii") if isinstance(token, bytes) else token
        if len(value) > MAX_COOKIE_BYTES:
            raise SessionTooLargeError(len(value), MAX_COOKIE_BYTES)
        return value

    def decode(self, value: str) -> Session:
        for key in self._keys:
            try:
                plaintext = jwe.decrypt(value, key)
            except (JOSEError, ValueError, zlib.error):
                continue
            if plaintext is None:
                continue
            try:
                return Session.model_validate_json(plaintext)
            except ValidationError as exc:
                logger.debug("Session payload rejected: %s", exc.error_count())
                return Session()
        logger.debug("Session cookie could not be decrypted, treating as unauthenticated")
        return Session()

    # ── SessionStore ──────────────────────────────────────────────────────

    def load(self, request: Request) -> Session:
        value = request.cookies.get(self.cookie_name)
        if not value:
            return Session()
        return self.decode(value)

    def save(self, response: Response, session: Session) -> None:
        if session.is_empty:
            self.destroy(response)
            return
        response.set_cookie(
            key=self.cookie_name,
            value=self.encode(session),
            max_age=self.max_age,
            path="/",
            secure=self.secure,
            httponly=True,
            samesite="lax",
        )

    def destroy(self, response: Response) -> None:
        response.delete_cookie(
            key=self.cookie_name,
            path="/",
            secure=self.secure,
            httponly=True,
            samesite="lax",
        )

    # ── Helpers ───────────────────────────────────────────────────────────

    def prune(self, session: Session) -> Session:
        """Drops a login context whose abandonment timeout has elapsed."""
        if session.login is not None and session.login.is_expired(
            self.login_context_ttl, utcnow(),
        ):
            logger.info("Abandoned login context for device %s dropped",
                        session.login.pending_device_id)
            return session.unset("login")
        return session

    def commit_redirect(self, session: Session, location: str) -> RedirectResponse:
        """Saves ``session`` and redirects (303) to ``location``."""
        response = RedirectResponse(location, status_code=303)
        self.save(response, session)
        return response

    def clear_redirect(self, location: str) -> RedirectResponse:
        response = RedirectResponse(location, status_code=303)
        self.destroy(response)
        return response


@lru_cache
def get_session_store() -> CookieSessionStore:
    """Singleton store built from PortalSettings."""
    settings = get_settings()
    return CookieSessionStore(
        cookie_name=settings.session_cookie_name,
        secrets=settings.session_secrets,
        max_age=settings.session_max_age_seconds,
        secure=settings.is_production,
        login_context_ttl=settings.login_context_ttl_seconds,
    )


__all__ = ["SessionStore", "CookieSessionStore", "get_session_store", "MAX_COOKIE_BYTES"]
