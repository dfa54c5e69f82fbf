"""
═══════════════════════════════════════════════════════════════════════════════
Rijig Portal: Custom Exception Hierarchy
═══════════════════════════════════════════════════════════════════════════════

Base class ``PortalError``. HTTP mapping of the codes is done in
``rijig_portal.main:portal_error_handler``.

Provider failures are *values* (``ProviderResult``); a step handler that
receives one raises ``StepFailedError`` so the failure is rendered in the
step's own view. ``RedirectRequired`` is raised by the guard when the session
belongs to a different step.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rijig_portal.models.enums import ErrorKind


if TYPE_CHECKING:
    from rijig_portal.models.provider import ProviderFailure
    from rijig_portal.models.session import Session


class PortalError(Exception):
    """
    Base exception for every domain error of the portal.

    Attributes
    ──────────
        message (str):  Human-readable description, sent to the client.
        code (str):     String code, mapped to an HTTP status.
        details (dict): Extra data (step, field errors, ...).
    """

    def __init__(
        self,
        message: str,
        code: str = "PORTAL_ERROR",
        details: dict | None = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)


class StepValidationError(PortalError):
    """Step input rejected locally, before any provider call: 400."""

    def __init__(self, fields: dict[str, str], step: str | None = None):
        super().__init__(
            "Please correct the highlighted fields",
            code="PORTAL_VALIDATION_ERROR",
            details={"step": step, "fields": fields},
        )
        self.fields = fields


KIND_CODES: dict[ErrorKind, str] = {
    ErrorKind.VALIDATION: "PORTAL_VALIDATION_ERROR",
    ErrorKind.REJECTED: "PORTAL_REJECTED",
    ErrorKind.AUTH: "PORTAL_AUTH_ERROR",
    ErrorKind.RATE_LIMITED: "PORTAL_RATE_LIMITED",
    ErrorKind.LOCKED: "PORTAL_ACCOUNT_LOCKED",
    ErrorKind.TRANSPORT: "PORTAL_PROVIDER_UNAVAILABLE",
}


RATE_LIMITED_MESSAGE = "Too many attempts. Please wait a few minutes and try again."
LOCKED_MESSAGE = "This account is locked. Please contact Rijig support."
TRANSPORT_MESSAGE = "The identity service could not be reached. Please try again."


def describe_failure(failure: "ProviderFailure", fallback: str, auth_message: str) -> str:
    """Picks the message shown to the user for a provider failure."""
    if failure.kind == ErrorKind.REJECTED:
        return failure.message or fallback
    if failure.kind == ErrorKind.AUTH:
        return auth_message
    if failure.kind == ErrorKind.RATE_LIMITED:
        return RATE_LIMITED_MESSAGE
    if failure.kind == ErrorKind.LOCKED:
        return LOCKED_MESSAGE
    return TRANSPORT_MESSAGE


class StepFailedError(PortalError):
    """A provider call made by a step did not succeed. The session is untouched."""

    def __init__(
        self,
        step: str,
        failure: "ProviderFailure",
        fallback: str = "The request could not be completed",
        auth_message: str = "The code you entered is incorrect",
    ):
        super().__init__(
            describe_failure(failure, fallback, auth_message),
            code=KIND_CODES[failure.kind],
            details={"step": step, "kind": failure.kind.value},
        )
        self.step = step
        self.failure = failure


class RedirectRequired(PortalError):
    """
    The request has to continue on another route: 303 See Other.

    ``session`` is committed with the redirect when the guard had to repair
    the stored session (e.g. an abandoned login context was pruned).
    """

    def __init__(self, location: str, session: "Session | None" = None):
        super().__init__(f"Redirect to {location}", code="PORTAL_REDIRECT")
        self.location = location
        self.session = session


class SessionTooLargeError(PortalError):
    """Encoded session does not fit into a cookie: 500."""

    def __init__(self, size: int, limit: int):
        super().__init__(
            f"Session cookie of {size} bytes exceeds {limit} bytes",
            code="PORTAL_SESSION_TOO_LARGE",
            details={"size": size, "limit": limit},
        )


class SessionInvalidatedError(PortalError):
    """The provider no longer accepts the session's tokens: 401, cookie destroyed."""

    def __init__(self, message: str = "Your session has ended. Please sign in again."):
        super().__init__(message, code="PORTAL_SESSION_INVALIDATED")


class ConfigurationError(PortalError):
    """The portal is not wired correctly (e.g. no identity provider): 500."""

    def __init__(self, message: str):
        super().__init__(message, code="PORTAL_CONFIGURATION_ERROR")


__all__ = [
    "PortalError",
    "StepValidationError",
    "StepFailedError",
    "RedirectRequired",
    "SessionTooLargeError",
    "SessionInvalidatedError",
    "ConfigurationError",
    "describe_failure",
]
