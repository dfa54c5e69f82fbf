"""
rijig_portal/models/enums.py: Enumerations of the onboarding domain.

    • UserRole: who the session belongs to
    • RegistrationStatus: pengelola onboarding stage reported by the provider
    • TokenType: partial (PIN still required) or full credentials
    • OtpPurpose: registration or login challenge
    • ErrorKind: taxonomy of step failures
"""

from enum import Enum


class UserRole(str, Enum):
    """Role held by a session. Wire values match the identity API."""
    NONE = "none"
    FACILITY_MANAGER = "pengelola"
    ADMINISTRATOR = "administrator"


class RegistrationStatus(str, Enum):
    """Onboarding stage of a pengelola account."""
    UNCOMPLETE = "uncomplete"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    COMPLETE = "complete"


class TokenType(str, Enum):
    PARTIAL = "partial"
    FULL = "full"


class OtpPurpose(str, Enum):
    REGISTER = "register"
    LOGIN = "login"


class ErrorKind(str, Enum):
    """Failure categories a step can surface to its view."""
    VALIDATION = "validation"
    REJECTED = "rejected"
    AUTH = "auth"
    RATE_LIMITED = "rate_limited"
    LOCKED = "locked"
    TRANSPORT = "transport"
