"""
rijig_portal.models: Data models of the onboarding domain.

Re-exports the main classes for convenience:
    from rijig_portal.models import Session, TokenBundle
"""

from rijig_portal.models.enums import (  # noqa: F401
    ErrorKind,
    OtpPurpose,
    RegistrationStatus,
    TokenType,
    UserRole,
)
from rijig_portal.models.provider import (  # noqa: F401
    ApprovalStatus,
    OtpSent,
    ProviderFailure,
    ProviderResult,
    TokenBundle,
)
from rijig_portal.models.session import LoginContext, Session  # noqa: F401
from rijig_portal.models.views import AuthorizedSession, OtpCountdown, StepView  # noqa: F401
