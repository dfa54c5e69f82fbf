"""
═══════════════════════════════════════════════════════════════════════════════
Rijig Portal: FastAPI Dependencies (guards)
═══════════════════════════════════════════════════════════════════════════════

Every step route declares ``Depends(require_step(Step.X))``. The guard:

    1. loads the session from the cookie;
    2. drops an abandoned login context;
    3. asks the state machine whether the session may enter the step;
    4. on mismatch raises ``RedirectRequired`` towards the canonical route
       of the session's actual state (303, see ``rijig_portal.main``).

Dashboards use ``require_dashboard(role)`` and only receive an
``AuthorizedSession``.
"""

from __future__ import annotations

import logging

from fastapi import Depends, Request, Response

from rijig_portal.adapters.base import IdentityProvider
from rijig_portal.exceptions import ConfigurationError, RedirectRequired
from rijig_portal.models.enums import UserRole
from rijig_portal.models.session import Session
from rijig_portal.models.views import AuthorizedSession
from rijig_portal.services.state_machine import Step, authorize
from rijig_portal.session_store import CookieSessionStore, get_session_store

logger = logging.getLogger(__name__)

# ── Identity provider singleton ───────────────────────────────────────────

_provider: IdentityProvider | None = None


def set_identity_provider(provider: IdentityProvider | None) -> None:
    """Installs the provider used by every step (set in ``lifespan``)."""
    global _provider
    _provider = provider


def get_identity_provider() -> IdentityProvider:
    if _provider is None:
        raise ConfigurationError("Identity provider is not initialised")
    return _provider


# ── Guards ────────────────────────────────────────────────────────────────

DASHBOARD_STEPS: dict[UserRole, Step] = {
    UserRole.FACILITY_MANAGER: Step.PENGELOLA_DASHBOARD,
    UserRole.ADMINISTRATOR: Step.ADMIN_DASHBOARD,
}


def _guard(request: Request, response: Response, store: CookieSessionStore, step: Step) -> Session:
    loaded = store.load(request)
    session = store.prune(loaded)
    repaired = session is not loaded

    decision = authorize(session, step)
    if not decision.allowed:
        logger.info("Step %s refused for state %s → %s",
                    step.value, decision.state.value, decision.redirect_to)
        raise RedirectRequired(decision.redirect_to, session if repaired else None)

    if repaired:
        store.save(response, session)
    return session


def require_step(step: Step):
    """
    Dependency factory: the session, if its state may enter ``step``.

    Usage::

        @router.get("/verify-otp")
        async def page(session: Session = Depends(require_step(Step.VERIFY_OTP))):
            ...
    """
    async def _require(
        request: Request,
        response: Response,
        store: CookieSessionStore = Depends(get_session_store),
    ) -> Session:
        return _guard(request, response, store, step)

    return _require


def require_dashboard(role: UserRole):
    """Dependency factory: the authorized session of a fully signed-in ``role``."""
    step = DASHBOARD_STEPS[role]

    async def _require(
        request: Request,
        response: Response,
        store: CookieSessionStore = Depends(get_session_store),
    ) -> AuthorizedSession:
        session = _guard(request, response, store, step)
        return AuthorizedSession.from_session(session)

    return _require


__all__ = [
    "get_identity_provider",
    "set_identity_provider",
    "require_step",
    "require_dashboard",
]
