"""
rijig_portal/api/session.py: Session lifecycle: token refresh and logout.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from rijig_portal.adapters.base import IdentityProvider
from rijig_portal.dependencies import get_identity_provider
from rijig_portal.models.enums import UserRole
from rijig_portal.models.views import StepView
from rijig_portal.services import login_service
from rijig_portal.services.state_machine import ROUTE_PATHS, Step
from rijig_portal.session_store import CookieSessionStore, get_session_store

router = APIRouter(prefix="/auth", tags=["session"])


@router.post("/refresh", response_model=StepView, summary="Rotate the provider tokens")
async def refresh(
    request: Request,
    response: Response,
    provider: IdentityProvider = Depends(get_identity_provider),
    store: CookieSessionStore = Depends(get_session_store),
):
    """
    Exchanges the refresh token for a new pair.

    A rejected refresh token destroys the session (401), any other failure
    keeps it unchanged.
    """
    session = store.prune(store.load(request))
    updated = await login_service.refresh(session, provider)
    store.save(response, updated)
    return StepView(
        step="refresh",
        message="Session refreshed",
        phone=updated.phone,
        email=updated.email,
        registration_status=updated.registration_status,
    )


@router.post("/logout", status_code=303, summary="Sign out and destroy the session")
async def logout(
    request: Request,
    provider: IdentityProvider = Depends(get_identity_provider),
    store: CookieSessionStore = Depends(get_session_store),
):
    session = store.load(request)
    await login_service.logout(session, provider)
    if session.role == UserRole.ADMINISTRATOR or session.email:
        return store.clear_redirect(ROUTE_PATHS[Step.ADMIN_SIGN_IN])
    return store.clear_redirect(ROUTE_PATHS[Step.LANDING])
