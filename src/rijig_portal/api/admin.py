"""
rijig_portal/api/admin.py: Administrator sign-in (email + password, then OTP).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from rijig_portal.adapters.base import IdentityProvider
from rijig_portal.config import PortalSettings, get_settings
from rijig_portal.dependencies import get_identity_provider, require_step
from rijig_portal.models.forms import AdminSignInForm, OtpForm
from rijig_portal.models.session import Session
from rijig_portal.models.views import OtpCountdown, StepView
from rijig_portal.services import login_service
from rijig_portal.services.state_machine import ROUTE_PATHS, Step, next_path
from rijig_portal.session_store import CookieSessionStore, get_session_store

router = APIRouter(prefix="/auth/admin", tags=["admin"])


@router.get("/sign-in", response_model=StepView, summary="Administrator sign-in form")
async def sign_in_page(session: Session = Depends(require_step(Step.ADMIN_SIGN_IN))):
    return StepView(step=Step.ADMIN_SIGN_IN.value, message="Sign in with your administrator account")


@router.post("/sign-in", status_code=303, summary="Administrator: check credentials, send OTP")
async def sign_in(
    form: AdminSignInForm,
    session: Session = Depends(require_step(Step.ADMIN_SIGN_IN)),
    provider: IdentityProvider = Depends(get_identity_provider),
    store: CookieSessionStore = Depends(get_session_store),
):
    updated = await login_service.admin_sign_in(session, form, provider)
    return store.commit_redirect(updated, next_path(Step.ADMIN_SIGN_IN, updated))


@router.get("/verify-otp", response_model=StepView, summary="Administrator OTP form")
async def verify_otp_page(
    session: Session = Depends(require_step(Step.ADMIN_VERIFY_OTP)),
    settings: PortalSettings = Depends(get_settings),
):
    countdown = None
    if session.otp_sent_at is not None:
        countdown = OtpCountdown.from_sent_at(session.otp_sent_at, settings.otp_expiry_minutes)
    return StepView(
        step=Step.ADMIN_VERIFY_OTP.value,
        message=f"Enter the 4-digit code sent to {session.email}",
        email=session.email,
        otp=countdown,
        restart_path=ROUTE_PATHS[Step.ADMIN_SIGN_IN],
    )


@router.post("/verify-otp", status_code=303, summary="Administrator: verify OTP")
async def verify_otp(
    form: OtpForm,
    session: Session = Depends(require_step(Step.ADMIN_VERIFY_OTP)),
    provider: IdentityProvider = Depends(get_identity_provider),
    store: CookieSessionStore = Depends(get_session_store),
):
    updated = await login_service.verify_admin_otp(session, form, provider)
    return store.commit_redirect(updated, next_path(Step.ADMIN_VERIFY_OTP, updated))
