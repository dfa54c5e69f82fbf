"""
rijig_portal/api/pengelola.py: Pengelola registration and login steps.

GET renders the step's view model, POST runs the step and answers with a
303 redirect to the canonical route of the resulting state. A failed step
answers with the error envelope and leaves the cookie untouched.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse

from rijig_portal.adapters.base import IdentityProvider
from rijig_portal.config import PortalSettings, get_settings
from rijig_portal.dependencies import get_identity_provider, require_step
from rijig_portal.models.forms import CompanyProfileForm, CreatePinForm, OtpForm, PhoneForm, PinForm
from rijig_portal.models.session import Session
from rijig_portal.models.views import OtpCountdown, StepView
from rijig_portal.services import login_service, onboarding_service
from rijig_portal.services.state_machine import ROUTE_PATHS, Step, next_path
from rijig_portal.session_store import CookieSessionStore, get_session_store

router = APIRouter(prefix="/auth/pengelola", tags=["pengelola"])


def _advance(step: Step, session: Session, store: CookieSessionStore) -> RedirectResponse:
    return store.commit_redirect(session, next_path(step, session))


def _countdown(sent_at: datetime | None, settings: PortalSettings) -> OtpCountdown | None:
    if sent_at is None:
        return None
    return OtpCountdown.from_sent_at(sent_at, settings.otp_expiry_minutes)


# ═══════════════════════════════════════════════════════════════════════════
# Registration
# ═══════════════════════════════════════════════════════════════════════════


@router.get("", response_model=StepView, summary="Pengelola landing page")
async def landing(session: Session = Depends(require_step(Step.LANDING))):
    return StepView(
        step=Step.LANDING.value,
        message="Register a new facility or log in with your WhatsApp number",
    )


@router.get("/request-otp", response_model=StepView, summary="Registration: phone number form")
async def request_otp_page(session: Session = Depends(require_step(Step.REQUEST_OTP))):
    return StepView(
        step=Step.REQUEST_OTP.value,
        message="Enter your WhatsApp number to receive a verification code",
    )


@router.post("/request-otp", status_code=303, summary="Registration: send OTP")
async def request_otp(
    form: PhoneForm,
    session: Session = Depends(require_step(Step.REQUEST_OTP)),
    provider: IdentityProvider = Depends(get_identity_provider),
    store: CookieSessionStore = Depends(get_session_store),
):
    updated = await onboarding_service.request_otp(session, form, provider)
    return _advance(Step.REQUEST_OTP, updated, store)


@router.get("/verify-otp", response_model=StepView, summary="Registration: OTP form")
async def verify_otp_page(
    session: Session = Depends(require_step(Step.VERIFY_OTP)),
    settings: PortalSettings = Depends(get_settings),
):
    return StepView(
        step=Step.VERIFY_OTP.value,
        message=f"Enter the 4-digit code sent to {session.phone}",
        phone=session.phone,
        otp=_countdown(session.otp_sent_at, settings),
        restart_path=ROUTE_PATHS[Step.REQUEST_OTP],
    )


@router.post("/verify-otp", status_code=303, summary="Registration: verify OTP")
async def verify_otp(
    form: OtpForm,
    session: Session = Depends(require_step(Step.VERIFY_OTP)),
    provider: IdentityProvider = Depends(get_identity_provider),
    store: CookieSessionStore = Depends(get_session_store),
):
    updated = await onboarding_service.verify_otp(session, form, provider)
    return _advance(Step.VERIFY_OTP, updated, store)


@router.post("/verify-otp/resend", status_code=303, summary="Registration: resend OTP")
async def resend_otp(
    session: Session = Depends(require_step(Step.VERIFY_OTP)),
    provider: IdentityProvider = Depends(get_identity_provider),
    store: CookieSessionStore = Depends(get_session_store),
):
    updated = await onboarding_service.resend_otp(session, provider)
    return store.commit_redirect(updated, ROUTE_PATHS[Step.VERIFY_OTP])


@router.get("/complete-profile", response_model=StepView, summary="Registration: company profile form")
async def complete_profile_page(session: Session = Depends(require_step(Step.COMPLETE_PROFILE))):
    return StepView(
        step=Step.COMPLETE_PROFILE.value,
        message="Tell us about your company",
        phone=session.phone,
        registration_status=session.registration_status,
        next_step=session.next_step,
    )


@router.post("/complete-profile", status_code=303, summary="Registration: submit company profile")
async def complete_profile(
    form: CompanyProfileForm,
    session: Session = Depends(require_step(Step.COMPLETE_PROFILE)),
    provider: IdentityProvider = Depends(get_identity_provider),
    store: CookieSessionStore = Depends(get_session_store),
):
    updated = await onboarding_service.complete_profile(session, form, provider)
    return _advance(Step.COMPLETE_PROFILE, updated, store)


@router.get("/await-approval", response_model=StepView, summary="Registration: waiting for approval")
async def await_approval_page(session: Session = Depends(require_step(Step.AWAIT_APPROVAL))):
    return StepView(
        step=Step.AWAIT_APPROVAL.value,
        message="Your company profile is being reviewed by an administrator",
        phone=session.phone,
        registration_status=session.registration_status,
        approved=False,
    )


@router.post("/await-approval", response_model=None, summary="Registration: check approval")
async def check_approval(
    session: Session = Depends(require_step(Step.AWAIT_APPROVAL)),
    provider: IdentityProvider = Depends(get_identity_provider),
    store: CookieSessionStore = Depends(get_session_store),
) -> StepView | RedirectResponse:
    updated, approval = await onboarding_service.check_approval(session, provider)
    if updated is session:
        return StepView(
            step=Step.AWAIT_APPROVAL.value,
            message=approval.message or "Still waiting for administrator approval",
            phone=session.phone,
            registration_status=session.registration_status,
            approved=approval.approved,
        )
    return _advance(Step.AWAIT_APPROVAL, updated, store)


@router.get("/create-pin", response_model=StepView, summary="Registration: PIN form")
async def create_pin_page(session: Session = Depends(require_step(Step.CREATE_PIN))):
    return StepView(
        step=Step.CREATE_PIN.value,
        message="Your account is approved. Create a 6-digit PIN",
        phone=session.phone,
        registration_status=session.registration_status,
    )


@router.post("/create-pin", status_code=303, summary="Registration: create PIN")
async def create_pin(
    form: CreatePinForm,
    session: Session = Depends(require_step(Step.CREATE_PIN)),
    provider: IdentityProvider = Depends(get_identity_provider),
    store: CookieSessionStore = Depends(get_session_store),
):
    updated = await onboarding_service.create_pin(session, form, provider)
    return _advance(Step.CREATE_PIN, updated, store)


@router.get("/verify-pin", response_model=StepView, summary="Registration: PIN check")
async def verify_pin_page(session: Session = Depends(require_step(Step.VERIFY_PIN))):
    return StepView(
        step=Step.VERIFY_PIN.value,
        message="Enter your PIN to continue",
        phone=session.phone,
        registration_status=session.registration_status,
    )


@router.post("/verify-pin", status_code=303, summary="Registration: verify PIN")
async def verify_pin(
    form: PinForm,
    session: Session = Depends(require_step(Step.VERIFY_PIN)),
    provider: IdentityProvider = Depends(get_identity_provider),
    store: CookieSessionStore = Depends(get_session_store),
):
    updated = await onboarding_service.verify_pin(session, form, provider)
    return _advance(Step.VERIFY_PIN, updated, store)


# ═══════════════════════════════════════════════════════════════════════════
# Login
# ═══════════════════════════════════════════════════════════════════════════


@router.get("/login/request-otp", response_model=StepView, summary="Login: phone number form")
async def login_request_otp_page(
    session: Session = Depends(require_step(Step.LOGIN_REQUEST_OTP)),
):
    return StepView(
        step=Step.LOGIN_REQUEST_OTP.value,
        message="Enter your registered WhatsApp number",
    )


@router.post("/login/request-otp", status_code=303, summary="Login: send OTP")
async def login_request_otp(
    form: PhoneForm,
    session: Session = Depends(require_step(Step.LOGIN_REQUEST_OTP)),
    provider: IdentityProvider = Depends(get_identity_provider),
    store: CookieSessionStore = Depends(get_session_store),
):
    updated = await login_service.request_login_otp(session, form, provider)
    return _advance(Step.LOGIN_REQUEST_OTP, updated, store)


@router.get("/login/verify-otp", response_model=StepView, summary="Login: OTP form")
async def login_verify_otp_page(
    session: Session = Depends(require_step(Step.LOGIN_VERIFY_OTP)),
    settings: PortalSettings = Depends(get_settings),
):
    return StepView(
        step=Step.LOGIN_VERIFY_OTP.value,
        message=f"Enter the 4-digit code sent to {session.login.pending_phone}",
        phone=session.login.pending_phone,
        otp=_countdown(session.login.otp_sent_at, settings),
        restart_path=ROUTE_PATHS[Step.LOGIN_REQUEST_OTP],
    )


@router.post("/login/verify-otp", status_code=303, summary="Login: verify OTP")
async def login_verify_otp(
    form: OtpForm,
    session: Session = Depends(require_step(Step.LOGIN_VERIFY_OTP)),
    provider: IdentityProvider = Depends(get_identity_provider),
    store: CookieSessionStore = Depends(get_session_store),
):
    updated = await login_service.verify_login_otp(session, form, provider)
    return _advance(Step.LOGIN_VERIFY_OTP, updated, store)


@router.post("/login/verify-otp/resend", status_code=303, summary="Login: resend OTP")
async def login_resend_otp(
    session: Session = Depends(require_step(Step.LOGIN_VERIFY_OTP)),
    provider: IdentityProvider = Depends(get_identity_provider),
    store: CookieSessionStore = Depends(get_session_store),
):
    updated = await login_service.resend_login_otp(session, provider)
    return store.commit_redirect(updated, ROUTE_PATHS[Step.LOGIN_VERIFY_OTP])


@router.get("/login/verify-pin", response_model=StepView, summary="Login: PIN form")
async def login_verify_pin_page(
    session: Session = Depends(require_step(Step.LOGIN_VERIFY_PIN)),
):
    return StepView(
        step=Step.LOGIN_VERIFY_PIN.value,
        message="Enter your 6-digit PIN",
        phone=session.login.pending_phone,
    )


@router.post("/login/verify-pin", status_code=303, summary="Login: verify PIN")
async def login_verify_pin(
    form: PinForm,
    session: Session = Depends(require_step(Step.LOGIN_VERIFY_PIN)),
    provider: IdentityProvider = Depends(get_identity_provider),
    store: CookieSessionStore = Depends(get_session_store),
):
    updated = await login_service.verify_login_pin(session, form, provider)
    return _advance(Step.LOGIN_VERIFY_PIN, updated, store)
