"""
rijig_portal/services/login_service.py: Login steps and session lifecycle.

Pengelola login (registered accounts):
    login-request-otp → login-verify-otp → login-verify-pin

Until the PIN is verified every credential stays in the transient
``LoginContext``; the session gets its top-level tokens only afterwards.
An account that has not finished registration drops into the registration
arm at its current step right after the OTP.

Administrator login:
    admin-sign-in (email + password) → admin-verify-otp

Plus token refresh and logout.
"""

from __future__ import annotations

import logging

from rijig_portal import events
from rijig_portal.adapters.base import IdentityProvider
from rijig_portal.exceptions import SessionInvalidatedError, StepFailedError
from rijig_portal.models.enums import ErrorKind, OtpPurpose, RegistrationStatus, TokenType, UserRole
from rijig_portal.models.forms import AdminSignInForm, OtpForm, PhoneForm, PinForm
from rijig_portal.models.session import LoginContext, Session, utcnow
from rijig_portal.services.audit_logger import PortalAuditAction, get_audit_logger
from rijig_portal.services.onboarding_service import (
    OTP_FAILED_MESSAGE,
    PIN_FAILED_MESSAGE,
    new_device_id,
)
from rijig_portal.services.state_machine import Step

logger = logging.getLogger(__name__)

ADMIN_CREDENTIALS_MESSAGE = "The email or password is incorrect"


# ═══════════════════════════════════════════════════════════════════════════
# Pengelola login
# ═══════════════════════════════════════════════════════════════════════════


async def request_login_otp(
    session: Session, form: PhoneForm, provider: IdentityProvider,
) -> Session:
    device_id = new_device_id()
    result = await provider.request_otp(
        UserRole.FACILITY_MANAGER, form.phone, device_id, OtpPurpose.LOGIN,
    )
    if not result.ok:
        raise StepFailedError(
            Step.LOGIN_REQUEST_OTP.value, result.failure, "Could not send the OTP",
        )

    await get_audit_logger().log(
        PortalAuditAction.OTP_REQUESTED, Step.LOGIN_REQUEST_OTP.value, contact=form.phone,
    )
    return Session(login=LoginContext(
        pending_phone=form.phone,
        pending_device_id=device_id,
        otp_sent_at=result.value.sent_at,
    ))


async def resend_login_otp(session: Session, provider: IdentityProvider) -> Session:
    """New code for the same login attempt; restarts the abandonment timeout."""
    login = session.login
    result = await provider.request_otp(
        UserRole.FACILITY_MANAGER, login.pending_phone, login.pending_device_id,
        OtpPurpose.LOGIN,
    )
    if not result.ok:
        raise StepFailedError(
            Step.LOGIN_VERIFY_OTP.value, result.failure, "Could not resend the OTP",
        )

    await get_audit_logger().log(
        PortalAuditAction.OTP_REQUESTED, Step.LOGIN_VERIFY_OTP.value,
        contact=login.pending_phone, details={"resend": True},
    )
    return session.merge(login=login.model_copy(update={
        "otp_sent_at": result.value.sent_at,
        "started_at": utcnow(),
    }))


async def verify_login_otp(
    session: Session, form: OtpForm, provider: IdentityProvider,
) -> Session:
    """
    Verifies the login OTP.

    Complete accounts keep the returned bundle pending until the PIN step.
    Incomplete accounts continue registration with the bundle as credentials.
    """
    audit = get_audit_logger()
    login = session.login
    result = await provider.verify_otp(
        UserRole.FACILITY_MANAGER, login.pending_phone, form.otp, login.pending_device_id,
        OtpPurpose.LOGIN,
    )
    if not result.ok:
        await audit.log(
            PortalAuditAction.OTP_FAILED, Step.LOGIN_VERIFY_OTP.value,
            contact=login.pending_phone, details={"kind": result.failure.kind.value},
        )
        raise StepFailedError(
            Step.LOGIN_VERIFY_OTP.value, result.failure, auth_message=OTP_FAILED_MESSAGE,
        )

    bundle = result.value
    status = bundle.registration_status or RegistrationStatus.UNCOMPLETE
    await audit.log(
        PortalAuditAction.OTP_VERIFIED, Step.LOGIN_VERIFY_OTP.value,
        contact=login.pending_phone, details={"registration_status": status.value},
    )
    if status == RegistrationStatus.COMPLETE:
        return session.merge(login=login.model_copy(update={"pending_token_bundle": bundle}))

    logger.info("Login of an unfinished registration, continuing at %s", status.value)
    return Session(
        phone=login.pending_phone,
        device_id=login.pending_device_id,
    ).with_tokens(bundle, role=UserRole.FACILITY_MANAGER, registration_status=status)


async def verify_login_pin(
    session: Session, form: PinForm, provider: IdentityProvider,
) -> Session:
    """Verifies the PIN with the pending bundle, then promotes it into the session."""
    audit = get_audit_logger()
    login = session.login
    pending = login.pending_token_bundle
    result = await provider.verify_pin(pending.access_token, form.pin)
    if not result.ok:
        await audit.log(
            PortalAuditAction.PIN_FAILED, Step.LOGIN_VERIFY_PIN.value,
            contact=login.pending_phone, details={"kind": result.failure.kind.value},
        )
        raise StepFailedError(
            Step.LOGIN_VERIFY_PIN.value, result.failure, auth_message=PIN_FAILED_MESSAGE,
        )

    bundle = result.value
    # The login context is not carried over.
    updated = (
        Session(phone=login.pending_phone, device_id=login.pending_device_id)
        .with_tokens(pending)
        .with_tokens(
            bundle,
            role=UserRole.FACILITY_MANAGER,
            registration_status=RegistrationStatus.COMPLETE,
            token_type=bundle.token_type or TokenType.FULL,
        )
    )
    await audit.log(
        PortalAuditAction.PIN_VERIFIED, Step.LOGIN_VERIFY_PIN.value,
        contact=login.pending_phone, session_id=updated.session_id,
    )
    await events.emit_login_completed(login.pending_phone, updated.session_id)
    return updated


# ═══════════════════════════════════════════════════════════════════════════
# Administrator login
# ═══════════════════════════════════════════════════════════════════════════


async def admin_sign_in(
    session: Session, form: AdminSignInForm, provider: IdentityProvider,
) -> Session:
    """Checks email + password; the provider then e-mails an OTP."""
    device_id = new_device_id()
    result = await provider.admin_login(form.email, form.password, device_id)
    if not result.ok:
        raise StepFailedError(
            Step.ADMIN_SIGN_IN.value, result.failure, "Could not sign in",
            auth_message=ADMIN_CREDENTIALS_MESSAGE,
        )
    await get_audit_logger().log(
        PortalAuditAction.OTP_REQUESTED, Step.ADMIN_SIGN_IN.value, contact=form.email,
    )
    return Session(email=form.email, device_id=device_id, otp_sent_at=result.value.sent_at)


async def verify_admin_otp(
    session: Session, form: OtpForm, provider: IdentityProvider,
) -> Session:
    audit = get_audit_logger()
    result = await provider.verify_admin_otp(session.email, form.otp, session.device_id)
    if not result.ok:
        await audit.log(
            PortalAuditAction.OTP_FAILED, Step.ADMIN_VERIFY_OTP.value,
            contact=session.email, details={"kind": result.failure.kind.value},
        )
        raise StepFailedError(
            Step.ADMIN_VERIFY_OTP.value, result.failure, auth_message=OTP_FAILED_MESSAGE,
        )

    updated = session.with_tokens(
        result.value, role=UserRole.ADMINISTRATOR, otp_sent_at=None,
    )
    await audit.log(
        PortalAuditAction.ADMIN_LOGIN, Step.ADMIN_VERIFY_OTP.value,
        contact=session.email, session_id=updated.session_id,
    )
    await events.emit_admin_login(session.email, updated.session_id)
    return updated


# ═══════════════════════════════════════════════════════════════════════════
# Token refresh and logout
# ═══════════════════════════════════════════════════════════════════════════


async def refresh(session: Session, provider: IdentityProvider) -> Session:
    """
    Rotates the access/refresh token pair.

    An auth rejection means the provider invalidated the session:
    ``SessionInvalidatedError`` is raised and the cookie is destroyed.
    Other failures keep the session so the call can be retried.
    """
    if not session.refresh_token:
        raise SessionInvalidatedError("There is no active session to refresh")

    result = await provider.refresh_token(session.refresh_token)
    if not result.ok:
        if result.failure.kind == ErrorKind.AUTH:
            logger.info("Refresh rejected by the identity API, session %s ends",
                        session.session_id)
            raise SessionInvalidatedError()
        raise StepFailedError("refresh", result.failure, "Could not refresh the session")

    updated = session.with_tokens(result.value)
    await get_audit_logger().log(
        PortalAuditAction.SESSION_REFRESHED, "refresh",
        contact=session.phone or session.email, session_id=updated.session_id,
    )
    return updated


async def logout(session: Session, provider: IdentityProvider) -> None:
    """
    Ends the session at the provider. Failures are logged only: the cookie
    is destroyed by the caller in every case.
    """
    if session.access_token:
        result = await provider.logout(session.access_token)
        if not result.ok:
            logger.warning("Provider logout failed (%s), destroying the session anyway",
                           result.failure.kind.value)

    await get_audit_logger().log(
        PortalAuditAction.SESSION_LOGOUT, "logout",
        contact=session.phone or session.email, session_id=session.session_id,
    )
    await events.emit_logout(session.role.value, session.session_id)
