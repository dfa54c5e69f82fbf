"""
rijig_portal/services/onboarding_service.py: Pengelola registration steps.

Each function is one step of the registration arm. It receives the current
(immutable) session and the already validated form, makes exactly one
provider call and returns the replacement session. Routes commit the returned
session and redirect to the canonical route of its state.

On any provider failure ``StepFailedError`` is raised and the stored session
stays as it was.

Registration arm:
    request-otp → verify-otp → complete-profile → await-approval
    → create-pin → verify-pin
"""

from __future__ import annotations

import logging
import secrets

from rijig_portal import events
from rijig_portal.adapters.base import IdentityProvider
from rijig_portal.exceptions import StepFailedError
from rijig_portal.models.enums import OtpPurpose, RegistrationStatus, TokenType, UserRole
from rijig_portal.models.forms import CompanyProfileForm, CreatePinForm, OtpForm, PhoneForm, PinForm
from rijig_portal.models.provider import ApprovalStatus, TokenBundle
from rijig_portal.models.session import Session
from rijig_portal.services.audit_logger import PortalAuditAction, get_audit_logger
from rijig_portal.services.state_machine import Step

logger = logging.getLogger(__name__)

OTP_FAILED_MESSAGE = "The OTP code is incorrect or has expired"
PIN_FAILED_MESSAGE = "The PIN you entered is incorrect"


def new_device_id() -> str:
    """Per-flow device identifier, generated once at the first step of a flow."""
    return f"web-{secrets.token_hex(12)}"


# ═══════════════════════════════════════════════════════════════════════════
# OTP
# ═══════════════════════════════════════════════════════════════════════════


async def request_otp(session: Session, form: PhoneForm, provider: IdentityProvider) -> Session:
    """Step 1: Sends a registration OTP to the WhatsApp number."""
    device_id = new_device_id()
    result = await provider.request_otp(
        UserRole.FACILITY_MANAGER, form.phone, device_id, OtpPurpose.REGISTER,
    )
    if not result.ok:
        raise StepFailedError(Step.REQUEST_OTP.value, result.failure, "Could not send the OTP")

    await get_audit_logger().log(
        PortalAuditAction.OTP_REQUESTED, Step.REQUEST_OTP.value, contact=form.phone,
    )
    # A new flow starts from an empty session.
    return Session(phone=form.phone, device_id=device_id, otp_sent_at=result.value.sent_at)


async def resend_otp(session: Session, provider: IdentityProvider) -> Session:
    """Issues a fresh code for the same (phone, device); the old code stops working."""
    result = await provider.request_otp(
        UserRole.FACILITY_MANAGER, session.phone, session.device_id, OtpPurpose.REGISTER,
    )
    if not result.ok:
        raise StepFailedError(Step.VERIFY_OTP.value, result.failure, "Could not resend the OTP")

    await get_audit_logger().log(
        PortalAuditAction.OTP_REQUESTED, Step.VERIFY_OTP.value,
        contact=session.phone, details={"resend": True},
    )
    return session.merge(otp_sent_at=result.value.sent_at)


async def verify_otp(session: Session, form: OtpForm, provider: IdentityProvider) -> Session:
    """
    Step 2: Verifies the registration OTP.

    The provider reports where the account stands; a returning pengelola
    whose profile is already submitted lands directly on the matching step.
    """
    audit = get_audit_logger()
    result = await provider.verify_otp(
        UserRole.FACILITY_MANAGER, session.phone, form.otp, session.device_id,
        OtpPurpose.REGISTER,
    )
    if not result.ok:
        await audit.log(
            PortalAuditAction.OTP_FAILED, Step.VERIFY_OTP.value,
            contact=session.phone, details={"kind": result.failure.kind.value},
        )
        raise StepFailedError(
            Step.VERIFY_OTP.value, result.failure, auth_message=OTP_FAILED_MESSAGE,
        )

    bundle = result.value
    status = bundle.registration_status or RegistrationStatus.UNCOMPLETE
    updated = session.with_tokens(
        bundle,
        role=UserRole.FACILITY_MANAGER,
        registration_status=status,
        otp_sent_at=None,
    )
    await audit.log(
        PortalAuditAction.OTP_VERIFIED, Step.VERIFY_OTP.value,
        contact=session.phone, session_id=updated.session_id,
        details={"registration_status": status.value},
    )
    await events.emit_pengelola_registered(session.phone, updated.session_id, status.value)
    return updated


# ═══════════════════════════════════════════════════════════════════════════
# Company profile and approval
# ═══════════════════════════════════════════════════════════════════════════


async def complete_profile(
    session: Session, form: CompanyProfileForm, provider: IdentityProvider,
) -> Session:
    """Step 3: Submits the company profile; the account then awaits approval."""
    result = await provider.create_company_profile(session.access_token, form)
    if not result.ok:
        raise StepFailedError(
            Step.COMPLETE_PROFILE.value, result.failure, "Could not save the company profile",
        )

    bundle = result.value
    updated = session.with_tokens(
        bundle,
        registration_status=bundle.registration_status or RegistrationStatus.AWAITING_APPROVAL,
    )
    await get_audit_logger().log(
        PortalAuditAction.PROFILE_SUBMITTED, Step.COMPLETE_PROFILE.value,
        contact=session.phone, session_id=updated.session_id,
        details={"company": form.companyname},
    )
    await events.emit_profile_submitted(session.phone, form.companyname, form.taxid)
    return updated


async def check_approval(
    session: Session, provider: IdentityProvider,
) -> tuple[Session, ApprovalStatus]:
    """
    Step 4: Asks the provider whether an administrator decided yet.

    Returns the (possibly unchanged) session and the provider's answer.
    The session only changes when the provider reports a different status.
    """
    result = await provider.check_approval(session.access_token)
    if not result.ok:
        raise StepFailedError(
            Step.AWAIT_APPROVAL.value, result.failure, "Could not check the approval status",
        )

    approval = result.value
    await get_audit_logger().log(
        PortalAuditAction.APPROVAL_CHECKED, Step.AWAIT_APPROVAL.value,
        contact=session.phone, session_id=session.session_id,
        details={"registration_status": approval.registration_status.value},
    )
    if approval.registration_status == session.registration_status:
        return session, approval

    if approval.access_token:
        bundle = TokenBundle(
            access_token=approval.access_token,
            refresh_token=approval.refresh_token or "",
            session_id=approval.session_id or "",
            token_type=approval.token_type,
            registration_status=approval.registration_status,
            next_step=approval.next_step,
        )
        return session.with_tokens(bundle), approval
    return session.merge(
        registration_status=approval.registration_status,
        next_step=approval.next_step,
    ), approval


# ═══════════════════════════════════════════════════════════════════════════
# PIN
# ═══════════════════════════════════════════════════════════════════════════


async def create_pin(session: Session, form: CreatePinForm, provider: IdentityProvider) -> Session:
    """Step 5: Sets the PIN of an approved account."""
    result = await provider.create_pin(session.access_token, form.pin)
    if not result.ok:
        raise StepFailedError(Step.CREATE_PIN.value, result.failure, "Could not create the PIN")

    bundle = result.value
    updated = session.with_tokens(
        bundle,
        registration_status=bundle.registration_status or RegistrationStatus.COMPLETE,
    )
    await get_audit_logger().log(
        PortalAuditAction.PIN_CREATED, Step.CREATE_PIN.value,
        contact=session.phone, session_id=updated.session_id,
    )
    await events.emit_pin_created(session.phone)
    return updated


async def verify_pin(session: Session, form: PinForm, provider: IdentityProvider) -> Session:
    """Step 6: Verifies the PIN; full credentials open the dashboard."""
    audit = get_audit_logger()
    result = await provider.verify_pin(session.access_token, form.pin)
    if not result.ok:
        await audit.log(
            PortalAuditAction.PIN_FAILED, Step.VERIFY_PIN.value,
            contact=session.phone, details={"kind": result.failure.kind.value},
        )
        raise StepFailedError(
            Step.VERIFY_PIN.value, result.failure, auth_message=PIN_FAILED_MESSAGE,
        )

    bundle = result.value
    updated = session.with_tokens(
        bundle,
        registration_status=RegistrationStatus.COMPLETE,
        token_type=bundle.token_type or TokenType.FULL,
    )
    await audit.log(
        PortalAuditAction.PIN_VERIFIED, Step.VERIFY_PIN.value,
        contact=session.phone, session_id=updated.session_id,
    )
    await events.emit_login_completed(session.phone, updated.session_id)
    return updated
