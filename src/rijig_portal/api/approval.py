"""
rijig_portal/api/approval.py: Approval of pengelola accounts (in-memory provider).

With the Rijig identity API, approvals are made in the back office. The
in-memory provider has no back office, so a signed-in administrator approves
accounts here. Mounted only when ``PROVIDER_BASE_URL`` is empty.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from rijig_portal.dependencies import get_identity_provider, require_dashboard
from rijig_portal.exceptions import StepFailedError
from rijig_portal.memory_provider import MemoryIdentityProvider
from rijig_portal.models.enums import ErrorKind, RegistrationStatus, UserRole
from rijig_portal.models.provider import ProviderFailure
from rijig_portal.models.views import AuthorizedSession
from rijig_portal.services.audit_logger import PortalAuditAction, get_audit_logger

router = APIRouter(prefix="/admin/approvals", tags=["approval"])


@router.post("/{phone}", summary="Approve a pengelola awaiting approval")
async def approve_pengelola(
    phone: str,
    admin: AuthorizedSession = Depends(require_dashboard(UserRole.ADMINISTRATOR)),
    provider: MemoryIdentityProvider = Depends(get_identity_provider),
):
    if not provider.approve(phone):
        raise StepFailedError("approve", ProviderFailure(
            kind=ErrorKind.REJECTED,
            message="No pengelola with this number is awaiting approval",
            status_code=404,
        ))

    await get_audit_logger().log(
        PortalAuditAction.APPROVAL_GRANTED, "approve",
        contact=phone, session_id=admin.session_id,
    )
    return {"phone": phone, "registration_status": RegistrationStatus.APPROVED.value}
