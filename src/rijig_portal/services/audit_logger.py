"""
rijig_portal/services/audit_logger.py: Audit log of the onboarding flows.

Actions:
    • otp.requested, otp.verified, otp.failed
    • profile.submitted, approval.checked, approval.granted
    • pin.created, pin.verified, pin.failed
    • admin.login, session.refreshed, session.logout

There is no audit database on the portal side: records go to an in-memory
ring buffer (inspected by tests and the health endpoint) and are mirrored to
NATS under ``rijig.portal.audit.<action>``. Contacts are masked, tokens and
codes are never recorded.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from rijig_portal import events

logger = logging.getLogger(__name__)


class PortalAuditAction(str, Enum):
    """Audited actions of the portal."""

    # OTP
    OTP_REQUESTED = "otp.requested"
    OTP_VERIFIED = "otp.verified"
    OTP_FAILED = "otp.failed"

    # Registration
    PROFILE_SUBMITTED = "profile.submitted"
    APPROVAL_CHECKED = "approval.checked"
    APPROVAL_GRANTED = "approval.granted"

    # PIN
    PIN_CREATED = "pin.created"
    PIN_VERIFIED = "pin.verified"
    PIN_FAILED = "pin.failed"

    # Session
    ADMIN_LOGIN = "admin.login"
    SESSION_REFRESHED = "session.refreshed"
    SESSION_LOGOUT = "session.logout"


class PortalAuditLogger:
    """Audit logger with a bounded buffer and a NATS mirror."""

    def __init__(self, max_buffer_size: int = 10000) -> None:
        self._buffer: list[dict[str, Any]] = []
        self._max_buffer = max_buffer_size

    async def log(
        self,
        action: PortalAuditAction | str,
        step: str,
        contact: str | None = None,
        session_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Records one audit event."""
        action_str = action.value if isinstance(action, PortalAuditAction) else action
        record = {
            "action": action_str,
            "step": step,
            "contact": events.mask_contact(contact),
            "session_id": session_id,
            "details": details or {},
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        self._write_to_buffer(record)
        logger.info("audit %s step=%s contact=%s", action_str, step, record["contact"])

        # NATS mirror (graceful degradation inside events.publish)
        await events.publish(f"{events.SUBJECT_PREFIX}.audit.{action_str}", record)

    def _write_to_buffer(self, record: dict[str, Any]) -> None:
        if len(self._buffer) >= self._max_buffer:
            self._buffer.pop(0)
        self._buffer.append(record)

    def records(self, action: PortalAuditAction | str | None = None) -> list[dict[str, Any]]:
        if action is None:
            return list(self._buffer)
        action_str = action.value if isinstance(action, PortalAuditAction) else action
        return [r for r in self._buffer if r["action"] == action_str]

    def clear(self) -> None:
        self._buffer.clear()

    @property
    def buffer_size(self) -> int:
        return len(self._buffer)


# ═══════════════════════════════════════════════════════════════════════════════
# Singleton
# ═══════════════════════════════════════════════════════════════════════════════

_audit_logger: PortalAuditLogger | None = None


def get_audit_logger() -> PortalAuditLogger:
    """Returns the single PortalAuditLogger instance."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = PortalAuditLogger()
    return _audit_logger
