"""
rijig_portal/services/state_machine.py: Registration/login state machine.

Single source of truth for step ordering:

    • ``resolve_state(session)`` derives the ``FlowState`` of a session;
    • ``CANONICAL_ROUTES`` maps every state to the one route that owns it;
    • ``ENTRY_STATES`` lists the states allowed to enter every route;
    • ``RESTARTS`` lets a pending flow go back to its own first step;
    • ``authorize(session, step)`` decides allow / redirect.

The tables are checked for totality at import time, so adding a state without
a route (or a route nobody can enter) fails immediately.

Registration arm (pengelola), in order:
    unauthenticated → otp_pending → uncomplete → awaiting_approval
    → approved → pin_required → active

Login arm (accounts that already finished registration):
    login_otp_requested → login_otp_verified → active

Administrator arm:
    admin_otp_requested → admin_active
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from rijig_portal.models.enums import RegistrationStatus, TokenType, UserRole
from rijig_portal.models.session import Session

logger = logging.getLogger(__name__)


class FlowState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    OTP_PENDING = "otp_pending"
    UNCOMPLETE = "uncomplete"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    PIN_REQUIRED = "pin_required"
    ACTIVE = "active"
    LOGIN_OTP_REQUESTED = "login_otp_requested"
    LOGIN_OTP_VERIFIED = "login_otp_verified"
    ADMIN_OTP_REQUESTED = "admin_otp_requested"
    ADMIN_ACTIVE = "admin_active"


class Step(str, Enum):
    LANDING = "landing"
    REQUEST_OTP = "request-otp"
    VERIFY_OTP = "verify-otp"
    COMPLETE_PROFILE = "complete-profile"
    AWAIT_APPROVAL = "await-approval"
    CREATE_PIN = "create-pin"
    VERIFY_PIN = "verify-pin"
    LOGIN_REQUEST_OTP = "login-request-otp"
    LOGIN_VERIFY_OTP = "login-verify-otp"
    LOGIN_VERIFY_PIN = "login-verify-pin"
    ADMIN_SIGN_IN = "admin-sign-in"
    ADMIN_VERIFY_OTP = "admin-verify-otp"
    PENGELOLA_DASHBOARD = "pengelola-dashboard"
    ADMIN_DASHBOARD = "admin-dashboard"


# ═══════════════════════════════════════════════════════════════════════════════
# Declarative tables
# ═══════════════════════════════════════════════════════════════════════════════

ROUTE_PATHS: dict[Step, str] = {
    Step.LANDING: "/auth/pengelola",
    Step.REQUEST_OTP: "/auth/pengelola/request-otp",
    Step.VERIFY_OTP: "/auth/pengelola/verify-otp",
    Step.COMPLETE_PROFILE: "/auth/pengelola/complete-profile",
    Step.AWAIT_APPROVAL: "/auth/pengelola/await-approval",
    Step.CREATE_PIN: "/auth/pengelola/create-pin",
    Step.VERIFY_PIN: "/auth/pengelola/verify-pin",
    Step.LOGIN_REQUEST_OTP: "/auth/pengelola/login/request-otp",
    Step.LOGIN_VERIFY_OTP: "/auth/pengelola/login/verify-otp",
    Step.LOGIN_VERIFY_PIN: "/auth/pengelola/login/verify-pin",
    Step.ADMIN_SIGN_IN: "/auth/admin/sign-in",
    Step.ADMIN_VERIFY_OTP: "/auth/admin/verify-otp",
    Step.PENGELOLA_DASHBOARD: "/pengelola/dashboard",
    Step.ADMIN_DASHBOARD: "/admin/dashboard",
}

CANONICAL_ROUTES: dict[FlowState, Step] = {
    FlowState.UNAUTHENTICATED: Step.LANDING,
    FlowState.OTP_PENDING: Step.VERIFY_OTP,
    FlowState.UNCOMPLETE: Step.COMPLETE_PROFILE,
    FlowState.AWAITING_APPROVAL: Step.AWAIT_APPROVAL,
    FlowState.APPROVED: Step.CREATE_PIN,
    FlowState.PIN_REQUIRED: Step.VERIFY_PIN,
    FlowState.ACTIVE: Step.PENGELOLA_DASHBOARD,
    FlowState.LOGIN_OTP_REQUESTED: Step.LOGIN_VERIFY_OTP,
    FlowState.LOGIN_OTP_VERIFIED: Step.LOGIN_VERIFY_PIN,
    FlowState.ADMIN_OTP_REQUESTED: Step.ADMIN_VERIFY_OTP,
    FlowState.ADMIN_ACTIVE: Step.ADMIN_DASHBOARD,
}

# Flow entry points: an unauthenticated visitor may start any of them.
ENTRY_POINTS: frozenset[Step] = frozenset({
    Step.REQUEST_OTP,
    Step.LOGIN_REQUEST_OTP,
    Step.ADMIN_SIGN_IN,
})

# While the first code of a flow is pending, its entry point may be posted
# again after a mistyped number or an expired code; the step starts over.
RESTARTS: dict[Step, frozenset[FlowState]] = {
    Step.REQUEST_OTP: frozenset({FlowState.OTP_PENDING}),
    Step.LOGIN_REQUEST_OTP: frozenset({FlowState.LOGIN_OTP_REQUESTED}),
    Step.ADMIN_SIGN_IN: frozenset({FlowState.ADMIN_OTP_REQUESTED}),
}


def _build_entry_states() -> dict[Step, frozenset[FlowState]]:
    entry: dict[Step, set[FlowState]] = {step: set() for step in Step}
    for state, step in CANONICAL_ROUTES.items():
        entry[step].add(state)
    for step in ENTRY_POINTS:
        entry[step].add(FlowState.UNAUTHENTICATED)
    for step, states in RESTARTS.items():
        entry[step].update(states)
    return {step: frozenset(states) for step, states in entry.items()}


ENTRY_STATES: dict[Step, frozenset[FlowState]] = _build_entry_states()

# States a successful step may leave the session in. Anything else is logged.
PRODUCES: dict[Step, frozenset[FlowState]] = {
    Step.REQUEST_OTP: frozenset({FlowState.OTP_PENDING}),
    Step.VERIFY_OTP: frozenset({
        FlowState.UNCOMPLETE,
        FlowState.AWAITING_APPROVAL,
        FlowState.APPROVED,
        FlowState.PIN_REQUIRED,
    }),
    Step.COMPLETE_PROFILE: frozenset({FlowState.AWAITING_APPROVAL}),
    Step.AWAIT_APPROVAL: frozenset({FlowState.APPROVED, FlowState.PIN_REQUIRED}),
    Step.CREATE_PIN: frozenset({FlowState.PIN_REQUIRED, FlowState.ACTIVE}),
    Step.VERIFY_PIN: frozenset({FlowState.ACTIVE}),
    Step.LOGIN_REQUEST_OTP: frozenset({FlowState.LOGIN_OTP_REQUESTED}),
    Step.LOGIN_VERIFY_OTP: frozenset({
        FlowState.LOGIN_OTP_VERIFIED,
        FlowState.UNCOMPLETE,
        FlowState.AWAITING_APPROVAL,
        FlowState.APPROVED,
    }),
    Step.LOGIN_VERIFY_PIN: frozenset({FlowState.ACTIVE}),
    Step.ADMIN_SIGN_IN: frozenset({FlowState.ADMIN_OTP_REQUESTED}),
    Step.ADMIN_VERIFY_OTP: frozenset({FlowState.ADMIN_ACTIVE}),
}

_STATUS_STATES: dict[RegistrationStatus, FlowState] = {
    RegistrationStatus.UNCOMPLETE: FlowState.UNCOMPLETE,
    RegistrationStatus.AWAITING_APPROVAL: FlowState.AWAITING_APPROVAL,
    RegistrationStatus.APPROVED: FlowState.APPROVED,
}


def check_tables() -> None:
    """Fails loudly if the mapping is not total."""
    missing_states = set(FlowState) - set(CANONICAL_ROUTES)
    if missing_states:
        raise RuntimeError(f"States without canonical route: {sorted(missing_states)}")
    missing_paths = set(Step) - set(ROUTE_PATHS)
    if missing_paths:
        raise RuntimeError(f"Steps without path: {sorted(missing_paths)}")
    unreachable = [step for step, states in ENTRY_STATES.items() if not states]
    if unreachable:
        raise RuntimeError(f"Steps nobody can enter: {sorted(unreachable)}")
    for status in RegistrationStatus:
        if status != RegistrationStatus.COMPLETE and status not in _STATUS_STATES:
            raise RuntimeError(f"Registration status without state: {status}")


check_tables()


# ═══════════════════════════════════════════════════════════════════════════════
# Decisions
# ═══════════════════════════════════════════════════════════════════════════════


def resolve_state(session: Session) -> FlowState:
    """Derives the flow state of ``session``. Total over every possible session."""
    if session.role == UserRole.ADMINISTRATOR:
        return FlowState.ADMIN_ACTIVE if session.has_tokens else FlowState.UNAUTHENTICATED

    if session.role == UserRole.FACILITY_MANAGER and session.has_tokens:
        status = session.registration_status or RegistrationStatus.UNCOMPLETE
        if status == RegistrationStatus.COMPLETE:
            if session.token_type == TokenType.FULL:
                return FlowState.ACTIVE
            return FlowState.PIN_REQUIRED
        return _STATUS_STATES[status]

    if session.has_tokens:
        # Credentials without a role are never trusted.
        return FlowState.UNAUTHENTICATED

    if session.login is not None:
        if session.login.pending_token_bundle is not None:
            return FlowState.LOGIN_OTP_VERIFIED
        return FlowState.LOGIN_OTP_REQUESTED

    if session.device_id and session.email:
        return FlowState.ADMIN_OTP_REQUESTED
    if session.device_id and session.phone:
        return FlowState.OTP_PENDING
    return FlowState.UNAUTHENTICATED


def canonical_path(state: FlowState) -> str:
    return ROUTE_PATHS[CANONICAL_ROUTES[state]]


@dataclass(frozen=True)
class Decision:
    state: FlowState
    allowed: bool
    redirect_to: str | None = None


def authorize(session: Session, step: Step) -> Decision:
    """Allows ``step`` if the session's state may enter it, otherwise redirects."""
    state = resolve_state(session)
    if state in ENTRY_STATES[step]:
        return Decision(state=state, allowed=True)
    return Decision(state=state, allowed=False, redirect_to=canonical_path(state))


def next_path(step: Step, session: Session) -> str:
    """Route a successful ``step`` continues to: the canonical route of the new state."""
    state = resolve_state(session)
    if state not in PRODUCES.get(step, frozenset()):
        logger.warning("Step %s produced unexpected state %s", step.value, state.value)
    return canonical_path(state)
