"""Unit tests of the registration/login state machine."""

from datetime import datetime, timezone

import pytest

from rijig_portal.models.enums import RegistrationStatus, TokenType, UserRole
from rijig_portal.models.provider import TokenBundle
from rijig_portal.models.session import LoginContext, Session
from rijig_portal.services.state_machine import (
    CANONICAL_ROUTES,
    ENTRY_STATES,
    ROUTE_PATHS,
    FlowState,
    Step,
    authorize,
    canonical_path,
    check_tables,
    next_path,
    resolve_state,
)

SENT_AT = datetime(2025, 1, 1, tzinfo=timezone.utc)
BUNDLE = TokenBundle(access_token="acc", refresh_token="ref", token_type=TokenType.PARTIAL)


def _pengelola(status: RegistrationStatus, token_type: TokenType = TokenType.PARTIAL) -> Session:
    return Session(
        role=UserRole.FACILITY_MANAGER,
        registration_status=status,
        access_token="acc",
        token_type=token_type,
        phone="6281234567890",
        device_id="web-1",
    )


SESSIONS: dict[FlowState, Session] = {
    FlowState.UNAUTHENTICATED: Session(),
    FlowState.OTP_PENDING: Session(phone="6281234567890", device_id="web-1", otp_sent_at=SENT_AT),
    FlowState.UNCOMPLETE: _pengelola(RegistrationStatus.UNCOMPLETE),
    FlowState.AWAITING_APPROVAL: _pengelola(RegistrationStatus.AWAITING_APPROVAL),
    FlowState.APPROVED: _pengelola(RegistrationStatus.APPROVED),
    FlowState.PIN_REQUIRED: _pengelola(RegistrationStatus.COMPLETE),
    FlowState.ACTIVE: _pengelola(RegistrationStatus.COMPLETE, TokenType.FULL),
    FlowState.LOGIN_OTP_REQUESTED: Session(login=LoginContext(
        pending_phone="6281234567890", pending_device_id="web-2", otp_sent_at=SENT_AT,
    )),
    FlowState.LOGIN_OTP_VERIFIED: Session(login=LoginContext(
        pending_phone="6281234567890", pending_device_id="web-2", otp_sent_at=SENT_AT,
        pending_token_bundle=BUNDLE,
    )),
    FlowState.ADMIN_OTP_REQUESTED: Session(email="admin@wastemanagement.com", device_id="web-3"),
    FlowState.ADMIN_ACTIVE: Session(
        role=UserRole.ADMINISTRATOR, access_token="acc", token_type=TokenType.FULL,
        email="admin@wastemanagement.com",
    ),
}


class TestTables:

    def test_tables_are_total(self):
        check_tables()
        assert set(CANONICAL_ROUTES) == set(FlowState)
        assert set(ROUTE_PATHS) == set(Step)
        assert all(ENTRY_STATES[step] for step in Step)

    def test_every_state_has_a_sample(self):
        assert set(SESSIONS) == set(FlowState)


class TestResolveState:

    @pytest.mark.parametrize("state", list(FlowState), ids=lambda s: s.value)
    def test_samples_resolve(self, state):
        assert resolve_state(SESSIONS[state]) == state

    def test_tokens_without_role_are_not_trusted(self):
        assert resolve_state(Session(access_token="acc")) == FlowState.UNAUTHENTICATED

    def test_admin_role_without_tokens(self):
        assert resolve_state(Session(role=UserRole.ADMINISTRATOR)) == FlowState.UNAUTHENTICATED

    def test_missing_status_with_tokens_is_uncomplete(self):
        session = Session(role=UserRole.FACILITY_MANAGER, access_token="acc")
        assert resolve_state(session) == FlowState.UNCOMPLETE

    def test_pending_bundle_is_not_authentication(self):
        session = SESSIONS[FlowState.LOGIN_OTP_VERIFIED]
        assert resolve_state(session) not in (FlowState.ACTIVE, FlowState.ADMIN_ACTIVE)
        assert not session.has_tokens
        assert not authorize(session, Step.PENGELOLA_DASHBOARD).allowed


class TestAuthorize:

    @pytest.mark.parametrize("state", list(FlowState), ids=lambda s: s.value)
    @pytest.mark.parametrize("step", list(Step), ids=lambda s: s.value)
    def test_allowed_or_redirected_to_canonical_route(self, state, step):
        decision = authorize(SESSIONS[state], step)

        assert decision.state == state
        if state in ENTRY_STATES[step]:
            assert decision.allowed
            assert decision.redirect_to is None
        else:
            assert not decision.allowed
            assert decision.redirect_to == canonical_path(state)

    @pytest.mark.parametrize("state", list(FlowState), ids=lambda s: s.value)
    def test_canonical_route_admits_its_state(self, state):
        # No redirect loops: following a redirect always lands on an allowed step.
        assert authorize(SESSIONS[state], CANONICAL_ROUTES[state]).allowed

    def test_dashboard_requires_full_token(self):
        decision = authorize(SESSIONS[FlowState.PIN_REQUIRED], Step.PENGELOLA_DASHBOARD)

        assert not decision.allowed
        assert decision.redirect_to == "/auth/pengelola/verify-pin"

    @pytest.mark.parametrize("step", [s for s in Step if s != Step.ADMIN_DASHBOARD],
                             ids=lambda s: s.value)
    def test_admin_only_enters_admin_dashboard(self, step):
        decision = authorize(SESSIONS[FlowState.ADMIN_ACTIVE], step)

        assert not decision.allowed
        assert decision.redirect_to == "/admin/dashboard"

    @pytest.mark.parametrize("state, step", [
        (FlowState.OTP_PENDING, Step.REQUEST_OTP),
        (FlowState.LOGIN_OTP_REQUESTED, Step.LOGIN_REQUEST_OTP),
        (FlowState.ADMIN_OTP_REQUESTED, Step.ADMIN_SIGN_IN),
    ], ids=lambda v: v.value)
    def test_pending_flow_may_start_over(self, state, step):
        assert authorize(SESSIONS[state], step).allowed

    @pytest.mark.parametrize("state", [
        FlowState.UNCOMPLETE, FlowState.LOGIN_OTP_VERIFIED, FlowState.ACTIVE,
    ], ids=lambda s: s.value)
    def test_progressed_flow_cannot_start_over(self, state):
        decision = authorize(SESSIONS[state], Step.REQUEST_OTP)

        assert not decision.allowed
        assert decision.redirect_to == canonical_path(state)


class TestNextPath:

    def test_next_path_follows_the_new_state(self):
        assert next_path(Step.REQUEST_OTP, SESSIONS[FlowState.OTP_PENDING]) == "/auth/pengelola/verify-otp"
        assert next_path(Step.VERIFY_PIN, SESSIONS[FlowState.ACTIVE]) == "/pengelola/dashboard"

    def test_unexpected_state_still_uses_canonical_route(self, caplog):
        path = next_path(Step.COMPLETE_PROFILE, SESSIONS[FlowState.UNCOMPLETE])

        assert path == "/auth/pengelola/complete-profile"
        assert "unexpected state" in caplog.text
