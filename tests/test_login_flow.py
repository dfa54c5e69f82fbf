"""Tests of the pengelola login arm and its transient login context."""

from datetime import timedelta

from fastapi.testclient import TestClient

from rijig_portal.main import app
from rijig_portal.models.enums import RegistrationStatus, TokenType, UserRole
from rijig_portal.models.session import LoginContext, Session, utcnow

from conftest import OTP, PHONE, PIN


class TestLogin:

    def test_login_of_a_registered_pengelola(self, client, flow, current_session):
        # Arrange: finished registration, then signed out
        flow.registered()
        client.post("/auth/logout")
        assert current_session() is None

        # Act + Assert: OTP request
        response = client.post("/auth/pengelola/login/request-otp", json={"phone": PHONE})
        assert response.status_code == 303
        assert response.headers["location"] == "/auth/pengelola/login/verify-otp"
        session = current_session()
        assert session.login.pending_phone == PHONE
        assert session.access_token is None

        # OTP verified: credentials stay pending
        response = client.post("/auth/pengelola/login/verify-otp", json={"otp": OTP})
        assert response.headers["location"] == "/auth/pengelola/login/verify-pin"
        session = current_session()
        assert session.login.pending_token_bundle is not None
        assert session.access_token is None
        assert session.role == UserRole.NONE

        # PIN verified: bundle promoted, context cleared
        response = client.post("/auth/pengelola/login/verify-pin", json={"pin": PIN})
        assert response.headers["location"] == "/pengelola/dashboard"
        session = current_session()
        assert session.login is None
        assert session.role == UserRole.FACILITY_MANAGER
        assert session.token_type == TokenType.FULL
        assert session.phone == PHONE

        assert client.get("/pengelola/dashboard").status_code == 200

    def test_pending_bundle_never_opens_the_dashboard(self, client, flow):
        flow.registered()
        client.post("/auth/logout")
        flow.login_otp_verified()

        response = client.get("/pengelola/dashboard")

        assert response.status_code == 303
        assert response.headers["location"] == "/auth/pengelola/login/verify-pin"

    def test_wrong_login_pin_keeps_the_pending_context(self, client, flow, current_session):
        flow.registered()
        client.post("/auth/logout")
        flow.login_otp_verified()

        response = client.post("/auth/pengelola/login/verify-pin", json={"pin": "111222"})

        assert response.status_code == 401
        assert current_session().login.pending_token_bundle is not None

    def test_unknown_phone_is_rejected_with_provider_message(self, client):
        response = client.post("/auth/pengelola/login/request-otp", json={"phone": "6289999999999"})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "PORTAL_REJECTED"
        assert "not registered" in error["message"]

    def test_login_resend_restarts_the_context(self, client, flow, current_session):
        flow.registered()
        client.post("/auth/logout")
        client.post("/auth/pengelola/login/request-otp", json={"phone": PHONE})
        first = current_session().login

        response = client.post("/auth/pengelola/login/verify-otp/resend")

        assert response.headers["location"] == "/auth/pengelola/login/verify-otp"
        second = current_session().login
        assert second.pending_device_id == first.pending_device_id
        assert second.started_at >= first.started_at

    def test_login_can_start_over_from_the_phone_form(self, client, flow, current_session):
        flow.registered()
        client.post("/auth/logout")
        client.post("/auth/pengelola/login/request-otp", json={"phone": PHONE})
        first = current_session().login
        page = client.get("/auth/pengelola/login/verify-otp")
        assert page.json()["restart_path"] == "/auth/pengelola/login/request-otp"

        response = client.post("/auth/pengelola/login/request-otp", json={"phone": PHONE})

        assert response.headers["location"] == "/auth/pengelola/login/verify-otp"
        assert current_session().login.pending_device_id != first.pending_device_id
        verified = client.post("/auth/pengelola/login/verify-otp", json={"otp": OTP})
        assert verified.headers["location"] == "/auth/pengelola/login/verify-pin"


class TestLoginOfUnfinishedRegistration:

    def test_incomplete_account_continues_registration(self, client, flow, current_session):
        flow.profile_submitted()
        client.post("/auth/logout")

        client.post("/auth/pengelola/login/request-otp", json={"phone": PHONE})
        response = client.post("/auth/pengelola/login/verify-otp", json={"otp": OTP})

        assert response.headers["location"] == "/auth/pengelola/await-approval"
        session = current_session()
        assert session.login is None
        assert session.registration_status == RegistrationStatus.AWAITING_APPROVAL


class TestAbandonedLoginContext:

    def _client_with(self, store, session: Session) -> TestClient:
        fresh = TestClient(app, follow_redirects=False)
        fresh.cookies.set(store.cookie_name, store.encode(session))
        return fresh

    def test_expired_context_is_dropped(self, client, store):
        started = utcnow() - timedelta(seconds=store.login_context_ttl + 5)
        session = Session(login=LoginContext(
            pending_phone=PHONE,
            pending_device_id="web-abandoned",
            otp_sent_at=started,
            started_at=started,
        ))
        fresh = self._client_with(store, session)

        response = fresh.get("/auth/pengelola/login/verify-otp")

        assert response.status_code == 303
        assert response.headers["location"] == "/auth/pengelola"
        assert "max-age=0" in response.headers["set-cookie"].lower()

    def test_fresh_context_is_kept(self, client, store):
        session = Session(login=LoginContext(
            pending_phone=PHONE,
            pending_device_id="web-fresh",
            otp_sent_at=utcnow(),
        ))
        fresh = self._client_with(store, session)

        response = fresh.get("/auth/pengelola/login/verify-otp")

        assert response.status_code == 200
        assert response.json()["phone"] == PHONE
