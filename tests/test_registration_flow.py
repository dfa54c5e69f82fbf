"""End-to-end tests of the pengelola registration arm."""

from rijig_portal.models.enums import RegistrationStatus, TokenType, UserRole
from rijig_portal.services.audit_logger import PortalAuditAction, get_audit_logger

from conftest import COMPANY_PROFILE, OTP, PHONE, PIN, provider_calls


class TestRegistrationScenario:
    """Full onboarding of 6281234567890 with the OTP 1234."""

    def test_complete_registration_reaches_dashboard(self, client, provider, current_session):
        # Step 1: request OTP
        response = client.post("/auth/pengelola/request-otp", json={"phone": PHONE})
        assert response.status_code == 303
        assert response.headers["location"] == "/auth/pengelola/verify-otp"
        assert current_session().phone == PHONE
        assert current_session().device_id.startswith("web-")

        # Step 2: verify OTP
        response = client.post("/auth/pengelola/verify-otp", json={"otp": OTP})
        assert response.status_code == 303
        assert response.headers["location"] == "/auth/pengelola/complete-profile"
        session = current_session()
        assert session.role == UserRole.FACILITY_MANAGER
        assert session.registration_status == RegistrationStatus.UNCOMPLETE
        assert session.token_type == TokenType.PARTIAL

        # Step 3: company profile
        response = client.post("/auth/pengelola/complete-profile", json=COMPANY_PROFILE)
        assert response.headers["location"] == "/auth/pengelola/await-approval"
        assert current_session().registration_status == RegistrationStatus.AWAITING_APPROVAL

        # Step 4: not approved yet
        response = client.post("/auth/pengelola/await-approval")
        assert response.status_code == 200
        assert response.json()["approved"] is False

        # Step 4: approved by an administrator
        assert provider.approve(PHONE) is True
        response = client.post("/auth/pengelola/await-approval")
        assert response.status_code == 303
        assert response.headers["location"] == "/auth/pengelola/create-pin"

        # Step 5: create PIN
        response = client.post(
            "/auth/pengelola/create-pin", json={"pin": PIN, "confirm_pin": PIN},
        )
        assert response.headers["location"] == "/auth/pengelola/verify-pin"
        assert current_session().registration_status == RegistrationStatus.COMPLETE

        # Step 6: verify PIN
        response = client.post("/auth/pengelola/verify-pin", json={"pin": PIN})
        assert response.headers["location"] == "/pengelola/dashboard"
        assert current_session().token_type == TokenType.FULL

        # Dashboard
        response = client.get("/pengelola/dashboard")
        assert response.status_code == 200
        body = response.json()
        assert body["role"] == "pengelola"
        assert body["phone"] == PHONE
        assert body["registration_status"] == "complete"
        assert "access_token" not in body
        assert "refresh_token" not in body

    def test_audit_trail_masks_the_phone(self, flow):
        flow.registered()

        records = get_audit_logger().records()
        actions = [r["action"] for r in records]
        assert PortalAuditAction.PROFILE_SUBMITTED.value in actions
        assert PortalAuditAction.PIN_VERIFIED.value in actions
        assert all(r["contact"] in (None, "6281*****7890") for r in records)


class TestStepOrdering:

    def test_steps_cannot_be_skipped(self, client, flow):
        flow.verified_phone()

        for path in (
            "/auth/pengelola/await-approval",
            "/auth/pengelola/create-pin",
            "/auth/pengelola/verify-pin",
            "/pengelola/dashboard",
            "/auth/pengelola/request-otp",
        ):
            response = client.get(path)
            assert response.status_code == 303, path
            assert response.headers["location"] == "/auth/pengelola/complete-profile"

    def test_unauthenticated_visitor_goes_to_landing(self, client):
        response = client.get("/auth/pengelola/complete-profile")

        assert response.status_code == 303
        assert response.headers["location"] == "/auth/pengelola"

    def test_landing_redirects_a_flow_in_progress(self, client, flow):
        flow.profile_submitted()

        response = client.get("/auth/pengelola")

        assert response.headers["location"] == "/auth/pengelola/await-approval"

    def test_posting_to_a_wrong_step_redirects_without_provider_call(self, client, flow, provider):
        flow.verified_phone()
        calls_before = provider_calls(provider)

        response = client.post("/auth/pengelola/create-pin", json={"pin": PIN, "confirm_pin": PIN})

        assert response.status_code == 303
        assert response.headers["location"] == "/auth/pengelola/complete-profile"
        assert provider_calls(provider) == calls_before

    def test_resuming_mid_flow_renders_current_step(self, client, flow):
        flow.approved()

        response = client.get("/auth/pengelola/create-pin")

        assert response.status_code == 200
        assert response.json()["step"] == "create-pin"


class TestOtpStep:

    def test_wrong_otp_is_an_auth_error_and_keeps_the_session(self, client, current_session):
        client.post("/auth/pengelola/request-otp", json={"phone": PHONE})
        before = current_session()

        response = client.post("/auth/pengelola/verify-otp", json={"otp": "9999"})

        assert response.status_code == 401
        error = response.json()["error"]
        assert error["code"] == "PORTAL_AUTH_ERROR"
        assert error["message"] == "The OTP code is incorrect or has expired"
        assert current_session() == before
        assert current_session().registration_status is None

    def test_otp_page_shows_countdown(self, client):
        client.post("/auth/pengelola/request-otp", json={"phone": PHONE})

        response = client.get("/auth/pengelola/verify-otp")

        assert response.status_code == 200
        body = response.json()
        assert body["phone"] == PHONE
        assert body["otp"]["expired"] is False
        assert 0 < body["otp"]["remaining_seconds"] <= 300

    def test_resend_keeps_the_step_and_restarts_countdown(self, client, current_session):
        client.post("/auth/pengelola/request-otp", json={"phone": PHONE})
        first = current_session()

        response = client.post("/auth/pengelola/verify-otp/resend")

        assert response.status_code == 303
        assert response.headers["location"] == "/auth/pengelola/verify-otp"
        second = current_session()
        assert second.device_id == first.device_id
        assert second.otp_sent_at >= first.otp_sent_at

    def test_mistyped_number_can_be_corrected(self, client, provider, current_session):
        client.post("/auth/pengelola/request-otp", json={"phone": "6281111111111"})
        assert client.get("/auth/pengelola/verify-otp").json()["restart_path"] == (
            "/auth/pengelola/request-otp"
        )
        assert client.get("/auth/pengelola/request-otp").status_code == 200

        response = client.post("/auth/pengelola/request-otp", json={"phone": PHONE})

        assert response.status_code == 303
        assert response.headers["location"] == "/auth/pengelola/verify-otp"
        assert current_session().phone == PHONE
        assert provider.request_otp.await_count == 2
        verified = client.post("/auth/pengelola/verify-otp", json={"otp": OTP})
        assert verified.headers["location"] == "/auth/pengelola/complete-profile"

    def test_invalid_phone_is_rejected_before_the_provider(self, client, provider):
        response = client.post("/auth/pengelola/request-otp", json={"phone": "081234567890"})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "PORTAL_VALIDATION_ERROR"
        assert "phone" in error["details"]["fields"]
        assert provider_calls(provider) == {}

    def test_rate_limited_request(self, client):
        for _ in range(5):
            client.post("/auth/pengelola/request-otp", json={"phone": PHONE})
            client.post("/auth/logout")

        response = client.post("/auth/pengelola/request-otp", json={"phone": PHONE})

        assert response.status_code == 429
        assert response.json()["error"]["code"] == "PORTAL_RATE_LIMITED"


class TestPinSteps:

    def test_invalid_pin_input_makes_no_provider_call(self, client, flow, provider):
        flow.pin_created()
        calls_before = provider_calls(provider)

        response = client.post("/auth/pengelola/verify-pin", json={"pin": "12ab"})

        assert response.status_code == 400
        assert response.json()["error"]["details"]["fields"]["pin"] == "PIN must be exactly 6 digits"
        assert provider_calls(provider) == calls_before

    def test_pin_confirmation_must_match(self, client, flow, provider):
        flow.approved()
        calls_before = provider_calls(provider)

        response = client.post(
            "/auth/pengelola/create-pin", json={"pin": PIN, "confirm_pin": "482914"},
        )

        assert response.status_code == 400
        fields = response.json()["error"]["details"]["fields"]
        assert fields["confirm_pin"] == "PIN and confirmation do not match"
        assert provider_calls(provider) == calls_before

    def test_wrong_pin_then_lockout(self, client, flow, current_session):
        flow.pin_created()

        for _ in range(4):
            response = client.post("/auth/pengelola/verify-pin", json={"pin": "111222"})
            assert response.status_code == 401
            assert response.json()["error"]["message"] == "The PIN you entered is incorrect"

        response = client.post("/auth/pengelola/verify-pin", json={"pin": "111222"})

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "PORTAL_ACCOUNT_LOCKED"
        # Locked accounts keep their session.
        assert current_session().registration_status == RegistrationStatus.COMPLETE

        response = client.post("/auth/pengelola/verify-pin", json={"pin": PIN})
        assert response.status_code == 403


class TestCompanyProfileStep:

    def test_future_founding_date_is_rejected(self, client, flow, provider):
        flow.verified_phone()
        calls_before = provider_calls(provider)

        response = client.post(
            "/auth/pengelola/complete-profile",
            json={**COMPANY_PROFILE, "foundeddate": "01-01-2999"},
        )

        assert response.status_code == 400
        assert "foundeddate" in response.json()["error"]["details"]["fields"]
        assert provider_calls(provider) == calls_before

    def test_missing_fields_are_listed(self, client, flow):
        flow.verified_phone()

        response = client.post("/auth/pengelola/complete-profile", json={"companyname": "X"})

        fields = response.json()["error"]["details"]["fields"]
        assert {"companyaddress", "taxid", "foundeddate"} <= set(fields)

    def test_profile_cannot_be_submitted_twice(self, client, flow):
        flow.profile_submitted()

        response = client.post("/auth/pengelola/complete-profile", json=COMPANY_PROFILE)

        assert response.status_code == 303
        assert response.headers["location"] == "/auth/pengelola/await-approval"
