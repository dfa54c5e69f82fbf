"""Administrator approval of pengelola accounts with the in-memory provider."""

import pytest
from fastapi.testclient import TestClient

from rijig_portal.main import app
from rijig_portal.models.enums import RegistrationStatus
from rijig_portal.services.audit_logger import PortalAuditAction, get_audit_logger

from conftest import PHONE, PortalFlow


@pytest.fixture
def admin_client(client, provider):
    """A second browser, signed in as administrator."""
    admin = TestClient(app, follow_redirects=False)
    PortalFlow(admin, provider).admin_signed_in()
    return admin


class TestApproval:

    def test_approval_lets_the_pengelola_continue(self, client, flow, provider, admin_client):
        flow.profile_submitted()

        response = admin_client.post(f"/admin/approvals/{PHONE}")

        assert response.status_code == 200
        assert response.json()["registration_status"] == "approved"
        assert provider.status_of(PHONE) == RegistrationStatus.APPROVED
        assert get_audit_logger().records(PortalAuditAction.APPROVAL_GRANTED)

        waiting = client.post("/auth/pengelola/await-approval")
        assert waiting.status_code == 303
        assert waiting.headers["location"] == "/auth/pengelola/create-pin"

    def test_unknown_number_is_rejected(self, admin_client):
        response = admin_client.post("/admin/approvals/6289999999999")

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "PORTAL_REJECTED"
        assert error["message"] == "No pengelola with this number is awaiting approval"

    def test_pengelola_cannot_approve(self, client, flow, provider):
        flow.profile_submitted()

        response = client.post(f"/admin/approvals/{PHONE}")

        assert response.status_code == 303
        assert response.headers["location"] == "/auth/pengelola/await-approval"
        assert provider.status_of(PHONE) == RegistrationStatus.AWAITING_APPROVAL

    def test_anonymous_visitor_is_sent_to_landing(self, client):
        response = client.post(f"/admin/approvals/{PHONE}")

        assert response.status_code == 303
        assert response.headers["location"] == "/auth/pengelola"
