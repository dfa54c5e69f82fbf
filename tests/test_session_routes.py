"""Token refresh, logout and the error envelope."""

from unittest.mock import AsyncMock

from rijig_portal.models.enums import ErrorKind
from rijig_portal.models.provider import ProviderResult

from conftest import PHONE


class TestRefresh:

    def test_refresh_rotates_tokens(self, client, flow, current_session):
        flow.registered()
        before = current_session()

        response = client.post("/auth/refresh")

        assert response.status_code == 200
        assert response.json()["registration_status"] == "complete"
        after = current_session()
        assert after.refresh_token != before.refresh_token
        assert after.session_id == before.session_id
        assert after.token_type == before.token_type

    def test_rejected_refresh_destroys_the_session(self, client, flow, provider, current_session):
        flow.registered()
        provider.refresh_token = AsyncMock(
            return_value=ProviderResult.error(ErrorKind.AUTH, "expired", 401),
        )

        response = client.post("/auth/refresh")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "PORTAL_SESSION_INVALIDATED"
        assert current_session() is None
        assert client.get("/pengelola/dashboard").headers["location"] == "/auth/pengelola"

    def test_transport_failure_keeps_the_session(self, client, flow, provider, current_session):
        flow.registered()
        before = current_session()
        provider.refresh_token = AsyncMock(
            return_value=ProviderResult.error(ErrorKind.TRANSPORT, "", None),
        )

        response = client.post("/auth/refresh")

        assert response.status_code == 502
        assert current_session() == before

    def test_refresh_without_session(self, client):
        response = client.post("/auth/refresh")

        assert response.status_code == 401


class TestLogout:

    def test_logout_revokes_and_clears(self, client, flow, provider, current_session):
        flow.registered()

        response = client.post("/auth/logout")

        assert response.status_code == 303
        assert response.headers["location"] == "/auth/pengelola"
        provider.logout.assert_awaited_once()
        assert current_session() is None
        assert client.get("/pengelola/dashboard").status_code == 303

    def test_logout_continues_when_provider_fails(self, client, flow, provider, current_session):
        flow.registered()
        provider.logout = AsyncMock(return_value=ProviderResult.error(ErrorKind.TRANSPORT))

        response = client.post("/auth/logout")

        assert response.status_code == 303
        assert current_session() is None

    def test_logout_mid_flow(self, client, current_session):
        client.post("/auth/pengelola/request-otp", json={"phone": PHONE})

        client.post("/auth/logout")

        assert current_session() is None
        assert client.get("/auth/pengelola/request-otp").status_code == 200


class TestErrorEnvelope:

    def test_transport_failure_is_a_502_with_generic_message(self, client, provider):
        provider.request_otp = AsyncMock(return_value=ProviderResult.error(ErrorKind.TRANSPORT))

        response = client.post("/auth/pengelola/request-otp", json={"phone": PHONE})

        assert response.status_code == 502
        error = response.json()["error"]
        assert error["code"] == "PORTAL_PROVIDER_UNAVAILABLE"
        assert error["details"]["step"] == "request-otp"
        assert "timestamp" in error

    def test_tampered_cookie_is_an_unauthenticated_session(self, client, flow, store):
        flow.registered()
        value = client.cookies.get(store.cookie_name)
        client.cookies.clear()
        client.cookies.set(store.cookie_name, value[:-4] + "AAAA")

        response = client.get("/pengelola/dashboard")

        assert response.status_code == 303
        assert response.headers["location"] == "/auth/pengelola"

    def test_health(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["provider"] == "memory"
        assert response.json()["nats"] == "disabled"
