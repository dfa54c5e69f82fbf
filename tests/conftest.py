"""Pytest fixtures for the portal tests."""

import os
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

# The app must never reach a real identity API or NATS server in tests.
os.environ["PROVIDER_BASE_URL"] = ""
os.environ["NATS_URL"] = ""
os.environ["APP_ENV"] = "development"

from rijig_portal.dependencies import get_identity_provider
from rijig_portal.main import app
from rijig_portal.memory_provider import MemoryIdentityProvider
from rijig_portal.services.audit_logger import get_audit_logger
from rijig_portal.session_store import get_session_store

PHONE = "6281234567890"
OTP = "1234"
PIN = "482913"
ADMIN_EMAIL = "admin@wastemanagement.com"
ADMIN_PASSWORD = "admin123"

PROVIDER_METHODS = (
    "request_otp",
    "verify_otp",
    "admin_login",
    "verify_admin_otp",
    "create_company_profile",
    "check_approval",
    "create_pin",
    "verify_pin",
    "refresh_token",
    "logout",
)

COMPANY_PROFILE = {
    "companyname": "Bank Sampah Rijig",
    "companyaddress": "Jl. Merdeka No. 1, Bandung",
    "companyphone": "0221234567",
    "companyemail": "info@bankrijig.id",
    "companywebsite": "https://bankrijig.id",
    "taxid": "01.234.567.8-901.000",
    "foundeddate": "17-08-2015",
    "companytype": "Bank Sampah",
    "companydescription": "Community waste bank collecting sorted household waste.",
}


@pytest.fixture
def provider():
    """In-memory provider with a fixed OTP and cheap bcrypt rounds; contract calls are spied."""
    memory = MemoryIdentityProvider(
        jwt_secret="test-jwt-secret",
        otp_generator=lambda: OTP,
        bcrypt_rounds=4,
    )
    memory.seed_admin(ADMIN_EMAIL, ADMIN_PASSWORD)
    for name in PROVIDER_METHODS:
        setattr(memory, name, AsyncMock(wraps=getattr(memory, name)))
    return memory


def provider_calls(provider) -> dict[str, int]:
    """Number of awaited contract calls per method, zero counts left out."""
    counts = {name: getattr(provider, name).await_count for name in PROVIDER_METHODS}
    return {name: count for name, count in counts.items() if count}


@pytest.fixture
def client(provider):
    """Test client wired to the in-memory provider; redirects are not followed."""
    app.dependency_overrides[get_identity_provider] = lambda: provider
    get_audit_logger().clear()
    yield TestClient(app, follow_redirects=False)
    app.dependency_overrides.clear()


@pytest.fixture
def store():
    return get_session_store()


@pytest.fixture
def current_session(client, store):
    """Decodes the session cookie currently held by the test client."""
    def _decode():
        value = client.cookies.get(store.cookie_name)
        return store.decode(value) if value else None
    return _decode


class PortalFlow:
    """Drives the pengelola and administrator flows step by step."""

    def __init__(self, client: TestClient, provider: MemoryIdentityProvider):
        self.client = client
        self.provider = provider

    def post(self, path: str, body: dict | None = None):
        return self.client.post(path, json=body)

    def verified_phone(self, phone: str = PHONE):
        self.post("/auth/pengelola/request-otp", {"phone": phone})
        return self.post("/auth/pengelola/verify-otp", {"otp": OTP})

    def profile_submitted(self, phone: str = PHONE):
        self.verified_phone(phone)
        return self.post("/auth/pengelola/complete-profile", COMPANY_PROFILE)

    def approved(self, phone: str = PHONE):
        self.profile_submitted(phone)
        self.provider.approve(phone)
        return self.post("/auth/pengelola/await-approval")

    def pin_created(self, phone: str = PHONE):
        self.approved(phone)
        return self.post("/auth/pengelola/create-pin", {"pin": PIN, "confirm_pin": PIN})

    def registered(self, phone: str = PHONE):
        self.pin_created(phone)
        return self.post("/auth/pengelola/verify-pin", {"pin": PIN})

    def login_otp_verified(self, phone: str = PHONE):
        self.post("/auth/pengelola/login/request-otp", {"phone": phone})
        return self.post("/auth/pengelola/login/verify-otp", {"otp": OTP})

    def admin_signed_in(self):
        self.post("/auth/admin/sign-in", {"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
        return self.post("/auth/admin/verify-otp", {"otp": OTP})


@pytest.fixture
def flow(client, provider):
    return PortalFlow(client, provider)
