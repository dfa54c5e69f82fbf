"""
rijig_portal/adapters/base.py: Identity provider contract.

Implemented by the HTTP client (``provider_client.IdentityProviderClient``)
and by the development fallback (``memory_provider.MemoryIdentityProvider``).

Rules every implementation follows:
    • methods never raise for provider-side problems; they return a
      ``ProviderResult`` whose failure is classified by ``ErrorKind``;
    • bearer tokens are passed explicitly per call, there is no ambient
      "current token".
"""

from __future__ import annotations

from typing import Protocol

from rijig_portal.models.enums import OtpPurpose, UserRole
from rijig_portal.models.forms import CompanyProfileForm
from rijig_portal.models.provider import ApprovalStatus, OtpSent, ProviderResult, TokenBundle


class IdentityProvider(Protocol):

    async def request_otp(
        self, role: UserRole, contact: str, device_id: str, purpose: OtpPurpose,
    ) -> ProviderResult[OtpSent]: ...

    async def verify_otp(
        self, role: UserRole, contact: str, otp: str, device_id: str, purpose: OtpPurpose,
    ) -> ProviderResult[TokenBundle]: ...

    async def admin_login(
        self, email: str, password: str, device_id: str,
    ) -> ProviderResult[OtpSent]: ...

    async def verify_admin_otp(
        self, email: str, otp: str, device_id: str,
    ) -> ProviderResult[TokenBundle]: ...

    async def create_company_profile(
        self, access_token: str, profile: CompanyProfileForm,
    ) -> ProviderResult[TokenBundle]: ...

    async def check_approval(self, access_token: str) -> ProviderResult[ApprovalStatus]: ...

    async def create_pin(self, access_token: str, pin: str) -> ProviderResult[TokenBundle]: ...

    async def verify_pin(self, access_token: str, pin: str) -> ProviderResult[TokenBundle]: ...

    async def refresh_token(self, refresh_token: str) -> ProviderResult[TokenBundle]: ...

    async def logout(self, access_token: str) -> ProviderResult[None]: ...
