"""
rijig_portal/adapters/provider_client.py: HTTP client of the Rijig identity API.

Every response arrives in the envelope::

    {"meta": {"status": 200, "message": "..."}, "data": {...}}

The client turns each call into a ``ProviderResult``: HTTP status and
``meta.status`` are classified into ``ErrorKind`` (401 → auth,
403 → locked, 429 → rate limited, other 4xx → rejected, everything else →
transport). Network errors and timeouts fail closed as transport failures.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from rijig_portal.models.enums import ErrorKind, OtpPurpose, UserRole
from rijig_portal.models.forms import CompanyProfileForm
from rijig_portal.models.provider import ApprovalStatus, OtpSent, ProviderResult, TokenBundle
from rijig_portal.models.session import utcnow

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

OTP_REQUEST_PATHS = {
    OtpPurpose.REGISTER: "/auth/request-otp/register",
    OtpPurpose.LOGIN: "/auth/request-otp",
}
OTP_VERIFY_PATHS = {
    OtpPurpose.REGISTER: "/auth/verif-otp/register",
    OtpPurpose.LOGIN: "/auth/verif-otp",
}


def classify_status(status_code: int) -> ErrorKind:
    """Maps an HTTP (or ``meta.status``) code onto the failure taxonomy."""
    if status_code == 401:
        return ErrorKind.AUTH
    if status_code == 403:
        return ErrorKind.LOCKED
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if 400 <= status_code < 500:
        return ErrorKind.REJECTED
    return ErrorKind.TRANSPORT


def _meta_status(meta: dict, default: int) -> int:
    try:
        return int(meta.get("status", default))
    except (TypeError, ValueError):
        return default


class IdentityProviderClient:
    """``IdentityProvider`` implementation over HTTPS (httpx)."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["X-API-Key"] = api_key
        if "ngrok" in base_url:
            headers["ngrok-skip-browser-warning"] = "true"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Transport ─────────────────────────────────────────────────────────

    async def _call(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        json: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        files: dict[str, tuple[str, bytes, str]] | None = None,
    ) -> ProviderResult[dict]:
        headers = {"Authorization": f"Bearer {token}"} if token else None
        try:
            response = await self._client.request(
                method, path, json=json, data=data, files=files, headers=headers,
            )
        except httpx.TimeoutException as exc:
            logger.warning("Identity API timeout on %s %s: %s", method, path, exc)
            return ProviderResult.error(ErrorKind.TRANSPORT, "Identity API timed out")
        except httpx.HTTPError as exc:
            logger.warning("Identity API unreachable on %s %s: %s", method, path, exc)
            return ProviderResult.error(ErrorKind.TRANSPORT, "Identity API unreachable")

        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}
        meta = body.get("meta") if isinstance(body.get("meta"), dict) else {}
        message = str(meta.get("message") or "")

        status_code = response.status_code
        if status_code < 400:
            status_code = _meta_status(meta, status_code)
        if status_code >= 400:
            kind = classify_status(status_code)
            logger.info(
                "Identity API %s %s failed: status=%s kind=%s",
                method, path, status_code, kind.value,
            )
            return ProviderResult.error(kind, message, status_code)

        payload = body.get("data")
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            logger.warning("Identity API %s %s returned non-object data", method, path)
            return ProviderResult.error(ErrorKind.TRANSPORT, "Malformed identity API response")
        if message and "message" not in payload:
            payload = {**payload, "message": message}
        return ProviderResult.success(payload)

    @staticmethod
    def _as(result: ProviderResult[dict], model: type[M], **extra: Any) -> ProviderResult[M]:
        if not result.ok:
            return ProviderResult(failure=result.failure)
        try:
            return ProviderResult.success(model.model_validate({**result.value, **extra}))
        except ValidationError as exc:
            logger.warning("Identity API payload is not a valid %s: %s",
                           model.__name__, exc.error_count())
            return ProviderResult.error(ErrorKind.TRANSPORT, "Malformed identity API response")

    # ── OTP ───────────────────────────────────────────────────────────────

    async def request_otp(
        self, role: UserRole, contact: str, device_id: str, purpose: OtpPurpose,
    ) -> ProviderResult[OtpSent]:
        result = await self._call(
            "POST",
            OTP_REQUEST_PATHS[purpose],
            json={"phone": contact, "role_name": role.value, "device_id": device_id},
        )
        return self._as(result, OtpSent, sent_at=utcnow())

    async def verify_otp(
        self, role: UserRole, contact: str, otp: str, device_id: str, purpose: OtpPurpose,
    ) -> ProviderResult[TokenBundle]:
        result = await self._call(
            "POST",
            OTP_VERIFY_PATHS[purpose],
            json={"phone": contact, "otp": otp, "device_id": device_id, "role_name": role.value},
        )
        return self._as(result, TokenBundle)

    # ── Administrator ─────────────────────────────────────────────────────

    async def admin_login(
        self, email: str, password: str, device_id: str,
    ) -> ProviderResult[OtpSent]:
        result = await self._call(
            "POST",
            "/auth/login/admin",
            json={"device_id": device_id, "email": email, "password": password},
        )
        return self._as(result, OtpSent, sent_at=utcnow())

    async def verify_admin_otp(
        self, email: str, otp: str, device_id: str,
    ) -> ProviderResult[TokenBundle]:
        result = await self._call(
            "POST",
            "/auth/verify-otp-admin",
            json={"device_id": device_id, "email": email, "otp": otp},
        )
        return self._as(result, TokenBundle)

    # ── Onboarding ────────────────────────────────────────────────────────

    async def create_company_profile(
        self, access_token: str, profile: CompanyProfileForm,
    ) -> ProviderResult[TokenBundle]:
        logo = profile.logo_file()
        result = await self._call(
            "POST",
            "/companyprofile/create",
            token=access_token,
            data=profile.business_fields(),
            files={"company_logo": logo} if logo else None,
        )
        return self._as(result, TokenBundle)

    async def check_approval(self, access_token: str) -> ProviderResult[ApprovalStatus]:
        result = await self._call("GET", "/auth/cekapproval", token=access_token)
        return self._as(result, ApprovalStatus)

    # ── PIN ───────────────────────────────────────────────────────────────

    async def create_pin(self, access_token: str, pin: str) -> ProviderResult[TokenBundle]:
        result = await self._call("POST", "/pin/create", token=access_token, json={"userpin": pin})
        return self._as(result, TokenBundle)

    async def verify_pin(self, access_token: str, pin: str) -> ProviderResult[TokenBundle]:
        result = await self._call("POST", "/pin/verif", token=access_token, json={"userpin": pin})
        return self._as(result, TokenBundle)

    # ── Tokens ────────────────────────────────────────────────────────────

    async def refresh_token(self, refresh_token: str) -> ProviderResult[TokenBundle]:
        result = await self._call(
            "POST", "/auth/refresh-token", json={"refresh_token": refresh_token},
        )
        return self._as(result, TokenBundle)

    async def logout(self, access_token: str) -> ProviderResult[None]:
        result = await self._call("POST", "/auth/logout", token=access_token)
        if not result.ok:
            return ProviderResult(failure=result.failure)
        return ProviderResult.success(None)
