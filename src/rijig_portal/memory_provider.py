"""
═══════════════════════════════════════════════════════════════════════════════
Rijig Portal: In-memory identity provider (local development replacement)
═══════════════════════════════════════════════════════════════════════════════

Implements the complete ``IdentityProvider`` contract in process memory so
the portal runs without the Rijig identity API:

    • 4-digit OTP per (contact, device), 5 minute TTL, a resend replaces
      the previous code;
    • OTP requests are rate limited per contact (429);
    • PINs and administrator passwords are stored as bcrypt hashes;
    • wrong PINs lock the account after ``MAX_PIN_ATTEMPTS`` (403);
    • tokens are JWTs (python-jose) carrying the ``partial`` / ``full`` type.

Activated by ``activate_memory_provider()`` when ``PROVIDER_BASE_URL`` is
empty. Everything is lost on restart.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from uuid import uuid4

import bcrypt
from jose import JWTError, jwt

from rijig_portal.config import PortalSettings
from rijig_portal.models.enums import ErrorKind, OtpPurpose, RegistrationStatus, TokenType, UserRole
from rijig_portal.models.forms import CompanyProfileForm
from rijig_portal.models.provider import ApprovalStatus, OtpSent, ProviderResult, TokenBundle
from rijig_portal.models.session import utcnow
from rijig_portal.models.views import format_remaining

logger = logging.getLogger(__name__)

OTP_REQUEST_LIMIT = 5
OTP_REQUEST_WINDOW = timedelta(minutes=10)
MAX_OTP_ATTEMPTS = 5
MAX_PIN_ATTEMPTS = 5
REFRESH_TOKEN_TTL = timedelta(days=7)

NEXT_STEPS: dict[RegistrationStatus, str] = {
    RegistrationStatus.UNCOMPLETE: "complete_company_profile",
    RegistrationStatus.AWAITING_APPROVAL: "wait_admin_approval",
    RegistrationStatus.APPROVED: "create_pin",
    RegistrationStatus.COMPLETE: "verify_pin",
}


def random_otp() -> str:
    return f"{secrets.randbelow(10**4):04d}"


class MemoryIdentityProvider:
    """``IdentityProvider`` kept entirely in memory."""

    def __init__(
        self,
        jwt_secret: str,
        jwt_algorithm: str = "HS256",
        access_token_minutes: int = 60,
        otp_ttl_minutes: int = 5,
        otp_generator: Callable[[], str] = random_otp,
        clock: Callable[[], datetime] = utcnow,
        bcrypt_rounds: int = 12,
    ) -> None:
        self._jwt_secret = jwt_secret
        self._jwt_algorithm = jwt_algorithm
        self._access_ttl = timedelta(minutes=access_token_minutes)
        self._otp_ttl = timedelta(minutes=otp_ttl_minutes)
        self._otp_generator = otp_generator
        self._clock = clock
        self._bcrypt_rounds = bcrypt_rounds

        self._accounts: dict[str, dict] = {}
        self._by_contact: dict[str, str] = {}
        self._challenges: dict[tuple[str, str], dict] = {}
        self._otp_requests: dict[str, list[datetime]] = {}
        # sid / jti -> moment after which no token carrying it can still validate
        self._revoked_sessions: dict[str, datetime] = {}
        self._used_refresh_ids: dict[str, datetime] = {}

    @classmethod
    def from_settings(cls, settings: PortalSettings) -> "MemoryIdentityProvider":
        demo_code = settings.demo_otp_code
        provider = cls(
            jwt_secret=settings.jwt_secret_key,
            jwt_algorithm=settings.jwt_algorithm,
            access_token_minutes=settings.jwt_access_token_expire_minutes,
            otp_ttl_minutes=settings.otp_expiry_minutes,
            otp_generator=(lambda: demo_code) if demo_code else random_otp,
        )
        if settings.demo_admin_email and settings.demo_admin_password:
            provider.seed_admin(settings.demo_admin_email, settings.demo_admin_password)
        return provider

    # ═══════════════════════════════════════════════════════════════════════
    # Account helpers
    # ═══════════════════════════════════════════════════════════════════════

    def _hash(self, secret: str) -> str:
        salt = bcrypt.gensalt(rounds=self._bcrypt_rounds)
        return bcrypt.hashpw(secret.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def _matches(secret: str, hashed: str | None) -> bool:
        if not hashed:
            return False
        return bcrypt.checkpw(secret.encode("utf-8"), hashed.encode("utf-8"))

    def _create_account(self, role: UserRole, contact: str, **fields: Any) -> dict:
        account_id = uuid4().hex
        now = self._clock()
        account = {
            "account_id": account_id,
            "role": role,
            "contact": contact,
            "status": RegistrationStatus.UNCOMPLETE,
            "pin_hash": None,
            "password_hash": None,
            "failed_pins": 0,
            "locked": False,
            "company_profile": None,
            "created_at": now,
            "updated_at": now,
            **fields,
        }
        self._accounts[account_id] = account
        self._by_contact[contact] = account_id
        logger.info("Memory provider: created %s account <%s>", role.value, contact)
        return account

    def _account_for(self, contact: str) -> dict | None:
        account_id = self._by_contact.get(contact)
        return self._accounts.get(account_id) if account_id else None

    def _set_status(self, account: dict, status: RegistrationStatus) -> None:
        account["status"] = status
        account["updated_at"] = self._clock()

    def seed_admin(self, email: str, password: str) -> dict:
        """Registers an administrator that can sign in with ``password``."""
        return self._create_account(
            UserRole.ADMINISTRATOR,
            email.lower(),
            status=RegistrationStatus.COMPLETE,
            password_hash=self._hash(password),
        )

    def approve(self, phone: str) -> bool:
        """Administrator action: approves a pengelola awaiting approval."""
        account = self._account_for(phone)
        if not account or account["status"] != RegistrationStatus.AWAITING_APPROVAL:
            return False
        self._set_status(account, RegistrationStatus.APPROVED)
        logger.info("Memory provider: approved pengelola <%s>", phone)
        return True

    def status_of(self, contact: str) -> RegistrationStatus | None:
        account = self._account_for(contact)
        return account["status"] if account else None

    # ═══════════════════════════════════════════════════════════════════════
    # Tokens
    # ═══════════════════════════════════════════════════════════════════════

    def _issue(
        self, account: dict, token_type: TokenType, session_id: str | None = None,
    ) -> TokenBundle:
        # jose checks "exp" against the wall clock, not the injected one.
        now = utcnow()
        sid = session_id or uuid4().hex
        claims = {"sub": account["account_id"], "sid": sid, "token_type": token_type.value}
        access = jwt.encode(
            {**claims, "type": "access", "exp": now + self._access_ttl},
            self._jwt_secret,
            algorithm=self._jwt_algorithm,
        )
        refresh = jwt.encode(
            {**claims, "type": "refresh", "jti": uuid4().hex, "exp": now + REFRESH_TOKEN_TTL},
            self._jwt_secret,
            algorithm=self._jwt_algorithm,
        )
        status = account["status"]
        return TokenBundle(
            access_token=access,
            refresh_token=refresh,
            session_id=sid,
            token_type=token_type,
            registration_status=status,
            next_step="completed" if token_type == TokenType.FULL else NEXT_STEPS[status],
            expires_in=int(self._access_ttl.total_seconds()),
        )

    def _decode(self, token: str, expected_type: str) -> dict | None:
        try:
            claims = jwt.decode(token, self._jwt_secret, algorithms=[self._jwt_algorithm])
        except JWTError:
            return None
        if claims.get("type") != expected_type or claims.get("sid") in self._revoked_sessions:
            return None
        return claims

    def _authenticate(self, access_token: str) -> tuple[dict | None, dict | None]:
        claims = self._decode(access_token, "access")
        if claims is None:
            return None, None
        return self._accounts.get(claims["sub"]), claims

    # ═══════════════════════════════════════════════════════════════════════
    # OTP challenges
    # ═══════════════════════════════════════════════════════════════════════

    def _prune(self) -> None:
        """Drops OTP bookkeeping and revocations that can no longer matter."""
        now = self._clock()
        for contact in [c for c, times in self._otp_requests.items()
                        if all(now - t >= OTP_REQUEST_WINDOW for t in times)]:
            del self._otp_requests[contact]
        for key in [k for k, c in self._challenges.items() if now - c["issued_at"] >= self._otp_ttl]:
            del self._challenges[key]
        wall = utcnow()
        for entries in (self._revoked_sessions, self._used_refresh_ids):
            for key in [k for k, until in entries.items() if until <= wall]:
                del entries[key]

    def _rate_limited(self, contact: str) -> bool:
        self._prune()
        now = self._clock()
        recent = [t for t in self._otp_requests.get(contact, []) if now - t < OTP_REQUEST_WINDOW]
        if len(recent) >= OTP_REQUEST_LIMIT:
            self._otp_requests[contact] = recent
            return True
        recent.append(now)
        self._otp_requests[contact] = recent
        return False

    def _issue_challenge(self, contact: str, device_id: str, purpose: OtpPurpose) -> OtpSent:
        now = self._clock()
        code = self._otp_generator()
        # One active challenge per (contact, device): a resend replaces the code.
        self._challenges[(contact, device_id)] = {
            "code": code, "purpose": purpose, "issued_at": now, "attempts": 0,
        }
        logger.info("OTP for %s: %s (dev only)", contact, code)
        ttl = int(self._otp_ttl.total_seconds())
        return OtpSent(
            message="OTP sent",
            expires_in_seconds=ttl,
            remaining_time=format_remaining(ttl),
            sent_at=now,
        )

    def _consume_challenge(
        self, contact: str, device_id: str, otp: str, purpose: OtpPurpose,
    ) -> bool:
        key = (contact, device_id)
        challenge = self._challenges.get(key)
        if not challenge or challenge["purpose"] != purpose:
            return False
        if self._clock() - challenge["issued_at"] >= self._otp_ttl:
            del self._challenges[key]
            return False
        challenge["attempts"] += 1
        if not secrets.compare_digest(challenge["code"], otp):
            if challenge["attempts"] >= MAX_OTP_ATTEMPTS:
                del self._challenges[key]
            return False
        del self._challenges[key]
        return True

    # ═══════════════════════════════════════════════════════════════════════
    # IdentityProvider
    # ═══════════════════════════════════════════════════════════════════════

    async def request_otp(
        self, role: UserRole, contact: str, device_id: str, purpose: OtpPurpose,
    ) -> ProviderResult[OtpSent]:
        if role != UserRole.FACILITY_MANAGER:
            return ProviderResult.error(ErrorKind.REJECTED, "Unsupported role", 400)
        account = self._account_for(contact)
        if purpose == OtpPurpose.LOGIN and account is None:
            return ProviderResult.error(
                ErrorKind.REJECTED, "Phone number is not registered. Please sign up first.", 404,
            )
        if (
            purpose == OtpPurpose.REGISTER
            and account is not None
            and account["status"] == RegistrationStatus.COMPLETE
        ):
            return ProviderResult.error(
                ErrorKind.REJECTED, "Phone number is already registered. Please log in.", 409,
            )
        if account is not None and account["locked"]:
            return ProviderResult.error(ErrorKind.LOCKED, "Account locked", 403)
        if self._rate_limited(contact):
            return ProviderResult.error(ErrorKind.RATE_LIMITED, "Too many OTP requests", 429)
        return ProviderResult.success(self._issue_challenge(contact, device_id, purpose))

    async def verify_otp(
        self, role: UserRole, contact: str, otp: str, device_id: str, purpose: OtpPurpose,
    ) -> ProviderResult[TokenBundle]:
        if not self._consume_challenge(contact, device_id, otp, purpose):
            return ProviderResult.error(ErrorKind.AUTH, "Invalid or expired OTP", 401)
        account = self._account_for(contact)
        if account is None:
            if purpose == OtpPurpose.LOGIN:
                return ProviderResult.error(ErrorKind.REJECTED, "Phone number is not registered", 404)
            account = self._create_account(role, contact)
        if account["locked"]:
            return ProviderResult.error(ErrorKind.LOCKED, "Account locked", 403)
        return ProviderResult.success(self._issue(account, TokenType.PARTIAL))

    async def admin_login(
        self, email: str, password: str, device_id: str,
    ) -> ProviderResult[OtpSent]:
        account = self._account_for(email.lower())
        if (
            account is None
            or account["role"] != UserRole.ADMINISTRATOR
            or not self._matches(password, account["password_hash"])
        ):
            return ProviderResult.error(ErrorKind.AUTH, "Invalid email or password", 401)
        if self._rate_limited(email.lower()):
            return ProviderResult.error(ErrorKind.RATE_LIMITED, "Too many OTP requests", 429)
        return ProviderResult.success(
            self._issue_challenge(email.lower(), device_id, OtpPurpose.LOGIN),
        )

    async def verify_admin_otp(
        self, email: str, otp: str, device_id: str,
    ) -> ProviderResult[TokenBundle]:
        contact = email.lower()
        if not self._consume_challenge(contact, device_id, otp, OtpPurpose.LOGIN):
            return ProviderResult.error(ErrorKind.AUTH, "Invalid or expired OTP", 401)
        account = self._account_for(contact)
        if account is None or account["role"] != UserRole.ADMINISTRATOR:
            return ProviderResult.error(ErrorKind.AUTH, "Invalid or expired OTP", 401)
        return ProviderResult.success(self._issue(account, TokenType.FULL))

    async def create_company_profile(
        self, access_token: str, profile: CompanyProfileForm,
    ) -> ProviderResult[TokenBundle]:
        account, claims = self._authenticate(access_token)
        if account is None:
            return ProviderResult.error(ErrorKind.AUTH, "Invalid token", 401)
        if account["status"] != RegistrationStatus.UNCOMPLETE:
            return ProviderResult.error(
                ErrorKind.REJECTED, "Company profile was already submitted", 409,
            )
        account["company_profile"] = profile.business_fields()
        self._set_status(account, RegistrationStatus.AWAITING_APPROVAL)
        return ProviderResult.success(self._issue(account, TokenType.PARTIAL, claims["sid"]))

    async def check_approval(self, access_token: str) -> ProviderResult[ApprovalStatus]:
        account, claims = self._authenticate(access_token)
        if account is None:
            return ProviderResult.error(ErrorKind.AUTH, "Invalid token", 401)
        status = account["status"]
        if status == RegistrationStatus.AWAITING_APPROVAL:
            return ProviderResult.success(ApprovalStatus(
                message="Still waiting for administrator approval",
                registration_status=status,
                next_step=NEXT_STEPS[status],
            ))
        bundle = self._issue(account, TokenType.PARTIAL, claims["sid"])
        return ProviderResult.success(ApprovalStatus(
            message="Registration approved",
            registration_status=status,
            next_step=bundle.next_step,
            access_token=bundle.access_token,
            refresh_token=bundle.refresh_token,
            token_type=bundle.token_type,
            session_id=bundle.session_id,
        ))

    async def create_pin(self, access_token: str, pin: str) -> ProviderResult[TokenBundle]:
        account, claims = self._authenticate(access_token)
        if account is None:
            return ProviderResult.error(ErrorKind.AUTH, "Invalid token", 401)
        if account["status"] != RegistrationStatus.APPROVED:
            return ProviderResult.error(ErrorKind.REJECTED, "Account is not approved yet", 400)
        account["pin_hash"] = self._hash(pin)
        self._set_status(account, RegistrationStatus.COMPLETE)
        return ProviderResult.success(self._issue(account, TokenType.PARTIAL, claims["sid"]))

    async def verify_pin(self, access_token: str, pin: str) -> ProviderResult[TokenBundle]:
        account, claims = self._authenticate(access_token)
        if account is None:
            return ProviderResult.error(ErrorKind.AUTH, "Invalid token", 401)
        if account["locked"]:
            return ProviderResult.error(ErrorKind.LOCKED, "Account locked", 403)
        if account["status"] != RegistrationStatus.COMPLETE or not account["pin_hash"]:
            return ProviderResult.error(ErrorKind.REJECTED, "PIN has not been created", 400)
        if not self._matches(pin, account["pin_hash"]):
            account["failed_pins"] += 1
            if account["failed_pins"] >= MAX_PIN_ATTEMPTS:
                account["locked"] = True
                logger.warning("Memory provider: account <%s> locked", account["contact"])
                return ProviderResult.error(ErrorKind.LOCKED, "Account locked", 403)
            return ProviderResult.error(ErrorKind.AUTH, "Incorrect PIN", 401)
        account["failed_pins"] = 0
        return ProviderResult.success(self._issue(account, TokenType.FULL, claims["sid"]))

    async def refresh_token(self, refresh_token: str) -> ProviderResult[TokenBundle]:
        claims = self._decode(refresh_token, "refresh")
        if claims is None or claims.get("jti") in self._used_refresh_ids:
            return ProviderResult.error(ErrorKind.AUTH, "Invalid refresh token", 401)
        account = self._accounts.get(claims["sub"])
        if account is None:
            return ProviderResult.error(ErrorKind.AUTH, "Invalid refresh token", 401)
        self._prune()
        self._used_refresh_ids[claims["jti"]] = datetime.fromtimestamp(claims["exp"], timezone.utc)
        return ProviderResult.success(
            self._issue(account, TokenType(claims["token_type"]), claims["sid"]),
        )

    async def logout(self, access_token: str) -> ProviderResult[None]:
        _, claims = self._authenticate(access_token)
        if claims is None:
            return ProviderResult.error(ErrorKind.AUTH, "Invalid token", 401)
        self._prune()
        self._revoked_sessions[claims["sid"]] = utcnow() + REFRESH_TOKEN_TTL
        return ProviderResult.success(None)


# ═══════════════════════════════════════════════════════════════════════════════
# Activation
# ═══════════════════════════════════════════════════════════════════════════════

def activate_memory_provider(settings: PortalSettings) -> MemoryIdentityProvider:
    """
    Installs the in-memory provider as the application provider.

    Called from ``rijig_portal.main`` → ``lifespan()`` when no identity API
    is configured.
    """
    from rijig_portal import dependencies

    provider = MemoryIdentityProvider.from_settings(settings)
    dependencies.set_identity_provider(provider)
    logger.warning(
        "🧠 In-memory identity provider ACTIVATED, accounts are lost on restart."
    )
    return provider
