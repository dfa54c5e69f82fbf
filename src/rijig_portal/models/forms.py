"""
rijig_portal/models/forms.py: Step input forms.

Each step validates its own input here, before any provider call. Violations
surface as field-level messages through the ``RequestValidationError``
handler in ``rijig_portal.main``.
"""

from __future__ import annotations

import base64
import binascii
import re
from datetime import date, datetime

from pydantic import Field, ValidationInfo, field_validator
from pydantic_core import PydanticCustomError

from rijig_portal.models.common import PortalBase

PHONE_RE = re.compile(r"^62\d{9,14}$")
OTP_RE = re.compile(r"^\d{4}$")
PIN_RE = re.compile(r"^\d{6}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
WEBSITE_RE = re.compile(r"^https?://[^\s/$.?#][^\s]*\.[^\s]+$", re.IGNORECASE)
COMPANY_PHONE_RE = re.compile(r"^\+?\d{8,15}$")
LOGO_RE = re.compile(r"^data:(image/(?:png|jpeg|webp));base64,([A-Za-z0-9+/=\s]+)$")

WEAK_PINS = {"123456", "654321", "000000"}
MAX_LOGO_BYTES = 2 * 1024 * 1024
DATE_FORMAT = "%d-%m-%Y"


def _check_pin(value: str) -> str:
    if not PIN_RE.fullmatch(value):
        raise PydanticCustomError("pin_format", "PIN must be exactly 6 digits")
    return value


# ═══════════════════════════════════════════════════════════════════════════
# OTP / PIN
# ═══════════════════════════════════════════════════════════════════════════


class PhoneForm(PortalBase):
    """WhatsApp number that receives the OTP."""
    phone: str = Field(..., examples=["6281234567890"])

    @field_validator("phone")
    @classmethod
    def _phone_format(cls, v: str) -> str:
        if not PHONE_RE.fullmatch(v):
            raise PydanticCustomError(
                "phone_format", "Phone must look like 628xxxxxxxxx (9-14 digits after 62)",
            )
        return v


class OtpForm(PortalBase):
    otp: str = Field(..., examples=["1234"])

    @field_validator("otp")
    @classmethod
    def _otp_format(cls, v: str) -> str:
        if not OTP_RE.fullmatch(v):
            raise PydanticCustomError("otp_format", "OTP must be exactly 4 digits")
        return v


class PinForm(PortalBase):
    pin: str

    @field_validator("pin")
    @classmethod
    def _pin_format(cls, v: str) -> str:
        return _check_pin(v)


class CreatePinForm(PortalBase):
    """New PIN plus its confirmation."""
    pin: str
    confirm_pin: str

    @field_validator("pin", "confirm_pin")
    @classmethod
    def _pin_digits(cls, v: str) -> str:
        return _check_pin(v)

    @field_validator("pin")
    @classmethod
    def _pin_strength(cls, v: str) -> str:
        if len(set(v)) == 1:
            raise PydanticCustomError("pin_weak", "PIN cannot repeat a single digit")
        if v in WEAK_PINS:
            raise PydanticCustomError("pin_weak", "PIN is too easy to guess")
        return v

    @field_validator("confirm_pin")
    @classmethod
    def _pins_match(cls, v: str, info: ValidationInfo) -> str:
        pin = info.data.get("pin")
        if pin is not None and pin.encode() != v.encode():
            raise PydanticCustomError("pin_mismatch", "PIN and confirmation do not match")
        return v


# ═══════════════════════════════════════════════════════════════════════════
# COMPANY PROFILE
# ═══════════════════════════════════════════════════════════════════════════


class CompanyProfileForm(PortalBase):
    """Business details submitted once the phone number is verified."""
    companyname: str = Field(..., min_length=1, max_length=255)
    companyaddress: str = Field(..., min_length=1, max_length=512)
    companyphone: str = Field(..., min_length=1)
    companyemail: str = Field(..., min_length=1, examples=["info@bankrijig.id"])
    companywebsite: str = Field(..., min_length=1, examples=["https://bankrijig.id"])
    taxid: str = Field(..., min_length=1, max_length=32)
    foundeddate: str = Field(..., min_length=1, examples=["17-08-2015"])
    companytype: str = Field(..., min_length=1, max_length=64)
    companydescription: str = Field(..., min_length=1, max_length=2000)
    company_logo: str | None = Field(
        default=None, description="Optional data URL (png, jpeg or webp)",
    )

    @field_validator("companyphone")
    @classmethod
    def _company_phone(cls, v: str) -> str:
        if not COMPANY_PHONE_RE.fullmatch(v):
            raise PydanticCustomError("phone_format", "Company phone must contain 8-15 digits")
        return v

    @field_validator("companyemail")
    @classmethod
    def _company_email(cls, v: str) -> str:
        if not EMAIL_RE.fullmatch(v):
            raise PydanticCustomError("email_format", "Invalid email address")
        return v

    @field_validator("companywebsite")
    @classmethod
    def _company_website(cls, v: str) -> str:
        if not WEBSITE_RE.fullmatch(v):
            raise PydanticCustomError("url_format", "Website must be an http(s) URL")
        return v

    @field_validator("foundeddate")
    @classmethod
    def _founded_date(cls, v: str) -> str:
        try:
            founded = datetime.strptime(v, DATE_FORMAT).date()
        except ValueError:
            raise PydanticCustomError("date_format", "Date must be a real date in DD-MM-YYYY")
        if founded > date.today():
            raise PydanticCustomError("date_future", "Founding date cannot be in the future")
        return v

    @field_validator("company_logo")
    @classmethod
    def _company_logo(cls, v: str | None) -> str | None:
        if not v:
            return None
        match = LOGO_RE.fullmatch(v)
        if not match:
            raise PydanticCustomError("logo_format", "Logo must be a png, jpeg or webp data URL")
        try:
            raw = base64.b64decode(match.group(2), validate=False)
        except (binascii.Error, ValueError):
            raise PydanticCustomError("logo_format", "Logo is not valid base64")
        if len(raw) > MAX_LOGO_BYTES:
            raise PydanticCustomError("logo_size", "Logo must not exceed 2 MB")
        return v

    def business_fields(self) -> dict[str, str]:
        """Text fields as sent to the identity provider."""
        return self.model_dump(exclude={"company_logo"})

    def logo_file(self) -> tuple[str, bytes, str] | None:
        """Decoded logo as an httpx multipart tuple, if one was attached."""
        if not self.company_logo:
            return None
        match = LOGO_RE.fullmatch(self.company_logo)
        mime = match.group(1)
        extension = mime.split("/")[1]
        return f"company_logo.{extension}", base64.b64decode(match.group(2)), mime


# ═══════════════════════════════════════════════════════════════════════════
# ADMINISTRATOR
# ═══════════════════════════════════════════════════════════════════════════


class AdminSignInForm(PortalBase):
    email: str
    password: str = Field(..., min_length=6, max_length=128)

    @field_validator("email")
    @classmethod
    def _email_format(cls, v: str) -> str:
        if not EMAIL_RE.fullmatch(v):
            raise PydanticCustomError("email_format", "Invalid email address")
        return v.lower()
