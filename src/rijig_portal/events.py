"""
rijig_portal/events.py: NATS event publisher.

Publishes portal domain events to NATS:
    • ``rijig.portal.pengelola.registered``       : registration OTP verified
    • ``rijig.portal.pengelola.profile_submitted``: company profile sent
    • ``rijig.portal.pengelola.pin_created``      : PIN set after approval
    • ``rijig.portal.login.completed``            : pengelola PIN verified
    • ``rijig.portal.admin.login``                : administrator OTP verified
    • ``rijig.portal.logout``                     : session destroyed

The back-office subscribes to ``profile_submitted`` to queue the approval.
It is the only event carrying the full phone number, since approval looks the
account up by it; every other event carries masked contacts.

Graceful degradation: with an empty ``NATS_URL`` or an unreachable server the
event is skipped with a log line; the onboarding step itself never fails.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import nats
from nats.aio.client import Client as NATSClient

from rijig_portal.config import get_settings

logger = logging.getLogger(__name__)

SUBJECT_PREFIX = "rijig.portal"

# ── Singleton NATS connection ─────────────────────────────────────────────

_nc: NATSClient | None = None


async def connect() -> NATSClient | None:
    """Connects to NATS unless already connected or disabled."""
    global _nc
    if _nc is not None and _nc.is_connected:
        return _nc
    settings = get_settings()
    if not settings.nats_url:
        return None
    try:
        _nc = await nats.connect(settings.nats_url, connect_timeout=2, max_reconnect_attempts=1)
        logger.info("NATS publisher connected: %s", settings.nats_url)
        return _nc
    except Exception as exc:
        logger.warning("NATS connect failed (events will be skipped): %s", exc)
        _nc = None
        return None


def is_connected() -> bool:
    return _nc is not None and _nc.is_connected


async def disconnect() -> None:
    global _nc
    if _nc and _nc.is_connected:
        await _nc.drain()
        logger.info("NATS publisher disconnected")
    _nc = None


# ── Payload helpers ───────────────────────────────────────────────────────

def mask_contact(contact: str | None) -> str | None:
    """``6281234567890`` → ``6281*****7890``; e-mails keep their domain."""
    if not contact:
        return contact
    if "@" in contact:
        name, _, domain = contact.partition("@")
        return f"{name[:1]}***@{domain}"
    if len(contact) <= 8:
        return "*" * len(contact)
    return f"{contact[:4]}{'*' * (len(contact) - 8)}{contact[-4:]}"


# ── Publishing ────────────────────────────────────────────────────────────

async def publish(subject: str, data: dict[str, Any]) -> None:
    """
    Publishes a JSON event.

    Args:
        subject: Message subject (e.g. ``rijig.portal.logout``).
        data: Payload, serialized to JSON.
    """
    nc = await connect()
    if nc is None:
        logger.debug("NATS unavailable, skipping event %s", subject)
        return
    try:
        payload = json.dumps(data, default=str).encode("utf-8")
        await nc.publish(subject, payload)
        logger.info("NATS event published: %s", subject)
    except Exception as exc:
        logger.warning("NATS publish failed for %s: %s", subject, exc)


# ── Portal events ─────────────────────────────────────────────────────────

async def emit_pengelola_registered(phone: str, session_id: str | None, status: str) -> None:
    await publish(f"{SUBJECT_PREFIX}.pengelola.registered", {
        "event": "pengelola.registered",
        "phone": mask_contact(phone),
        "session_id": session_id,
        "registration_status": status,
    })


async def emit_profile_submitted(phone: str, company_name: str, tax_id: str) -> None:
    """Event: a company profile is waiting for administrator approval."""
    await publish(f"{SUBJECT_PREFIX}.pengelola.profile_submitted", {
        "event": "pengelola.profile_submitted",
        "phone": phone,
        "company_name": company_name,
        "tax_id": tax_id,
    })


async def emit_pin_created(phone: str) -> None:
    await publish(f"{SUBJECT_PREFIX}.pengelola.pin_created", {
        "event": "pengelola.pin_created",
        "phone": mask_contact(phone),
    })


async def emit_login_completed(phone: str, session_id: str | None) -> None:
    await publish(f"{SUBJECT_PREFIX}.login.completed", {
        "event": "login.completed",
        "phone": mask_contact(phone),
        "session_id": session_id,
    })


async def emit_admin_login(email: str, session_id: str | None) -> None:
    await publish(f"{SUBJECT_PREFIX}.admin.login", {
        "event": "admin.login",
        "email": mask_contact(email),
        "session_id": session_id,
    })


async def emit_logout(role: str, session_id: str | None) -> None:
    await publish(f"{SUBJECT_PREFIX}.logout", {
        "event": "logout",
        "role": role,
        "session_id": session_id,
    })
