"""
rijig_portal/api/health.py: Health check of the portal backend.

GET /api/v1/health: reports which identity provider is wired in and
whether NATS event publishing is connected.
"""

from fastapi import APIRouter

from rijig_portal import events
from rijig_portal.config import get_settings
from rijig_portal.services.audit_logger import get_audit_logger

router = APIRouter(tags=["health"])


@router.get("/health", summary="Portal health check")
async def health():
    settings = get_settings()
    nats_ok = events.is_connected()
    return {
        "status": "healthy",
        "provider": "memory" if settings.uses_memory_provider else "http",
        "nats": "connected" if nats_ok else ("disabled" if not settings.nats_url else "disconnected"),
        "audit_buffer": get_audit_logger().buffer_size,
        "service": "rijig-portal",
    }
