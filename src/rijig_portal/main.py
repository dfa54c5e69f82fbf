"""
═══════════════════════════════════════════════════════════════════════════════
Rijig Portal: Application Entry Point
═══════════════════════════════════════════════════════════════════════════════

Application factory of the portal backend: pengelola registration/login,
administrator sign-in, session refresh/logout and the dashboard guards.

Navigation is driven by 303 redirects; errors use one envelope::

    {"error": {"code", "message", "details", "timestamp"}}
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from rijig_portal import __version__
from rijig_portal.config import get_settings
from rijig_portal.dependencies import set_identity_provider
from rijig_portal.exceptions import (
    PortalError,
    RedirectRequired,
    SessionInvalidatedError,
    StepValidationError,
)
from rijig_portal.session_store import get_session_store

# ── API routers ───────────────────────────────────────────────────────────
from rijig_portal.api.admin import router as admin_router
from rijig_portal.api.dashboard import router as dashboard_router
from rijig_portal.api.health import router as health_router
from rijig_portal.api.pengelola import router as pengelola_router
from rijig_portal.api.session import router as session_router

# ═══════════════════════════════════════════════════════════════════════════════
# Logging
# ═══════════════════════════════════════════════════════════════════════════════
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

STATUS_MAP: dict[str, int] = {
    "PORTAL_VALIDATION_ERROR": 400,
    "PORTAL_REJECTED": 400,
    "PORTAL_AUTH_ERROR": 401,
    "PORTAL_SESSION_INVALIDATED": 401,
    "PORTAL_ACCOUNT_LOCKED": 403,
    "PORTAL_RATE_LIMITED": 429,
    "PORTAL_PROVIDER_UNAVAILABLE": 502,
}


def error_envelope(exc: PortalError) -> dict:
    return {
        "error": {
            "code": exc.code,
            "message": exc.message,
            "details": exc.details,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    }


# ═══════════════════════════════════════════════════════════════════════════════
# Lifespan
# ═══════════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
        1. Wires the identity provider: HTTP client when ``PROVIDER_BASE_URL``
           is set, otherwise the in-memory provider.
        2. Connects the NATS publisher (skipped when disabled).

    Shutdown:
        1. Drains NATS, closes the provider HTTP client.
    """
    settings = get_settings()
    logger.info(f"🚀 Rijig Portal v{__version__} starting...")
    logger.info(f"   Log level: {settings.log_level}")

    client = None
    if settings.uses_memory_provider:
        logger.warning("⚠️  PROVIDER_BASE_URL is empty, activating in-memory provider")
        from rijig_portal.memory_provider import activate_memory_provider
        activate_memory_provider(settings)
    else:
        from rijig_portal.adapters.provider_client import IdentityProviderClient
        client = IdentityProviderClient(
            base_url=settings.provider_base_url,
            api_key=settings.provider_api_key,
            timeout=settings.provider_timeout_seconds,
        )
        set_identity_provider(client)
        logger.info("✅ Identity API client ready: %s", settings.provider_base_url)

    try:
        from rijig_portal.events import connect as nats_connect
        await nats_connect()
    except Exception as e:
        logger.warning(f"⚠️  NATS publisher not available (events will be skipped): {e}")

    yield

    # Shutdown: NATS → provider client
    try:
        from rijig_portal.events import disconnect as nats_disconnect
        await nats_disconnect()
    except Exception as e:
        logger.debug("NATS disconnect failed: %s", e)
    if client is not None:
        await client.aclose()
    set_identity_provider(None)
    logger.info("🛑 Rijig Portal stopped")


# ═══════════════════════════════════════════════════════════════════════════════
# Application factory
# ═══════════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    """Builds and configures the portal FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        redirect_slashes=False,
        title="Rijig Portal",
        description=(
            "Onboarding and login backend of the Rijig waste platform: "
            "pengelola registration, OTP and PIN verification, administrator "
            "sign-in and session-backed step guards."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
        openapi_url=None if settings.is_production else "/api/v1/openapi.json",
    )

    # ── CORS middleware ──────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "X-Request-ID"],
    )

    # ── Routers ──────────────────────────────────────────────────────────
    app.include_router(pengelola_router)
    app.include_router(admin_router)
    app.include_router(session_router)
    app.include_router(dashboard_router)
    if settings.uses_memory_provider:
        from rijig_portal.api.approval import router as approval_router
        app.include_router(approval_router)

    v1_router = APIRouter(prefix="/api/v1")
    v1_router.include_router(health_router)
    app.include_router(v1_router)

    # ── Global PortalError handler ───────────────────────────────────────
    @app.exception_handler(PortalError)
    async def portal_error_handler(request: Request, exc: PortalError):
        """Maps portal codes onto HTTP statuses; redirects become 303."""
        store = get_session_store()

        if isinstance(exc, RedirectRequired):
            response = RedirectResponse(exc.location, status_code=303)
            if exc.session is not None:
                store.save(response, exc.session)
            return response

        status_code = STATUS_MAP.get(exc.code, 500)
        if status_code >= 500:
            logger.error("Unhandled portal error %s: %s", exc.code, exc.message)
        response = JSONResponse(status_code=status_code, content=error_envelope(exc))
        if isinstance(exc, SessionInvalidatedError):
            store.destroy(response)
        return response

    # ── Form validation → 400 with field messages ────────────────────────
    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields: dict[str, str] = {}
        for error in exc.errors():
            loc = [str(part) for part in error.get("loc", ()) if part != "body"]
            fields.setdefault(".".join(loc) or "body", error.get("msg", "Invalid value"))
        err = StepValidationError(fields, step=request.url.path)
        return JSONResponse(status_code=400, content=error_envelope(err))

    # ── Root ─────────────────────────────────────────────────────────────
    @app.get("/")
    async def root():
        return {
            "name": "Rijig Portal",
            "version": __version__,
            "docs": "/docs",
            "flows": {
                "pengelola": "/auth/pengelola",
                "login": "/auth/pengelola/login/request-otp",
                "admin": "/auth/admin/sign-in",
                "health": "/api/v1/health",
            },
        }

    return app


# ═══════════════════════════════════════════════════════════════════════════════
# Module-level singleton
# ═══════════════════════════════════════════════════════════════════════════════
app = create_app()


def main() -> None:
    """Runs the portal through Uvicorn."""
    settings = get_settings()
    logger.info(f"Starting Rijig Portal on {settings.api_host}:{settings.api_port}")
    uvicorn.run(
        "rijig_portal.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
