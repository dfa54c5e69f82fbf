"""
rijig_portal/api/dashboard.py: Dashboard entry points.

The dashboards themselves live in the frontend; these endpoints only expose
the authorized session summary, and only to fully signed-in users.
"""

from fastapi import APIRouter, Depends

from rijig_portal.dependencies import require_dashboard
from rijig_portal.models.enums import UserRole
from rijig_portal.models.views import AuthorizedSession

router = APIRouter(tags=["dashboard"])


@router.get("/pengelola/dashboard", response_model=AuthorizedSession, summary="Pengelola dashboard")
async def pengelola_dashboard(
    user: AuthorizedSession = Depends(require_dashboard(UserRole.FACILITY_MANAGER)),
):
    return user


@router.get("/admin/dashboard", response_model=AuthorizedSession, summary="Administrator dashboard")
async def admin_dashboard(
    user: AuthorizedSession = Depends(require_dashboard(UserRole.ADMINISTRATOR)),
):
    return user
