"""
Dashboard API routes.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from locall.database import get_db
from locall.middleware.auth import get_current_active_user
from locall.models import User
from locall.services.dashboard import DashboardService

router = APIRouter(prefix="/api/v1/dashboard", tags=["dashboard"])


@router.get("")
async def get_dashboard(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """Metrics, recent activity and open work items for the caller's workspace."""
    return await DashboardService(db).get_summary(current_user.workspace_id, current_user.id)


@router.get("/metrics")
async def get_metrics(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return await DashboardService(db).get_dashboard_metrics(current_user.workspace_id)


@router.get("/activity")
async def get_recent_activity(
    limit: int = 10,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return await DashboardService(db).get_recent_activity(current_user.workspace_id, limit=min(limit, 100))
