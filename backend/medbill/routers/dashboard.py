from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from medbill.database import get_db
from medbill.auth import require_permission, UserPrincipal
from medbill.schemas.common import ok
from medbill.services.dashboard_service import dashboard_service

router = APIRouter()


@router.get("/stats")
async def get_stats(
    period: str = Query("month", description="week, month, quarter, year or custom"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("dashboard", "read")),
):
    stats = await dashboard_service.get_stats(db, current_user.company_scope, period, start_date, end_date)
    return ok(stats)


@router.get("/recent-activity")
async def get_recent_activity(
    limit: int = Query(10, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("dashboard", "read")),
):
    return ok(await dashboard_service.get_recent_activity(db, current_user.company_scope, limit))
