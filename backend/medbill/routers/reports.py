from datetime import date
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from medbill.database import get_db
from medbill.auth import require_permission, UserPrincipal
from medbill.schemas.common import ok
from medbill.schemas.report import ReportRequest
from medbill.services.report_service import report_service

router = APIRouter()


@router.post("/generate")
async def generate_report(
    body: ReportRequest,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("reports", "read")),
):
    report = await report_service.generate(db, body, current_user)
    return ok(report["rows"], totals=report["totals"], metadata=report["metadata"])


@router.post("/export")
async def export_report(
    body: ReportRequest,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("reports", "read")),
):
    """Same report as /generate, downloaded as CSV."""
    report = await report_service.generate(db, body, current_user)
    return StreamingResponse(
        iter([report_service.render_csv(report)]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=report_{date.today().isoformat()}.csv"},
    )


@router.get("/municipalities")
async def list_municipalities(
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("reports", "read")),
):
    return ok(await report_service.distinct_values(db, "municipalities"))


@router.get("/departments")
async def list_departments(
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("reports", "read")),
):
    return ok(await report_service.distinct_values(db, "departments"))


@router.get("/regimens")
async def list_regimens(
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("reports", "read")),
):
    return ok(await report_service.distinct_values(db, "regimens"))
