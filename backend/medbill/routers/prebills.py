from datetime import date, datetime, time, timedelta
from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from medbill.database import get_db
from medbill.auth import require_permission, UserPrincipal
from medbill.models.prebill import PreBill
from medbill.schemas.common import ok, pagination
from medbill.schemas.prebill import PreBillCreate, PreBillResponse
from medbill.services.prebill_service import prebill_service

router = APIRouter()


def _csv_response(content: str, filename: str) -> StreamingResponse:
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.post("", status_code=201)
async def create_prebill(
    data: PreBillCreate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("prebills", "create")),
):
    prebill = await prebill_service.create(db, data, current_user)
    return ok(PreBillResponse.model_validate(prebill), message="Pre-bill created")


@router.get("")
async def list_prebills(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None),
    company_id: Optional[int] = Query(None),
    contract_id: Optional[int] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("prebills", "read")),
):
    query = current_user.company_scope.apply(select(PreBill), PreBill.company_id)
    if status:
        query = query.where(PreBill.status == status)
    if company_id is not None:
        query = query.where(PreBill.company_id == company_id)
    if contract_id is not None:
        query = query.where(PreBill.contract_id == contract_id)
    if start_date:
        query = query.where(PreBill.created_at >= datetime.combine(start_date, time.min))
    if end_date:
        query = query.where(PreBill.created_at < datetime.combine(end_date + timedelta(days=1), time.min))

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    query = query.order_by(PreBill.created_at.desc(), PreBill.id.desc()).offset((page - 1) * limit).limit(limit)
    prebills = (await db.execute(query)).scalars().all()
    return ok([PreBillResponse.model_validate(p) for p in prebills], pagination=pagination(page, limit, total))


@router.get("/export")
async def export_prebills(
    company_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("prebills", "update")),
):
    """Download every partial pre-bill in scope as CSV and mark them finalized."""
    content = await prebill_service.export_partial(db, current_user, company_id)
    return _csv_response(content, f"prebills_{date.today().isoformat()}.csv")


@router.get("/{prebill_id}")
async def get_prebill(
    prebill_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("prebills", "read")),
):
    prebill = await prebill_service.get_for_user(db, prebill_id, current_user)
    return ok(PreBillResponse.model_validate(prebill))


@router.get("/{prebill_id}/reprint")
async def reprint_prebill(
    prebill_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("prebills", "read")),
):
    content = await prebill_service.reprint(db, prebill_id, current_user)
    return _csv_response(content, f"prebill_{prebill_id}.csv")


@router.patch("/{prebill_id}/cancel")
async def cancel_prebill(
    prebill_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("prebills", "update")),
):
    prebill = await prebill_service.cancel(db, prebill_id, current_user)
    await db.refresh(prebill)
    return ok(PreBillResponse.model_validate(prebill), message="Pre-bill cancelled")
