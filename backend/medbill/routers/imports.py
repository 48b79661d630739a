from typing import Literal
from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from medbill.database import get_db
from medbill.auth import require_permission, UserPrincipal
from medbill.schemas.common import ok
from medbill.services.import_service import import_service, read_upload, render_template

router = APIRouter()


@router.get("/template/{kind}")
async def download_template(
    kind: Literal["patients", "services", "doctors", "diagnoses"],
    current_user: UserPrincipal = Depends(require_permission("import", "read")),
):
    return StreamingResponse(
        iter([render_template(kind)]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={kind}_template.csv"},
    )


@router.post("/patients")
async def import_patients(
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("import", "execute")),
):
    rows = await read_upload(file)
    summary = await import_service.import_patients(db, rows, current_user.id)
    return ok(summary.as_dict(), message=summary.message)


@router.post("/services")
async def import_services(
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("import", "execute")),
):
    rows = await read_upload(file)
    summary = await import_service.import_services(db, rows, current_user)
    return ok(summary.as_dict(), message=summary.message)
