from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_
from medbill.database import get_db
from medbill.auth import require_permission, UserPrincipal
from medbill.models.cie11 import Cie11Code
from medbill.schemas.cie11 import Cie11Create, Cie11Response, Cie11Suggestion, Cie11Update
from medbill.schemas.common import ok
from medbill.services.diagnosis_service import normalize_code, validate_code
from medbill.services.import_service import import_service, read_upload

router = APIRouter()

_NULLABLE_FIELDS = {
    "description_en", "chapter_code", "subcategory", "max_age", "valid_from", "valid_until", "notes",
}


@router.get("/search")
async def search_codes(
    q: str = Query(""),
    limit: int = Query(10, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "read")),
):
    """Autocomplete over active, billable codes by code or description."""
    term = q.strip()
    if len(term) < 2:
        return ok([])
    result = await db.execute(
        select(Cie11Code)
        .where(
            Cie11Code.active.is_(True),
            Cie11Code.billable.is_(True),
            or_(Cie11Code.code.ilike(f"%{term}%"), Cie11Code.description.ilike(f"%{term}%")),
        )
        .order_by(Cie11Code.code)
        .limit(limit)
    )
    return ok([Cie11Suggestion.model_validate(c) for c in result.scalars().all()])


@router.get("/validate/{code}")
async def validate(
    code: str,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "read")),
):
    result = await validate_code(db, code)
    return ok({
        "code": normalize_code(code),
        "is_valid": result.is_valid,
        "diagnosis": Cie11Response.model_validate(result.diagnosis) if result.diagnosis else None,
    })


@router.get("/chapters")
async def list_chapters(
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "read")),
):
    result = await db.execute(
        select(Cie11Code.chapter).where(Cie11Code.active.is_(True)).distinct().order_by(Cie11Code.chapter)
    )
    return ok([chapter for (chapter,) in result.all()])


@router.get("/chapter/{chapter}")
async def list_chapter_codes(
    chapter: str,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "read")),
):
    result = await db.execute(
        select(Cie11Code)
        .where(Cie11Code.chapter == chapter, Cie11Code.active.is_(True))
        .order_by(Cie11Code.code)
    )
    return ok([Cie11Response.model_validate(c) for c in result.scalars().all()])


@router.post("", status_code=201)
async def create_code(
    data: Cie11Create,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "create")),
):
    if await db.scalar(select(Cie11Code.id).where(Cie11Code.code == data.code)):
        raise HTTPException(status_code=400, detail=f"Diagnosis code {data.code} already exists")
    code = Cie11Code(**data.model_dump(), created_by=current_user.id)
    db.add(code)
    await db.flush()
    await db.refresh(code)
    return ok(Cie11Response.model_validate(code), message="Diagnosis code created")


@router.post("/import")
async def import_codes(
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "create")),
):
    rows = await read_upload(file)
    summary = await import_service.import_diagnoses(db, rows, current_user.id)
    return ok(summary.as_dict(), message=summary.message)


@router.put("/{code_id}")
async def update_code(
    code_id: int,
    data: Cie11Update,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "update")),
):
    code = await db.get(Cie11Code, code_id)
    if not code:
        raise HTTPException(status_code=404, detail=f"Diagnosis code {code_id} not found")

    # only the optional columns may be cleared
    update_data = {
        k: v for k, v in data.model_dump(exclude_unset=True).items()
        if v is not None or k in _NULLABLE_FIELDS
    }
    min_age = update_data.get("min_age", code.min_age) or 0
    max_age = update_data.get("max_age", code.max_age)
    if max_age is not None and max_age < min_age:
        raise HTTPException(status_code=400, detail="max_age must be greater than or equal to min_age")

    for key, value in update_data.items():
        setattr(code, key, value)
    code.updated_by = current_user.id

    await db.flush()
    await db.refresh(code)
    return ok(Cie11Response.model_validate(code), message="Diagnosis code updated")


@router.delete("/{code_id}")
async def delete_code(
    code_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "delete")),
):
    code = await db.get(Cie11Code, code_id)
    if not code:
        raise HTTPException(status_code=404, detail=f"Diagnosis code {code_id} not found")
    code.active = False
    code.updated_by = current_user.id
    await db.flush()
    return ok({"id": code.id, "active": False}, message="Diagnosis code deactivated")
