from typing import Optional
from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, or_
from medbill.database import get_db
from medbill.auth import require_permission, UserPrincipal
from medbill.models.doctor import Doctor
from medbill.schemas.common import ok, pagination
from medbill.schemas.doctor import DoctorCreate, DoctorResponse, DoctorUpdate
from medbill.services.import_service import import_service, read_upload

router = APIRouter()


def _check_company(current_user: UserPrincipal, company_id: Optional[int]) -> None:
    if company_id is None:
        if not current_user.company_scope.unrestricted:
            raise HTTPException(status_code=400, detail="company_id is required")
        return
    if not current_user.can_access_company(company_id):
        raise HTTPException(status_code=403, detail="You do not have access to this company")


async def _get_doctor(db: AsyncSession, doctor_id: int, current_user: UserPrincipal) -> Doctor:
    doctor = await db.get(Doctor, doctor_id)
    if not doctor or not current_user.company_scope.allows(doctor.company_id):
        raise HTTPException(status_code=404, detail=f"Doctor {doctor_id} not found")
    return doctor


async def _ensure_unique(db: AsyncSession, document_number: Optional[str], card: Optional[str], exclude_id: int = 0):
    if document_number and await db.scalar(
        select(Doctor.id).where(Doctor.document_number == document_number, Doctor.id != exclude_id)
    ):
        raise HTTPException(status_code=400, detail=f"A doctor with document {document_number} already exists")
    if card and await db.scalar(
        select(Doctor.id).where(Doctor.professional_card == card, Doctor.id != exclude_id)
    ):
        raise HTTPException(status_code=400, detail=f"A doctor with professional card {card} already exists")


@router.get("")
async def list_doctors(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: str = Query(""),
    specialty: str = Query(""),
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "read")),
):
    query = current_user.company_scope.apply(
        select(Doctor).where(Doctor.active.is_(True)), Doctor.company_id
    )
    if search:
        query = query.where(
            or_(
                Doctor.document_number.ilike(f"%{search}%"),
                Doctor.first_name.ilike(f"%{search}%"),
                Doctor.first_last_name.ilike(f"%{search}%"),
                Doctor.professional_card.ilike(f"%{search}%"),
            )
        )
    if specialty:
        query = query.where(Doctor.specialty.ilike(f"%{specialty}%"))

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    query = query.order_by(Doctor.first_last_name, Doctor.first_name).offset((page - 1) * limit).limit(limit)
    doctors = (await db.execute(query)).scalars().all()
    return ok([DoctorResponse.model_validate(d) for d in doctors], pagination=pagination(page, limit, total))


@router.get("/search")
async def search_doctors(
    q: str = Query(""),
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "read")),
):
    """Autocomplete. Fewer than two characters returns an empty list."""
    if len(q.strip()) < 2:
        return ok([])
    term = f"%{q.strip()}%"
    query = current_user.company_scope.apply(
        select(Doctor).where(
            Doctor.active.is_(True),
            or_(
                Doctor.document_number.ilike(term),
                Doctor.first_name.ilike(term),
                Doctor.first_last_name.ilike(term),
                Doctor.professional_card.ilike(term),
            ),
        ),
        Doctor.company_id,
    )
    doctors = (await db.execute(query.order_by(Doctor.first_last_name).limit(10))).scalars().all()
    return ok([DoctorResponse.model_validate(d) for d in doctors])


@router.get("/document/{document_number}")
async def get_doctor_by_document(
    document_number: str,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "read")),
):
    doctor = await db.scalar(
        current_user.company_scope.apply(
            select(Doctor).where(Doctor.document_number == document_number.strip()), Doctor.company_id
        )
    )
    if not doctor:
        raise HTTPException(status_code=404, detail=f"Doctor with document {document_number} not found")
    return ok(DoctorResponse.model_validate(doctor))


@router.post("", status_code=201)
async def create_doctor(
    data: DoctorCreate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "create")),
):
    _check_company(current_user, data.company_id)
    await _ensure_unique(db, data.document_number, data.professional_card)

    doctor = Doctor(**data.model_dump(), created_by=current_user.id)
    db.add(doctor)
    await db.flush()
    await db.refresh(doctor)
    return ok(DoctorResponse.model_validate(doctor), message="Doctor created")


@router.post("/import")
async def import_doctors(
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "create")),
):
    rows = await read_upload(file)
    summary = await import_service.import_doctors(db, rows, current_user)
    return ok(summary.as_dict(), message=summary.message)


@router.put("/{doctor_id}")
async def update_doctor(
    doctor_id: int,
    data: DoctorUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "update")),
):
    doctor = await _get_doctor(db, doctor_id, current_user)
    update_data = data.model_dump(exclude_unset=True)
    if "company_id" in update_data:
        _check_company(current_user, update_data["company_id"])
    await _ensure_unique(db, update_data.get("document_number"), update_data.get("professional_card"), doctor.id)

    for key, value in update_data.items():
        setattr(doctor, key, value)
    doctor.updated_by = current_user.id

    await db.flush()
    await db.refresh(doctor)
    return ok(DoctorResponse.model_validate(doctor), message="Doctor updated")


@router.delete("/{doctor_id}")
async def delete_doctor(
    doctor_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "delete")),
):
    doctor = await _get_doctor(db, doctor_id, current_user)
    doctor.active = False
    doctor.updated_by = current_user.id
    await db.flush()
    return ok({"id": doctor.id, "active": False}, message="Doctor deactivated")
