from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, or_
from medbill.database import get_db
from medbill.models.patient import Patient
from medbill.models.service_record import ServiceRecord
from medbill.schemas.common import ok, pagination
from medbill.schemas.patient import PatientCreate, PatientUpdate, PatientResponse
from medbill.schemas.service_record import ServiceRecordResponse
from medbill.auth import require_permission, UserPrincipal

router = APIRouter()


async def _get_patient(db: AsyncSession, patient_id: int) -> Patient:
    patient = await db.get(Patient, patient_id)
    if not patient:
        raise HTTPException(status_code=404, detail=f"Patient {patient_id} not found")
    return patient


@router.get("")
async def list_patients(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: str = Query("", description="Search by document number or name"),
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("patients", "read")),
):
    query = select(Patient)
    if not include_inactive:
        query = query.where(Patient.active.is_(True))

    if search:
        query = query.where(
            or_(
                Patient.document_number.ilike(f"%{search}%"),
                Patient.first_name.ilike(f"%{search}%"),
                Patient.first_last_name.ilike(f"%{search}%"),
                Patient.second_last_name.ilike(f"%{search}%"),
            )
        )

    # Count
    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0

    # Paginate
    query = query.order_by(Patient.first_last_name, Patient.first_name).offset((page - 1) * limit).limit(limit)
    patients = (await db.execute(query)).scalars().all()

    return ok(
        [PatientResponse.model_validate(p) for p in patients],
        pagination=pagination(page, limit, total),
    )


@router.get("/document/{document_number}")
async def get_patient_by_document(
    document_number: str,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("patients", "read")),
):
    patient = await db.scalar(select(Patient).where(Patient.document_number == document_number.strip()))
    if not patient:
        raise HTTPException(status_code=404, detail=f"Patient with document {document_number} not found")

    pending = await db.scalar(
        current_user.company_scope.apply(
            select(func.count()).select_from(ServiceRecord).where(
                ServiceRecord.patient_id == patient.id,
                ServiceRecord.status == "pending",
                ServiceRecord.active.is_(True),
            ),
            ServiceRecord.company_id,
        )
    ) or 0
    return ok(PatientResponse.model_validate(patient), metadata={"pending_services": pending})


@router.get("/{patient_id}/services")
async def get_patient_services(
    patient_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "read")),
):
    await _get_patient(db, patient_id)
    query = current_user.company_scope.apply(
        select(ServiceRecord).where(ServiceRecord.patient_id == patient_id),
        ServiceRecord.company_id,
    )
    result = await db.execute(query.order_by(ServiceRecord.service_date.desc()))
    return ok([ServiceRecordResponse.model_validate(s) for s in result.scalars().all()])


@router.post("", status_code=201)
async def create_patient(
    data: PatientCreate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("patients", "create")),
):
    if await db.scalar(select(Patient.id).where(Patient.document_number == data.document_number)):
        raise HTTPException(status_code=400, detail=f"A patient with document {data.document_number} already exists")

    patient = Patient(**data.model_dump(), created_by=current_user.id)
    db.add(patient)
    await db.flush()
    await db.refresh(patient)
    return ok(PatientResponse.model_validate(patient), message="Patient created")


@router.put("/{patient_id}")
async def update_patient(
    patient_id: int,
    data: PatientUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("patients", "update")),
):
    patient = await _get_patient(db, patient_id)

    update_data = data.model_dump(exclude_unset=True)
    for key, value in update_data.items():
        setattr(patient, key, value)
    patient.updated_by = current_user.id

    await db.flush()
    await db.refresh(patient)
    return ok(PatientResponse.model_validate(patient), message="Patient updated")


@router.delete("/{patient_id}")
async def delete_patient(
    patient_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("patients", "delete")),
):
    patient = await _get_patient(db, patient_id)
    patient.active = False
    patient.updated_by = current_user.id
    await db.flush()
    return ok({"id": patient.id, "active": False}, message="Patient deactivated")
