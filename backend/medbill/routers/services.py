from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from medbill.database import get_db
from medbill.auth import require_permission, require_company_access, UserPrincipal
from medbill.models.company import Contract
from medbill.models.patient import Patient
from medbill.models.prebill import PreBill
from medbill.models.service_record import ServiceRecord
from medbill.schemas.common import ok, pagination
from medbill.schemas.patient import PatientResponse
from medbill.schemas.service_record import (
    AssignContract,
    ServiceRecordCreate,
    ServiceRecordResponse,
    ServiceStatusUpdate,
)
from medbill.services.diagnosis_service import service_requires_diagnosis, validate_diagnosis_field

router = APIRouter()


async def _get_record(db: AsyncSession, record_id: int, current_user: UserPrincipal) -> ServiceRecord:
    record = await db.get(ServiceRecord, record_id)
    if not record:
        raise HTTPException(status_code=404, detail=f"Service record {record_id} not found")
    if not current_user.company_scope.allows(record.company_id):
        raise HTTPException(status_code=403, detail="You do not have access to this service record")
    return record


async def _check_contract(db: AsyncSession, company_id: Optional[int], contract_id: Optional[int]) -> None:
    if contract_id is None:
        return
    contract = await db.get(Contract, contract_id)
    if not contract or contract.company_id != company_id:
        raise HTTPException(status_code=400, detail="Contract does not belong to the company")


@router.post("/records", status_code=201)
async def create_service_record(
    data: ServiceRecordCreate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "create")),
):
    if data.company_id is not None or not current_user.company_scope.unrestricted:
        require_company_access(current_user, data.company_id)
    await _check_contract(db, data.company_id, data.contract_id)

    patient = await db.get(Patient, data.patient_id)
    if not patient:
        raise HTTPException(status_code=404, detail=f"Patient {data.patient_id} not found")

    diagnosis = await validate_diagnosis_field(db, data.diagnosis)
    if not diagnosis and service_requires_diagnosis(data.cups_code):
        raise HTTPException(status_code=400, detail=f"Diagnosis is required for procedure {data.cups_code}")

    duplicate = select(ServiceRecord.id).where(
        ServiceRecord.patient_id == patient.id,
        ServiceRecord.cups_code == data.cups_code,
        ServiceRecord.service_date == data.service_date,
    )
    if data.contract_id is None:
        duplicate = duplicate.where(ServiceRecord.contract_id.is_(None))
    else:
        duplicate = duplicate.where(ServiceRecord.contract_id == data.contract_id)
    if await db.scalar(duplicate):
        raise HTTPException(status_code=400, detail="This service is already registered for the patient on that date")

    record = ServiceRecord(
        **data.model_dump(exclude={"diagnosis"}),
        diagnosis=diagnosis,
        document_number=patient.document_number,
        created_by=current_user.id,
    )
    db.add(record)
    await db.flush()
    await db.refresh(record)
    return ok(ServiceRecordResponse.model_validate(record), message="Service record created")


@router.get("/records")
async def list_service_records(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    company_id: Optional[int] = Query(None),
    contract_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "read")),
):
    # Company filter applies before any caller-supplied filter
    query = current_user.company_scope.apply(select(ServiceRecord), ServiceRecord.company_id)

    if start_date:
        query = query.where(ServiceRecord.service_date >= start_date)
    if end_date:
        query = query.where(ServiceRecord.service_date <= end_date)
    if company_id is not None:
        query = query.where(ServiceRecord.company_id == company_id)
    if contract_id is not None:
        query = query.where(ServiceRecord.contract_id == contract_id)
    if status:
        query = query.where(ServiceRecord.status == status)
    else:
        query = query.where(ServiceRecord.active.is_(True))

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    query = query.order_by(ServiceRecord.service_date.desc(), ServiceRecord.id.desc())
    records = (await db.execute(query.offset((page - 1) * limit).limit(limit))).scalars().all()
    return ok(
        [ServiceRecordResponse.model_validate(r) for r in records],
        pagination=pagination(page, limit, total),
    )


@router.get("/records/{record_id}")
async def get_service_record(
    record_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "read")),
):
    return ok(ServiceRecordResponse.model_validate(await _get_record(db, record_id, current_user)))


@router.patch("/records/{record_id}/status")
async def update_service_status(
    record_id: int,
    body: ServiceStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "update")),
):
    record = await _get_record(db, record_id, current_user)
    record.status = body.status
    record.active = body.status != "cancelled"
    record.updated_by = current_user.id
    await db.flush()
    await db.refresh(record)
    return ok(ServiceRecordResponse.model_validate(record), message="Status updated")


@router.patch("/records/{record_id}/assign-contract")
async def assign_contract(
    record_id: int,
    body: AssignContract,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "update")),
):
    record = await _get_record(db, record_id, current_user)
    require_company_access(current_user, body.company_id)
    await _check_contract(db, body.company_id, body.contract_id)
    if record.is_prebilled:
        raise HTTPException(status_code=400, detail="Service record is already in a pre-bill")

    record.company_id = body.company_id
    record.contract_id = body.contract_id
    if body.value is not None:
        record.value = body.value
    record.updated_by = current_user.id
    await db.flush()
    await db.refresh(record)
    return ok(ServiceRecordResponse.model_validate(record), message="Contract assigned")


@router.delete("/records/{record_id}")
async def cancel_service_record(
    record_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "delete")),
):
    record = await _get_record(db, record_id, current_user)
    if record.is_prebilled:
        raise HTTPException(status_code=400, detail="Service record is already in a pre-bill")
    record.status = "cancelled"
    record.active = False
    record.updated_by = current_user.id
    await db.flush()
    return ok({"id": record.id, "status": record.status}, message="Service record cancelled")


@router.get("/patients/{document_number}")
async def get_patient_services(
    document_number: str,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("services", "read")),
):
    """Patient plus their non-cancelled services, each annotated with its pre-bill."""
    patient = await db.scalar(select(Patient).where(Patient.document_number == document_number.strip()))
    if not patient:
        raise HTTPException(status_code=404, detail=f"Patient with document {document_number} not found")

    query = current_user.company_scope.apply(
        select(ServiceRecord).where(
            ServiceRecord.patient_id == patient.id,
            ServiceRecord.status != "cancelled",
        ),
        ServiceRecord.company_id,
    )
    records = (await db.execute(query.order_by(ServiceRecord.service_date.desc()))).scalars().all()

    prebill_query = current_user.company_scope.apply(
        select(PreBill).where(PreBill.patient_id == patient.id, PreBill.status != "cancelled"),
        PreBill.company_id,
    )
    prebill_by_service: dict[int, PreBill] = {}
    for prebill in (await db.execute(prebill_query)).scalars().all():
        for line in prebill.services or []:
            if line.get("service_id"):
                prebill_by_service[line["service_id"]] = prebill

    services = []
    for record in records:
        item = ServiceRecordResponse.model_validate(record).model_dump(mode="json")
        prebill = prebill_by_service.get(record.id)
        item["prebill"] = {"id": prebill.id, "status": prebill.status} if prebill else None
        services.append(item)

    return ok({
        "patient": PatientResponse.model_validate(patient),
        "services": services,
        "totals": {
            "services": len(services),
            "pending": sum(1 for r in records if r.status == "pending"),
            "prebilled": sum(1 for r in records if r.is_prebilled),
            "value": round(sum(r.value or 0 for r in records), 2),
        },
    })
