import csv
import io
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medbill.auth import UserPrincipal, require_company_access
from medbill.exceptions import NotFound, PermissionDenied, ValidationFailed
from medbill.models.company import Company, Contract
from medbill.models.patient import Patient
from medbill.models.prebill import PreBill
from medbill.models.service_record import ServiceRecord
from medbill.schemas.prebill import PreBillCreate
from medbill.services.diagnosis_service import validate_prebill_diagnoses

logger = structlog.get_logger(__name__)

EXPORT_HEADERS = [
    "N DOCUMENTO", "TIPDOC", "PRINOM", "SEGNOM", "PRIAPE", "SEGAPE", "FECNAC", "SEXO",
    "EPS", "DPTO", "MIPIO", "ZONA", "TOTAL", "FECHA_SERV", "AUTORIZACION", "DX", "CUPS",
    "EMPRESA", "CONTRATO",
]


def patient_snapshot(patient: Patient) -> dict:
    return {
        "document_type": patient.document_type,
        "document_number": patient.document_number,
        "first_name": patient.first_name,
        "second_name": patient.second_name,
        "first_last_name": patient.first_last_name,
        "second_last_name": patient.second_last_name,
        "full_name": patient.full_name,
        "birth_date": patient.birth_date.isoformat() if patient.birth_date else None,
        "gender": patient.gender,
        "municipality": patient.municipality,
        "department": patient.department,
        "regimen": patient.regimen,
        "eps": patient.eps,
        "zone": patient.zone,
    }


class PreBillService:
    async def create(self, db: AsyncSession, data: PreBillCreate, current_user: UserPrincipal) -> PreBill:
        require_company_access(current_user, data.company_id)

        company = await db.scalar(select(Company).where(Company.id == data.company_id))
        if not company:
            raise NotFound(f"Company {data.company_id} not found")
        if data.contract_id is not None:
            contract = await db.scalar(select(Contract).where(Contract.id == data.contract_id))
            if not contract or contract.company_id != data.company_id:
                raise ValidationFailed("Contract does not belong to the company", code="INVALID_CONTRACT")

        patient = await db.scalar(select(Patient).where(Patient.id == data.patient_id))
        if not patient:
            raise NotFound(f"Patient {data.patient_id} not found")

        diagnoses = await validate_prebill_diagnoses(db, data.services, data.diagnosis)

        records: dict[int, ServiceRecord] = {}
        service_ids = [s.service_id for s in data.services if s.service_id is not None]
        if len(set(service_ids)) != len(service_ids):
            raise ValidationFailed("A service record can only appear once in a pre-bill", code="DUPLICATE_SERVICE")
        if service_ids:
            result = await db.execute(select(ServiceRecord).where(ServiceRecord.id.in_(service_ids)))
            records = {r.id: r for r in result.scalars().all()}
            for service_id in service_ids:
                record = records.get(service_id)
                if not record or record.patient_id != patient.id:
                    raise ValidationFailed(
                        f"Service record {service_id} does not belong to this patient",
                        code="INVALID_SERVICE",
                    )
                if record.is_prebilled:
                    raise ValidationFailed(
                        f"Service record {service_id} is already in a pre-bill",
                        code="SERVICE_ALREADY_PREBILLED",
                    )
                if not record.active or record.status == "cancelled":
                    raise ValidationFailed(
                        f"Service record {service_id} is cancelled",
                        code="SERVICE_CANCELLED",
                    )
                if record.company_id is not None and (
                    record.company_id != data.company_id
                    or not current_user.company_scope.allows(record.company_id)
                ):
                    logger.warning(
                        "company_access.denied",
                        username=current_user.username,
                        company_id=record.company_id,
                        service_id=service_id,
                    )
                    raise PermissionDenied(
                        f"Service record {service_id} belongs to another company",
                        code="COMPANY_ACCESS_DENIED",
                    )

        now = datetime.now(timezone.utc)
        lines = []
        for item, diagnosis in zip(data.services, diagnoses):
            lines.append({
                "service_id": item.service_id,
                "cups_code": item.cups_code,
                "value": item.value,
                "service_date": item.service_date.isoformat(),
                "authorization": item.authorization or data.authorization,
                "diagnosis": diagnosis or None,
                "description": item.description,
            })
            record = records.get(item.service_id) if item.service_id is not None else None
            if record:
                record.is_prebilled = True
                record.prebilled_at = now
                record.status = "prebilled"
                record.company_id = data.company_id
                record.contract_id = data.contract_id or record.contract_id
                record.updated_by = current_user.id

        prebill = PreBill(
            company_id=data.company_id,
            contract_id=data.contract_id,
            patient_id=patient.id,
            patient_data=patient_snapshot(patient),
            services=lines,
            total_value=round(sum(line["value"] for line in lines), 2),
            authorization=data.authorization,
            diagnosis=(data.diagnosis or "").strip().upper() or None,
            status="partial",
            created_by=current_user.id,
        )
        db.add(prebill)
        await db.flush()
        await db.refresh(prebill)
        logger.info(
            "prebill.created",
            prebill_id=prebill.id,
            company_id=prebill.company_id,
            services=len(lines),
            total_value=prebill.total_value,
        )
        return prebill

    async def get_for_user(self, db: AsyncSession, prebill_id: int, current_user: UserPrincipal) -> PreBill:
        prebill = await db.scalar(select(PreBill).where(PreBill.id == prebill_id))
        if not prebill:
            raise NotFound(f"Pre-bill {prebill_id} not found")
        require_company_access(current_user, prebill.company_id)
        return prebill

    async def cancel(self, db: AsyncSession, prebill_id: int, current_user: UserPrincipal) -> PreBill:
        prebill = await self.get_for_user(db, prebill_id, current_user)
        if prebill.status != "partial":
            raise ValidationFailed(f"Only partial pre-bills can be cancelled (status: {prebill.status})")

        service_ids = [s.get("service_id") for s in prebill.services or [] if s.get("service_id")]
        if service_ids:
            result = await db.execute(select(ServiceRecord).where(ServiceRecord.id.in_(service_ids)))
            for record in result.scalars().all():
                record.is_prebilled = False
                record.prebilled_at = None
                record.status = "pending"
                record.updated_by = current_user.id

        prebill.status = "cancelled"
        prebill.active = False
        prebill.updated_by = current_user.id
        await db.flush()
        logger.info("prebill.cancelled", prebill_id=prebill.id)
        return prebill

    async def _names(self, db: AsyncSession, prebills: list[PreBill]) -> tuple[dict, dict]:
        company_ids = {p.company_id for p in prebills}
        contract_ids = {p.contract_id for p in prebills if p.contract_id}
        companies, contracts = {}, {}
        if company_ids:
            result = await db.execute(select(Company.id, Company.name).where(Company.id.in_(company_ids)))
            companies = dict(result.all())
        if contract_ids:
            result = await db.execute(select(Contract.id, Contract.name).where(Contract.id.in_(contract_ids)))
            contracts = dict(result.all())
        return companies, contracts

    def render_csv(self, prebills: list[PreBill], companies: dict, contracts: dict) -> str:
        """One CSV line per pre-bill service line, patient columns from the snapshot."""
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(EXPORT_HEADERS)
        for prebill in prebills:
            patient = prebill.patient_data or {}
            for line in prebill.services or []:
                writer.writerow([
                    patient.get("document_number", ""),
                    patient.get("document_type", ""),
                    patient.get("first_name", ""),
                    patient.get("second_name") or "",
                    patient.get("first_last_name", ""),
                    patient.get("second_last_name") or "",
                    patient.get("birth_date") or "",
                    patient.get("gender") or "",
                    patient.get("eps") or "",
                    patient.get("department") or "",
                    patient.get("municipality") or "",
                    patient.get("zone") or "",
                    line.get("value", 0),
                    line.get("service_date", ""),
                    line.get("authorization") or prebill.authorization or "",
                    line.get("diagnosis") or prebill.diagnosis or "",
                    line.get("cups_code", ""),
                    companies.get(prebill.company_id, ""),
                    contracts.get(prebill.contract_id, "") if prebill.contract_id else "",
                ])
        return output.getvalue()

    async def export_partial(
        self,
        db: AsyncSession,
        current_user: UserPrincipal,
        company_id: Optional[int] = None,
    ) -> str:
        """Export every in-scope partial pre-bill, then mark them finalized."""
        query = select(PreBill).where(PreBill.status == "partial")
        query = current_user.company_scope.apply(query, PreBill.company_id)
        if company_id is not None:
            query = query.where(PreBill.company_id == company_id)
        result = await db.execute(query.order_by(PreBill.created_at, PreBill.id))
        prebills = list(result.scalars().all())

        companies, contracts = await self._names(db, prebills)
        content = self.render_csv(prebills, companies, contracts)

        now = datetime.now(timezone.utc)
        for prebill in prebills:
            prebill.status = "finalized"
            prebill.finalized_at = now
            prebill.updated_by = current_user.id
        await db.flush()
        logger.info("prebill.exported", count=len(prebills), username=current_user.username)
        return content

    async def reprint(self, db: AsyncSession, prebill_id: int, current_user: UserPrincipal) -> str:
        prebill = await self.get_for_user(db, prebill_id, current_user)
        companies, contracts = await self._names(db, [prebill])
        return self.render_csv([prebill], companies, contracts)


prebill_service = PreBillService()
