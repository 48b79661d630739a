import csv
import io

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medbill.auth import UserPrincipal
from medbill.exceptions import PermissionDenied
from medbill.models.company import Company, Contract
from medbill.models.patient import Patient
from medbill.models.service_record import ServiceRecord
from medbill.schemas.report import ReportRequest

logger = structlog.get_logger(__name__)

COLUMN_LABELS = {
    "document_number": "Documento",
    "full_name": "Nombre",
    "service_date": "Fecha Servicio",
    "cups_code": "CUPS",
    "value": "Valor",
    "authorization": "Autorizacion",
    "diagnosis": "Diagnostico",
    "regimen": "Regimen",
    "municipality": "Municipio",
    "department": "Departamento",
    "company_name": "Empresa",
    "contract_name": "Contrato",
}

UNSPECIFIED_REGIMEN = "UNSPECIFIED"

# Patient columns served by the lookup endpoints
LOOKUP_FIELDS = {
    "municipalities": Patient.municipality,
    "departments": Patient.department,
    "regimens": Patient.regimen,
}


class ReportService:
    async def generate(self, db: AsyncSession, request: ReportRequest, current_user: UserPrincipal) -> dict:
        """Filtered service report with totals, limited to the caller's companies."""
        filters = request.filters
        scope = current_user.company_scope
        denied = [c for c in filters.companies if not scope.allows(c)]
        if denied:
            logger.warning("company_access.denied", username=current_user.username, company_ids=denied)
            raise PermissionDenied("You do not have access to this company", code="COMPANY_ACCESS_DENIED")

        query = (
            select(ServiceRecord, Patient, Company.name, Contract.name)
            .join(Patient, Patient.id == ServiceRecord.patient_id)
            .outerjoin(Company, Company.id == ServiceRecord.company_id)
            .outerjoin(Contract, Contract.id == ServiceRecord.contract_id)
            .where(ServiceRecord.active.is_(True))
        )
        query = scope.apply(query, ServiceRecord.company_id)
        if filters.start_date:
            query = query.where(ServiceRecord.service_date >= filters.start_date)
        if filters.end_date:
            query = query.where(ServiceRecord.service_date <= filters.end_date)
        if filters.companies:
            query = query.where(ServiceRecord.company_id.in_(filters.companies))
        if filters.contracts:
            query = query.where(ServiceRecord.contract_id.in_(filters.contracts))
        if filters.municipalities:
            query = query.where(Patient.municipality.in_(filters.municipalities))
        if filters.regimens:
            query = query.where(Patient.regimen.in_(filters.regimens))
        query = query.order_by(ServiceRecord.service_date, ServiceRecord.id)

        rows = []
        by_regimen: dict[str, int] = {}
        by_company: dict[str, float] = {}
        total_value = 0.0
        for record, patient, company_name, contract_name in (await db.execute(query)).all():
            full = {
                "document_number": record.document_number,
                "full_name": patient.full_name,
                "service_date": record.service_date.isoformat(),
                "cups_code": record.cups_code,
                "value": record.value or 0,
                "authorization": record.authorization or "",
                "diagnosis": record.diagnosis or "",
                "regimen": patient.regimen or "",
                "municipality": patient.municipality or "",
                "department": patient.department or "",
                "company_name": company_name or "",
                "contract_name": contract_name or "",
            }
            rows.append({column: full[column] for column in request.columns})
            total_value += full["value"]
            regimen = patient.regimen or UNSPECIFIED_REGIMEN
            by_regimen[regimen] = by_regimen.get(regimen, 0) + 1
            if company_name:
                by_company[company_name] = by_company.get(company_name, 0) + full["value"]

        logger.info("report.generated", username=current_user.username, records=len(rows))
        return {
            "rows": rows,
            "totals": {
                "total_services": len(rows),
                "total_value": round(total_value, 2),
                "services_by_regimen": by_regimen,
                "value_by_company": {name: round(v, 2) for name, v in by_company.items()},
            },
            "metadata": {
                "records_found": len(rows),
                "columns": list(request.columns),
                "applied_filters": request.filters.model_dump(mode="json"),
            },
        }

    def render_csv(self, report: dict) -> str:
        columns = report["metadata"]["columns"]
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow([COLUMN_LABELS[c] for c in columns])
        for row in report["rows"]:
            writer.writerow([row[c] for c in columns])
        return output.getvalue()

    async def distinct_values(self, db: AsyncSession, name: str) -> list[str]:
        column = LOOKUP_FIELDS[name]
        result = await db.execute(
            select(column).where(column.isnot(None), column != "").distinct().order_by(column)
        )
        return list(result.scalars().all())


report_service = ReportService()
