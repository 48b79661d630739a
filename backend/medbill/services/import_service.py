"""
Bulk CSV and XLSX import for patients, service records, doctors and CIE-11 codes.

Rows are processed one at a time. A row that fails validation is recorded in
``errors`` with its spreadsheet line number and never aborts the batch.
"""

import asyncio
import csv
import io
import re
from zipfile import BadZipFile
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional

import structlog
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from pydantic import ValidationError
from sqlalchemy import select, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import UploadFile

from medbill.auth import UserPrincipal
from medbill.config import get_settings
from medbill.exceptions import ValidationFailed
from medbill.models.cie11 import Cie11Code
from medbill.models.doctor import Doctor
from medbill.models.patient import Patient
from medbill.models.service_record import ServiceRecord
from medbill.schemas.cie11 import Cie11Create
from medbill.schemas.common import blank_to_none
from medbill.schemas.doctor import DoctorCreate
from medbill.schemas.patient import PatientCreate
from medbill.services.diagnosis_service import normalize_code, service_requires_diagnosis, validate_code

logger = structlog.get_logger(__name__)

PATIENT_COLUMNS = [
    "document_type", "document_number", "first_name", "second_name", "first_last_name",
    "second_last_name", "birth_date", "gender", "municipality", "department", "regimen", "eps", "zone",
]

SERVICE_COLUMNS = [
    "document_number", "cups_code", "service_date", "value", "description", "authorization",
    "diagnosis", "company_id", "document_type", "first_name", "second_name", "first_last_name",
    "second_last_name", "birth_date", "gender", "municipality", "department", "regimen", "eps", "zone",
]

# column widths of the service_records table
SERVICE_LIMITS = {"document_number": 30, "cups_code": 20, "authorization": 100}

DOCTOR_COLUMNS = [
    "document_type", "document_number", "first_name", "second_name", "first_last_name",
    "second_last_name", "professional_card", "specialty", "specialty_code", "email", "phone", "company_id",
]

DIAGNOSIS_COLUMNS = [
    "code", "description", "description_en", "chapter", "chapter_code", "subcategory",
    "billable", "gender", "min_age", "max_age", "notes",
]

TEMPLATES: dict[str, tuple[list[str], list[str]]] = {
    "patients": (
        PATIENT_COLUMNS,
        ["CC", "1234567890", "JUAN", "CARLOS", "PEREZ", "GOMEZ", "1985-03-14", "M",
         "MEDELLIN", "ANTIOQUIA", "CONTRIBUTIVO", "EPS001", "U"],
    ),
    "services": (
        SERVICE_COLUMNS,
        ["1234567890", "890201", "2024-05-02", "35.000", "Consulta medicina general", "AUT-001",
         "1A00", "", "CC", "JUAN", "", "PEREZ", "", "1985-03-14", "M", "MEDELLIN", "ANTIOQUIA",
         "CONTRIBUTIVO", "EPS001", "U"],
    ),
    "doctors": (
        DOCTOR_COLUMNS,
        ["CC", "79876543", "ANA", "", "RUIZ", "", "RM-12345", "MEDICINA GENERAL", "MG01",
         "ana.ruiz@example.com", "3001234567", "1"],
    ),
    "diagnoses": (
        DIAGNOSIS_COLUMNS,
        ["1A00", "Cólera", "Cholera", "Ciertas enfermedades infecciosas o parasitarias", "01", "",
         "true", "U", "0", "", ""],
    ),
}

_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%Y/%m/%d")
_THOUSANDS = re.compile(r"^-?\d{1,3}(\.\d{3})+$")


@dataclass
class ImportSummary:
    created: list = field(default_factory=list)
    duplicates: list = field(default_factory=list)
    errors: list = field(default_factory=list)
    patients_created: list = field(default_factory=list)

    def add_error(self, row: int, error: str, data: dict) -> None:
        self.errors.append({"row": row, "error": error, "data": data})

    def as_dict(self) -> dict:
        return {
            "created": self.created,
            "duplicates": self.duplicates,
            "errors": self.errors,
            "patients_created": self.patients_created,
            "totals": {
                "created": len(self.created),
                "duplicates": len(self.duplicates),
                "errors": len(self.errors),
                "patients_created": len(self.patients_created),
            },
        }

    @property
    def message(self) -> str:
        return (
            f"{len(self.created)} created, {len(self.duplicates)} duplicates, "
            f"{len(self.errors)} errors"
        )


def _header_key(name: str) -> str:
    return re.sub(r"\s+", "_", (name or "").strip().lower())


def read_csv(content: bytes) -> list[tuple[int, dict]]:
    """
    Parse an uploaded CSV into ``(line_number, row)`` pairs.

    Line numbers count the header as line 1, matching what a user sees in a
    spreadsheet. Fully blank rows are skipped.
    """
    if not content or not content.strip():
        raise ValidationFailed("The uploaded file is empty", code="EMPTY_FILE")
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = content.decode("latin-1")

    sample = text[:4096]
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=",;")
        delimiter = dialect.delimiter
    except csv.Error:
        delimiter = ","

    reader = csv.DictReader(io.StringIO(text), delimiter=delimiter)
    if not reader.fieldnames:
        raise ValidationFailed("The uploaded file has no header row", code="INVALID_FILE")
    reader.fieldnames = [_header_key(name) for name in reader.fieldnames]

    rows = []
    for raw in reader:
        row = {key: (value or "").strip() for key, value in raw.items() if key}
        if any(row.values()):
            rows.append((reader.line_num, row))
    if not rows:
        raise ValidationFailed("The uploaded file has no data rows", code="EMPTY_FILE")
    return rows


def _cell_text(value: Any) -> str:
    """Render an XLSX cell the way the same value reads in a CSV export."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat() if value.time() == datetime.min.time() else value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def read_xlsx(content: bytes) -> list[tuple[int, dict]]:
    """Parse the first sheet of an XLSX workbook into ``(line_number, row)`` pairs."""
    if not content:
        raise ValidationFailed("The uploaded file is empty", code="EMPTY_FILE")
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (BadZipFile, InvalidFileException, KeyError) as e:
        raise ValidationFailed(f"The uploaded workbook could not be read: {e}", code="INVALID_FILE")
    try:
        values = workbook.worksheets[0].iter_rows(values_only=True) if workbook.worksheets else iter(())
        header = next(values, None)
        if not header or not any(cell is not None for cell in header):
            raise ValidationFailed("The uploaded file has no header row", code="INVALID_FILE")
        keys = [_header_key(_cell_text(cell)) for cell in header]

        rows = []
        for line, cells in enumerate(values, start=2):
            row = {key: _cell_text(cell) for key, cell in zip(keys, cells) if key}
            if any(row.values()):
                rows.append((line, row))
    finally:
        workbook.close()
    if not rows:
        raise ValidationFailed("The uploaded file has no data rows", code="EMPTY_FILE")
    return rows


async def read_upload(file: UploadFile) -> list[tuple[int, dict]]:
    """Read a multipart CSV or XLSX upload, enforcing the configured size limit."""
    filename = (file.filename or "").lower()
    if filename and not filename.endswith((".csv", ".txt", ".xlsx")):
        raise ValidationFailed("Only CSV or XLSX files are accepted", code="INVALID_FILE")
    limit = get_settings().max_upload_bytes
    content = await file.read(limit + 1)
    if len(content) > limit:
        raise ValidationFailed("The uploaded file is too large", code="FILE_TOO_LARGE")
    if filename.endswith(".xlsx"):
        return await asyncio.to_thread(read_xlsx, content)
    return read_csv(content)


def parse_date(raw: Any) -> date:
    if isinstance(raw, date):
        return raw
    value = (raw or "").strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date: {raw!r}")


def parse_value(raw: Any) -> float:
    """Parse money written as ``35000``, ``35.000``, ``35.000,50`` or ``35000.5``."""
    if raw is None:
        return 0.0
    if isinstance(raw, (int, float)):
        return float(raw)
    value = raw.strip().replace("$", "").replace(" ", "")
    if not value:
        return 0.0
    if "," in value:
        value = value.replace(".", "").replace(",", ".")
    elif _THOUSANDS.match(value):
        value = value.replace(".", "")
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Invalid value: {raw!r}")


def describe_error(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        return "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'row'}: {err['msg']}" for err in exc.errors()
        )
    return str(exc)


def _pick(row: dict, columns: list[str]) -> dict:
    picked = {}
    for column in columns:
        value = blank_to_none(row.get(column))
        if value is not None:
            picked[column] = value
    return picked


def _company_id(raw: Optional[str], current_user: UserPrincipal) -> Optional[int]:
    if raw is None:
        if not current_user.company_scope.unrestricted:
            raise ValueError("company_id is required")
        return None
    try:
        company_id = int(raw)
    except ValueError:
        raise ValueError(f"Invalid company_id: {raw!r}")
    if not current_user.can_access_company(company_id):
        raise ValueError(f"No access to company {company_id}")
    return company_id


async def _persist(db: AsyncSession, row) -> Optional[str]:
    """Insert one row inside a savepoint. A database error rolls back only that row."""
    try:
        async with db.begin_nested():
            db.add(row)
    except SQLAlchemyError as e:
        reason = getattr(e, "orig", None) or e
        logger.warning("import.row_failed", table=row.__tablename__, error=str(reason))
        return f"Could not save row: {reason}"
    return None


def _patient_payload(row: dict) -> PatientCreate:
    data = _pick(row, PATIENT_COLUMNS)
    if "birth_date" in data:
        data["birth_date"] = parse_date(data["birth_date"])
    if "document_type" in data:
        data["document_type"] = data["document_type"].upper()
    return PatientCreate(**data)


class ImportService:
    async def import_patients(self, db: AsyncSession, rows: list[tuple[int, dict]], user_id: int) -> ImportSummary:
        summary = ImportSummary()
        seen: set[str] = set()
        for line, row in rows:
            document_number = blank_to_none(row.get("document_number"))
            if not document_number:
                summary.add_error(line, "document_number is required", row)
                continue
            if document_number in seen or await db.scalar(
                select(Patient.id).where(Patient.document_number == document_number)
            ):
                summary.duplicates.append({"row": line, "document_number": document_number})
                continue
            try:
                payload = _patient_payload(row)
            except ValueError as e:
                summary.add_error(line, describe_error(e), row)
                continue

            patient = Patient(**payload.model_dump(exclude_unset=True), created_by=user_id)
            error = await _persist(db, patient)
            if error:
                summary.add_error(line, error, row)
                continue
            seen.add(document_number)
            summary.created.append({"row": line, "id": patient.id, "document_number": document_number})

        logger.info("import.completed", kind="patients", **summary.as_dict()["totals"])
        return summary

    async def import_services(
        self,
        db: AsyncSession,
        rows: list[tuple[int, dict]],
        current_user: UserPrincipal,
    ) -> ImportSummary:
        summary = ImportSummary()
        diagnosis_cache: dict[str, bool] = {}
        for line, row in rows:
            document_number = blank_to_none(row.get("document_number"))
            cups_code = blank_to_none(row.get("cups_code"))
            if not document_number:
                summary.add_error(line, "document_number is required", row)
                continue
            if not cups_code:
                summary.add_error(line, "cups_code is required", row)
                continue
            too_long = [
                f"{column} must be at most {limit} characters"
                for column, limit in SERVICE_LIMITS.items()
                if len(row.get(column) or "") > limit
            ]
            if too_long:
                summary.add_error(line, "; ".join(too_long), row)
                continue

            try:
                service_date = parse_date(row.get("service_date"))
                value = parse_value(row.get("value"))
                company_id = _company_id(blank_to_none(row.get("company_id")), current_user)
            except ValueError as e:
                summary.add_error(line, str(e), row)
                continue

            diagnosis = normalize_code(row.get("diagnosis"))
            if diagnosis:
                if diagnosis not in diagnosis_cache:
                    diagnosis_cache[diagnosis] = (await validate_code(db, diagnosis)).is_valid
                if not diagnosis_cache[diagnosis]:
                    summary.add_error(line, f"Diagnosis code {diagnosis} is not valid", row)
                    continue
            elif service_requires_diagnosis(cups_code):
                summary.add_error(line, f"Diagnosis is required for procedure {cups_code}", row)
                continue

            patient = await db.scalar(select(Patient).where(Patient.document_number == document_number))
            if not patient:
                if not blank_to_none(row.get("document_type")):
                    summary.add_error(line, f"Patient {document_number} not found and no document_type given", row)
                    continue
                try:
                    payload = _patient_payload(row)
                except ValueError as e:
                    summary.add_error(line, describe_error(e), row)
                    continue
                patient = Patient(**payload.model_dump(exclude_unset=True), created_by=current_user.id)
                error = await _persist(db, patient)
                if error:
                    summary.add_error(line, error, row)
                    continue
                summary.patients_created.append({"row": line, "id": patient.id, "document_number": document_number})

            duplicate = await db.scalar(
                select(ServiceRecord.id).where(
                    ServiceRecord.patient_id == patient.id,
                    ServiceRecord.cups_code == cups_code,
                    ServiceRecord.service_date == service_date,
                    ServiceRecord.contract_id.is_(None),
                )
            )
            if duplicate:
                summary.duplicates.append({
                    "row": line,
                    "document_number": document_number,
                    "cups_code": cups_code,
                    "service_date": service_date.isoformat(),
                })
                continue

            record = ServiceRecord(
                patient_id=patient.id,
                company_id=company_id,
                document_number=document_number,
                cups_code=cups_code,
                service_date=service_date,
                value=value,
                description=blank_to_none(row.get("description")),
                authorization=blank_to_none(row.get("authorization")),
                diagnosis=diagnosis or None,
                created_by=current_user.id,
            )
            error = await _persist(db, record)
            if error:
                summary.add_error(line, error, row)
                continue
            summary.created.append({"row": line, "id": record.id, "cups_code": cups_code})

        logger.info("import.completed", kind="services", **summary.as_dict()["totals"])
        return summary

    async def import_doctors(
        self,
        db: AsyncSession,
        rows: list[tuple[int, dict]],
        current_user: UserPrincipal,
    ) -> ImportSummary:
        summary = ImportSummary()
        for line, row in rows:
            data = _pick(row, DOCTOR_COLUMNS)
            missing = [c for c in ("document_type", "document_number", "first_name", "first_last_name",
                                   "professional_card", "specialty") if c not in data]
            if missing:
                summary.add_error(line, f"Missing required fields: {', '.join(missing)}", row)
                continue
            data["document_type"] = data["document_type"].upper()
            try:
                data["company_id"] = _company_id(data.get("company_id"), current_user)
                payload = DoctorCreate(**data)
            except ValueError as e:
                summary.add_error(line, describe_error(e), row)
                continue

            existing = await db.scalar(
                select(Doctor.id).where(
                    or_(
                        Doctor.document_number == payload.document_number,
                        Doctor.professional_card == payload.professional_card,
                    )
                )
            )
            if existing:
                summary.duplicates.append({
                    "row": line,
                    "document_number": payload.document_number,
                    "professional_card": payload.professional_card,
                })
                continue

            doctor = Doctor(**payload.model_dump(), created_by=current_user.id)
            error = await _persist(db, doctor)
            if error:
                summary.add_error(line, error, row)
                continue
            summary.created.append({"row": line, "id": doctor.id, "document_number": doctor.document_number})

        logger.info("import.completed", kind="doctors", **summary.as_dict()["totals"])
        return summary

    async def import_diagnoses(self, db: AsyncSession, rows: list[tuple[int, dict]], user_id: int) -> ImportSummary:
        summary = ImportSummary()
        for line, row in rows:
            data = _pick(row, DIAGNOSIS_COLUMNS)
            missing = [c for c in ("code", "description", "chapter") if c not in data]
            if missing:
                summary.add_error(line, f"Missing required fields: {', '.join(missing)}", row)
                continue
            if "billable" in data:
                data["billable"] = data["billable"].lower() in ("true", "1", "yes", "si", "sí")
            try:
                payload = Cie11Create(**data)
            except ValueError as e:
                summary.add_error(line, describe_error(e), row)
                continue

            if await db.scalar(select(Cie11Code.id).where(Cie11Code.code == payload.code)):
                summary.duplicates.append({"row": line, "code": payload.code})
                continue

            code = Cie11Code(**payload.model_dump(), created_by=user_id)
            error = await _persist(db, code)
            if error:
                summary.add_error(line, error, row)
                continue
            summary.created.append({"row": line, "id": code.id, "code": code.code})

        logger.info("import.completed", kind="diagnoses", **summary.as_dict()["totals"])
        return summary


def render_template(kind: str) -> str:
    columns, example = TEMPLATES[kind]
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(columns)
    writer.writerow(example)
    return output.getvalue()


import_service = ImportService()
