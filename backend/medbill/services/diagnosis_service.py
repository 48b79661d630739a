"""CIE-11 diagnosis lookups used by service records and pre-bills."""

from dataclasses import dataclass
from typing import Iterable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medbill.exceptions import ValidationFailed
from medbill.models.cie11 import Cie11Code

logger = structlog.get_logger(__name__)

# CUPS families (laboratory, imaging, diagnostic procedures) billed only with a diagnosis
DIAGNOSIS_REQUIRED_PREFIXES = ("87", "88", "89")


@dataclass
class DiagnosisValidation:
    is_valid: bool
    diagnosis: Optional[Cie11Code] = None


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


async def validate_code(db: AsyncSession, code: Optional[str]) -> DiagnosisValidation:
    """A code is valid only when it exists, is active and is billable."""
    normalized = normalize_code(code)
    if not normalized:
        return DiagnosisValidation(is_valid=False)
    row = await db.scalar(
        select(Cie11Code).where(
            Cie11Code.code == normalized,
            Cie11Code.active.is_(True),
            Cie11Code.billable.is_(True),
        )
    )
    return DiagnosisValidation(is_valid=row is not None, diagnosis=row)


async def validate_diagnosis_field(db: AsyncSession, value: Optional[str]) -> Optional[str]:
    """Normalize an optional diagnosis. Blank passes through as None; unknown codes raise."""
    normalized = normalize_code(value)
    if not normalized:
        return None
    result = await validate_code(db, normalized)
    if not result.is_valid:
        logger.info("diagnosis.invalid", code=normalized)
        raise ValidationFailed(
            f"Diagnosis code {normalized} is not a valid billable CIE-11 code",
            code="INVALID_DIAGNOSIS_CODE",
        )
    return normalized


def service_requires_diagnosis(cups_code: Optional[str]) -> bool:
    return (cups_code or "").strip().startswith(DIAGNOSIS_REQUIRED_PREFIXES)


async def validate_prebill_diagnoses(
    db: AsyncSession,
    services: Iterable,
    global_diagnosis: Optional[str] = None,
) -> list[str]:
    """
    Check every pre-bill line. Each line uses its own diagnosis or falls back
    to ``global_diagnosis``. Returns the normalized diagnosis per line, or
    raises ValidationFailed carrying all failing lines at once.
    """
    fallback = normalize_code(global_diagnosis)
    resolved: list[str] = []
    errors: list[dict] = []
    cache: dict[str, bool] = {}

    for index, service in enumerate(services):
        code = normalize_code(service.diagnosis) or fallback
        if not code:
            if service_requires_diagnosis(service.cups_code):
                errors.append({
                    "service_index": index,
                    "cups_code": service.cups_code,
                    "diagnosis": None,
                    "error": "Diagnosis is required for this procedure",
                })
            resolved.append("")
            continue
        if code not in cache:
            cache[code] = (await validate_code(db, code)).is_valid
        if not cache[code]:
            errors.append({
                "service_index": index,
                "cups_code": service.cups_code,
                "diagnosis": code,
                "error": f"Diagnosis code {code} is not valid",
            })
        resolved.append(code)

    if errors:
        raise ValidationFailed(
            "Some services have invalid diagnoses",
            code="INVALID_DIAGNOSIS_CODES",
            errors=errors,
        )
    return resolved
