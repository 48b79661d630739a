import pytest

from medbill.exceptions import ValidationFailed
from medbill.schemas.prebill import PreBillServiceItem
from medbill.services.diagnosis_service import (
    service_requires_diagnosis,
    validate_code,
    validate_diagnosis_field,
    validate_prebill_diagnoses,
)


@pytest.mark.asyncio
async def test_active_billable_code_is_valid(db, diagnoses):
    result = await validate_code(db, " 1a00 ")
    assert result.is_valid
    assert result.diagnosis.code == "1A00"


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["XX99", "ZZ01", "NOPE", "", None])
async def test_inactive_unbillable_or_unknown_codes_are_invalid(db, diagnoses, code):
    result = await validate_code(db, code)
    assert result.is_valid is False
    assert result.diagnosis is None


@pytest.mark.asyncio
async def test_validate_field_blank_passes_and_invalid_raises(db, diagnoses):
    assert await validate_diagnosis_field(db, "  ") is None
    assert await validate_diagnosis_field(db, "ba00") == "BA00"
    with pytest.raises(ValidationFailed) as exc:
        await validate_diagnosis_field(db, "ZZ01")
    assert exc.value.code == "INVALID_DIAGNOSIS_CODE"


def test_cups_prefixes_requiring_diagnosis():
    assert service_requires_diagnosis("890201")
    assert service_requires_diagnosis("881112")
    assert service_requires_diagnosis(" 870001")
    assert not service_requires_diagnosis("990101")
    assert not service_requires_diagnosis(None)


@pytest.mark.asyncio
async def test_prebill_diagnoses_fall_back_to_global(db, diagnoses):
    services = [
        PreBillServiceItem(cups_code="890201", value=1000, service_date="2024-01-10"),
        PreBillServiceItem(cups_code="990101", value=500, service_date="2024-01-10", diagnosis="ba00"),
    ]
    assert await validate_prebill_diagnoses(db, services, "1A00") == ["1A00", "BA00"]


@pytest.mark.asyncio
async def test_prebill_diagnoses_collect_every_failure(db, diagnoses):
    services = [
        PreBillServiceItem(cups_code="890201", value=1000, service_date="2024-01-10"),
        PreBillServiceItem(cups_code="990101", value=500, service_date="2024-01-10", diagnosis="XX99"),
        PreBillServiceItem(cups_code="990102", value=500, service_date="2024-01-10"),
    ]
    with pytest.raises(ValidationFailed) as exc:
        await validate_prebill_diagnoses(db, services)
    errors = exc.value.errors
    assert [e["service_index"] for e in errors] == [0, 1]
    assert errors[0]["diagnosis"] is None
    assert errors[1]["diagnosis"] == "XX99"
