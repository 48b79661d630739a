import csv
import io
from datetime import date

import pytest

from medbill.models import PreBill, ServiceRecord


@pytest.fixture
async def pending(add, companies, patient):
    c1, _ = companies
    return await add(
        ServiceRecord(patient_id=patient.id, company_id=c1.id, document_number=patient.document_number,
                      cups_code="890201", service_date=date(2024, 5, 2), value=35000),
        ServiceRecord(patient_id=patient.id, company_id=c1.id, document_number=patient.document_number,
                      cups_code="990101", service_date=date(2024, 5, 2), value=15000.5),
    )


def _payload(patient, company, services, **extra):
    return {
        "patient_id": patient.id,
        "company_id": company.id,
        "services": [
            {"service_id": s.id, "cups_code": s.cups_code, "value": s.value,
             "service_date": s.service_date.isoformat()}
            for s in services
        ],
        **extra,
    }


@pytest.mark.asyncio
async def test_create_prebill_snapshots_patient_and_marks_services(
    client, make_user, headers, companies, patient, pending, diagnoses, session_factory
):
    c1, _ = companies
    user = await make_user(assigned_companies=[c1.id])
    resp = await client.post(
        "/api/prebills",
        json=_payload(patient, c1, pending, diagnosis="1a00", authorization="AUT-9"),
        headers=headers(user),
    )
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["status"] == "partial"
    assert data["total_value"] == 50000.5
    assert data["patient_data"]["document_number"] == patient.document_number
    assert [s["diagnosis"] for s in data["services"]] == ["1A00", "1A00"]
    assert all(s["authorization"] == "AUT-9" for s in data["services"])

    async with session_factory() as session:
        for record in pending:
            refreshed = await session.get(ServiceRecord, record.id)
            assert refreshed.is_prebilled
            assert refreshed.status == "prebilled"

    resp = await client.post("/api/prebills", json=_payload(patient, c1, pending[:1], diagnosis="1A00"),
                             headers=headers(user))
    assert resp.status_code == 400
    assert resp.json()["code"] == "SERVICE_ALREADY_PREBILLED"


@pytest.mark.asyncio
async def test_invalid_diagnoses_are_reported_per_service(client, make_user, headers, companies, patient, pending, diagnoses):
    c1, _ = companies
    user = await make_user(assigned_companies=[c1.id])
    body = _payload(patient, c1, pending)
    body["services"][1]["diagnosis"] = "XX99"
    resp = await client.post("/api/prebills", json=body, headers=headers(user))
    assert resp.status_code == 400
    errors = resp.json()["errors"]
    assert [e["service_index"] for e in errors] == [0, 1]
    assert errors[0]["cups_code"] == "890201"


@pytest.mark.asyncio
async def test_prebill_for_foreign_company_is_403(client, make_user, headers, companies, patient, pending, diagnoses):
    c1, c2 = companies
    user = await make_user(assigned_companies=[c2.id])
    resp = await client.post("/api/prebills", json=_payload(patient, c1, pending, diagnosis="1A00"),
                             headers=headers(user))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_export_finalizes_partial_prebills_in_scope(client, make_user, headers, add, companies, patient):
    c1, c2 = companies
    snapshot = {"document_number": patient.document_number, "document_type": "CC", "first_name": "LAURA",
                "first_last_name": "MEJIA", "gender": "F"}
    line = {"cups_code": "990101", "value": 1000, "service_date": "2024-05-02", "diagnosis": "1A00"}
    mine, theirs = await add(
        PreBill(company_id=c1.id, patient_id=patient.id, patient_data=snapshot, services=[line], total_value=1000),
        PreBill(company_id=c2.id, patient_id=patient.id, patient_data=snapshot, services=[line], total_value=1000),
    )
    user = await make_user(role="admin", assigned_companies=[c1.id])

    resp = await client.get("/api/prebills/export", headers=headers(user))
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    rows = list(csv.reader(io.StringIO(resp.text)))
    assert rows[0][:3] == ["N DOCUMENTO", "TIPDOC", "PRINOM"]
    assert len(rows) == 2
    assert rows[1][0] == patient.document_number
    assert rows[1][17] == "Clinica Uno"

    resp = await client.get(f"/api/prebills/{mine.id}", headers=headers(user))
    assert resp.json()["data"]["status"] == "finalized"

    resp = await client.get(f"/api/prebills/{theirs.id}", headers=headers(user))
    assert resp.status_code == 403

    # second export has nothing left
    resp = await client.get("/api/prebills/export", headers=headers(user))
    assert len(list(csv.reader(io.StringIO(resp.text)))) == 1


@pytest.mark.asyncio
async def test_cancel_releases_services(client, make_user, headers, companies, patient, pending, diagnoses, session_factory):
    c1, _ = companies
    user = await make_user(assigned_companies=[c1.id])
    created = await client.post("/api/prebills", json=_payload(patient, c1, pending, diagnosis="1A00"),
                                headers=headers(user))
    prebill_id = created.json()["data"]["id"]

    resp = await client.patch(f"/api/prebills/{prebill_id}/cancel", headers=headers(user))
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "cancelled"

    async with session_factory() as session:
        record = await session.get(ServiceRecord, pending[0].id)
        assert not record.is_prebilled
        assert record.status == "pending"

    resp = await client.get("/api/prebills?status=cancelled", headers=headers(user))
    assert resp.json()["pagination"]["total"] == 1


@pytest.mark.asyncio
async def test_reprint_keeps_status(client, make_user, headers, add, companies, patient):
    c1, _ = companies
    snapshot = {"document_number": patient.document_number, "document_type": "CC", "first_name": "LAURA",
                "first_last_name": "MEJIA", "gender": "F"}
    prebill = await add(PreBill(company_id=c1.id, patient_id=patient.id, patient_data=snapshot,
                                services=[{"cups_code": "990101", "value": 1000, "service_date": "2024-05-02"}],
                                total_value=1000))
    user = await make_user(role="auditor", assigned_companies=[c1.id])

    resp = await client.get(f"/api/prebills/{prebill.id}/reprint", headers=headers(user))
    assert resp.status_code == 200
    rows = list(csv.reader(io.StringIO(resp.text)))
    assert len(rows) == 2
    assert rows[1][0] == patient.document_number

    resp = await client.get(f"/api/prebills/{prebill.id}", headers=headers(user))
    assert resp.json()["data"]["status"] == "partial"


@pytest.mark.asyncio
async def test_prebill_cannot_take_another_company_record(
    client, make_user, headers, add, companies, patient, diagnoses, session_factory
):
    c1, c2 = companies
    foreign = await add(
        ServiceRecord(patient_id=patient.id, company_id=c2.id, document_number=patient.document_number,
                      cups_code="990101", service_date=date(2024, 5, 2), value=1000),
    )
    user = await make_user(assigned_companies=[c1.id])
    resp = await client.post("/api/prebills", json=_payload(patient, c1, [foreign], diagnosis="1A00"),
                             headers=headers(user))
    assert resp.status_code == 403
    assert resp.json()["code"] == "COMPANY_ACCESS_DENIED"

    async with session_factory() as session:
        record = await session.get(ServiceRecord, foreign.id)
        assert record.company_id == c2.id
        assert not record.is_prebilled


@pytest.mark.asyncio
async def test_prebill_rejects_cancelled_and_repeated_records(
    client, make_user, headers, add, companies, patient, pending, diagnoses
):
    c1, _ = companies
    cancelled = await add(
        ServiceRecord(patient_id=patient.id, company_id=c1.id, document_number=patient.document_number,
                      cups_code="990303", service_date=date(2024, 5, 3), value=500,
                      status="cancelled", active=False),
    )
    user = await make_user(assigned_companies=[c1.id])

    resp = await client.post("/api/prebills", json=_payload(patient, c1, [cancelled], diagnosis="1A00"),
                             headers=headers(user))
    assert resp.status_code == 400
    assert resp.json()["code"] == "SERVICE_CANCELLED"

    resp = await client.post("/api/prebills", json=_payload(patient, c1, [pending[0], pending[0]], diagnosis="1A00"),
                             headers=headers(user))
    assert resp.status_code == 400
    assert resp.json()["code"] == "DUPLICATE_SERVICE"
