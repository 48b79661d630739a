from datetime import date

import pytest

from medbill.models import ServiceRecord


@pytest.fixture
async def records(add, companies, patient):
    c1, c2 = companies
    return await add(
        ServiceRecord(patient_id=patient.id, company_id=c1.id, document_number=patient.document_number,
                      cups_code="990101", service_date=date(2024, 3, 1), value=1000),
        ServiceRecord(patient_id=patient.id, company_id=c1.id, document_number=patient.document_number,
                      cups_code="990102", service_date=date(2024, 3, 2), value=2000),
        ServiceRecord(patient_id=patient.id, company_id=c2.id, document_number=patient.document_number,
                      cups_code="990103", service_date=date(2024, 3, 3), value=3000),
        ServiceRecord(patient_id=patient.id, company_id=None, document_number=patient.document_number,
                      cups_code="990104", service_date=date(2024, 3, 4), value=4000),
    )


@pytest.mark.asyncio
async def test_restricted_user_only_sees_assigned_company(client, make_user, headers, companies, records):
    c1, _ = companies
    user = await make_user(assigned_companies=[c1.id])
    resp = await client.get("/api/services/records", headers=headers(user))
    assert resp.status_code == 200
    body = resp.json()
    assert {r["company_id"] for r in body["data"]} == {c1.id}
    assert body["pagination"]["total"] == 2


@pytest.mark.asyncio
async def test_empty_assignment_sees_nothing(client, make_user, headers, records):
    user = await make_user(assigned_companies=[])
    resp = await client.get("/api/services/records", headers=headers(user))
    assert resp.status_code == 200
    assert resp.json()["data"] == []
    assert resp.json()["pagination"]["total"] == 0


@pytest.mark.asyncio
async def test_view_all_user_sees_everything(client, make_user, headers, records):
    user = await make_user(can_view_all_companies=True)
    resp = await client.get("/api/services/records", headers=headers(user))
    assert resp.json()["pagination"]["total"] == 4


@pytest.mark.asyncio
async def test_caller_filter_cannot_widen_scope(client, make_user, headers, companies, records):
    c1, c2 = companies
    user = await make_user(assigned_companies=[c1.id])
    resp = await client.get(f"/api/services/records?company_id={c2.id}", headers=headers(user))
    assert resp.json()["data"] == []

    other = records[2]
    resp = await client.get(f"/api/services/records/{other.id}", headers=headers(user))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_create_validates_diagnosis_and_cups_rule(client, make_user, headers, companies, patient, diagnoses):
    c1, _ = companies
    user = await make_user(assigned_companies=[c1.id])
    payload = {"patient_id": patient.id, "company_id": c1.id, "cups_code": "890201",
               "service_date": "2024-04-01", "value": 35000}

    resp = await client.post("/api/services/records", json=payload, headers=headers(user))
    assert resp.status_code == 400
    assert "Diagnosis is required" in resp.json()["message"]

    resp = await client.post("/api/services/records", json={**payload, "diagnosis": "ZZ01"}, headers=headers(user))
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_DIAGNOSIS_CODE"

    resp = await client.post("/api/services/records", json={**payload, "diagnosis": "1a00"}, headers=headers(user))
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["diagnosis"] == "1A00"
    assert data["document_number"] == patient.document_number
    assert data["status"] == "pending"

    resp = await client.post("/api/services/records", json={**payload, "diagnosis": "1A00"}, headers=headers(user))
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_create_for_foreign_company_is_403(client, make_user, headers, companies, patient):
    c1, c2 = companies
    user = await make_user(assigned_companies=[c1.id])
    resp = await client.post(
        "/api/services/records",
        json={"patient_id": patient.id, "company_id": c2.id, "cups_code": "990101", "service_date": "2024-04-01"},
        headers=headers(user),
    )
    assert resp.status_code == 403
    assert resp.json()["code"] == "COMPANY_ACCESS_DENIED"


@pytest.mark.asyncio
async def test_status_and_assign_contract(client, make_user, headers, companies, contract, records):
    c1, _ = companies
    user = await make_user(role="admin", assigned_companies=[c1.id])
    unassigned = records[3]

    # a record without a company is outside a restricted scope
    resp = await client.patch(
        f"/api/services/records/{unassigned.id}/assign-contract",
        json={"company_id": c1.id, "contract_id": contract.id},
        headers=headers(user),
    )
    assert resp.status_code == 403

    target = records[0]
    resp = await client.patch(
        f"/api/services/records/{target.id}/assign-contract",
        json={"company_id": c1.id, "contract_id": contract.id, "value": 4200},
        headers=headers(user),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["contract_id"] == contract.id
    assert resp.json()["data"]["value"] == 4200

    resp = await client.patch(
        f"/api/services/records/{target.id}/status", json={"status": "billed"}, headers=headers(user)
    )
    assert resp.json()["data"]["status"] == "billed"

    resp = await client.patch(
        f"/api/services/records/{target.id}/status", json={"status": "lost"}, headers=headers(user)
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_patient_services_by_document(client, make_user, headers, companies, records, patient):
    c1, _ = companies
    user = await make_user(assigned_companies=[c1.id])
    resp = await client.get(f"/api/services/patients/{patient.document_number}", headers=headers(user))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["patient"]["full_name"] == "LAURA MEJIA"
    assert data["totals"] == {"services": 2, "pending": 2, "prebilled": 0, "value": 3000.0}
    assert all(s["prebill"] is None for s in data["services"])
