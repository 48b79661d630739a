import pytest


@pytest.mark.asyncio
async def test_search_needs_two_chars_and_hides_unbillable(client, make_user, headers, diagnoses):
    user = await make_user()
    resp = await client.get("/api/cie11/search?q=c", headers=headers(user))
    assert resp.json()["data"] == []

    resp = await client.get("/api/cie11/search?q=codigo", headers=headers(user))
    assert resp.json()["data"] == []

    resp = await client.get("/api/cie11/search?q=1a", headers=headers(user))
    assert [d["code"] for d in resp.json()["data"]] == ["1A00"]


@pytest.mark.asyncio
async def test_validate_endpoint(client, make_user, headers, diagnoses):
    user = await make_user()
    resp = await client.get("/api/cie11/validate/ba00", headers=headers(user))
    data = resp.json()["data"]
    assert data["is_valid"] is True
    assert data["diagnosis"]["chapter"] == "Circulatorio"

    resp = await client.get("/api/cie11/validate/ZZ01", headers=headers(user))
    assert resp.json()["data"] == {"code": "ZZ01", "is_valid": False, "diagnosis": None}


@pytest.mark.asyncio
async def test_chapters(client, make_user, headers, diagnoses):
    user = await make_user()
    resp = await client.get("/api/cie11/chapters", headers=headers(user))
    assert resp.json()["data"] == ["Circulatorio", "Infecciosas", "Otros"]

    resp = await client.get("/api/cie11/chapter/Otros", headers=headers(user))
    assert [d["code"] for d in resp.json()["data"]] == ["ZZ01"]


@pytest.mark.asyncio
async def test_create_update_delete_with_age_rule(client, make_user, headers, diagnoses):
    user = await make_user(role="admin")
    base = {"code": "ca40", "description": "Neumonia", "chapter": "Respiratorio"}

    resp = await client.post("/api/cie11", json={**base, "min_age": 10, "max_age": 5}, headers=headers(user))
    assert resp.status_code == 400

    resp = await client.post("/api/cie11", json={**base, "min_age": 1, "max_age": 90}, headers=headers(user))
    assert resp.status_code == 201
    created = resp.json()["data"]
    assert created["code"] == "CA40"

    resp = await client.post("/api/cie11", json=base, headers=headers(user))
    assert resp.status_code == 400

    resp = await client.put(f"/api/cie11/{created['id']}", json={"min_age": 95}, headers=headers(user))
    assert resp.status_code == 400

    resp = await client.put(f"/api/cie11/{created['id']}", json={"max_age": None, "min_age": 95}, headers=headers(user))
    assert resp.status_code == 200
    assert resp.json()["data"]["max_age"] is None

    # admins have no delete on services
    resp = await client.delete(f"/api/cie11/{created['id']}", headers=headers(user))
    assert resp.status_code == 403

    superadmin = await make_user(role="superadmin")
    resp = await client.delete(f"/api/cie11/{created['id']}", headers=headers(superadmin))
    assert resp.status_code == 200
    resp = await client.get("/api/cie11/validate/CA40", headers=headers(user))
    assert resp.json()["data"]["is_valid"] is False


@pytest.mark.asyncio
async def test_import_codes(client, make_user, headers, diagnoses):
    user = await make_user(role="admin")
    content = (
        "code,description,chapter,billable,min_age,max_age\n"
        "CB00,Asma,Respiratorio,true,0,\n"
        "1A00,Colera,Infecciosas,true,0,\n"
        "CB01,,Respiratorio,true,0,\n"
        "CB02,Bronquitis,Respiratorio,no,10,2\n"
    )
    resp = await client.post(
        "/api/cie11/import",
        files={"file": ("codes.csv", content.encode(), "text/csv")},
        headers=headers(user),
    )
    data = resp.json()["data"]
    assert [c["code"] for c in data["created"]] == ["CB00"]
    assert data["duplicates"] == [{"row": 3, "code": "1A00"}]
    assert [e["row"] for e in data["errors"]] == [4, 5]
