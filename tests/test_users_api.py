import pytest

from tests.conftest import STRONG_PASSWORD


@pytest.fixture
async def superadmin(make_user):
    return await make_user(role="superadmin", username="root")


@pytest.mark.asyncio
async def test_only_user_module_holders_manage_users(client, make_user, headers):
    admin = await make_user(role="admin")
    resp = await client.get("/api/users", headers=headers(admin))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_create_user_rules(client, superadmin, headers, companies):
    c1, _ = companies
    body = {
        "username": "NewBiller",
        "email": "Biller@Example.com",
        "password": "weak",
        "full_name": "New Biller",
        "role": "biller",
        "assigned_companies": [c1.id],
    }
    resp = await client.post("/api/users", json=body, headers=headers(superadmin))
    assert resp.status_code == 400
    assert resp.json()["code"] == "WEAK_PASSWORD"

    resp = await client.post("/api/users", json={**body, "password": STRONG_PASSWORD}, headers=headers(superadmin))
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["username"] == "newbiller"
    assert data["email"] == "biller@example.com"
    assert data["assigned_companies"] == [c1.id]
    assert "password_hash" not in data

    resp = await client.post("/api/users", json={**body, "password": STRONG_PASSWORD}, headers=headers(superadmin))
    assert resp.status_code == 400

    resp = await client.post(
        "/api/users",
        json={**body, "username": "viewer", "email": "viewer@example.com", "password": STRONG_PASSWORD,
              "can_view_all_companies": True},
        headers=headers(superadmin),
    )
    assert resp.json()["data"]["assigned_companies"] == []


@pytest.mark.asyncio
async def test_list_filters_and_permissions(client, superadmin, make_user, headers):
    await make_user(role="auditor", username="audrey")
    await make_user(role="biller", username="bill", active=False)

    resp = await client.get("/api/users?role=auditor", headers=headers(superadmin))
    body = resp.json()
    assert [u["username"] for u in body["data"]] == ["audrey"]
    assert body["data"][0]["permissions"]["audit"] == ["create", "read", "update"]

    resp = await client.get("/api/users?active=false", headers=headers(superadmin))
    assert [u["username"] for u in resp.json()["data"]] == ["bill"]

    resp = await client.get("/api/users?search=aud&limit=1", headers=headers(superadmin))
    assert resp.json()["pagination"] == {"page": 1, "limit": 1, "total": 1, "pages": 1}


@pytest.mark.asyncio
async def test_toggle_status_and_self_guard(client, superadmin, make_user, headers):
    target = await make_user()
    resp = await client.put(f"/api/users/{superadmin.id}/toggle-status", headers=headers(superadmin))
    assert resp.status_code == 400

    resp = await client.put(f"/api/users/{target.id}/toggle-status", headers=headers(superadmin))
    assert resp.json()["data"] == {"id": target.id, "active": False}

    resp = await client.get("/api/patients", headers=headers(target))
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_update_cannot_touch_username_and_admin_password_reset(client, superadmin, make_user, headers):
    target = await make_user(username="carl", assigned_companies=[1])
    resp = await client.put(
        f"/api/users/{target.id}",
        json={"username": "hacked", "full_name": "Carl Updated", "can_view_all_companies": True},
        headers=headers(superadmin),
    )
    data = resp.json()["data"]
    assert data["username"] == "carl"
    assert data["full_name"] == "Carl Updated"
    assert data["assigned_companies"] == []

    resp = await client.put(
        f"/api/users/{target.id}/password",
        json={"new_password": "Reset$ByAdmin1"},
        headers=headers(superadmin),
    )
    assert resp.status_code == 200
    resp = await client.post("/api/auth/login", json={"username": "carl", "password": "Reset$ByAdmin1"})
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_system_info(client, superadmin, headers):
    resp = await client.get("/api/users/system-info", headers=headers(superadmin))
    data = resp.json()["data"]
    assert "superadmin" in data["roles"]
    assert "import" in data["modules"]
    assert data["role_permissions"]["reports"] == {
        "dashboard": ["read"], "reports": ["read"], "financial": ["read"],
    }


@pytest.mark.asyncio
async def test_users_can_read_their_own_record(client, make_user, headers):
    biller = await make_user(username="bob")
    other = await make_user(username="ann")

    resp = await client.get(f"/api/users/{biller.id}", headers=headers(biller))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["username"] == "bob"
    assert "users" not in data["permissions"]

    resp = await client.get(f"/api/users/{other.id}", headers=headers(biller))
    assert resp.status_code == 403
    assert resp.json()["code"] == "PERMISSION_DENIED"
