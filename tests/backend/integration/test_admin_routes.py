import pytest

from fitcoach.services.audit import audit_sink


pytestmark = pytest.mark.asyncio


async def test_admin_user_management_flow(client, create_admin, auth_header_factory):
    admin, _ = await create_admin()
    admin_headers = await auth_header_factory(admin.email)

    # Create a normal user via public endpoint
    signup = await client.post(
        "/api/v1/auth/signup",
        json={"firstName": "Mia", "lastName": "Member", "email": "member1@example.com", "password": "Member#123"},
    )
    user_id = signup.json()["user"]["id"]

    list_resp = await client.get("/api/v1/admin/users", headers=admin_headers, params={"offset": 0, "limit": 20})
    assert list_resp.status_code == 200
    assert any(item["email"] == "member1@example.com" for item in list_resp.json()["items"])

    search = await client.get("/api/v1/admin/users", headers=admin_headers, params={"q": "mia"})
    assert search.json()["total"] == 1

    detail_resp = await client.get(f"/api/v1/admin/users/{user_id}", headers=admin_headers)
    assert detail_resp.status_code == 200
    assert detail_resp.json()["user"]["tokenVersion"] == 0

    update_resp = await client.patch(
        f"/api/v1/admin/users/{user_id}",
        headers=admin_headers,
        json={"firstName": "Mila", "role": "trainer"},
    )
    assert update_resp.status_code == 200
    assert update_resp.json()["user"]["firstName"] == "Mila"
    assert update_resp.json()["user"]["role"] == "trainer"

    reset_resp = await client.post(
        f"/api/v1/admin/users/{user_id}/reset-password",
        headers=admin_headers,
        json={"newPassword": "Member#999"},
    )
    assert reset_resp.status_code == 200
    assert reset_resp.json()["data"]["ok"] is True

    login_with_new_pwd = await client.post(
        "/api/v1/auth/login",
        json={"email": "member1@example.com", "password": "Member#999"},
    )
    assert login_with_new_pwd.status_code == 200


async def test_admin_routes_reject_non_admins(client, create_user, auth_header_factory):
    user, _ = await create_user()
    headers = await auth_header_factory(user.email)
    resp = await client.get("/api/v1/admin/users", headers=headers)
    assert resp.status_code == 403
    assert resp.json()["error"] == "Access denied. Admin privileges required."


async def test_cannot_demote_self_or_last_admin(client, create_admin, auth_header_factory):
    admin, _ = await create_admin()
    headers = await auth_header_factory(admin.email)

    resp = await client.patch(f"/api/v1/admin/users/{admin.id}", headers=headers, json={"role": "user"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "CANNOT_MODIFY_SELF"

    other, _ = await create_admin()
    ok = await client.patch(f"/api/v1/admin/users/{other.id}", headers=headers, json={"role": "user"})
    assert ok.status_code == 200


async def test_revoke_tokens_forces_logout(client, create_admin, create_user, auth_header_factory):
    admin, _ = await create_admin()
    user, _ = await create_user()
    admin_headers = await auth_header_factory(admin.email)
    user_headers = await auth_header_factory(user.email)

    resp = await client.post(f"/api/v1/admin/users/{user.id}/revoke-tokens", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["tokenVersion"] == 1

    me = await client.get("/api/v1/auth/me", headers=user_headers)
    assert me.status_code == 401
    assert me.json()["code"] == "AUTH_TOKEN_REVOKED"


async def test_unlock_account(client, create_admin, create_user, auth_header_factory):
    admin, _ = await create_admin()
    user, password = await create_user()
    for _ in range(5):
        await client.post("/api/v1/auth/login", json={"email": user.email, "password": "WrongPassword!"})
    locked = await client.post("/api/v1/auth/login", json={"email": user.email, "password": password})
    assert locked.status_code == 423

    admin_headers = await auth_header_factory(admin.email)
    resp = await client.post(f"/api/v1/admin/users/{user.id}/unlock", headers=admin_headers)
    assert resp.status_code == 200

    unlocked = await client.post("/api/v1/auth/login", json={"email": user.email, "password": password})
    assert unlocked.status_code == 200


async def test_erase_user_keeps_appointments(client, create_admin, create_user, create_trainer, auth_header_factory):
    admin, _ = await create_admin()
    user, password = await create_user()
    trainer, _ = await create_trainer()
    user_headers = await auth_header_factory(user.email)
    appt = await client.post(
        "/api/v1/appointments",
        headers=user_headers,
        json={"trainerId": str(trainer.id), "date": "2030-01-15", "time": "09:00"},
    )
    appt_id = appt.json()["id"]

    admin_headers = await auth_header_factory(admin.email)
    resp = await client.post(f"/api/v1/admin/users/{user.id}/erase", headers=admin_headers)
    assert resp.status_code == 200
    erased = resp.json()["data"]["user"]
    assert erased["id"] == str(user.id)
    assert erased["anonymized"] is True
    assert erased["email"] != user.email

    # Old token and old credentials are dead
    assert (await client.get("/api/v1/auth/me", headers=user_headers)).status_code == 401
    login = await client.post("/api/v1/auth/login", json={"email": user.email, "password": password})
    assert login.status_code == 400

    # History still resolves
    kept = await client.get(f"/api/v1/appointments/{appt_id}", headers=admin_headers)
    assert kept.status_code == 200
    assert kept.json()["clientId"]["id"] == str(user.id)


async def test_audit_log_viewer(client, create_admin, create_user, auth_header_factory):
    admin, _ = await create_admin()
    user, _ = await create_user()
    await client.post("/api/v1/auth/login", json={"email": user.email, "password": "WrongPassword!"})
    headers = await auth_header_factory(admin.email)
    await audit_sink.drain()

    resp = await client.get(
        "/api/v1/admin/logs", headers=headers, params={"category": "security", "userId": str(user.id)}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] >= 1
    assert all(item["category"] == "security" for item in body["items"])
    assert body["items"][0]["metadata"]["eventType"] == "AUTH_FAILED_LOGIN"

    errors = await client.get("/api/v1/admin/logs", headers=headers, params={"level": "error"})
    assert errors.json()["total"] >= 1
