from commerce_hooks.models.entities import WebhookLog
from conftest import auth_headers


async def test_health(client):
    response = await client.get("/api/health")
    assert response.json()["status"] == "ok"
    assert "X-Request-ID" in response.headers


async def test_login_and_me(client, member):
    response = await client.post("/api/auth/login", json={"email": "Owner@acme.test", "password": "s3cret!"})
    assert response.status_code == 200
    body = response.json()
    assert body["user_id"] == member.id
    assert body["is_admin"] is False

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["email"] == "owner@acme.test"
    assert me.json()["organization_id"] == member.organization_id


async def test_login_rejects_bad_password(client, member):
    response = await client.post("/api/auth/login", json={"email": "owner@acme.test", "password": "nope"})
    assert response.status_code == 401


async def test_me_requires_valid_token(client):
    assert (await client.get("/api/auth/me")).status_code == 401
    bad = await client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert bad.status_code == 401


async def test_webhook_logs_admin_only(client, member):
    response = await client.get("/api/admin/webhook-logs", headers=auth_headers(member))
    assert response.status_code == 403


async def test_webhook_logs_filters(client, db, admin):
    db.add_all([
        WebhookLog(provider="epayco", event_type="payment.updated", status="success", payload={"a": 1}),
        WebhookLog(provider="wompi", event_type="payment.updated", status="error", response={"error": "x"}),
        WebhookLog(provider="wompi", event_type="payment.updated", status="success"),
    ])
    await db.commit()

    response = await client.get(
        "/api/admin/webhook-logs", params={"provider": "wompi", "status": "error"}, headers=auth_headers(admin)
    )
    assert response.status_code == 200
    [log] = response.json()
    assert log["provider"] == "wompi"
    assert log["response"] == {"error": "x"}

    everything = await client.get("/api/admin/webhook-logs", params={"limit": 2}, headers=auth_headers(admin))
    assert len(everything.json()) == 2
