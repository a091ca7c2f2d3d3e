from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from buzz_api.core.settings import settings


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.fixture
def open_internal_api(monkeypatch):
    monkeypatch.setattr(settings, "environment", "development")
    monkeypatch.setattr(settings, "internal_api_key", "")


@pytest.mark.asyncio
async def test_session_header_is_required(app_with_db, ledger_world) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        missing = await client.get("/api/v1/mileage/balance")
        malformed = await client.get("/api/v1/mileage/balance", headers={"X-Session-User": "not-a-uuid"})
        unknown = await client.get("/api/v1/mileage/balance", headers={"X-Session-User": str(uuid4())})
        forbidden = await client.get(
            "/api/v1/admin/budget/status", headers={"X-Session-User": str(ledger_world.member_id)}
        )

    for response in (missing, malformed, unknown):
        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "AUTH_001"
        assert "timestamp" in body["error"]

    assert forbidden.status_code == 403
    assert forbidden.json()["error"]["code"] == "AUTH_003"


@pytest.mark.asyncio
async def test_earn_requires_internal_key_when_configured(app_with_db, ledger_world, monkeypatch) -> None:
    app, _ = app_with_db
    monkeypatch.setattr(settings, "internal_api_key", "internal-secret")
    payload = {"userId": str(ledger_world.member_id), "amount": 100}

    async with _client(app) as client:
        rejected = await client.post("/api/v1/mileage/earn", json=payload)
        wrong = await client.post("/api/v1/mileage/earn", json=payload, headers={"X-API-Key": "nope"})
        accepted = await client.post(
            "/api/v1/mileage/earn", json=payload, headers={"X-API-Key": "internal-secret"}
        )

    assert rejected.status_code == 401
    assert wrong.status_code == 401
    assert wrong.json()["error"]["code"] == "AUTH_001"
    assert accepted.status_code == 201
    assert accepted.json()["data"]["balanceAfter"] == 100.0


@pytest.mark.asyncio
async def test_earn_without_configured_key_outside_development(app_with_db, ledger_world, monkeypatch) -> None:
    app, _ = app_with_db
    monkeypatch.setattr(settings, "internal_api_key", "")
    monkeypatch.setattr(settings, "environment", "production")

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/mileage/earn",
            json={"userId": str(ledger_world.member_id), "amount": 100},
        )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_qr_payment_flow(app_with_db, ledger_world, open_internal_api) -> None:
    app, _ = app_with_db
    member = {"X-Session-User": str(ledger_world.member_id)}

    async with _client(app) as client:
        earned = await client.post(
            "/api/v1/mileage/earn",
            json={
                "userId": str(ledger_world.member_id),
                "amount": 1000,
                "description": "Signup bonus",
                "referenceType": "signup",
            },
        )
        assert earned.status_code == 201

        balance = await client.get("/api/v1/mileage/balance", headers=member)
        assert balance.status_code == 200
        assert balance.json()["data"]["balance"] == 1000.0

        qr = await client.get("/api/v1/mileage/qr-code", headers=member)
        qr_code = qr.json()["data"]["qrCode"]
        assert qr_code.startswith("BZ1.m.")

        used = await client.post(
            "/api/v1/mileage/use",
            json={"qrCode": qr_code, "amount": 400, "businessId": str(ledger_world.business_id)},
            headers=member,
        )
        assert used.status_code == 200
        body = used.json()
        assert body["success"] is True
        assert body["data"]["usedAmount"] == 400.0
        assert body["data"]["remainingBalance"] == 600.0
        assert body["data"]["businessName"] == "Buzz Cafe"

        overdraw = await client.post(
            "/api/v1/mileage/use",
            json={"qrCode": qr_code, "amount": 5000, "businessId": str(ledger_world.business_id)},
            headers=member,
        )
        assert overdraw.status_code == 400
        error = overdraw.json()["error"]
        assert error["code"] == "MILEAGE_001"
        assert error["details"] == {"currentBalance": 600.0, "requestedAmount": 5000.0}

        history = await client.get("/api/v1/mileage/history", headers=member)
        data = history.json()["data"]
        assert data["pagination"] == {
            "total": 2,
            "page": 1,
            "limit": 20,
            "totalPages": 1,
            "hasNext": False,
            "hasPrev": False,
        }
        latest = data["items"][0]
        assert latest["type"] == "use"
        assert latest["isPositive"] is False
        assert latest["displayAmount"] == "-400"
        assert latest["businessName"] == "Buzz Cafe"
        assert data["summary"]["totalEarned"] == 1000.0
        assert data["summary"]["useCount"] == 1

        earns = await client.get("/api/v1/mileage/history", params={"type": "earn"}, headers=member)
        assert earns.json()["data"]["pagination"]["total"] == 1


@pytest.mark.asyncio
async def test_qr_token_of_another_user_is_rejected(app_with_db, ledger_world, open_internal_api) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        await client.post("/api/v1/mileage/earn", json={"userId": str(ledger_world.member_id), "amount": 500})
        foreign = await client.get("/api/v1/mileage/qr-code", headers={"X-Session-User": str(ledger_world.owner_id)})
        response = await client.post(
            "/api/v1/mileage/use",
            json={
                "qrCode": foreign.json()["data"]["qrCode"],
                "amount": 100,
                "businessId": str(ledger_world.business_id),
            },
            headers={"X-Session-User": str(ledger_world.member_id)},
        )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "QR_001"


@pytest.mark.asyncio
async def test_invalid_payload_uses_validation_envelope(app_with_db, ledger_world) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/mileage/use",
            json={"amount": "lots"},
            headers={"X-Session-User": str(ledger_world.member_id)},
        )

    assert response.status_code == 400
    body = response.json()
    assert body["error"]["code"] == "VALIDATION_001"
    assert isinstance(body["error"]["details"], list)


@pytest.mark.asyncio
async def test_admin_refund_is_single_use(app_with_db, ledger_world, open_internal_api) -> None:
    app, _ = app_with_db
    member = {"X-Session-User": str(ledger_world.member_id)}
    admin = {"X-Session-User": str(ledger_world.admin_id)}

    async with _client(app) as client:
        await client.post("/api/v1/mileage/earn", json={"userId": str(ledger_world.member_id), "amount": 300})
        qr_code = (await client.get("/api/v1/mileage/qr-code", headers=member)).json()["data"]["qrCode"]
        used = await client.post(
            "/api/v1/mileage/use",
            json={"qrCode": qr_code, "amount": 300, "businessId": str(ledger_world.business_id)},
            headers=member,
        )
        transaction_id = used.json()["data"]["transactionId"]

        refund = await client.post(
            f"/api/v1/admin/mileage/transactions/{transaction_id}/refund",
            json={"reason": "Order cancelled"},
            headers=admin,
        )
        again = await client.post(f"/api/v1/admin/mileage/transactions/{transaction_id}/refund", headers=admin)
        balance = await client.get("/api/v1/mileage/balance", headers=member)
        snapshot = await client.get("/api/v1/admin/observability/ledger", headers=admin)

    assert refund.status_code == 201
    assert refund.json()["data"]["type"] == "refund"
    assert refund.json()["data"]["displayAmount"] == "+300"
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "MILEAGE_003"
    assert balance.json()["data"]["balance"] == 300.0

    counters = snapshot.json()
    assert counters["transactions"] == {"earn": 1, "use": 1, "refund": 1}
    assert counters["amounts"]["refund"] == 300.0
