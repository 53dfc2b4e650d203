from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from services.commerce_service.app.errors import TransientError
from services.commerce_service.app.main import create_app
from services.commerce_service.tests.support import seed_catalog, seed_wallet, wallet_balance


def _asgi_client(app):
    transport = ASGITransport(app=app)
    return AsyncClient(transport=transport, base_url="http://testserver")


def _order_payload(key: str, pay_method: str = "wallet", **overrides) -> dict:
    payload = {
        "customer_id": 1,
        "pay_method": pay_method,
        "items": [{"product_id": 100, "quantity": 1}],
        "discount": 5000,
        "idempotency_key": key,
        "channel": "web",
    }
    payload.update(overrides)
    return payload


@pytest_asyncio.fixture()
async def client(services):
    await seed_catalog(services)
    app = create_app(services=services)
    async with _asgi_client(app) as client:
        yield client


@pytest.mark.asyncio
async def test_health_and_metrics(client):
    health = await client.get("/api/v1/healthz")
    assert health.status_code == 200
    assert health.json() == {"status": "ok"}

    metrics = await client.get("/api/v1/metrics")
    assert metrics.status_code == 200
    assert "orders_placed_total" in metrics.text


@pytest.mark.asyncio
async def test_place_order_then_replay(client, services):
    await seed_wallet(services, 1, 100000)

    created = await client.post("/api/v1/orders", json=_order_payload("HTTP-1"))
    assert created.status_code == 201
    body = created.json()
    assert body["status"] == "paid"
    assert body["final_amount"] == 10000
    assert body["items"][0]["product_name_snapshot"] == "Deep tissue massage"

    replay = await client.post("/api/v1/orders", json=_order_payload("HTTP-1"))
    assert replay.status_code == 200
    assert replay.json()["id"] == body["id"]
    assert replay.json()["replayed"] is True

    fetched = await client.get(f"/api/v1/orders/{body['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["order_no"] == body["order_no"]

    listed = await client.get("/api/v1/orders", params={"customer_id": 1, "status": "paid"})
    assert listed.status_code == 200
    assert listed.json()["total"] == 1

    balance = await client.get("/api/v1/wallets/1/balance")
    assert balance.json() == {"customer_id": 1, "balance": 90000}


@pytest.mark.asyncio
async def test_place_order_retries_transient_conflict(client, services, monkeypatch):
    await seed_wallet(services, 1, 100000)
    place_order = services.sales.place_order
    calls = []

    async def flaky_place_order(ctx, command):
        calls.append(command.idempotency_key)
        if len(calls) == 1:
            raise TransientError("concurrent order with the same idempotency key is still in flight")
        return await place_order(ctx, command)

    monkeypatch.setattr(services.sales, "place_order", flaky_place_order)

    response = await client.post("/api/v1/orders", json=_order_payload("HTTP-RETRY"))

    assert response.status_code == 201
    assert response.json()["status"] == "paid"
    assert calls == ["HTTP-RETRY", "HTTP-RETRY"]
    assert await wallet_balance(services, 1) == 90000


@pytest.mark.asyncio
async def test_business_errors_use_error_envelope(client, services):
    await seed_wallet(services, 1, 100)

    response = await client.post(
        "/api/v1/orders", json=_order_payload("HTTP-2"), headers={"x-request-id": "req-123"}
    )
    assert response.status_code == 422
    assert response.headers["x-request-id"] == "req-123"
    assert response.json() == {
        "error": "INSUFFICIENT_BALANCE",
        "detail": "insufficient wallet balance",
        "request_id": "req-123",
    }

    missing = await client.get("/api/v1/orders/9999")
    assert missing.status_code == 404
    assert missing.json()["error"] == "ORDER_NOT_FOUND"
    assert missing.json()["request_id"]


@pytest.mark.asyncio
async def test_request_validation_maps_to_invalid_param(client):
    response = await client.post("/api/v1/orders", json=_order_payload("HTTP-3", items=[]))
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_PARAM"

    bad_key = await client.post("/api/v1/wallets/1/credit", json={"amount": 10, "idempotency_key": "no spaces"})
    assert bad_key.status_code == 400

    bad_page = await client.get("/api/v1/orders", params={"page_size": 500})
    assert bad_page.status_code == 400


@pytest.mark.asyncio
async def test_operator_header_must_be_numeric(client):
    response = await client.post(
        "/api/v1/wallets/1/credit",
        json={"amount": 10, "idempotency_key": "op-1"},
        headers={"x-operator-id": "admin"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_PARAM"


@pytest.mark.asyncio
async def test_order_lifecycle_routes(client):
    placed = await client.post("/api/v1/orders", json=_order_payload("HTTP-4", pay_method="cash", discount=0))
    order_id = placed.json()["id"]
    assert placed.json()["status"] == "pending"

    confirmed = await client.post(f"/api/v1/orders/{order_id}/confirm-payment")
    assert confirmed.json()["status"] == "paid"
    completed = await client.post(f"/api/v1/orders/{order_id}/complete")
    assert completed.json()["status"] == "completed"

    cancel = await client.post(f"/api/v1/orders/{order_id}/cancel", json={"reason": "too late"})
    assert cancel.status_code == 409
    assert cancel.json()["error"] == "ORDER_STATUS_INVALID"

    refunded = await client.post(f"/api/v1/orders/{order_id}/refund", json={"reason": "complaint", "idempotency_key": "RF-1"})
    assert refunded.status_code == 200
    assert refunded.json()["status"] == "refunded"

    again = await client.post(f"/api/v1/orders/{order_id}/refund", json={"reason": "complaint"})
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_wallet_routes(client):
    missing = await client.get("/api/v1/wallets/1")
    assert missing.status_code == 404
    assert missing.json()["error"] == "WALLET_NOT_FOUND"

    credit = await client.post(
        "/api/v1/wallets/1/credit",
        json={"amount": 2500, "reason": "top-up", "idempotency_key": "w-1", "bonus_amount": 250},
        headers={"x-operator-id": "12"},
    )
    assert credit.status_code == 200
    assert credit.json()["transaction"]["operator_id"] == 12
    assert credit.json()["replayed"] is False

    replay = await client.post(
        "/api/v1/wallets/1/credit",
        json={"amount": 2500, "reason": "top-up", "idempotency_key": "w-1", "bonus_amount": 250},
    )
    assert replay.json()["replayed"] is True

    adjust = await client.post(
        "/api/v1/wallets/1/adjust",
        json={"direction": "debit", "amount": 750, "reason_code": "fix", "idempotency_key": "w-2"},
    )
    assert adjust.status_code == 200
    assert adjust.json()["wallet"]["balance"] == 2000

    frozen = await client.put("/api/v1/wallets/1/status", json={"active": False})
    assert frozen.json()["status"] == 0
    blocked = await client.post(
        "/api/v1/wallets/1/adjust",
        json={"direction": "debit", "amount": 1, "reason_code": "fix", "idempotency_key": "w-3"},
    )
    assert blocked.status_code == 422
    assert blocked.json()["error"] == "WALLET_FROZEN"

    wallet = await client.get("/api/v1/wallets/1")
    assert wallet.json()["balance"] == 2000

    history = await client.get("/api/v1/wallets/1/transactions", params={"page_size": 2})
    assert history.status_code == 200
    assert history.json()["total"] == 3
    assert len(history.json()["items"]) == 2

    report = await client.get("/api/v1/wallets/1/reconcile")
    assert report.json()["consistent"] is True
