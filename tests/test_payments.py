"""Signed payment collaborator callbacks: payment results and tip settlement."""

import json
import uuid

import pytest

from homechef.core import signing
from homechef.db.enums import TipRecipient
from homechef.db.models import Order
from homechef.services import tip_service

PAYMENT_SECRET = "test-payment-secret"


def _signed(payload: dict, secret: str = PAYMENT_SECRET) -> dict:
    body = json.dumps(payload).encode()
    return {
        "content": body,
        "headers": {
            "Content-Type": "application/json",
            signing.SIGNATURE_HEADER: signing.sign(secret, body),
        },
    }


@pytest.mark.asyncio
async def test_payment_success_callback(client, db, place_order, events):
    order = place_order(450.0)

    response = await client.post(
        "/payments/callback",
        **_signed(
            {"payment_id": order.payment_id, "order_id": str(order.id), "status": "success", "amount": 450}
        ),
    )

    assert response.status_code == 200
    assert response.json()["data"]["payment_status"] == "completed"
    success = events[-1]
    assert success.kind == "payment.success"
    assert success.sequence == 2
    assert success.data == {"payment_id": order.payment_id, "order_id": str(order.id), "amount": 450.0}


@pytest.mark.asyncio
async def test_payment_failure_callback(client, db, place_order, events):
    order = place_order()

    response = await client.post(
        "/payments/callback",
        **_signed(
            {
                "payment_id": order.payment_id,
                "order_id": str(order.id),
                "status": "failed",
                "error_message": "card declined",
            }
        ),
    )

    assert response.status_code == 200
    db.expire_all()
    assert db.get(Order, order.id).payment_status == "failed"
    assert events[-1].kind == "payment.failed"
    assert events[-1].data["error_message"] == "card declined"


@pytest.mark.asyncio
async def test_callback_for_another_payment_is_rejected(client, place_order):
    order = place_order()

    response = await client.post(
        "/payments/callback",
        **_signed({"payment_id": "pay_someone_else", "order_id": str(order.id), "status": "success"}),
    )

    assert response.status_code == 400
    assert response.json()["details"] == {"payment_id": "mismatch"}


@pytest.mark.asyncio
async def test_callback_with_bad_signature(client, place_order, events):
    order = place_order()
    events.clear()

    response = await client.post(
        "/payments/callback",
        **_signed(
            {"payment_id": order.payment_id, "order_id": str(order.id), "status": "success"},
            secret="not-the-secret",
        ),
    )

    assert response.status_code == 403
    assert response.json()["error"] == "Forbidden"
    assert events == []


@pytest.mark.asyncio
async def test_callback_without_signature(client, place_order):
    order = place_order()

    response = await client.post(
        "/payments/callback",
        json={"payment_id": order.payment_id, "order_id": str(order.id), "status": "success"},
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_callback_payload_is_validated(client):
    response = await client.post(
        "/payments/callback",
        **_signed({"payment_id": "pay_1", "order_id": str(uuid.uuid4()), "status": "maybe"}),
    )

    assert response.status_code == 400
    assert "status" in response.json()["details"]


@pytest.mark.asyncio
async def test_unknown_order_is_not_found(client):
    response = await client.post(
        "/payments/callback",
        **_signed({"payment_id": "pay_1", "order_id": str(uuid.uuid4()), "status": "success"}),
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_tip_settlement_route(client, db, place_order, advance, customer, events):
    order = advance(place_order(), "chef_accepted")
    tip = tip_service.add_tip(db, customer.principal, order.id, TipRecipient.CHEF, 75)

    response = await client.post(
        f"/payments/tips/{tip.id}/settlement",
        **_signed({"status": "completed", "transfer_id": "tr_991"}),
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "completed"
    assert data["transfer_id"] == "tr_991"
    assert events[-1].kind == "tip.received"
    db.expire_all()
    assert db.get(Order, order.id).tip_amount == 75.0

    response = await client.post(
        f"/payments/tips/{tip.id}/settlement",
        **_signed({"status": "completed"}),
    )
    assert response.status_code == 409
    assert response.json()["error"] == "Conflict"
