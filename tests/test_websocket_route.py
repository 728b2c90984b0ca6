"""/ws endpoint: authentication, client frames and live order events."""

import uuid

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from homechef.main import app


@pytest.fixture
def live_app(engine):
    """TestClient with the lifespan running (hub, dispatcher, countdown scheduler)."""
    with TestClient(app) as test_client:
        yield test_client


def _close_code(ws) -> int:
    with pytest.raises(WebSocketDisconnect) as exc:
        ws.receive_text()
    return exc.value.code


def test_ping_and_subscribe(live_app, customer):
    with live_app.websocket_connect(f"/ws?token={customer.token}") as ws:
        ws.send_json({"event": "ping"})
        assert ws.receive_json()["type"] == "pong"

        order_id = str(uuid.uuid4())
        ws.send_json({"event": "subscribe_order", "data": {"order_id": order_id}})
        frame = ws.receive_json()
        assert frame["type"] == "subscribed"
        assert frame["data"] == {"order_id": order_id}

        ws.send_text("not json")
        assert ws.receive_json()["type"] == "error"


def test_token_from_authorization_header(live_app, chef):
    with live_app.websocket_connect("/ws", headers=chef.headers) as ws:
        ws.send_json({"event": "ping"})
        assert ws.receive_json()["event"] == "pong"


def test_order_placement_is_pushed(live_app, customer, chef):
    with live_app.websocket_connect(
        f"/ws?token={customer.token}&user_id={customer.user_id}&role=customer"
    ) as ws:
        response = live_app.post(
            "/orders",
            headers=customer.headers,
            json={
                "chef_id": str(chef.user_id),
                "items": [{"dish_id": "dal", "quantity": 1, "unit_price": 120}],
                "payment_id": "pay_ws_001",
            },
        )
        assert response.status_code == 201

        frame = ws.receive_json()
        assert frame["type"] == "order_event"
        assert frame["event"] == "order.created"
        assert frame["sequence"] == 1
        assert frame["data"]["order_id"] == response.json()["data"]["id"]


def test_missing_token_is_rejected(live_app):
    with live_app.websocket_connect("/ws") as ws:
        assert _close_code(ws) == 4001


def test_invalid_token_is_rejected(live_app):
    with live_app.websocket_connect("/ws?token=not-a-jwt") as ws:
        assert _close_code(ws) == 4001


@pytest.mark.parametrize("mismatch", ["user_id", "role"])
def test_identity_mismatch_is_forbidden(live_app, customer, mismatch):
    query = {"user_id": str(uuid.uuid4())} if mismatch == "user_id" else {"role": "admin"}
    params = "&".join(f"{k}={v}" for k, v in query.items())

    with live_app.websocket_connect(f"/ws?token={customer.token}&{params}") as ws:
        assert _close_code(ws) == 4003


def test_hub_not_running(engine, customer):
    client = TestClient(app)

    with client.websocket_connect(f"/ws?token={customer.token}") as ws:
        assert _close_code(ws) == 1011
