"""Webhook dispatcher: signed delivery, backoff retries, claims, sweeper and purge."""

import json
import uuid
from datetime import timedelta

import httpx
import pytest

from homechef.core import signing
from homechef.db.enums import DeliveryStatus
from homechef.db.models import WebhookDelivery, WebhookEndpoint
from homechef.db.session import SessionLocal
from homechef.jobs.dispatcher import WebhookDispatcher
from homechef.services import delivery_service, webhook_service

from conftest import RECEIVER_URL, T0


@pytest.fixture
async def make_dispatcher(engine, receiver):
    created = []

    def _make(worker_id="worker-a"):
        d = WebhookDispatcher(SessionLocal, transport=receiver.transport, worker_id=worker_id, workers=2)
        created.append(d)
        return d

    yield _make
    for d in created:
        await d.stop(drain_timeout=1)


def _delivery(db, delivery_id) -> WebhookDelivery:
    db.expire_all()
    return db.get(WebhookDelivery, delivery_id)


def _staged(events, kind="order.created"):
    (event,) = [e for e in events if e.kind == kind]
    (delivery_id,) = event.delivery_ids
    return delivery_id


# =============================================================================
# Staging
# =============================================================================


def test_event_stages_one_delivery_per_subscriber(db, make_webhook, place_order, events):
    make_webhook(["order.created"])
    make_webhook(["order.created", "order.cancelled"])
    make_webhook(["order.cancelled"])

    order = place_order()

    (event,) = events
    assert len(event.delivery_ids) == 2
    for delivery_id in event.delivery_ids:
        delivery = db.get(WebhookDelivery, delivery_id)
        assert delivery.status == DeliveryStatus.PENDING.value
        assert delivery.order_id == order.id
        assert delivery.sequence == 1
        assert delivery.payload["event"] == "order.created"
        assert delivery.payload["delivery_id"] == str(delivery_id)
        assert delivery.payload["data"]["order_id"] == str(order.id)


def test_inactive_endpoint_gets_nothing(db, make_webhook, place_order, events, integrator):
    endpoint, _ = make_webhook()
    webhook_service.update_endpoint(db, integrator.principal, endpoint.id, is_active=False)

    place_order()

    assert events[0].delivery_ids == ()


# =============================================================================
# Dispatch
# =============================================================================


@pytest.mark.asyncio
async def test_successful_delivery_is_signed(db, make_webhook, place_order, events, receiver, make_dispatcher, clock):
    endpoint, secret = make_webhook()
    place_order()
    delivery_id = _staged(events)

    result = await make_dispatcher().dispatch(delivery_id)

    assert result.status == DeliveryStatus.SUCCESS.value
    (request,) = receiver.requests
    assert str(request.url) == RECEIVER_URL
    assert request.headers["Content-Type"] == "application/json"
    assert request.headers[signing.EVENT_HEADER] == "order.created"
    assert request.headers[signing.DELIVERY_HEADER] == str(delivery_id)
    assert signing.verify(secret, request.content, request.headers[signing.SIGNATURE_HEADER])
    body = json.loads(request.content)
    assert body["event"] == "order.created"
    assert body["webhook_id"] == str(endpoint.id)
    assert body["delivery_id"] == str(delivery_id)

    delivery = _delivery(db, delivery_id)
    assert delivery.attempt_count == 1
    assert delivery.response_status == 200
    assert delivery.response_body == "ok"
    assert delivery.delivered_at == clock.now()
    assert delivery.claimed_by is None


@pytest.mark.asyncio
async def test_retry_with_backoff_until_success(db, make_webhook, place_order, events, receiver, make_dispatcher, clock):
    make_webhook(max_attempts=3, base_delay_seconds=2)
    place_order()
    delivery_id = _staged(events)
    receiver.responses = [500, 500, 200]
    dispatcher = make_dispatcher()

    await dispatcher.dispatch(delivery_id)
    delivery = _delivery(db, delivery_id)
    assert delivery.status == DeliveryStatus.PENDING.value
    assert delivery.attempt_count == 1
    assert delivery.response_status == 500
    assert delivery.error_message == "HTTP 500"
    assert delivery.next_retry_at == T0 + timedelta(seconds=2)

    clock.advance(1)
    assert await dispatcher.sweep_once() == 0

    clock.advance(1)
    assert await dispatcher.sweep_once() == 1
    delivery = _delivery(db, delivery_id)
    assert delivery.attempt_count == 2
    assert delivery.next_retry_at == T0 + timedelta(seconds=6)

    clock.advance(4)
    assert await dispatcher.sweep_once() == 1
    delivery = _delivery(db, delivery_id)
    assert delivery.status == DeliveryStatus.SUCCESS.value
    assert delivery.attempt_count == 3
    assert delivery.delivered_at == T0 + timedelta(seconds=6)
    assert len(receiver.requests) == 3


@pytest.mark.asyncio
async def test_fails_after_max_attempts(db, make_webhook, place_order, events, receiver, make_dispatcher, clock):
    make_webhook(max_attempts=2, base_delay_seconds=1)
    place_order()
    delivery_id = _staged(events)
    receiver.responses = [503, 503]
    dispatcher = make_dispatcher()

    await dispatcher.dispatch(delivery_id)
    clock.advance(1)
    await dispatcher.sweep_once()

    delivery = _delivery(db, delivery_id)
    assert delivery.status == DeliveryStatus.FAILED.value
    assert delivery.attempt_count == 2
    assert delivery.next_retry_at is None
    assert delivery.failed_at == clock.now()

    clock.advance(3600)
    assert await dispatcher.sweep_once() == 0


@pytest.mark.asyncio
async def test_transport_error_counts_as_attempt(db, make_webhook, place_order, events, receiver, make_dispatcher):
    make_webhook(max_attempts=3)
    place_order()
    delivery_id = _staged(events)
    receiver.responses = [httpx.ConnectError]

    await make_dispatcher().dispatch(delivery_id)

    delivery = _delivery(db, delivery_id)
    assert delivery.status == DeliveryStatus.PENDING.value
    assert delivery.attempt_count == 1
    assert delivery.response_status is None
    assert delivery.error_message.startswith("ConnectError")


@pytest.mark.asyncio
async def test_response_body_is_truncated(db, make_webhook, place_order, events, make_dispatcher, engine):
    make_webhook()
    place_order()
    delivery_id = _staged(events)
    dispatcher = WebhookDispatcher(
        SessionLocal,
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="x" * 5000)),
        worker_id="worker-long",
    )

    await dispatcher.dispatch(delivery_id)
    await dispatcher.stop()

    assert len(_delivery(db, delivery_id).response_body) == delivery_service.RESPONSE_BODY_LIMIT


@pytest.mark.asyncio
async def test_not_due_delivery_is_not_dispatched(db, make_webhook, place_order, events, receiver, make_dispatcher, clock):
    make_webhook(base_delay_seconds=30)
    place_order()
    delivery_id = _staged(events)
    receiver.responses = [500]
    dispatcher = make_dispatcher()
    await dispatcher.dispatch(delivery_id)

    assert await dispatcher.dispatch(delivery_id) is None
    assert len(receiver.requests) == 1


@pytest.mark.asyncio
async def test_deleted_endpoint_delivery_is_abandoned(db, make_webhook, place_order, events, receiver, make_dispatcher, clock):
    endpoint, _ = make_webhook()
    place_order()
    delivery_id = _staged(events)
    # Deleted between staging and dispatch, without the API's cleanup.
    db.get(WebhookEndpoint, endpoint.id).deleted_at = clock.now()
    db.commit()

    await make_dispatcher().dispatch(delivery_id)

    delivery = _delivery(db, delivery_id)
    assert delivery.status == DeliveryStatus.FAILED.value
    assert delivery.error_message == "Webhook endpoint deleted"
    assert receiver.requests == []


@pytest.mark.asyncio
async def test_lowered_max_attempts_fails_without_sending(db, make_webhook, place_order, events, receiver, make_dispatcher, clock, integrator):
    endpoint, _ = make_webhook(max_attempts=5, base_delay_seconds=1)
    place_order()
    delivery_id = _staged(events)
    receiver.responses = [500, 500, 500]
    dispatcher = make_dispatcher()

    await dispatcher.dispatch(delivery_id)
    clock.advance(1)
    await dispatcher.sweep_once()
    clock.advance(2)
    await dispatcher.sweep_once()
    delivery = _delivery(db, delivery_id)
    assert delivery.status == DeliveryStatus.PENDING.value
    assert delivery.attempt_count == 3

    webhook_service.update_endpoint(db, integrator.principal, endpoint.id, max_attempts=1)
    clock.advance(4)
    await dispatcher.sweep_once()

    delivery = _delivery(db, delivery_id)
    assert delivery.status == DeliveryStatus.FAILED.value
    assert delivery.error_message == "Attempt budget exhausted"
    assert delivery.attempt_count == 3
    assert delivery.claimed_by is None
    assert len(receiver.requests) == 3


@pytest.mark.asyncio
async def test_operator_retry_requeues_failed_delivery(db, make_webhook, place_order, events, receiver, make_dispatcher, integrator):
    make_webhook(max_attempts=1)
    place_order()
    delivery_id = _staged(events)
    receiver.responses = [500]
    dispatcher = make_dispatcher()
    await dispatcher.dispatch(delivery_id)
    assert _delivery(db, delivery_id).status == DeliveryStatus.FAILED.value

    retried = webhook_service.retry_delivery(db, integrator.principal, delivery_id)
    assert retried.status == DeliveryStatus.PENDING.value
    assert retried.attempt_count == 0

    assert await dispatcher.sweep_once() == 1
    delivery = _delivery(db, delivery_id)
    assert delivery.status == DeliveryStatus.SUCCESS.value
    assert delivery.attempt_count == 1


@pytest.mark.asyncio
async def test_worker_pool_drains_on_stop(db, make_webhook, place_order, events, receiver, make_dispatcher):
    make_webhook()
    dispatcher = make_dispatcher()
    await dispatcher.start(sweep=False)
    assert dispatcher.running

    place_order()
    place_order()
    for event in events:
        dispatcher.on_event(event)
    await dispatcher.stop(drain_timeout=5)

    assert not dispatcher.running
    assert len(receiver.requests) == 2
    for event in events:
        assert _delivery(db, event.delivery_ids[0]).status == DeliveryStatus.SUCCESS.value


def test_enqueue_when_stopped_leaves_work_for_sweeper(engine):
    dispatcher = WebhookDispatcher(SessionLocal, worker_id="idle")

    assert dispatcher.enqueue(uuid.uuid4()) is False


# =============================================================================
# Claims
# =============================================================================


def test_claim_is_exclusive_until_ttl(db, make_webhook, place_order, events, clock):
    make_webhook()
    place_order()
    delivery_id = _staged(events)

    assert delivery_service.claim_delivery(db, delivery_id, "worker-a") is True
    assert delivery_service.claim_delivery(db, delivery_id, "worker-b") is False
    assert delivery_service.claim_due_deliveries(db, "worker-b") == []

    # Crashed holder: the claim expires after twice the request timeout.
    clock.advance(21)
    assert delivery_service.claim_due_deliveries(db, "worker-b") == [delivery_id]
    assert _delivery(db, delivery_id).claimed_by == "worker-b"


@pytest.mark.asyncio
async def test_lost_claim_is_not_recorded(db, make_webhook, place_order, events, receiver, engine):
    make_webhook()
    place_order()
    delivery_id = _staged(events)
    first = WebhookDispatcher(SessionLocal, transport=receiver.transport, worker_id="worker-a")

    assert first._claim(delivery_id)
    delivery = _delivery(db, delivery_id)
    delivery.claimed_by = "worker-b"
    db.commit()

    recorded = await first._attempt(delivery_id)
    await first.stop()

    assert recorded.status == DeliveryStatus.PENDING.value
    assert recorded.attempt_count == 0


# =============================================================================
# Backoff and purge
# =============================================================================


@pytest.mark.parametrize(
    "attempt,expected",
    [(1, 30), (2, 60), (3, 120), (5, 480), (8, 3600), (10, 3600)],
)
def test_backoff_doubles_and_caps(attempt, expected):
    assert delivery_service.backoff_delay(30, attempt) == timedelta(seconds=expected)


@pytest.mark.asyncio
async def test_purge_removes_old_terminal_deliveries(db, make_webhook, place_order, events, make_dispatcher, clock):
    make_webhook()
    place_order()
    old_delivered = _staged(events)
    dispatcher = make_dispatcher()
    await dispatcher.dispatch(old_delivered)

    clock.advance(31 * 86400)
    events.clear()
    place_order()
    recent = _staged(events)

    assert await dispatcher.purge_if_due() == 1
    assert _delivery(db, old_delivered) is None
    assert _delivery(db, recent) is not None
    # Runs at most once a day.
    clock.advance(3600)
    assert await dispatcher.purge_if_due() == 0


def test_purge_keeps_pending(db, make_webhook, place_order, events, clock):
    make_webhook()
    place_order()
    delivery_id = _staged(events)
    clock.advance(40 * 86400)

    assert delivery_service.purge_old_deliveries(db) == 0
    assert _delivery(db, delivery_id).status == DeliveryStatus.PENDING.value
