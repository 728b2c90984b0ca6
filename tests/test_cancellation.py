"""Cancellation: free window, penalty clamping, refunds and daily analytics."""

import pytest

from homechef.core.errors import Forbidden, InvalidTransition
from homechef.db.enums import CancellationReason, CancellationType, DeclineReason, OrderStatus
from homechef.services import cancellation_service, order_service

from conftest import T0


class TestComputePenalty:
    def test_rate_within_bounds(self):
        assert cancellation_service.compute_penalty(450.0, 0.4, 20.0, 500.0) == 180.0

    def test_min_floor(self):
        assert cancellation_service.compute_penalty(50.0, 0.4, 20.0, 500.0) == 20.0

    def test_max_cap(self):
        assert cancellation_service.compute_penalty(2000.0, 0.4, 20.0, 500.0) == 500.0

    def test_never_exceeds_charged_amount(self):
        assert cancellation_service.compute_penalty(15.0, 0.4, 20.0, 500.0) == 15.0

    def test_rounds_to_cents(self):
        assert cancellation_service.compute_penalty(99.99, 0.4, 0.0, 500.0) == 40.0


def test_free_cancel_inside_window(db, place_order, customer, clock, events):
    order = place_order(450.0)
    clock.advance(10)

    result = order_service.customer_cancel(db, customer.principal, order.id)

    assert result.quote.cancellation_type == CancellationType.FREE
    assert result.quote.penalty == 0
    assert result.quote.refund == 450.0
    assert result.refund_timeline == "3-5 business days"
    assert result.order.status == OrderStatus.CANCELLED.value
    assert result.order.cancellation_type == "free"
    assert result.order.refund_status == "pending"
    assert result.order.can_cancel_free is False
    assert events[-1].kind == "order.cancelled"
    assert events[-1].data == {
        "order_id": str(order.id),
        "cancellation_type": "free",
        "penalty": 0.0,
        "refund": 450.0,
    }

    (bucket,) = cancellation_service.list_analytics(db, None, None)
    assert bucket.day == T0.date()
    assert bucket.free_cancellations == 1
    assert bucket.penalty_cancellations == 0


def test_cancel_at_exact_expiry_is_free(db, place_order, customer, clock):
    order = place_order(450.0)
    clock.advance(30)

    result = order_service.customer_cancel(db, customer.principal, order.id)

    assert result.quote.cancellation_type == CancellationType.FREE


def test_expiry_committed_first_then_cancel_at_expiry_pays_penalty(db, place_order, customer, clock, events):
    order = place_order(450.0)
    clock.advance(30)
    assert order_service.expire_countdown(db, order.id)

    result = order_service.customer_cancel(db, customer.principal, order.id)

    assert result.quote.cancellation_type == CancellationType.PENALTY
    assert result.quote.penalty == 180.0
    assert result.quote.refund == 270.0
    assert result.order.status == OrderStatus.CANCELLED.value
    assert [e.kind for e in events] == [
        "order.created",
        "countdown.expired",
        "order.sent_to_chef",
        "order.cancelled",
    ]


def test_cancel_after_chef_decline_is_rejected(db, place_order, advance, customer, chef):
    order = advance(place_order(450.0), "sent_to_chef")
    order_service.chef_decline(db, chef.principal, order.id, DeclineReason.TOO_BUSY)

    with pytest.raises(InvalidTransition) as exc:
        order_service.customer_cancel(db, customer.principal, order.id)

    assert exc.value.details["current_state"] == OrderStatus.CHEF_DECLINED.value
    db.expire_all()
    declined = order_service.get_order(db, customer.principal, order.id)
    assert declined.status == OrderStatus.CHEF_DECLINED.value
    assert declined.refund_amount == 450.0


def test_penalty_cancel_after_window(db, place_order, customer, clock):
    order = place_order(450.0)
    clock.advance(45)

    result = order_service.customer_cancel(db, customer.principal, order.id)

    assert result.quote.cancellation_type == CancellationType.PENALTY
    assert result.quote.penalty == 180.0
    assert result.quote.refund == 270.0
    assert result.order.penalty_amount == 180.0
    assert result.order.refund_amount == 270.0

    (bucket,) = cancellation_service.list_analytics(db, None, None)
    assert bucket.penalty_cancellations == 1
    assert bucket.total_penalty_collected == 180.0
    assert bucket.avg_seconds_to_cancel == 45.0


def test_min_penalty_floor_applies(db, place_order, customer, clock):
    order = place_order(50.0)
    clock.advance(31)

    result = order_service.customer_cancel(db, customer.principal, order.id)

    assert result.quote.penalty == 20.0
    assert result.quote.refund == 30.0


def test_refund_plus_penalty_equals_total(db, place_order, customer, clock):
    for total in (10.0, 37.5, 450.0, 1999.99):
        order = place_order(total)
        clock.advance(60)
        result = order_service.customer_cancel(db, customer.principal, order.id)
        assert result.quote.penalty + result.quote.refund == pytest.approx(total)


def test_zero_window_always_penalises(db, place_order, customer, admin):
    cancellation_service.update_policy(db, admin.user_id, free_window_seconds=0)
    order = place_order(450.0)

    assert order.can_cancel_free is False
    result = order_service.customer_cancel(db, customer.principal, order.id)

    assert result.quote.cancellation_type == CancellationType.PENALTY
    assert result.quote.penalty == 180.0


def test_cancel_after_customer_confirm_pays_penalty(db, place_order, customer, clock):
    order = place_order(450.0)
    order_service.confirm_order(db, customer.principal, order.id)

    result = order_service.customer_cancel(db, customer.principal, order.id)

    assert result.quote.cancellation_type == CancellationType.PENALTY


def test_cancel_from_chef_accepted_uses_same_penalty(db, place_order, advance, customer):
    order = advance(place_order(450.0), "chef_accepted")

    result = order_service.customer_cancel(
        db, customer.principal, order.id, CancellationReason.CUSTOMER_REQUEST, "Changed plans"
    )

    assert result.quote.penalty == 180.0
    assert result.order.cancellation_notes == "Changed plans"


def test_cancel_once_preparing_is_rejected(db, place_order, advance, customer):
    order = advance(place_order(), "preparing")

    with pytest.raises(InvalidTransition) as exc:
        order_service.customer_cancel(db, customer.principal, order.id)

    assert exc.value.current_state == OrderStatus.PREPARING.value


def test_only_the_ordering_customer_cancels(db, place_order, chef):
    order = place_order()

    with pytest.raises(Forbidden):
        order_service.customer_cancel(db, chef.principal, order.id)


def test_admin_may_cancel_on_behalf(db, place_order, admin):
    order = place_order()

    result = order_service.customer_cancel(db, admin.principal, order.id)

    assert result.order.cancelled_by == admin.user_id


def test_chef_decline_after_expiry_refunds_in_full(db, place_order, chef, clock, events):
    order = place_order(450.0)
    clock.advance(60)
    order_service.expire_countdown(db, order.id)

    order = order_service.chef_decline(db, chef.principal, order.id, DeclineReason.OUT_OF_INGREDIENTS)

    assert order.status == OrderStatus.CHEF_DECLINED.value
    assert order.penalty_amount == 0
    assert order.refund_amount == 450.0
    kinds = [e.kind for e in events]
    assert kinds.count("order.chef_declined") == 1
    assert "order.cancelled" not in kinds
    # Declines are not customer cancellations.
    (bucket,) = cancellation_service.list_analytics(db, None, None)
    assert bucket.total_cancellations == 0


def test_cancellation_info_before_and_after_expiry(db, place_order, clock):
    order = place_order(450.0)
    clock.advance(12)

    info = order_service.cancellation_info(order)
    assert info["can_cancel"] is True
    assert info["is_free_cancellation"] is True
    assert info["time_since_placed"] == 12.0
    assert info["free_cancellation_window"] == 30
    assert info["penalty_info"]["penalty_amount"] == 0.0
    assert info["penalty_info"]["refund_amount"] == 450.0

    clock.advance(30)
    info = order_service.cancellation_info(order)
    assert info["is_free_cancellation"] is False
    assert info["penalty_info"]["penalty_amount"] == 180.0
    assert info["penalty_info"]["refund_amount"] == 270.0


def test_countdown_status_reports_progress(db, place_order, clock):
    order = place_order(450.0)
    clock.advance(15)

    status = order_service.countdown_status(order)

    assert status["is_active"] is True
    assert status["time_remaining"] == 15.0
    assert status["progress_pct"] == 50.0
    assert status["penalty_after_expiry"] == 180.0

    clock.advance(20)
    status = order_service.countdown_status(order)
    assert status["is_active"] is False
    assert status["time_remaining"] == 0.0
    assert status["progress_pct"] == 100.0
