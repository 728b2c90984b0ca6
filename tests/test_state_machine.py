"""Order lifecycle state machine: transitions, guards, history and event ordering."""

import uuid

import pytest

from homechef.core.errors import Forbidden, InvalidRequest, InvalidTransition, NotFound
from homechef.db.enums import DeclineReason, OrderStatus, Role
from homechef.services import order_service
from homechef.services.order_service import PlacedItem

from conftest import LIFECYCLE, make_actor


def test_place_order_starts_countdown(db, place_order, customer, chef, clock, events):
    order = place_order(450.0)

    assert order.status == OrderStatus.PAYMENT_CONFIRMED.value
    assert order.customer_id == customer.user_id
    assert order.chef_id == chef.user_id
    assert order.total_amount == 450.0
    assert order.can_cancel_free is True
    assert (order.countdown_expiry - clock.now()).total_seconds() == 30
    assert order.event_seq == 1
    assert [e.kind for e in events] == ["order.created"]
    assert events[0].data["countdown_expiry"] == order.countdown_expiry.isoformat()


def test_place_order_prices_with_fee_and_tax(db, place_order, monkeypatch):
    from homechef.core.config import settings

    monkeypatch.setattr(settings, "DELIVERY_FEE", 50.0)
    monkeypatch.setattr(settings, "TAX_RATE", 0.05)

    order = place_order(400.0)

    assert order.subtotal == 400.0
    assert order.delivery_fee == 50.0
    assert order.tax_amount == 20.0
    assert order.total_amount == 470.0


def test_place_order_requires_items(db, customer, chef):
    with pytest.raises(InvalidRequest) as exc:
        order_service.place_order(db, customer.principal, chef_id=chef.user_id, items=[])
    assert "items" in exc.value.details


def test_place_order_rejects_unavailable_chef(db, customer, chef):
    from homechef.services import collaborators

    class ClosedKitchen:
        def is_available(self, chef_id):
            return False

    collaborators.set_chef_directory(ClosedKitchen())
    with pytest.raises(InvalidRequest) as exc:
        order_service.place_order(
            db,
            customer.principal,
            chef_id=chef.user_id,
            items=[PlacedItem(dish_id="dal", quantity=1, unit_price=120.0)],
        )
    assert exc.value.details == {"chef_id": "chef unavailable"}


def test_place_order_rejects_unauthorised_payment(db, customer, chef):
    from homechef.services import collaborators

    class DecliningGateway:
        def is_authorized(self, payment_id, amount):
            return False

    collaborators.set_payment_gateway(DecliningGateway())
    with pytest.raises(InvalidRequest):
        order_service.place_order(
            db,
            customer.principal,
            chef_id=chef.user_id,
            items=[PlacedItem(dish_id="dal", quantity=1, unit_price=120.0)],
            payment_id="pay_declined",
        )


def test_happy_path_reaches_delivered(db, place_order, advance, courier, events):
    order = place_order()
    order = advance(order, "delivered")

    assert order.status == OrderStatus.DELIVERED.value
    assert order.delivery_partner_id == courier.user_id
    assert order.delivery_proof == "photo://front-door"
    assert order.payment_status == "completed"
    assert order.delivered_at is not None
    assert [e.kind for e in events] == [
        "order.created",
        "order.sent_to_chef",
        "order.chef_accepted",
        "order.status_changed",
        "order.status_changed",
        "delivery.assigned",
        "order.status_changed",
        "order.status_changed",
        "order.delivered",
    ]


def test_event_sequence_is_gapless_per_order(db, place_order, advance, events):
    first = place_order()
    second = place_order()
    advance(first, "preparing")
    advance(second, "chef_accepted")

    for order in (first, second):
        sequences = [e.sequence for e in events if e.order_id == order.id]
        assert sequences == list(range(1, len(sequences) + 1))


def test_history_is_linear(db, place_order, advance):
    order = advance(place_order(), "out_for_delivery")

    history = order_service.status_history(db, order.id)

    assert [h.sequence for h in history] == list(range(1, len(history) + 1))
    assert history[0].from_status is None
    assert history[0].status == OrderStatus.PAYMENT_CONFIRMED.value
    for prev, entry in zip(history, history[1:]):
        assert entry.from_status == prev.status
    assert history[-1].status == order.status


def test_update_status_records_location(db, place_order, advance, courier):
    order = advance(place_order(), "picked_up")

    order_service.update_status(
        db,
        courier.principal,
        order.id,
        OrderStatus.OUT_FOR_DELIVERY,
        message="On the way",
        location={"latitude": 12.97, "longitude": 77.59},
    )

    entry = order_service.status_history(db, order.id)[-1]
    assert entry.message == "On the way"
    assert entry.location == {"latitude": 12.97, "longitude": 77.59}


def test_chef_accept_sets_estimates(db, place_order, advance, chef, clock):
    order = advance(place_order(), "sent_to_chef")

    order = order_service.chef_accept(db, chef.principal, order.id, 25, "On it")

    assert order.status == OrderStatus.CHEF_ACCEPTED.value
    assert order.estimated_prep_time == 25
    assert order.chef_accepted_at == clock.now()
    assert (order.estimated_delivery_time - clock.now()).total_seconds() == 55 * 60


def test_chef_accept_after_response_window(db, place_order, advance, chef, clock):
    order = advance(place_order(), "sent_to_chef")
    clock.advance(901)

    with pytest.raises(InvalidTransition) as exc:
        order_service.chef_accept(db, chef.principal, order.id, 30)

    assert exc.value.current_state == OrderStatus.SENT_TO_CHEF.value
    assert "response_deadline" in exc.value.details


def test_chef_decline_is_terminal_full_refund(db, place_order, advance, chef, events):
    order = advance(place_order(450.0), "sent_to_chef")

    order = order_service.chef_decline(db, chef.principal, order.id, DeclineReason.TOO_BUSY)

    assert order.status == OrderStatus.CHEF_DECLINED.value
    assert order.decline_reason == "too_busy"
    assert order.penalty_amount == 0
    assert order.refund_amount == 450.0
    assert order.refund_status == "pending"
    assert events[-1].kind == "order.chef_declined"


def test_accept_before_sent_to_chef_is_rejected(db, place_order, chef):
    order = place_order()

    with pytest.raises(InvalidTransition) as exc:
        order_service.chef_accept(db, chef.principal, order.id, 30)

    assert exc.value.current_state == OrderStatus.PAYMENT_CONFIRMED.value


def test_skipping_a_state_is_rejected(db, place_order, advance, chef):
    order = advance(place_order(), "chef_accepted")

    with pytest.raises(InvalidTransition) as exc:
        order_service.update_status(db, chef.principal, order.id, OrderStatus.READY_FOR_PICKUP)

    assert exc.value.current_state == OrderStatus.CHEF_ACCEPTED.value


@pytest.mark.parametrize("terminal", ["delivered", "cancelled", "chef_declined"])
def test_terminal_states_reject_commands(db, place_order, advance, customer, chef, terminal):
    order = place_order()
    if terminal == "delivered":
        order = advance(order, "delivered")
    elif terminal == "cancelled":
        order = order_service.customer_cancel(db, customer.principal, order.id).order
    else:
        order = advance(order, "sent_to_chef")
        order = order_service.chef_decline(db, chef.principal, order.id, DeclineReason.UNAVAILABLE)

    with pytest.raises(InvalidTransition) as exc:
        order_service.customer_cancel(db, customer.principal, order.id)
    assert exc.value.current_state == terminal
    assert "already" in exc.value.message

    with pytest.raises(InvalidTransition):
        order_service.chef_accept(db, chef.principal, order.id, 30)


def test_status_update_cannot_target_entry_states(db, place_order, chef):
    order = place_order()

    with pytest.raises(InvalidRequest) as exc:
        order_service.update_status(db, chef.principal, order.id, OrderStatus.CANCELLED)

    assert "status" in exc.value.details


def test_delivered_requires_proof(db, place_order, advance, courier):
    order = advance(place_order(), "out_for_delivery")

    with pytest.raises(InvalidRequest) as exc:
        order_service.update_status(db, courier.principal, order.id, OrderStatus.DELIVERED)

    assert exc.value.details == {"proof": "required for delivered"}


def test_wrong_role_cannot_move_order(db, place_order, advance, customer, courier):
    order = advance(place_order(), "chef_accepted")

    with pytest.raises(Forbidden):
        order_service.update_status(db, courier.principal, order.id, OrderStatus.PREPARING)
    with pytest.raises(Forbidden):
        order_service.update_status(db, customer.principal, order.id, OrderStatus.PREPARING)


def test_other_chef_is_not_a_participant(db, place_order, advance):
    order = advance(place_order(), "sent_to_chef")
    stranger = make_actor(Role.CHEF)

    with pytest.raises(Forbidden):
        order_service.chef_accept(db, stranger.principal, order.id, 30)


def test_only_assigned_partner_moves_delivery(db, place_order, advance):
    order = advance(place_order(), "assigned_to_delivery")
    other_partner = make_actor(Role.DELIVERY)

    with pytest.raises(Forbidden):
        order_service.update_status(db, other_partner.principal, order.id, OrderStatus.PICKED_UP)


def test_second_partner_cannot_take_assigned_order(db, place_order, advance):
    order = advance(place_order(), "assigned_to_delivery")
    late_partner = make_actor(Role.DELIVERY)

    with pytest.raises(InvalidTransition) as exc:
        order_service.accept_delivery(db, late_partner.principal, order.id)

    assert exc.value.current_state == OrderStatus.ASSIGNED_TO_DELIVERY.value


def test_available_for_delivery_lists_ready_orders(db, place_order, advance):
    ready = advance(place_order(), "ready_for_pickup")
    advance(place_order(), "preparing")

    available = order_service.list_available_for_delivery(db)

    assert [o.id for o in available] == [ready.id]


def test_unknown_order(db, customer):
    with pytest.raises(NotFound):
        order_service.confirm_order(db, customer.principal, uuid.uuid4())


def test_list_orders_scoped_to_participant(db, place_order, customer, admin):
    mine = place_order()
    someone_else = make_actor(Role.CUSTOMER)
    place_order(buyer=someone_else)

    orders, total = order_service.list_orders(db, customer.principal)
    assert total == 1
    assert orders[0].id == mine.id

    _, admin_total = order_service.list_orders(db, admin.principal)
    assert admin_total == 2


def test_lifecycle_order_matches_enum():
    values = [s.value for s in OrderStatus]
    assert [values.index(s) for s in LIFECYCLE] == sorted(values.index(s) for s in LIFECYCLE)
