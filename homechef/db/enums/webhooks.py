"""Webhook event catalogue and delivery statuses."""

from enum import Enum


class WebhookEvent(str, Enum):
    """Events subscribers can register for (stable wire names)."""

    ORDER_CREATED = "order.created"
    ORDER_SENT_TO_CHEF = "order.sent_to_chef"
    ORDER_CHEF_ACCEPTED = "order.chef_accepted"
    ORDER_CHEF_DECLINED = "order.chef_declined"
    ORDER_STATUS_CHANGED = "order.status_changed"
    ORDER_CANCELLED = "order.cancelled"
    ORDER_DELIVERED = "order.delivered"
    PAYMENT_SUCCESS = "payment.success"
    PAYMENT_FAILED = "payment.failed"
    TIP_RECEIVED = "tip.received"
    DELIVERY_ASSIGNED = "delivery.assigned"
    COUNTDOWN_EXPIRED = "countdown.expired"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


# Sent by test-fire only; never subscribable.
TEST_EVENT = "webhook.test"

EVENT_CATALOGUE: dict[WebhookEvent, tuple[str, tuple[str, ...]]] = {
    WebhookEvent.ORDER_CREATED: (
        "An order was placed and its free-cancellation countdown started",
        ("order_id", "customer_id", "chef_id", "total_amount", "countdown_expiry"),
    ),
    WebhookEvent.ORDER_SENT_TO_CHEF: (
        "The order left the free-cancellation window and was sent to the chef",
        ("order_id", "chef_id"),
    ),
    WebhookEvent.ORDER_CHEF_ACCEPTED: (
        "The chef accepted the order",
        ("order_id", "estimated_prep_time"),
    ),
    WebhookEvent.ORDER_CHEF_DECLINED: (
        "The chef declined the order; the customer is fully refunded",
        ("order_id", "reason"),
    ),
    WebhookEvent.ORDER_STATUS_CHANGED: (
        "The order moved between preparation or delivery states",
        ("order_id", "from", "to", "at"),
    ),
    WebhookEvent.ORDER_CANCELLED: (
        "The customer cancelled the order",
        ("order_id", "cancellation_type", "penalty", "refund"),
    ),
    WebhookEvent.ORDER_DELIVERED: (
        "The order was delivered",
        ("order_id", "delivered_at"),
    ),
    WebhookEvent.PAYMENT_SUCCESS: (
        "The payment provider confirmed a payment",
        ("payment_id", "order_id", "amount"),
    ),
    WebhookEvent.PAYMENT_FAILED: (
        "The payment provider reported a failed payment",
        ("payment_id", "order_id", "error_message"),
    ),
    WebhookEvent.TIP_RECEIVED: (
        "A tip was settled to its recipient",
        ("tip_id", "order_id", "recipient_id", "amount"),
    ),
    WebhookEvent.DELIVERY_ASSIGNED: (
        "A delivery partner accepted the order",
        ("order_id", "delivery_id"),
    ),
    WebhookEvent.COUNTDOWN_EXPIRED: (
        "The free-cancellation window of the order ended",
        ("order_id",),
    ),
}


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
