"""Order lifecycle enums."""

from enum import Enum


class OrderStatus(str, Enum):
    """Order states, in lifecycle order."""

    PAYMENT_CONFIRMED = "payment_confirmed"
    SENT_TO_CHEF = "sent_to_chef"
    CHEF_ACCEPTED = "chef_accepted"
    CHEF_DECLINED = "chef_declined"
    PREPARING = "preparing"
    READY_FOR_PICKUP = "ready_for_pickup"
    ASSIGNED_TO_DELIVERY = "assigned_to_delivery"
    PICKED_UP = "picked_up"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    s.value for s in (OrderStatus.CHEF_DECLINED, OrderStatus.DELIVERED, OrderStatus.CANCELLED)
)

# States from which a customer may still cancel.
CANCELLABLE_STATUSES = frozenset(
    s.value
    for s in (OrderStatus.PAYMENT_CONFIRMED, OrderStatus.SENT_TO_CHEF, OrderStatus.CHEF_ACCEPTED)
)

# States in which the free-cancellation countdown is meaningful.
COUNTDOWN_STATUSES = frozenset(
    s.value for s in (OrderStatus.PAYMENT_CONFIRMED, OrderStatus.SENT_TO_CHEF)
)

# Chef acceptance and everything after it, delivered included.
TIPPABLE_STATUSES = frozenset(
    s.value
    for s in (
        OrderStatus.CHEF_ACCEPTED,
        OrderStatus.PREPARING,
        OrderStatus.READY_FOR_PICKUP,
        OrderStatus.ASSIGNED_TO_DELIVERY,
        OrderStatus.PICKED_UP,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.DELIVERED,
    )
)


class CancellationReason(str, Enum):
    CUSTOMER_REQUEST = "customer_request"
    CHEF_UNAVAILABLE = "chef_unavailable"
    PAYMENT_FAILED = "payment_failed"
    SYSTEM_ERROR = "system_error"


class CancellationType(str, Enum):
    FREE = "free"
    PENALTY = "penalty"


class DeclineReason(str, Enum):
    UNAVAILABLE = "unavailable"
    OUT_OF_INGREDIENTS = "out_of_ingredients"
    TOO_BUSY = "too_busy"
    TECHNICAL_ISSUE = "technical_issue"


class RefundStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"


class PaymentStatus(str, Enum):
    AUTHORIZED = "authorized"
    COMPLETED = "completed"
    FAILED = "failed"


class TipRecipient(str, Enum):
    CHEF = "chef"
    DELIVERY = "delivery"


class TipStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
