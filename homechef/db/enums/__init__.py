"""Enum definitions for application constants."""

from homechef.db.enums.auth import Role
from homechef.db.enums.orders import (
    CANCELLABLE_STATUSES,
    COUNTDOWN_STATUSES,
    TERMINAL_STATUSES,
    TIPPABLE_STATUSES,
    CancellationReason,
    CancellationType,
    DeclineReason,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
    TipRecipient,
    TipStatus,
)
from homechef.db.enums.webhooks import (
    EVENT_CATALOGUE,
    TEST_EVENT,
    DeliveryStatus,
    WebhookEvent,
)

__all__ = [
    "CANCELLABLE_STATUSES",
    "COUNTDOWN_STATUSES",
    "TERMINAL_STATUSES",
    "TIPPABLE_STATUSES",
    "CancellationReason",
    "CancellationType",
    "DeclineReason",
    "DeliveryStatus",
    "EVENT_CATALOGUE",
    "OrderStatus",
    "PaymentStatus",
    "RefundStatus",
    "Role",
    "TEST_EVENT",
    "TipRecipient",
    "TipStatus",
    "WebhookEvent",
]
