"""SQLAlchemy ORM models."""

from homechef.db.models.orders import (
    CancellationAnalytics,
    CancellationPolicy,
    Order,
    OrderItem,
    OrderStatusHistory,
    Tip,
)
from homechef.db.models.webhooks import WebhookDelivery, WebhookEndpoint

__all__ = [
    "CancellationAnalytics",
    "CancellationPolicy",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "Tip",
    "WebhookDelivery",
    "WebhookEndpoint",
]
