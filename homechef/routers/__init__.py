"""API routers."""

from homechef.routers.admin import router as admin_router
from homechef.routers.delivery import router as delivery_router
from homechef.routers.orders import router as orders_router
from homechef.routers.payments import router as payments_router
from homechef.routers.webhooks import router as webhooks_router
from homechef.routers.websocket import router as websocket_router

__all__ = [
    "admin_router",
    "delivery_router",
    "orders_router",
    "payments_router",
    "webhooks_router",
    "websocket_router",
]
