"""FastAPI application entry point."""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from homechef.core.config import settings
from homechef.core.errors import StoreUnavailable, error_response, register_exception_handlers
from homechef.core.events import event_bus
from homechef.core.rate_limit import limiter
from homechef.core.structured_logging import build_log_context
from homechef.core.websocket import hub
from homechef.db.session import SessionLocal
from homechef.jobs.countdown import countdown_scheduler
from homechef.jobs.dispatcher import dispatcher
from homechef.routers import (
    admin_router,
    delivery_router,
    orders_router,
    payments_router,
    webhooks_router,
    websocket_router,
)

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,
    )
    logger.info("Sentry initialized for error tracking")


# ============================================================================
# Lifecycle
# ============================================================================

_SUBSCRIBERS = (
    hub.publish_order_event,
    dispatcher.on_event,
    countdown_scheduler.on_event,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the hub, dispatcher and countdown scheduler; stop them in reverse."""
    await hub.start()
    await dispatcher.start()
    for subscriber in _SUBSCRIBERS:
        event_bus.subscribe(subscriber)
    await countdown_scheduler.start()
    logger.info("HomeChef order core %s started", settings.VERSION)
    try:
        yield
    finally:
        await countdown_scheduler.stop()
        for subscriber in _SUBSCRIBERS:
            event_bus.unsubscribe(subscriber)
        await dispatcher.stop()
        await hub.stop()
        logger.info("HomeChef order core stopped")


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="HomeChef Order API",
    description="Order lifecycle engine and outbound event fabric",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
    lifespan=lifespan,
)

app.state.limiter = limiter
register_exception_handlers(app)


@app.middleware("http")
async def request_deadline(request: Request, call_next):
    """Answer StoreUnavailable when a request runs past REQUEST_TIMEOUT_SEC."""
    try:
        return await asyncio.wait_for(call_next(request), timeout=settings.REQUEST_TIMEOUT_SEC)
    except asyncio.TimeoutError:
        logger.warning(
            "Request exceeded %ss deadline",
            settings.REQUEST_TIMEOUT_SEC,
            extra=build_log_context(
                request_id=getattr(request.state, "request_id", None),
                route=request.url.path,
                method=request.method,
            ),
        )
        response = error_response(StoreUnavailable("Request deadline exceeded"))
        response.headers[REQUEST_ID_HEADER] = getattr(request.state, "request_id", "")
        return response


@app.middleware("http")
async def request_id(request: Request, call_next):
    """Attach an X-Request-ID (generated when absent) and echo it back."""
    value = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    request.state.request_id = value
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = value
    return response


# CORS middleware - added last so it wraps everything
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", REQUEST_ID_HEADER],
    expose_headers=[REQUEST_ID_HEADER],
)

# ============================================================================
# Routers
# ============================================================================

app.include_router(orders_router)
app.include_router(delivery_router)
app.include_router(admin_router)
app.include_router(payments_router)
app.include_router(webhooks_router)
app.include_router(websocket_router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and reports live WebSocket connections.
    """
    with SessionLocal() as db:
        db.execute(text("SELECT 1"))
    return {
        "status": "ok",
        "env": settings.ENV,
        "version": settings.VERSION,
        "websocket_connections": hub.connection_count(),
    }
