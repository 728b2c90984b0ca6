"""
Test configuration and fixtures.

Provides:
- A fresh SQLite database per test (SessionLocal rebound to it)
- A FrozenClock installed process-wide
- Bearer tokens per marketplace role
- HTTPX AsyncClient over the ASGI app
- A subscriber capturing every published OrderEvent
"""
import os
import tempfile
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncGenerator, Generator

from cryptography.fernet import Fernet

# Settings are read once at import; configure the environment first.
_BOOTSTRAP_DIR = tempfile.mkdtemp(prefix="homechef-tests-")
os.environ["DB_URL"] = f"sqlite+pysqlite:///{_BOOTSTRAP_DIR}/bootstrap.db"
os.environ["WEBHOOK_SECRET_KEY"] = Fernet.generate_key().decode()
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["PAYMENT_CALLBACK_SECRET"] = "test-payment-secret"
os.environ["TESTING"] = "1"
os.environ["ENV"] = "test"
# Flat pricing keeps totals equal to the item subtotal.
os.environ["DELIVERY_FEE"] = "0"
os.environ["TAX_RATE"] = "0"

import pytest
import httpx
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from homechef.core.clock import FrozenClock, set_clock
from homechef.core.events import event_bus
from homechef.core.security import create_access_token
from homechef.db.base import Base
from homechef.db.enums import Role
from homechef.db.session import SessionLocal, build_engine
from homechef.db.session import engine as default_engine
from homechef.main import app
from homechef.schemas.auth import Principal
from homechef.services import collaborators

T0 = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine(tmp_path):
    """
    File-backed SQLite engine per test.

    A file (not :memory:) so dispatcher threads and request handlers see the
    same data through their own connections.
    """
    test_engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'homechef.db'}")
    Base.metadata.create_all(test_engine)
    SessionLocal.configure(bind=test_engine)
    yield test_engine
    SessionLocal.configure(bind=default_engine)
    test_engine.dispose()


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    session = SessionLocal()
    yield session
    session.close()


# =============================================================================
# Clock and event capture
# =============================================================================

@pytest.fixture(autouse=True)
def clock() -> Generator[FrozenClock, None, None]:
    frozen = FrozenClock(T0)
    previous = set_clock(frozen)
    yield frozen
    set_clock(previous)


@pytest.fixture(scope="function")
def events() -> Generator[list, None, None]:
    """Every OrderEvent published during the test, in publish order."""
    captured: list = []
    event_bus.subscribe(captured.append)
    yield captured
    event_bus.unsubscribe(captured.append)


@pytest.fixture(autouse=True)
def default_collaborators():
    previous_gateway = collaborators.set_payment_gateway(collaborators.AcceptingPaymentGateway())
    previous_directory = collaborators.set_chef_directory(collaborators.AcceptingChefDirectory())
    yield
    collaborators.set_payment_gateway(previous_gateway)
    collaborators.set_chef_directory(previous_directory)


# =============================================================================
# Auth Fixtures
# =============================================================================

@dataclass
class Actor:
    """A marketplace user with a bearer token the API accepts."""
    user_id: uuid.UUID
    role: Role
    token: str

    @property
    def principal(self) -> Principal:
        return Principal(user_id=self.user_id, role=self.role)

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


def make_actor(role: Role) -> Actor:
    user_id = uuid.uuid4()
    return Actor(user_id=user_id, role=role, token=create_access_token(user_id, role.value))


@pytest.fixture
def customer() -> Actor:
    return make_actor(Role.CUSTOMER)


@pytest.fixture
def chef() -> Actor:
    return make_actor(Role.CHEF)


@pytest.fixture
def courier() -> Actor:
    return make_actor(Role.DELIVERY)


@pytest.fixture
def admin() -> Actor:
    return make_actor(Role.ADMIN)


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(engine) -> AsyncGenerator[AsyncClient, None]:
    """
    AsyncClient over the app without running its lifespan.

    The hub, dispatcher and countdown scheduler stay stopped; tests drive
    them directly.
    """
    async with AsyncClient(
        transport=ASGITransport(app=app, raise_app_exceptions=False),
        base_url="http://test",
    ) as c:
        yield c


# =============================================================================
# Order Fixtures
# =============================================================================

LIFECYCLE = (
    "sent_to_chef",
    "chef_accepted",
    "preparing",
    "ready_for_pickup",
    "assigned_to_delivery",
    "picked_up",
    "out_for_delivery",
    "delivered",
)


@pytest.fixture
def place_order(db, customer, chef):
    """Place an order whose total equals `total` (flat pricing)."""
    from homechef.services import order_service
    from homechef.services.order_service import PlacedItem

    def _place(total: float = 450.0, *, buyer: Actor | None = None):
        return order_service.place_order(
            db,
            (buyer or customer).principal,
            chef_id=chef.user_id,
            items=[PlacedItem(dish_id="biryani", dish_name="Biryani", quantity=1, unit_price=total)],
            delivery_address="12 Lake Road",
            payment_id=f"pay_{uuid.uuid4().hex[:12]}",
            payment_method="card",
        )

    return _place


@pytest.fixture
def advance(db, customer, chef, courier):
    """Walk an order forward through the lifecycle until it reaches `target`."""
    from homechef.db.enums import OrderStatus
    from homechef.services import order_service

    def _step(order_id, status: str):
        if status == "sent_to_chef":
            return order_service.confirm_order(db, customer.principal, order_id)
        if status == "chef_accepted":
            return order_service.chef_accept(db, chef.principal, order_id, 30)
        if status in ("preparing", "ready_for_pickup"):
            return order_service.update_status(db, chef.principal, order_id, OrderStatus(status))
        if status == "assigned_to_delivery":
            return order_service.accept_delivery(db, courier.principal, order_id)
        return order_service.update_status(
            db,
            courier.principal,
            order_id,
            OrderStatus(status),
            proof="photo://front-door" if status == "delivered" else None,
        )

    def _advance(order, target: str):
        start = LIFECYCLE.index(order.status) + 1 if order.status in LIFECYCLE else 0
        for status in LIFECYCLE[start : LIFECYCLE.index(target) + 1]:
            order = _step(order.id, status)
        return order

    return _advance


# =============================================================================
# Webhook Fixtures
# =============================================================================

RECEIVER_URL = "https://hooks.example.com/homechef"


class Receiver:
    """
    Programmable webhook receiver used as an httpx.MockTransport handler.

    Queue outcomes with `responses`: an int status code, or an httpx
    exception class to simulate a transport failure. Unqueued calls get 200.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.responses: list = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses.pop(0) if self.responses else 200
        if isinstance(outcome, type) and issubclass(outcome, Exception):
            raise outcome("receiver unreachable", request=request)
        return httpx.Response(outcome, text="ok" if outcome < 300 else "receiver error")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def receiver() -> Receiver:
    return Receiver()


@pytest.fixture
def integrator() -> Actor:
    """A chef wiring their kitchen display to order webhooks."""
    return make_actor(Role.CHEF)


@pytest.fixture
def make_webhook(db, integrator):
    """Create an endpoint owned by `integrator`; returns (endpoint, secret)."""
    from homechef.services import webhook_service

    def _make(events=("order.created",), *, owner: Actor | None = None, **fields):
        return webhook_service.create_endpoint(
            db,
            (owner or integrator).user_id,
            url=fields.pop("url", RECEIVER_URL),
            events=list(events),
            **fields,
        )

    return _make
