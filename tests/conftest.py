"""Pytest fixtures: file-backed SQLite database per test, mocked courier APIs."""
import hashlib
import hmac
import itertools
import json
import os
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite://")

import httpx
import jwt
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from fulfillment.config import Settings, get_settings
from fulfillment.database import Base, enable_sqlite_savepoints, get_db
from fulfillment.delivery import DeliveryClient, DeliveryUpdate, DispatchResult, DeliveryProviderError
from fulfillment.delivery.uber import UberDirectClient
from fulfillment.deps import get_delivery_client_factory
from fulfillment.main import app

# Import all models so they register with Base.metadata
from fulfillment.models.user import UserProfile                       # noqa: F401
from fulfillment.models.order import DeliveryProvider, Order, OrderItem, OrderStatus, PaymentStatus  # noqa: F401
from fulfillment.models.points import PointsLedgerEntry               # noqa: F401
from fulfillment.models.notification import Notification             # noqa: F401
from fulfillment.models.event import Event, EventReservation          # noqa: F401
from fulfillment.models.payment_webhook_event import PaymentWebhookEvent  # noqa: F401

JWT_SECRET = "test-jwt-secret-at-least-thirty-two-bytes"
STRIPE_SECRET = "whsec_test_secret"
SCHEDULER_TOKEN = "scheduler-test-token"
DOORDASH_AUTH = "Basic dd-webhook-token"

_order_numbers = itertools.count(1001)
_event_ids = itertools.count(1)


@pytest.fixture(scope="function")
def db_engine(tmp_path):
    """Create a fresh SQLite engine for each test."""
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})

    # Enable WAL mode for better concurrency
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(db_engine):
    """Yield a database session for arranging and inspecting state."""
    TestingSession = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=db_engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def test_settings():
    return Settings(
        DATABASE_URL="sqlite://",
        AUTH_JWT_SECRET=JWT_SECRET,
        SCHEDULER_TOKEN=SCHEDULER_TOKEN,
        STRIPE_WEBHOOK_SECRET=STRIPE_SECRET,
        CANCELLATION_GRACE_MINUTES=5,
        DISPATCH_DELAY_MINUTES=10,
        DELIVERY_PROVIDER="uber",
        UBER_CLIENT_ID="uber-client",
        UBER_CLIENT_SECRET="uber-secret",
        UBER_CUSTOMER_ID="cust_123",
        UBER_WEBHOOK_SIGNING_KEY="",
        DOORDASH_DEVELOPER_ID="dev_1",
        DOORDASH_KEY_ID="key_1",
        DOORDASH_SIGNING_SECRET="c2lnbmluZy1zZWNyZXQ",
        DOORDASH_WEBHOOK_AUTH_TOKEN=DOORDASH_AUTH,
        RESEND_API_KEY="",
        ADMIN_NOTIFICATION_EMAILS="kitchen@example.com",
    )


class FakeDeliveryClient(DeliveryClient):
    """Records dispatch requests instead of calling a courier API."""

    provider = DeliveryProvider.uber
    status_map = UberDirectClient.status_map

    def __init__(self, fail: bool = False):
        super().__init__(timeout=1.0)
        self.fail = fail
        self.requests = []

    def create_delivery(self, request):
        self.requests.append(request)
        if self.fail:
            raise DeliveryProviderError("uber API error 503: unavailable")
        return DispatchResult(
            delivery_id=f"del_{request.order_id}",
            status="pending",
            tracking_url=f"https://track.example.com/{request.order_id}",
        )

    def verify_webhook(self, headers, body):
        return None

    def parse_webhook(self, payload):
        return DeliveryUpdate(**payload)


@pytest.fixture
def fake_courier():
    return FakeDeliveryClient()


@pytest.fixture
def courier_routes():
    """(method, path) -> handler for the mocked courier APIs."""
    return {}


@pytest.fixture
def courier_http(courier_routes):
    """httpx client served by ``courier_routes``; unknown routes fail loudly."""
    routes = courier_routes

    def handler(request: httpx.Request) -> httpx.Response:
        key = (request.method, request.url.path)
        if key not in routes:
            return httpx.Response(599, json={"error": f"unexpected {request.method} {request.url}"})
        return routes[key](request)

    http = httpx.Client(transport=httpx.MockTransport(handler))
    yield http
    http.close()


@pytest.fixture(scope="function")
def client(db_engine, test_settings, courier_http):
    """FastAPI TestClient with database, settings and couriers overridden."""
    from fulfillment.delivery import get_client

    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)

    def _override_get_db():
        session = TestingSession()
        try:
            yield session
        finally:
            session.close()

    def _override_factory():
        return lambda provider: get_client(provider, test_settings, http=courier_http)

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_delivery_client_factory] = _override_factory
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers: arrange rows directly, sign requests, re-read committed state
# ---------------------------------------------------------------------------
def refetch(db, model, pk):
    """End the session's snapshot and load the committed row."""
    db.rollback()
    db.expire_all()
    return db.get(model, pk)


def create_test_user(db, name: str = "Test User", email: str = "user@example.com",
                     phone: str = "+13105550123", points: int = 0) -> UserProfile:
    db.rollback()
    user = UserProfile(name=name, email=email, phone=phone, points=points)
    db.add(user)
    db.commit()
    return user


def create_test_order(db, user_id: str, delivery: bool = True, points_earned: int = 25,
                      payment_status: PaymentStatus = PaymentStatus.pending,
                      status: OrderStatus = OrderStatus.pending, **fields) -> Order:
    db.rollback()
    order = Order(
        order_number=next(_order_numbers),
        user_id=user_id,
        total=Decimal("24.50"),
        currency="usd",
        points_earned=points_earned,
        payment_status=payment_status,
        status=status,
        delivery_address="456 Sunset Blvd, Los Angeles, CA 90028" if delivery else None,
        pickup_notes="Leave at the door" if delivery else "Pickup at 6pm",
        **fields,
    )
    order.items = [
        OrderItem(name="Jollof Rice", unit_price=Decimal("12.25"), quantity=2),
    ]
    db.add(order)
    db.commit()
    return order


def create_paid_delivery_order(db, user_id: str, scheduled_at: datetime, **fields) -> Order:
    """A delivery order as the payment webhook leaves it: paid, preparing, scheduled."""
    fields.setdefault("payment_status", PaymentStatus.succeeded)
    fields.setdefault("status", OrderStatus.preparing)
    fields.setdefault("cancellation_deadline", scheduled_at - timedelta(minutes=5))
    return create_test_order(db, user_id, delivery_scheduled_at=scheduled_at, **fields)


def create_test_event(db, capacity: int = 10, available_spots: int = None, title: str = "Supper Club") -> Event:
    db.rollback()
    ev = Event(
        title=title,
        starts_at=datetime.now(timezone.utc) + timedelta(days=7),
        capacity=capacity,
        available_spots=capacity if available_spots is None else available_spots,
    )
    db.add(ev)
    db.commit()
    return ev


def make_token(user_id: str, secret: str = JWT_SECRET, audience: str = "authenticated",
               expires_in: int = 3600) -> str:
    now = int(time.time())
    return jwt.encode({"sub": user_id, "aud": audience, "iat": now, "exp": now + expires_in},
                      secret, algorithm="HS256")


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


def stripe_event(event_type: str, order_id: str = None, event_id: str = None, **intent_fields) -> dict:
    intent = {"id": "pi_test_123", "object": "payment_intent", **intent_fields}
    if order_id is not None:
        intent["metadata"] = {"orderId": order_id}
    return {
        "id": event_id or f"evt_test_{next(_event_ids)}",
        "type": event_type,
        "data": {"object": intent},
    }


def sign_stripe_payload(payload: str, secret: str = STRIPE_SECRET, timestamp: int = None) -> str:
    """Build a ``Stripe-Signature`` header the way Stripe does."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def post_stripe_event(client: TestClient, event: dict, secret: str = STRIPE_SECRET):
    payload = json.dumps(event)
    return client.post(
        "/api/webhooks/stripe",
        content=payload,
        headers={"Stripe-Signature": sign_stripe_payload(payload, secret), "Content-Type": "application/json"},
    )
