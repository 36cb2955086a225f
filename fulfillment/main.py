"""FastAPI application entry point."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fulfillment.config import settings
from fulfillment.database import Base, engine

# Import routers
from fulfillment.routers import (
    delivery_webhooks, dispatch, notifications, orders, payment_webhooks, points, reservations,
)

# Import all models so Base.metadata knows about them
from fulfillment.models.user import UserProfile                      # noqa: F401
from fulfillment.models.order import Order, OrderItem                # noqa: F401
from fulfillment.models.points import PointsLedgerEntry              # noqa: F401
from fulfillment.models.notification import Notification            # noqa: F401
from fulfillment.models.event import Event, EventReservation         # noqa: F401
from fulfillment.models.payment_webhook_event import PaymentWebhookEvent  # noqa: F401

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Order Fulfillment",
    description="Payment, delivery dispatch and tracking, reward points and event reservations for a restaurant",
    version="0.1.0",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(payment_webhooks.router, prefix="/api/webhooks", tags=["Webhooks"])
app.include_router(delivery_webhooks.router, prefix="/api/webhooks", tags=["Webhooks"])
app.include_router(dispatch.router, prefix="/api/dispatch", tags=["Dispatch"])
app.include_router(orders.router, prefix="/api/orders", tags=["Orders"])
app.include_router(reservations.router, prefix="/api/reservations", tags=["Reservations"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["Notifications"])
app.include_router(points.router, prefix="/api/points", tags=["Points"])


@app.on_event("startup")
def on_startup():
    """Create database tables on startup (for SQLite dev mode)."""
    if settings.DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
    for provider, keys in settings.missing_provider_credentials().items():
        level = logging.WARNING if provider == settings.DELIVERY_PROVIDER else logging.DEBUG
        logger.log(level, "%s credentials missing: %s", provider, ", ".join(keys))
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.warning("STRIPE_WEBHOOK_SECRET is not set; payment webhooks will be rejected")


@app.get("/api/health")
def health_check():
    return {"status": "ok"}
