"""Delivery dispatch sweep.

Invoked on a fixed interval by an external cron. For every paid delivery
order whose preparation delay has elapsed, claim the order by setting
``delivery_triggered_at`` with a compare-and-swap against NULL, call the
courier provider, and record the provider's delivery id. Two overlapping
sweeps can both select the same order, but only one wins the claim. When the
provider call fails the claim is released so the next sweep retries; the
order itself is never marked failed.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from fulfillment.config import Settings
from fulfillment.delivery import (
    DeliveryClient,
    DeliveryProviderError,
    DispatchRequest,
    parse_address,
)
from fulfillment.models.notification import NotificationCategory
from fulfillment.models.order import Order, OrderStatus, PaymentStatus
from fulfillment.models.user import UserProfile
from fulfillment.services import notification_service
from fulfillment.services.concurrency import ColumnSwap

logger = logging.getLogger(__name__)

FALLBACK_PHONE = "+10000000000"


def due_orders(db: Session, now: datetime) -> list[Order]:
    """Orders that are paid, in the kitchen, past their dispatch time and not yet dispatched."""
    return (
        db.query(Order)
        .filter(
            Order.payment_status == PaymentStatus.succeeded,
            Order.status == OrderStatus.preparing,
            Order.delivery_address.isnot(None),
            Order.delivery_scheduled_at.isnot(None),
            Order.delivery_scheduled_at <= now,
            Order.delivery_triggered_at.is_(None),
        )
        .order_by(Order.delivery_scheduled_at)
        .all()
    )


def build_request(db: Session, order: Order, settings: Settings) -> DispatchRequest:
    user = db.query(UserProfile).filter(UserProfile.user_id == order.user_id).first()
    return DispatchRequest(
        order_id=order.order_id,
        order_number=order.order_number,
        order_value_cents=int(Decimal(order.total or 0) * 100),
        pickup_address=parse_address(settings.RESTAURANT_ADDRESS),
        pickup_name=settings.RESTAURANT_NAME,
        pickup_phone=settings.RESTAURANT_PHONE,
        pickup_notes="Order ready for pickup",
        dropoff_address=parse_address(order.delivery_address),
        dropoff_name=(user.name if user and user.name else "Customer"),
        dropoff_phone=(user.phone if user and user.phone else FALLBACK_PHONE),
        dropoff_notes=order.pickup_notes or "",
    )


def dispatch_order(
    db: Session,
    order: Order,
    client: DeliveryClient,
    settings: Settings,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Claim, dispatch and record a single order. Never raises for provider failures."""
    now = now or datetime.now(timezone.utc)
    order_id = order.order_id
    claim = ColumnSwap(
        Order.delivery_triggered_at,
        [
            Order.order_id == order_id,
            Order.external_delivery_id.is_(None),
            Order.payment_status == PaymentStatus.succeeded,
            Order.status == OrderStatus.preparing,
            Order.delivery_address.isnot(None),
        ],
        expected=None,
        new=now,
    )
    if not claim.apply(db):
        triggered = db.query(Order.delivery_triggered_at).filter(Order.order_id == order_id).scalar()
        if triggered is not None:
            logger.info("Order %s already claimed by another sweep, skipping", order_id)
            return {"order_id": order_id, "success": False, "skipped": True, "error": "already dispatched"}
        logger.info("Order %s changed since it was selected, skipping", order_id)
        return {"order_id": order_id, "success": False, "skipped": True, "error": "no longer eligible"}

    try:
        with claim.compensating(db):
            request = build_request(db, order, settings)
            result = client.create_delivery(request)
    except DeliveryProviderError as e:
        logger.error("Failed to trigger delivery for order %s: %s", order_id, e)
        return {"order_id": order_id, "success": False, "error": str(e)}

    db.execute(
        update(Order)
        .where(Order.order_id == order_id)
        .values(
            external_delivery_id=result.delivery_id,
            delivery_provider=client.provider,
            provider_delivery_status=result.status,
            delivery_status=client.normalize_status(result.status),
            tracking_url=result.tracking_url,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    notification_service.emit(
        db, order.user_id,
        title=f"Order #{order.order_number} - Driver Assigned!",
        message="A driver has been assigned to your order. Track your delivery in real-time!",
        category=NotificationCategory.delivery,
        action_url=notification_service.ORDER_HISTORY_URL,
    )
    db.commit()
    logger.info("Delivery %s (%s) triggered for order %s", result.delivery_id, client.provider.value, order_id)
    return {"order_id": order_id, "success": True, "delivery_id": result.delivery_id}


def run_sweep(
    db: Session,
    client: DeliveryClient,
    settings: Settings,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Dispatch every due order; per-order failures are reported, not raised."""
    now = now or datetime.now(timezone.utc)
    orders = due_orders(db, now)
    logger.info("Found %d orders ready for delivery trigger", len(orders))

    results = []
    for order in orders:
        order_id = order.order_id
        try:
            results.append(dispatch_order(db, order, client, settings, now))
        except Exception as e:
            db.rollback()
            logger.exception("Error processing order %s", order_id)
            results.append({"order_id": order_id, "success": False, "error": str(e)})
    succeeded = sum(1 for r in results if r["success"])
    logger.info("Dispatch sweep complete: %d/%d dispatched", succeeded, len(results))
    return {"count": len(orders), "dispatched": succeeded, "results": results}
