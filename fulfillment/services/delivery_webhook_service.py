"""Delivery webhook processor: courier callbacks -> order tracking fields.

Provider clients turn their own payloads into a ``DeliveryUpdate`` and map
their status words onto ``DeliveryStatus``. From there one code path applies
the update for every provider:

- unknown delivery ids are acknowledged without touching the database or
  calling the provider back;
- canonical states only move forward, and nothing moves after
  ``delivered`` or ``canceled``;
- the status write is conditional on the state that was read, so a
  duplicate callback racing the original produces one notification;
- ``delivered`` completes the order through the order state machine.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from fulfillment.delivery import DeliveryClient, DeliveryUpdate
from fulfillment.models.notification import NotificationCategory
from fulfillment.models.order import DeliveryStatus, Order, OrderStatus
from fulfillment.services import notification_service
from fulfillment.services.order_state import transition_order

logger = logging.getLogger(__name__)

STATUS_RANK = {
    DeliveryStatus.pending: 0,
    DeliveryStatus.en_route_to_pickup: 1,
    DeliveryStatus.at_pickup: 2,
    DeliveryStatus.en_route_to_dropoff: 3,
    DeliveryStatus.delivered: 4,
    DeliveryStatus.canceled: 4,
}
TERMINAL = (DeliveryStatus.delivered, DeliveryStatus.canceled)

STATUS_COPY = {
    DeliveryStatus.pending: ("Delivery Requested", "We have requested a driver for your order."),
    DeliveryStatus.en_route_to_pickup: ("Driver En Route", "Your driver is on the way to pick up your order!"),
    DeliveryStatus.at_pickup: ("Driver Arrived", "Your driver has arrived at the restaurant to pick up your order."),
    DeliveryStatus.en_route_to_dropoff: ("On the Way", "Your order is on the way! {courier} will arrive soon."),
    DeliveryStatus.delivered: ("Delivered", "Your order has been delivered! Enjoy your meal!"),
    DeliveryStatus.canceled: (
        "Delivery Canceled", "The delivery has been canceled. Please contact support for assistance.",
    ),
}


def _notification_copy(order: Order, canonical: Optional[DeliveryStatus], raw: Optional[str],
                       courier_name: Optional[str]) -> tuple[str, str]:
    if canonical is None:
        return f"Order #{order.order_number} - Status Update", f"Delivery status: {raw}"
    title, message = STATUS_COPY[canonical]
    return f"Order #{order.order_number} - {title}", message.format(courier=courier_name or "Your driver")


def _tracking_values(update_: DeliveryUpdate) -> dict[str, Any]:
    fields = {
        "tracking_url": update_.tracking_url,
        "courier_name": update_.courier_name,
        "courier_phone": update_.courier_phone,
        "courier_location": update_.courier_location,
        "delivery_eta": update_.eta,
        "proof_of_delivery": update_.proof_of_delivery,
    }
    return {k: v for k, v in fields.items() if v is not None}


def apply_update(db: Session, client: DeliveryClient, update_: DeliveryUpdate) -> dict[str, Any]:
    """Apply one normalized callback and commit. Returns a summary of what happened.

    Reference-only updates are completed through ``client.fetch_details`` after
    the order matched, so ``DeliveryProviderError`` can escape from here.
    """
    order = (
        db.query(Order)
        .filter(Order.external_delivery_id == update_.delivery_id, Order.delivery_provider == client.provider)
        .first()
    )
    if not order:
        logger.warning("No order found for %s delivery %s, acknowledging", client.provider.value, update_.delivery_id)
        return {"matched": False, "applied": False}

    order_id = order.order_id
    current = order.delivery_status
    canonical = client.normalize_status(update_.status)

    if current in TERMINAL:
        logger.info("Order %s delivery already %s, ignoring %s update", order_id, current.value, update_.status)
        return {"matched": True, "applied": False, "order_id": order_id}

    if update_.needs_details:
        update_ = client.fetch_details(update_)
        canonical = client.normalize_status(update_.status)

    values = _tracking_values(update_)
    notify = False
    if canonical is not None:
        if current is None or STATUS_RANK[canonical] > STATUS_RANK[current]:
            values["delivery_status"] = canonical
            values["provider_delivery_status"] = update_.status
            notify = True
        else:
            logger.info("Order %s: %s is not ahead of %s, keeping status",
                        order_id, canonical.value, current.value if current else None)
    elif update_.status and update_.status != order.provider_delivery_status:
        logger.warning("Unrecognized %s delivery status '%s' for order %s",
                       client.provider.value, update_.status, order_id)
        values["provider_delivery_status"] = update_.status
        notify = True

    if not values:
        return {"matched": True, "applied": False, "order_id": order_id}

    guard = Order.delivery_status.is_(None) if current is None else Order.delivery_status == current
    values["updated_at"] = datetime.now(timezone.utc)
    result = db.execute(
        update(Order)
        .where(Order.order_id == order_id, guard, or_(Order.delivery_status.is_(None), Order.delivery_status.notin_(TERMINAL)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        logger.info("Order %s delivery state changed concurrently, dropping %s update", order_id, update_.status)
        return {"matched": True, "applied": False, "order_id": order_id}

    if canonical == DeliveryStatus.delivered and values.get("delivery_status") == canonical:
        transition_order(db, order_id, status=OrderStatus.completed)

    if notify:
        title, message = _notification_copy(order, canonical, update_.status, update_.courier_name)
        notification_service.emit(
            db, order.user_id, title=title, message=message,
            category=NotificationCategory.delivery,
            action_url=notification_service.ORDER_HISTORY_URL,
        )

    db.commit()
    logger.info("Order %s delivery update applied: %s (%s)", order_id, update_.status,
                canonical.value if canonical else "unmapped")
    return {"matched": True, "applied": True, "order_id": order_id,
            "delivery_status": canonical.value if canonical else None}
