"""Customer-facing order operations: tracking view and grace-window cancellation."""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from fulfillment.exceptions import CancellationWindowClosed, OrderNotFound
from fulfillment.models.notification import NotificationCategory
from fulfillment.models.order import Order, OrderStatus
from fulfillment.services import notification_service, points_ledger
from fulfillment.services.order_state import transition_order

logger = logging.getLogger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def get_order_for_user(db: Session, order_id: str, user_id: str) -> Order:
    order = db.query(Order).filter(Order.order_id == order_id, Order.user_id == user_id).first()
    if not order:
        raise OrderNotFound()
    return order


def cancel_order(db: Session, order_id: str, user_id: str, now: Optional[datetime] = None) -> Order:
    """Cancel a paid order while its grace window is open and no courier is dispatched.

    Points credited for the order are taken back (as many as the user still
    has). Refunds are issued by the payment processor, not here.
    """
    now = now or datetime.now(timezone.utc)
    order = get_order_for_user(db, order_id, user_id)

    if order.status == OrderStatus.cancelled:
        raise CancellationWindowClosed("Order is already cancelled")
    deadline = as_utc(order.cancellation_deadline)
    if deadline is None or now >= deadline:
        raise CancellationWindowClosed("The cancellation window for this order has closed")
    if order.delivery_triggered_at is not None:
        raise CancellationWindowClosed("A driver has already been dispatched for this order")

    moved = transition_order(
        db, order_id, status=OrderStatus.cancelled,
        where=[Order.delivery_triggered_at.is_(None), Order.cancellation_deadline > now],
    )
    if not moved:
        db.rollback()
        raise CancellationWindowClosed()

    points_ledger.debit(
        db, user_id, order.points_earned or 0,
        reason="order_cancelled",
        correlation_id=f"order:{order_id}:reversal",
        order_id=order_id,
        allow_partial=True,
    )
    notification_service.emit(
        db, user_id,
        title=f"Order #{order.order_number} Cancelled",
        message="Your order has been cancelled. Any refund will appear on your original payment method.",
        category=NotificationCategory.order,
        action_url=notification_service.ORDER_HISTORY_URL,
    )
    db.commit()
    db.refresh(order)
    logger.info("Order %s cancelled by user %s", order_id, user_id)
    return order
