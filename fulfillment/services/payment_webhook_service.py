"""Payment webhook processor: Stripe payment intent events -> order transitions.

Verification happens before any field of the payload is trusted. Processing
of one event is a single transaction: the conditional order transition, the
points credit, the notifications and the processed-event record commit
together or not at all. Replays are absorbed at three levels: the event id
is a primary key, the transition only matches from legal source states, and
the points credit is unique per order.
"""
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import stripe
from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from fulfillment.config import Settings
from fulfillment.exceptions import WebhookVerificationError
from fulfillment.models.notification import NotificationCategory
from fulfillment.models.order import Order, OrderStatus, PaymentStatus
from fulfillment.models.payment_webhook_event import PaymentWebhookEvent
from fulfillment.services import notification_service, points_ledger
from fulfillment.services.email_service import build_order_confirmation
from fulfillment.services.order_state import transition_order

logger = logging.getLogger(__name__)


def verify_event(payload: bytes, signature: Optional[str], settings: Settings) -> dict[str, Any]:
    """Check the ``Stripe-Signature`` header and return the decoded event."""
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("STRIPE_WEBHOOK_SECRET not configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            detail="Stripe webhook secret not configured")
    if not signature:
        raise WebhookVerificationError("No stripe signature found")

    try:
        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
    except UnicodeDecodeError:
        raise WebhookVerificationError("Invalid webhook payload")
    try:
        stripe.WebhookSignature.verify_header(
            body, signature, settings.STRIPE_WEBHOOK_SECRET, settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS
        )
    except stripe.SignatureVerificationError as e:
        logger.warning("Stripe signature verification failed: %s", e)
        raise WebhookVerificationError()

    try:
        event = json.loads(body)
    except ValueError:
        raise WebhookVerificationError("Invalid webhook payload")
    if not isinstance(event, dict):
        raise WebhookVerificationError("Invalid webhook payload")
    return event


def _outcome(event: dict, order_id: Optional[str] = None, applied: bool = False,
             reason: Optional[str] = None, email: Optional[dict] = None) -> dict[str, Any]:
    return {
        "event_id": event.get("id"),
        "event_type": event.get("type"),
        "order_id": order_id,
        "applied": applied,
        "reason": reason,
        "email": email,
    }


def _handle_succeeded(db: Session, order: Order, intent: dict, settings: Settings, now: datetime) -> bool:
    values: dict[str, Any] = {
        "cancellation_deadline": now + timedelta(minutes=settings.CANCELLATION_GRACE_MINUTES),
        "payment_failure_reason": None,
    }
    if intent.get("id"):
        values["stripe_payment_intent_id"] = intent["id"]
    if order.is_delivery:
        values["delivery_scheduled_at"] = now + timedelta(minutes=settings.DISPATCH_DELAY_MINUTES)

    if not transition_order(db, order.order_id, PaymentStatus.succeeded, OrderStatus.preparing, values):
        return False

    points_ledger.credit(
        db,
        user_id=order.user_id,
        amount=order.points_earned or 0,
        reason="order",
        correlation_id=f"order:{order.order_id}:earn",
        order_id=order.order_id,
    )
    notification_service.emit(
        db, order.user_id,
        title="Payment Successful",
        message="Your payment has been processed successfully. Your order is being prepared!",
        category=NotificationCategory.payment,
        action_url=notification_service.ORDER_HISTORY_URL,
    )
    if order.is_delivery:
        notification_service.emit(
            db, order.user_id,
            title="Delivery Scheduled",
            message=f"A driver will be assigned to your order in approximately "
                    f"{settings.DISPATCH_DELAY_MINUTES} minutes.",
            category=NotificationCategory.delivery,
            action_url=notification_service.ORDER_HISTORY_URL,
        )
    return True


def _handle_failed(db: Session, order: Order, intent: dict, settings: Settings, now: datetime) -> bool:
    reason = (intent.get("last_payment_error") or {}).get("message") or "Payment failed"
    if not transition_order(db, order.order_id, PaymentStatus.failed, OrderStatus.cancelled,
                            {"payment_failure_reason": reason[:500]}):
        return False
    notification_service.emit(
        db, order.user_id,
        title="Payment Failed",
        message=f"Your payment could not be processed: {reason}. Please try again.",
        category=NotificationCategory.payment,
    )
    return True


def _handle_canceled(db: Session, order: Order, intent: dict, settings: Settings, now: datetime) -> bool:
    if not transition_order(db, order.order_id, PaymentStatus.canceled, OrderStatus.cancelled):
        return False
    notification_service.emit(
        db, order.user_id,
        title="Order Cancelled",
        message=f"Your payment for order #{order.order_number} was cancelled and the order has been cancelled.",
        category=NotificationCategory.order,
    )
    return True


def _handle_processing(db: Session, order: Order, intent: dict, settings: Settings, now: datetime) -> bool:
    return transition_order(db, order.order_id, payment_status=PaymentStatus.processing)


HANDLERS = {
    "payment_intent.succeeded": _handle_succeeded,
    "payment_intent.payment_failed": _handle_failed,
    "payment_intent.canceled": _handle_canceled,
    "payment_intent.processing": _handle_processing,
}


def process_event(
    db: Session,
    event: dict[str, Any],
    settings: Settings,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Apply one verified payment event to the order store and commit.

    Unknown event types, missing metadata and unknown orders are logged and
    reported as not applied; none of them raise. The returned ``email`` key
    carries the confirmation message to send once the commit has succeeded.
    """
    now = now or datetime.now(timezone.utc)
    event_id = event.get("id")
    event_type = event.get("type", "")

    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.info("Unhandled Stripe event type: %s", event_type)
        return _outcome(event, reason="unhandled_event_type")

    if event_id and db.get(PaymentWebhookEvent, event_id) is not None:
        logger.info("Duplicate Stripe event %s (%s), already processed", event_id, event_type)
        return _outcome(event, reason="duplicate_event")

    intent = (event.get("data") or {}).get("object") or {}
    metadata = intent.get("metadata") or {}
    order_id = metadata.get("orderId")
    if not order_id:
        logger.error("Stripe event %s (%s) has no orderId in metadata: %s", event_id, event_type, metadata)
        return _outcome(event, reason="missing_metadata")

    order = db.query(Order).filter(Order.order_id == order_id).first()
    if not order:
        logger.error("Stripe event %s references unknown order %s", event_id, order_id)
        return _outcome(event, order_id=order_id, reason="order_not_found")

    meta_user = metadata.get("userId")
    if meta_user and meta_user != order.user_id:
        logger.warning("Stripe event %s userId %s does not match order %s owner %s",
                       event_id, meta_user, order_id, order.user_id)

    applied = handler(db, order, intent, settings, now)
    if event_id:
        db.add(PaymentWebhookEvent(event_id=event_id, event_type=event_type, order_id=order_id))
    db.commit()

    if not applied:
        logger.info("Stripe event %s (%s) for order %s was a no-op", event_id, event_type, order_id)
        return _outcome(event, order_id=order_id, reason="no_transition")

    email = None
    if event_type == "payment_intent.succeeded":
        db.refresh(order)
        email = build_order_confirmation(db, order, settings)
    logger.info("Stripe event %s (%s) applied to order %s", event_id, event_type, order_id)
    return _outcome(event, order_id=order_id, applied=True, email=email)
