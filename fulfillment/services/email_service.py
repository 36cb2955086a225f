"""Order confirmation email: best-effort, sent after the webhook commits."""
import logging
from decimal import Decimal
from typing import Any, Optional

import httpx
from sqlalchemy.orm import Session

from fulfillment.config import Settings
from fulfillment.models.order import Order
from fulfillment.models.user import UserProfile

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"


def build_order_confirmation(db: Session, order: Order, settings: Settings) -> Optional[dict[str, Any]]:
    """Snapshot everything the email needs so the send can run without a session."""
    user = db.query(UserProfile).filter(UserProfile.user_id == order.user_id).first()
    recipients = list(settings.admin_emails)
    if user and user.email:
        recipients.insert(0, user.email)
    if not recipients:
        logger.info("Order %s has no email recipients", order.order_id)
        return None

    lines = []
    for item in order.items:
        line_total = Decimal(item.unit_price) * item.quantity
        lines.append(f"{item.quantity} x {item.name} - ${line_total:.2f}")
    order_type = "Delivery" if order.is_delivery else "Pickup"
    destination = order.delivery_address if order.is_delivery else (order.pickup_notes or "")

    text = "\n".join([
        f"Order #{order.order_number} confirmed",
        f"Customer: {user.name if user else 'Customer'}",
        f"Type: {order_type}",
        *lines,
        f"Total: ${Decimal(order.total):.2f} {order.currency.upper()}",
        destination,
    ]).strip()

    return {
        "from": settings.EMAIL_FROM,
        "to": recipients,
        "subject": f"Order #{order.order_number} confirmed",
        "text": text,
    }


def send_email(message: Optional[dict[str, Any]], api_key: str, timeout: float = 10.0,
               client: Optional[httpx.Client] = None) -> bool:
    """Post ``message`` to Resend. Never raises; returns whether it was accepted."""
    if not message:
        return False
    if not api_key:
        logger.warning("RESEND_API_KEY not configured, skipping email '%s'", message.get("subject"))
        return False

    http = client or httpx.Client(timeout=timeout)
    try:
        response = http.post(RESEND_URL, json=message, headers={"Authorization": f"Bearer {api_key}"})
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error("Failed to send email '%s': %s", message.get("subject"), e)
        return False
    finally:
        if client is None:
            http.close()

    logger.info("Email '%s' sent to %d recipients", message.get("subject"), len(message.get("to", [])))
    return True
