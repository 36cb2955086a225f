"""Payment processor webhook route."""
import logging
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Header
from sqlalchemy.orm import Session

from fulfillment.config import Settings, get_settings
from fulfillment.database import get_db
from fulfillment.deps import raw_body
from fulfillment.services import payment_webhook_service
from fulfillment.services.email_service import send_email

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/stripe")
def stripe_webhook(
    background_tasks: BackgroundTasks,
    body: bytes = Depends(raw_body),
    stripe_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Verify and apply a Stripe event.

    A bad signature is rejected with 400. Anything after verification is
    acknowledged with 200, even when processing fails, because redelivering a
    broken event would only fail again; the failure is logged instead.
    """
    event = payment_webhook_service.verify_event(body, stripe_signature, settings)
    logger.info("Stripe webhook %s (%s) verified", event.get("id"), event.get("type"))

    try:
        outcome = payment_webhook_service.process_event(db, event, settings)
    except Exception:
        db.rollback()
        logger.exception("Stripe webhook %s (%s) processing failed", event.get("id"), event.get("type"))
        return {"received": True}

    if outcome.get("email"):
        background_tasks.add_task(
            send_email, outcome["email"], settings.RESEND_API_KEY, settings.DELIVERY_HTTP_TIMEOUT_SECONDS
        )
    return {"received": True}
