"""Courier provider webhook routes (Uber Direct, DoorDash Drive)."""
import json
import logging
from typing import Callable
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from fulfillment.database import get_db
from fulfillment.delivery import DeliveryClient, DeliveryProviderError
from fulfillment.deps import get_delivery_client_factory, raw_body
from fulfillment.exceptions import MalformedPayload
from fulfillment.models.order import DeliveryProvider
from fulfillment.services import delivery_webhook_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/delivery/{provider}")
def delivery_webhook(
    provider: DeliveryProvider,
    request: Request,
    body: bytes = Depends(raw_body),
    db: Session = Depends(get_db),
    client_factory: Callable[..., DeliveryClient] = Depends(get_delivery_client_factory),
):
    """Normalize a courier callback and sync the matching order's tracking state.

    Unknown deliveries are acknowledged with 200; malformed payloads (400)
    and failed authentication (401) are rejected. A known delivery whose
    details cannot be loaded from the provider answers 502 so it is retried.
    """
    client = client_factory(provider)
    try:
        client.verify_webhook(request.headers, body)
        try:
            payload = json.loads(body)
        except ValueError:
            raise MalformedPayload("Webhook body is not valid JSON")
        if not isinstance(payload, dict):
            raise MalformedPayload()
        logger.info("%s delivery webhook received: %s", provider.value, payload)

        try:
            update = client.parse_webhook(payload)
            result = delivery_webhook_service.apply_update(db, client, update)
        except ValidationError as e:
            raise MalformedPayload(f"Invalid delivery fields: {e.errors()[0].get('msg')}")
        except DeliveryProviderError as e:
            logger.error("Could not load %s delivery details: %s", provider.value, e)
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Delivery provider unavailable")
    finally:
        client.close()
    return {"success": True, **result}
