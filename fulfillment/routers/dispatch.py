"""Scheduler trigger for the delivery dispatch sweep."""
import logging
from typing import Callable
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from fulfillment.auth import require_scheduler
from fulfillment.config import Settings, get_settings
from fulfillment.database import get_db
from fulfillment.delivery import DeliveryClient
from fulfillment.deps import get_delivery_client_factory
from fulfillment.schemas.order import SweepOut
from fulfillment.services import dispatch_scheduler

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/sweep", response_model=SweepOut, dependencies=[Depends(require_scheduler)])
def trigger_sweep(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    client_factory: Callable[..., DeliveryClient] = Depends(get_delivery_client_factory),
):
    """Dispatch every due delivery order through the configured provider."""
    client = client_factory(settings.DELIVERY_PROVIDER)
    try:
        return dispatch_scheduler.run_sweep(db, client, settings)
    finally:
        client.close()
