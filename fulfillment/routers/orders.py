"""Order tracking and cancellation routes."""
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from fulfillment.auth import get_current_user_id
from fulfillment.database import get_db
from fulfillment.schemas.order import OrderOut
from fulfillment.services import order_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: str, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """Fetch one of the caller's orders, including live delivery tracking."""
    return order_service.get_order_for_user(db, order_id, user_id)


@router.post("/{order_id}/cancel", response_model=OrderOut)
def cancel_order(order_id: str, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """Cancel within the grace window, before a courier is dispatched."""
    return order_service.cancel_order(db, order_id, user_id)
