"""Event reservation (RSVP) route."""
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from fulfillment.auth import get_current_user_id
from fulfillment.database import get_db
from fulfillment.schemas.event import ReservationCreate, ReservationOut, ReservationResult
from fulfillment.services import reservation_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=ReservationResult)
def reserve_spot(
    payload: ReservationCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Reserve a spot: 400 already reserved or sold out, 409 on a lost race (retry)."""
    logger.info("Processing RSVP for user %s on event %s", user_id, payload.event_id)
    reservation, remaining = reservation_service.reserve(db, payload.event_id, user_id)
    return ReservationResult(reservation=ReservationOut.model_validate(reservation), available_spots=remaining)
