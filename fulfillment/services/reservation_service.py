"""Reservation allocator: capacity-limited event sign-ups.

The spot count is decremented with a compare-and-swap against the value
that was read, so two callers who both saw one remaining spot cannot both
succeed: the second CAS matches no row and the caller gets a retryable
conflict. The reservation insert runs after the decrement; if it fails the
spot is handed back before the error is surfaced. Only a violation of the
one-reservation-per-user rule reads as ``AlreadyReserved``; any other
constraint failure propagates.
"""
import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fulfillment.exceptions import AlreadyReserved, EventNotFound, ReservationConflict, SoldOut
from fulfillment.models.event import Event, EventReservation
from fulfillment.services.concurrency import ColumnSwap

logger = logging.getLogger(__name__)


def _existing_reservation(db: Session, event_id: str, user_id: str) -> Optional[EventReservation]:
    return (
        db.query(EventReservation)
        .filter(EventReservation.event_id == event_id, EventReservation.user_id == user_id)
        .first()
    )


def _read_available_spots(db: Session, event_id: str) -> Optional[int]:
    return db.execute(select(Event.available_spots).where(Event.event_id == event_id)).scalar()


def _release_spot(swap: ColumnSwap, event_id: str):
    """Undo for a consumed spot: exact revert, else a bounded increment."""
    def undo(db: Session) -> None:
        if swap.revert(db):
            return
        db.execute(
            update(Event)
            .where(Event.event_id == event_id, Event.available_spots < Event.capacity)
            .values(available_spots=Event.available_spots + 1)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        logger.info("Returned spot to event %s by increment", event_id)
    return undo


def reserve(db: Session, event_id: str, user_id: str) -> tuple[EventReservation, int]:
    """Reserve one spot on ``event_id`` for ``user_id``.

    Returns the reservation and the remaining spot count. Raises
    ``AlreadyReserved``, ``EventNotFound``, ``SoldOut`` or
    ``ReservationConflict`` (retryable).
    """
    if _existing_reservation(db, event_id, user_id):
        raise AlreadyReserved()

    spots = _read_available_spots(db, event_id)
    if spots is None:
        raise EventNotFound()
    if spots <= 0:
        logger.info("Event %s sold out (user %s)", event_id, user_id)
        raise SoldOut()

    swap = ColumnSwap(Event.available_spots, [Event.event_id == event_id], expected=spots, new=spots - 1)
    if not swap.apply(db):
        logger.info("Reservation conflict on event %s for user %s (saw %d spots)", event_id, user_id, spots)
        raise ReservationConflict()

    reservation = EventReservation(event_id=event_id, user_id=user_id)
    try:
        with swap.compensating(db, undo=_release_spot(swap, event_id)):
            db.add(reservation)
            db.commit()
    except IntegrityError:
        duplicate = (
            db.query(EventReservation.reservation_id)
            .filter(EventReservation.event_id == event_id, EventReservation.user_id == user_id)
            .first()
        )
        if duplicate is None:
            logger.error("Reservation insert failed for user %s on event %s, spot returned", user_id, event_id)
            raise
        logger.warning("Duplicate reservation for user %s on event %s, spot returned", user_id, event_id)
        raise AlreadyReserved()

    db.refresh(reservation)
    logger.info("User %s reserved a spot on event %s (%d left)", user_id, event_id, spots - 1)
    return reservation, spots - 1
