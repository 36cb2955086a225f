"""Event and EventReservation ORM models: capacity-limited sign-ups."""
import uuid
from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, CheckConstraint, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from fulfillment.database import Base


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("available_spots >= 0", name="ck_events_spots_non_negative"),
        CheckConstraint("available_spots <= capacity", name="ck_events_spots_within_capacity"),
    )

    event_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String(255), nullable=False)
    starts_at = Column(DateTime(timezone=True), nullable=True)
    capacity = Column(Integer, nullable=False)
    available_spots = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    reservations = relationship("EventReservation", back_populates="event", cascade="all, delete-orphan")


class EventReservation(Base):
    __tablename__ = "event_reservations"
    __table_args__ = (UniqueConstraint("event_id", "user_id", name="uq_event_reservations_event_user"),)

    reservation_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String(36), ForeignKey("events.event_id"), nullable=False)
    user_id = Column(String(36), ForeignKey("user_profiles.user_id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    event = relationship("Event", back_populates="reservations")
