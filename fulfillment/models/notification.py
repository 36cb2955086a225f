"""Notification ORM model."""
import uuid
import enum
from sqlalchemy import Column, String, Boolean, DateTime, Text, ForeignKey, Enum as SAEnum
from sqlalchemy.sql import func
from fulfillment.database import Base


class NotificationCategory(str, enum.Enum):
    order = "order"
    payment = "payment"
    delivery = "delivery"
    event = "event"
    points = "points"


class Notification(Base):
    __tablename__ = "notifications"

    notification_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("user_profiles.user_id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    category = Column(SAEnum(NotificationCategory), nullable=False, default=NotificationCategory.order)
    read = Column(Boolean, nullable=False, default=False)
    action_url = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
