"""PaymentWebhookEvent ORM model: ledger of processed payment events."""
from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from fulfillment.database import Base


class PaymentWebhookEvent(Base):
    __tablename__ = "payment_webhook_events"

    # processor-assigned event id; a redelivery collides on the primary key
    event_id = Column(String(255), primary_key=True)
    event_type = Column(String(100), nullable=False)
    order_id = Column(String(36), nullable=True)
    received_at = Column(DateTime(timezone=True), server_default=func.now())
