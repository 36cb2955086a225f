"""Order and OrderItem ORM models."""
import uuid
import enum
from sqlalchemy import Column, String, DateTime, Integer, Numeric, Text, JSON, ForeignKey, Enum as SAEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from fulfillment.database import Base


class PaymentStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    succeeded = "succeeded"
    failed = "failed"
    canceled = "canceled"


class OrderStatus(str, enum.Enum):
    pending = "pending"
    preparing = "preparing"
    ready = "ready"
    completed = "completed"
    cancelled = "cancelled"


class DeliveryProvider(str, enum.Enum):
    uber = "uber"
    doordash = "doordash"


class DeliveryStatus(str, enum.Enum):
    """Provider-agnostic courier states."""

    pending = "pending"
    en_route_to_pickup = "en_route_to_pickup"
    at_pickup = "at_pickup"
    en_route_to_dropoff = "en_route_to_dropoff"
    delivered = "delivered"
    canceled = "canceled"


class Order(Base):
    __tablename__ = "orders"

    order_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_number = Column(Integer, nullable=False, unique=True)
    user_id = Column(String(36), ForeignKey("user_profiles.user_id"), nullable=False)

    total = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="usd")
    points_earned = Column(Integer, nullable=False, default=0)

    payment_status = Column(SAEnum(PaymentStatus), nullable=False, default=PaymentStatus.pending)
    status = Column(SAEnum(OrderStatus), nullable=False, default=OrderStatus.pending)
    stripe_payment_intent_id = Column(String(255), nullable=True)
    payment_failure_reason = Column(String(500), nullable=True)
    cancellation_deadline = Column(DateTime(timezone=True), nullable=True)

    delivery_address = Column(String(500), nullable=True)
    pickup_notes = Column(Text, nullable=True)

    delivery_scheduled_at = Column(DateTime(timezone=True), nullable=True)
    delivery_triggered_at = Column(DateTime(timezone=True), nullable=True)
    delivery_provider = Column(SAEnum(DeliveryProvider), nullable=True)
    external_delivery_id = Column(String(255), nullable=True, unique=True)
    provider_delivery_status = Column(String(100), nullable=True)
    delivery_status = Column(SAEnum(DeliveryStatus), nullable=True)
    tracking_url = Column(String(1000), nullable=True)
    courier_name = Column(String(255), nullable=True)
    courier_phone = Column(String(50), nullable=True)
    courier_location = Column(JSON, nullable=True)
    delivery_eta = Column(DateTime(timezone=True), nullable=True)
    proof_of_delivery = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")

    @property
    def is_delivery(self) -> bool:
        return bool(self.delivery_address)


class OrderItem(Base):
    __tablename__ = "order_items"

    item_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(String(36), ForeignKey("orders.order_id"), nullable=False)
    name = Column(String(255), nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    order = relationship("Order", back_populates="items")
