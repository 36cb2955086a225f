"""PointsLedgerEntry ORM model: append-only reward ledger."""
import uuid
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey
from sqlalchemy.sql import func
from fulfillment.database import Base


class PointsLedgerEntry(Base):
    __tablename__ = "points_ledger"

    entry_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("user_profiles.user_id"), nullable=False, index=True)
    delta = Column(Integer, nullable=False)
    reason = Column(String(50), nullable=False)
    # one entry per logical credit/debit; retries collide here
    correlation_id = Column(String(255), nullable=True, unique=True)
    order_id = Column(String(36), ForeignKey("orders.order_id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
