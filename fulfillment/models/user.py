"""UserProfile ORM model: contact details and cached points balance."""
import uuid
from sqlalchemy import Column, String, Integer, DateTime, CheckConstraint
from sqlalchemy.sql import func
from fulfillment.database import Base


class UserProfile(Base):
    __tablename__ = "user_profiles"
    __table_args__ = (CheckConstraint("points >= 0", name="ck_user_profiles_points_non_negative"),)

    user_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), nullable=False, default="")
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    points = Column(Integer, nullable=False, default=0)  # materialized ledger sum
    created_at = Column(DateTime(timezone=True), server_default=func.now())
