"""Pydantic schemas for event reservations."""
from __future__ import annotations
from datetime import datetime
from pydantic import BaseModel


class ReservationCreate(BaseModel):
    event_id: str


class ReservationOut(BaseModel):
    reservation_id: str
    event_id: str
    user_id: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ReservationResult(BaseModel):
    success: bool = True
    reservation: ReservationOut
    available_spots: int
