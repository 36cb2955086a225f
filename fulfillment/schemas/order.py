"""Pydantic schemas for Orders."""
from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from pydantic import BaseModel


class OrderItemOut(BaseModel):
    name: str
    unit_price: Decimal
    quantity: int

    model_config = {"from_attributes": True}


class OrderOut(BaseModel):
    order_id: str
    order_number: int
    user_id: str
    total: Decimal
    currency: str
    points_earned: int
    payment_status: str
    status: str
    cancellation_deadline: Optional[datetime] = None
    delivery_address: Optional[str] = None
    pickup_notes: Optional[str] = None
    delivery_scheduled_at: Optional[datetime] = None
    delivery_triggered_at: Optional[datetime] = None
    delivery_provider: Optional[str] = None
    delivery_status: Optional[str] = None
    provider_delivery_status: Optional[str] = None
    tracking_url: Optional[str] = None
    courier_name: Optional[str] = None
    courier_phone: Optional[str] = None
    courier_location: Optional[dict[str, Any]] = None
    delivery_eta: Optional[datetime] = None
    proof_of_delivery: Optional[dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemOut] = []

    model_config = {"from_attributes": True}


class DispatchResultOut(BaseModel):
    order_id: str
    success: bool
    delivery_id: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False


class SweepOut(BaseModel):
    count: int
    dispatched: int
    results: list[DispatchResultOut] = []
