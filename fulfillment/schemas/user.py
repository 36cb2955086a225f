"""Pydantic schemas for a user's notifications and points."""
from __future__ import annotations
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class NotificationOut(BaseModel):
    notification_id: str
    title: str
    message: str
    category: str
    read: bool
    action_url: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class LedgerEntryOut(BaseModel):
    entry_id: str
    delta: int
    reason: str
    order_id: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class PointsOut(BaseModel):
    user_id: str
    balance: int
    history: list[LedgerEntryOut] = []


class RedeemRequest(BaseModel):
    points: int = Field(gt=0)
    reason: str = "merch_redemption"
    reference_id: str  # client-generated; repeats of the same id redeem once
