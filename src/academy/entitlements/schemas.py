"""Entitlement request/response schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class ManualGrantRequest(BaseModel):
    amount: Decimal = Field(..., ge=0)
    currency: str = Field(..., min_length=3, max_length=3)
    payment_method: str | None = Field(None, max_length=64)
    notes: str | None = None


class EntitlementResponse(BaseModel):
    id: str
    user_id: str
    category_id: str
    amount: Decimal
    currency: str
    payment_method: str | None = None
    transaction_id: str | None = None
    payment_status: str
    is_active: bool
    expires_at: datetime | None = None
    notes: str | None = None
    created_at: datetime


class MyCourseResponse(BaseModel):
    category_id: str
    name: str
    slug: str
    image: str | None = None
    purchased_at: datetime
    expires_at: datetime | None = None
    payment_status: str
    has_access: bool


class ExpirationStatsResponse(BaseModel):
    total: int
    active: int
    expired: int
    expiring_soon: int
