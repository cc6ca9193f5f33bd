"""Request/response schemas for cart endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class AddToCartRequest(BaseModel):
    category_id: str


class CartCategory(BaseModel):
    id: str
    name: str
    slug: str
    image: str | None = None
    description: str | None = None


class CartItemResponse(BaseModel):
    id: str
    category_id: str
    price_ars: Decimal
    price_usd: Decimal
    added_at: datetime
    category: CartCategory


class CartResponse(BaseModel):
    id: str | None = None
    item_count: int
    total_ars: Decimal
    total_usd: Decimal
    items: list[CartItemResponse]


class MessageResponse(BaseModel):
    message: str
