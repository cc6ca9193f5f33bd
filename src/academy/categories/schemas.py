"""Category response schemas."""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel


class CategoryVideo(BaseModel):
    id: str
    title: str
    thumbnail: str | None = None
    duration: int | None = None
    order: int
    is_preview: bool


class CategoryResponse(BaseModel):
    id: str
    name: str
    slug: str
    description: str | None = None
    image: str | None = None
    price_ars: Decimal
    price_usd: Decimal
    is_free: bool
    has_access: bool
    videos: list[CategoryVideo] = []
