"""Cart endpoints: /api/v1/cart/*."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user
from academy.cart import service
from academy.cart.schemas import (
    AddToCartRequest,
    CartCategory,
    CartItemResponse,
    CartResponse,
    MessageResponse,
)
from academy.database import get_session
from academy.db.models import Cart, User
from academy.exceptions import AcademyError

router = APIRouter(prefix="/api/v1/cart", tags=["Cart"])


def _cart_response(cart: Cart) -> CartResponse:
    summary = service.summarize(cart)
    return CartResponse(
        id=cart.id,
        item_count=summary.item_count,
        total_ars=summary.total_ars,
        total_usd=summary.total_usd,
        items=[
            CartItemResponse(
                id=item.id,
                category_id=item.category_id,
                price_ars=item.price_ars,
                price_usd=item.price_usd,
                added_at=item.added_at,
                category=CartCategory(
                    id=item.category.id,
                    name=item.category.name,
                    slug=item.category.slug,
                    image=item.category.image,
                    description=item.category.description,
                ),
            )
            for item in summary.items
        ],
    )


@router.get("", response_model=CartResponse)
async def get_cart(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> CartResponse:
    """Get (or lazily create) the caller's cart."""
    return _cart_response(await service.get_or_create_cart(db, user.id))


@router.post("/items", response_model=CartResponse, status_code=201)
async def add_item(
    body: AddToCartRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> CartResponse:
    try:
        cart = await service.add_to_cart(db, user.id, body.category_id)
    except AcademyError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e
    return _cart_response(cart)


@router.delete("/items/{item_id}", response_model=CartResponse)
async def remove_item(
    item_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> CartResponse:
    try:
        cart = await service.remove_from_cart(db, user.id, item_id)
    except AcademyError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e
    return _cart_response(cart)


@router.delete("", response_model=MessageResponse)
async def clear(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> MessageResponse:
    try:
        await service.clear_cart(db, user.id)
    except AcademyError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e
    return MessageResponse(message="Cart cleared")
