"""Shopping cart. Prices are snapshotted when an item is added."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from academy.db.models import Cart, CartItem, Category
from academy.entitlements.service import get_entitlement
from academy.exceptions import ConflictError, NotFoundError, ValidationError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


@dataclass
class CartSummary:
    item_count: int = 0
    total_ars: Decimal = Decimal("0")
    total_usd: Decimal = Decimal("0")
    items: list[CartItem] = field(default_factory=list)


async def _load_cart(db: AsyncSession, user_id: str) -> Cart | None:
    result = await db.execute(
        select(Cart)
        .where(Cart.user_id == user_id)
        .options(selectinload(Cart.items).selectinload(CartItem.category))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_or_create_cart(db: AsyncSession, user_id: str) -> Cart:
    """Return the user's cart with items and categories loaded."""
    cart = await _load_cart(db, user_id)
    if cart is not None:
        return cart
    db.add(Cart(user_id=user_id))
    await db.commit()
    cart = await _load_cart(db, user_id)
    if cart is None:
        raise NotFoundError("Cart not found")
    return cart


async def add_to_cart(db: AsyncSession, user_id: str, category_id: str) -> Cart:
    """
    Add a course to the cart at its current price.

    Raises:
        NotFoundError: Unknown or deleted course.
        ValidationError: Course is not on sale.
        ConflictError: Already purchased, or already in the cart.
    """
    category = await db.get(Category, category_id)
    if category is None or category.deleted_at is not None:
        raise NotFoundError("Category not found")
    if not category.is_active:
        raise ValidationError("This course is not available")

    if await get_entitlement(db, user_id, category_id) is not None:
        raise ConflictError("You already purchased this course")

    cart = await get_or_create_cart(db, user_id)
    if any(item.category_id == category_id for item in cart.items):
        raise ConflictError("This course is already in your cart")

    db.add(
        CartItem(
            cart_id=cart.id,
            category_id=category_id,
            price_ars=category.price_ars,
            price_usd=category.price_usd,
        )
    )
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("This course is already in your cart") from exc

    return await get_or_create_cart(db, user_id)


async def remove_from_cart(db: AsyncSession, user_id: str, item_id: str) -> Cart:
    cart = await _load_cart(db, user_id)
    if cart is None:
        raise NotFoundError("Cart not found")
    item = next((i for i in cart.items if i.id == item_id), None)
    if item is None:
        raise NotFoundError("Item not found in cart")
    await db.delete(item)
    await db.commit()
    return await get_or_create_cart(db, user_id)


async def clear_cart(db: AsyncSession, user_id: str) -> None:
    """Remove every item from the user's cart.

    Raises:
        NotFoundError: The user has no cart.
    """
    result = await db.execute(select(Cart.id).where(Cart.user_id == user_id))
    cart_id = result.scalar_one_or_none()
    if cart_id is None:
        raise NotFoundError("Cart not found")
    await db.execute(delete(CartItem).where(CartItem.cart_id == cart_id))
    await db.commit()


def summarize(cart: Cart | None) -> CartSummary:
    """Totals in both currencies from the snapshotted prices."""
    if cart is None:
        return CartSummary()
    return CartSummary(
        item_count=len(cart.items),
        total_ars=sum((item.price_ars for item in cart.items), Decimal("0")),
        total_usd=sum((item.price_usd for item in cart.items), Decimal("0")),
        items=list(cart.items),
    )
