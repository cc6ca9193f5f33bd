"""Builders for test data."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.jwt import create_access_token
from academy.db.models import Category, CategoryPurchase, User, UserRole, Video

STREAM_URL = "https://player.vimeo.com/video/111?h=abc&t=1700000000000"


async def make_user(db: AsyncSession, email: str, role: UserRole = UserRole.USER) -> User:
    user = User(email=email, first_name="Test", last_name="User", role=role.value)
    db.add(user)
    await db.commit()
    return user


async def make_category(
    db: AsyncSession,
    slug: str,
    *,
    price_ars: str = "1000.00",
    price_usd: str = "10.00",
    is_free: bool = False,
    is_active: bool = True,
) -> Category:
    category = Category(
        name=slug.replace("-", " ").title(),
        slug=slug,
        price_ars=Decimal(price_ars),
        price_usd=Decimal(price_usd),
        is_free=is_free,
        is_active=is_active,
    )
    db.add(category)
    await db.commit()
    return category


async def make_video(
    db: AsyncSession,
    category: Category,
    *,
    order: int,
    is_published: bool = True,
    vimeo_id: str = "111",
    duration: int | None = 600,
) -> Video:
    video = Video(
        title=f"Lesson {order}",
        vimeo_id=vimeo_id,
        category_id=category.id,
        order=order,
        is_published=is_published,
        duration=duration,
    )
    db.add(video)
    await db.commit()
    return video


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


async def make_entitlement(
    db: AsyncSession,
    user: User,
    category: Category,
    *,
    expires_at: datetime | None = None,
    is_active: bool = True,
    transaction_id: str | None = None,
) -> CategoryPurchase:
    purchase = CategoryPurchase(
        user_id=user.id,
        category_id=category.id,
        amount=category.price_ars,
        currency="ARS",
        payment_method="visa",
        transaction_id=transaction_id,
        is_active=is_active,
        expires_at=expires_at,
    )
    db.add(purchase)
    await db.commit()
    return purchase
