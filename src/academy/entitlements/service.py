"""Entitlement store: who may access which course, and until when.

Every access decision in the codebase goes through ``active_entitlement_clause``
so the active/expiry rule is defined once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import ColumnElement, and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from academy.config import get_settings
from academy.db.models import Category, CategoryPurchase, PaymentStatus, User
from academy.exceptions import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_expiry(now: datetime | None = None) -> datetime:
    """Expiry for a freshly granted entitlement."""
    return (now or utcnow()) + timedelta(days=get_settings().entitlement_duration_days)


def active_entitlement_clause(now: datetime) -> ColumnElement[bool]:
    """SQL predicate: entitlement is active and not past its expiry."""
    return and_(
        CategoryPurchase.is_active.is_(True),
        or_(CategoryPurchase.expires_at.is_(None), CategoryPurchase.expires_at > now),
    )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def get_entitlement(db: AsyncSession, user_id: str, category_id: str) -> CategoryPurchase | None:
    """The (single) entitlement row for a user/category pair, active or not."""
    result = await db.execute(
        select(CategoryPurchase).where(
            CategoryPurchase.user_id == user_id,
            CategoryPurchase.category_id == category_id,
        )
    )
    return result.scalar_one_or_none()


async def has_active_entitlement(
    db: AsyncSession,
    user_id: str,
    category_id: str,
    *,
    now: datetime | None = None,
) -> bool:
    """True when the user holds an active, unexpired entitlement for the category.

    Expiry is checked here independently of the sweep that flips ``is_active``.
    """
    result = await db.execute(
        select(CategoryPurchase.id).where(
            CategoryPurchase.user_id == user_id,
            CategoryPurchase.category_id == category_id,
            active_entitlement_clause(now or utcnow()),
        )
    )
    return result.first() is not None


async def user_can_access_category(db: AsyncSession, user_id: str, category: Category) -> bool:
    """Free courses are open to every signed-in user; paid ones need an entitlement."""
    if category.is_free:
        return True
    return await has_active_entitlement(db, user_id, category.id)


async def transaction_already_processed(db: AsyncSession, transaction_id: str) -> bool:
    """Durable idempotency check: any row with this transaction id means it was handled."""
    result = await db.execute(
        select(func.count()).select_from(CategoryPurchase).where(CategoryPurchase.transaction_id == transaction_id)
    )
    return (result.scalar_one() or 0) > 0


async def find_by_transaction(db: AsyncSession, transaction_id: str) -> list[CategoryPurchase]:
    result = await db.execute(
        select(CategoryPurchase).where(CategoryPurchase.transaction_id == transaction_id)
    )
    return list(result.scalars().all())


async def list_user_entitlements(db: AsyncSession, user_id: str) -> list[tuple[CategoryPurchase, Category]]:
    """All entitlement rows for a user with their category, newest first."""
    result = await db.execute(
        select(CategoryPurchase, Category)
        .join(Category, Category.id == CategoryPurchase.category_id)
        .where(CategoryPurchase.user_id == user_id)
        .order_by(CategoryPurchase.created_at.desc())
    )
    return [(row[0], row[1]) for row in result.all()]


def is_entitlement_usable(purchase: CategoryPurchase, now: datetime | None = None) -> bool:
    """Python-side twin of ``active_entitlement_clause`` for rows already loaded."""
    if not purchase.is_active:
        return False
    if purchase.expires_at is None:
        return True
    expires_at = purchase.expires_at
    if expires_at.tzinfo is None:
        # SQLite hands back naive datetimes; everything is stored in UTC.
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at > (now or utcnow())


# ---------------------------------------------------------------------------
# Manual grants
# ---------------------------------------------------------------------------


async def grant_manual(
    db: AsyncSession,
    *,
    user_id: str,
    category_id: str,
    amount: Decimal,
    currency: str,
    payment_method: str | None = None,
    notes: str | None = None,
) -> CategoryPurchase:
    """Admin-side grant without a payment (transaction id stays NULL)."""
    user = await db.get(User, user_id)
    if user is None or user.deleted_at is not None:
        raise NotFoundError("User not found")
    category = await db.get(Category, category_id)
    if category is None or category.deleted_at is not None:
        raise NotFoundError("Category not found")
    if await get_entitlement(db, user_id, category_id) is not None:
        raise ConflictError("User already has access to this course")

    purchase = CategoryPurchase(
        user_id=user_id,
        category_id=category_id,
        amount=amount,
        currency=currency.upper(),
        payment_method=payment_method or "manual",
        transaction_id=None,
        payment_status=PaymentStatus.COMPLETED.value,
        is_active=True,
        expires_at=default_expiry(),
        notes=notes,
    )
    db.add(purchase)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("User already has access to this course") from exc

    logger.info("Manual entitlement granted user=%s category=%s", user_id, category_id)
    return purchase


async def revoke(db: AsyncSession, user_id: str, category_id: str) -> None:
    """Delete an entitlement outright (explicit admin revocation)."""
    purchase = await get_entitlement(db, user_id, category_id)
    if purchase is None:
        raise NotFoundError("Entitlement not found")
    await db.delete(purchase)
    await db.commit()
    logger.info("Entitlement revoked user=%s category=%s", user_id, category_id)


async def deactivate_for_transaction(db: AsyncSession, transaction_id: str, payment_status: str) -> int:
    """Deactivate every active entitlement bought with a reversed payment.

    Returns the number of rows changed. Rows already inactive are left alone so
    replays are no-ops.
    """
    result = await db.execute(
        update(CategoryPurchase)
        .where(
            CategoryPurchase.transaction_id == transaction_id,
            CategoryPurchase.is_active.is_(True),
        )
        .values(is_active=False, payment_status=payment_status, updated_at=utcnow())
    )
    await db.commit()
    return result.rowcount or 0


# ---------------------------------------------------------------------------
# Expiry sweep
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExpiredEntitlement:
    user_email: str
    category_name: str
    expires_at: datetime


async def deactivate_expired(db: AsyncSession, now: datetime | None = None) -> list[ExpiredEntitlement]:
    """Flip ``is_active`` off for every active entitlement past its expiry."""
    now = now or utcnow()
    expired_filter = and_(
        CategoryPurchase.is_active.is_(True),
        CategoryPurchase.expires_at.is_not(None),
        CategoryPurchase.expires_at < now,
    )

    result = await db.execute(
        select(CategoryPurchase.id, User.email, Category.name, CategoryPurchase.expires_at)
        .join(User, User.id == CategoryPurchase.user_id)
        .join(Category, Category.id == CategoryPurchase.category_id)
        .where(expired_filter)
    )
    rows = result.all()
    if not rows:
        return []

    await db.execute(
        update(CategoryPurchase)
        .where(CategoryPurchase.id.in_([row[0] for row in rows]))
        .values(is_active=False, updated_at=now)
    )
    await db.commit()
    return [ExpiredEntitlement(user_email=row[1], category_name=row[2], expires_at=row[3]) for row in rows]


async def expiration_stats(db: AsyncSession, now: datetime | None = None) -> dict[str, int]:
    """Counts for the admin dashboard: total, active, expired-but-active, expiring soon."""
    now = now or utcnow()
    soon = now + timedelta(days=get_settings().entitlement_expiring_soon_days)

    async def _count(*criteria: ColumnElement[bool]) -> int:
        result = await db.execute(select(func.count()).select_from(CategoryPurchase).where(*criteria))
        return int(result.scalar_one() or 0)

    active = CategoryPurchase.is_active.is_(True)
    has_expiry = CategoryPurchase.expires_at.is_not(None)
    return {
        "total": await _count(),
        "active": await _count(active),
        "expired": await _count(active, has_expiry, CategoryPurchase.expires_at < now),
        "expiring_soon": await _count(
            active, has_expiry, CategoryPurchase.expires_at >= now, CategoryPurchase.expires_at < soon
        ),
    }
