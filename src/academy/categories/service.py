"""Read side of the course catalogue."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from academy.db.models import Category, User, Video
from academy.entitlements.service import user_can_access_category
from academy.exceptions import NotFoundError


async def get_category_by_slug(db: AsyncSession, slug: str) -> Category:
    result = await db.execute(
        select(Category)
        .where(Category.slug == slug, Category.deleted_at.is_(None), Category.is_active.is_(True))
        .options(selectinload(Category.videos))
    )
    category = result.scalar_one_or_none()
    if category is None:
        raise NotFoundError("Category not found")
    return category


def visible_videos(category: Category, requester: User | None) -> list[Video]:
    """Live videos in playback order; unpublished ones only for staff."""
    is_staff = requester is not None and requester.is_staff
    videos = [v for v in category.videos if v.deleted_at is None and (v.is_published or is_staff)]
    return sorted(videos, key=lambda v: (v.order, v.created_at))


async def has_access(db: AsyncSession, category: Category, requester: User | None) -> bool:
    """Whether the caller can watch the full course (free, staff, or entitled)."""
    if category.is_free:
        return True
    if requester is None:
        return False
    if requester.is_staff:
        return True
    return await user_can_access_category(db, requester.id, category)
