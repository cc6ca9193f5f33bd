"""User lookups for the auth dependencies."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from academy.db.models import User

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


async def get_user_by_id(db: AsyncSession, user_id: str) -> User | None:
    """Fetch a live (not soft-deleted) user by ID."""
    result = await db.execute(select(User).where(User.id == user_id, User.deleted_at.is_(None)))
    return result.scalar_one_or_none()
