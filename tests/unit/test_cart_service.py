"""Cart service edge cases not reachable through the HTTP layer."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.cart import service
from academy.db.models import Cart, User
from academy.exceptions import NotFoundError


@pytest.mark.asyncio
async def test_get_or_create_returns_same_cart(db_session: AsyncSession, user: User) -> None:
    first = await service.get_or_create_cart(db_session, user.id)
    second = await service.get_or_create_cart(db_session, user.id)

    assert first.id == second.id
    assert (await db_session.execute(select(func.count()).select_from(Cart))).scalar_one() == 1


@pytest.mark.asyncio
async def test_cart_missing_after_create_raises(db_session: AsyncSession, user: User) -> None:
    with patch.object(service, "_load_cart", AsyncMock(return_value=None)), pytest.raises(NotFoundError):
        await service.get_or_create_cart(db_session, user.id)


def test_summary_of_no_cart_is_empty() -> None:
    summary = service.summarize(None)

    assert summary.item_count == 0
    assert summary.items == []
