"""Daily expiry sweep job."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.database import get_session_factory
from academy.db.models import Category, CategoryPurchase, User
from academy.entitlements.service import utcnow
from academy.workers.expiry_worker import WorkerSettings, deactivate_expired_purchases
from tests.factories import make_entitlement


@pytest.mark.asyncio
async def test_sweep_counts_and_deactivates(db_session: AsyncSession, user: User, course: Category) -> None:
    purchase = await make_entitlement(db_session, user, course, expires_at=utcnow() - timedelta(hours=1))

    count = await deactivate_expired_purchases({"session_factory": get_session_factory()})

    assert count == 1
    result = await db_session.execute(
        select(CategoryPurchase.is_active).where(CategoryPurchase.id == purchase.id)
    )
    assert result.scalar_one() is False


@pytest.mark.asyncio
async def test_sweep_with_nothing_expired(db_session: AsyncSession, user: User, course: Category) -> None:
    await make_entitlement(db_session, user, course, expires_at=utcnow() + timedelta(days=1))

    assert await deactivate_expired_purchases({}) == 0


def test_scheduled_daily_at_three() -> None:
    (job,) = WorkerSettings.cron_jobs
    assert job.hour == {3}
    assert job.minute == {0}
    assert deactivate_expired_purchases in WorkerSettings.functions
