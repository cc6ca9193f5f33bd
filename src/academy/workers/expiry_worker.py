"""arq worker that deactivates expired course entitlements.

Runs daily at 03:00. Access checks already ignore expired rows, so this job
only keeps ``is_active`` (and the admin stats) truthful.
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from academy.config import get_settings
from academy.database import close_db, get_session_factory, init_db
from academy.entitlements.service import deactivate_expired

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Open the database pool for the worker process."""
    settings = get_settings()
    await init_db(settings.database_url)
    ctx["session_factory"] = get_session_factory()
    logger.info("Expiry worker started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    await close_db()
    logger.info("Expiry worker shut down")


async def deactivate_expired_purchases(ctx: dict) -> int:  # type: ignore[type-arg]
    """Flip every active entitlement past its expiry to inactive."""
    session_factory = ctx.get("session_factory") or get_session_factory()
    async with session_factory() as session:
        expired = await deactivate_expired(session)

    for item in expired:
        logger.info(
            "Entitlement expired: user=%s course=%s expired_at=%s",
            item.user_email,
            item.category_name,
            item.expires_at.isoformat(),
        )
    if expired:
        logger.info("Deactivated %d expired entitlements", len(expired))
    else:
        logger.debug("No expired entitlements")
    return len(expired)


class WorkerSettings:
    """arq worker settings for the entitlement expiry sweep."""

    functions = [deactivate_expired_purchases]
    cron_jobs = [
        cron(deactivate_expired_purchases, hour={3}, minute={0}, run_at_startup=False),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 1
