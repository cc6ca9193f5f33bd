"""Streaming access gate.

Evaluated fresh on every playback request; nothing about the decision is
persisted. Order of checks:

1. Unpublished videos exist only for staff.
2. Staff bypass every remaining check.
3. The first video of a course (``order == 0``) is a public preview.
4. Everything else needs a signed-in user holding an active, unexpired
   entitlement for the video's course (or the course is free).
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from academy.config import get_settings
from academy.db.models import User, Video, VideoView
from academy.entitlements.service import user_can_access_category, utcnow
from academy.exceptions import AuthenticationRequired, ForbiddenError, NotFoundError
from academy.videos.provider import VimeoClient

logger = structlog.get_logger()

PREVIEW_ORDER = 0


@dataclass(frozen=True)
class StreamGrant:
    stream_url: str
    expires_in: int
    is_preview: bool = False


async def load_video(db: AsyncSession, video_id: str) -> Video:
    """Fetch a live (not soft-deleted) video with its category."""
    result = await db.execute(
        select(Video)
        .where(Video.id == video_id, Video.deleted_at.is_(None))
        .options(selectinload(Video.category))
    )
    video = result.scalar_one_or_none()
    if video is None:
        raise NotFoundError("Video not found")
    return video


def is_preview(video: Video) -> bool:
    return video.order == PREVIEW_ORDER


async def authorize_playback(db: AsyncSession, video: Video, requester: User | None) -> None:
    """
    Raise unless ``requester`` may watch ``video``.

    Raises:
        ForbiddenError: Unpublished video for a non-staff caller, or no entitlement.
        AuthenticationRequired: Anonymous caller on a non-preview video.
    """
    is_staff = requester is not None and requester.is_staff

    if not video.is_published and not is_staff:
        raise ForbiddenError("This video is not available")
    if is_staff or is_preview(video):
        return
    if requester is None:
        raise AuthenticationRequired("You must sign in to watch this video")
    if not await user_can_access_category(db, requester.id, video.category):
        raise ForbiddenError("You must purchase this course to watch this video")


async def record_view(db: AsyncSession, user_id: str, video_id: str) -> None:
    """Create the view row on first watch, otherwise touch ``last_watched_at``.

    Telemetry only: failures are logged and never reach the caller.
    """
    try:
        result = await db.execute(
            select(VideoView).where(VideoView.user_id == user_id, VideoView.video_id == video_id)
        )
        view = result.scalar_one_or_none()
        if view is None:
            db.add(VideoView(user_id=user_id, video_id=video_id))
        else:
            view.last_watched_at = utcnow()
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.warning("video_view_record_failed", user_id=user_id, video_id=video_id, error=str(exc))


async def get_streaming_url(
    db: AsyncSession,
    video_id: str,
    requester: User | None,
    provider: VimeoClient,
) -> StreamGrant:
    """Authorize the caller and hand out a short-lived player URL.

    The URL's lifetime is unrelated to entitlement expiry; clients request a
    new one for each viewing session.
    """
    video = await load_video(db, video_id)
    requester_id = requester.id if requester is not None else None
    await authorize_playback(db, video, requester)

    stream_url = await provider.get_secure_player_url(video.vimeo_id)
    grant = StreamGrant(
        stream_url=stream_url,
        expires_in=get_settings().stream_url_ttl_seconds,
        is_preview=is_preview(video),
    )
    logger.info("stream_url_issued", video_id=video.id, user_id=requester_id, preview=grant.is_preview)

    if requester_id is not None:
        await record_view(db, requester_id, video.id)
    return grant
