"""Video catalogue management, watch progress and provider uploads."""

from __future__ import annotations

import asyncio
from typing import BinaryIO

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.config import get_settings
from academy.db.models import Category, User, Video, VideoView
from academy.entitlements.service import utcnow
from academy.exceptions import NotFoundError, UpstreamError
from academy.videos.access import load_video
from academy.videos.provider import PROVIDER, ProcessingStatus, VimeoClient, pick_thumbnail
from academy.videos.schemas import VideoCreateRequest, VideoUpdateRequest

logger = structlog.get_logger()

STATUS_MESSAGES: dict[str, str] = {
    "uploading": "The video is still uploading to Vimeo.",
    "processing": "Vimeo is processing the video. This can take several minutes.",
    "available": "The video is ready to watch.",
    "error": "Vimeo failed to process the video.",
}

_CLEARABLE_FIELDS = frozenset({"description", "syllabus", "downloads", "meta_title", "meta_description"})


async def _require_category(db: AsyncSession, category_id: str) -> Category:
    category = await db.get(Category, category_id)
    if category is None or category.deleted_at is not None:
        raise NotFoundError("Category not found")
    return category


async def register_video(db: AsyncSession, body: VideoCreateRequest, provider: VimeoClient) -> Video:
    """Create a record for a video already hosted on Vimeo, pulling its metadata."""
    await _require_category(db, body.category_id)
    info = await provider.get_video_info(body.vimeo_id)

    video = Video(
        **body.model_dump(),
        vimeo_url=info.link,
        thumbnail=pick_thumbnail(info),
        duration=info.duration,
        published_at=utcnow() if body.is_published else None,
    )
    db.add(video)
    await db.commit()
    logger.info("video_registered", video_id=video.id, vimeo_id=video.vimeo_id)
    return video


async def get_visible_video(db: AsyncSession, video_id: str, requester: User | None) -> Video:
    """Unpublished videos look missing to everyone but staff."""
    video = await load_video(db, video_id)
    if not video.is_published and not (requester is not None and requester.is_staff):
        raise NotFoundError("Video not found")
    return video


async def update_video(
    db: AsyncSession,
    video_id: str,
    body: VideoUpdateRequest,
    provider: VimeoClient,
) -> Video:
    video = await load_video(db, video_id)
    changes = {
        field: value
        for field, value in body.model_dump(exclude_unset=True).items()
        if value is not None or field in _CLEARABLE_FIELDS
    }

    if changes.get("category_id") and changes["category_id"] != video.category_id:
        await _require_category(db, changes["category_id"])

    new_vimeo_id = changes.get("vimeo_id")
    if new_vimeo_id and new_vimeo_id != video.vimeo_id:
        info = await provider.get_video_info(new_vimeo_id)
        changes.update(vimeo_url=info.link, thumbnail=pick_thumbnail(info), duration=info.duration)

    if changes.get("is_published") and video.published_at is None:
        changes["published_at"] = utcnow()

    for field, value in changes.items():
        setattr(video, field, value)
    await db.commit()
    await db.refresh(video)
    logger.info("video_updated", video_id=video.id, fields=sorted(changes))
    return video


async def delete_video(db: AsyncSession, video_id: str) -> None:
    """Soft delete; the file stays on Vimeo."""
    video = await load_video(db, video_id)
    video.deleted_at = utcnow()
    await db.commit()
    logger.info("video_deleted", video_id=video_id)


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


def compute_progress(watched_seconds: int, duration: int | None) -> int:
    """Percentage watched, capped at 100. Unknown duration counts as 0%."""
    if not duration:
        return 0
    return min(100, round(watched_seconds / duration * 100))


async def update_progress(
    db: AsyncSession,
    user_id: str,
    video_id: str,
    watched_seconds: int,
    completed: bool = False,
) -> VideoView:
    video = await load_video(db, video_id)
    result = await db.execute(
        select(VideoView).where(VideoView.user_id == user_id, VideoView.video_id == video_id)
    )
    view = result.scalar_one_or_none()
    if view is None:
        view = VideoView(user_id=user_id, video_id=video_id)
        db.add(view)

    view.watched_seconds = watched_seconds
    view.total_seconds = video.duration
    view.progress = compute_progress(watched_seconds, video.duration)
    view.completed = completed
    view.last_watched_at = utcnow()
    await db.commit()
    return view


async def get_progress(db: AsyncSession, user_id: str, video_id: str) -> VideoView | None:
    result = await db.execute(
        select(VideoView).where(VideoView.user_id == user_id, VideoView.video_id == video_id)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------


async def wait_for_availability(
    provider: VimeoClient,
    vimeo_id: str,
    *,
    interval: float | None = None,
    max_attempts: int | None = None,
) -> ProcessingStatus | None:
    """
    Poll Vimeo until the video is playable, bounded in time.

    Returns the last status seen, or None when the status could not be read.
    Running out of attempts or failing to read the status is not an error: the
    record gets created and admins follow up through the upload-status endpoint.

    Raises:
        UpstreamError: Vimeo reports that processing failed.
    """
    settings = get_settings()
    interval = settings.upload_poll_interval_seconds if interval is None else interval
    max_attempts = settings.upload_poll_max_attempts if max_attempts is None else max_attempts

    status: ProcessingStatus | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            status = await provider.check_video_status(vimeo_id)
        except UpstreamError:
            logger.warning("vimeo_status_check_failed", vimeo_id=vimeo_id, attempt=attempt)
            return None

        if status == "available":
            logger.info("vimeo_video_available", vimeo_id=vimeo_id, attempt=attempt)
            return status
        if status == "error":
            raise UpstreamError(f"Vimeo failed to process video {vimeo_id}", provider=PROVIDER)

        logger.info("vimeo_video_pending", vimeo_id=vimeo_id, status=status, attempt=attempt, max_attempts=max_attempts)
        await asyncio.sleep(interval)

    logger.warning("vimeo_availability_timeout", vimeo_id=vimeo_id, attempts=max_attempts)
    return status


async def upload_video(
    db: AsyncSession,
    provider: VimeoClient,
    *,
    stream: BinaryIO,
    size: int,
    title: str,
    category_id: str,
    description: str | None = None,
    order: int = 0,
    is_published: bool = False,
) -> Video:
    """Push a file to Vimeo, wait (bounded) for processing, then create the record."""
    await _require_category(db, category_id)
    log = logger.bind(title=title, size=size)
    log.info("video_upload_started")

    def _on_progress(sent: int, total: int) -> None:
        log.debug("video_upload_progress", percent=round(sent / total * 100, 2) if total else 100.0)

    vimeo_id = await provider.upload_video(stream, size, title, description, on_progress=_on_progress)
    await wait_for_availability(provider, vimeo_id)

    info = await provider.get_video_info(vimeo_id)
    video = Video(
        title=title,
        description=description,
        vimeo_id=vimeo_id,
        vimeo_url=info.link,
        thumbnail=pick_thumbnail(info),
        duration=info.duration,
        category_id=category_id,
        order=order,
        is_published=is_published,
        published_at=utcnow() if is_published else None,
    )
    db.add(video)
    await db.commit()
    log.info("video_upload_recorded", video_id=video.id, vimeo_id=vimeo_id)
    return video


async def upload_status(db: AsyncSession, video_id: str, provider: VimeoClient) -> tuple[Video, ProcessingStatus, str]:
    video = await load_video(db, video_id)
    status = await provider.check_video_status(video.vimeo_id)
    return video, status, STATUS_MESSAGES[status]
