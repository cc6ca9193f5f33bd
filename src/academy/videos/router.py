"""Video endpoints: /api/v1/videos/*."""

from __future__ import annotations

import os

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user, get_current_user_optional, require_staff
from academy.database import get_session
from academy.db.models import User
from academy.exceptions import AcademyError
from academy.videos import service
from academy.videos.access import get_streaming_url
from academy.videos.provider import VimeoClient
from academy.videos.schemas import (
    ProgressRequest,
    ProgressResponse,
    StreamResponse,
    UploadStatusResponse,
    VideoCreateRequest,
    VideoResponse,
    VideoUpdateRequest,
    serialize_video,
)

router = APIRouter(prefix="/api/v1/videos", tags=["Videos"])


def get_video_provider() -> VimeoClient:
    return VimeoClient.from_settings()


def _http_error(exc: AcademyError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


@router.post("", response_model=VideoResponse, status_code=201)
async def create_video(
    body: VideoCreateRequest,
    admin: User = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
    provider: VimeoClient = Depends(get_video_provider),
) -> VideoResponse:
    """Register a video already hosted on Vimeo (admin)."""
    try:
        video = await service.register_video(db, body, provider)
    except AcademyError as e:
        raise _http_error(e) from e
    return serialize_video(video, admin.role)


@router.post("/upload", response_model=VideoResponse, status_code=201)
async def upload_video(
    file: UploadFile = File(...),
    title: str = Form(..., min_length=1, max_length=300),
    category_id: str = Form(...),
    description: str | None = Form(None),
    order: int = Form(0, ge=0),
    is_published: bool = Form(False),
    admin: User = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
    provider: VimeoClient = Depends(get_video_provider),
) -> VideoResponse:
    """Upload a file to Vimeo and create its record (admin).

    Blocks until Vimeo finishes processing or the polling attempts run out.
    """
    size = file.size
    if size is None:
        size = file.file.seek(0, os.SEEK_END)
        file.file.seek(0)
    try:
        video = await service.upload_video(
            db,
            provider,
            stream=file.file,
            size=size,
            title=title,
            category_id=category_id,
            description=description,
            order=order,
            is_published=is_published,
        )
    except AcademyError as e:
        raise _http_error(e) from e
    finally:
        await file.close()
    return serialize_video(video, admin.role)


@router.get("/{video_id}", response_model=VideoResponse)
async def get_video(
    video_id: str,
    user: User | None = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_session),
) -> VideoResponse:
    try:
        video = await service.get_visible_video(db, video_id, user)
    except AcademyError as e:
        raise _http_error(e) from e
    return serialize_video(video, user.role if user else None)


@router.patch("/{video_id}", response_model=VideoResponse)
async def update_video(
    video_id: str,
    body: VideoUpdateRequest,
    admin: User = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
    provider: VimeoClient = Depends(get_video_provider),
) -> VideoResponse:
    try:
        video = await service.update_video(db, video_id, body, provider)
    except AcademyError as e:
        raise _http_error(e) from e
    return serialize_video(video, admin.role)


@router.delete("/{video_id}", status_code=204)
async def delete_video(
    video_id: str,
    _admin: User = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
) -> None:
    try:
        await service.delete_video(db, video_id)
    except AcademyError as e:
        raise _http_error(e) from e


@router.get("/{video_id}/stream", response_model=StreamResponse)
async def stream_video(
    video_id: str,
    user: User | None = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_session),
    provider: VimeoClient = Depends(get_video_provider),
) -> StreamResponse:
    """Short-lived player URL, subject to the preview/purchase rules."""
    try:
        grant = await get_streaming_url(db, video_id, user, provider)
    except AcademyError as e:
        raise _http_error(e) from e
    return StreamResponse(stream_url=grant.stream_url, expires_in=grant.expires_in, is_preview=grant.is_preview)


@router.post("/{video_id}/progress", response_model=ProgressResponse)
async def save_progress(
    video_id: str,
    body: ProgressRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ProgressResponse:
    try:
        view = await service.update_progress(db, user.id, video_id, body.watched_seconds, body.completed)
    except AcademyError as e:
        raise _http_error(e) from e
    return ProgressResponse(
        video_id=video_id,
        watched_seconds=view.watched_seconds,
        total_seconds=view.total_seconds,
        progress=view.progress,
        completed=view.completed,
        last_watched_at=view.last_watched_at,
    )


@router.get("/{video_id}/progress", response_model=ProgressResponse)
async def read_progress(
    video_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ProgressResponse:
    view = await service.get_progress(db, user.id, video_id)
    if view is None:
        return ProgressResponse(video_id=video_id, watched_seconds=0, progress=0, completed=False)
    return ProgressResponse(
        video_id=video_id,
        watched_seconds=view.watched_seconds,
        total_seconds=view.total_seconds,
        progress=view.progress,
        completed=view.completed,
        last_watched_at=view.last_watched_at,
    )


@router.get("/{video_id}/upload-status", response_model=UploadStatusResponse)
async def get_upload_status(
    video_id: str,
    _admin: User = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
    provider: VimeoClient = Depends(get_video_provider),
) -> UploadStatusResponse:
    """Vimeo processing state for a video (admin)."""
    try:
        video, status, message = await service.upload_status(db, video_id, provider)
    except AcademyError as e:
        raise _http_error(e) from e
    return UploadStatusResponse(video_id=video.id, vimeo_id=video.vimeo_id, status=status, message=message)
