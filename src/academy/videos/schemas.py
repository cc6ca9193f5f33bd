"""Video request/response schemas.

Responses come in two profiles keyed by the caller's role; use
``serialize_video`` rather than building them directly.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from academy.db.models import STAFF_ROLES, Video


class VideoCreateRequest(BaseModel):
    """Register a video that already exists on Vimeo."""

    title: str = Field(..., min_length=1, max_length=300)
    vimeo_id: str = Field(..., min_length=1, max_length=32)
    category_id: str
    description: str | None = None
    order: int = Field(0, ge=0)
    is_published: bool = False
    syllabus: str | None = None
    downloads: dict[str, Any] | None = None
    meta_title: str | None = Field(None, max_length=300)
    meta_description: str | None = None


class VideoUpdateRequest(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=300)
    vimeo_id: str | None = Field(None, min_length=1, max_length=32)
    description: str | None = None
    category_id: str | None = None
    order: int | None = Field(None, ge=0)
    is_published: bool | None = None
    syllabus: str | None = None
    downloads: dict[str, Any] | None = None
    meta_title: str | None = Field(None, max_length=300)
    meta_description: str | None = None


class VideoResponse(BaseModel):
    """Public video profile."""

    model_config = {"from_attributes": True}

    id: str
    title: str
    description: str | None = None
    thumbnail: str | None = None
    duration: int | None = None
    category_id: str
    order: int
    is_preview: bool = False
    is_published: bool
    published_at: datetime | None = None
    syllabus: str | None = None
    downloads: dict[str, Any] | None = None
    meta_title: str | None = None
    meta_description: str | None = None
    created_at: datetime
    updated_at: datetime


class VideoAdminResponse(VideoResponse):
    """Staff profile: adds the provider identifier."""

    vimeo_id: str


def serialize_video(video: Video, role: str | None) -> VideoResponse:
    profile = VideoAdminResponse if role in STAFF_ROLES else VideoResponse
    response = profile.model_validate(video)
    response.is_preview = video.order == 0
    return response


class StreamResponse(BaseModel):
    stream_url: str
    expires_in: int
    is_preview: bool


class ProgressRequest(BaseModel):
    watched_seconds: int = Field(..., ge=0)
    completed: bool = False


class ProgressResponse(BaseModel):
    video_id: str
    watched_seconds: int
    total_seconds: int | None = None
    progress: int
    completed: bool
    last_watched_at: datetime | None = None


class UploadStatusResponse(BaseModel):
    video_id: str
    vimeo_id: str
    status: Literal["uploading", "processing", "available", "error"]
    message: str
