"""Category endpoints: /api/v1/categories/*."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user_optional
from academy.categories import service
from academy.categories.schemas import CategoryResponse, CategoryVideo
from academy.database import get_session
from academy.db.models import User
from academy.exceptions import AcademyError

router = APIRouter(prefix="/api/v1/categories", tags=["Categories"])


@router.get("/{slug}", response_model=CategoryResponse)
async def get_category(
    slug: str,
    user: User | None = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_session),
) -> CategoryResponse:
    """Course detail with its video list and the caller's access flag."""
    try:
        category = await service.get_category_by_slug(db, slug)
    except AcademyError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e

    return CategoryResponse(
        id=category.id,
        name=category.name,
        slug=category.slug,
        description=category.description,
        image=category.image,
        price_ars=category.price_ars,
        price_usd=category.price_usd,
        is_free=category.is_free,
        has_access=await service.has_access(db, category, user),
        videos=[
            CategoryVideo(
                id=v.id,
                title=v.title,
                thumbnail=v.thumbnail,
                duration=v.duration,
                order=v.order,
                is_preview=v.order == 0,
            )
            for v in service.visible_videos(category, user)
        ],
    )
