"""Entitlement endpoints: the caller's courses and admin grant/revoke."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user, require_staff
from academy.database import get_session
from academy.db.models import CategoryPurchase, User
from academy.entitlements import service
from academy.entitlements.schemas import (
    EntitlementResponse,
    ExpirationStatsResponse,
    ManualGrantRequest,
    MyCourseResponse,
)
from academy.exceptions import AcademyError

router = APIRouter(tags=["Entitlements"])


def _entitlement_response(purchase: CategoryPurchase) -> EntitlementResponse:
    return EntitlementResponse(
        id=purchase.id,
        user_id=purchase.user_id,
        category_id=purchase.category_id,
        amount=purchase.amount,
        currency=purchase.currency,
        payment_method=purchase.payment_method,
        transaction_id=purchase.transaction_id,
        payment_status=purchase.payment_status,
        is_active=purchase.is_active,
        expires_at=purchase.expires_at,
        notes=purchase.notes,
        created_at=purchase.created_at,
    )


@router.get("/api/v1/users/me/courses", response_model=list[MyCourseResponse])
async def my_courses(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> list[MyCourseResponse]:
    """Every course the caller ever bought, with whether access is still live."""
    now = service.utcnow()
    return [
        MyCourseResponse(
            category_id=category.id,
            name=category.name,
            slug=category.slug,
            image=category.image,
            purchased_at=purchase.created_at,
            expires_at=purchase.expires_at,
            payment_status=purchase.payment_status,
            has_access=service.is_entitlement_usable(purchase, now),
        )
        for purchase, category in await service.list_user_entitlements(db, user.id)
    ]


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.post(
    "/api/v1/admin/users/{user_id}/courses/{category_id}",
    response_model=EntitlementResponse,
    status_code=201,
)
async def grant_course(
    user_id: str,
    category_id: str,
    body: ManualGrantRequest,
    _admin: User = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
) -> EntitlementResponse:
    """Grant a course without a payment (admin)."""
    try:
        purchase = await service.grant_manual(
            db,
            user_id=user_id,
            category_id=category_id,
            amount=body.amount,
            currency=body.currency,
            payment_method=body.payment_method,
            notes=body.notes,
        )
    except AcademyError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e
    return _entitlement_response(purchase)


@router.delete("/api/v1/admin/users/{user_id}/courses/{category_id}", status_code=204)
async def revoke_course(
    user_id: str,
    category_id: str,
    _admin: User = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
) -> None:
    try:
        await service.revoke(db, user_id, category_id)
    except AcademyError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e


@router.get("/api/v1/admin/entitlements/stats", response_model=ExpirationStatsResponse)
async def entitlement_stats(
    _admin: User = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
) -> ExpirationStatsResponse:
    return ExpirationStatsResponse(**await service.expiration_stats(db))
