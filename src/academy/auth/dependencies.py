"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.jwt import verify_token
from academy.auth.service import get_user_by_id
from academy.database import get_session
from academy.db.models import User

_bearer = HTTPBearer()
_bearer_optional = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> User:
    """
    Extract and verify JWT, return User model.

    Raises 401/403 on failure.
    """
    try:
        payload = verify_token(credentials.credentials, expected_type="access")
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    user = await get_user_by_id(db, str(payload["sub"]))
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is disabled")
    return user


async def get_current_user_optional(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer_optional),
    db: AsyncSession = Depends(get_session),
) -> User | None:
    """Extract user from JWT if present, return None otherwise."""
    if credentials is None:
        return None
    try:
        payload = verify_token(credentials.credentials, expected_type="access")
    except jwt.InvalidTokenError:
        return None
    user = await get_user_by_id(db, str(payload["sub"]))
    if user is None or not user.is_active:
        return None
    return user


async def require_staff(
    user: User = Depends(get_current_user),
) -> User:
    """Same as get_current_user but restricted to ADMIN and SUBADMIN."""
    if not user.is_staff:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
