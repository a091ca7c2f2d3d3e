"""Session-aware dependencies; authentication itself happens upstream."""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from buzz_api.db.session import get_session
from buzz_api.models.user import User, UserRoleEnum


async def require_session_user(
    session_user: str | None = Header(None, alias="X-Session-User"),
    db: AsyncSession = Depends(get_session),
) -> User:
    """Resolve the authenticated user from forwarded session headers."""

    if not session_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing session user context",
        )

    try:
        user_id = UUID(session_user)
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session user identifier",
        ) from error

    stmt = select(User).where(User.id == user_id)
    result = await db.execute(stmt)
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session user not found",
        )

    return user


async def require_admin(user: User = Depends(require_session_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return user


async def require_business_owner(user: User = Depends(require_session_user)) -> User:
    if user.role != UserRoleEnum.BUSINESS.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Business role required")
    return user


async def require_business_or_admin(user: User = Depends(require_session_user)) -> User:
    if user.role not in (UserRoleEnum.BUSINESS.value, UserRoleEnum.ADMIN.value):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Business or admin role required")
    return user
