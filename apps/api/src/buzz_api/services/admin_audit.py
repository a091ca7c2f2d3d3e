from __future__ import annotations

from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from buzz_api.models.admin import AdminActivityLog


async def record_admin_activity(
    session: AsyncSession,
    *,
    admin_id: UUID | None,
    action: str,
    target_type: str | None = None,
    target_id: Any = None,
    details: dict[str, Any] | None = None,
) -> AdminActivityLog:
    """Append an audit row in the caller's transaction."""

    entry = AdminActivityLog(
        admin_id=admin_id,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        details=details or {},
    )
    session.add(entry)
    await session.flush()
    logger.info(
        "Recorded admin activity",
        admin_id=str(admin_id) if admin_id else None,
        action=action,
        target_type=target_type,
        target_id=entry.target_id,
    )
    return entry
