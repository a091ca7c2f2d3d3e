"""Per-request collaborators resolved through FastAPI's dependency graph."""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from buzz_api.db.session import get_session
from buzz_api.services.budget import BudgetMonitor, BudgetPolicy
from buzz_api.services.notifications import NotificationService

_notification_service: NotificationService | None = None


def get_notification_service() -> NotificationService:
    global _notification_service
    if _notification_service is None:
        _notification_service = NotificationService()
    return _notification_service


async def resolve_budget_policy(db: AsyncSession = Depends(get_session)) -> BudgetPolicy:
    """The stored budget policy, or defaults from settings."""

    return await BudgetMonitor(db).load_policy()
