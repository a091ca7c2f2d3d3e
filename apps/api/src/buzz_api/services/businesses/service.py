"""Business approval workflow."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from buzz_api.core.clock import utcnow
from buzz_api.core.errors import InvalidBusinessTransition, NotFound
from buzz_api.models.business import Business, BusinessStatus
from buzz_api.services.admin_audit import record_admin_activity


class BusinessApprovalService:
    """Moves partner businesses between review states."""

    _ALLOWED_TRANSITIONS: dict[BusinessStatus, set[BusinessStatus]] = {
        BusinessStatus.PENDING: {BusinessStatus.APPROVED, BusinessStatus.REJECTED},
        BusinessStatus.APPROVED: {BusinessStatus.SUSPENDED},
        BusinessStatus.SUSPENDED: {BusinessStatus.APPROVED},
        BusinessStatus.REJECTED: {BusinessStatus.PENDING},
    }

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    @classmethod
    def can_transition(cls, current: BusinessStatus, target: BusinessStatus) -> bool:
        return target in cls._ALLOWED_TRANSITIONS.get(current, set())

    async def list_businesses(
        self,
        *,
        status: BusinessStatus | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[Sequence[Business], int]:
        filters = [Business.status == status] if status is not None else []
        total = (await self._db.execute(select(func.count(Business.id)).where(*filters))).scalar_one()
        rows = (
            await self._db.execute(
                select(Business)
                .where(*filters)
                .order_by(Business.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
        ).scalars().all()
        return rows, int(total or 0)

    async def approve(self, admin_id: UUID, business_id: UUID, *, now: datetime | None = None) -> Business:
        business = await self._lock(business_id)
        self._apply(business, BusinessStatus.APPROVED)
        business.approved_at = now or utcnow()
        business.rejection_reason = None
        await self._audit(admin_id, "business_approved", business)
        return business

    async def reject(self, admin_id: UUID, business_id: UUID, *, reason: str | None = None) -> Business:
        business = await self._lock(business_id)
        self._apply(business, BusinessStatus.REJECTED)
        business.rejection_reason = reason
        await self._audit(admin_id, "business_rejected", business, reason=reason)
        return business

    async def suspend(self, admin_id: UUID, business_id: UUID, *, reason: str | None = None) -> Business:
        business = await self._lock(business_id)
        self._apply(business, BusinessStatus.SUSPENDED)
        business.rejection_reason = reason
        await self._audit(admin_id, "business_suspended", business, reason=reason)
        return business

    async def reinstate(self, admin_id: UUID, business_id: UUID, *, now: datetime | None = None) -> Business:
        business = await self._lock(business_id)
        self._apply(business, BusinessStatus.APPROVED)
        business.approved_at = now or utcnow()
        business.rejection_reason = None
        await self._audit(admin_id, "business_reinstated", business)
        return business

    async def reapply(self, owner_id: UUID, business_id: UUID) -> Business:
        """Send a rejected business back to review; owners only."""

        business = await self._lock(business_id)
        if business.owner_id != owner_id:
            raise NotFound("Business")
        self._apply(business, BusinessStatus.PENDING)
        await self._db.flush()
        logger.info("Business resubmitted for review", business_id=str(business.id), owner_id=str(owner_id))
        return business

    def _apply(self, business: Business, target: BusinessStatus) -> None:
        if not self.can_transition(business.status, target):
            raise InvalidBusinessTransition(business.status.value, target.value)
        business.status = target

    async def _lock(self, business_id: UUID) -> Business:
        stmt = (
            select(Business)
            .where(Business.id == business_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        business = (await self._db.execute(stmt)).scalar_one_or_none()
        if business is None:
            raise NotFound("Business")
        return business

    async def _audit(self, admin_id: UUID, action: str, business: Business, *, reason: str | None = None) -> None:
        await self._db.flush()
        await record_admin_activity(
            self._db,
            admin_id=admin_id,
            action=action,
            target_type="business",
            target_id=business.id,
            details={"status": business.status.value, "reason": reason},
        )


__all__ = ["BusinessApprovalService"]
