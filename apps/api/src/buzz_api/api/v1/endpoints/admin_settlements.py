"""Admin settlement approval actions."""

from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from buzz_api.api.dependencies.services import get_notification_service
from buzz_api.api.dependencies.session import require_admin
from buzz_api.api.envelope import success
from buzz_api.db.session import get_session
from buzz_api.models.business import Business
from buzz_api.models.settlement import SettlementRequest
from buzz_api.models.user import User
from buzz_api.services.notifications import NotificationService
from buzz_api.services.settlements import SettlementService

from .settlements import serialize_settlement


router = APIRouter(prefix="/admin/settlements", tags=["admin"])


class ApproveRequest(BaseModel):
    note: Optional[str] = Field(None, max_length=1000)


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class MarkPaidRequest(BaseModel):
    paymentReference: Optional[str] = Field(None, max_length=128)


async def _notify(
    db: AsyncSession,
    notifications: NotificationService,
    settlement: SettlementRequest,
) -> None:
    business = settlement.business or await db.get(Business, settlement.business_id)
    if business is not None:
        await notifications.send_settlement_status(settlement, business)


@router.post("/{settlement_id}/approve", summary="Approve a pending settlement")
async def approve_settlement(
    settlement_id: UUID,
    body: Optional[ApproveRequest] = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    notifications: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    service = SettlementService(db)
    settlement = await service.approve(admin.id, settlement_id, note=body.note if body else None)
    await db.commit()
    await _notify(db, notifications, settlement)
    return success(serialize_settlement(settlement), "Settlement approved")


@router.post("/{settlement_id}/reject", summary="Reject a pending settlement")
async def reject_settlement(
    settlement_id: UUID,
    body: Optional[RejectRequest] = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    notifications: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    service = SettlementService(db)
    settlement = await service.reject(admin.id, settlement_id, reason=body.reason if body else None)
    await db.commit()
    await _notify(db, notifications, settlement)
    return success(serialize_settlement(settlement), "Settlement rejected")


@router.post("/{settlement_id}/mark-paid", summary="Record the payout of an approved settlement")
async def mark_settlement_paid(
    settlement_id: UUID,
    body: Optional[MarkPaidRequest] = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    notifications: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    service = SettlementService(db)
    settlement = await service.mark_paid(
        admin.id,
        settlement_id,
        payment_reference=body.paymentReference if body else None,
    )
    await db.commit()
    await _notify(db, notifications, settlement)
    return success(serialize_settlement(settlement), "Settlement marked as paid")
