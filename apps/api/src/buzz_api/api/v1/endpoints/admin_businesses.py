"""Admin business approval workflow."""

from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from buzz_api.api.dependencies.services import get_notification_service
from buzz_api.api.dependencies.session import require_admin
from buzz_api.api.envelope import paginated, success
from buzz_api.core.clock import isoformat
from buzz_api.db.session import get_session
from buzz_api.models.business import Business, BusinessStatus
from buzz_api.models.user import User
from buzz_api.services.businesses import BusinessApprovalService
from buzz_api.services.notifications import NotificationService


router = APIRouter(prefix="/admin/businesses", tags=["admin"])


class ReasonRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


def serialize_business(business: Business) -> dict[str, Any]:
    return {
        "id": str(business.id),
        "ownerId": str(business.owner_id),
        "businessName": business.business_name,
        "category": business.category,
        "address": business.address,
        "phoneNumber": business.phone_number,
        "status": business.status.value,
        "qrScanCount": business.qr_scan_count,
        "rejectionReason": business.rejection_reason,
        "approvedAt": isoformat(business.approved_at),
        "createdAt": isoformat(business.created_at),
    }


@router.get("", summary="List businesses by review status")
async def list_businesses(
    business_status: Optional[BusinessStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    service = BusinessApprovalService(db)
    rows, total = await service.list_businesses(status=business_status, page=page, limit=limit)
    data = paginated([serialize_business(row) for row in rows], total=total, page=page, limit=limit)
    return success(data, "Businesses retrieved successfully")


@router.post("/{business_id}/approve", summary="Approve a pending business")
async def approve_business(
    business_id: UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    notifications: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    business = await BusinessApprovalService(db).approve(admin.id, business_id)
    await db.commit()
    await notifications.send_business_status(business)
    return success(serialize_business(business), "Business approved")


@router.post("/{business_id}/reject", summary="Reject a pending business")
async def reject_business(
    business_id: UUID,
    body: Optional[ReasonRequest] = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    notifications: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    business = await BusinessApprovalService(db).reject(admin.id, business_id, reason=body.reason if body else None)
    await db.commit()
    await notifications.send_business_status(business)
    return success(serialize_business(business), "Business rejected")


@router.post("/{business_id}/suspend", summary="Suspend an approved business")
async def suspend_business(
    business_id: UUID,
    body: Optional[ReasonRequest] = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    notifications: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    business = await BusinessApprovalService(db).suspend(admin.id, business_id, reason=body.reason if body else None)
    await db.commit()
    await notifications.send_business_status(business)
    return success(serialize_business(business), "Business suspended")


@router.post("/{business_id}/reinstate", summary="Lift a suspension")
async def reinstate_business(
    business_id: UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    notifications: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    business = await BusinessApprovalService(db).reinstate(admin.id, business_id)
    await db.commit()
    await notifications.send_business_status(business)
    return success(serialize_business(business), "Business reinstated")
