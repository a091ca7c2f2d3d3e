"""Admin coupon template management and issuance."""

from __future__ import annotations

from datetime import date
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from buzz_api.api.dependencies.session import require_admin
from buzz_api.api.envelope import paginated, success
from buzz_api.core.clock import isoformat
from buzz_api.db.session import get_session
from buzz_api.models.coupon import CouponKind, CouponTemplateStatus, DiscountType
from buzz_api.models.user import User
from buzz_api.services.admin_audit import record_admin_activity
from buzz_api.services.coupons import CouponService

from .coupons import serialize_coupon, serialize_template


router = APIRouter(prefix="/admin/coupons", tags=["admin"])


class CouponTemplateCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    kind: CouponKind = CouponKind.BASIC
    discountType: DiscountType
    discountValue: float = Field(..., gt=0)
    minPurchaseAmount: float = Field(0, ge=0)
    maxDiscountAmount: Optional[float] = Field(None, gt=0)
    validFrom: date
    validUntil: date
    totalQuantity: Optional[int] = Field(None, gt=0)
    applicableBusinesses: List[UUID] = Field(default_factory=list)


class CouponIssueRequest(BaseModel):
    userId: Optional[UUID] = Field(None, description="Single recipient")
    userIds: Optional[List[UUID]] = Field(None, description="Bulk recipients")
    expirationDays: Optional[int] = Field(None, gt=0)

    @model_validator(mode="after")
    def _require_recipients(self) -> "CouponIssueRequest":
        if self.userId is None and not self.userIds:
            raise ValueError("userId or userIds must be provided")
        return self


class TemplateStatusRequest(BaseModel):
    status: CouponTemplateStatus


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create a coupon template")
async def create_template(
    body: CouponTemplateCreateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    service = CouponService(db)
    template = await service.create_template(
        name=body.name,
        description=body.description,
        kind=body.kind,
        discount_type=body.discountType,
        discount_value=body.discountValue,
        min_purchase_amount=body.minPurchaseAmount,
        max_discount_amount=body.maxDiscountAmount,
        valid_from=body.validFrom,
        valid_until=body.validUntil,
        total_quantity=body.totalQuantity,
        applicable_businesses=body.applicableBusinesses,
        created_by=admin.id,
    )
    await record_admin_activity(
        db,
        admin_id=admin.id,
        action="coupon_template_created",
        target_type="coupon_template",
        target_id=template.id,
        details={"name": template.name},
    )
    await db.commit()
    return success(serialize_template(template), "Coupon template created")


@router.get("", summary="List coupon templates")
async def list_templates(
    template_status: Optional[CouponTemplateStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    service = CouponService(db)
    templates, total = await service.list_templates(status=template_status, page=page, limit=limit)
    data = paginated([serialize_template(template) for template in templates], total=total, page=page, limit=limit)
    return success(data, "Coupon templates retrieved successfully")


@router.patch("/{template_id}/status", summary="Activate or deactivate a template")
async def set_template_status(
    template_id: UUID,
    body: TemplateStatusRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    service = CouponService(db)
    template = await service.set_template_status(template_id, body.status)
    await record_admin_activity(
        db,
        admin_id=admin.id,
        action="coupon_template_status_changed",
        target_type="coupon_template",
        target_id=template.id,
        details={"status": body.status.value},
    )
    await db.commit()
    return success(serialize_template(template), "Coupon template updated")


@router.post("/{template_id}/issue", status_code=status.HTTP_201_CREATED, summary="Issue coupons to users")
async def issue_coupons(
    template_id: UUID,
    body: CouponIssueRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    service = CouponService(db)
    if body.userIds:
        recipients = list(body.userIds)
        if body.userId is not None:
            recipients.append(body.userId)
        result = await service.issue_bulk(template_id, recipients, expiration_days=body.expirationDays)
        await record_admin_activity(
            db,
            admin_id=admin.id,
            action="coupon_bulk_issued",
            target_type="coupon_template",
            target_id=template_id,
            details={"issuedCount": result.issued_count, "skippedCount": result.skipped_count},
        )
        await db.commit()
        data = {
            "issuedCount": result.issued_count,
            "skippedCount": result.skipped_count,
            "totalTargeted": result.total_targeted,
            "expiresAt": isoformat(result.expires_at),
            "couponIds": [str(coupon.id) for coupon in result.issued],
        }
        return success(data, f"{result.issued_count} coupons issued")

    coupon = await service.issue(body.userId, template_id, expiration_days=body.expirationDays)
    await record_admin_activity(
        db,
        admin_id=admin.id,
        action="coupon_issued",
        target_type="user_coupon",
        target_id=coupon.id,
        details={"templateId": str(template_id), "userId": str(body.userId)},
    )
    await db.commit()
    return success(serialize_coupon(coupon), "Coupon issued")
