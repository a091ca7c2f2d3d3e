"""Member coupon wallet and redemption endpoints."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from buzz_api.api.dependencies.session import require_session_user
from buzz_api.api.envelope import paginated, success
from buzz_api.core.clock import ensure_aware, isoformat, utcnow
from buzz_api.core.settings import settings
from buzz_api.db.session import get_session
from buzz_api.models.coupon import CouponTemplate, UserCoupon, UserCouponStatus
from buzz_api.models.user import User
from buzz_api.services.coupons import CouponService


router = APIRouter(prefix="/coupons", tags=["coupons"])


class RedeemCouponRequest(BaseModel):
    qrCode: str = Field(..., min_length=1)
    purchaseAmount: float = Field(..., gt=0)
    businessId: UUID


class RedeemCouponResponse(BaseModel):
    couponId: UUID
    purchaseAmount: float
    discountAmount: float
    finalAmount: float
    businessName: str
    couponName: str
    message: str


def serialize_template(template: CouponTemplate, business_names: dict[str, str] | None = None) -> dict[str, Any]:
    names = business_names or {}
    applicable = list(template.applicable_businesses or [])
    return {
        "id": str(template.id),
        "name": template.name,
        "description": template.description,
        "kind": template.kind.value,
        "discountType": template.discount_type.value,
        "discountValue": float(template.discount_value),
        "minPurchaseAmount": float(template.min_purchase_amount or 0),
        "maxDiscountAmount": float(template.max_discount_amount) if template.max_discount_amount is not None else None,
        "validFrom": template.valid_from.isoformat(),
        "validUntil": template.valid_until.isoformat(),
        "totalQuantity": template.total_quantity,
        "usedQuantity": template.used_quantity,
        "issuedQuantity": template.issued_quantity,
        "remainingQuantity": template.remaining_quantity,
        "applicableBusinesses": applicable,
        "applicableBusinessNames": [names[item] for item in applicable if item in names],
        "status": template.status.value,
    }


def serialize_coupon(coupon: UserCoupon, business_names: dict[str, str] | None = None) -> dict[str, Any]:
    expires_at = ensure_aware(coupon.expires_at)
    soon = utcnow() + timedelta(days=settings.coupon_expiring_soon_days)
    return {
        "id": str(coupon.id),
        "status": coupon.status.value,
        "qrCodeData": coupon.qr_code_data,
        "issuedAt": isoformat(coupon.issued_at),
        "expiresAt": isoformat(expires_at),
        "usedAt": isoformat(coupon.used_at),
        "usedBusinessId": str(coupon.used_business_id) if coupon.used_business_id else None,
        "usedAmount": float(coupon.used_amount) if coupon.used_amount is not None else None,
        "isExpiringSoon": coupon.status is UserCouponStatus.ACTIVE and expires_at <= soon,
        "template": serialize_template(coupon.template, business_names),
    }


@router.get("", summary="Coupons held by the session user")
async def list_coupons(
    coupon_status: Optional[UserCouponStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    service = CouponService(db)
    coupons, total = await service.list_user_coupons(user.id, status=coupon_status, page=page, limit=limit)
    names = await service.business_names(
        business_id for coupon in coupons for business_id in coupon.template.applicable_businesses or []
    )
    data = paginated([serialize_coupon(coupon, names) for coupon in coupons], total=total, page=page, limit=limit)
    return success(data, "Coupons retrieved successfully")


@router.get("/available", summary="Templates the session user can still claim")
async def list_available(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    service = CouponService(db)
    templates, total = await service.list_available(user.id, page=page, limit=limit)
    data = paginated([serialize_template(template) for template in templates], total=total, page=page, limit=limit)
    return success(data, "Available coupons retrieved successfully")


@router.post("/use", summary="Redeem a coupon at a business")
async def use_coupon(
    body: RedeemCouponRequest,
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    service = CouponService(db)
    redemption = await service.redeem(
        user.id,
        qr_code=body.qrCode,
        business_id=body.businessId,
        purchase_amount=body.purchaseAmount,
    )
    await db.commit()
    discount = float(redemption.discount_amount)
    payload = RedeemCouponResponse(
        couponId=redemption.coupon.id,
        purchaseAmount=float(redemption.purchase_amount),
        discountAmount=discount,
        finalAmount=float(redemption.final_amount),
        businessName=redemption.business.business_name,
        couponName=redemption.template.name,
        message=f"{discount:,.0f} discount applied",
    )
    return success(payload.model_dump(mode="json"), "Coupon used successfully")


@router.post("/{template_id}/claim", status_code=status.HTTP_201_CREATED, summary="Claim an available coupon")
async def claim_coupon(
    template_id: UUID,
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    service = CouponService(db)
    coupon = await service.claim(user.id, template_id)
    await db.commit()
    return success(serialize_coupon(coupon), "Coupon claimed")


@router.get("/{coupon_id}", summary="Coupon detail")
async def get_coupon(
    coupon_id: UUID,
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    service = CouponService(db)
    coupon = await service.get_user_coupon(user.id, coupon_id)
    names = await service.business_names(coupon.template.applicable_businesses or [])
    return success(serialize_coupon(coupon, names), "Coupon retrieved successfully")
