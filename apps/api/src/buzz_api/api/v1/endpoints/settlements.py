"""Business-facing settlement requests."""

from __future__ import annotations

from datetime import date
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from buzz_api.api.dependencies.session import require_business_or_admin, require_business_owner
from buzz_api.api.envelope import paginated, success
from buzz_api.core.clock import isoformat
from buzz_api.db.session import get_session
from buzz_api.models.settlement import SettlementRequest, SettlementStatus
from buzz_api.models.user import User
from buzz_api.services.settlements import SettlementService, SettlementSummary, estimated_payment_date


router = APIRouter(prefix="/settlements", tags=["settlements"])


class BankInfo(BaseModel):
    bankName: Optional[str] = Field(None, max_length=64)
    accountNumber: Optional[str] = Field(None, max_length=64)


class SettlementCreateRequest(BaseModel):
    settlementDate: date
    businessId: Optional[UUID] = Field(None, description="Required only for owners of several businesses")
    bankInfo: Optional[BankInfo] = None


class SettlementCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


def serialize_settlement(settlement: SettlementRequest) -> dict[str, Any]:
    return {
        "id": str(settlement.id),
        "businessId": str(settlement.business_id),
        "businessName": settlement.business.business_name if settlement.business else None,
        "settlementDate": settlement.settlement_date.isoformat(),
        "couponCount": settlement.coupon_count,
        "couponAmount": float(settlement.coupon_amount),
        "mileageCount": settlement.mileage_count,
        "mileageAmount": float(settlement.mileage_amount),
        "totalAmount": float(settlement.total_amount),
        "bankName": settlement.bank_name,
        "bankAccount": settlement.bank_account,
        "status": settlement.status.value,
        "requestedAt": isoformat(settlement.requested_at),
        "approvedAt": isoformat(settlement.approved_at),
        "rejectedAt": isoformat(settlement.rejected_at),
        "cancelledAt": isoformat(settlement.cancelled_at),
        "paidAt": isoformat(settlement.paid_at),
        "rejectionReason": settlement.rejection_reason,
        "adminNote": settlement.admin_note,
        "paymentReference": settlement.payment_reference,
    }


def serialize_summary(summary: SettlementSummary) -> dict[str, Any]:
    return {
        "pendingAmount": float(summary.pending_amount),
        "approvedAmount": float(summary.approved_amount),
        "paidAmount": float(summary.paid_amount),
        "pendingCount": summary.pending_count,
        "approvedCount": summary.approved_count,
        "paidCount": summary.paid_count,
    }


@router.post("/request", status_code=status.HTTP_201_CREATED, summary="Request a settlement for one day")
async def request_settlement(
    body: SettlementCreateRequest,
    owner: User = Depends(require_business_owner),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    bank = body.bankInfo or BankInfo()
    service = SettlementService(db)
    settlement = await service.request_settlement(
        owner.id,
        settlement_date=body.settlementDate,
        business_id=body.businessId,
        bank_name=bank.bankName,
        bank_account=bank.accountNumber,
    )
    await db.commit()
    data = {
        "settlementId": str(settlement.id),
        "totalAmount": float(settlement.total_amount),
        "couponAmount": float(settlement.coupon_amount),
        "mileageAmount": float(settlement.mileage_amount),
        "status": settlement.status.value,
        "requestedAt": isoformat(settlement.requested_at),
        "estimatedPaymentDate": isoformat(estimated_payment_date(settlement.requested_at)),
    }
    return success(data, "Settlement requested successfully")


@router.get("", summary="List settlement requests")
async def list_settlements(
    settlement_status: Optional[SettlementStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: User = Depends(require_business_or_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    service = SettlementService(db)
    rows, total, summary = await service.list_settlements(actor, status=settlement_status, page=page, limit=limit)
    data = paginated(
        [serialize_settlement(row) for row in rows],
        total=total,
        page=page,
        limit=limit,
        summary=serialize_summary(summary),
    )
    return success(data, "Settlements retrieved successfully")


@router.get("/{settlement_id}", summary="Settlement detail with underlying redemptions")
async def get_settlement(
    settlement_id: UUID,
    actor: User = Depends(require_business_or_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    service = SettlementService(db)
    detail = await service.get_settlement(actor, settlement_id)
    data = serialize_settlement(detail.settlement)
    data["coupons"] = [
        {
            "id": str(coupon.id),
            "couponName": coupon.template.name if coupon.template else None,
            "usedAmount": float(coupon.used_amount or 0),
            "usedAt": isoformat(coupon.used_at),
        }
        for coupon in detail.coupons
    ]
    data["mileageTransactions"] = [
        {
            "id": str(transaction.id),
            "amount": float(transaction.amount),
            "createdAt": isoformat(transaction.created_at),
        }
        for transaction in detail.mileage_transactions
    ]
    data["timeline"] = [
        {"status": event.status, "occurredAt": isoformat(event.occurred_at), "note": event.note}
        for event in detail.timeline
    ]
    return success(data, "Settlement retrieved successfully")


@router.post("/{settlement_id}/cancel", summary="Withdraw a pending settlement request")
async def cancel_settlement(
    settlement_id: UUID,
    body: Optional[SettlementCancelRequest] = None,
    owner: User = Depends(require_business_owner),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    service = SettlementService(db)
    settlement = await service.cancel(owner.id, settlement_id, reason=body.reason if body else None)
    await db.commit()
    return success(
        {"settlementId": str(settlement.id), "status": settlement.status.value},
        "Settlement request cancelled",
    )
