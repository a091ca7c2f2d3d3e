"""Admin corrections to the mileage ledger."""

from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from buzz_api.api.dependencies.session import require_admin
from buzz_api.api.envelope import success
from buzz_api.db.session import get_session
from buzz_api.models.user import User
from buzz_api.services.admin_audit import record_admin_activity
from buzz_api.services.mileage import MileageLedgerService

from .mileage import serialize_transaction


router = APIRouter(prefix="/admin/mileage", tags=["admin"])


class RefundRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


@router.post(
    "/transactions/{transaction_id}/refund",
    status_code=status.HTTP_201_CREATED,
    summary="Refund a mileage payment",
)
async def refund_transaction(
    transaction_id: UUID,
    body: Optional[RefundRequest] = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    reason = body.reason if body else None
    service = MileageLedgerService(db)
    refund = await service.refund_use(transaction_id, reason=reason)
    await record_admin_activity(
        db,
        admin_id=admin.id,
        action="mileage_refunded",
        target_type="mileage_transaction",
        target_id=transaction_id,
        details={"refundTransactionId": str(refund.id), "amount": float(refund.amount), "reason": reason},
    )
    await db.commit()
    return success(serialize_transaction(refund), "Mileage refunded")
