"""Mileage balance, QR payment and history endpoints."""

from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from buzz_api.api.dependencies.security import require_internal_api_key
from buzz_api.api.dependencies.session import require_session_user
from buzz_api.api.envelope import paginated, success
from buzz_api.core.clock import isoformat
from buzz_api.db.session import get_session
from buzz_api.models.mileage import MileageTransaction, MileageTransactionType
from buzz_api.models.user import User
from buzz_api.services.mileage import MileageLedgerService
from buzz_api.services.qr_tokens import issue_mileage_token


router = APIRouter(prefix="/mileage", tags=["mileage"])


class BalanceResponse(BaseModel):
    balance: float
    totalEarned: float
    totalUsed: float
    totalExpired: float
    expiringAmount: float
    updatedAt: Optional[str]


class QrCodeResponse(BaseModel):
    qrCode: str
    expiresAt: str


class UseMileageRequest(BaseModel):
    qrCode: str = Field(..., min_length=1, description="Token issued by GET /mileage/qr-code")
    amount: float = Field(..., description="Mileage to spend")
    businessId: UUID


class UseMileageResponse(BaseModel):
    transactionId: UUID
    usedAmount: float
    remainingBalance: float
    businessName: str
    message: str


class EarnMileageRequest(BaseModel):
    userId: UUID
    amount: float = Field(..., gt=0)
    description: Optional[str] = None
    referenceType: Optional[str] = Field(None, max_length=32)
    referenceId: Optional[str] = Field(None, max_length=128)


class TransactionResponse(BaseModel):
    id: UUID
    type: str
    amount: float
    balanceBefore: float
    balanceAfter: float
    description: Optional[str]
    referenceType: Optional[str]
    referenceId: Optional[str]
    businessName: Optional[str]
    expiresAt: Optional[str]
    createdAt: Optional[str]
    isPositive: bool
    displayAmount: str


def serialize_transaction(transaction: MileageTransaction) -> dict[str, Any]:
    amount = float(transaction.amount)
    positive = transaction.type.is_credit
    return TransactionResponse(
        id=transaction.id,
        type=transaction.type.value,
        amount=amount,
        balanceBefore=float(transaction.balance_before),
        balanceAfter=float(transaction.balance_after),
        description=transaction.description,
        referenceType=transaction.reference_type,
        referenceId=transaction.reference_id,
        businessName=transaction.business.business_name if transaction.business else None,
        expiresAt=isoformat(transaction.expires_at),
        createdAt=isoformat(transaction.created_at),
        isPositive=positive,
        displayAmount=f"{'+' if positive else '-'}{amount:g}",
    ).model_dump(mode="json")


@router.get("/balance", summary="Current mileage balance")
async def get_balance(
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    service = MileageLedgerService(db)
    snapshot = await service.get_balance(user.id)
    await db.commit()
    payload = BalanceResponse(
        balance=float(snapshot.balance),
        totalEarned=float(snapshot.total_earned),
        totalUsed=float(snapshot.total_used),
        totalExpired=float(snapshot.total_expired),
        expiringAmount=float(snapshot.expiring_amount),
        updatedAt=isoformat(snapshot.updated_at),
    )
    return success(payload.model_dump(mode="json"), "Mileage balance retrieved successfully")


@router.get("/qr-code", summary="Issue a short-lived payment QR token")
async def get_qr_code(user: User = Depends(require_session_user)) -> dict[str, Any]:
    token, expires_at = issue_mileage_token(user.id)
    payload = QrCodeResponse(qrCode=token, expiresAt=isoformat(expires_at))
    return success(payload.model_dump(mode="json"), "QR code issued")


@router.post("/use", summary="Pay at a business with mileage")
async def use_mileage(
    body: UseMileageRequest,
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    service = MileageLedgerService(db)
    payment = await service.use_mileage(
        user.id,
        qr_code=body.qrCode,
        amount=body.amount,
        business_id=body.businessId,
    )
    await db.commit()
    used = float(payment.transaction.amount)
    payload = UseMileageResponse(
        transactionId=payment.transaction.id,
        usedAmount=used,
        remainingBalance=float(payment.remaining_balance),
        businessName=payment.business.business_name,
        message=f"{used:,.0f} mileage used",
    )
    return success(payload.model_dump(mode="json"), "Mileage used successfully")


@router.get("/history", summary="Paginated mileage transactions")
async def get_history(
    transaction_type: Optional[MileageTransactionType] = Query(None, alias="type"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    service = MileageLedgerService(db)
    history = await service.history(user.id, transaction_type=transaction_type, page=page, limit=limit)
    summary = history.summary
    data = paginated(
        [serialize_transaction(tx) for tx in history.transactions],
        total=history.total,
        page=history.page,
        limit=history.limit,
        summary={
            "totalEarned": float(summary.total_earned),
            "totalUsed": float(summary.total_used),
            "totalExpired": float(summary.total_expired),
            "earnCount": summary.earn_count,
            "useCount": summary.use_count,
        },
    )
    return success(data, "Mileage history retrieved successfully")


@router.post(
    "/earn",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_internal_api_key)],
    summary="Credit mileage from an internal system",
)
async def earn_mileage(
    body: EarnMileageRequest,
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    service = MileageLedgerService(db)
    transaction = await service.earn(
        body.userId,
        body.amount,
        description=body.description,
        reference_type=body.referenceType,
        reference_id=body.referenceId,
    )
    await db.commit()
    return success(serialize_transaction(transaction), "Mileage credited")
