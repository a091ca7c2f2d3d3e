"""Settlement aggregation and the payout approval state machine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from buzz_api.core.clock import add_business_days, day_bounds, utcnow
from buzz_api.core.errors import (
    InvalidSettlementDate,
    InvalidSettlementTransition,
    NoTransactions,
    NotFound,
    PendingSettlementExists,
    SettlementAlreadyRequested,
)
from buzz_api.core.settings import settings
from buzz_api.models.business import Business, BusinessStatus
from buzz_api.models.coupon import UserCoupon, UserCouponStatus
from buzz_api.models.mileage import MileageTransaction, MileageTransactionType
from buzz_api.models.settlement import SettlementRequest, SettlementStatus
from buzz_api.models.user import User
from buzz_api.observability.ledger import LedgerObservabilityStore, get_ledger_store
from buzz_api.services.admin_audit import record_admin_activity
from buzz_api.services.mileage import REFERENCE_MILEAGE_TRANSACTION

ZERO = Decimal("0")
OWNER_CANCEL_REASON = "Cancelled by business owner"


@dataclass(slots=True)
class SettlementTotals:
    coupon_count: int = 0
    coupon_amount: Decimal = ZERO
    mileage_count: int = 0
    mileage_amount: Decimal = ZERO

    @property
    def total_amount(self) -> Decimal:
        return self.coupon_amount + self.mileage_amount


@dataclass(slots=True)
class SettlementSummary:
    pending_amount: Decimal = ZERO
    approved_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO
    pending_count: int = 0
    approved_count: int = 0
    paid_count: int = 0


@dataclass(slots=True)
class TimelineEvent:
    status: str
    occurred_at: datetime
    note: str | None = None


@dataclass(slots=True)
class SettlementDetail:
    settlement: SettlementRequest
    coupons: Sequence[UserCoupon]
    mileage_transactions: Sequence[MileageTransaction]
    timeline: list[TimelineEvent] = field(default_factory=list)


def estimated_payment_date(requested_at: datetime) -> datetime:
    return add_business_days(requested_at, settings.settlement_payment_business_days)


class SettlementService:
    """Creates settlement requests and moves them through their lifecycle."""

    _ALLOWED_TRANSITIONS: dict[SettlementStatus, set[SettlementStatus]] = {
        SettlementStatus.PENDING: {
            SettlementStatus.APPROVED,
            SettlementStatus.REJECTED,
            SettlementStatus.CANCELLED,
        },
        SettlementStatus.APPROVED: {SettlementStatus.PAID},
        SettlementStatus.REJECTED: set(),
        SettlementStatus.PAID: set(),
        SettlementStatus.CANCELLED: set(),
    }

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        observability: LedgerObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._observability = observability or get_ledger_store()

    @classmethod
    def can_transition(cls, current: SettlementStatus, target: SettlementStatus) -> bool:
        return target in cls._ALLOWED_TRANSITIONS.get(current, set())

    async def request_settlement(
        self,
        owner_id: UUID,
        *,
        settlement_date: date,
        business_id: UUID | None = None,
        bank_name: str | None = None,
        bank_account: str | None = None,
        now: datetime | None = None,
    ) -> SettlementRequest:
        """Aggregate one day of takings into a pending payout request."""

        current = now or utcnow()
        business = await self._get_owned_business(owner_id, business_id, for_update=True)

        if await self._pending_for(business.id) is not None:
            raise PendingSettlementExists()

        today = current.date()
        earliest = today - timedelta(days=settings.settlement_lookback_days)
        if settlement_date > today or settlement_date < earliest:
            raise InvalidSettlementDate(
                details={"earliest": earliest.isoformat(), "latest": today.isoformat()},
            )

        existing = await self._db.execute(
            select(SettlementRequest.id).where(
                SettlementRequest.business_id == business.id,
                SettlementRequest.settlement_date == settlement_date,
            )
        )
        if existing.first() is not None:
            raise SettlementAlreadyRequested()

        totals = await self.aggregate(business.id, settlement_date)
        if totals.total_amount <= ZERO:
            raise NoTransactions()

        settlement = SettlementRequest(
            business_id=business.id,
            settlement_date=settlement_date,
            coupon_count=totals.coupon_count,
            coupon_amount=totals.coupon_amount,
            mileage_count=totals.mileage_count,
            mileage_amount=totals.mileage_amount,
            total_amount=totals.total_amount,
            bank_name=bank_name or business.bank_name,
            bank_account=bank_account or business.bank_account,
            status=SettlementStatus.PENDING,
            requested_at=current,
        )
        try:
            async with self._db.begin_nested():
                self._db.add(settlement)
        except IntegrityError as exc:
            logger.warning("Settlement insert lost a race", business_id=str(business.id), error=str(exc.orig))
            if await self._pending_for(business.id) is not None:
                raise PendingSettlementExists() from exc
            raise SettlementAlreadyRequested() from exc

        self._observability.record_settlement_transition(SettlementStatus.PENDING.value)
        logger.info(
            "Created settlement request",
            settlement_id=str(settlement.id),
            business_id=str(business.id),
            settlement_date=settlement_date.isoformat(),
            total_amount=str(settlement.total_amount),
        )
        return settlement

    async def aggregate(self, business_id: UUID, settlement_date: date) -> SettlementTotals:
        """Sum coupon discounts and mileage payments taken on ``settlement_date`` (UTC)."""

        start, end = day_bounds(settlement_date)
        coupon_row = (
            await self._db.execute(
                select(
                    func.count(UserCoupon.id),
                    func.coalesce(func.sum(UserCoupon.used_amount), 0),
                ).where(
                    UserCoupon.used_business_id == business_id,
                    UserCoupon.status == UserCouponStatus.USED,
                    UserCoupon.used_at >= start,
                    UserCoupon.used_at < end,
                )
            )
        ).one()
        uses = await self._settleable_uses(business_id, start, end)
        return SettlementTotals(
            coupon_count=int(coupon_row[0] or 0),
            coupon_amount=Decimal(str(coupon_row[1] or 0)),
            mileage_count=len(uses),
            mileage_amount=sum((Decimal(use.amount) for use in uses), ZERO),
        )

    async def _settleable_uses(self, business_id: UUID, start: datetime, end: datetime) -> list[MileageTransaction]:
        """Mileage payments taken in ``[start, end)`` that were not refunded to the member."""

        uses = (
            await self._db.execute(
                select(MileageTransaction)
                .where(
                    MileageTransaction.business_id == business_id,
                    MileageTransaction.type == MileageTransactionType.USE,
                    MileageTransaction.created_at >= start,
                    MileageTransaction.created_at < end,
                )
                .order_by(MileageTransaction.created_at.asc())
            )
        ).scalars().all()
        if not uses:
            return []

        refunded = set(
            (
                await self._db.execute(
                    select(MileageTransaction.reference_id).where(
                        MileageTransaction.type == MileageTransactionType.REFUND,
                        MileageTransaction.reference_type == REFERENCE_MILEAGE_TRANSACTION,
                        MileageTransaction.reference_id.in_([str(use.id) for use in uses]),
                    )
                )
            ).scalars().all()
        )
        return [use for use in uses if str(use.id) not in refunded]

    async def list_settlements(
        self,
        actor: User,
        *,
        status: SettlementStatus | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[Sequence[SettlementRequest], int, SettlementSummary]:
        scope = self._scope_filters(actor)
        filters = list(scope)
        if status is not None:
            filters.append(SettlementRequest.status == status)

        total = (await self._db.execute(select(func.count(SettlementRequest.id)).where(*filters))).scalar_one()
        stmt = (
            select(SettlementRequest)
            .where(*filters)
            .order_by(SettlementRequest.requested_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        rows = (await self._db.execute(stmt)).scalars().all()
        return rows, int(total or 0), await self._summary(scope)

    async def get_settlement(self, actor: User, settlement_id: UUID) -> SettlementDetail:
        stmt = select(SettlementRequest).where(SettlementRequest.id == settlement_id, *self._scope_filters(actor))
        settlement = (await self._db.execute(stmt)).scalar_one_or_none()
        if settlement is None:
            raise NotFound("Settlement request")

        start, end = day_bounds(settlement.settlement_date)
        coupons = (
            await self._db.execute(
                select(UserCoupon)
                .where(
                    UserCoupon.used_business_id == settlement.business_id,
                    UserCoupon.status == UserCouponStatus.USED,
                    UserCoupon.used_at >= start,
                    UserCoupon.used_at < end,
                )
                .order_by(UserCoupon.used_at.asc())
            )
        ).scalars().all()
        transactions = await self._settleable_uses(settlement.business_id, start, end)
        return SettlementDetail(
            settlement=settlement,
            coupons=coupons,
            mileage_transactions=transactions,
            timeline=self._timeline(settlement),
        )

    async def cancel(
        self,
        owner_id: UUID,
        settlement_id: UUID,
        *,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> SettlementRequest:
        """Withdraw a pending request; only its owner may do so."""

        stmt = (
            select(SettlementRequest)
            .join(Business, Business.id == SettlementRequest.business_id)
            .where(
                SettlementRequest.id == settlement_id,
                Business.owner_id == owner_id,
                SettlementRequest.status == SettlementStatus.PENDING,
            )
            .with_for_update(of=SettlementRequest)
            .execution_options(populate_existing=True)
        )
        settlement = (await self._db.execute(stmt)).scalar_one_or_none()
        if settlement is None:
            raise NotFound("Settlement request")

        self._apply(settlement, SettlementStatus.CANCELLED)
        settlement.cancelled_at = now or utcnow()
        settlement.rejection_reason = reason or OWNER_CANCEL_REASON
        await self._db.flush()
        logger.info("Cancelled settlement request", settlement_id=str(settlement.id), owner_id=str(owner_id))
        return settlement

    async def approve(
        self,
        admin_id: UUID,
        settlement_id: UUID,
        *,
        note: str | None = None,
        now: datetime | None = None,
    ) -> SettlementRequest:
        current = now or utcnow()
        settlement = await self._lock(settlement_id)
        self._apply(settlement, SettlementStatus.APPROVED)
        settlement.approved_at = current
        settlement.approved_by = admin_id
        if note:
            settlement.admin_note = note
        await self._audit(admin_id, "settlement_approved", settlement, {"note": note})
        return settlement

    async def reject(
        self,
        admin_id: UUID,
        settlement_id: UUID,
        *,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> SettlementRequest:
        current = now or utcnow()
        settlement = await self._lock(settlement_id)
        self._apply(settlement, SettlementStatus.REJECTED)
        settlement.rejected_at = current
        settlement.rejection_reason = reason
        await self._audit(admin_id, "settlement_rejected", settlement, {"reason": reason})
        return settlement

    async def mark_paid(
        self,
        admin_id: UUID,
        settlement_id: UUID,
        *,
        payment_reference: str | None = None,
        now: datetime | None = None,
    ) -> SettlementRequest:
        current = now or utcnow()
        settlement = await self._lock(settlement_id)
        self._apply(settlement, SettlementStatus.PAID)
        settlement.paid_at = current
        settlement.payment_reference = payment_reference
        await self._audit(admin_id, "settlement_paid", settlement, {"paymentReference": payment_reference})
        return settlement

    # Helpers

    def _apply(self, settlement: SettlementRequest, target: SettlementStatus) -> None:
        current = settlement.status
        if not self.can_transition(current, target):
            self._observability.record_rejection(InvalidSettlementTransition.code)
            raise InvalidSettlementTransition(current.value, target.value)
        settlement.status = target
        self._observability.record_settlement_transition(target.value)

    async def _lock(self, settlement_id: UUID) -> SettlementRequest:
        stmt = (
            select(SettlementRequest)
            .where(SettlementRequest.id == settlement_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        settlement = (await self._db.execute(stmt)).scalar_one_or_none()
        if settlement is None:
            raise NotFound("Settlement request")
        return settlement

    async def _audit(
        self,
        admin_id: UUID,
        action: str,
        settlement: SettlementRequest,
        details: dict[str, Any],
    ) -> None:
        await self._db.flush()
        await record_admin_activity(
            self._db,
            admin_id=admin_id,
            action=action,
            target_type="settlement_request",
            target_id=settlement.id,
            details={"status": settlement.status.value, "totalAmount": float(settlement.total_amount), **details},
        )

    async def _get_owned_business(
        self,
        owner_id: UUID,
        business_id: UUID | None,
        *,
        for_update: bool = False,
    ) -> Business:
        stmt = select(Business).where(Business.owner_id == owner_id, Business.status == BusinessStatus.APPROVED)
        if business_id is not None:
            stmt = stmt.where(Business.id == business_id)
        stmt = stmt.order_by(Business.created_at.asc()).limit(1)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        business = (await self._db.execute(stmt)).scalar_one_or_none()
        if business is None:
            raise NotFound("Business")
        return business

    async def _pending_for(self, business_id: UUID) -> UUID | None:
        stmt = select(SettlementRequest.id).where(
            SettlementRequest.business_id == business_id,
            SettlementRequest.status == SettlementStatus.PENDING,
        )
        return (await self._db.execute(stmt)).scalars().first()

    @staticmethod
    def _scope_filters(actor: User) -> list[Any]:
        if actor.is_admin:
            return []
        owned = select(Business.id).where(Business.owner_id == actor.id)
        return [SettlementRequest.business_id.in_(owned)]

    async def _summary(self, scope: list[Any]) -> SettlementSummary:
        def _amount(status: SettlementStatus):
            return func.coalesce(
                func.sum(case((SettlementRequest.status == status, SettlementRequest.total_amount), else_=0)), 0
            )

        def _count(status: SettlementStatus):
            return func.coalesce(func.sum(case((SettlementRequest.status == status, 1), else_=0)), 0)

        stmt = select(
            _amount(SettlementStatus.PENDING),
            _amount(SettlementStatus.APPROVED),
            _amount(SettlementStatus.PAID),
            _count(SettlementStatus.PENDING),
            _count(SettlementStatus.APPROVED),
            _count(SettlementStatus.PAID),
        ).where(*scope)
        pending, approved, paid, pending_count, approved_count, paid_count = (await self._db.execute(stmt)).one()
        return SettlementSummary(
            pending_amount=Decimal(str(pending)),
            approved_amount=Decimal(str(approved)),
            paid_amount=Decimal(str(paid)),
            pending_count=int(pending_count),
            approved_count=int(approved_count),
            paid_count=int(paid_count),
        )

    @staticmethod
    def _timeline(settlement: SettlementRequest) -> list[TimelineEvent]:
        events = [TimelineEvent(status=SettlementStatus.PENDING.value, occurred_at=settlement.requested_at)]
        if settlement.approved_at:
            events.append(TimelineEvent(SettlementStatus.APPROVED.value, settlement.approved_at, settlement.admin_note))
        if settlement.rejected_at:
            events.append(
                TimelineEvent(SettlementStatus.REJECTED.value, settlement.rejected_at, settlement.rejection_reason)
            )
        if settlement.cancelled_at:
            events.append(
                TimelineEvent(SettlementStatus.CANCELLED.value, settlement.cancelled_at, settlement.rejection_reason)
            )
        if settlement.paid_at:
            events.append(TimelineEvent(SettlementStatus.PAID.value, settlement.paid_at, settlement.payment_reference))
        return events


__all__ = [
    "OWNER_CANCEL_REASON",
    "SettlementDetail",
    "SettlementService",
    "SettlementSummary",
    "SettlementTotals",
    "TimelineEvent",
    "estimated_payment_date",
]
