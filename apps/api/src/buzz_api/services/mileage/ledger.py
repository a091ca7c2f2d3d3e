"""Mileage accounts and the append-only ledger.

Every balance change goes through :meth:`MileageLedgerService.record_transaction`,
which locks the account row, writes one ledger row carrying ``balance_before``
and ``balance_after`` and adjusts the account in the same flush. The caller owns
the commit, so a ledger row never lands without its account update.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import and_, case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from buzz_api.core.clock import utcnow
from buzz_api.core.errors import (
    AlreadyRefunded,
    InsufficientBalance,
    InvalidAmount,
    InvalidQrCode,
    NotFound,
    ValidationFailed,
)
from buzz_api.core.settings import settings
from buzz_api.models.business import Business, BusinessStatus
from buzz_api.models.mileage import (
    MileageAccount,
    MileageTransaction,
    MileageTransactionType,
    MileageUsageLog,
)
from buzz_api.observability.ledger import LedgerObservabilityStore, get_ledger_store
from buzz_api.observability.tracing import get_tracer
from buzz_api.services.qr_tokens import KIND_MILEAGE, verify_token

ZERO = Decimal("0")
CENT = Decimal("0.01")

REFERENCE_QR_PAYMENT = "qr_payment"
REFERENCE_MILEAGE_EARN = "mileage_earn"
REFERENCE_MILEAGE_TRANSACTION = "mileage_transaction"

_COUNTER_BY_TYPE: dict[MileageTransactionType, str] = {
    MileageTransactionType.EARN: "total_earned",
    MileageTransactionType.REFUND: "total_earned",
    MileageTransactionType.USE: "total_used",
    MileageTransactionType.CANCEL: "total_used",
    MileageTransactionType.EXPIRE: "total_expired",
}

_tracer = get_tracer(__name__)


def to_amount(value: Any) -> Decimal:
    """Normalize a monetary value to two decimal places."""

    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(slots=True)
class BalanceSnapshot:
    balance: Decimal
    total_earned: Decimal
    total_used: Decimal
    total_expired: Decimal
    expiring_amount: Decimal
    updated_at: datetime | None


@dataclass(slots=True)
class MileagePayment:
    transaction: MileageTransaction
    business: Business
    remaining_balance: Decimal


@dataclass(slots=True)
class HistorySummary:
    total_earned: Decimal = ZERO
    total_used: Decimal = ZERO
    total_expired: Decimal = ZERO
    earn_count: int = 0
    use_count: int = 0


@dataclass(slots=True)
class HistoryPage:
    transactions: Sequence[MileageTransaction]
    total: int
    page: int
    limit: int
    summary: HistorySummary = field(default_factory=HistorySummary)


@dataclass(slots=True)
class ExpirySweepResult:
    expired_transactions: int = 0
    expired_amount: Decimal = ZERO
    skipped: int = 0


class MileageLedgerService:
    """Owns every mutation of mileage accounts."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        observability: LedgerObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._observability = observability or get_ledger_store()

    async def get_account(self, user_id: UUID, *, for_update: bool = False) -> MileageAccount | None:
        stmt = select(MileageAccount).where(MileageAccount.user_id == user_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def ensure_account(self, user_id: UUID) -> MileageAccount:
        """Fetch or lazily create the account; a lost insert race re-reads the winner."""

        account = await self.get_account(user_id)
        if account is not None:
            return account

        account = MileageAccount(
            user_id=user_id,
            balance=ZERO,
            total_earned=ZERO,
            total_used=ZERO,
            total_expired=ZERO,
        )
        try:
            async with self._db.begin_nested():
                self._db.add(account)
            logger.info("Created mileage account", user_id=str(user_id), account_id=str(account.id))
        except IntegrityError:
            logger.warning("Detected race when creating mileage account", user_id=str(user_id))
            existing = await self.get_account(user_id)
            if existing is None:
                raise
            return existing
        return account

    async def record_transaction(
        self,
        user_id: UUID,
        transaction_type: MileageTransactionType,
        amount: Any,
        *,
        description: str | None = None,
        reference_type: str | None = None,
        reference_id: str | None = None,
        business_id: UUID | None = None,
        expires_at: datetime | None = None,
        now: datetime | None = None,
    ) -> MileageTransaction:
        """Apply one ledger entry under the account row lock."""

        value = to_amount(amount)
        if value <= ZERO:
            raise InvalidAmount()
        if expires_at is not None and transaction_type is not MileageTransactionType.EARN:
            raise ValidationFailed("Only earn transactions can carry an expiry")

        with _tracer.start_as_current_span("mileage.record_transaction") as span:
            span.set_attribute("mileage.type", transaction_type.value)

            account = await self.get_account(user_id, for_update=True)
            if account is None:
                if not transaction_type.is_credit:
                    raise NotFound("Mileage account")
                await self.ensure_account(user_id)
                account = await self.get_account(user_id, for_update=True)

            balance_before = Decimal(account.balance or ZERO)
            if transaction_type.is_credit:
                balance_after = balance_before + value
            else:
                if balance_before < value:
                    self._observability.record_rejection(InsufficientBalance.code)
                    raise InsufficientBalance(balance=balance_before, requested=value)
                balance_after = balance_before - value

            transaction = MileageTransaction(
                user_id=user_id,
                type=transaction_type,
                amount=value,
                balance_before=balance_before,
                balance_after=balance_after,
                description=description,
                reference_type=reference_type,
                reference_id=reference_id,
                business_id=business_id,
                expires_at=expires_at,
                created_at=now or utcnow(),
            )
            self._db.add(transaction)

            counter = _COUNTER_BY_TYPE[transaction_type]
            setattr(account, counter, Decimal(getattr(account, counter) or ZERO) + value)
            account.balance = balance_after
            account.updated_at = transaction.created_at
            await self._db.flush()
            if business_id is not None:
                # Returned rows carry their business; nothing lazy-loads after commit.
                await self._db.refresh(transaction, attribute_names=["business"])

        self._observability.record_transaction(transaction_type.value, value)
        logger.info(
            "Recorded mileage transaction",
            user_id=str(user_id),
            transaction_id=str(transaction.id),
            type=transaction_type.value,
            amount=str(value),
            balance_after=str(balance_after),
        )
        return transaction

    async def earn(
        self,
        user_id: UUID,
        amount: Any,
        *,
        description: str | None = None,
        reference_type: str | None = None,
        reference_id: str | None = None,
        now: datetime | None = None,
    ) -> MileageTransaction:
        """Credit mileage that expires after ``mileage_expire_days``."""

        issued_at = now or utcnow()
        return await self.record_transaction(
            user_id,
            MileageTransactionType.EARN,
            amount,
            description=description,
            reference_type=reference_type,
            reference_id=reference_id,
            expires_at=issued_at + timedelta(days=settings.mileage_expire_days),
            now=issued_at,
        )

    async def get_balance(self, user_id: UUID, *, now: datetime | None = None) -> BalanceSnapshot:
        current = now or utcnow()
        account = await self.ensure_account(user_id)

        horizon = current + timedelta(days=settings.mileage_expiring_window_days)
        stmt = select(func.coalesce(func.sum(MileageTransaction.amount), 0)).where(
            MileageTransaction.user_id == user_id,
            MileageTransaction.type == MileageTransactionType.EARN,
            MileageTransaction.expires_at > current,
            MileageTransaction.expires_at <= horizon,
        )
        expiring = (await self._db.execute(stmt)).scalar_one()

        return BalanceSnapshot(
            balance=Decimal(account.balance or ZERO),
            total_earned=Decimal(account.total_earned or ZERO),
            total_used=Decimal(account.total_used or ZERO),
            total_expired=Decimal(account.total_expired or ZERO),
            expiring_amount=to_amount(expiring or 0),
            updated_at=account.updated_at,
        )

    async def use_mileage(
        self,
        user_id: UUID,
        *,
        qr_code: str,
        amount: Any,
        business_id: UUID,
        now: datetime | None = None,
    ) -> MileagePayment:
        """Pay at a business with mileage.

        Checks run in a fixed order: amount, account, balance, business, QR
        token. The QR token must be one issued to ``user_id``.
        """

        current = now or utcnow()
        value = to_amount(amount)
        if value <= ZERO:
            raise InvalidAmount()

        account = await self.get_account(user_id, for_update=True)
        if account is None:
            raise NotFound("Mileage account")
        if Decimal(account.balance or ZERO) < value:
            self._observability.record_rejection(InsufficientBalance.code)
            raise InsufficientBalance(balance=account.balance, requested=value)

        business = await self._get_approved_business(business_id)

        claims = verify_token(qr_code, kind=KIND_MILEAGE, now=current)
        if claims.subject != user_id:
            raise InvalidQrCode("QR code does not belong to this user")

        transaction = await self.record_transaction(
            user_id,
            MileageTransactionType.USE,
            value,
            description=f"Mileage payment at {business.business_name}",
            reference_type=REFERENCE_QR_PAYMENT,
            reference_id=qr_code[:128],
            business_id=business.id,
            now=current,
        )
        business.qr_scan_count = Business.qr_scan_count + 1
        self._db.add(
            MileageUsageLog(
                user_id=user_id,
                business_id=business.id,
                transaction_id=transaction.id,
                amount=value,
                qr_code=qr_code[:256],
                used_at=current,
            )
        )
        await self._db.flush()
        await self._db.refresh(business, attribute_names=["qr_scan_count"])

        return MileagePayment(
            transaction=transaction,
            business=business,
            remaining_balance=Decimal(transaction.balance_after),
        )

    async def refund_use(
        self,
        transaction_id: UUID,
        *,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> MileageTransaction:
        """Credit back a ``use`` transaction once."""

        original = await self._db.get(MileageTransaction, transaction_id)
        if original is None:
            raise NotFound("Mileage transaction")
        if original.type is not MileageTransactionType.USE:
            raise ValidationFailed("Only use transactions can be refunded")

        # Serialize concurrent refunds of the same use behind the account lock.
        await self.get_account(original.user_id, for_update=True)
        existing = await self._db.execute(
            select(MileageTransaction.id).where(
                MileageTransaction.type == MileageTransactionType.REFUND,
                MileageTransaction.reference_type == REFERENCE_MILEAGE_TRANSACTION,
                MileageTransaction.reference_id == str(original.id),
            )
        )
        if existing.first() is not None:
            raise AlreadyRefunded()

        return await self.record_transaction(
            original.user_id,
            MileageTransactionType.REFUND,
            original.amount,
            description=reason or "Mileage payment refunded",
            reference_type=REFERENCE_MILEAGE_TRANSACTION,
            reference_id=str(original.id),
            business_id=original.business_id,
            now=now,
        )

    async def history(
        self,
        user_id: UUID,
        *,
        transaction_type: MileageTransactionType | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> HistoryPage:
        filters = [MileageTransaction.user_id == user_id]
        if transaction_type is not None:
            filters.append(MileageTransaction.type == transaction_type)

        total = (
            await self._db.execute(select(func.count(MileageTransaction.id)).where(*filters))
        ).scalar_one()

        stmt = (
            select(MileageTransaction)
            .where(*filters)
            .order_by(MileageTransaction.created_at.desc(), MileageTransaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        transactions = (await self._db.execute(stmt)).scalars().all()

        return HistoryPage(
            transactions=transactions,
            total=int(total or 0),
            page=page,
            limit=limit,
            summary=await self._history_summary(user_id),
        )

    async def _history_summary(self, user_id: UUID) -> HistorySummary:
        def _sum_of(kind: MileageTransactionType):
            return func.coalesce(
                func.sum(case((MileageTransaction.type == kind, MileageTransaction.amount), else_=0)),
                0,
            )

        def _count_of(kind: MileageTransactionType):
            return func.coalesce(func.sum(case((MileageTransaction.type == kind, 1), else_=0)), 0)

        stmt = select(
            _sum_of(MileageTransactionType.EARN),
            _sum_of(MileageTransactionType.USE),
            _sum_of(MileageTransactionType.EXPIRE),
            _count_of(MileageTransactionType.EARN),
            _count_of(MileageTransactionType.USE),
        ).where(MileageTransaction.user_id == user_id)
        earned, used, expired, earn_count, use_count = (await self._db.execute(stmt)).one()
        return HistorySummary(
            total_earned=to_amount(earned),
            total_used=to_amount(used),
            total_expired=to_amount(expired),
            earn_count=int(earn_count),
            use_count=int(use_count),
        )

    async def expire_due(self, *, now: datetime | None = None, limit: int | None = None) -> ExpirySweepResult:
        """Record an ``expire`` for every lapsed earn that has not been expired yet.

        Only the part of the balance not backed by unexpired earns can lapse:
        the expired amount is ``min(earn, balance - unexpired earns)``, floored
        at zero, since part of the earn may already have been spent.
        """

        current = now or utcnow()
        expired_refs = select(MileageTransaction.reference_id).where(
            MileageTransaction.type == MileageTransactionType.EXPIRE,
            MileageTransaction.reference_type == REFERENCE_MILEAGE_EARN,
        )
        stmt = (
            select(MileageTransaction)
            .where(
                and_(
                    MileageTransaction.type == MileageTransactionType.EARN,
                    MileageTransaction.expires_at.is_not(None),
                    MileageTransaction.expires_at <= current,
                )
            )
            .order_by(MileageTransaction.expires_at.asc())
        )
        earns = (await self._db.execute(stmt)).scalars().all()
        handled = set((await self._db.execute(expired_refs)).scalars().all())

        result = ExpirySweepResult()
        for earn in earns:
            if limit and result.expired_transactions >= limit:
                break
            if str(earn.id) in handled:
                continue
            account = await self.get_account(earn.user_id, for_update=True)
            if account is None:
                result.skipped += 1
                continue
            # Spends draw down the oldest earns first.
            unexpired = await self._unexpired_credit(earn.user_id, current)
            expirable = max(Decimal(account.balance or ZERO) - unexpired, ZERO)
            expire_amount = min(Decimal(earn.amount), expirable)
            if expire_amount <= ZERO:
                result.skipped += 1
                logger.info("Skipping expiry of fully spent mileage", earn_id=str(earn.id))
                continue
            await self.record_transaction(
                earn.user_id,
                MileageTransactionType.EXPIRE,
                expire_amount,
                description="Mileage expired",
                reference_type=REFERENCE_MILEAGE_EARN,
                reference_id=str(earn.id),
                now=current,
            )
            result.expired_transactions += 1
            result.expired_amount += expire_amount

        return result

    async def _unexpired_credit(self, user_id: UUID, current: datetime) -> Decimal:
        stmt = select(func.coalesce(func.sum(MileageTransaction.amount), 0)).where(
            MileageTransaction.user_id == user_id,
            MileageTransaction.type == MileageTransactionType.EARN,
            MileageTransaction.expires_at > current,
        )
        return to_amount((await self._db.execute(stmt)).scalar_one() or 0)

    async def _get_approved_business(self, business_id: UUID) -> Business:
        stmt = select(Business).where(Business.id == business_id, Business.status == BusinessStatus.APPROVED)
        business = (await self._db.execute(stmt)).scalar_one_or_none()
        if business is None:
            raise NotFound("Business")
        return business


__all__ = [
    "BalanceSnapshot",
    "ExpirySweepResult",
    "HistoryPage",
    "HistorySummary",
    "MileageLedgerService",
    "MileagePayment",
    "REFERENCE_MILEAGE_EARN",
    "REFERENCE_MILEAGE_TRANSACTION",
    "REFERENCE_QR_PAYMENT",
    "to_amount",
]
