"""Read-only budget monitoring over the ledger, coupon and settlement tables."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal, Optional
from uuid import UUID

from loguru import logger
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from buzz_api.core.clock import day_bounds, utcnow
from buzz_api.core.errors import ValidationFailed
from buzz_api.core.settings import settings
from buzz_api.models.admin import AdminSetting
from buzz_api.models.coupon import UserCoupon, UserCouponStatus
from buzz_api.models.mileage import MileageTransaction, MileageTransactionType
from buzz_api.models.settlement import SettlementRequest, SettlementStatus
from buzz_api.services.admin_audit import record_admin_activity

from .policy import POLICY_SETTING_KEY, AlertThresholds, BudgetPolicy, EmergencyRestrictions, merge_documents

BudgetPeriod = Literal["current_month", "last_month", "current_year", "today"]
BudgetLevel = Literal["normal", "caution", "warning", "critical"]

ZERO = Decimal("0")
_COMMITTED_SETTLEMENT_STATUSES = (SettlementStatus.PENDING, SettlementStatus.APPROVED, SettlementStatus.PAID)


def utilization(used: Decimal, limit: float) -> float:
    if limit <= 0:
        return 0.0
    return round(float(used) / float(limit) * 100, 2)


def classify(rate: float, thresholds: AlertThresholds) -> BudgetLevel:
    if rate >= thresholds.danger:
        return "critical"
    if rate >= thresholds.critical:
        return "warning"
    if rate >= thresholds.warning:
        return "caution"
    return "normal"


def period_bounds(period: BudgetPeriod, now: datetime) -> tuple[datetime, datetime]:
    """Half-open UTC window for a named reporting period."""

    if period == "today":
        return day_bounds(now.date())
    if period == "current_year":
        return (
            datetime(now.year, 1, 1, tzinfo=timezone.utc),
            datetime(now.year + 1, 1, 1, tzinfo=timezone.utc),
        )
    month_start = _month_start(now.year, now.month)
    if period == "last_month":
        return _shift_month(month_start, -1), month_start
    return month_start, _shift_month(month_start, 1)


def _month_start(year: int, month: int) -> datetime:
    return datetime(year, month, 1, tzinfo=timezone.utc)


def _shift_month(start: datetime, months: int) -> datetime:
    index = start.year * 12 + (start.month - 1) + months
    return _month_start(index // 12, index % 12 + 1)


@dataclass(slots=True)
class CategoryUsage:
    limit: float
    used: Decimal
    utilization_rate: float
    status: BudgetLevel

    @property
    def remaining(self) -> Decimal:
        return Decimal(str(self.limit)) - self.used


@dataclass(slots=True)
class BudgetAlert:
    level: Literal["warning", "critical"]
    type: str
    message: str
    utilization_rate: float


@dataclass(slots=True)
class SpendBreakdown:
    mileage_issued: Decimal = ZERO
    mileage_redeemed: Decimal = ZERO
    mileage_issue_count: int = 0
    coupon_discount: Decimal = ZERO
    coupon_used_count: int = 0
    settlement_paid: Decimal = ZERO
    settlement_outstanding: Decimal = ZERO
    settlement_requests: int = 0

    @property
    def settlements(self) -> Decimal:
        return self.settlement_paid + self.settlement_outstanding

    @property
    def total(self) -> Decimal:
        return self.mileage_issued + self.coupon_discount + self.settlements


@dataclass(slots=True)
class TrendPoint:
    month: str
    mileage: Decimal
    coupons: Decimal
    settlements: Decimal

    @property
    def total(self) -> Decimal:
        return self.mileage + self.coupons + self.settlements


@dataclass(slots=True)
class BudgetStatusReport:
    period: BudgetPeriod
    start: datetime
    end: datetime
    spend: SpendBreakdown
    total: CategoryUsage
    categories: dict[str, CategoryUsage]
    daily: dict[str, CategoryUsage]
    alerts: list[BudgetAlert]
    trend: list[TrendPoint] = field(default_factory=list)
    policy: Optional[BudgetPolicy] = None
    generated_at: datetime = field(default_factory=utcnow)


class BudgetMonitor:
    """Computes spend against a :class:`BudgetPolicy` and stores policy edits."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def load_policy(self) -> BudgetPolicy:
        row = await self._db.get(AdminSetting, POLICY_SETTING_KEY)
        if row is None or not row.value:
            return BudgetPolicy.defaults()
        try:
            return BudgetPolicy.model_validate(row.value)
        except ValidationError as exc:
            logger.warning("Stored budget policy is invalid; using defaults", error=str(exc))
            return BudgetPolicy.defaults()

    async def status(
        self,
        policy: BudgetPolicy,
        *,
        period: BudgetPeriod = "current_month",
        now: datetime | None = None,
        trend_months: int | None = None,
    ) -> BudgetStatusReport:
        current = now or utcnow()
        start, end = period_bounds(period, current)
        spend = await self.spend_between(start, end)
        thresholds = policy.alerts

        def _usage(used: Decimal, limit: float) -> CategoryUsage:
            rate = utilization(used, limit)
            return CategoryUsage(limit=limit, used=used, utilization_rate=rate, status=classify(rate, thresholds))

        categories = {
            "mileage": _usage(spend.mileage_issued, policy.monthly.mileage),
            "coupons": _usage(spend.coupon_discount, policy.monthly.coupons),
            "settlements": _usage(spend.settlements, policy.monthly.settlements),
        }
        total = _usage(spend.total, policy.monthly.total)

        today_start, today_end = day_bounds(current.date())
        today = await self.spend_between(today_start, today_end)
        daily = {
            "mileage": _usage(today.mileage_issued, policy.daily.mileage),
            "coupons": _usage(today.coupon_discount, policy.daily.coupons),
            "settlements": _usage(today.settlements, policy.daily.settlements),
        }

        return BudgetStatusReport(
            period=period,
            start=start,
            end=end,
            spend=spend,
            total=total,
            categories=categories,
            daily=daily,
            alerts=self.alerts(policy, total, categories),
            trend=await self.trend(current, trend_months or settings.budget_trend_months),
            policy=policy,
            generated_at=current,
        )

    @staticmethod
    def alerts(policy: BudgetPolicy, total: CategoryUsage, categories: dict[str, CategoryUsage]) -> list[BudgetAlert]:
        thresholds = policy.alerts
        alerts: list[BudgetAlert] = []
        if total.utilization_rate >= thresholds.danger:
            alerts.append(
                BudgetAlert(
                    level="critical",
                    type="total_budget",
                    message=f"{total.utilization_rate:.1f}% of the total budget is used. Immediate action required.",
                    utilization_rate=total.utilization_rate,
                )
            )
        elif total.utilization_rate >= thresholds.critical:
            alerts.append(
                BudgetAlert(
                    level="warning",
                    type="total_budget",
                    message=f"{total.utilization_rate:.1f}% of the total budget is used.",
                    utilization_rate=total.utilization_rate,
                )
            )

        for name, usage in categories.items():
            if usage.utilization_rate >= thresholds.critical:
                alerts.append(
                    BudgetAlert(
                        level="critical" if usage.utilization_rate >= thresholds.danger else "warning",
                        type=f"{name}_budget",
                        message=f"{usage.utilization_rate:.1f}% of the {name} budget is used.",
                        utilization_rate=usage.utilization_rate,
                    )
                )
        return alerts

    async def spend_between(self, start: datetime, end: datetime) -> SpendBreakdown:
        mileage = (
            await self._db.execute(
                select(MileageTransaction.type, func.count(MileageTransaction.id), func.sum(MileageTransaction.amount))
                .where(
                    MileageTransaction.type.in_((MileageTransactionType.EARN, MileageTransactionType.USE)),
                    MileageTransaction.created_at >= start,
                    MileageTransaction.created_at < end,
                )
                .group_by(MileageTransaction.type)
            )
        ).all()
        breakdown = SpendBreakdown()
        for transaction_type, count, amount in mileage:
            if transaction_type is MileageTransactionType.EARN:
                breakdown.mileage_issued = Decimal(str(amount or 0))
                breakdown.mileage_issue_count = int(count or 0)
            else:
                breakdown.mileage_redeemed = Decimal(str(amount or 0))

        coupon_count, coupon_amount = (
            await self._db.execute(
                select(func.count(UserCoupon.id), func.coalesce(func.sum(UserCoupon.used_amount), 0)).where(
                    UserCoupon.status == UserCouponStatus.USED,
                    UserCoupon.used_at >= start,
                    UserCoupon.used_at < end,
                )
            )
        ).one()
        breakdown.coupon_used_count = int(coupon_count or 0)
        breakdown.coupon_discount = Decimal(str(coupon_amount or 0))

        settlement_rows = (
            await self._db.execute(
                select(SettlementRequest.status, func.count(SettlementRequest.id), func.sum(SettlementRequest.total_amount))
                .where(
                    SettlementRequest.status.in_(_COMMITTED_SETTLEMENT_STATUSES),
                    SettlementRequest.requested_at >= start,
                    SettlementRequest.requested_at < end,
                )
                .group_by(SettlementRequest.status)
            )
        ).all()
        for status, count, amount in settlement_rows:
            value = Decimal(str(amount or 0))
            breakdown.settlement_requests += int(count or 0)
            if status is SettlementStatus.PAID:
                breakdown.settlement_paid += value
            else:
                breakdown.settlement_outstanding += value

        return breakdown

    async def trend(self, now: datetime, months: int) -> list[TrendPoint]:
        """Actual monthly spend for the last ``months`` months, oldest first."""

        current_month = _month_start(now.year, now.month)
        points: list[TrendPoint] = []
        for offset in range(months - 1, -1, -1):
            start = _shift_month(current_month, -offset)
            spend = await self.spend_between(start, _shift_month(start, 1))
            points.append(
                TrendPoint(
                    month=start.strftime("%Y-%m"),
                    mileage=spend.mileage_issued,
                    coupons=spend.coupon_discount,
                    settlements=spend.settlements,
                )
            )
        return points

    async def update_policy(self, admin_id: UUID, patch: dict[str, Any], *, now: datetime | None = None) -> BudgetPolicy:
        """Merge ``patch`` into the stored policy and replace it wholesale."""

        current = await self.load_policy()
        document = merge_documents(current.to_document(), patch)
        try:
            policy = BudgetPolicy.model_validate(document)
        except ValidationError as exc:
            raise ValidationFailed(
                "Invalid budget policy",
                details=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()],
            ) from exc

        policy.updated_by = admin_id
        policy.updated_at = now or utcnow()
        await self._store(policy, admin_id)
        await record_admin_activity(
            self._db,
            admin_id=admin_id,
            action="budget_policy_updated",
            target_type="admin_setting",
            target_id=POLICY_SETTING_KEY,
            details={"changes": patch},
        )
        return policy

    async def set_emergency(
        self,
        admin_id: UUID,
        *,
        enabled: bool,
        reason: str | None = None,
        restrictions: EmergencyRestrictions | None = None,
        now: datetime | None = None,
    ) -> BudgetPolicy:
        current = now or utcnow()
        policy = await self.load_policy()
        emergency = policy.emergency.model_copy(deep=True)
        emergency.enabled = enabled
        emergency.reason = reason if enabled else None
        if restrictions is not None:
            emergency.restrictions = restrictions
        if enabled:
            emergency.activated_by = admin_id
            emergency.activated_at = current
            emergency.deactivated_at = None
        else:
            emergency.deactivated_at = current
        policy.emergency = emergency
        policy.updated_by = admin_id
        policy.updated_at = current

        await self._store(policy, admin_id)
        await record_admin_activity(
            self._db,
            admin_id=admin_id,
            action="emergency_mode_activated" if enabled else "emergency_mode_deactivated",
            target_type="admin_setting",
            target_id=POLICY_SETTING_KEY,
            details={"reason": reason, "restrictions": emergency.restrictions.model_dump(by_alias=True)},
        )
        logger.warning("Budget emergency controls changed", enabled=enabled, admin_id=str(admin_id), reason=reason)
        return policy

    async def _store(self, policy: BudgetPolicy, admin_id: UUID) -> None:
        row = await self._db.get(AdminSetting, POLICY_SETTING_KEY)
        if row is None:
            row = AdminSetting(key=POLICY_SETTING_KEY, value=policy.to_document(), updated_by=admin_id)
            self._db.add(row)
        else:
            row.value = policy.to_document()
            row.updated_by = admin_id
        await self._db.flush()


__all__ = [
    "BudgetAlert",
    "BudgetLevel",
    "BudgetMonitor",
    "BudgetPeriod",
    "BudgetStatusReport",
    "CategoryUsage",
    "SpendBreakdown",
    "TrendPoint",
    "classify",
    "period_bounds",
    "utilization",
]
