from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from buzz_api.core.errors import ValidationFailed
from buzz_api.models.admin import AdminActivityLog, AdminSetting
from buzz_api.models.coupon import CouponTemplate, DiscountType, UserCoupon, UserCouponStatus
from buzz_api.models.mileage import MileageTransaction, MileageTransactionType
from buzz_api.models.settlement import SettlementRequest, SettlementStatus
from buzz_api.services.budget import (
    POLICY_SETTING_KEY,
    AlertThresholds,
    BudgetMonitor,
    BudgetPolicy,
    CategoryUsage,
    EmergencyRestrictions,
    classify,
    merge_documents,
    period_bounds,
    utilization,
)
from buzz_api.services.budget.policy import DailyLimits, MonthlyLimits

NOW = datetime(2026, 10, 14, 9, 30, tzinfo=timezone.utc)


def _policy() -> BudgetPolicy:
    return BudgetPolicy(
        monthly=MonthlyLimits(total=10000, mileage=5000, coupons=2000, settlements=10000),
        daily=DailyLimits(mileage=8000, coupons=100000, settlements=100000),
    )


@pytest.mark.parametrize(
    ("rate", "expected"),
    [
        (0.0, "normal"),
        (69.99, "normal"),
        (70.0, "caution"),
        (85.0, "warning"),
        (94.9, "warning"),
        (95.0, "critical"),
        (130.0, "critical"),
    ],
)
def test_classify_uses_thresholds(rate, expected) -> None:
    assert classify(rate, AlertThresholds()) == expected


def test_utilization_handles_zero_limit() -> None:
    assert utilization(Decimal("50"), 0) == 0.0
    assert utilization(Decimal("1"), 3) == 33.33


def test_period_bounds() -> None:
    january = datetime(2026, 1, 20, 15, 0, tzinfo=timezone.utc)
    assert period_bounds("last_month", january) == (
        datetime(2025, 12, 1, tzinfo=timezone.utc),
        datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
    december = datetime(2026, 12, 5, tzinfo=timezone.utc)
    assert period_bounds("current_month", december) == (
        datetime(2026, 12, 1, tzinfo=timezone.utc),
        datetime(2027, 1, 1, tzinfo=timezone.utc),
    )
    assert period_bounds("current_year", january)[1] == datetime(2027, 1, 1, tzinfo=timezone.utc)
    assert period_bounds("today", january) == (
        datetime(2026, 1, 20, tzinfo=timezone.utc),
        datetime(2026, 1, 21, tzinfo=timezone.utc),
    )


def test_alerts_escalate_by_threshold() -> None:
    policy = _policy()

    def usage(rate: float) -> CategoryUsage:
        return CategoryUsage(limit=100, used=Decimal(str(rate)), utilization_rate=rate, status=classify(rate, policy.alerts))

    alerts = BudgetMonitor.alerts(
        policy,
        usage(96.0),
        {"mileage": usage(90.0), "coupons": usage(97.0), "settlements": usage(50.0)},
    )
    assert [(alert.level, alert.type) for alert in alerts] == [
        ("critical", "total_budget"),
        ("warning", "mileage_budget"),
        ("critical", "coupons_budget"),
    ]

    alerts = BudgetMonitor.alerts(policy, usage(86.0), {"mileage": usage(10.0)})
    assert [(alert.level, alert.type) for alert in alerts] == [("warning", "total_budget")]

    assert BudgetMonitor.alerts(policy, usage(84.9), {"mileage": usage(84.9)}) == []


@pytest.mark.asyncio
async def test_status_sums_spend_for_the_period(session_factory, ledger_world) -> None:
    async with session_factory() as session:
        template = CouponTemplate(
            name="Flat",
            discount_type=DiscountType.FIXED,
            discount_value=Decimal("1900"),
            valid_from=date(2026, 9, 1),
            valid_until=date(2026, 12, 31),
            applicable_businesses=[],
        )
        session.add(template)
        await session.flush()

        session.add_all(
            [
                MileageTransaction(
                    user_id=ledger_world.member_id,
                    type=MileageTransactionType.EARN,
                    amount=Decimal("4000"),
                    balance_before=Decimal("0"),
                    balance_after=Decimal("4000"),
                    created_at=NOW,
                ),
                MileageTransaction(
                    user_id=ledger_world.member_id,
                    type=MileageTransactionType.USE,
                    amount=Decimal("300"),
                    balance_before=Decimal("4000"),
                    balance_after=Decimal("3700"),
                    business_id=ledger_world.business_id,
                    created_at=NOW,
                ),
                MileageTransaction(
                    user_id=ledger_world.member_id,
                    type=MileageTransactionType.EARN,
                    amount=Decimal("700"),
                    balance_before=Decimal("0"),
                    balance_after=Decimal("700"),
                    created_at=NOW - timedelta(days=31),
                ),
                UserCoupon(
                    user_id=ledger_world.member_id,
                    template_id=template.id,
                    status=UserCouponStatus.USED,
                    qr_code_data="BZ1.c.used",
                    issued_at=NOW - timedelta(days=2),
                    expires_at=NOW + timedelta(days=20),
                    used_at=NOW,
                    used_business_id=ledger_world.business_id,
                    used_amount=Decimal("1900"),
                ),
                SettlementRequest(
                    business_id=ledger_world.business_id,
                    settlement_date=date(2026, 10, 12),
                    total_amount=Decimal("2000"),
                    status=SettlementStatus.PAID,
                    requested_at=NOW,
                ),
                SettlementRequest(
                    business_id=ledger_world.business_id,
                    settlement_date=date(2026, 10, 13),
                    total_amount=Decimal("500"),
                    status=SettlementStatus.PENDING,
                    requested_at=NOW,
                ),
                SettlementRequest(
                    business_id=ledger_world.business_id,
                    settlement_date=date(2026, 10, 11),
                    total_amount=Decimal("999"),
                    status=SettlementStatus.REJECTED,
                    requested_at=NOW,
                ),
            ]
        )
        await session.commit()

        monitor = BudgetMonitor(session)
        report = await monitor.status(_policy(), now=NOW, trend_months=2)

    spend = report.spend
    assert spend.mileage_issued == Decimal("4000")
    assert spend.mileage_redeemed == Decimal("300")
    assert spend.mileage_issue_count == 1
    assert spend.coupon_discount == Decimal("1900")
    assert spend.coupon_used_count == 1
    assert spend.settlement_paid == Decimal("2000")
    assert spend.settlement_outstanding == Decimal("500")
    assert spend.settlement_requests == 2

    assert report.start == datetime(2026, 10, 1, tzinfo=timezone.utc)
    assert report.total.used == Decimal("8400")
    assert report.total.utilization_rate == 84.0
    assert report.total.status == "caution"
    assert report.categories["mileage"].status == "caution"
    assert report.categories["coupons"].utilization_rate == 95.0
    assert report.categories["coupons"].status == "critical"
    assert report.categories["settlements"].status == "normal"
    assert report.daily["mileage"].utilization_rate == 50.0
    assert [(alert.level, alert.type) for alert in report.alerts] == [("critical", "coupons_budget")]

    assert [point.month for point in report.trend] == ["2026-09", "2026-10"]
    assert report.trend[0].mileage == Decimal("700")
    assert report.trend[1].total == Decimal("8400")


@pytest.mark.asyncio
async def test_load_policy_falls_back_to_defaults(session_factory) -> None:
    async with session_factory() as session:
        monitor = BudgetMonitor(session)
        policy = await monitor.load_policy()
        assert policy.monthly.total == 10_000_000.0
        assert policy.alerts.warning == 70.0

        session.add(AdminSetting(key=POLICY_SETTING_KEY, value={"monthly": {"total": -1}}))
        await session.commit()

        policy = await monitor.load_policy()
        assert policy.monthly.total == 10_000_000.0


@pytest.mark.asyncio
async def test_update_policy_merges_and_validates(session_factory, ledger_world) -> None:
    async with session_factory() as session:
        monitor = BudgetMonitor(session)
        policy = await monitor.update_policy(
            ledger_world.admin_id,
            {"monthly": {"total": 20000000}, "alerts": {"warning": 60}},
            now=NOW,
        )
        await session.commit()

        assert policy.monthly.total == 20_000_000.0
        assert policy.monthly.mileage == 5_000_000.0
        assert policy.alerts.warning == 60.0
        assert policy.updated_by == ledger_world.admin_id

        stored = await monitor.load_policy()
        assert stored.monthly.total == 20_000_000.0
        assert stored.alerts.critical == 85.0

        with pytest.raises(ValidationFailed) as excinfo:
            await monitor.update_policy(ledger_world.admin_id, {"alerts": {"warning": 90}})
        assert excinfo.value.details
        with pytest.raises(ValidationFailed):
            await monitor.update_policy(ledger_world.admin_id, {"daily": {"coupons": 0}})

        actions = (await session.execute(select(AdminActivityLog.action))).scalars().all()
        assert actions == ["budget_policy_updated"]


@pytest.mark.asyncio
async def test_emergency_toggle_is_recorded(session_factory, ledger_world) -> None:
    async with session_factory() as session:
        monitor = BudgetMonitor(session)
        policy = await monitor.set_emergency(
            ledger_world.admin_id,
            enabled=True,
            reason="Budget exhausted",
            restrictions=EmergencyRestrictions(coupon_issuance=True),
            now=NOW,
        )
        await session.commit()

        assert policy.emergency.enabled is True
        assert policy.emergency.activated_by == ledger_world.admin_id
        assert policy.emergency.restrictions.coupon_issuance is True

        stored = await monitor.load_policy()
        assert stored.emergency.enabled is True
        assert stored.emergency.reason == "Budget exhausted"

        policy = await monitor.set_emergency(ledger_world.admin_id, enabled=False, now=NOW + timedelta(hours=1))
        await session.commit()
        assert policy.emergency.enabled is False
        assert policy.emergency.reason is None
        assert policy.emergency.restrictions.coupon_issuance is True
        assert policy.emergency.deactivated_at == NOW + timedelta(hours=1)

        actions = (
            await session.execute(select(AdminActivityLog.action).order_by(AdminActivityLog.created_at.asc()))
        ).scalars().all()
        assert actions == ["emergency_mode_activated", "emergency_mode_deactivated"]


def test_merge_documents_is_recursive() -> None:
    merged = merge_documents(
        {"monthly": {"total": 1, "mileage": 2}, "alerts": {"warning": 70}},
        {"monthly": {"total": 5}, "emergency": {"enabled": True}},
    )
    assert merged == {
        "monthly": {"total": 5, "mileage": 2},
        "alerts": {"warning": 70},
        "emergency": {"enabled": True},
    }
