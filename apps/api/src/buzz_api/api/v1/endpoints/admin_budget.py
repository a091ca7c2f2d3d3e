"""Advisory budget monitoring for administrators."""

from __future__ import annotations

from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from buzz_api.api.dependencies.services import resolve_budget_policy
from buzz_api.api.dependencies.session import require_admin
from buzz_api.api.envelope import success
from buzz_api.core.clock import isoformat
from buzz_api.db.session import get_session
from buzz_api.models.user import User
from buzz_api.services.budget import BudgetMonitor, BudgetPolicy, BudgetStatusReport, CategoryUsage, EmergencyRestrictions


router = APIRouter(prefix="/admin/budget", tags=["admin"])


class EmergencyRequest(BaseModel):
    enabled: bool
    reason: Optional[str] = Field(None, max_length=500)
    restrictions: Optional[EmergencyRestrictions] = None


def _usage(usage: CategoryUsage) -> dict[str, Any]:
    return {
        "limit": usage.limit,
        "used": float(usage.used),
        "remaining": float(usage.remaining),
        "utilizationRate": usage.utilization_rate,
        "status": usage.status,
    }


def serialize_report(report: BudgetStatusReport) -> dict[str, Any]:
    spend = report.spend
    return {
        "period": report.period,
        "startDate": isoformat(report.start),
        "endDate": isoformat(report.end),
        "total": _usage(report.total),
        "categories": {name: _usage(usage) for name, usage in report.categories.items()},
        "daily": {name: _usage(usage) for name, usage in report.daily.items()},
        "breakdown": {
            "mileageIssued": float(spend.mileage_issued),
            "mileageRedeemed": float(spend.mileage_redeemed),
            "mileageIssueCount": spend.mileage_issue_count,
            "couponDiscount": float(spend.coupon_discount),
            "couponUsedCount": spend.coupon_used_count,
            "settlementPaid": float(spend.settlement_paid),
            "settlementOutstanding": float(spend.settlement_outstanding),
            "settlementRequests": spend.settlement_requests,
        },
        "alerts": [
            {
                "level": alert.level,
                "type": alert.type,
                "message": alert.message,
                "utilizationRate": alert.utilization_rate,
            }
            for alert in report.alerts
        ],
        "trend": [
            {
                "month": point.month,
                "mileage": float(point.mileage),
                "coupons": float(point.coupons),
                "settlements": float(point.settlements),
                "total": float(point.total),
            }
            for point in report.trend
        ],
        "emergency": report.policy.emergency.model_dump(mode="json", by_alias=True) if report.policy else None,
        "generatedAt": isoformat(report.generated_at),
    }


@router.get("/status", summary="Spend against the budget policy")
async def get_budget_status(
    period: Literal["current_month", "last_month", "current_year", "today"] = Query("current_month"),
    admin: User = Depends(require_admin),
    policy: BudgetPolicy = Depends(resolve_budget_policy),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    monitor = BudgetMonitor(db)
    report = await monitor.status(policy, period=period)
    return success(serialize_report(report), "Budget status retrieved successfully")


@router.get("/policy", summary="Current budget policy")
async def get_budget_policy(
    admin: User = Depends(require_admin),
    policy: BudgetPolicy = Depends(resolve_budget_policy),
) -> dict[str, Any]:
    return success(policy.to_document(), "Budget policy retrieved successfully")


@router.put("/policy", summary="Update the budget policy")
async def update_budget_policy(
    patch: dict[str, Any],
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    monitor = BudgetMonitor(db)
    policy = await monitor.update_policy(admin.id, patch)
    await db.commit()
    return success(policy.to_document(), "Budget policy updated")


@router.put("/emergency", summary="Toggle emergency controls")
async def set_emergency_controls(
    body: EmergencyRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    monitor = BudgetMonitor(db)
    policy = await monitor.set_emergency(
        admin.id,
        enabled=body.enabled,
        reason=body.reason,
        restrictions=body.restrictions,
    )
    await db.commit()
    message = "Emergency controls activated" if body.enabled else "Emergency controls deactivated"
    return success(policy.emergency.model_dump(mode="json", by_alias=True), message)
