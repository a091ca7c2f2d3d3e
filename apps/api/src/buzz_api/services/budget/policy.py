"""Budget policy document stored under ``admin_settings['budget_policies']``."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from buzz_api.core.settings import Settings, get_settings

POLICY_SETTING_KEY = "budget_policies"


class _PolicyModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class MonthlyLimits(_PolicyModel):
    total: float = Field(gt=0)
    mileage: float = Field(gt=0)
    coupons: float = Field(gt=0)
    settlements: float = Field(gt=0)


class DailyLimits(_PolicyModel):
    mileage: float = Field(gt=0)
    coupons: float = Field(gt=0)
    settlements: float = Field(gt=0)


class AlertThresholds(_PolicyModel):
    warning: float = Field(70.0, gt=0, le=100)
    critical: float = Field(85.0, gt=0, le=100)
    danger: float = Field(95.0, gt=0, le=100)

    @model_validator(mode="after")
    def _check_order(self) -> "AlertThresholds":
        if not (self.warning < self.critical < self.danger):
            raise ValueError("alert thresholds must satisfy warning < critical < danger")
        return self


class AutoSuspend(_PolicyModel):
    enabled: bool = True
    threshold: float = Field(95.0, gt=0, le=100)


class EmergencyRestrictions(_PolicyModel):
    mileage_issuance: bool = False
    coupon_issuance: bool = False
    settlement_approval: bool = False


class EmergencyControls(_PolicyModel):
    enabled: bool = False
    reason: Optional[str] = None
    restrictions: EmergencyRestrictions = Field(default_factory=EmergencyRestrictions)
    activated_by: Optional[UUID] = None
    activated_at: Optional[datetime] = None
    deactivated_at: Optional[datetime] = None


class BudgetPolicy(_PolicyModel):
    """Advisory spending limits; nothing in the issuance or redemption path reads it."""

    monthly: MonthlyLimits
    daily: DailyLimits
    alerts: AlertThresholds = Field(default_factory=AlertThresholds)
    auto_suspend: AutoSuspend = Field(default_factory=AutoSuspend)
    emergency: EmergencyControls = Field(default_factory=EmergencyControls)
    updated_by: Optional[UUID] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def defaults(cls, config: Settings | None = None) -> "BudgetPolicy":
        config = config or get_settings()
        return cls(
            monthly=MonthlyLimits(
                total=config.budget_monthly_total,
                mileage=config.budget_monthly_mileage,
                coupons=config.budget_monthly_coupons,
                settlements=config.budget_monthly_settlements,
            ),
            daily=DailyLimits(
                mileage=config.budget_daily_mileage,
                coupons=config.budget_daily_coupons,
                settlements=config.budget_daily_settlements,
            ),
            alerts=AlertThresholds(
                warning=config.budget_alert_warning,
                critical=config.budget_alert_critical,
                danger=config.budget_alert_danger,
            ),
            auto_suspend=AutoSuspend(enabled=True, threshold=config.budget_auto_suspend_threshold),
        )

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def merge_documents(base: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Recursive merge; ``patch`` wins, nested objects merge key by key."""

    merged = dict(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_documents(merged[key], value)
        else:
            merged[key] = value
    return merged


__all__ = [
    "AlertThresholds",
    "AutoSuspend",
    "BudgetPolicy",
    "DailyLimits",
    "EmergencyControls",
    "EmergencyRestrictions",
    "MonthlyLimits",
    "POLICY_SETTING_KEY",
    "merge_documents",
]
