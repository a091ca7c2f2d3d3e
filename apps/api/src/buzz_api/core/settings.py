from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./buzz.db"
    database_echo: bool = False

    # Internal API security
    internal_api_key: str = ""

    # QR tokens
    qr_signing_secret: str = "change-me"
    qr_code_ttl_seconds: int = 300

    # Mileage ledger
    mileage_expire_days: int = 365
    mileage_expiring_window_days: int = 30

    # Coupons
    coupon_default_expiration_days: int = 30
    coupon_expiring_soon_days: int = 7

    # Settlements
    settlement_lookback_days: int = 30
    settlement_payment_business_days: int = 5

    # Budget defaults (used until an admin stores a policy)
    budget_monthly_total: float = 10_000_000.0
    budget_monthly_mileage: float = 5_000_000.0
    budget_monthly_coupons: float = 3_000_000.0
    budget_monthly_settlements: float = 2_000_000.0
    budget_daily_mileage: float = 200_000.0
    budget_daily_coupons: float = 100_000.0
    budget_daily_settlements: float = 100_000.0
    budget_alert_warning: float = 70.0
    budget_alert_critical: float = 85.0
    budget_alert_danger: float = 95.0
    budget_auto_suspend_threshold: float = 95.0
    budget_trend_months: int = 6

    # SMS notifications
    sms_gateway_url: str | None = None
    sms_api_key: str | None = None
    sms_sender_number: str = ""
    sms_timeout_seconds: float = 10.0

    # Tracing
    otel_enabled: bool = False


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
