"""Domain errors raised by the ledger, coupon, settlement and budget services.

Every error carries a stable ``code`` and an HTTP ``status_code``; the API layer
renders them into the ``{"success": false, "error": {...}}`` envelope.
"""

from __future__ import annotations

from typing import Any


class LedgerError(RuntimeError):
    """Base class for all business-rule failures."""

    code = "SERVER_001"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, *, details: Any = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details


class ValidationFailed(LedgerError):
    code = "VALIDATION_001"
    status_code = 400
    default_message = "Invalid input"


class Unauthorized(LedgerError):
    code = "AUTH_001"
    status_code = 401
    default_message = "Authentication required"


class Forbidden(LedgerError):
    code = "AUTH_003"
    status_code = 403
    default_message = "Insufficient permissions"


class NotFound(LedgerError):
    code = "RESOURCE_001"
    status_code = 404
    default_message = "Resource not found"

    def __init__(self, resource: str = "Resource", *, details: Any = None) -> None:
        super().__init__(f"{resource} not found", details=details)
        self.resource = resource


class Conflict(LedgerError):
    code = "RESOURCE_002"
    status_code = 409
    default_message = "Resource already exists"


class InvalidQrCode(LedgerError):
    code = "QR_001"
    status_code = 400
    default_message = "Invalid QR code"


# Mileage


class InsufficientBalance(LedgerError):
    code = "MILEAGE_001"
    status_code = 400
    default_message = "Insufficient mileage balance"

    def __init__(self, *, balance: Any, requested: Any) -> None:
        super().__init__(
            details={"currentBalance": float(balance), "requestedAmount": float(requested)},
        )


class InvalidAmount(LedgerError):
    code = "MILEAGE_002"
    status_code = 400
    default_message = "Amount must be greater than zero"


class AlreadyRefunded(LedgerError):
    code = "MILEAGE_003"
    status_code = 409
    default_message = "Transaction has already been refunded"


# Coupons


class CouponExpired(LedgerError):
    code = "COUPON_001"
    status_code = 400
    default_message = "Coupon has expired"


class CouponNotActive(LedgerError):
    code = "COUPON_002"
    status_code = 400
    default_message = "Coupon is not available"


class CouponNotApplicable(LedgerError):
    code = "COUPON_003"
    status_code = 400
    default_message = "Coupon cannot be used at this business"


class MinPurchaseNotMet(LedgerError):
    code = "COUPON_004"
    status_code = 400
    default_message = "Minimum purchase amount not met"

    def __init__(self, *, minimum: Any) -> None:
        super().__init__(
            f"Minimum purchase amount is {float(minimum):,.0f}",
            details={"minPurchaseAmount": float(minimum)},
        )


class CouponOutsideValidity(LedgerError):
    code = "COUPON_005"
    status_code = 400
    default_message = "Coupon template is outside its validity window"


class CouponExhausted(LedgerError):
    code = "COUPON_006"
    status_code = 400
    default_message = "Coupon quantity exhausted"


# Settlements


class PendingSettlementExists(LedgerError):
    code = "SETTLEMENT_002"
    status_code = 409
    default_message = "A pending settlement request already exists"


class InvalidSettlementDate(LedgerError):
    code = "SETTLEMENT_003"
    status_code = 400
    default_message = "Settlement date is outside the allowed range"


class NoTransactions(LedgerError):
    code = "SETTLEMENT_004"
    status_code = 400
    default_message = "No transactions to settle for this date"


class SettlementAlreadyRequested(LedgerError):
    code = "SETTLEMENT_005"
    status_code = 409
    default_message = "A settlement for this date was already requested"


class InvalidSettlementTransition(LedgerError):
    code = "SETTLEMENT_007"
    status_code = 409

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(
            f"Cannot transition settlement from {current} to {requested}",
            details={"currentStatus": current, "requestedStatus": requested},
        )
        self.current = current
        self.requested = requested


class InvalidBusinessTransition(LedgerError):
    code = "BUSINESS_001"
    status_code = 409

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Cannot transition business from {current} to {requested}")
        self.current = current
        self.requested = requested


__all__ = [
    "AlreadyRefunded",
    "Conflict",
    "CouponExhausted",
    "CouponExpired",
    "CouponNotActive",
    "CouponNotApplicable",
    "CouponOutsideValidity",
    "Forbidden",
    "InsufficientBalance",
    "InvalidAmount",
    "InvalidBusinessTransition",
    "InvalidQrCode",
    "InvalidSettlementDate",
    "InvalidSettlementTransition",
    "LedgerError",
    "MinPurchaseNotMet",
    "NoTransactions",
    "NotFound",
    "PendingSettlementExists",
    "SettlementAlreadyRequested",
    "Unauthorized",
    "ValidationFailed",
]
