"""Coupon service exports."""

from .service import (  # noqa: F401
    BulkIssueResult,
    CouponRedemption,
    CouponService,
    compute_discount,
)
