"""SQLAlchemy models package."""

from .user import User, UserRoleEnum  # noqa: F401
from .business import Business, BusinessStatus  # noqa: F401
from .mileage import (  # noqa: F401
    MileageAccount,
    MileageTransaction,
    MileageTransactionType,
    MileageUsageLog,
)
from .coupon import (  # noqa: F401
    CouponKind,
    CouponTemplate,
    CouponTemplateStatus,
    CouponUsageLog,
    DiscountType,
    UserCoupon,
    UserCouponStatus,
)
from .settlement import SettlementRequest, SettlementStatus  # noqa: F401
from .admin import AdminActivityLog, AdminSetting  # noqa: F401
