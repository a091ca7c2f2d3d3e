"""Coupon templates, issued coupons and their redemption trail."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from buzz_api.core.clock import utcnow
from buzz_api.db.base import Base


class CouponKind(str, Enum):
    SIGNUP = "signup"
    REFERRAL = "referral"
    EVENT = "event"
    BASIC = "basic"


class DiscountType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class CouponTemplateStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class UserCouponStatus(str, Enum):
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"


class CouponTemplate(Base):
    """Admin-defined coupon blueprint."""

    __tablename__ = "coupon_templates"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    kind = Column(
        SqlEnum(CouponKind, name="coupon_kind", values_callable=lambda enum: [member.value for member in enum]),
        nullable=False,
        default=CouponKind.BASIC,
    )
    discount_type = Column(
        SqlEnum(DiscountType, name="coupon_discount_type", values_callable=lambda enum: [member.value for member in enum]),
        nullable=False,
    )
    discount_value = Column(Numeric(12, 2), nullable=False)
    min_purchase_amount = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    max_discount_amount = Column(Numeric(14, 2), nullable=True)
    valid_from = Column(Date, nullable=False)
    valid_until = Column(Date, nullable=False)
    total_quantity = Column(Integer, nullable=True)
    used_quantity = Column(Integer, nullable=False, default=0, server_default="0")
    issued_quantity = Column(Integer, nullable=False, default=0, server_default="0")
    applicable_businesses = Column(JSON, nullable=False, default=list)
    status = Column(
        SqlEnum(
            CouponTemplateStatus,
            name="coupon_template_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=CouponTemplateStatus.ACTIVE,
    )
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    @property
    def remaining_quantity(self) -> int | None:
        if self.total_quantity is None:
            return None
        return max(int(self.total_quantity) - int(self.used_quantity or 0), 0)


class UserCoupon(Base):
    """A coupon held by one user."""

    __tablename__ = "user_coupons"
    __table_args__ = (
        Index("ix_user_coupons_user_status", "user_id", "status"),
        Index("ix_user_coupons_business_used", "used_business_id", "used_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    template_id = Column(UUID(as_uuid=True), ForeignKey("coupon_templates.id", ondelete="CASCADE"), nullable=False)
    status = Column(
        SqlEnum(
            UserCouponStatus,
            name="user_coupon_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=UserCouponStatus.ACTIVE,
    )
    qr_code_data = Column(String(256), nullable=False, unique=True)
    issued_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    used_business_id = Column(UUID(as_uuid=True), ForeignKey("businesses.id", ondelete="SET NULL"), nullable=True)
    used_amount = Column(Numeric(14, 2), nullable=True)

    template = relationship("CouponTemplate", lazy="selectin")


class CouponUsageLog(Base):
    """Analytics trail of coupon redemptions."""

    __tablename__ = "coupon_usage_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_coupon_id = Column(UUID(as_uuid=True), ForeignKey("user_coupons.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    business_id = Column(UUID(as_uuid=True), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    purchase_amount = Column(Numeric(14, 2), nullable=False)
    discount_amount = Column(Numeric(14, 2), nullable=False)
    used_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
