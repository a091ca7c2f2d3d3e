"""Partner businesses that accept mileage and coupons."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from buzz_api.core.clock import utcnow
from buzz_api.db.base import Base


class BusinessStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class Business(Base):
    """A merchant; only approved businesses can redeem or request settlements."""

    __tablename__ = "businesses"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    owner_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    business_name = Column(String, nullable=False)
    category = Column(String(64), nullable=True)
    address = Column(String, nullable=True)
    phone_number = Column(String(32), nullable=True)
    status = Column(
        SqlEnum(
            BusinessStatus,
            name="business_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=BusinessStatus.PENDING,
        server_default=BusinessStatus.PENDING.value,
    )
    qr_scan_count = Column(Integer, nullable=False, default=0, server_default="0")
    bank_name = Column(String(64), nullable=True)
    bank_account = Column(String(64), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    owner = relationship("User", lazy="selectin")
