"""Business payout requests."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
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
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from buzz_api.core.clock import utcnow
from buzz_api.db.base import Base


class SettlementStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"
    CANCELLED = "cancelled"


class SettlementRequest(Base):
    """Aggregated coupon and mileage takings of one business for one day.

    Amounts are frozen when the request is created; later transitions only
    touch status and audit columns.
    """

    __tablename__ = "settlement_requests"
    __table_args__ = (
        UniqueConstraint("business_id", "settlement_date", name="uq_settlement_requests_business_date"),
        Index(
            "uq_settlement_requests_business_pending",
            "business_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    business_id = Column(UUID(as_uuid=True), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    settlement_date = Column(Date, nullable=False)
    coupon_count = Column(Integer, nullable=False, default=0, server_default="0")
    coupon_amount = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    mileage_count = Column(Integer, nullable=False, default=0, server_default="0")
    mileage_amount = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    total_amount = Column(Numeric(14, 2), nullable=False)
    bank_name = Column(String(64), nullable=True)
    bank_account = Column(String(64), nullable=True)
    status = Column(
        SqlEnum(
            SettlementStatus,
            name="settlement_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=SettlementStatus.PENDING,
    )
    requested_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    payment_reference = Column(String(128), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    admin_note = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    business = relationship("Business", lazy="selectin")
