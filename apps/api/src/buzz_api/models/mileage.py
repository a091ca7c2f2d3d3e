"""Mileage accounts and the append-only transaction ledger."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from buzz_api.core.clock import utcnow
from buzz_api.db.base import Base


class MileageTransactionType(str, Enum):
    """Ledger entry kinds; direction and lifetime counter follow from the kind."""

    EARN = "earn"
    USE = "use"
    EXPIRE = "expire"
    CANCEL = "cancel"
    REFUND = "refund"

    @property
    def is_credit(self) -> bool:
        return self in (MileageTransactionType.EARN, MileageTransactionType.REFUND)


class MileageAccount(Base):
    """Per-user balance; mutated only through the ledger service."""

    __tablename__ = "mileage_accounts"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_mileage_accounts_user_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    balance = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    total_earned = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    total_used = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    total_expired = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)


class MileageTransaction(Base):
    """Immutable ledger row recording one balance change."""

    __tablename__ = "mileage_transactions"
    __table_args__ = (
        Index("ix_mileage_transactions_user_created", "user_id", "created_at"),
        Index("ix_mileage_transactions_business_created", "business_id", "created_at"),
        Index("ix_mileage_transactions_reference", "reference_type", "reference_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = Column(
        SqlEnum(
            MileageTransactionType,
            name="mileage_transaction_type",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    amount = Column(Numeric(14, 2), nullable=False)
    balance_before = Column(Numeric(14, 2), nullable=False)
    balance_after = Column(Numeric(14, 2), nullable=False)
    description = Column(Text, nullable=True)
    reference_type = Column(String(32), nullable=True)
    reference_id = Column(String(128), nullable=True)
    business_id = Column(UUID(as_uuid=True), ForeignKey("businesses.id", ondelete="SET NULL"), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    business = relationship("Business", lazy="selectin")


class MileageUsageLog(Base):
    """Analytics trail of QR mileage payments."""

    __tablename__ = "mileage_usage_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    business_id = Column(UUID(as_uuid=True), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    transaction_id = Column(UUID(as_uuid=True), ForeignKey("mileage_transactions.id"), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    qr_code = Column(String(256), nullable=True)
    used_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
