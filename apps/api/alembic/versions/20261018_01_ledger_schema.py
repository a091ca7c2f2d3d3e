"""Ledger, coupon, settlement and admin tables.

Revision ID: 20261018_01
Revises: 
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


UUID = postgresql.UUID(as_uuid=True)

business_status = sa.Enum("pending", "approved", "rejected", "suspended", name="business_status")
mileage_transaction_type = sa.Enum("earn", "use", "expire", "cancel", "refund", name="mileage_transaction_type")
coupon_kind = sa.Enum("signup", "referral", "event", "basic", name="coupon_kind")
coupon_discount_type = sa.Enum("fixed", "percentage", name="coupon_discount_type")
coupon_template_status = sa.Enum("active", "inactive", name="coupon_template_status")
user_coupon_status = sa.Enum("active", "used", "expired", name="user_coupon_status")
settlement_status = sa.Enum("pending", "approved", "rejected", "paid", "cancelled", name="settlement_status")


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False))
    return columns


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="user"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "businesses",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("owner_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("business_name", sa.String(), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("address", sa.String(), nullable=True),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
        sa.Column("status", business_status, nullable=False, server_default="pending"),
        sa.Column("qr_scan_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("bank_name", sa.String(length=64), nullable=True),
        sa.Column("bank_account", sa.String(length=64), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_businesses_owner_id", "businesses", ["owner_id"])

    op.create_table(
        "mileage_accounts",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("balance", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("total_earned", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("total_used", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("total_expired", sa.Numeric(14, 2), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("user_id", name="uq_mileage_accounts_user_id"),
    )

    op.create_table(
        "mileage_transactions",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", mileage_transaction_type, nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("balance_before", sa.Numeric(14, 2), nullable=False),
        sa.Column("balance_after", sa.Numeric(14, 2), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("reference_type", sa.String(length=32), nullable=True),
        sa.Column("reference_id", sa.String(length=128), nullable=True),
        sa.Column("business_id", UUID, sa.ForeignKey("businesses.id", ondelete="SET NULL"), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_mileage_transactions_user_created", "mileage_transactions", ["user_id", "created_at"])
    op.create_index(
        "ix_mileage_transactions_business_created", "mileage_transactions", ["business_id", "created_at"]
    )
    op.create_index(
        "ix_mileage_transactions_reference", "mileage_transactions", ["reference_type", "reference_id"]
    )

    op.create_table(
        "mileage_usage_logs",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("business_id", UUID, sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("transaction_id", UUID, sa.ForeignKey("mileage_transactions.id"), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("qr_code", sa.String(length=256), nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "coupon_templates",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("kind", coupon_kind, nullable=False),
        sa.Column("discount_type", coupon_discount_type, nullable=False),
        sa.Column("discount_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("min_purchase_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("max_discount_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("valid_from", sa.Date(), nullable=False),
        sa.Column("valid_until", sa.Date(), nullable=False),
        sa.Column("total_quantity", sa.Integer(), nullable=True),
        sa.Column("used_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("issued_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("applicable_businesses", sa.JSON(), nullable=False),
        sa.Column("status", coupon_template_status, nullable=False),
        sa.Column("created_by", UUID, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "user_coupons",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("template_id", UUID, sa.ForeignKey("coupon_templates.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", user_coupon_status, nullable=False),
        sa.Column("qr_code_data", sa.String(length=256), nullable=False, unique=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_business_id", UUID, sa.ForeignKey("businesses.id", ondelete="SET NULL"), nullable=True),
        sa.Column("used_amount", sa.Numeric(14, 2), nullable=True),
    )
    op.create_index("ix_user_coupons_user_status", "user_coupons", ["user_id", "status"])
    op.create_index("ix_user_coupons_business_used", "user_coupons", ["used_business_id", "used_at"])

    op.create_table(
        "coupon_usage_logs",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_coupon_id", UUID, sa.ForeignKey("user_coupons.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("business_id", UUID, sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("purchase_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "settlement_requests",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("business_id", UUID, sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("settlement_date", sa.Date(), nullable=False),
        sa.Column("coupon_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("coupon_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("mileage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("mileage_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("bank_name", sa.String(length=64), nullable=True),
        sa.Column("bank_account", sa.String(length=64), nullable=True),
        sa.Column("status", settlement_status, nullable=False),
        sa.Column("requested_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", UUID, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_reference", sa.String(length=128), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("admin_note", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("business_id", "settlement_date", name="uq_settlement_requests_business_date"),
    )
    op.create_index(
        "uq_settlement_requests_business_pending",
        "settlement_requests",
        ["business_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "admin_settings",
        sa.Column("key", sa.String(length=64), primary_key=True),
        sa.Column("value", sa.JSON(), nullable=False),
        sa.Column("updated_by", UUID, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "admin_activity_logs",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("admin_id", UUID, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("target_type", sa.String(length=32), nullable=True),
        sa.Column("target_id", sa.String(length=64), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index("ix_admin_activity_logs_action", "admin_activity_logs", ["action"])


def downgrade() -> None:
    op.drop_index("ix_admin_activity_logs_action", table_name="admin_activity_logs")
    op.drop_table("admin_activity_logs")
    op.drop_table("admin_settings")
    op.drop_index("uq_settlement_requests_business_pending", table_name="settlement_requests")
    op.drop_table("settlement_requests")
    op.drop_table("coupon_usage_logs")
    op.drop_index("ix_user_coupons_business_used", table_name="user_coupons")
    op.drop_index("ix_user_coupons_user_status", table_name="user_coupons")
    op.drop_table("user_coupons")
    op.drop_table("coupon_templates")
    op.drop_table("mileage_usage_logs")
    op.drop_index("ix_mileage_transactions_reference", table_name="mileage_transactions")
    op.drop_index("ix_mileage_transactions_business_created", table_name="mileage_transactions")
    op.drop_index("ix_mileage_transactions_user_created", table_name="mileage_transactions")
    op.drop_table("mileage_transactions")
    op.drop_table("mileage_accounts")
    op.drop_index("ix_businesses_owner_id", table_name="businesses")
    op.drop_table("businesses")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for enum in (
        settlement_status,
        user_coupon_status,
        coupon_template_status,
        coupon_discount_type,
        coupon_kind,
        mileage_transaction_type,
        business_status,
    ):
        enum.drop(bind, checkfirst=True)
