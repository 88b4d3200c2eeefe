"""create affiliate ledger tables

Revision ID: 0001_create_affiliate_ledger
Revises:
Create Date: 2026-10-19 12:00:00.000000
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_create_affiliate_ledger"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    commission_status = sa.Enum(
        "pending",
        "confirmed",
        "paid",
        "cancelled",
        name="commission_status",
        native_enum=False,
        length=32,
    )
    withdrawal_status = sa.Enum(
        "pending",
        "processing",
        "completed",
        "rejected",
        name="withdrawal_status",
        native_enum=False,
        length=32,
    )
    withdrawal_method = sa.Enum(
        "bank_card",
        "alipay",
        "wechat_pay",
        name="withdrawal_method",
        native_enum=False,
        length=32,
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("referral_code", sa.String(length=12), nullable=False),
        sa.Column("referrer_id", sa.Uuid(), nullable=True),
        sa.Column(
            "is_active", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.ForeignKeyConstraint(
            ["referrer_id"],
            ["users.id"],
            name="fk_users_referrer_id_users",
            ondelete="SET NULL",
        ),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("referral_code", name="uq_users_referral_code"),
        sa.CheckConstraint(
            "referrer_id IS NULL OR referrer_id <> id",
            name="ck_users_no_self_referral",
        ),
    )
    op.create_index("ix_users_referrer_id", "users", ["referrer_id"])

    op.create_table(
        "withdrawals",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("requested_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("fee_rate", sa.Numeric(6, 4), nullable=False),
        sa.Column("fee", sa.Numeric(12, 2), nullable=False),
        sa.Column("net_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("method", withdrawal_method, nullable=False),
        sa.Column(
            "account_info",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=False,
        ),
        sa.Column("status", withdrawal_status, nullable=False),
        sa.Column(
            "commission_ids",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=False,
        ),
        sa.Column("remark", sa.String(length=500), nullable=True),
        sa.Column("processing_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_withdrawals"),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name="fk_withdrawals_user_id_users",
            ondelete="RESTRICT",
        ),
    )
    op.create_index(
        "ix_withdrawals_user_id_status", "withdrawals", ["user_id", "status"]
    )
    op.create_index("ix_withdrawals_status", "withdrawals", ["status"])

    op.create_table(
        "commissions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("order_id", sa.String(length=64), nullable=False),
        sa.Column("from_user_id", sa.Uuid(), nullable=False),
        sa.Column("to_user_id", sa.Uuid(), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("rate", sa.Numeric(6, 4), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", commission_status, nullable=False),
        sa.Column("withdrawal_id", sa.Uuid(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_commissions"),
        sa.ForeignKeyConstraint(
            ["from_user_id"],
            ["users.id"],
            name="fk_commissions_from_user_id_users",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["to_user_id"],
            ["users.id"],
            name="fk_commissions_to_user_id_users",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["withdrawal_id"],
            ["withdrawals.id"],
            name="fk_commissions_withdrawal_id_withdrawals",
            ondelete="RESTRICT",
        ),
        sa.UniqueConstraint(
            "order_id", "to_user_id", "level", name="uq_commissions_accrual_key"
        ),
        sa.CheckConstraint("level IN (1, 2)", name="ck_commissions_level_range"),
        sa.CheckConstraint(
            "CAST(amount AS NUMERIC) >= 0", name="ck_commissions_amount_non_negative"
        ),
    )
    op.create_index("ix_commissions_order_id", "commissions", ["order_id"])
    op.create_index(
        "ix_commissions_beneficiary_status", "commissions", ["to_user_id", "status"]
    )
    op.create_index("ix_commissions_withdrawal_id", "commissions", ["withdrawal_id"])


def downgrade() -> None:
    op.drop_index("ix_commissions_withdrawal_id", table_name="commissions")
    op.drop_index("ix_commissions_beneficiary_status", table_name="commissions")
    op.drop_index("ix_commissions_order_id", table_name="commissions")
    op.drop_table("commissions")

    op.drop_index("ix_withdrawals_status", table_name="withdrawals")
    op.drop_index("ix_withdrawals_user_id_status", table_name="withdrawals")
    op.drop_table("withdrawals")

    op.drop_index("ix_users_referrer_id", table_name="users")
    op.drop_table("users")
