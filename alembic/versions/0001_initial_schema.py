"""initial affiliate ledger schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "affiliates",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("affiliate_code", sa.String(length=50), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column(
            "status",
            sa.String(length=20),
            server_default=sa.text("'pending'"),
            nullable=False,
        ),
        sa.Column("total_earnings", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("pending_balance", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("paid_balance", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("total_referrals", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_sales", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column(
            "use_custom_rates",
            sa.Boolean(),
            server_default=sa.text("false"),
            nullable=False,
        ),
        sa.Column("custom_commission_type", sa.String(length=10), nullable=True),
        sa.Column("custom_commission_value", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint(
            "status IN ('pending', 'active', 'suspended')",
            name="valid_affiliate_status",
        ),
        sa.CheckConstraint("paid_balance >= 0", name="non_negative_paid_balance"),
        sa.CheckConstraint(
            "pending_balance >= 0", name="non_negative_pending_balance"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("affiliate_code", name="uq_affiliates_affiliate_code"),
    )
    op.create_index("idx_affiliates_status", "affiliates", ["status"], unique=False)

    op.create_table(
        "affiliate_referrals",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("affiliate_id", sa.String(length=36), nullable=False),
        sa.Column("order_id", sa.String(length=100), nullable=False),
        sa.Column("order_amount", sa.BigInteger(), nullable=False),
        sa.Column("commission_rate", sa.Integer(), nullable=False),
        sa.Column("commission_amount", sa.BigInteger(), nullable=False),
        sa.Column(
            "status",
            sa.String(length=20),
            server_default=sa.text("'pending'"),
            nullable=False,
        ),
        sa.Column("flag_reason", sa.String(length=50), nullable=True),
        sa.Column("flag_details", sa.Text(), nullable=True),
        _timestamp("flagged_at", nullable=True),
        sa.Column("reviewed_by", sa.String(length=100), nullable=True),
        _timestamp("reviewed_at", nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("approved_at", nullable=True),
        _timestamp("paid_at", nullable=True),
        sa.CheckConstraint("commission_amount >= 0", name="non_negative_commission"),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'paid', 'void', 'flagged')",
            name="valid_referral_status",
        ),
        sa.CheckConstraint(
            "(status = 'paid' AND paid_at IS NOT NULL) "
            "OR (status != 'paid' AND paid_at IS NULL)",
            name="referral_paid_at_consistency",
        ),
        sa.ForeignKeyConstraint(
            ["affiliate_id"], ["affiliates.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id"),
    )
    op.create_index(
        "idx_referrals_affiliate_status",
        "affiliate_referrals",
        ["affiliate_id", "status"],
        unique=False,
    )
    op.create_index(
        "idx_referrals_status_created",
        "affiliate_referrals",
        ["status", "created_at"],
        unique=False,
    )

    op.create_table(
        "affiliate_payout_accounts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("affiliate_id", sa.String(length=36), nullable=False),
        sa.Column("provider_account_id", sa.String(length=100), nullable=False),
        sa.Column(
            "payouts_enabled",
            sa.Boolean(),
            server_default=sa.text("false"),
            nullable=False,
        ),
        sa.Column(
            "details_submitted",
            sa.Boolean(),
            server_default=sa.text("false"),
            nullable=False,
        ),
        sa.Column(
            "country", sa.String(length=2), server_default="US", nullable=False
        ),
        sa.Column(
            "currency", sa.String(length=3), server_default="usd", nullable=False
        ),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(
            ["affiliate_id"], ["affiliates.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("affiliate_id"),
    )

    op.create_table(
        "affiliate_payouts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("affiliate_id", sa.String(length=36), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column(
            "payment_method",
            sa.String(length=30),
            server_default=sa.text("'stripe_connect'"),
            nullable=False,
        ),
        sa.Column("payment_details", sa.Text(), nullable=True),
        sa.Column(
            "status",
            sa.String(length=20),
            server_default=sa.text("'pending'"),
            nullable=False,
        ),
        sa.Column("payout_batch_id", sa.String(length=20), nullable=True),
        sa.Column("transfer_id", sa.String(length=100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("processed_by", sa.String(length=100), nullable=True),
        _timestamp("requested_at"),
        _timestamp("processed_at", nullable=True),
        sa.CheckConstraint("amount > 0", name="positive_payout_amount"),
        sa.CheckConstraint(
            "status IN ('pending', 'paid', 'failed', 'rejected')",
            name="valid_payout_status",
        ),
        sa.ForeignKeyConstraint(
            ["affiliate_id"], ["affiliates.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "payout_batch_id", "affiliate_id", name="uq_payout_batch_affiliate"
        ),
    )
    op.create_index(
        "idx_payouts_affiliate_status",
        "affiliate_payouts",
        ["affiliate_id", "status"],
        unique=False,
    )

    op.create_table(
        "affiliate_settings",
        sa.Column("id", sa.String(length=20), nullable=False),
        sa.Column(
            "minimum_payout", sa.BigInteger(), server_default="5000", nullable=False
        ),
        sa.Column("approval_days", sa.Integer(), server_default="14", nullable=False),
        sa.Column(
            "default_commission_type",
            sa.String(length=10),
            server_default=sa.text("'PERCENT'"),
            nullable=False,
        ),
        sa.Column(
            "default_commission_value",
            sa.Integer(),
            server_default="10",
            nullable=False,
        ),
        sa.Column(
            "program_active",
            sa.Boolean(),
            server_default=sa.text("true"),
            nullable=False,
        ),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "audit_logs",
        sa.Column(
            "id",
            sa.BigInteger(),
            sa.Identity(always=False),
            nullable=False,
        ),
        sa.Column("actor", sa.String(length=100), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=True),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_audit_logs_entity",
        "audit_logs",
        ["entity_type", "entity_id"],
        unique=False,
    )

    op.create_table(
        "job_runs",
        sa.Column(
            "id",
            sa.BigInteger(),
            sa.Identity(always=False),
            nullable=False,
        ),
        sa.Column("job_name", sa.String(length=100), nullable=False),
        sa.Column("run_key", sa.String(length=200), nullable=False),
        sa.Column(
            "status",
            sa.String(length=20),
            server_default=sa.text("'running'"),
            nullable=False,
        ),
        _timestamp("started_at"),
        _timestamp("completed_at", nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("result", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "status IN ('running', 'completed', 'failed')",
            name="valid_job_run_status",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("run_key"),
    )


def downgrade() -> None:
    op.drop_table("job_runs")
    op.drop_index("idx_audit_logs_entity", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("affiliate_settings")
    op.drop_index("idx_payouts_affiliate_status", table_name="affiliate_payouts")
    op.drop_table("affiliate_payouts")
    op.drop_table("affiliate_payout_accounts")
    op.drop_index("idx_referrals_status_created", table_name="affiliate_referrals")
    op.drop_index(
        "idx_referrals_affiliate_status", table_name="affiliate_referrals"
    )
    op.drop_table("affiliate_referrals")
    op.drop_index("idx_affiliates_status", table_name="affiliates")
    op.drop_table("affiliates")
