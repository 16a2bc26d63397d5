"""categories, cards, transactions and limits

Revision ID: 202610170900
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610170900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column(
            "color", sa.String(length=7), nullable=False, server_default="#6B7280"
        ),
        sa.Column("icon", sa.String(length=50), nullable=False, server_default="folder"),
        sa.Column("archived_at", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "type", "name", name="uq_category_user_type_name"
        ),
    )

    op.create_table(
        "cards",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("brand", sa.String(length=40)),
        sa.Column("archived_at", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_card_user_name"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column(
            "status",
            sa.Enum("pending", "confirmed", "cancelled", name="transactionstatus"),
            nullable=False,
            server_default="confirmed",
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("card_id", sa.Integer(), sa.ForeignKey("cards.id")),
        sa.Column("deleted_at", sa.DateTime()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_category_date",
        "transactions",
        ["user_id", "category_id", "date"],
    )
    op.create_index(
        "ix_transactions_user_card_date", "transactions", ["user_id", "card_id", "date"]
    )
    op.create_index(
        "ix_transactions_user_type_date", "transactions", ["user_id", "type", "date"]
    )

    op.create_table(
        "limits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "kind",
            sa.Enum("category", "card", "general", "period", name="limitkind"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("accrued_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "period",
            sa.Enum("daily", "weekly", "monthly", "yearly", name="limitperiod"),
            nullable=False,
            server_default="monthly",
        ),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("card_id", sa.Integer(), sa.ForeignKey("cards.id")),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("alert_50", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("alert_75", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("alert_90", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("alert_100", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_reset_at", sa.DateTime(), nullable=False),
        sa.Column("next_reset_at", sa.DateTime(), nullable=False),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_limits_amount_positive"),
        sa.CheckConstraint("accrued_cents >= 0", name="ck_limits_accrued_positive"),
    )
    op.create_index("ix_limits_user_active", "limits", ["user_id", "active"])
    op.create_index("ix_limits_user_kind", "limits", ["user_id", "kind"])
    op.create_index(
        "ix_limits_active_next_reset", "limits", ["active", "next_reset_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_limits_active_next_reset", table_name="limits")
    op.drop_index("ix_limits_user_kind", table_name="limits")
    op.drop_index("ix_limits_user_active", table_name="limits")
    op.drop_table("limits")
    op.drop_index("ix_transactions_user_type_date", table_name="transactions")
    op.drop_index("ix_transactions_user_card_date", table_name="transactions")
    op.drop_index("ix_transactions_user_category_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("cards")
    op.drop_table("categories")
