"""initial finance schema

Revision ID: 202601100900
Revises:
Create Date: 2026-01-10 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601100900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "payment_method", sa.String(length=60), nullable=False, server_default=""
        ),
        sa.Column("card_name", sa.String(length=60)),
        sa.Column("split_with", sa.String(length=100)),
        sa.Column("split_status", sa.Enum("paid", "pending", name="splitstatus")),
        sa.Column(
            "is_refunded", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("billing_day", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("category", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column(
            "payment_method", sa.String(length=60), nullable=False, server_default=""
        ),
        *_timestamps(),
        sa.CheckConstraint(
            "amount_cents >= 0", name="ck_subscriptions_amount_positive"
        ),
        sa.CheckConstraint(
            "billing_day BETWEEN 1 AND 31", name="ck_subscriptions_billing_day"
        ),
    )
    op.create_index(
        "ix_subscriptions_user_start", "subscriptions", ["user_id", "start_date"]
    )

    op.create_table(
        "installments",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("total_amount_cents", sa.Integer(), nullable=False),
        sa.Column("total_installments", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column(
            "payment_method", sa.String(length=60), nullable=False, server_default=""
        ),
        sa.Column("card_name", sa.String(length=60)),
        *_timestamps(),
        sa.CheckConstraint(
            "total_amount_cents >= 0", name="ck_installments_amount_positive"
        ),
    )
    op.create_index(
        "ix_installments_user_start", "installments", ["user_id", "start_date"]
    )

    op.create_table(
        "investments",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "asset_type",
            sa.Enum("stock", "crypto", "fixed_income", "fund", name="assettype"),
            nullable=False,
        ),
        sa.Column(
            "current_value_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("last_updated", sa.DateTime(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_investments_user", "investments", ["user_id"])

    op.create_table(
        "investment_events",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column(
            "investment_id",
            sa.String(length=32),
            sa.ForeignKey("investments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "type",
            sa.Enum("deposit", "withdrawal", name="investmenteventtype"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_investment_events_amount"),
    )
    op.create_index(
        "ix_investment_events_investment_date",
        "investment_events",
        ["investment_id", "date"],
    )

    op.create_table(
        "goals",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("target_cents", sa.Integer(), nullable=False),
        sa.Column("current_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("deadline", sa.Date()),
        *_timestamps(),
    )
    op.create_index("ix_goals_user_start", "goals", ["user_id", "start_date"])

    op.create_table(
        "receivables",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("debtor_name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "paid", name="receivablestatus"),
            nullable=False,
        ),
        sa.Column("source_transaction_id", sa.String(length=32)),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_receivables_amount_positive"),
    )
    op.create_index(
        "ix_receivables_user_status", "receivables", ["user_id", "status"]
    )

    op.create_table(
        "activity_entries",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column(
            "action",
            sa.Enum("create", "update", "delete", name="activityaction"),
            nullable=False,
        ),
        sa.Column("entity", sa.String(length=40), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column(
            "source",
            sa.Enum("user", "assistant", name="commandsource"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_activity_user_created", "activity_entries", ["user_id", "created_at"]
    )


def downgrade():
    op.drop_index("ix_activity_user_created", table_name="activity_entries")
    op.drop_table("activity_entries")
    op.drop_index("ix_receivables_user_status", table_name="receivables")
    op.drop_table("receivables")
    op.drop_index("ix_goals_user_start", table_name="goals")
    op.drop_table("goals")
    op.drop_index(
        "ix_investment_events_investment_date", table_name="investment_events"
    )
    op.drop_table("investment_events")
    op.drop_index("ix_investments_user", table_name="investments")
    op.drop_table("investments")
    op.drop_index("ix_installments_user_start", table_name="installments")
    op.drop_table("installments")
    op.drop_index("ix_subscriptions_user_start", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
