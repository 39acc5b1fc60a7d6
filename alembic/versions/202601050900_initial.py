"""initial schema

Revision ID: 202601050900
Revises:
Create Date: 2026-01-05 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601050900"
down_revision = None
branch_labels = None
depends_on = None

transaction_type = sa.Enum("income", "expense", name="transactiontype")
frequency = sa.Enum("daily", "weekly", "monthly", "yearly", name="frequency")


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column(
            "color", sa.String(length=7), nullable=False, server_default="#6b7280"
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )
    op.create_index("ix_categories_user_type", "categories", ["user_id", "type"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column(
            "is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("recurring_frequency", frequency),
        sa.Column("recurring_end_date", sa.Date()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
        sa.CheckConstraint(
            "NOT is_recurring OR recurring_frequency IS NOT NULL",
            name="ck_transactions_recurring_frequency",
        ),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_category_date",
        "transactions",
        ["user_id", "category_id", "date"],
    )
    op.create_index(
        "ix_transactions_recurring",
        "transactions",
        ["is_recurring", "recurring_end_date"],
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "period", sa.Enum("monthly", "yearly", name="budgetperiod"), nullable=False
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_budget_amount_positive"),
        sa.CheckConstraint(
            "end_date IS NULL OR end_date > start_date", name="ck_budget_window"
        ),
    )
    op.create_index("ix_budgets_user_category", "budgets", ["user_id", "category_id"])
    op.create_index("ix_budgets_window", "budgets", ["start_date", "end_date"])

    op.create_table(
        "financial_goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("target_amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "current_amount_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("target_date", sa.Date()),
        sa.Column("description", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("target_amount_cents > 0", name="ck_goal_target_positive"),
        sa.CheckConstraint(
            "current_amount_cents >= 0", name="ck_goal_current_positive"
        ),
    )
    op.create_index(
        "ix_goals_user_target_date", "financial_goals", ["user_id", "target_date"]
    )


def downgrade():
    op.drop_index("ix_goals_user_target_date", table_name="financial_goals")
    op.drop_table("financial_goals")
    op.drop_index("ix_budgets_window", table_name="budgets")
    op.drop_index("ix_budgets_user_category", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_transactions_recurring", table_name="transactions")
    op.drop_index("ix_transactions_user_category_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_categories_user_type", table_name="categories")
    op.drop_table("categories")
