"""add bills and bill payments

Revision ID: 202601121000
Revises: 202601050900
Create Date: 2026-01-12 10:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601121000"
down_revision = "202601050900"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "bills",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column(
            "frequency",
            sa.Enum("daily", "weekly", "monthly", "yearly", name="frequency"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum("pending", "paid", "overdue", name="billstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("description", sa.Text()),
        sa.Column(
            "auto_pay_enabled", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("reminder_days", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("last_paid_date", sa.Date()),
        sa.Column("next_due_date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_bill_amount_positive"),
        sa.CheckConstraint(
            "reminder_days >= 0 AND reminder_days <= 30",
            name="ck_bill_reminder_days_range",
        ),
    )
    op.create_index("ix_bills_user_status", "bills", ["user_id", "status"])
    op.create_index("ix_bills_user_next_due", "bills", ["user_id", "next_due_date"])

    op.create_table(
        "bill_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "bill_id",
            sa.Integer(),
            sa.ForeignKey("bills.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id", ondelete="SET NULL"),
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("paid_date", sa.Date(), nullable=False),
        sa.Column(
            "is_auto_detected", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "amount_cents > 0", name="ck_bill_payment_amount_positive"
        ),
    )
    op.create_index("ix_bill_payments_bill", "bill_payments", ["bill_id"])
    op.create_index("ix_bill_payments_transaction", "bill_payments", ["transaction_id"])
    op.create_index("ix_bill_payments_paid_date", "bill_payments", ["paid_date"])


def downgrade():
    op.drop_index("ix_bill_payments_paid_date", table_name="bill_payments")
    op.drop_index("ix_bill_payments_transaction", table_name="bill_payments")
    op.drop_index("ix_bill_payments_bill", table_name="bill_payments")
    op.drop_table("bill_payments")
    op.drop_index("ix_bills_user_next_due", table_name="bills")
    op.drop_index("ix_bills_user_status", table_name="bills")
    op.drop_table("bills")
