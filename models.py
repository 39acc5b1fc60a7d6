from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base

# 999,999,999.99
MAX_AMOUNT_CENTS = 99_999_999_999


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class Frequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class BudgetPeriod(str, Enum):
    monthly = "monthly"
    yearly = "yearly"


class BillStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    overdue = "overdue"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#6b7280")

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )
    budgets: Mapped[list["Budget"]] = relationship("Budget", back_populates="category")
    bills: Mapped[list["Bill"]] = relationship("Bill", back_populates="category")

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_category_user_name"),
        Index("ix_categories_user_type", "user_id", "type"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recurring_frequency: Mapped[Optional[Frequency]] = mapped_column(SAEnum(Frequency))
    recurring_end_date: Mapped[Optional[date]] = mapped_column(Date)

    category: Mapped["Category"] = relationship(
        "Category", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_category_date", "user_id", "category_id", "date"),
        Index("ix_transactions_recurring", "is_recurring", "recurring_end_date"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "NOT is_recurring OR recurring_frequency IS NOT NULL",
            name="ck_transactions_recurring_frequency",
        ),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    period: Mapped[BudgetPeriod] = mapped_column(SAEnum(BudgetPeriod), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)

    category: Mapped["Category"] = relationship("Category", back_populates="budgets")

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_budget_amount_positive"),
        CheckConstraint(
            "end_date IS NULL OR end_date > start_date", name="ck_budget_window"
        ),
        Index("ix_budgets_user_category", "user_id", "category_id"),
        Index("ix_budgets_window", "start_date", "end_date"),
    )


class Bill(Base, TimestampMixin):
    __tablename__ = "bills"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    frequency: Mapped[Frequency] = mapped_column(SAEnum(Frequency), nullable=False)
    status: Mapped[BillStatus] = mapped_column(
        SAEnum(BillStatus), nullable=False, default=BillStatus.pending
    )
    description: Mapped[Optional[str]] = mapped_column(Text)
    auto_pay_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    reminder_days: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    last_paid_date: Mapped[Optional[date]] = mapped_column(Date)
    next_due_date: Mapped[date] = mapped_column(Date, nullable=False)

    category: Mapped["Category"] = relationship("Category", back_populates="bills")
    payments: Mapped[list["BillPayment"]] = relationship(
        "BillPayment",
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="BillPayment.paid_date",
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_bill_amount_positive"),
        CheckConstraint(
            "reminder_days >= 0 AND reminder_days <= 30",
            name="ck_bill_reminder_days_range",
        ),
        Index("ix_bills_user_status", "user_id", "status"),
        Index("ix_bills_user_next_due", "user_id", "next_due_date"),
    )


class BillPayment(Base):
    __tablename__ = "bill_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bill_id: Mapped[int] = mapped_column(
        ForeignKey("bills.id", ondelete="CASCADE"), nullable=False
    )
    transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id", ondelete="SET NULL")
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    paid_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_auto_detected: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    bill: Mapped["Bill"] = relationship("Bill", back_populates="payments")
    transaction: Mapped[Optional["Transaction"]] = relationship("Transaction")

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_bill_payment_amount_positive"),
        Index("ix_bill_payments_bill", "bill_id"),
        Index("ix_bill_payments_transaction", "transaction_id"),
        Index("ix_bill_payments_paid_date", "paid_date"),
    )


class FinancialGoal(Base, TimestampMixin):
    __tablename__ = "financial_goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    target_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    current_amount_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    target_date: Mapped[Optional[date]] = mapped_column(Date)
    description: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("target_amount_cents > 0", name="ck_goal_target_positive"),
        CheckConstraint("current_amount_cents >= 0", name="ck_goal_current_positive"),
        Index("ix_goals_user_target_date", "user_id", "target_date"),
    )


class NotificationPreference(Base, TimestampMixin):
    __tablename__ = "notification_preferences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    warning_threshold: Mapped[float] = mapped_column(Float, nullable=False)
    danger_threshold: Mapped[float] = mapped_column(Float, nullable=False)
    enable_notifications: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    enable_email_notifications: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_notification_preferences_user"),
    )
