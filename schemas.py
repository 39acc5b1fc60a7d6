import datetime as dt
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import (
    MAX_AMOUNT_CENTS,
    BillStatus,
    BudgetPeriod,
    Frequency,
    TransactionType,
)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    color: str = Field(default="#6b7280", pattern=r"^#[0-9a-fA-F]{6}$")


class CategoryUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    type: Optional[TransactionType] = None
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9a-fA-F]{6}$")


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: TransactionType
    color: str


class TransactionIn(BaseModel):
    date: date
    amount_cents: int = Field(..., gt=0, le=MAX_AMOUNT_CENTS)
    description: str = Field(..., min_length=1, max_length=500)
    category_id: int
    is_recurring: bool = False
    recurring_frequency: Optional[Frequency] = None
    recurring_end_date: Optional[date] = None


class TransactionUpdateIn(BaseModel):
    amount_cents: Optional[int] = None
    description: Optional[str] = Field(default=None, max_length=500)
    category_id: Optional[int] = None
    is_recurring: Optional[bool] = None
    recurring_frequency: Optional[Frequency] = None
    recurring_end_date: Optional[date] = None
    # The default binds ``date`` in the class body before the annotation is read.
    date: Optional[dt.date] = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: date
    amount_cents: int
    description: str
    category_id: int
    is_recurring: bool
    recurring_frequency: Optional[Frequency] = None
    recurring_end_date: Optional[date] = None
    created_at: datetime


class BudgetIn(BaseModel):
    category_id: int
    amount_cents: int
    period: BudgetPeriod
    start_date: date
    end_date: Optional[date] = None


class BudgetUpdateIn(BaseModel):
    category_id: Optional[int] = None
    amount_cents: Optional[int] = None
    period: Optional[BudgetPeriod] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category_id: int
    amount_cents: int
    period: BudgetPeriod
    start_date: date
    end_date: Optional[date] = None


# Bill amounts, names and reminder windows are range-checked by BillService so
# that every caller gets the same invalid_argument errors.
class BillIn(BaseModel):
    name: str
    amount_cents: int
    category_id: int
    due_date: date
    frequency: Frequency
    description: Optional[str] = None
    auto_pay_enabled: bool = False
    reminder_days: Optional[int] = None


class BillUpdateIn(BaseModel):
    name: Optional[str] = None
    amount_cents: Optional[int] = None
    category_id: Optional[int] = None
    due_date: Optional[date] = None
    frequency: Optional[Frequency] = None
    description: Optional[str] = None
    auto_pay_enabled: Optional[bool] = None
    reminder_days: Optional[int] = None


class BillOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    amount_cents: int
    category_id: int
    due_date: date
    frequency: Frequency
    status: BillStatus
    description: Optional[str] = None
    auto_pay_enabled: bool
    reminder_days: int
    last_paid_date: Optional[date] = None
    next_due_date: date
    created_at: datetime


class BillPaymentIn(BaseModel):
    amount_cents: Optional[int] = None
    paid_date: Optional[date] = None
    transaction_id: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class BillPaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    bill_id: int
    transaction_id: Optional[int] = None
    amount_cents: int
    paid_date: date
    is_auto_detected: bool
    notes: Optional[str] = None
    created_at: datetime


class MarkBillPaidOut(BaseModel):
    payment: BillPaymentOut
    next_due_date: date


class GoalIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    target_amount_cents: int = Field(..., gt=0, le=MAX_AMOUNT_CENTS)
    current_amount_cents: int = Field(default=0, ge=0, le=MAX_AMOUNT_CENTS)
    target_date: Optional[date] = None
    description: Optional[str] = Field(default=None, max_length=1000)


class GoalUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    target_amount_cents: Optional[int] = None
    current_amount_cents: Optional[int] = None
    target_date: Optional[date] = None
    description: Optional[str] = Field(default=None, max_length=1000)


class GoalContributionIn(BaseModel):
    amount_cents: int = Field(..., gt=0, le=MAX_AMOUNT_CENTS)


class GoalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    target_amount_cents: int
    current_amount_cents: int
    target_date: Optional[date] = None
    description: Optional[str] = None


class NotificationPreferencesIn(BaseModel):
    warning_threshold: float
    danger_threshold: float
    enable_notifications: bool = True
    enable_email_notifications: bool = False


class NotificationPreferencesOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    warning_threshold: float
    danger_threshold: float
    enable_notifications: bool
    enable_email_notifications: bool
