from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from database import atomic
from errors import (
    AlreadyExists,
    FailedPrecondition,
    InternalError,
    InvalidArgument,
    NotFound,
)
from models import (
    MAX_AMOUNT_CENTS,
    Bill,
    BillPayment,
    BillStatus,
    Budget,
    Category,
    FinancialGoal,
    Frequency,
    NotificationPreference,
    Transaction,
    TransactionType,
)
from periods import Period
from schedule import (
    add_periods,
    advance_one_period,
    local_today,
    next_due_date,
    previous_due_date,
)
from schemas import (
    BillIn,
    BillPaymentIn,
    BillUpdateIn,
    BudgetIn,
    BudgetUpdateIn,
    CategoryIn,
    CategoryUpdateIn,
    GoalIn,
    GoalUpdateIn,
    NotificationPreferencesIn,
    TransactionIn,
    TransactionUpdateIn,
)

logger = logging.getLogger(__name__)

MAX_REMINDER_DAYS = 30


def get_current_user_id() -> int:
    return 1


def format_money(cents: int) -> str:
    return f"{cents / 100:,.2f}"


def _validate_amount(amount_cents: Optional[int], label: str = "amount") -> None:
    if amount_cents is None or amount_cents <= 0:
        raise InvalidArgument(f"{label} must be greater than 0")
    if amount_cents > MAX_AMOUNT_CENTS:
        raise InvalidArgument(f"{label} cannot exceed 999,999,999.99")


def _expense_category(
    session: Session, user_id: int, category_id: Optional[int], owner: str
) -> Category:
    if not category_id or category_id <= 0:
        raise InvalidArgument("valid category_id is required")
    category = session.get(Category, category_id)
    if not category or category.user_id != user_id:
        raise NotFound("Category not found")
    if category.type != TransactionType.expense:
        raise InvalidArgument(f"{owner} can only be created for expense categories")
    return category


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    query: Optional[str] = None


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFound("Category not found")
        return category

    def _ensure_unique_name(self, name: str, exclude_id: Optional[int] = None) -> None:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id,
            func.lower(Category.name) == name.strip().lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt.limit(1)):
            raise AlreadyExists("Category with this name already exists")

    def create(self, data: CategoryIn) -> Category:
        self._ensure_unique_name(data.name)
        category = Category(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type,
            color=data.color,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryUpdateIn) -> Category:
        fields = data.model_dump(exclude_unset=True)
        if not fields:
            raise InvalidArgument("no fields to update")
        for key, value in fields.items():
            if value is None:
                raise InvalidArgument(f"{key} cannot be null")

        category = self.get(category_id)
        if "name" in fields:
            name = fields["name"].strip()
            if not name:
                raise InvalidArgument("name cannot be empty")
            self._ensure_unique_name(name, exclude_id=category.id)
            category.name = name
        if "type" in fields and fields["type"] != category.type:
            # Budgets and bills only ever point at expense categories.
            for model, label in ((Budget, "budgets"), (Bill, "bills")):
                in_use = self.session.scalar(
                    select(func.count(model.id)).where(model.category_id == category.id)
                )
                if in_use:
                    raise FailedPrecondition(
                        f"cannot change the type of a category used by {label}"
                    )
            category.type = fields["type"]
        if "color" in fields:
            category.color = fields["color"]
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        for model, label in (
            (Transaction, "transactions"),
            (Budget, "budgets"),
            (Bill, "bills"),
        ):
            count = self.session.scalar(
                select(func.count(model.id)).where(
                    model.user_id == self.user_id, model.category_id == category.id
                )
            )
            if count:
                raise FailedPrecondition(
                    f"cannot delete category with existing {label}"
                )
        self.session.delete(category)
        self.session.commit()


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _category(self, category_id: Optional[int]) -> Category:
        category = self.session.get(Category, category_id) if category_id else None
        if not category or category.user_id != self.user_id:
            raise NotFound("Category not found")
        return category

    @staticmethod
    def _clean_description(description: Optional[str]) -> str:
        description = (description or "").strip()
        if not description:
            raise InvalidArgument("description is required")
        return description

    @staticmethod
    def _recurring_fields(
        is_recurring: bool,
        frequency: Optional[Frequency],
        end_date: Optional[date],
        start: date,
    ) -> tuple[Optional[Frequency], Optional[date]]:
        if not is_recurring:
            return None, None
        if frequency is None:
            raise InvalidArgument("recurring transactions need a frequency")
        if end_date and end_date <= start:
            raise InvalidArgument("recurring_end_date must be after date")
        return frequency, end_date

    def create(self, data: TransactionIn) -> Transaction:
        _validate_amount(data.amount_cents)
        category = self._category(data.category_id)
        description = self._clean_description(data.description)
        frequency, end_date = self._recurring_fields(
            data.is_recurring, data.recurring_frequency, data.recurring_end_date, data.date
        )

        txn = Transaction(
            user_id=self.user_id,
            date=data.date,
            amount_cents=data.amount_cents,
            description=description,
            category_id=category.id,
            is_recurring=data.is_recurring,
            recurring_frequency=frequency,
            recurring_end_date=end_date,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def update(self, transaction_id: int, data: TransactionUpdateIn) -> Transaction:
        """Partial update; ``recurring_end_date=None`` reopens an ended series."""
        fields = data.model_dump(exclude_unset=True)
        if not fields:
            raise InvalidArgument("no fields to update")
        for key, value in fields.items():
            if value is None and key not in ("recurring_frequency", "recurring_end_date"):
                raise InvalidArgument(f"{key} cannot be null")

        txn = self.get(transaction_id)
        if "amount_cents" in fields:
            _validate_amount(fields["amount_cents"])
        if "category_id" in fields:
            self._category(fields["category_id"])
        description = (
            self._clean_description(fields["description"])
            if "description" in fields
            else txn.description
        )
        txn_date = fields.get("date", txn.date)
        is_recurring = fields.get("is_recurring", txn.is_recurring)
        frequency, end_date = self._recurring_fields(
            is_recurring,
            fields.get("recurring_frequency", txn.recurring_frequency),
            fields.get("recurring_end_date", txn.recurring_end_date),
            txn_date,
        )

        txn.amount_cents = fields.get("amount_cents", txn.amount_cents)
        txn.category_id = fields.get("category_id", txn.category_id)
        txn.description = description
        txn.date = txn_date
        txn.is_recurring = is_recurring
        txn.recurring_frequency = frequency
        txn.recurring_end_date = end_date
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise NotFound("Transaction not found")
        return txn

    def list(
        self,
        period: Period,
        filters: Optional[TransactionFilters] = None,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        if filters.category_id:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.type:
            stmt = stmt.join(Category, Transaction.category_id == Category.id).where(
                Category.type == filters.type
            )
        if filters.query:
            stmt = stmt.where(Transaction.description.ilike(f"%{filters.query}%"))
        return self.session.scalars(stmt).unique().all()

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        # Payment history outlives the ledger row it pointed at.
        self.session.execute(
            update(BillPayment)
            .where(BillPayment.transaction_id == txn.id)
            .values(transaction_id=None)
        )
        self.session.delete(txn)
        self.session.commit()


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.start_date.desc(), Budget.id.desc())
        )
        return self.session.scalars(stmt).all()

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFound("Budget not found")
        return budget

    def _check_window(
        self,
        category_id: int,
        start_date: date,
        end_date: Optional[date],
        exclude_id: Optional[int] = None,
    ) -> None:
        if end_date and end_date <= start_date:
            raise InvalidArgument("end_date must be after start_date")

        # Windows are half-open [start_date, end_date); NULL end is open-ended.
        overlap_stmt = select(Budget.id).where(
            Budget.user_id == self.user_id,
            Budget.category_id == category_id,
            Budget.end_date.is_(None) | (Budget.end_date > start_date),
        )
        if end_date:
            overlap_stmt = overlap_stmt.where(Budget.start_date < end_date)
        if exclude_id is not None:
            overlap_stmt = overlap_stmt.where(Budget.id != exclude_id)
        if self.session.scalar(overlap_stmt.limit(1)):
            raise AlreadyExists(
                "a budget already exists for this category in the specified date range"
            )

    def create(self, data: BudgetIn) -> Budget:
        _validate_amount(data.amount_cents)
        _expense_category(self.session, self.user_id, data.category_id, "budgets")
        self._check_window(data.category_id, data.start_date, data.end_date)

        budget = Budget(
            user_id=self.user_id,
            category_id=data.category_id,
            amount_cents=data.amount_cents,
            period=data.period,
            start_date=data.start_date,
            end_date=data.end_date,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def update(self, budget_id: int, data: BudgetUpdateIn) -> Budget:
        fields = data.model_dump(exclude_unset=True)
        if not fields:
            raise InvalidArgument("no fields to update")
        for key, value in fields.items():
            if value is None and key != "end_date":
                raise InvalidArgument(f"{key} cannot be null")

        budget = self.get(budget_id)
        if "amount_cents" in fields:
            _validate_amount(fields["amount_cents"])
        if "category_id" in fields:
            _expense_category(
                self.session, self.user_id, fields["category_id"], "budgets"
            )
        category_id = fields.get("category_id", budget.category_id)
        start_date = fields.get("start_date", budget.start_date)
        end_date = fields.get("end_date", budget.end_date)
        self._check_window(category_id, start_date, end_date, exclude_id=budget.id)

        budget.category_id = category_id
        budget.amount_cents = fields.get("amount_cents", budget.amount_cents)
        budget.period = fields.get("period", budget.period)
        budget.start_date = start_date
        budget.end_date = end_date
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def spent_cents(self, budget: Budget) -> int:
        stmt = (
            select(func.coalesce(func.sum(Transaction.amount_cents), 0))
            .join(Category, Transaction.category_id == Category.id)
            .where(
                Transaction.user_id == budget.user_id,
                Transaction.category_id == budget.category_id,
                Category.type == TransactionType.expense,
                Transaction.date >= budget.start_date,
            )
        )
        if budget.end_date:
            stmt = stmt.where(Transaction.date < budget.end_date)
        return int(self.session.scalar(stmt) or 0)


class NotificationPreferenceService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self) -> NotificationPreference:
        prefs = self.session.scalar(
            select(NotificationPreference).where(
                NotificationPreference.user_id == self.user_id
            )
        )
        if prefs:
            return prefs
        settings = get_settings()
        return NotificationPreference(
            user_id=self.user_id,
            warning_threshold=settings.warning_threshold,
            danger_threshold=settings.danger_threshold,
            enable_notifications=True,
            enable_email_notifications=False,
        )

    def update(self, data: NotificationPreferencesIn) -> NotificationPreference:
        for label, value in (
            ("warning_threshold", data.warning_threshold),
            ("danger_threshold", data.danger_threshold),
        ):
            if value < 0 or value > 100:
                raise InvalidArgument(f"{label} must be between 0 and 100")
        if data.warning_threshold >= data.danger_threshold:
            raise InvalidArgument("warning_threshold must be less than danger_threshold")

        prefs = self.get()
        prefs.warning_threshold = data.warning_threshold
        prefs.danger_threshold = data.danger_threshold
        prefs.enable_notifications = data.enable_notifications
        prefs.enable_email_notifications = data.enable_email_notifications
        if prefs.id is None:
            self.session.add(prefs)
        self.session.commit()
        self.session.refresh(prefs)
        return prefs


EXCELLENT_BELOW = 60.0
ALERT_LEVELS = ("warning", "danger", "exceeded")


def classify_utilization(
    percentage: float,
    *,
    warning_threshold: float = 80.0,
    danger_threshold: float = 90.0,
) -> str:
    if percentage >= 100:
        return "exceeded"
    if percentage >= danger_threshold:
        return "danger"
    if percentage >= warning_threshold:
        return "warning"
    if percentage >= EXCELLENT_BELOW:
        return "good"
    return "excellent"


@dataclass(frozen=True)
class BudgetUtilization:
    budget_id: int
    category_id: int
    category_name: str
    category_color: str
    period: str
    start_date: date
    end_date: Optional[date]
    budget_amount_cents: int
    spent_cents: int
    percentage: float
    level: str


@dataclass(frozen=True)
class BudgetAlert:
    budget_id: int
    category_name: str
    category_color: str
    budget_amount_cents: int
    spent_cents: int
    percentage: float
    alert_type: str
    period: str


class BudgetAlertService:
    """Stateless budget utilization check; thresholds are read on every call."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def active_budgets(self, today: date) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(
                Budget.user_id == self.user_id,
                Budget.start_date <= today,
                Budget.end_date.is_(None) | (Budget.end_date > today),
            )
            .order_by(Budget.id)
        )
        return self.session.scalars(stmt).all()

    def utilization(self, today: Optional[date] = None) -> list[BudgetUtilization]:
        today = today or local_today()
        prefs = NotificationPreferenceService(self.session, self.user_id).get()
        budgets = BudgetService(self.session, self.user_id)
        rows: list[BudgetUtilization] = []
        for budget in self.active_budgets(today):
            spent = budgets.spent_cents(budget)
            percentage = spent / budget.amount_cents * 100
            rows.append(
                BudgetUtilization(
                    budget_id=budget.id,
                    category_id=budget.category_id,
                    category_name=budget.category.name,
                    category_color=budget.category.color,
                    period=budget.period.value,
                    start_date=budget.start_date,
                    end_date=budget.end_date,
                    budget_amount_cents=budget.amount_cents,
                    spent_cents=spent,
                    percentage=percentage,
                    level=classify_utilization(
                        percentage,
                        warning_threshold=prefs.warning_threshold,
                        danger_threshold=prefs.danger_threshold,
                    ),
                )
            )
        return rows

    def alerts(self, today: Optional[date] = None) -> list[BudgetAlert]:
        prefs = NotificationPreferenceService(self.session, self.user_id).get()
        if not prefs.enable_notifications:
            return []
        return [
            BudgetAlert(
                budget_id=row.budget_id,
                category_name=row.category_name,
                category_color=row.category_color,
                budget_amount_cents=row.budget_amount_cents,
                spent_cents=row.spent_cents,
                percentage=row.percentage,
                alert_type=row.level,
                period=row.period,
            )
            for row in self.utilization(today)
            if row.level in ALERT_LEVELS
        ]

    @staticmethod
    def user_ids_with_budgets(session: Session) -> list[int]:
        return session.scalars(select(Budget.user_id).distinct()).all()


@dataclass(frozen=True)
class BillReminder:
    bill_id: int
    bill_name: str
    amount_cents: int
    category_name: str
    category_color: str
    due_date: date
    days_until_due: int
    is_overdue: bool


class BillService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, bill_id: int) -> Bill:
        bill = self.session.get(Bill, bill_id)
        if not bill or bill.user_id != self.user_id:
            raise NotFound("Bill not found")
        return bill

    def list_all(self, status: Optional[BillStatus] = None) -> list[Bill]:
        stmt = (
            select(Bill)
            .options(joinedload(Bill.category))
            .where(Bill.user_id == self.user_id)
            .order_by(Bill.next_due_date, Bill.id)
        )
        if status:
            stmt = stmt.where(Bill.status == status)
        return self.session.scalars(stmt).all()

    @staticmethod
    def _clean_name(name: Optional[str]) -> str:
        if not name or not name.strip():
            raise InvalidArgument("name is required and cannot be empty")
        if len(name) > 255:
            raise InvalidArgument("name cannot exceed 255 characters")
        return name.strip()

    @staticmethod
    def _clean_description(description: Optional[str]) -> Optional[str]:
        if description is not None and len(description) > 1000:
            raise InvalidArgument("description cannot exceed 1000 characters")
        return (description or "").strip() or None

    @staticmethod
    def _check_reminder_days(reminder_days: int) -> int:
        if reminder_days < 0 or reminder_days > MAX_REMINDER_DAYS:
            raise InvalidArgument("reminder_days must be between 0 and 30")
        return reminder_days

    @staticmethod
    def _coerce_frequency(frequency) -> Frequency:
        try:
            return Frequency(frequency)
        except ValueError as exc:
            raise InvalidArgument(
                "frequency must be daily, weekly, monthly, or yearly"
            ) from exc

    def create(self, data: BillIn, today: Optional[date] = None) -> Bill:
        today = today or local_today()
        name = self._clean_name(data.name)
        _validate_amount(data.amount_cents)
        frequency = self._coerce_frequency(data.frequency)
        reminder_days = data.reminder_days
        if reminder_days is None:
            reminder_days = get_settings().default_reminder_days
        self._check_reminder_days(reminder_days)
        description = self._clean_description(data.description)
        _expense_category(self.session, self.user_id, data.category_id, "bills")

        bill = Bill(
            user_id=self.user_id,
            name=name,
            amount_cents=data.amount_cents,
            category_id=data.category_id,
            due_date=data.due_date,
            frequency=frequency,
            status=BillStatus.pending,
            description=description,
            auto_pay_enabled=data.auto_pay_enabled,
            reminder_days=reminder_days,
            next_due_date=next_due_date(data.due_date, frequency, today),
        )
        self.session.add(bill)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise NotFound("Category not found") from exc
        self.session.refresh(bill)
        return bill

    def update(
        self, bill_id: int, data: BillUpdateIn, today: Optional[date] = None
    ) -> Bill:
        fields = data.model_dump(exclude_unset=True)
        if not fields:
            raise InvalidArgument("no fields to update")
        for key, value in fields.items():
            if value is None and key != "description":
                raise InvalidArgument(f"{key} cannot be null")

        bill = self.get(bill_id)
        if "name" in fields:
            bill.name = self._clean_name(fields["name"])
        if "amount_cents" in fields:
            _validate_amount(fields["amount_cents"])
            bill.amount_cents = fields["amount_cents"]
        if "category_id" in fields:
            _expense_category(self.session, self.user_id, fields["category_id"], "bills")
            bill.category_id = fields["category_id"]
        if "description" in fields:
            bill.description = self._clean_description(fields["description"])
        if "auto_pay_enabled" in fields:
            bill.auto_pay_enabled = fields["auto_pay_enabled"]
        if "reminder_days" in fields:
            bill.reminder_days = self._check_reminder_days(fields["reminder_days"])
        if "due_date" in fields or "frequency" in fields:
            bill.due_date = fields.get("due_date", bill.due_date)
            bill.frequency = self._coerce_frequency(
                fields.get("frequency", bill.frequency)
            )
            bill.next_due_date = next_due_date(
                bill.due_date, bill.frequency, today or local_today()
            )
        self.session.commit()
        self.session.refresh(bill)
        return bill

    def delete(self, bill_id: int) -> None:
        bill = self.get(bill_id)
        self.session.delete(bill)
        self.session.commit()

    def apply_payment(self, bill: Bill, paid_date: date) -> date:
        """Close the current cycle: one period past the current next due date."""
        next_due = advance_one_period(bill.next_due_date, bill.frequency, bill.due_date)
        bill.status = BillStatus.paid
        bill.last_paid_date = paid_date
        bill.next_due_date = next_due
        self.session.flush()
        return next_due

    def mark_paid(
        self, bill_id: int, data: BillPaymentIn, today: Optional[date] = None
    ) -> tuple[BillPayment, date]:
        bill = self.get(bill_id)
        amount_cents = (
            data.amount_cents if data.amount_cents is not None else bill.amount_cents
        )
        _validate_amount(amount_cents, "payment amount")
        paid_date = data.paid_date or today or local_today()
        if data.transaction_id is not None:
            txn = self.session.get(Transaction, data.transaction_id)
            if not txn or txn.user_id != self.user_id:
                raise NotFound("Transaction not found")

        payment = BillPayment(
            bill_id=bill.id,
            transaction_id=data.transaction_id,
            amount_cents=amount_cents,
            paid_date=paid_date,
            is_auto_detected=False,
            notes=(data.notes or "").strip() or None,
        )
        try:
            with atomic(self.session):
                self.session.add(payment)
                self.session.flush()
                next_due = self.apply_payment(bill, paid_date)
        except IntegrityError as exc:
            raise NotFound("Transaction not found") from exc
        except Exception as exc:
            logger.exception(f"mark_paid_failed: bill_id={bill_id}")
            raise InternalError("failed to mark bill as paid") from exc
        return payment, next_due

    def list_payments(
        self,
        *,
        bill_id: Optional[int] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[BillPayment], int]:
        conditions = [Bill.user_id == self.user_id]
        if bill_id:
            conditions.append(BillPayment.bill_id == bill_id)
        if start:
            conditions.append(BillPayment.paid_date >= start)
        if end:
            conditions.append(BillPayment.paid_date <= end)

        total = self.session.scalar(
            select(func.count(BillPayment.id))
            .join(Bill, BillPayment.bill_id == Bill.id)
            .where(*conditions)
        )
        stmt = (
            select(BillPayment)
            .join(Bill, BillPayment.bill_id == Bill.id)
            .options(joinedload(BillPayment.bill))
            .where(*conditions)
            .order_by(BillPayment.paid_date.desc(), BillPayment.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return self.session.scalars(stmt).all(), int(total or 0)

    # The batch operations below act on every owner's bills.

    def reopen_paid(self, reference: Optional[date] = None) -> int:
        """Return paid bills to pending once the cycle they covered has passed."""
        reference = reference or local_today()
        reopened = 0
        for bill in self.session.scalars(
            select(Bill).where(Bill.status == BillStatus.paid)
        ):
            covered = previous_due_date(bill.next_due_date, bill.frequency, bill.due_date)
            if reference > covered:
                bill.status = BillStatus.pending
                reopened += 1
        self.session.commit()
        return reopened

    def sweep_overdue(self, reference: Optional[date] = None) -> int:
        reference = reference or local_today()
        result = self.session.execute(
            update(Bill)
            .where(Bill.status == BillStatus.pending, Bill.next_due_date < reference)
            .values(status=BillStatus.overdue)
        )
        self.session.commit()
        return result.rowcount or 0

    def compute_reminders(
        self, reference: Optional[date] = None, *, all_users: bool = False
    ) -> list[BillReminder]:
        reference = reference or local_today()
        stmt = (
            select(Bill)
            .options(joinedload(Bill.category))
            .where(
                Bill.status.in_([BillStatus.pending, BillStatus.overdue]),
                Bill.next_due_date <= reference + timedelta(days=MAX_REMINDER_DAYS),
            )
            .order_by(Bill.next_due_date, Bill.id)
        )
        if not all_users:
            stmt = stmt.where(Bill.user_id == self.user_id)

        reminders: list[BillReminder] = []
        for bill in self.session.scalars(stmt):
            days_until_due = (bill.next_due_date - reference).days
            if days_until_due > bill.reminder_days:
                continue
            reminders.append(
                BillReminder(
                    bill_id=bill.id,
                    bill_name=bill.name,
                    amount_cents=bill.amount_cents,
                    category_name=bill.category.name,
                    category_color=bill.category.color,
                    due_date=bill.next_due_date,
                    days_until_due=days_until_due,
                    is_overdue=days_until_due < 0,
                )
            )
        return reminders

    def process_reminders(
        self, reference: Optional[date] = None, *, all_users: bool = False
    ) -> list[BillReminder]:
        reference = reference or local_today()
        reopened = self.reopen_paid(reference)
        overdue = self.sweep_overdue(reference)
        if reopened or overdue:
            logger.info(f"bill_status_sweep: reopened={reopened} overdue={overdue}")
        return self.compute_reminders(reference, all_users=all_users)


class GoalService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[FinancialGoal]:
        stmt = (
            select(FinancialGoal)
            .where(FinancialGoal.user_id == self.user_id)
            .order_by(FinancialGoal.target_date.is_(None), FinancialGoal.target_date)
        )
        return self.session.scalars(stmt).all()

    def get(self, goal_id: int) -> FinancialGoal:
        goal = self.session.get(FinancialGoal, goal_id)
        if not goal or goal.user_id != self.user_id:
            raise NotFound("Goal not found")
        return goal

    def create(self, data: GoalIn) -> FinancialGoal:
        name = data.name.strip()
        if not name:
            raise InvalidArgument("name is required and cannot be empty")
        goal = FinancialGoal(
            user_id=self.user_id,
            name=name,
            target_amount_cents=data.target_amount_cents,
            current_amount_cents=data.current_amount_cents,
            target_date=data.target_date,
            description=(data.description or "").strip() or None,
        )
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def contribute(self, goal_id: int, amount_cents: int) -> FinancialGoal:
        _validate_amount(amount_cents)
        goal = self.get(goal_id)
        if goal.current_amount_cents + amount_cents > MAX_AMOUNT_CENTS:
            raise InvalidArgument("goal amount cannot exceed 999,999,999.99")
        goal.current_amount_cents += amount_cents
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def update(self, goal_id: int, data: GoalUpdateIn) -> FinancialGoal:
        fields = data.model_dump(exclude_unset=True)
        if not fields:
            raise InvalidArgument("no fields to update")
        for key in ("name", "target_amount_cents", "current_amount_cents"):
            if key in fields and fields[key] is None:
                raise InvalidArgument(f"{key} cannot be null")

        goal = self.get(goal_id)
        if "name" in fields:
            name = fields["name"].strip()
            if not name:
                raise InvalidArgument("name cannot be empty")
            goal.name = name
        if "target_amount_cents" in fields:
            _validate_amount(fields["target_amount_cents"], "target amount")
            goal.target_amount_cents = fields["target_amount_cents"]
        if "current_amount_cents" in fields:
            current = fields["current_amount_cents"]
            if current < 0 or current > MAX_AMOUNT_CENTS:
                raise InvalidArgument(
                    "current amount must be between 0 and 999,999,999.99"
                )
            goal.current_amount_cents = current
        if "target_date" in fields:
            goal.target_date = fields["target_date"]
        if "description" in fields:
            goal.description = (fields["description"] or "").strip() or None
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def delete(self, goal_id: int) -> None:
        goal = self.get(goal_id)
        self.session.delete(goal)
        self.session.commit()


def performance_label(percentage: float) -> str:
    # Inclusive upper bounds: spending exactly the budget is not "over".
    if percentage <= 60:
        return "excellent"
    if percentage <= 80:
        return "good"
    if percentage <= 100:
        return "warning"
    return "over"


PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


class InsightsService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def overview(
        self, months: int = 6, today: Optional[date] = None
    ) -> dict[str, object]:
        if months < 1 or months > 60:
            raise InvalidArgument("months must be between 1 and 60")
        today = today or local_today()
        start = add_periods(today, Frequency.monthly, -months)

        trends = self.spending_trends(start, today)
        comparisons = self.category_comparisons(months, today)
        performance = self.budget_performance(today)
        return {
            "spending_trends": trends,
            "category_comparisons": comparisons,
            "budget_performance": performance,
            "recommendations": self.recommendations(comparisons, performance, today),
            "summary": self.summary(months, start, today, trends, comparisons),
        }

    def spending_trends(self, start: date, end: date) -> list[dict[str, object]]:
        month = func.strftime("%Y-%m", Transaction.date).label("month")
        stmt = (
            select(
                month,
                Category.id.label("category_id"),
                Category.name.label("category_name"),
                Category.color.label("category_color"),
                func.sum(Transaction.amount_cents).label("amount"),
                func.count(Transaction.id).label("count"),
            )
            .join(Category, Transaction.category_id == Category.id)
            .where(
                Transaction.user_id == self.user_id,
                Category.type == TransactionType.expense,
                Transaction.date.between(start, end),
            )
            .group_by(month, Category.id, Category.name, Category.color)
            .order_by(month.desc(), func.sum(Transaction.amount_cents).desc())
        )
        return [
            {
                "month": row.month,
                "category_id": row.category_id,
                "category_name": row.category_name,
                "category_color": row.category_color,
                "amount_cents": int(row.amount),
                "transaction_count": int(row.count),
                "average_transaction_cents": int(row.amount) // int(row.count),
            }
            for row in self.session.execute(stmt)
        ]

    def _expense_totals(self, start: date, end: date) -> dict[int, tuple[str, str, int]]:
        # Inclusive start, exclusive end.
        stmt = (
            select(
                Category.id,
                Category.name,
                Category.color,
                func.sum(Transaction.amount_cents).label("total"),
            )
            .join(Category, Transaction.category_id == Category.id)
            .where(
                Transaction.user_id == self.user_id,
                Category.type == TransactionType.expense,
                Transaction.date >= start,
                Transaction.date < end,
            )
            .group_by(Category.id, Category.name, Category.color)
        )
        return {
            row.id: (row.name, row.color, int(row.total or 0))
            for row in self.session.execute(stmt)
        }

    def category_comparisons(
        self, months: int, today: date
    ) -> list[dict[str, object]]:
        current_start = add_periods(today, Frequency.monthly, -(months // 2))
        previous_start = add_periods(today, Frequency.monthly, -months)
        current = self._expense_totals(current_start, today + timedelta(days=1))
        previous = self._expense_totals(previous_start, current_start)

        comparisons: list[dict[str, object]] = []
        for category_id, (name, color, amount) in current.items():
            if amount <= 0:
                continue
            previous_amount = previous.get(category_id, (name, color, 0))[2]
            change = amount - previous_amount
            change_pct = change / previous_amount * 100 if previous_amount > 0 else 0.0
            trend = "stable"
            if abs(change_pct) > 5:
                trend = "up" if change_pct > 0 else "down"
            comparisons.append(
                {
                    "category_id": category_id,
                    "category_name": name,
                    "category_color": color,
                    "current_period_cents": amount,
                    "previous_period_cents": previous_amount,
                    "change_cents": change,
                    "change_percentage": change_pct,
                    "trend": trend,
                }
            )
        comparisons.sort(key=lambda c: c["current_period_cents"], reverse=True)
        return comparisons

    def budget_performance(self, today: date) -> list[dict[str, object]]:
        rows: list[dict[str, object]] = []
        for usage in BudgetAlertService(self.session, self.user_id).utilization(today):
            days_remaining = None
            projected = None
            if usage.end_date:
                total_days = (usage.end_date - usage.start_date).days
                elapsed_days = (today - usage.start_date).days
                days_remaining = max(0, total_days - elapsed_days)
                if elapsed_days > 0:
                    projected = round(usage.spent_cents / elapsed_days * total_days)
            rows.append(
                {
                    "budget_id": usage.budget_id,
                    "category_id": usage.category_id,
                    "category_name": usage.category_name,
                    "category_color": usage.category_color,
                    "budget_amount_cents": usage.budget_amount_cents,
                    "spent_amount_cents": usage.spent_cents,
                    "remaining_amount_cents": usage.budget_amount_cents
                    - usage.spent_cents,
                    "utilization_percentage": usage.percentage,
                    "performance": performance_label(usage.percentage),
                    "days_remaining": days_remaining,
                    "projected_spending_cents": projected,
                }
            )
        return rows

    def _totals_by_type(self, start: date, end: date) -> dict[TransactionType, int]:
        stmt = (
            select(Category.type, func.sum(Transaction.amount_cents).label("total"))
            .join(Category, Transaction.category_id == Category.id)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(start, end),
            )
            .group_by(Category.type)
        )
        totals = {TransactionType.income: 0, TransactionType.expense: 0}
        for row in self.session.execute(stmt):
            totals[row.type] = int(row.total or 0)
        return totals

    def recommendations(
        self,
        comparisons: list[dict[str, object]],
        performance: list[dict[str, object]],
        today: date,
    ) -> list[dict[str, object]]:
        recs: list[dict[str, object]] = []

        for budget in performance:
            budget_amount = budget["budget_amount_cents"]
            spent = budget["spent_amount_cents"]
            projected = budget["projected_spending_cents"]
            if budget["performance"] == "over":
                recs.append(
                    {
                        "type": "budget",
                        "title": f"{budget['category_name']} Budget Exceeded",
                        "description": (
                            f"You've spent {format_money(spent)} against a budget of "
                            f"{format_money(budget_amount)}. Consider reviewing your "
                            "spending in this category."
                        ),
                        "priority": "high",
                        "actionable": True,
                        "category_id": budget["category_id"],
                        "amount_cents": spent - budget_amount,
                    }
                )
            elif (
                budget["performance"] == "warning"
                and projected is not None
                and projected > budget_amount
            ):
                recs.append(
                    {
                        "type": "budget",
                        "title": f"{budget['category_name']} Budget at Risk",
                        "description": (
                            "Based on current spending patterns, you're projected to "
                            f"exceed your budget by {format_money(projected - budget_amount)}."
                        ),
                        "priority": "medium",
                        "actionable": True,
                        "category_id": budget["category_id"],
                        "amount_cents": projected - budget_amount,
                    }
                )

        rising = sorted(
            (c for c in comparisons if c["trend"] == "up" and c["change_percentage"] > 25),
            key=lambda c: c["change_percentage"],
            reverse=True,
        )[:3]
        for category in rising:
            recs.append(
                {
                    "type": "category",
                    "title": f"{category['category_name']} Spending Increased",
                    "description": (
                        f"Your {category['category_name']} spending increased by "
                        f"{category['change_percentage']:.1f}% compared to the previous "
                        "period. Consider setting a budget for this category."
                    ),
                    "priority": "medium",
                    "actionable": True,
                    "category_id": category["category_id"],
                    "amount_cents": category["change_cents"],
                }
            )

        totals = self._totals_by_type(today - timedelta(days=30), today)
        income = totals[TransactionType.income]
        expenses = totals[TransactionType.expense]
        if income > 0:
            savings_rate = (income - expenses) / income * 100
            shortfall = round(income * 0.2 - (income - expenses))
            if savings_rate < 10:
                recs.append(
                    {
                        "type": "savings",
                        "title": "Low Savings Rate",
                        "description": (
                            f"Your current savings rate is {savings_rate:.1f}%. "
                            "Consider aiming for at least 20% of your income."
                        ),
                        "priority": "high",
                        "actionable": True,
                        "category_id": None,
                        "amount_cents": shortfall,
                    }
                )
            elif savings_rate < 20:
                recs.append(
                    {
                        "type": "savings",
                        "title": "Improve Savings Rate",
                        "description": (
                            f"Your savings rate of {savings_rate:.1f}% is good, but you "
                            "could aim for 20% or higher."
                        ),
                        "priority": "medium",
                        "actionable": True,
                        "category_id": None,
                        "amount_cents": shortfall,
                    }
                )

        for goal in GoalService(self.session, self.user_id).list_all():
            if goal.current_amount_cents >= goal.target_amount_cents:
                continue
            progress = goal.current_amount_cents / goal.target_amount_cents * 100
            if progress >= 25 or not goal.target_date:
                continue
            days_left = (goal.target_date - today).days
            if days_left <= 0:
                continue
            remaining = goal.target_amount_cents - goal.current_amount_cents
            daily = round(remaining / days_left)
            recs.append(
                {
                    "type": "goal",
                    "title": f"{goal.name} Goal Behind Schedule",
                    "description": (
                        "To reach your goal by the target date, you need to save "
                        f"{format_money(daily)} per day."
                    ),
                    "priority": "medium",
                    "actionable": True,
                    "category_id": None,
                    "amount_cents": daily,
                }
            )

        recs.sort(key=lambda r: PRIORITY_ORDER[r["priority"]])
        return recs

    def summary(
        self,
        months: int,
        start: date,
        end: date,
        trends: list[dict[str, object]],
        comparisons: list[dict[str, object]],
    ) -> dict[str, object]:
        month = func.strftime("%Y-%m", Transaction.date).label("month")
        stmt = (
            select(
                month,
                func.sum(
                    case(
                        (Category.type == TransactionType.income, Transaction.amount_cents),
                        else_=0,
                    )
                ).label("income"),
                func.sum(
                    case(
                        (Category.type == TransactionType.expense, Transaction.amount_cents),
                        else_=0,
                    )
                ).label("expenses"),
            )
            .join(Category, Transaction.category_id == Category.id)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(start, end),
            )
            .group_by(month)
        )
        monthly = self.session.execute(stmt).all()
        month_count = max(len(monthly), 1)
        avg_income = sum(int(r.income or 0) for r in monthly) / month_count
        avg_expenses = sum(int(r.expenses or 0) for r in monthly) / month_count
        savings_rate = (
            (avg_income - avg_expenses) / avg_income * 100 if avg_income > 0 else 0.0
        )

        by_category: dict[str, int] = {}
        for trend in trends:
            name = trend["category_name"]
            by_category[name] = by_category.get(name, 0) + trend["amount_cents"]
        top_category = (
            max(by_category.items(), key=lambda item: item[1])[0]
            if by_category
            else "None"
        )

        improved = sorted(
            (c for c in comparisons if c["trend"] == "down"),
            key=lambda c: c["change_percentage"],
        )
        return {
            "total_months_analyzed": months,
            "average_monthly_income_cents": round(avg_income),
            "average_monthly_expenses_cents": round(avg_expenses),
            "savings_rate": savings_rate,
            "top_spending_category": top_category,
            "most_improved_category": improved[0]["category_name"] if improved else "None",
        }


class ReportService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def summary(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        *,
        today: Optional[date] = None,
    ) -> dict[str, object]:
        """Income and expense totals for ``[start, end]``; defaults to year to date."""
        today = today or local_today()
        start = start or date(today.year, 1, 1)
        end = end or today
        if start > end:
            raise InvalidArgument("start_date must not be after end_date")

        category_stmt = (
            select(
                Category.type,
                Category.id,
                Category.name,
                Category.color,
                func.sum(Transaction.amount_cents).label("total"),
                func.count(Transaction.id).label("count"),
            )
            .join(Category, Transaction.category_id == Category.id)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(start, end),
            )
            .group_by(Category.type, Category.id, Category.name, Category.color)
            .order_by(Category.type, func.sum(Transaction.amount_cents).desc())
        )
        by_type: dict[TransactionType, list[dict[str, object]]] = {
            TransactionType.income: [],
            TransactionType.expense: [],
        }
        for row in self.session.execute(category_stmt):
            by_type[row.type].append(
                {
                    "category_id": row.id,
                    "category_name": row.name,
                    "category_color": row.color,
                    "total_cents": int(row.total or 0),
                    "transaction_count": int(row.count),
                }
            )

        month = func.strftime("%Y-%m", Transaction.date).label("month")
        monthly_stmt = (
            select(
                month,
                func.sum(
                    case(
                        (Category.type == TransactionType.income, Transaction.amount_cents),
                        else_=0,
                    )
                ).label("income"),
                func.sum(
                    case(
                        (Category.type == TransactionType.expense, Transaction.amount_cents),
                        else_=0,
                    )
                ).label("expenses"),
            )
            .join(Category, Transaction.category_id == Category.id)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(start, end),
            )
            .group_by(month)
            .order_by(month)
        )
        monthly = []
        for row in self.session.execute(monthly_stmt):
            income = int(row.income or 0)
            expenses = int(row.expenses or 0)
            monthly.append(
                {
                    "month": row.month,
                    "income_cents": income,
                    "expenses_cents": expenses,
                    "net_cents": income - expenses,
                }
            )

        total_income = sum(c["total_cents"] for c in by_type[TransactionType.income])
        total_expenses = sum(c["total_cents"] for c in by_type[TransactionType.expense])
        return {
            "start_date": start,
            "end_date": end,
            "total_income_cents": total_income,
            "total_expenses_cents": total_expenses,
            "net_income_cents": total_income - total_expenses,
            "income_by_category": by_type[TransactionType.income],
            "expenses_by_category": by_type[TransactionType.expense],
            "monthly_trends": monthly,
        }
