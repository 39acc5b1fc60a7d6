from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import AlreadyExists, FailedPrecondition, InvalidArgument, NotFound
from models import BillPayment, Budget, BudgetPeriod, Frequency, TransactionType
from periods import resolve_period
from schemas import (
    BillIn,
    BillPaymentIn,
    CategoryIn,
    CategoryUpdateIn,
    GoalIn,
    GoalUpdateIn,
    TransactionIn,
    TransactionUpdateIn,
)
from services import (
    BillService,
    CategoryService,
    GoalService,
    ReportService,
    TransactionFilters,
    TransactionService,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def test_category_names_are_unique_ignoring_case():
    session = make_session()
    categories = CategoryService(session)
    categories.create(CategoryIn(name="Rent", type=TransactionType.expense))

    with pytest.raises(AlreadyExists):
        categories.create(CategoryIn(name="rent ", type=TransactionType.expense))


def test_category_in_use_cannot_be_deleted():
    session = make_session()
    categories = CategoryService(session)
    rent = categories.create(CategoryIn(name="Rent", type=TransactionType.expense))
    spare = categories.create(CategoryIn(name="Spare", type=TransactionType.expense))
    TransactionService(session).create(
        TransactionIn(
            date=date(2024, 4, 1),
            amount_cents=120_000,
            description="April rent",
            category_id=rent.id,
        )
    )

    with pytest.raises(FailedPrecondition):
        categories.delete(rent.id)
    categories.delete(spare.id)
    assert [c.name for c in categories.list_all()] == ["Rent"]


def test_recurring_transaction_validation():
    session = make_session()
    category = CategoryService(session).create(
        CategoryIn(name="Gym", type=TransactionType.expense)
    )
    txns = TransactionService(session)
    base = dict(
        date=date(2024, 4, 1),
        amount_cents=3_000,
        description="Membership",
        category_id=category.id,
        is_recurring=True,
    )

    with pytest.raises(InvalidArgument):
        txns.create(TransactionIn(**base))
    with pytest.raises(InvalidArgument):
        txns.create(
            TransactionIn(
                **base,
                recurring_frequency=Frequency.monthly,
                recurring_end_date=date(2024, 4, 1),
            )
        )
    with pytest.raises(NotFound):
        txns.create(TransactionIn(**{**base, "category_id": 999}))

    template = txns.create(TransactionIn(**base, recurring_frequency=Frequency.monthly))
    assert template.is_recurring is True
    assert template.recurring_frequency == Frequency.monthly


def test_list_transactions_filters_by_period_and_category():
    session = make_session()
    categories = CategoryService(session)
    food = categories.create(CategoryIn(name="Food", type=TransactionType.expense))
    pay = categories.create(CategoryIn(name="Pay", type=TransactionType.income))
    txns = TransactionService(session)
    for day, category in (
        (date(2024, 4, 2), food),
        (date(2024, 4, 20), pay),
        (date(2024, 3, 30), food),
    ):
        txns.create(
            TransactionIn(
                date=day, amount_cents=1_000, description="x", category_id=category.id
            )
        )

    period = resolve_period("this_month", None, None, today=date(2024, 4, 25))
    assert len(txns.list(period)) == 2
    only_food = txns.list(period, TransactionFilters(category_id=food.id))
    assert [t.date for t in only_food] == [date(2024, 4, 2)]
    income = txns.list(period, TransactionFilters(type=TransactionType.income))
    assert [t.date for t in income] == [date(2024, 4, 20)]


def test_deleting_transaction_unlinks_bill_payment():
    session = make_session()
    category = CategoryService(session).create(
        CategoryIn(name="Phone", type=TransactionType.expense)
    )
    txns = TransactionService(session)
    txn = txns.create(
        TransactionIn(
            date=date(2024, 4, 5),
            amount_cents=2_500,
            description="Carrier",
            category_id=category.id,
        )
    )
    bills = BillService(session)
    bill = bills.create(
        BillIn(
            name="Phone",
            amount_cents=2_500,
            category_id=category.id,
            due_date=date(2024, 4, 5),
            frequency=Frequency.monthly,
        ),
        today=date(2024, 4, 1),
    )
    payment, _ = bills.mark_paid(
        bill.id, BillPaymentIn(transaction_id=txn.id), today=date(2024, 4, 5)
    )

    txns.delete(txn.id)

    session.expire_all()
    assert session.get(BillPayment, payment.id).transaction_id is None


def test_goal_contributions():
    session = make_session()
    goals = GoalService(session)
    goal = goals.create(GoalIn(name="Emergency fund", target_amount_cents=500_000))

    goal = goals.contribute(goal.id, 25_000)
    goal = goals.contribute(goal.id, 5_000)

    assert goal.current_amount_cents == 30_000
    with pytest.raises(InvalidArgument):
        goals.contribute(goal.id, 0)
    goals.delete(goal.id)
    with pytest.raises(NotFound):
        goals.get(goal.id)


def test_category_update_rules():
    session = make_session()
    categories = CategoryService(session)
    rent = categories.create(CategoryIn(name="Rent", type=TransactionType.expense))
    categories.create(CategoryIn(name="Food", type=TransactionType.expense))

    renamed = categories.update(
        rent.id, CategoryUpdateIn(name=" Housing ", color="#112233")
    )
    assert renamed.name == "Housing"
    assert renamed.color == "#112233"
    # Keeping its own name is not a conflict.
    categories.update(rent.id, CategoryUpdateIn(name="housing"))

    with pytest.raises(AlreadyExists):
        categories.update(rent.id, CategoryUpdateIn(name="FOOD"))
    with pytest.raises(InvalidArgument):
        categories.update(rent.id, CategoryUpdateIn())

    session.add(
        Budget(
            user_id=1,
            category_id=rent.id,
            amount_cents=100_000,
            period=BudgetPeriod.monthly,
            start_date=date(2024, 4, 1),
        )
    )
    session.commit()
    with pytest.raises(FailedPrecondition):
        categories.update(rent.id, CategoryUpdateIn(type=TransactionType.income))


def test_transaction_update():
    session = make_session()
    categories = CategoryService(session)
    food = categories.create(CategoryIn(name="Food", type=TransactionType.expense))
    txns = TransactionService(session)
    txn = txns.create(
        TransactionIn(
            date=date(2024, 4, 2),
            amount_cents=1_000,
            description="Lunch",
            category_id=food.id,
        )
    )

    txn = txns.update(
        txn.id,
        TransactionUpdateIn(amount_cents=1_250, date=date(2024, 4, 3)),
    )
    assert txn.amount_cents == 1_250
    assert txn.date == date(2024, 4, 3)
    assert txn.description == "Lunch"

    with pytest.raises(InvalidArgument):
        txns.update(txn.id, TransactionUpdateIn())
    with pytest.raises(InvalidArgument):
        txns.update(txn.id, TransactionUpdateIn(amount_cents=0))
    with pytest.raises(InvalidArgument):
        txns.update(txn.id, TransactionUpdateIn(description=None))
    with pytest.raises(InvalidArgument):
        txns.update(txn.id, TransactionUpdateIn(is_recurring=True))
    with pytest.raises(NotFound):
        txns.update(txn.id, TransactionUpdateIn(category_id=999))

    template = txns.update(
        txn.id,
        TransactionUpdateIn(is_recurring=True, recurring_frequency=Frequency.weekly),
    )
    assert template.recurring_frequency == Frequency.weekly
    plain = txns.update(txn.id, TransactionUpdateIn(is_recurring=False))
    assert plain.recurring_frequency is None


def test_goal_update():
    session = make_session()
    goals = GoalService(session)
    goal = goals.create(GoalIn(name="Car", target_amount_cents=1_000_000))

    goal = goals.update(
        goal.id,
        GoalUpdateIn(
            name="New car",
            current_amount_cents=50_000,
            target_date=date(2025, 1, 1),
        ),
    )
    assert goal.name == "New car"
    assert goal.current_amount_cents == 50_000
    assert goal.target_date == date(2025, 1, 1)

    with pytest.raises(InvalidArgument):
        goals.update(goal.id, GoalUpdateIn(target_amount_cents=0))
    with pytest.raises(InvalidArgument):
        goals.update(goal.id, GoalUpdateIn(current_amount_cents=-1))
    with pytest.raises(InvalidArgument):
        goals.update(goal.id, GoalUpdateIn(name=None))
    with pytest.raises(NotFound):
        goals.update(999, GoalUpdateIn(name="Boat"))


def test_report_summary():
    session = make_session()
    categories = CategoryService(session)
    food = categories.create(CategoryIn(name="Food", type=TransactionType.expense))
    rent = categories.create(CategoryIn(name="Rent", type=TransactionType.expense))
    pay = categories.create(CategoryIn(name="Pay", type=TransactionType.income))
    txns = TransactionService(session)
    for day, category, amount in (
        (date(2024, 1, 5), pay, 300_000),
        (date(2024, 1, 6), rent, 120_000),
        (date(2024, 1, 20), food, 15_000),
        (date(2024, 2, 5), pay, 300_000),
        (date(2024, 2, 6), rent, 120_000),
        (date(2023, 12, 30), food, 9_999),
    ):
        txns.create(
            TransactionIn(
                date=day, amount_cents=amount, description="x", category_id=category.id
            )
        )

    report = ReportService(session).summary(today=date(2024, 2, 10))

    assert report["start_date"] == date(2024, 1, 1)
    assert report["total_income_cents"] == 600_000
    assert report["total_expenses_cents"] == 255_000
    assert report["net_income_cents"] == 345_000
    assert [c["category_name"] for c in report["expenses_by_category"]] == [
        "Rent",
        "Food",
    ]
    assert report["expenses_by_category"][0]["transaction_count"] == 2
    assert [(m["month"], m["net_cents"]) for m in report["monthly_trends"]] == [
        ("2024-01", 165_000),
        ("2024-02", 180_000),
    ]

    with pytest.raises(InvalidArgument):
        ReportService(session).summary(date(2024, 3, 1), date(2024, 2, 1))
