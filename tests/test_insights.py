from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import InvalidArgument
from models import (
    Budget,
    BudgetPeriod,
    Category,
    FinancialGoal,
    Transaction,
    TransactionType,
)
from services import InsightsService, performance_label


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _seed(session):
    groceries = Category(user_id=1, name="Groceries", type=TransactionType.expense)
    dining = Category(user_id=1, name="Dining", type=TransactionType.expense)
    salary = Category(user_id=1, name="Salary", type=TransactionType.income)
    session.add_all([groceries, dining, salary])
    session.flush()
    for day, category, amount in (
        (date(2024, 1, 10), groceries, 10_000),
        (date(2024, 5, 10), groceries, 20_000),
        (date(2024, 6, 5), dining, 95_000),
        (date(2024, 6, 1), salary, 100_000),
    ):
        session.add(
            Transaction(
                user_id=1,
                date=day,
                amount_cents=amount,
                description=category.name,
                category_id=category.id,
            )
        )
    session.add(
        FinancialGoal(
            user_id=1,
            name="Vacation",
            target_amount_cents=100_000,
            current_amount_cents=10_000,
            target_date=date(2024, 7, 15),
        )
    )
    session.commit()
    return groceries


def test_overview_sections():
    session = make_session()
    groceries = _seed(session)

    insights = InsightsService(session).overview(6, today=date(2024, 6, 15))

    may = [
        t
        for t in insights["spending_trends"]
        if t["month"] == "2024-05" and t["category_id"] == groceries.id
    ]
    assert may[0]["amount_cents"] == 20_000
    assert may[0]["transaction_count"] == 1

    comparison = next(
        c
        for c in insights["category_comparisons"]
        if c["category_id"] == groceries.id
    )
    assert comparison["previous_period_cents"] == 10_000
    assert comparison["change_percentage"] == pytest.approx(100.0)
    assert comparison["trend"] == "up"

    summary = insights["summary"]
    assert summary["total_months_analyzed"] == 6
    assert summary["top_spending_category"] == "Dining"
    assert summary["average_monthly_income_cents"] == 33_333


def test_recommendations_sorted_by_priority():
    session = make_session()
    _seed(session)

    recs = InsightsService(session).overview(6, today=date(2024, 6, 15))[
        "recommendations"
    ]

    assert recs[0]["type"] == "savings"
    assert recs[0]["priority"] == "high"
    types = [r["type"] for r in recs]
    assert "category" in types
    goal = next(r for r in recs if r["type"] == "goal")
    assert goal["amount_cents"] == 3_000


def test_months_must_be_in_range():
    session = make_session()
    with pytest.raises(InvalidArgument):
        InsightsService(session).overview(0)
    with pytest.raises(InvalidArgument):
        InsightsService(session).overview(61)


@pytest.mark.parametrize(
    "percentage,label",
    [
        (0.0, "excellent"),
        (60.0, "excellent"),
        (60.01, "good"),
        (80.0, "good"),
        (80.01, "warning"),
        (100.0, "warning"),
        (100.01, "over"),
    ],
)
def test_performance_label_boundaries(percentage, label):
    assert performance_label(percentage) == label


def test_budget_spent_exactly_is_not_reported_as_exceeded():
    session = make_session()
    rent = Category(user_id=1, name="Rent", type=TransactionType.expense)
    session.add(rent)
    session.flush()
    session.add(
        Budget(
            user_id=1,
            category_id=rent.id,
            amount_cents=10_000,
            period=BudgetPeriod.monthly,
            start_date=date(2024, 6, 1),
            end_date=date(2024, 7, 1),
        )
    )
    session.add(
        Transaction(
            user_id=1,
            date=date(2024, 6, 1),
            amount_cents=10_000,
            description="June rent",
            category_id=rent.id,
        )
    )
    session.commit()

    insights = InsightsService(session).overview(6, today=date(2024, 6, 15))

    [performance] = insights["budget_performance"]
    assert performance["utilization_percentage"] == pytest.approx(100.0)
    assert performance["performance"] == "warning"
    titles = [r["title"] for r in insights["recommendations"]]
    assert "Rent Budget Exceeded" not in titles
