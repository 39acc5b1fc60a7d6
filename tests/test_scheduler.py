from contextlib import contextmanager
from datetime import date

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from database import Base
from models import (
    Bill,
    BillPayment,
    BillStatus,
    Budget,
    BudgetPeriod,
    Category,
    Frequency,
    Transaction,
    TransactionType,
)
from scheduler import JOB_TIMES, SchedulerManager


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


class RecordingSink:
    def __init__(self) -> None:
        self.reminders = []
        self.alerts = []

    def bill_reminders(self, reminders):
        reminders = list(reminders)
        self.reminders.extend(reminders)
        return len(reminders)

    def budget_alerts(self, user_id, alerts):
        alerts = list(alerts)
        self.alerts.extend((user_id, alert) for alert in alerts)
        return len(alerts)


def _seed(session) -> Category:
    category = Category(user_id=1, name="Home", type=TransactionType.expense)
    session.add(category)
    session.flush()
    session.add(
        Bill(
            user_id=1,
            name="Mortgage",
            amount_cents=150_000,
            category_id=category.id,
            due_date=date(2024, 4, 1),
            frequency=Frequency.monthly,
            status=BillStatus.pending,
            reminder_days=3,
            next_due_date=date(2024, 4, 1),
        )
    )
    session.add(
        Budget(
            user_id=1,
            category_id=category.id,
            amount_cents=100_000,
            period=BudgetPeriod.monthly,
            start_date=date(2024, 4, 1),
            end_date=date(2024, 5, 1),
        )
    )
    session.add(
        Transaction(
            user_id=1,
            date=date(2024, 4, 2),
            amount_cents=95_000,
            description="Repairs",
            category_id=category.id,
            is_recurring=True,
            recurring_frequency=Frequency.daily,
        )
    )
    session.commit()
    return category


def test_jobs_report_results_and_feed_the_sink():
    session = make_session()
    _seed(session)
    sink = RecordingSink()
    manager = SchedulerManager(sink=sink)
    today = date(2024, 4, 4)

    assert manager.run("process_recurring", session, today=today) == {
        "processed": 1,
        "created": 1,
    }
    assert manager.run("bill_reminders", session, today=today) == {
        "matched": 0,
        "reminders": 1,
    }
    assert sink.reminders[0].is_overdue is True
    assert session.scalar(select(Bill.status)) == BillStatus.overdue

    result = manager.run("budget_alerts", session, today=today)
    assert result == {"alerts": 1}
    assert sink.alerts[0][1].alert_type == "exceeded"

    assert manager.run("auto_detect_payments", session, today=today) == {"matched": 0}


def test_bill_job_matches_auto_pay_before_overdue_sweep():
    session = make_session()
    category = Category(user_id=1, name="Utilities", type=TransactionType.expense)
    session.add(category)
    session.flush()
    bill = Bill(
        user_id=1,
        name="Power",
        amount_cents=8_000,
        category_id=category.id,
        due_date=date(2024, 4, 15),
        frequency=Frequency.monthly,
        status=BillStatus.pending,
        auto_pay_enabled=True,
        reminder_days=3,
        next_due_date=date(2024, 4, 15),
    )
    session.add(bill)
    session.add(
        Transaction(
            user_id=1,
            date=date(2024, 4, 15),
            amount_cents=8_000,
            description="Power debit",
            category_id=category.id,
        )
    )
    session.commit()

    manager = SchedulerManager(sink=RecordingSink())
    result = manager.run("bill_reminders", session, today=date(2024, 4, 16))

    assert result == {"matched": 1, "reminders": 0}
    session.refresh(bill)
    # Paid on 04-15, then reopened for the May cycle; never swept to overdue.
    assert bill.status == BillStatus.pending
    assert bill.next_due_date == date(2024, 5, 15)
    assert bill.last_paid_date == date(2024, 4, 15)
    assert session.scalar(select(func.count(BillPayment.id))) == 1
    assert not any(lock.locked() for lock in manager._locks.values())

def test_unknown_job_is_rejected():
    manager = SchedulerManager(sink=RecordingSink())
    with pytest.raises(KeyError):
        manager.run("cleanup", make_session())


def test_scheduled_run_uses_session_factory_and_lock():
    session = make_session()
    _seed(session)

    @contextmanager
    def factory():
        yield session

    manager = SchedulerManager(session_factory=factory, sink=RecordingSink())
    manager._run_scheduled("process_recurring", "test")

    assert session.scalar(select(func.count(Transaction.id))) >= 2
    assert set(manager._locks) == set(JOB_TIMES)
    assert not any(lock.locked() for lock in manager._locks.values())
