from datetime import date

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import Category, Frequency, Transaction, TransactionType
from recurrence import RecurringTransactionProjector
from schemas import TransactionUpdateIn
from services import TransactionService


def _setup(session: Session, **template_fields) -> Transaction:
    category = Category(
        user_id=1, name="Subscriptions", type=TransactionType.expense, color="#ffffff"
    )
    session.add(category)
    session.flush()
    fields = dict(
        user_id=1,
        date=date(2024, 1, 1),
        amount_cents=1_299,
        description="Streaming",
        category_id=category.id,
        is_recurring=True,
        recurring_frequency=Frequency.weekly,
    )
    fields.update(template_fields)
    template = Transaction(**fields)
    session.add(template)
    session.commit()
    return template


def _copies(session: Session) -> list[Transaction]:
    stmt = (
        select(Transaction)
        .where(Transaction.is_recurring.is_(False))
        .order_by(Transaction.date)
    )
    return session.scalars(stmt).all()


def test_weekly_template_materializes_latest_due_occurrence():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        _setup(session)
        result = RecurringTransactionProjector(session).run(date(2024, 1, 22))

        assert result.processed == 1
        assert result.created == 1
        copies = _copies(session)
        assert [c.date for c in copies] == [date(2024, 1, 15)]
        assert copies[0].amount_cents == 1_299
        assert copies[0].description == "Streaming"
        assert copies[0].recurring_frequency is None


def test_projection_is_idempotent_per_day():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        _setup(session)
        projector = RecurringTransactionProjector(session)
        projector.run(date(2024, 1, 22))
        second = projector.run(date(2024, 1, 22))

        assert second.processed == 1
        assert second.created == 0
        assert len(_copies(session)) == 1


def test_existing_identical_row_is_not_duplicated():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        template = _setup(session)
        session.add(
            Transaction(
                user_id=1,
                date=date(2024, 1, 15),
                amount_cents=template.amount_cents,
                description=template.description,
                category_id=template.category_id,
            )
        )
        session.commit()

        result = RecurringTransactionProjector(session).run(date(2024, 1, 22))

        assert result.created == 0
        assert len(_copies(session)) == 1


def test_template_not_yet_due_creates_nothing():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        _setup(session, date=date(2024, 2, 1), recurring_frequency=Frequency.monthly)
        projector = RecurringTransactionProjector(session)

        assert projector.run(date(2024, 1, 20)).created == 0
        assert projector.run(date(2024, 2, 20)).created == 0
        assert projector.run(date(2024, 3, 2)).created == 1
        assert [c.date for c in _copies(session)] == [date(2024, 3, 1)]


def test_ended_series_is_skipped():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        _setup(session, recurring_end_date=date(2024, 1, 10))
        result = RecurringTransactionProjector(session).run(date(2024, 1, 22))

        assert result.processed == 0
        assert result.created == 0


def test_series_runs_through_its_end_date():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        _setup(
            session,
            recurring_frequency=Frequency.monthly,
            recurring_end_date=date(2024, 3, 20),
        )
        projector = RecurringTransactionProjector(session)

        assert projector.run(date(2024, 3, 20)).created == 1
        assert [c.date for c in _copies(session)] == [date(2024, 3, 1)]


def test_ending_a_template_stops_projection():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        template = _setup(session)
        projector = RecurringTransactionProjector(session)
        assert projector.run(date(2024, 1, 15)).created == 1

        TransactionService(session).update(
            template.id, TransactionUpdateIn(recurring_end_date=date(2024, 1, 20))
        )
        result = projector.run(date(2024, 1, 29))

        assert result.processed == 0
        assert result.created == 0
        assert [c.date for c in _copies(session)] == [date(2024, 1, 8)]

        # Clearing the end date reopens the series.
        TransactionService(session).update(
            template.id, TransactionUpdateIn(recurring_end_date=None)
        )
        assert projector.run(date(2024, 1, 29)).created == 1
