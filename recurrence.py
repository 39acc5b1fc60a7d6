import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import Transaction
from schedule import last_due_occurrence, local_today

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectionResult:
    processed: int
    created: int


class RecurringTransactionProjector:
    """Materializes recurring transaction templates into plain ledger rows.

    A template is a recurring transaction row; it is itself the first
    occurrence. Each run posts at most one copy per template, for the latest
    occurrence that has already fallen due, and skips it when an identical
    non-recurring row is already present.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def active_templates(self, today: date) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.is_recurring.is_(True),
                Transaction.recurring_end_date.is_(None)
                | (Transaction.recurring_end_date >= today),
            )
            .order_by(Transaction.id)
        )
        return self.session.scalars(stmt).all()

    def run(self, today: Optional[date] = None) -> ProjectionResult:
        today = today or local_today()
        templates = self.active_templates(today)
        created = 0
        for template in templates:
            template_id = template.id
            try:
                if self.project_template(template, today):
                    created += 1
            except Exception:
                self.session.rollback()
                logger.exception(f"recurring_template_failed: id={template_id}")
        return ProjectionResult(processed=len(templates), created=created)

    def project_template(self, template: Transaction, today: date) -> bool:
        next_date = last_due_occurrence(
            template.date, template.recurring_frequency, today
        )
        if next_date is None or next_date > today:
            return False
        if template.recurring_end_date and next_date > template.recurring_end_date:
            return False
        if self._already_posted(template, next_date):
            return False

        self.session.add(
            Transaction(
                user_id=template.user_id,
                date=next_date,
                amount_cents=template.amount_cents,
                description=template.description,
                category_id=template.category_id,
                is_recurring=False,
            )
        )
        self.session.commit()
        return True

    def _already_posted(self, template: Transaction, occurrence_date: date) -> bool:
        stmt = (
            select(Transaction.id)
            .where(
                Transaction.user_id == template.user_id,
                Transaction.description == template.description,
                Transaction.category_id == template.category_id,
                Transaction.amount_cents == template.amount_cents,
                Transaction.date == occurrence_date,
                Transaction.is_recurring.is_(False),
            )
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none() is not None
