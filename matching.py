import logging
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from config import get_settings
from database import atomic
from models import Bill, BillPayment, BillStatus, Transaction
from schedule import local_today
from services import BillService

logger = logging.getLogger(__name__)


class AutoPaymentMatcher:
    """Pairs pending auto-pay bills with ledger transactions.

    A bill matches a transaction of the same owner and category with the
    exact bill amount, dated inside ``[today - window, today]`` and not yet
    linked to any payment. The closest date to the bill's due date wins.
    """

    def __init__(self, session: Session, window_days: Optional[int] = None) -> None:
        self.session = session
        if window_days is None:
            window_days = get_settings().auto_match_window_days
        self.window_days = window_days

    def due_bills(self, today: date) -> list[Bill]:
        window_start = today - timedelta(days=self.window_days)
        stmt = (
            select(Bill)
            .where(
                Bill.status == BillStatus.pending,
                Bill.auto_pay_enabled.is_(True),
                Bill.next_due_date >= window_start,
                Bill.next_due_date <= today,
            )
            .order_by(Bill.next_due_date, Bill.id)
        )
        return self.session.scalars(stmt).all()

    def find_candidate(self, bill: Bill, today: date) -> Optional[Transaction]:
        window_start = today - timedelta(days=self.window_days)
        already_linked = exists().where(BillPayment.transaction_id == Transaction.id)
        stmt = select(Transaction).where(
            Transaction.user_id == bill.user_id,
            Transaction.category_id == bill.category_id,
            Transaction.amount_cents == bill.amount_cents,
            Transaction.date >= window_start,
            Transaction.date <= today,
            ~already_linked,
        )
        candidates = self.session.scalars(stmt).all()
        if not candidates:
            return None
        return min(
            candidates,
            key=lambda txn: (
                abs((txn.date - bill.next_due_date).days),
                txn.date,
                txn.id,
            ),
        )

    def match_bill(self, bill: Bill, today: date) -> bool:
        txn = self.find_candidate(bill, today)
        if txn is None:
            return False
        bills = BillService(self.session, bill.user_id)
        with atomic(self.session):
            self.session.add(
                BillPayment(
                    bill_id=bill.id,
                    transaction_id=txn.id,
                    amount_cents=txn.amount_cents,
                    paid_date=txn.date,
                    is_auto_detected=True,
                    notes="Auto-detected payment",
                )
            )
            self.session.flush()
            bills.apply_payment(bill, txn.date)
        logger.info(
            f"auto_match: bill_id={bill.id} transaction_id={txn.id} "
            f"next_due_date={bill.next_due_date}"
        )
        return True

    def run(self, today: Optional[date] = None) -> int:
        today = today or local_today()
        matched = 0
        for bill in self.due_bills(today):
            bill_id = bill.id
            try:
                if self.match_bill(bill, today):
                    matched += 1
            except Exception:
                self.session.rollback()
                logger.exception(f"auto_match_failed: bill_id={bill_id}")
        return matched
