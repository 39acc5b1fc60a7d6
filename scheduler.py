import logging
import threading
from datetime import date
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from config import get_settings
from database import session_scope
from matching import AutoPaymentMatcher
from notifications import LoggingNotificationSink
from recurrence import RecurringTransactionProjector
from schedule import local_today
from services import BillService, BudgetAlertService


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

# job name -> (hour, minute) in the configured timezone
JOB_TIMES = {
    "process_recurring": (6, 0),
    "budget_alerts": (8, 0),
    "bill_reminders": (9, 0),
    "auto_detect_payments": (10, 0),
}


class SchedulerManager:
    """Owns the daily jobs and the lock each job shares with manual triggers."""

    def __init__(
        self,
        session_factory: Callable = session_scope,
        sink: Optional[LoggingNotificationSink] = None,
    ) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)
        self.session_factory = session_factory
        self.sink = sink or LoggingNotificationSink()
        self._locks = {name: threading.Lock() for name in JOB_TIMES}
        self._jobs = {
            "process_recurring": self._process_recurring,
            "budget_alerts": self._budget_alerts,
            "bill_reminders": self._bill_reminders,
            "auto_detect_payments": self._auto_detect_payments,
        }

    def _process_recurring(self, session: Session, today: date) -> dict:
        result = RecurringTransactionProjector(session).run(today)
        return {"processed": result.processed, "created": result.created}

    def _budget_alerts(self, session: Session, today: date) -> dict:
        sent = 0
        for user_id in BudgetAlertService.user_ids_with_budgets(session):
            alerts = BudgetAlertService(session, user_id).alerts(today)
            sent += self.sink.budget_alerts(user_id, alerts)
        return {"alerts": sent}

    def settle_auto_payments(self, session: Session, today: date) -> int:
        """Match auto-pay debits while their bills are still pending.

        Runs ahead of the overdue sweep; the matcher ignores overdue bills.
        """
        with self._locks["auto_detect_payments"]:
            return AutoPaymentMatcher(session).run(today)

    def _bill_reminders(self, session: Session, today: date) -> dict:
        matched = self.settle_auto_payments(session, today)
        reminders = BillService(session).process_reminders(today, all_users=True)
        return {"matched": matched, "reminders": self.sink.bill_reminders(reminders)}

    def _auto_detect_payments(self, session: Session, today: date) -> dict:
        return {"matched": AutoPaymentMatcher(session).run(today)}

    def run(
        self,
        name: str,
        session: Session,
        *,
        source: str = "manual",
        today: Optional[date] = None,
    ) -> dict:
        """Run one job under its lock; manual and scheduled runs never overlap."""
        if name not in self._jobs:
            raise KeyError(f"Unknown job: {name}")
        today = today or local_today()
        with self._locks[name]:
            logger.info(f"scheduler_run: job={name} source={source} today={today}")
            result = self._jobs[name](session, today)
            logger.info(f"scheduler_run: job={name} source={source} result={result}")
            return result

    def _run_scheduled(self, name: str, source: str) -> None:
        try:
            with self.session_factory() as session:
                self.run(name, session, source=source)
        except Exception:
            logger.exception(f"scheduler_run_failed: job={name} source={source}")

    def start(self) -> None:
        self._run_scheduled("process_recurring", "startup")

        for name, (hour, minute) in JOB_TIMES.items():
            self.scheduler.add_job(
                self._run_scheduled,
                CronTrigger(hour=hour, minute=minute),
                args=[name, f"daily_{hour:02d}:{minute:02d}"],
                id=name,
                replace_existing=True,
                misfire_grace_time=3600,
                max_instances=1,
                coalesce=True,
            )

        self.scheduler.start()
        logger.info(
            "Scheduler started: "
            + ", ".join(f"{name}@{h:02d}:{m:02d}" for name, (h, m) in JOB_TIMES.items())
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
