import logging
from typing import Iterable

from services import BillReminder, BudgetAlert, format_money

logger = logging.getLogger(__name__)


class LoggingNotificationSink:
    """Delivers reminders and alerts produced by scheduled jobs to the log."""

    def bill_reminders(self, reminders: Iterable[BillReminder]) -> int:
        count = 0
        for reminder in reminders:
            if reminder.is_overdue:
                when = f"overdue by {-reminder.days_until_due} day(s)"
            elif reminder.days_until_due == 0:
                when = "due today"
            else:
                when = f"due in {reminder.days_until_due} day(s)"
            logger.info(
                f"bill_reminder: bill_id={reminder.bill_id} name={reminder.bill_name!r} "
                f"amount={format_money(reminder.amount_cents)} "
                f"due_date={reminder.due_date} {when}"
            )
            count += 1
        return count

    def budget_alerts(self, user_id: int, alerts: Iterable[BudgetAlert]) -> int:
        count = 0
        for alert in alerts:
            logger.warning(
                f"budget_alert: user_id={user_id} budget_id={alert.budget_id} "
                f"category={alert.category_name!r} level={alert.alert_type} "
                f"spent={format_money(alert.spent_cents)} "
                f"budget={format_money(alert.budget_amount_cents)} "
                f"utilization={alert.percentage:.1f}%"
            )
            count += 1
        return count
