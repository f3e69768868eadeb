import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

from models import DEFAULT_CATEGORY, User, cents_to_amount
from periods import WEEK_DAYS
from stores import ExpenseStore

logger = logging.getLogger(__name__)

TOP_CATEGORIES_LIMIT = 5


@dataclass
class DailySummary:
    day: date
    total_cents: int = 0
    expense_count: int = 0
    category_cents: dict[str, int] = field(default_factory=dict)
    week_total_cents: int = 0

    @property
    def daily_average(self) -> float:
        return cents_to_amount(self.week_total_cents) / WEEK_DAYS

    @property
    def top_categories(self) -> list[tuple[str, float]]:
        ranked = sorted(self.category_cents.items(), key=lambda item: item[1], reverse=True)
        return [(name, cents_to_amount(cents)) for name, cents in ranked[:TOP_CATEGORIES_LIMIT]]

    def to_dict(self) -> dict[str, Any]:
        total = cents_to_amount(self.total_cents)
        return {
            "date": self.day.isoformat(),
            "total_amount": total,
            "expense_count": self.expense_count,
            "top_categories": [
                {"category": name, "total": amount} for name, amount in self.top_categories
            ],
            "week_total": cents_to_amount(self.week_total_cents),
            "daily_average": self.daily_average,
            "comparison_to_average": total - self.daily_average,
        }


def build_daily_summary(expenses: ExpenseStore, owner: int, day: date) -> DailySummary:
    """Totals for ``day`` plus the trailing seven-day total ending on it."""
    week = expenses.range_query(owner, day - timedelta(days=WEEK_DAYS - 1), day)
    summary = DailySummary(day=day)
    for expense in week:
        summary.week_total_cents += expense.amount_cents
        if expense.date != day:
            continue
        summary.total_cents += expense.amount_cents
        summary.expense_count += 1
        name = expense.category or DEFAULT_CATEGORY
        summary.category_cents[name] = summary.category_cents.get(name, 0) + expense.amount_cents
    return summary


class Notifier:
    """Delivers summaries to users. This implementation writes them to the log."""

    def deliver(self, user: User, subject: str, body: dict[str, Any]) -> bool:
        logger.info(
            f"notification: owner={user.id} email={user.email} subject={subject!r} "
            f"fields={sorted(body)}"
        )
        return True

    def send_daily_summary(self, user: User, summary: DailySummary) -> bool:
        return self._send(user, f"Daily Expense Summary - {summary.day.isoformat()}", summary.to_dict())

    def send_weekly_report(self, user: User, analysis: dict[str, Any]) -> bool:
        return self._send(
            user, f"Weekly Spending Report - {analysis['week_start_date']}", analysis
        )

    def _send(self, user: User, subject: str, body: dict[str, Any]) -> bool:
        try:
            return self.deliver(user, subject, body)
        except Exception:
            # Delivery is fire-and-forget; a failed send never fails the job.
            logger.exception(f"notification_failed: owner={user.id} subject={subject!r}")
            return False
