"""Weekly spend aggregation.

``build_weekly_summary`` is a pure function over a list of expenses and a
week window; ``AnalysisAggregator`` wires it to the stores and owns the
(owner, week) upsert.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Optional, Sequence

from errors import NotAuthorizedError, NotFoundError
from models import DEFAULT_CATEGORY, Expense, WeeklyAnalysis, cents_to_amount
from periods import WEEK_DAYS, DayLike, WeekWindow, resolve_week
from stores import AnalysisStore, ExpenseStore

logger = logging.getLogger(__name__)

TOP_EXPENSES_LIMIT = 5
MAX_SUGGESTIONS = 7


@dataclass
class WeeklySummary:
    window: WeekWindow
    total_cents: int = 0
    total_expenses: int = 0
    average_daily_spend: float = 0.0
    category_breakdown: list[dict[str, Any]] = field(default_factory=list)
    daily_totals: list[dict[str, Any]] = field(default_factory=list)
    top_expenses: list[dict[str, Any]] = field(default_factory=list)
    insights: dict[str, Any] = field(default_factory=dict)

    @property
    def total_amount(self) -> float:
        return cents_to_amount(self.total_cents)

    @property
    def is_empty(self) -> bool:
        return self.total_expenses == 0

    def stored_fields(self) -> dict[str, Any]:
        return {
            "week_end_date": self.window.end,
            "total_amount_cents": self.total_cents,
            "total_expenses": self.total_expenses,
            "average_daily_spend": self.average_daily_spend,
            "category_breakdown": self.category_breakdown,
            "daily_totals": self.daily_totals,
            "top_expenses": self.top_expenses,
            "insights": self.insights,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": None,
            "week_start_date": self.window.start.isoformat(),
            "week_end_date": self.window.end.isoformat(),
            "total_amount": self.total_amount,
            "total_expenses": self.total_expenses,
            "average_daily_spend": self.average_daily_spend,
            "category_breakdown": self.category_breakdown,
            "daily_totals": self.daily_totals,
            "top_expenses": self.top_expenses,
            "insights": self.insights,
            "ai_suggestions": None,
            "updated_at": None,
        }


def _zero_days(window: WeekWindow) -> list[dict[str, Any]]:
    return [{"date": day.isoformat(), "total": 0.0, "count": 0} for day in window.days()]


def empty_insights() -> dict[str, Any]:
    return {
        "highest_spending_day": None,
        "lowest_spending_day": None,
        "most_frequent_category": None,
        "average_expense_amount": 0.0,
    }


def build_weekly_summary(expenses: Sequence[Expense], window: WeekWindow) -> WeeklySummary:
    in_window = [expense for expense in expenses if window.contains(expense.date)]
    if not in_window:
        return WeeklySummary(
            window=window, daily_totals=_zero_days(window), insights=empty_insights()
        )

    total_cents = sum(expense.amount_cents for expense in in_window)
    count = len(in_window)
    total_amount = cents_to_amount(total_cents)

    by_category: dict[str, dict[str, int]] = {}
    for expense in in_window:
        name = expense.category or DEFAULT_CATEGORY
        bucket = by_category.setdefault(name, {"cents": 0, "count": 0})
        bucket["cents"] += expense.amount_cents
        bucket["count"] += 1
    ranked = sorted(by_category.items(), key=lambda item: item[1]["cents"], reverse=True)
    category_breakdown = [
        {
            "category": name,
            "total": cents_to_amount(bucket["cents"]),
            "count": bucket["count"],
            "percentage": round(bucket["cents"] / total_cents * 100, 2),
        }
        for name, bucket in ranked
    ]

    daily: dict[date, dict[str, int]] = {
        day: {"cents": 0, "count": 0} for day in window.days()
    }
    for expense in in_window:
        daily[expense.date]["cents"] += expense.amount_cents
        daily[expense.date]["count"] += 1
    daily_totals = [
        {
            "date": day.isoformat(),
            "total": cents_to_amount(bucket["cents"]),
            "count": bucket["count"],
        }
        for day, bucket in daily.items()
    ]

    top = sorted(in_window, key=lambda expense: expense.amount_cents, reverse=True)
    top_expenses = [
        {
            "id": expense.id,
            "amount": expense.amount,
            "description": expense.description,
            "category": expense.category or DEFAULT_CATEGORY,
            "date": expense.date.isoformat(),
        }
        for expense in top[:TOP_EXPENSES_LIMIT]
    ]

    spending_days = [
        (day, bucket["cents"]) for day, bucket in daily.items() if bucket["cents"] > 0
    ]
    highest = max(spending_days, key=lambda item: item[1])
    lowest = min(spending_days, key=lambda item: item[1])
    leader = category_breakdown[0]
    insights = {
        "highest_spending_day": {
            "date": highest[0].isoformat(),
            "amount": cents_to_amount(highest[1]),
        },
        "lowest_spending_day": {
            "date": lowest[0].isoformat(),
            "amount": cents_to_amount(lowest[1]),
        },
        "most_frequent_category": {
            "category": leader["category"],
            "count": leader["count"],
        },
        "average_expense_amount": total_amount / count if count else 0.0,
    }

    return WeeklySummary(
        window=window,
        total_cents=total_cents,
        total_expenses=count,
        average_daily_spend=total_amount / WEEK_DAYS,
        category_breakdown=category_breakdown,
        daily_totals=daily_totals,
        top_expenses=top_expenses,
        insights=insights,
    )


def rule_based_suggestions(payload: dict[str, Any]) -> list[str]:
    """Deterministic savings suggestions derived from an analysis payload."""
    weekly_total = float(payload.get("total_amount") or 0)
    daily_avg = float(payload.get("average_daily_spend") or weekly_total / WEEK_DAYS)
    expense_count = int(payload.get("total_expenses") or 0)
    breakdown = payload.get("category_breakdown") or []

    suggestions: list[str] = []
    if weekly_total > 8000:
        suggestions.append(
            f"Weekly spending of {weekly_total:.2f} is high. Aim to cut 20% "
            f"({weekly_total * 0.2:.2f}) next week."
        )
    elif weekly_total > 4000:
        suggestions.append(
            f"Weekly spending of {weekly_total:.2f} is moderate. Saving 15% "
            f"({weekly_total * 0.15:.2f}) is a realistic target."
        )
    elif weekly_total > 0:
        suggestions.append(
            f"Weekly spending of {weekly_total:.2f} is under control. Keep it at or "
            "below this level."
        )
    else:
        suggestions.append(
            "No spending recorded this week. Log expenses to get tailored suggestions."
        )

    if daily_avg > 1000:
        suggestions.append(
            f"Daily average is {daily_avg:.2f}. Set a daily cap of {daily_avg * 0.8:.2f}."
        )
    elif daily_avg > 500:
        suggestions.append(
            f"Daily average is {daily_avg:.2f}. A cap of {daily_avg * 0.85:.2f} would "
            "still leave room for essentials."
        )

    if expense_count > 10:
        suggestions.append(
            f"You made {expense_count} purchases. Consolidating to "
            f"{max(7, expense_count - 3)} reduces impulse buys."
        )
    elif expense_count > 5:
        suggestions.append(
            f"{expense_count} purchases this week. Planning ahead could cut one trip."
        )

    if breakdown:
        leader = breakdown[0]
        suggestions.append(
            f'Top category "{leader["category"]}" accounts for {leader["total"]:.2f} '
            f'({leader["percentage"]:.1f}%). Target a 20% reduction '
            f'({leader["total"] * 0.2:.2f}).'
        )
        if len(breakdown) > 1 and breakdown[1]["total"] > 500:
            runner_up = breakdown[1]
            suggestions.append(
                f'Second category "{runner_up["category"]}" at '
                f'{runner_up["total"]:.2f} is worth reviewing for discounts.'
            )

    if weekly_total > 0:
        suggestions.append(
            f"Budget {weekly_total * 0.9:.2f} for next week and track every expense."
        )
    return suggestions[:MAX_SUGGESTIONS]


class AnalysisAggregator:
    def __init__(self, expenses: ExpenseStore, analyses: AnalysisStore) -> None:
        self.expenses = expenses
        self.analyses = analyses

    @staticmethod
    def _require_owner(owner: Optional[int]) -> int:
        if owner is None:
            raise NotAuthorizedError("Owner could not be resolved from the session")
        return owner

    def summarize(self, owner: Optional[int], week_start: DayLike) -> WeeklySummary:
        owner = self._require_owner(owner)
        window = resolve_week(week_start)
        expenses = self.expenses.range_query(owner, window.start, window.end)
        return build_weekly_summary(expenses, window)

    def compute(self, owner: Optional[int], week_start: DayLike) -> dict[str, Any]:
        """Recompute the week and upsert it keyed by (owner, week start).

        An empty week is only persisted when a row for the key already exists,
        so stale totals never survive a recompute.
        """
        owner = self._require_owner(owner)
        summary = self.summarize(owner, week_start)
        window = summary.window
        if summary.is_empty and self.analyses.find_by_week(owner, window.start) is None:
            logger.info(
                f"weekly_analysis: owner={owner} week={window.start} expenses=0 persisted=false"
            )
            return summary.to_dict()

        analysis = self.analyses.upsert(owner, window.start, summary.stored_fields())
        logger.info(
            f"weekly_analysis: owner={owner} week={window.start} "
            f"expenses={summary.total_expenses} total={summary.total_amount:.2f}"
        )
        return analysis.to_dict()

    def generate(self, owner: Optional[int], week_start: DayLike) -> dict[str, Any]:
        """Recompute even when a cached row exists."""
        return self.compute(owner, week_start)

    def get_or_generate(self, owner: Optional[int], week_start: DayLike) -> dict[str, Any]:
        owner = self._require_owner(owner)
        window = resolve_week(week_start)
        cached = self.analyses.find_by_week(owner, window.start)
        if cached is not None:
            return cached.to_dict()
        return self.compute(owner, window.start)

    def recent(self, owner: Optional[int], limit: int = 10) -> list[dict[str, Any]]:
        owner = self._require_owner(owner)
        limit = min(max(limit, 1), 100)
        return [analysis.to_dict() for analysis in self.analyses.recent(owner, limit)]

    def _existing(self, owner: int, week_start: DayLike) -> WeeklyAnalysis:
        window = resolve_week(week_start)
        analysis = self.analyses.find_by_week(owner, window.start)
        if analysis is None:
            raise NotFoundError("Weekly analysis not found")
        return analysis

    def attach_suggestions(
        self,
        owner: Optional[int],
        week_start: DayLike,
        suggestions: Iterable[str],
        *,
        source: str = "rules",
        now: Optional[datetime] = None,
    ) -> dict[str, Any]:
        owner = self._require_owner(owner)
        analysis = self._existing(owner, week_start)
        payload = {
            "suggestions": list(suggestions),
            "generated_at": (now or datetime.utcnow()).isoformat(),
            "source": source,
        }
        self.analyses.set_suggestions(analysis, payload)
        return payload

    def suggest(self, owner: Optional[int], week_start: DayLike) -> dict[str, Any]:
        """Ensure the week is analysed, then store rule-based suggestions on it."""
        owner = self._require_owner(owner)
        window = resolve_week(week_start)
        payload = self.get_or_generate(owner, window.start)
        if payload["id"] is None:
            # Nothing spent and nothing stored; suggestions need a row to live on.
            summary = self.summarize(owner, window.start)
            self.analyses.upsert(owner, window.start, summary.stored_fields())
        return self.attach_suggestions(
            owner, window.start, rule_based_suggestions(payload)
        )

    def stored_suggestions(self, owner: Optional[int], week_start: DayLike) -> dict[str, Any]:
        owner = self._require_owner(owner)
        analysis = self._existing(owner, week_start)
        if not analysis.ai_suggestions or not analysis.ai_suggestions.get("suggestions"):
            raise NotFoundError("Suggestions not found for this week")
        return analysis.ai_suggestions
