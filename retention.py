"""Retention-window cleanup.

Expenses dated strictly before the cutoff (first day of the month ``months``
calendar months back) are stale. Preview and cleanup share the same query,
so a preview always describes exactly what a cleanup run would remove.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from batching import run_in_batches
from config import Settings, get_settings
from database import SessionFactory, session_scope
from errors import DependencyUnavailable
from models import Expense, cents_to_amount
from periods import EPOCH, month_key, retention_cutoff
from security import SecurityEvent, log_security_event, validate_retention_months
from stores import AnalysisStore, ExpenseStore, UserStore

logger = logging.getLogger(__name__)

BULK_DELETION_THRESHOLD = 1000


@dataclass
class CleanupPreview:
    cutoff_date: date
    retention_months: int
    total_expenses: int = 0
    total_amount_cents: int = 0
    oldest_expense: Optional[date] = None
    newest_expense_to_delete: Optional[date] = None
    monthly_breakdown: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cutoff_date": self.cutoff_date.isoformat(),
            "retention_months": self.retention_months,
            "total_expenses": self.total_expenses,
            "total_amount": cents_to_amount(self.total_amount_cents),
            "oldest_expense": self.oldest_expense.isoformat()
            if self.oldest_expense
            else None,
            "newest_expense_to_delete": self.newest_expense_to_delete.isoformat()
            if self.newest_expense_to_delete
            else None,
            "monthly_breakdown": self.monthly_breakdown,
        }


@dataclass(frozen=True)
class ItemFailure:
    item_id: int
    error: str


@dataclass
class CleanupResult:
    owner: int
    retention_months: int
    cutoff_date: date
    expenses_found: int = 0
    expenses_deleted: int = 0
    amount_deleted_cents: int = 0
    failures: list[ItemFailure] = field(default_factory=list)
    analyses_deleted: int = 0
    analyses_skipped: bool = False
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def partial_failure(self) -> bool:
        return bool(self.failures)

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "retention_months": self.retention_months,
            "cutoff_date": self.cutoff_date.isoformat(),
            "expenses": {
                "found": self.expenses_found,
                "attempted": self.expenses_found,
                "deleted": self.expenses_deleted,
                "failed": [
                    {"id": failure.item_id, "error": failure.error}
                    for failure in self.failures
                ],
            },
            "amount_deleted": cents_to_amount(self.amount_deleted_cents),
            "analyses": {
                "deleted": self.analyses_deleted,
                "skipped": self.analyses_skipped,
            },
            "partial_failure": self.partial_failure,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class GlobalCleanupResult:
    total_users: int = 0
    processed_users: int = 0
    cleaned_users: int = 0
    total_expenses_deleted: int = 0
    total_analyses_deleted: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_users": self.total_users,
            "processed_users": self.processed_users,
            "cleaned_users": self.cleaned_users,
            "total_expenses_deleted": self.total_expenses_deleted,
            "total_analyses_deleted": self.total_analyses_deleted,
            "errors": self.errors,
            "timestamp": self.timestamp.isoformat(),
        }


class RetentionEngine:
    def __init__(
        self,
        expenses: ExpenseStore,
        analyses: Optional[AnalysisStore],
        *,
        batch_size: int = 50,
        batch_pause_secs: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
        today: Optional[date] = None,
    ) -> None:
        self.expenses = expenses
        self.analyses = analyses
        self.batch_size = batch_size
        self.batch_pause_secs = batch_pause_secs
        self.sleep = sleep
        self.today = today

    @classmethod
    def for_session(
        cls,
        session: Session,
        settings: Optional[Settings] = None,
        **kwargs: Any,
    ) -> "RetentionEngine":
        settings = settings or get_settings()
        kwargs.setdefault("batch_size", settings.cleanup_batch_size)
        kwargs.setdefault("batch_pause_secs", settings.cleanup_batch_pause_secs)
        return cls(ExpenseStore(session), AnalysisStore(session), **kwargs)

    def cutoff(self, months: int) -> date:
        months = validate_retention_months(months)
        return retention_cutoff(months, self.today)

    def _stale(self, owner: int, cutoff: date) -> list[Expense]:
        return self.expenses.range_query(owner, EPOCH, cutoff - timedelta(days=1))

    def needs_cleanup(self, owner: int, months: int) -> bool:
        cutoff = self.cutoff(months)
        stale = self.expenses.exists_in_range(owner, EPOCH, cutoff - timedelta(days=1))
        logger.info(
            f"retention_check: owner={owner} cutoff={cutoff} stale={'yes' if stale else 'no'}"
        )
        return stale

    def preview(self, owner: int, months: int) -> CleanupPreview:
        cutoff = self.cutoff(months)
        stale = self._stale(owner, cutoff)
        preview = CleanupPreview(cutoff_date=cutoff, retention_months=months)
        if not stale:
            return preview

        monthly: dict[str, dict[str, Any]] = {}
        for expense in stale:
            bucket = monthly.setdefault(month_key(expense.date), {"count": 0, "cents": 0})
            bucket["count"] += 1
            bucket["cents"] += expense.amount_cents
        preview.total_expenses = len(stale)
        preview.total_amount_cents = sum(expense.amount_cents for expense in stale)
        preview.oldest_expense = min(expense.date for expense in stale)
        preview.newest_expense_to_delete = max(expense.date for expense in stale)
        preview.monthly_breakdown = {
            key: {"count": bucket["count"], "amount": cents_to_amount(bucket["cents"])}
            for key, bucket in sorted(monthly.items())
        }
        return preview

    def cleanup(self, owner: int, months: int) -> CleanupResult:
        cutoff = self.cutoff(months)
        logger.info(
            f"retention_cleanup_start: owner={owner} months={months} cutoff={cutoff}"
        )
        stale = self._stale(owner, cutoff)
        result = CleanupResult(owner=owner, retention_months=months, cutoff_date=cutoff)
        result.expenses_found = len(stale)
        if stale:
            targets = [(expense.id, expense.amount_cents) for expense in stale]
            self._delete_expenses(owner, targets, result)
        self._delete_analyses(owner, cutoff, result)

        if result.expenses_deleted > BULK_DELETION_THRESHOLD:
            log_security_event(
                SecurityEvent.bulk_deletion,
                {"owner": owner, "deleted": result.expenses_deleted},
            )
        logger.info(
            f"retention_cleanup: owner={owner} found={result.expenses_found} "
            f"deleted={result.expenses_deleted} failed={len(result.failures)} "
            f"analyses_deleted={result.analyses_deleted} "
            f"analyses_skipped={result.analyses_skipped}"
        )
        return result

    def _delete_expenses(
        self, owner: int, targets: list[tuple[int, int]], result: CleanupResult
    ) -> None:
        for offset in range(0, len(targets), self.batch_size):
            batch = targets[offset : offset + self.batch_size]
            for expense_id, amount_cents in batch:
                try:
                    deleted = self.expenses.delete_by_id(expense_id, owner)
                except Exception as exc:
                    logger.error(
                        f"retention_delete_failed: owner={owner} expense={expense_id} error={exc}"
                    )
                    result.failures.append(ItemFailure(expense_id, str(exc)))
                    continue
                if not deleted:
                    result.failures.append(ItemFailure(expense_id, "not found"))
                    continue
                result.expenses_deleted += 1
                result.amount_deleted_cents += amount_cents
            self.expenses.commit()
            if offset + self.batch_size < len(targets):
                self.sleep(self.batch_pause_secs)

    def _delete_analyses(self, owner: int, cutoff: date, result: CleanupResult) -> None:
        if self.analyses is None:
            result.analyses_skipped = True
            return
        try:
            analysis_ids = [analysis.id for analysis in self.analyses.older_than(owner, cutoff)]
            for analysis_id in analysis_ids:
                try:
                    if self.analyses.delete_by_id(analysis_id):
                        result.analyses_deleted += 1
                except DependencyUnavailable:
                    raise
                except Exception as exc:
                    logger.error(
                        f"retention_analysis_delete_failed: owner={owner} "
                        f"analysis={analysis_id} error={exc}"
                    )
            self.analyses.commit()
        except DependencyUnavailable as exc:
            logger.warning(
                f"retention_analysis_skipped: owner={owner} reason={exc.message}"
            )
            result.analyses_skipped = True


def cleanup_owner_if_due(
    session: Session,
    owner: int,
    *,
    settings: Optional[Settings] = None,
    today: Optional[date] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[CleanupResult]:
    """Clean one owner using their own retention window, if anything is stale."""
    settings = settings or get_settings()
    users = UserStore(session)
    user = users.get(owner)
    if user is None or not user.auto_cleanup:
        return None
    months = user.retention_months or settings.default_retention_months
    engine = RetentionEngine.for_session(session, settings, today=today, sleep=sleep)
    if not engine.needs_cleanup(owner, months):
        return None
    result = engine.cleanup(owner, months)
    users.mark_cleaned(owner, result.timestamp)
    return result


def cleanup_all(
    session_factory: SessionFactory,
    *,
    settings: Optional[Settings] = None,
    today: Optional[date] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> GlobalCleanupResult:
    settings = settings or get_settings()
    with session_scope(session_factory) as session:
        owner_ids = UserStore(session).list_active_ids()
    logger.info(f"global_cleanup_start: owners={len(owner_ids)}")

    def _clean(owner: int) -> Optional[CleanupResult]:
        with session_scope(session_factory) as owner_session:
            return cleanup_owner_if_due(
                owner_session, owner, settings=settings, today=today, sleep=sleep
            )

    report = run_in_batches(
        owner_ids,
        _clean,
        batch_size=settings.owner_batch_size,
        max_workers=settings.owner_batch_concurrency,
        delay_secs=settings.owner_batch_delay_secs,
        sleep=sleep,
        label="global_cleanup",
    )

    result = GlobalCleanupResult(
        total_users=len(owner_ids), processed_users=report.attempted
    )
    for _owner, outcome in report.succeeded:
        if outcome is None:
            continue
        result.cleaned_users += 1
        result.total_expenses_deleted += outcome.expenses_deleted
        result.total_analyses_deleted += outcome.analyses_deleted
    result.errors = [
        {"owner": error["item"], "error": error["error"]} for error in report.errors
    ]
    logger.info(
        f"global_cleanup: owners={result.total_users} processed={result.processed_users} "
        f"cleaned={result.cleaned_users} expenses_deleted={result.total_expenses_deleted} "
        f"analyses_deleted={result.total_analyses_deleted} errors={len(result.errors)}"
    )
    return result
