"""Owner-scoped data access used by the analysis and retention engines."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterator, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from errors import DependencyUnavailable
from models import Expense, User, WeeklyAnalysis

logger = logging.getLogger(__name__)


@contextmanager
def _reachable(dependency: str) -> Iterator[None]:
    try:
        yield
    except OperationalError as exc:
        logger.error(f"store_unavailable: dependency={dependency} error={exc}")
        raise DependencyUnavailable(dependency) from exc


class ExpenseStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def range_query(self, owner: int, start: date, end: date) -> list[Expense]:
        """Owner's expenses dated within [start, end], oldest first."""
        stmt = (
            select(Expense)
            .where(
                Expense.user_id == owner,
                Expense.date >= start,
                Expense.date <= end,
            )
            .order_by(Expense.date, Expense.id)
        )
        with _reachable("expense store"):
            return list(self.session.scalars(stmt).all())

    def exists_in_range(self, owner: int, start: date, end: date) -> bool:
        stmt = (
            select(Expense.id)
            .where(
                Expense.user_id == owner,
                Expense.date >= start,
                Expense.date <= end,
            )
            .limit(1)
        )
        with _reachable("expense store"):
            return self.session.execute(stmt).first() is not None

    def totals(self, owner: int) -> tuple[int, int]:
        """(sum of amount_cents, row count) across all of the owner's expenses."""
        stmt = select(
            func.coalesce(func.sum(Expense.amount_cents), 0), func.count(Expense.id)
        ).where(Expense.user_id == owner)
        with _reachable("expense store"):
            total_cents, count = self.session.execute(stmt).one()
        return total_cents, count

    def delete_by_id(self, expense_id: int, owner: Optional[int] = None) -> bool:
        stmt = delete(Expense).where(Expense.id == expense_id)
        if owner is not None:
            stmt = stmt.where(Expense.user_id == owner)
        # Savepoint per row: a failed delete must not abort the surrounding batch.
        with _reachable("expense store"), self.session.begin_nested():
            result = self.session.execute(stmt)
        return (result.rowcount or 0) > 0

    def commit(self) -> None:
        with _reachable("expense store"):
            self.session.commit()


class AnalysisStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def find_by_week(self, owner: int, week_start: date) -> Optional[WeeklyAnalysis]:
        stmt = select(WeeklyAnalysis).where(
            WeeklyAnalysis.user_id == owner,
            WeeklyAnalysis.week_start_date == week_start,
        )
        with _reachable("analysis store"):
            return self.session.scalar(stmt)

    def upsert(self, owner: int, week_start: date, fields: dict) -> WeeklyAnalysis:
        """Create or fully replace the computed fields for (owner, week_start).

        Fields not named in ``fields`` (the suggestion payload) are left alone.
        """
        with _reachable("analysis store"):
            existing = self.find_by_week(owner, week_start)
            if existing is None:
                analysis = WeeklyAnalysis(
                    user_id=owner, week_start_date=week_start, **fields
                )
                self.session.add(analysis)
                try:
                    self.session.commit()
                except IntegrityError:
                    # Another writer inserted the same week first.
                    self.session.rollback()
                    existing = self.find_by_week(owner, week_start)
                    if existing is None:
                        raise
                else:
                    self.session.refresh(analysis)
                    return analysis

            for key, value in fields.items():
                setattr(existing, key, value)
            existing.updated_at = datetime.utcnow()
            self.session.commit()
            self.session.refresh(existing)
            return existing

    def recent(self, owner: int, limit: int) -> list[WeeklyAnalysis]:
        stmt = (
            select(WeeklyAnalysis)
            .where(WeeklyAnalysis.user_id == owner)
            .order_by(WeeklyAnalysis.week_start_date.desc(), WeeklyAnalysis.id.desc())
            .limit(limit)
        )
        with _reachable("analysis store"):
            return list(self.session.scalars(stmt).all())

    def older_than(self, owner: int, cutoff: date) -> list[WeeklyAnalysis]:
        """Analyses whose whole week lies before ``cutoff``."""
        stmt = (
            select(WeeklyAnalysis)
            .where(
                WeeklyAnalysis.user_id == owner,
                WeeklyAnalysis.week_end_date < cutoff,
            )
            .order_by(WeeklyAnalysis.week_start_date, WeeklyAnalysis.id)
        )
        with _reachable("analysis store"):
            return list(self.session.scalars(stmt).all())

    def delete_by_id(self, analysis_id: int) -> bool:
        stmt = delete(WeeklyAnalysis).where(WeeklyAnalysis.id == analysis_id)
        with _reachable("analysis store"), self.session.begin_nested():
            result = self.session.execute(stmt)
        return (result.rowcount or 0) > 0

    def set_suggestions(self, analysis: WeeklyAnalysis, payload: dict) -> WeeklyAnalysis:
        with _reachable("analysis store"):
            analysis.ai_suggestions = payload
            self.session.commit()
            self.session.refresh(analysis)
        return analysis

    def commit(self) -> None:
        with _reachable("analysis store"):
            self.session.commit()


class UserStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, owner: int) -> Optional[User]:
        with _reachable("account store"):
            return self.session.get(User, owner)

    def list_active_ids(self) -> list[int]:
        stmt = select(User.id).where(User.is_active.is_(True)).order_by(User.id)
        with _reachable("account store"):
            return list(self.session.scalars(stmt).all())

    def ids_with_daily_summary(self) -> list[int]:
        stmt = (
            select(User.id)
            .where(User.is_active.is_(True), User.daily_summary_enabled.is_(True))
            .order_by(User.id)
        )
        with _reachable("account store"):
            return list(self.session.scalars(stmt).all())

    def ids_with_weekly_report(self) -> list[int]:
        stmt = (
            select(User.id)
            .where(User.is_active.is_(True), User.weekly_report_enabled.is_(True))
            .order_by(User.id)
        )
        with _reachable("account store"):
            return list(self.session.scalars(stmt).all())

    def mark_cleaned(self, owner: int, when: Optional[datetime] = None) -> None:
        user = self.get(owner)
        if user is None:
            return
        user.last_cleanup_at = when or datetime.utcnow()
        with _reachable("account store"):
            self.session.commit()
