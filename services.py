from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from analysis import AnalysisAggregator
from categories import resolve_category
from config import Settings, get_settings
from errors import NotFoundError, ValidationError
from models import AccountStatus, Expense, User, UserRole, amount_to_cents, cents_to_amount
from periods import EPOCH
from retention import RetentionEngine
from schemas import ExpenseIn
from security import validate_retention_months
from stores import AnalysisStore, ExpenseStore, UserStore

logger = logging.getLogger(__name__)


def aggregator_for(session: Session) -> AnalysisAggregator:
    return AnalysisAggregator(ExpenseStore(session), AnalysisStore(session))


class ExpenseService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.store = ExpenseStore(session)

    def create(self, data: ExpenseIn) -> Expense:
        expense = Expense(
            user_id=self.user_id,
            amount_cents=amount_to_cents(data.amount),
            description=data.description,
            category=resolve_category(data.category, data.description),
            date=data.date,
            notes=data.notes,
            payment_method=data.payment_method,
            is_recurring=data.is_recurring,
            recurring_frequency=data.recurring_frequency,
        )
        expense.tags = data.tags
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        logger.info(
            f"expense_created: owner={self.user_id} id={expense.id} "
            f"category={expense.category} amount_cents={expense.amount_cents}"
        )
        return expense

    def get(self, expense_id: int) -> Expense:
        stmt = select(Expense).where(
            Expense.user_id == self.user_id, Expense.id == expense_id
        )
        expense = self.session.scalar(stmt)
        if not expense:
            raise NotFoundError("Expense not found")
        return expense

    def list(self, start: Optional[date] = None, end: Optional[date] = None) -> list[Expense]:
        start = start or EPOCH
        end = end or date.max
        if start > end:
            raise ValidationError("startDate must not be after endDate")
        return self.store.range_query(self.user_id, start, end)

    def delete(self, expense_id: int) -> None:
        if not self.store.delete_by_id(expense_id, self.user_id):
            raise NotFoundError("Expense not found")
        self.store.commit()
        logger.info(f"expense_deleted: owner={self.user_id} id={expense_id}")


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(
        self,
        email: str,
        name: str = "",
        *,
        role: UserRole = UserRole.user,
        status: AccountStatus = AccountStatus.active,
        created_at: Optional[datetime] = None,
        **preferences: Any,
    ) -> User:
        user = User(email=email.strip().lower(), name=name, role=role, status=status, **preferences)
        if created_at is not None:
            user.created_at = created_at
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user or not user.is_active:
            raise NotFoundError("User not found")
        return user


class RetentionSettingsService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        settings: Optional[Settings] = None,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.settings = settings or get_settings()
        self.today = today

    def _user(self) -> User:
        return UserService(self.session).get(self.user_id)

    def engine(self) -> RetentionEngine:
        return RetentionEngine.for_session(self.session, self.settings, today=self.today)

    def get_settings(self) -> dict[str, Any]:
        user = self._user()
        return {
            "retention_months": user.retention_months or self.settings.default_retention_months,
            "auto_cleanup": user.auto_cleanup,
            "last_cleanup_at": user.last_cleanup_at.isoformat() if user.last_cleanup_at else None,
            "updated_at": user.retention_updated_at.isoformat()
            if user.retention_updated_at
            else None,
        }

    def update_settings(self, months: Any, auto_cleanup: Optional[bool] = None) -> dict[str, Any]:
        months = validate_retention_months(months, self.settings)
        user = self._user()
        user.retention_months = months
        if auto_cleanup is not None:
            user.auto_cleanup = auto_cleanup
        user.retention_updated_at = datetime.utcnow()
        self.session.commit()
        logger.info(
            f"retention_settings_updated: owner={self.user_id} months={months} "
            f"auto_cleanup={user.auto_cleanup}"
        )
        return self.get_settings()

    def preview(self) -> dict[str, Any]:
        months = self.get_settings()["retention_months"]
        return self.engine().preview(self.user_id, months).to_dict()

    def stats(self) -> dict[str, Any]:
        current = self.get_settings()
        preview = self.engine().preview(self.user_id, current["retention_months"])
        total_cents, total_count = ExpenseStore(self.session).totals(self.user_id)
        return {
            "settings": current,
            "total_expenses": total_count,
            "total_amount": cents_to_amount(total_cents),
            "eligible_for_cleanup": preview.total_expenses,
            "eligible_amount": cents_to_amount(preview.total_amount_cents),
            "cutoff_date": preview.cutoff_date.isoformat(),
            "oldest_expense": preview.oldest_expense.isoformat()
            if preview.oldest_expense
            else None,
        }

    def cleanup(self) -> dict[str, Any]:
        months = self.get_settings()["retention_months"]
        result = self.engine().cleanup(self.user_id, months)
        UserStore(self.session).mark_cleaned(self.user_id, result.timestamp)
        return result.to_dict()
