import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base

DEFAULT_CATEGORY = "Other"


class UserRole(str, Enum):
    user = "user"
    admin = "admin"
    super_admin = "super_admin"


class AccountStatus(str, Enum):
    active = "active"
    verified = "verified"
    pending = "pending"
    suspended = "suspended"
    banned = "banned"


class PaymentMethod(str, Enum):
    cash = "cash"
    card = "card"
    upi = "upi"


class RecurringFrequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


def cents_to_amount(cents: int) -> float:
    return cents / 100


def amount_to_cents(amount: Union[Decimal, float, int]) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1")))


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    role: Mapped[UserRole] = mapped_column(
        SAEnum(UserRole), nullable=False, default=UserRole.user
    )
    status: Mapped[AccountStatus] = mapped_column(
        SAEnum(AccountStatus), nullable=False, default=AccountStatus.active
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    retention_months: Mapped[Optional[int]] = mapped_column(Integer)
    last_cleanup_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    auto_cleanup: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    retention_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    daily_summary_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    weekly_report_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    expenses: Mapped[list["Expense"]] = relationship(
        "Expense", back_populates="user", passive_deletes=True
    )

    __table_args__ = (
        CheckConstraint(
            "retention_months IS NULL OR (retention_months >= 1 AND retention_months <= 12)",
            name="ck_users_retention_months_range",
        ),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(
        String(50), nullable=False, default=DEFAULT_CATEGORY
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    tags_json: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        SAEnum(PaymentMethod)
    )
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recurring_frequency: Mapped[Optional[RecurringFrequency]] = mapped_column(
        SAEnum(RecurringFrequency)
    )

    user: Mapped["User"] = relationship("User", back_populates="expenses")

    __table_args__ = (
        Index("ix_expenses_user_date", "user_id", "date"),
        Index("ix_expenses_user_category_date", "user_id", "category", "date"),
        CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
    )

    @property
    def amount(self) -> float:
        return cents_to_amount(self.amount_cents)

    @property
    def tags(self) -> list[str]:
        if not self.tags_json:
            return []
        return list(json.loads(self.tags_json))

    @tags.setter
    def tags(self, value: list[str]) -> None:
        self.tags_json = json.dumps(value) if value else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "amount": self.amount,
            "description": self.description,
            "category": self.category,
            "date": self.date.isoformat(),
            "tags": self.tags,
            "notes": self.notes,
            "payment_method": self.payment_method.value
            if self.payment_method
            else None,
            "is_recurring": self.is_recurring,
            "recurring_frequency": self.recurring_frequency.value
            if self.recurring_frequency
            else None,
        }


class WeeklyAnalysis(Base, TimestampMixin):
    __tablename__ = "weekly_analyses"
    __table_args__ = (
        UniqueConstraint("user_id", "week_start_date", name="uq_analysis_user_week"),
        Index("ix_analysis_user_week_end", "user_id", "week_end_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    week_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    week_end_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_expenses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_daily_spend: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0
    )
    category_breakdown: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    daily_totals: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    top_expenses: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    insights: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    ai_suggestions: Mapped[Optional[dict]] = mapped_column(JSON)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "week_start_date": self.week_start_date.isoformat(),
            "week_end_date": self.week_end_date.isoformat(),
            "total_amount": cents_to_amount(self.total_amount_cents),
            "total_expenses": self.total_expenses,
            "average_daily_spend": self.average_daily_spend,
            "category_breakdown": self.category_breakdown,
            "daily_totals": self.daily_totals,
            "top_expenses": self.top_expenses,
            "insights": self.insights,
            "ai_suggestions": self.ai_suggestions,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
