import os

os.environ.setdefault("SPENDWISE_DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SPENDWISE_SCHEDULER_ENABLED", "false")
os.environ.setdefault("SPENDWISE_TIMEZONE", "UTC")
os.environ.setdefault("SPENDWISE_CLEANUP_BATCH_PAUSE_SECS", "0")
os.environ.setdefault("SPENDWISE_OWNER_BATCH_CONCURRENCY", "1")
os.environ.setdefault("SPENDWISE_OWNER_BATCH_DELAY_SECS", "0")

from datetime import date, datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from database import Base, build_engine  # noqa: E402
from models import Expense, amount_to_cents  # noqa: E402
from services import UserService  # noqa: E402


@pytest.fixture
def engine():
    eng = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    with session_factory() as db:
        yield db


@pytest.fixture
def make_user(session):
    def _make(email: str = "owner@example.com", *, age_days: int = 30, **fields):
        return UserService(session).create(
            email, created_at=datetime.utcnow() - timedelta(days=age_days), **fields
        )

    return _make


@pytest.fixture
def add_expense(session):
    def _add(
        user,
        amount,
        day: date,
        category: str = "Other",
        description: str = "Expense",
    ) -> Expense:
        expense = Expense(
            user_id=user.id,
            amount_cents=amount_to_cents(amount),
            description=description,
            category=category,
            date=day,
        )
        session.add(expense)
        session.commit()
        return expense

    return _add
