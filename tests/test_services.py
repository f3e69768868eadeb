from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError as SchemaError
from sqlalchemy import text

from errors import DependencyUnavailable, NotFoundError, ValidationError
from models import PaymentMethod
from schemas import ExpenseIn, RetentionSettingsIn
from services import ExpenseService, RetentionSettingsService
from stores import ExpenseStore


def test_create_expense_auto_categorizes_and_stores_cents(session, make_user) -> None:
    user = make_user()
    expense = ExpenseService(session, user.id).create(
        ExpenseIn(
            amount=Decimal("19.99"),
            description="  Swiggy dinner ",
            date=date(2025, 1, 20),
            tags=["weekday", "weekday", " "],
            paymentMethod="upi",
        )
    )

    assert expense.amount_cents == 1999
    assert expense.category == "Food"
    assert expense.description == "Swiggy dinner"
    assert expense.tags == ["weekday"]
    assert expense.payment_method == PaymentMethod.upi


def test_create_expense_keeps_explicit_category(session, make_user) -> None:
    user = make_user()
    expense = ExpenseService(session, user.id).create(
        ExpenseIn(amount=5, description="Coffee beans", category="shoping", date=date(2025, 1, 20))
    )
    assert expense.category == "Shopping"


@pytest.mark.parametrize(
    "fields",
    [
        {"amount": 0},
        {"amount": "1.234"},
        {"description": ""},
        {"description": "x" * 201},
        {"date": "1969-12-31"},
        {"tags": ["t" * 31]},
        {"isRecurring": True},
    ],
)
def test_expense_input_validation(fields) -> None:
    data = {"amount": 10, "description": "Lunch", "date": "2025-01-20"}
    data.update(fields)
    with pytest.raises(SchemaError):
        ExpenseIn(**data)


def test_expenses_are_owner_scoped(session, make_user, add_expense) -> None:
    owner = make_user()
    other = make_user("other@example.com")
    expense = add_expense(owner, "10", date(2025, 1, 20))

    with pytest.raises(NotFoundError):
        ExpenseService(session, other.id).get(expense.id)
    with pytest.raises(NotFoundError):
        ExpenseService(session, other.id).delete(expense.id)

    service = ExpenseService(session, owner.id)
    assert [item.id for item in service.list(date(2025, 1, 20), date(2025, 1, 20))] == [expense.id]
    service.delete(expense.id)
    assert service.list() == []


def test_list_rejects_inverted_range(session, make_user) -> None:
    user = make_user()
    with pytest.raises(ValidationError):
        ExpenseService(session, user.id).list(date(2025, 2, 1), date(2025, 1, 1))


def test_retention_settings_defaults_and_update(session, make_user) -> None:
    user = make_user()
    service = RetentionSettingsService(session, user.id)

    current = service.get_settings()
    assert current["retention_months"] == 3
    assert current["auto_cleanup"] is True
    assert current["last_cleanup_at"] is None

    updated = service.update_settings(6, auto_cleanup=False)
    assert updated["retention_months"] == 6
    assert updated["auto_cleanup"] is False
    assert updated["updated_at"] is not None

    with pytest.raises(ValidationError):
        service.update_settings(13)
    assert service.get_settings()["retention_months"] == 6


def test_retention_settings_schema_is_strict() -> None:
    assert RetentionSettingsIn(months=12, autoCleanup=True).auto_cleanup is True
    for months in (0, 13, True, "3", 2.5):
        with pytest.raises(SchemaError):
            RetentionSettingsIn(months=months)


def test_stats_and_cleanup(session, make_user, add_expense) -> None:
    user = make_user()
    add_expense(user, "10", date(2024, 1, 1))
    add_expense(user, "5", date(2025, 3, 1))
    service = RetentionSettingsService(session, user.id, today=date(2025, 3, 15))

    stats = service.stats()
    assert stats["total_expenses"] == 2
    assert stats["total_amount"] == 15.0
    assert stats["eligible_for_cleanup"] == 1
    assert stats["cutoff_date"] == "2024-12-01"

    result = service.cleanup()
    assert result["expenses"]["deleted"] == 1
    assert service.get_settings()["last_cleanup_at"] is not None
    assert service.preview()["total_expenses"] == 0


def test_expense_totals_map_store_outage(session, make_user, add_expense) -> None:
    user = make_user()
    add_expense(user, "10", date(2024, 1, 1))
    add_expense(user, "2.5", date(2025, 3, 1))
    store = ExpenseStore(session)
    assert store.totals(user.id) == (1250, 2)
    assert store.totals(user.id + 1) == (0, 0)

    session.execute(text("DROP TABLE expenses"))
    with pytest.raises(DependencyUnavailable):
        store.totals(user.id)
    with pytest.raises(DependencyUnavailable):
        RetentionSettingsService(session, user.id, today=date(2025, 3, 15)).stats()
