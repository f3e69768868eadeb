from datetime import date

from sqlalchemy import event, func, select

import retention
from analysis import AnalysisAggregator
from config import get_settings
from errors import DependencyUnavailable
from models import Expense, User, WeeklyAnalysis
from retention import RetentionEngine, cleanup_all
from stores import AnalysisStore, ExpenseStore

TODAY = date(2025, 3, 15)


def _engine(session, **kwargs) -> RetentionEngine:
    kwargs.setdefault("today", TODAY)
    kwargs.setdefault("sleep", lambda _secs: None)
    return RetentionEngine(ExpenseStore(session), AnalysisStore(session), **kwargs)


def _expense_count(session, owner: int) -> int:
    stmt = select(func.count(Expense.id)).where(Expense.user_id == owner)
    return session.execute(stmt).scalar_one()


def test_cutoff_boundary_keeps_cutoff_day(session, make_user, add_expense) -> None:
    user = make_user()
    stale = add_expense(user, "10", date(2024, 11, 30))
    kept = add_expense(user, "20", date(2024, 12, 1))

    engine = _engine(session)
    preview = engine.preview(user.id, 3)
    assert engine.cutoff(3) == date(2024, 12, 1)
    assert preview.total_expenses == 1
    assert preview.newest_expense_to_delete == date(2024, 11, 30)

    result = engine.cleanup(user.id, 3)
    assert result.expenses_deleted == 1
    remaining = session.scalars(select(Expense.id).where(Expense.user_id == user.id)).all()
    assert remaining == [kept.id]
    assert stale.id not in remaining


def test_preview_groups_by_month_and_never_mutates(session, make_user, add_expense) -> None:
    user = make_user()
    add_expense(user, "10.25", date(2024, 9, 3))
    add_expense(user, "4.75", date(2024, 9, 28))
    add_expense(user, "100", date(2024, 11, 2))
    add_expense(user, "1", date(2025, 2, 1))
    engine = _engine(session)

    for _ in range(10):
        preview = engine.preview(user.id, 3)

    assert _expense_count(session, user.id) == 4
    assert preview.to_dict()["monthly_breakdown"] == {
        "2024-09": {"count": 2, "amount": 15.0},
        "2024-11": {"count": 1, "amount": 100.0},
    }
    assert preview.total_amount_cents == 11500
    assert preview.oldest_expense == date(2024, 9, 3)


def test_cleanup_twice_is_idempotent(session, make_user, add_expense) -> None:
    user = make_user()
    add_expense(user, "10", date(2024, 10, 5))
    add_expense(user, "12", date(2025, 3, 1))
    aggregator = AnalysisAggregator(ExpenseStore(session), AnalysisStore(session))
    aggregator.compute(user.id, date(2024, 10, 1))
    engine = _engine(session)

    first = engine.cleanup(user.id, 3)
    second = engine.cleanup(user.id, 3)

    assert first.expenses_deleted == 1
    assert first.analyses_deleted == 1
    assert first.amount_deleted_cents == 1000
    assert second.expenses_found == 0
    assert second.expenses_deleted == 0
    assert second.analyses_deleted == 0
    assert _expense_count(session, user.id) == 1


def test_cleanup_never_touches_other_owners(session, make_user, add_expense) -> None:
    user = make_user()
    other = make_user("other@example.com")
    add_expense(user, "10", date(2024, 1, 5))
    add_expense(other, "10", date(2024, 1, 5))

    _engine(session).cleanup(user.id, 3)

    assert _expense_count(session, user.id) == 0
    assert _expense_count(session, other.id) == 1


def test_cleanup_batches_with_pause(session, make_user, add_expense) -> None:
    user = make_user()
    for day in range(1, 8):
        add_expense(user, "1", date(2024, 1, day))
    pauses: list[float] = []

    result = _engine(session, batch_size=3, batch_pause_secs=0.5, sleep=pauses.append).cleanup(
        user.id, 3
    )

    assert result.expenses_deleted == 7
    assert pauses == [0.5, 0.5]


class _FlakyExpenseStore(ExpenseStore):
    def __init__(self, session, failing: set[int], missing: set[int]) -> None:
        super().__init__(session)
        self.failing = failing
        self.missing = missing

    def delete_by_id(self, expense_id, owner=None):
        if expense_id in self.failing:
            raise RuntimeError("write rejected")
        if expense_id in self.missing:
            return False
        return super().delete_by_id(expense_id, owner)


def test_partial_failures_are_recorded_and_skipped(session, make_user, add_expense) -> None:
    user = make_user()
    first = add_expense(user, "1", date(2024, 1, 1))
    broken = add_expense(user, "2", date(2024, 1, 2))
    gone = add_expense(user, "3", date(2024, 1, 3))
    last = add_expense(user, "4", date(2024, 1, 4))
    store = _FlakyExpenseStore(session, failing={broken.id}, missing={gone.id})
    engine = RetentionEngine(store, AnalysisStore(session), today=TODAY, sleep=lambda _s: None)

    result = engine.cleanup(user.id, 3)

    assert result.expenses_found == 4
    assert result.expenses_deleted == 2
    assert result.amount_deleted_cents == 500
    assert result.partial_failure
    failures = {failure.item_id: failure.error for failure in result.failures}
    assert failures == {broken.id: "write rejected", gone.id: "not found"}
    remaining = set(session.scalars(select(Expense.id)).all())
    assert first.id not in remaining and last.id not in remaining
    assert broken.id in remaining
    body = result.to_dict()
    assert body["expenses"]["attempted"] == 4
    assert body["expenses"]["deleted"] == 2


def test_failed_delete_is_rolled_back_without_losing_batch(engine, session, make_user, add_expense) -> None:
    user = make_user()
    first = add_expense(user, "1", date(2024, 1, 1))
    broken = add_expense(user, "2", date(2024, 1, 2))
    last = add_expense(user, "4", date(2024, 1, 3))

    @event.listens_for(engine, "after_cursor_execute")
    def reject_after_delete(conn, cursor, statement, parameters, context, executemany):
        if statement.startswith("DELETE FROM expenses") and parameters[0] == broken.id:
            raise RuntimeError("constraint violated")

    result = _engine(session).cleanup(user.id, 3)

    assert result.expenses_deleted == 2
    assert result.amount_deleted_cents == 500
    assert [(failure.item_id, failure.error) for failure in result.failures] == [
        (broken.id, "constraint violated")
    ]
    event.remove(engine, "after_cursor_execute", reject_after_delete)
    remaining = set(session.scalars(select(Expense.id)).all())
    assert remaining == {broken.id}
    assert first.id not in remaining and last.id not in remaining


class _UnavailableAnalysisStore(AnalysisStore):
    def older_than(self, owner, cutoff):
        raise DependencyUnavailable("analysis store")


def test_analysis_store_outage_is_downgraded_to_skipped(session, make_user, add_expense) -> None:
    user = make_user()
    add_expense(user, "10", date(2024, 1, 5))
    engine = RetentionEngine(
        ExpenseStore(session), _UnavailableAnalysisStore(session), today=TODAY, sleep=lambda _s: None
    )

    result = engine.cleanup(user.id, 3)

    assert result.expenses_deleted == 1
    assert result.analyses_skipped is True
    assert result.to_dict()["analyses"] == {"deleted": 0, "skipped": True}


def test_needs_cleanup(session, make_user, add_expense) -> None:
    user = make_user()
    engine = _engine(session)
    assert engine.needs_cleanup(user.id, 3) is False
    add_expense(user, "10", date(2024, 11, 30))
    assert engine.needs_cleanup(user.id, 3) is True
    assert engine.needs_cleanup(user.id, 4) is False


def test_global_cleanup_only_cleans_owners_with_stale_data(
    session, session_factory, make_user, add_expense
) -> None:
    owner_a = make_user("a@example.com")
    owner_b = make_user("b@example.com", retention_months=1)
    owner_c = make_user("c@example.com", auto_cleanup=False)
    add_expense(owner_a, "10", date(2025, 2, 20))
    add_expense(owner_b, "10", date(2025, 1, 20))
    add_expense(owner_b, "10", date(2025, 2, 20))
    add_expense(owner_c, "10", date(2023, 1, 1))
    make_user("inactive@example.com", is_active=False)
    sleeps: list[float] = []

    result = cleanup_all(
        session_factory, settings=get_settings(), today=TODAY, sleep=sleeps.append
    )

    assert result.total_users == 3
    assert result.processed_users == 3
    assert result.cleaned_users == 1
    assert result.total_expenses_deleted == 1
    assert result.errors == []
    session.expire_all()
    assert _expense_count(session, owner_b.id) == 1
    assert _expense_count(session, owner_c.id) == 1
    assert session.get(User, owner_b.id).last_cleanup_at is not None
    assert session.get(User, owner_a.id).last_cleanup_at is None


def test_global_cleanup_collects_per_owner_errors(
    monkeypatch, session_factory, make_user, add_expense
) -> None:
    healthy = make_user("ok@example.com")
    add_expense(healthy, "10", date(2024, 1, 1))
    broken = make_user("broken@example.com")
    real_cleanup = retention.cleanup_owner_if_due

    def flaky_cleanup(session, owner, **kwargs):
        if owner == broken.id:
            raise RuntimeError("boom")
        return real_cleanup(session, owner, **kwargs)

    monkeypatch.setattr(retention, "cleanup_owner_if_due", flaky_cleanup)

    result = cleanup_all(
        session_factory, settings=get_settings(), today=TODAY, sleep=lambda _s: None
    )

    assert result.processed_users == 2
    assert result.cleaned_users == 1
    assert result.total_expenses_deleted == 1
    assert result.errors == [{"owner": broken.id, "error": "boom"}]


def test_analyses_removed_only_when_whole_week_is_before_cutoff(
    session, make_user, add_expense
) -> None:
    user = make_user()
    aggregator = AnalysisAggregator(ExpenseStore(session), AnalysisStore(session))
    add_expense(user, "5", date(2024, 11, 20))
    add_expense(user, "5", date(2024, 11, 28))
    aggregator.compute(user.id, date(2024, 11, 18))
    aggregator.compute(user.id, date(2024, 11, 25))

    result = _engine(session).cleanup(user.id, 3)

    assert result.expenses_deleted == 2
    assert result.analyses_deleted == 1
    weeks = session.scalars(select(WeeklyAnalysis.week_start_date)).all()
    assert weeks == [date(2024, 11, 25)]
