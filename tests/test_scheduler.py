from datetime import date

import pytest

from config import get_settings
from errors import NotFoundError
from models import WeeklyAnalysis
from notifications import Notifier
from scheduler import SchedulerManager

TODAY = date(2025, 1, 26)


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        self.sent: list[tuple[int, str]] = []

    def deliver(self, user, subject, body) -> bool:
        self.sent.append((user.id, subject))
        return True


class BrokenNotifier(Notifier):
    def deliver(self, user, subject, body) -> bool:
        raise ConnectionError("smtp down")


def _manager(session_factory, notifier=None) -> SchedulerManager:
    return SchedulerManager(
        session_factory,
        get_settings(),
        notifier or RecordingNotifier(),
        sleep=lambda _secs: None,
        today=TODAY,
    )


def test_daily_summary_skips_owners_without_spend(session_factory, make_user, add_expense) -> None:
    spender = make_user("spender@example.com", daily_summary_enabled=True)
    make_user("quiet@example.com", daily_summary_enabled=True)
    make_user("optout@example.com")
    add_expense(spender, "12.50", TODAY, "Food")
    notifier = RecordingNotifier()

    results = _manager(session_factory, notifier).trigger_daily_summary()

    assert results["sent"] == 1
    assert results["skipped"] == 1
    assert results["errors"] == []
    assert notifier.sent == [(spender.id, "Daily Expense Summary - 2025-01-26")]


def test_failed_delivery_is_counted_not_raised(session_factory, make_user, add_expense) -> None:
    user = make_user(daily_summary_enabled=True)
    add_expense(user, "3", TODAY)

    results = _manager(session_factory, BrokenNotifier()).trigger_daily_summary()

    assert results["failed"] == 1
    assert results["sent"] == 0


def test_weekly_report_covers_week_ending_yesterday(
    session, session_factory, make_user, add_expense
) -> None:
    user = make_user(weekly_report_enabled=True)
    add_expense(user, "20", date(2025, 1, 19))
    add_expense(user, "99", date(2025, 1, 26))
    notifier = RecordingNotifier()

    results = _manager(session_factory, notifier).trigger_weekly_report()

    assert results["week_start_date"] == "2025-01-19"
    assert results["sent"] == 1
    session.expire_all()
    stored = session.query(WeeklyAnalysis).one()
    assert stored.week_start_date == date(2025, 1, 19)
    assert stored.total_amount_cents == 2000


def test_data_cleanup_job_runs_global_cleanup(session_factory, make_user, add_expense) -> None:
    user = make_user()
    add_expense(user, "10", date(2024, 1, 1))
    manager = _manager(session_factory)

    summary = manager.trigger_data_cleanup()

    assert summary["cleaned_users"] == 1
    assert summary["total_expenses_deleted"] == 1
    status = manager.status()
    assert status["initialized"] is False
    assert status["jobs"]["data_cleanup"]["last_run"]["ok"] is True
    assert status["jobs"]["data_cleanup"]["running"] is False
    assert status["jobs"]["daily_summary"]["last_run"] is None


def test_user_cleanup_uses_given_window(session_factory, make_user, add_expense) -> None:
    user = make_user()
    add_expense(user, "10", date(2024, 11, 15))

    assert _manager(session_factory).trigger_user_cleanup(user.id, 3)["expenses"]["deleted"] == 0
    assert _manager(session_factory).trigger_user_cleanup(user.id, 1)["expenses"]["deleted"] == 1


def test_unknown_job_and_owner(session_factory) -> None:
    manager = _manager(session_factory)
    with pytest.raises(NotFoundError):
        manager.trigger("hourly_backup")
    with pytest.raises(NotFoundError):
        manager.trigger_user_cleanup(404)


def test_start_registers_cron_jobs(session_factory) -> None:
    manager = _manager(session_factory)
    manager.start()
    try:
        status = manager.status()
        assert status["initialized"] is True
        assert set(status["jobs"]) == {"daily_summary", "weekly_report", "data_cleanup"}
        assert all(job["scheduled"] for job in status["jobs"].values())
        assert all(job["next_run_time"] for job in status["jobs"].values())
    finally:
        manager.stop()
