from datetime import date, datetime

import pytest

from errors import ValidationError
from periods import month_key, parse_day, previous_week, resolve_week, retention_cutoff


def test_retention_cutoff_crosses_year_boundary() -> None:
    assert retention_cutoff(3, date(2025, 3, 15)) == date(2024, 12, 1)
    assert retention_cutoff(1, date(2025, 1, 31)) == date(2024, 12, 1)
    assert retention_cutoff(12, date(2025, 6, 1)) == date(2024, 6, 1)


def test_retention_cutoff_is_stable_for_same_inputs() -> None:
    today = date(2025, 3, 15)
    assert retention_cutoff(6, today) == retention_cutoff(6, today)


def test_resolve_week_truncates_to_day_and_spans_seven_days() -> None:
    window = resolve_week("2025-01-20T17:45:00Z")
    assert window.start == date(2025, 1, 20)
    assert window.end == date(2025, 1, 26)
    assert len(window.days()) == 7
    assert window.ends_at == datetime(2025, 1, 26, 23, 59, 59, 999999)

    assert resolve_week(datetime(2025, 1, 20, 8, 30)).start == date(2025, 1, 20)


@pytest.mark.parametrize("value", [None, "", "not-a-date", "2025-01-20garbage", 42])
def test_parse_day_rejects_missing_or_malformed(value) -> None:
    with pytest.raises(ValidationError):
        parse_day(value)


def test_previous_week_ends_yesterday() -> None:
    window = previous_week(date(2025, 1, 26))
    assert window.start == date(2025, 1, 19)
    assert window.end == date(2025, 1, 25)


def test_month_key_is_zero_padded() -> None:
    assert month_key(date(2024, 3, 9)) == "2024-03"
