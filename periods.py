from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from config import get_settings
from errors import ValidationError

EPOCH = date(1970, 1, 1)
WEEK_DAYS = 7

DayLike = Union[date, datetime, str, None]


@dataclass(frozen=True)
class WeekWindow:
    start: date
    end: date

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.start, time.min)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.end, time.max)

    def days(self) -> list[date]:
        return [self.start + timedelta(days=offset) for offset in range(WEEK_DAYS)]

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def parse_day(value: DayLike, *, field: str = "startDate") -> date:
    """Truncate a date, datetime or ISO string to its calendar day."""
    if value is None or value == "":
        raise ValidationError(f"{field} is required")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        raw = value.strip()
        try:
            return date.fromisoformat(raw)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
        except ValueError as exc:
            raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)") from exc
    raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)")


def resolve_week(week_start: DayLike) -> WeekWindow:
    start = parse_day(week_start)
    return WeekWindow(start=start, end=start + timedelta(days=WEEK_DAYS - 1))


def previous_week(today: Optional[date] = None) -> WeekWindow:
    """The seven days ending yesterday."""
    today = today or local_today()
    return resolve_week(today - timedelta(days=WEEK_DAYS))


def retention_cutoff(months: int, today: Optional[date] = None) -> date:
    """First day of the month lying ``months`` calendar months before today.

    Expenses dated strictly before the returned day are stale; the cutoff day
    itself is retained.
    """
    today = today or local_today()
    total_months = today.year * 12 + (today.month - 1) - months
    return date(total_months // 12, total_months % 12 + 1, 1)


def month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"
