from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from errors import InvalidInputError
from models import BudgetPeriod

DEFAULT_MONTH_START_DATE = 1
MAX_MONTH_START_DATE = 28


@dataclass(frozen=True)
class Period:
    """Inclusive span of naive UTC instants."""

    slug: str
    start: datetime
    end: datetime

    @property
    def first_day(self) -> date:
        return self.start.date()

    @property
    def last_day(self) -> date:
        return self.end.date()

    @property
    def days(self) -> int:
        return (self.last_day - self.first_day).days + 1

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min)


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max)


def validate_month_start_date(value: int) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidInputError("Month start date must be a whole number")
    if value < 1 or value > MAX_MONTH_START_DATE:
        raise InvalidInputError(
            f"Month start date must be between 1 and {MAX_MONTH_START_DATE}"
        )
    return value


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    total = year * 12 + (month - 1) + delta
    return total // 12, total % 12 + 1


def _cycle(year: int, month: int, start_day: int) -> Period:
    # The cycle opened on `start_day` of (year, month) and runs until the day
    # before `start_day` of the following month.
    next_year, next_month = _shift_month(year, month, 1)
    try:
        first = date(year, month, start_day)
        last = date(next_year, next_month, start_day) - timedelta(days=1)
    except ValueError as exc:
        raise InvalidInputError(f"Month {year}-{month:02d} is out of range") from exc
    return Period("month", start_of_day(first), end_of_day(last))


def parse_year_month(value: str) -> tuple[int, int]:
    try:
        year_part, month_part = value.strip().split("-")
        year = int(year_part)
        month = int(month_part)
    except (AttributeError, ValueError) as exc:
        raise InvalidInputError(
            "Invalid month format. Use YYYY-MM (e.g., 2026-01)"
        ) from exc
    if year < 1 or month < 1 or month > 12:
        raise InvalidInputError("Invalid month format. Use YYYY-MM (e.g., 2026-01)")
    return year, month


def month_range(
    now: datetime,
    month_start_date: Optional[int],
    year_month: Optional[tuple[int, int]] = None,
) -> Period:
    start_day = month_start_date or DEFAULT_MONTH_START_DATE
    if year_month is not None:
        year, month = year_month
        return _cycle(year, month, start_day)

    if now.day >= start_day:
        return _cycle(now.year, now.month, start_day)
    prev_year, prev_month = _shift_month(now.year, now.month, -1)
    return _cycle(prev_year, prev_month, start_day)


def week_range(now: datetime, month_start_date: Optional[int]) -> Period:
    if month_start_date is None:
        # Sunday..Saturday calendar week.
        offset = (now.weekday() + 1) % 7
        first = now.date() - timedelta(days=offset)
        last = first + timedelta(days=6)
        return Period("week", start_of_day(first), end_of_day(last))

    cycle = month_range(now, month_start_date)
    index = (now.date() - cycle.first_day).days // 7
    first = cycle.first_day + timedelta(days=7 * index)
    last = min(first + timedelta(days=6), cycle.last_day)
    return Period("week", start_of_day(first), end_of_day(last))


def weeks_of_cycle(cycle: Period) -> list[Period]:
    weeks: list[Period] = []
    first = cycle.first_day
    while first <= cycle.last_day:
        last = min(first + timedelta(days=6), cycle.last_day)
        weeks.append(Period("week", start_of_day(first), end_of_day(last)))
        first = last + timedelta(days=1)
    return weeks


def range_for(
    period: BudgetPeriod, now: datetime, month_start_date: Optional[int]
) -> Period:
    if period == BudgetPeriod.weekly:
        return week_range(now, month_start_date)
    return month_range(now, month_start_date)


def previous_month_range(today: date, month_start_date: Optional[int]) -> Period:
    yesterday = start_of_day(today - timedelta(days=1))
    return month_range(yesterday, month_start_date)


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    month_start_date: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Period:
    now = now or utcnow()
    if period == "all":
        return Period("all", datetime(1970, 1, 1), end_of_day(now.date()))
    if period == "week":
        return week_range(now, month_start_date)
    if period == "last_cycle":
        current = month_range(now, month_start_date)
        return previous_month_range(current.first_day, month_start_date)
    if period == "custom":
        if not start or not end:
            raise InvalidInputError("Custom period requires start and end dates")
        try:
            start_date = date.fromisoformat(start)
            end_date = date.fromisoformat(end)
        except ValueError as exc:
            raise InvalidInputError("Dates must use YYYY-MM-DD") from exc
        if start_date > end_date:
            raise InvalidInputError("Start date must be before end date")
        return Period("custom", start_of_day(start_date), end_of_day(end_date))
    if period and period != "cycle":
        raise InvalidInputError(f"Unknown period: {period}")

    return month_range(now, month_start_date)


def format_date_range(period: Period) -> str:
    def fmt(day: date) -> str:
        return f"{day.day} {day.strftime('%B %Y')}"

    return f"{fmt(period.first_day)} - {fmt(period.last_day)}"
