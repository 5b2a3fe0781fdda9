import calendar
import re
from dataclasses import dataclass
from datetime import date
from typing import Iterator, Optional

_MONTH_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def days(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current = current + date.resolution


def parse_month_key(value: Optional[str]) -> Optional[tuple[int, int]]:
    if not value:
        return None
    match = _MONTH_KEY_RE.match(value)
    if not match:
        return None
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12 or year < 1:
        return None
    return year, month


def is_valid_month_key(value: Optional[str]) -> bool:
    return parse_month_key(value) is not None


def month_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def month_key_for_date(day: date) -> str:
    return month_key(day.year, day.month)


def add_months(key: str, count: int) -> str:
    parsed = parse_month_key(key)
    if parsed is None:
        raise ValueError(f"Invalid month key: {key}")
    year, month = parsed
    index = year * 12 + (month - 1) + count
    return month_key(index // 12, index % 12 + 1)


def previous_month(key: str) -> Optional[str]:
    """The month before ``key``, or ``None`` before year 1 or for invalid keys."""
    parsed = parse_month_key(key)
    if parsed is None or parsed == (1, 1):
        return None
    return add_months(key, -1)


def months_between(start: str, end: str) -> int:
    """Whole months from ``start`` to ``end``; negative when ``end`` is earlier."""
    a = parse_month_key(start)
    b = parse_month_key(end)
    if a is None or b is None:
        raise ValueError("Invalid month key")
    return (b[0] * 12 + b[1]) - (a[0] * 12 + a[1])


def month_range(start: str, end: str) -> list[str]:
    """Inclusive list of month keys from ``start`` to ``end``."""
    keys: list[str] = []
    current = start
    while current <= end:
        keys.append(current)
        current = add_months(current, 1)
    return keys


def _clamped_day(year: int, month: int, day: int) -> date:
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(max(day, 1), last))


def budget_interval(key: str, payday: int) -> Optional[Period]:
    """
    Budget month ``key`` runs from the payday of the previous calendar month up to
    the day before the payday of ``key`` itself. Paydays past the end of a short
    month clamp to its last day so that consecutive intervals stay contiguous.
    """
    parsed = parse_month_key(key)
    if parsed is None:
        return None
    year, month = parsed
    prev_index = year * 12 + (month - 1) - 1
    if prev_index < 12:
        return None
    start = _clamped_day(prev_index // 12, prev_index % 12 + 1, payday)
    end = _clamped_day(year, month, payday) - date.resolution
    return Period(key, start, end)


def current_month_key(today: date, payday: int) -> str:
    """The budget month whose interval contains ``today``."""
    this_payday = _clamped_day(today.year, today.month, payday)
    key = month_key_for_date(today)
    if today >= this_payday:
        return add_months(key, 1)
    return key


def resolve_period(
    month: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    payday: int,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    if start or end:
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)

    key = month or current_month_key(today, payday)
    period = budget_interval(key, payday)
    if period is None:
        raise ValueError(f"Invalid month key: {key}")
    return period
