from datetime import date

import pytest

from periods import (
    add_months,
    budget_interval,
    current_month_key,
    is_valid_month_key,
    month_range,
    months_between,
    previous_month,
    resolve_period,
)


def test_budget_month_runs_from_previous_payday() -> None:
    period = budget_interval("2025-03", 25)
    assert period.start == date(2025, 2, 25)
    assert period.end == date(2025, 3, 24)


def test_january_interval_starts_in_previous_year() -> None:
    period = budget_interval("2025-01", 25)
    assert period.start == date(2024, 12, 25)
    assert period.end == date(2025, 1, 24)


def test_payday_on_the_first_covers_the_previous_calendar_month() -> None:
    period = budget_interval("2024-07", 1)
    assert period.start == date(2024, 6, 1)
    assert period.end == date(2024, 6, 30)


def test_payday_past_month_end_clamps_and_stays_contiguous() -> None:
    february = budget_interval("2025-02", 31)
    march = budget_interval("2025-03", 31)
    assert february.start == date(2025, 1, 31)
    assert february.end == date(2025, 2, 27)
    assert march.start == date(2025, 2, 28)
    assert march.end == date(2025, 3, 30)


def test_invalid_month_keys() -> None:
    assert budget_interval("2025-13", 25) is None
    assert budget_interval("garbage", 25) is None
    assert not is_valid_month_key("2025-3")
    assert not is_valid_month_key(None)
    assert is_valid_month_key("2025-03")


def test_current_month_switches_on_payday() -> None:
    assert current_month_key(date(2025, 3, 24), 25) == "2025-03"
    assert current_month_key(date(2025, 3, 25), 25) == "2025-04"
    assert current_month_key(date(2025, 12, 28), 25) == "2026-01"


def test_month_arithmetic() -> None:
    assert add_months("2025-11", 3) == "2026-02"
    assert add_months("2025-01", -1) == "2024-12"
    assert months_between("2025-01", "2025-04") == 3
    assert months_between("2025-04", "2025-01") == -3
    assert month_range("2024-11", "2025-02") == [
        "2024-11",
        "2024-12",
        "2025-01",
        "2025-02",
    ]


def test_resolve_period_prefers_custom_range() -> None:
    period = resolve_period("2025-03", "2025-01-01", "2025-01-31", payday=25)
    assert period.slug == "custom"
    assert period.start == date(2025, 1, 1)
    assert period.end == date(2025, 1, 31)


def test_resolve_period_defaults_to_current_budget_month() -> None:
    period = resolve_period(None, None, None, payday=25, today=date(2025, 3, 26))
    assert period.slug == "2025-04"
    assert period.start == date(2025, 3, 25)


def test_resolve_period_rejects_bad_input() -> None:
    with pytest.raises(ValueError):
        resolve_period(None, "2025-01-01", None, payday=25)
    with pytest.raises(ValueError):
        resolve_period(None, "2025-02-01", "2025-01-01", payday=25)
    with pytest.raises(ValueError):
        resolve_period("2025-00", None, None, payday=25)


def test_first_representable_month_has_no_interval() -> None:
    assert budget_interval("0001-01", 25) is None
    assert budget_interval("0001-02", 25).start == date(1, 1, 25)
    assert previous_month("0001-01") is None
    assert previous_month("0001-02") == "0001-01"
    assert previous_month("garbage") is None
