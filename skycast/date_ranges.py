"""
Date range rules.

The weather provider only has ~a year of history and a 5-day forecast horizon,
so every stored range is checked here before any write. Invalid ranges come
back with every violation listed and a safe default (today .. today+5).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional, Union

from dateutil.relativedelta import relativedelta

FORECAST_HORIZON_DAYS = 5
HISTORY_LIMIT = relativedelta(years=1)

DateLike = Union[str, date, None]


@dataclass(frozen=True)
class DateRange:
    start_date: date
    end_date: date


@dataclass(frozen=True)
class DateRangeValidation:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    adjusted_range: Optional[DateRange] = None


def parse_date(value: DateLike) -> Optional[date]:
    """ISO calendar date (YYYY-MM-DD) or None when it doesn't parse."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    # tolerate full timestamps ("2026-10-19T00:00:00"), keep only the day
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def default_range(today: date) -> DateRange:
    return DateRange(today, today + timedelta(days=FORECAST_HORIZON_DAYS))


def validate_date_range(start: DateLike, end: DateLike, today: Optional[date] = None) -> DateRangeValidation:
    """
    Check a proposed (start, end) pair against provider limits.

    All violations are collected. Unparseable dates skip the ordering and
    horizon checks, which would be meaningless without real dates.
    """
    today = today or date.today()
    errors: List[str] = []

    start_d = parse_date(start)
    end_d = parse_date(end)

    if start_d is None:
        errors.append("Start date is invalid")
    if end_d is None:
        errors.append("End date is invalid")

    if not errors:
        horizon = today + timedelta(days=FORECAST_HORIZON_DAYS)

        if start_d > end_d:
            errors.append("Start date cannot be after end date")

        if start_d < today - HISTORY_LIMIT:
            errors.append("Historical weather data is limited to the past year")

        if start_d > horizon:
            errors.append(f"Weather forecasts are only available for the next {FORECAST_HORIZON_DAYS} days")

        if end_d > horizon:
            errors.append(
                f"For long-term planning beyond {FORECAST_HORIZON_DAYS} days, "
                "consider using current weather patterns and seasonal trends"
            )

    if errors:
        return DateRangeValidation(is_valid=False, errors=errors, adjusted_range=default_range(today))
    return DateRangeValidation(is_valid=True, errors=[], adjusted_range=DateRange(start_d, end_d))
