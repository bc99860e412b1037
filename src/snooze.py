"""Snooze target calculation."""

from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta

import holidays


def _at_local_hour(day: date, hour: int) -> datetime:
    hour = min(max(hour, 0), 23)
    # Naive values are resolved against the system zone, DST included
    return datetime.combine(day, time(hour=hour)).astimezone(UTC)


def snooze_until_tomorrow(now: datetime, default_hour: int) -> datetime:
    """
    Return tomorrow at `default_hour` in the local timezone.

    Args:
        now: Current time (timezone-aware)
        default_hour: Local hour of day (clamped to 0-23)

    Returns:
        Target instant as a UTC datetime
    """
    local_now = now.astimezone()
    return _at_local_hour(local_now.date() + timedelta(days=1), default_hour)


def is_business_day(day: date, country_holidays: holidays.HolidayBase) -> bool:
    """Check if a date is a weekday (Mon-Fri) that is not a holiday."""
    return day.weekday() < 5 and day not in country_holidays


def snooze_until_next_business_day(now: datetime, default_hour: int, country: str) -> datetime:
    """
    Return the next business day at `default_hour` in the local timezone.

    Business days are Monday-Friday, excluding holidays defined by the
    country's holiday calendar.

    Args:
        now: Current time (timezone-aware)
        default_hour: Local hour of day (clamped to 0-23)
        country: Country code for holiday calendar (e.g., 'US', 'KR')

    Returns:
        Target instant as a UTC datetime

    Examples:
        - Monday 15:00 -> Tuesday at default_hour
        - Friday 15:00 -> Monday at default_hour
        - Wednesday before a Thursday holiday -> Friday at default_hour
    """
    country_holidays = holidays.country_holidays(country)
    local_now = now.astimezone()
    day = local_now.date() + timedelta(days=1)
    while not is_business_day(day, country_holidays):
        day += timedelta(days=1)
    return _at_local_hour(day, default_hour)
