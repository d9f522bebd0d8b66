"""Week key helpers: plans are keyed by the ISO date of their Monday."""

import os
from datetime import date, datetime, timedelta
from typing import List, Optional, Union

import pytz

BLUEPRINT_TIMEZONE = os.getenv("BLUEPRINT_TIMEZONE", "UTC")
HISTORY_WEEKS = 8

DAY_NAMES = [
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
]


def current_week_monday(now: Optional[datetime] = None, tz_name: str = BLUEPRINT_TIMEZONE) -> date:
    """Monday of the current week in the configured timezone."""
    tz = pytz.timezone(tz_name)
    if now is None:
        local_now = datetime.now(tz)
    elif now.tzinfo is None:
        local_now = tz.localize(now)
    else:
        local_now = now.astimezone(tz)
    today = local_now.date()
    return today - timedelta(days=today.weekday())


def parse_week_key(value: Union[str, date]) -> date:
    """Parse a YYYY-MM-DD week key and snap it to its Monday.

    Raises:
        ValueError: If the string is not a valid date
    """
    if isinstance(value, datetime):
        value = value.date()
    if not isinstance(value, date):
        value = datetime.strptime(str(value).strip(), "%Y-%m-%d").date()
    return value - timedelta(days=value.weekday())


def week_key(week_start: date) -> str:
    return week_start.isoformat()


def previous_week_starts(week_start: date, count: int = HISTORY_WEEKS) -> List[date]:
    """The `count` Mondays before week_start, most recent first."""
    return [week_start - timedelta(days=7 * i) for i in range(1, count + 1)]
