"""Race off-time normalization.

Race cards store the off-time as ``HH:MM`` on a half-day clock: an
afternoon race at 13:35 is stored as ``01:35``. Hours in
``PM_HOUR_MIN..pm_hour_max`` are afternoon hours; everything else (00,
the late-morning hours above the boundary, 12 and 13-23) is literal.

The boundary differs across data revisions (9 in some feeds, 11 in
others), so it is a named constant that callers can override.
"""

import re
from collections.abc import Callable
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

PM_HOUR_MIN = 1
PM_HOUR_MAX = 11

LONDON_TZ = "Europe/London"

_TIME_PATTERN = re.compile(r"^\s*(\d{1,2}):(\d{2})")


def _parse(value: object, pm_hour_max: int) -> tuple[int, int] | None:
    if not value or not isinstance(value, str):
        return None
    match = _TIME_PATTERN.match(value)
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    if PM_HOUR_MIN <= hour <= pm_hour_max:
        hour += 12
    return hour, minute


def race_time_to_minutes(value: object, pm_hour_max: int = PM_HOUR_MAX) -> int:
    """
    Convert a stored off-time to true minutes since midnight.

    Returns 0 for empty or unparseable input; never raises.

    >>> race_time_to_minutes("01:35")
    815
    >>> race_time_to_minutes("14:10")
    850
    """
    parsed = _parse(value, pm_hour_max)
    if parsed is None:
        return 0
    hour, minute = parsed
    return hour * 60 + minute


def format_race_time(value: object, pm_hour_max: int = PM_HOUR_MAX) -> str:
    """Format a stored off-time as a 24-hour ``HH:MM`` string ("" if invalid)."""
    parsed = _parse(value, pm_hour_max)
    if parsed is None:
        return ""
    return f"{parsed[0]:02d}:{parsed[1]:02d}"


def compare_race_times(a: object, b: object, pm_hour_max: int = PM_HOUR_MAX) -> int:
    """Compare two stored off-times chronologically (negative, zero, positive)."""
    return race_time_to_minutes(a, pm_hour_max) - race_time_to_minutes(b, pm_hour_max)


def race_off_datetime(
    race_date: date,
    off_time: object,
    tz: str = LONDON_TZ,
    pm_hour_max: int = PM_HOUR_MAX,
) -> datetime:
    """Combine a race date and stored off-time into an aware civil datetime."""
    minutes = race_time_to_minutes(off_time, pm_hour_max)
    midnight = datetime.combine(race_date, time(0, 0), tzinfo=ZoneInfo(tz))
    return midnight + timedelta(minutes=minutes)


def london_now(
    tz: str = LONDON_TZ,
    clock: Callable[[], datetime] | None = None,
) -> datetime:
    """Current civil time on the race-day clock."""
    current = clock() if clock else datetime.now(ZoneInfo("UTC"))
    return current.astimezone(ZoneInfo(tz))
