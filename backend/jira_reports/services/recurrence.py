"""
Next-run calculation for scheduled reports.

All wall-clock math happens in the schedule's own timezone: "today", the
target time of day, weekday indices (0=Sunday .. 6=Saturday) and day of month
are read in that zone, and the returned datetime is timezone-aware.
"""

import calendar
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from jira_reports.schemas.report_schemas import ReportFrequency, ReportScheduleConfig

logger = logging.getLogger(__name__)


def parse_time_of_day(value: str) -> Optional[Tuple[int, int]]:
    """Parse "HH:MM" into (hour, minute), or None if it is not a valid 24h time"""
    parts = (value or "").split(":")
    if len(parts) != 2:
        return None
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return hour, minute


def resolve_timezone(name: str) -> Optional[ZoneInfo]:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return None


def _numeric_days(days: List[str]) -> List[int]:
    values = []
    for day in days:
        try:
            values.append(int(day))
        except (TypeError, ValueError):
            continue
    return sorted(set(values))


def _js_weekday(moment: datetime) -> int:
    """Weekday with Sunday=0, matching the stored day indices"""
    return (moment.weekday() + 1) % 7


def validate_schedule(schedule: ReportScheduleConfig) -> Tuple[bool, Optional[str]]:
    """
    Check a schedule for configuration errors.

    Returns:
        (True, None) when the schedule is usable, otherwise (False, message).
    """
    if parse_time_of_day(schedule.time) is None:
        return False, f"Invalid time '{schedule.time}', expected HH:MM in 24-hour format"

    if resolve_timezone(schedule.timezone) is None:
        return False, f"Unknown timezone '{schedule.timezone}'"

    frequency = ReportFrequency(schedule.frequency)
    if frequency == ReportFrequency.DAILY:
        return True, None

    invalid = [day for day in schedule.days if not day.isdigit()]
    if invalid:
        return False, f"Invalid day values: {', '.join(invalid)}"

    days = _numeric_days(schedule.days)
    if not days:
        return False, f"{frequency.value.title()} schedules need at least one day"

    if frequency == ReportFrequency.WEEKLY and not all(0 <= d <= 6 for d in days):
        return False, "Weekly days must be weekday indices between 0 (Sunday) and 6 (Saturday)"
    if frequency == ReportFrequency.MONTHLY and not all(1 <= d <= 31 for d in days):
        return False, "Monthly days must be between 1 and 31"

    return True, None


def next_fire_time(schedule: ReportScheduleConfig, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Calculate the next time a schedule should fire.

    Args:
        schedule: Recurrence rule
        now: Reference time. Naive values are read as wall-clock time in the
            schedule's timezone. Defaults to the current time.

    Returns:
        Timezone-aware datetime, or None if the schedule is disabled or invalid.
    """
    if not schedule.enabled:
        return None

    parsed = parse_time_of_day(schedule.time)
    if parsed is None:
        return None
    hour, minute = parsed

    tz = resolve_timezone(schedule.timezone)
    if tz is None:
        return None

    if now is None:
        now = datetime.now(tz)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=tz)
    else:
        now = now.astimezone(tz)

    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target > now:
        return target

    frequency = ReportFrequency(schedule.frequency)
    if frequency == ReportFrequency.DAILY:
        return _at(target.date() + timedelta(days=1), hour, minute, tz)

    days = _numeric_days(schedule.days)
    if not days:
        logger.error("Schedule with frequency %s has no days configured", frequency.value)
        return None

    if frequency == ReportFrequency.WEEKLY:
        today = _js_weekday(now)
        later = [d for d in days if d > today]
        if later:
            delta = later[0] - today
        else:
            delta = 7 - today + days[0]
        return _at(target.date() + timedelta(days=delta), hour, minute, tz)

    # Monthly; days past the end of a month fall on its last day
    days_in_month = calendar.monthrange(now.year, now.month)[1]
    later = [day for day in (min(d, days_in_month) for d in days) if day > now.day]
    if later:
        return _at(target.date().replace(day=later[0]), hour, minute, tz)

    year, month = (now.year + 1, 1) if now.month == 12 else (now.year, now.month + 1)
    day = min(days[0], calendar.monthrange(year, month)[1])
    return datetime(year, month, day, hour, minute, tzinfo=tz)


def _at(day, hour: int, minute: int, tz: ZoneInfo) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=tz)
