"""Time helpers shared by models and services.

All timestamps are stored as naive UTC datetimes so SQLite and PostgreSQL
round-trip them identically.
"""
import math
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes elapsed from start to end, floored."""
    return math.floor((end - start).total_seconds() / 60)


def format_duration(minutes: int) -> str:
    """Render a minute count the way dashboards show dwell times."""
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    if minutes < 1440:
        hours, mins = divmod(minutes, 60)
        text = f"{hours} hour{'s' if hours != 1 else ''}"
        return f"{text} {mins} min" if mins else text
    days = minutes // 1440
    hours = (minutes % 1440) // 60
    text = f"{days} day{'s' if days != 1 else ''}"
    return f"{text} {hours} hr" if hours else text


def format_hours(hours: int) -> str:
    """Coarser rendering used for average resolution times."""
    if hours < 24:
        return f"{hours} hours"
    days, remaining = divmod(hours, 24)
    text = f"{days} day{'s' if days != 1 else ''}"
    return f"{text} {remaining}h" if remaining else text


def time_ago(then: datetime, now: datetime) -> str:
    minutes = minutes_between(then, now)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    if minutes < 1440:
        hours = minutes // 60
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    days = minutes // 1440
    return f"{days} day{'s' if days != 1 else ''} ago"
