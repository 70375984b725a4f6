"""Reward calendar helpers.

All streak and pause arithmetic happens on calendar dates in one reference
zone (``REWARDS_TIMEZONE``). Never subtract wall-clock datetimes to count days.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from crave.core.config import settings

TodayProvider = Callable[[], date]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def reward_zone(name: Optional[str] = None) -> ZoneInfo:
    return ZoneInfo(name or settings.REWARDS_TIMEZONE or "UTC")


def today(zone_name: Optional[str] = None, *, now: Optional[datetime] = None) -> date:
    """Calendar date of ``now`` (default: current instant) in the reward zone."""
    moment = now or utc_now()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(reward_zone(zone_name)).date()


def window_end(start: date, days: int) -> date:
    """Inclusive last day of a window of ``days`` whole days starting at ``start``."""
    if days < 1:
        raise ValueError("days must be >= 1")
    return start + timedelta(days=days - 1)


def days_remaining(end: date, on: date) -> int:
    """Whole days left in a window ending on ``end``, counting ``on`` itself."""
    return max(0, (end - on).days + 1)
