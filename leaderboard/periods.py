# leaderboard/periods.py
"""
UTC period arithmetic for the leaderboard.

Anchors are dates: the day itself, the Monday of the ISO week, or the first
of the month. Window bounds are naive UTC datetimes, half-open [start, end).
"""
from datetime import date, datetime, timedelta, timezone
from typing import Tuple, Union

DAILY = "daily"
WEEKLY = "weekly"
MONTHLY = "monthly"
PERIOD_TYPES = (DAILY, WEEKLY, MONTHLY)

CALENDAR = "calendar"
ROLLING = "rolling"
WINDOW_POLICIES = (CALENDAR, ROLLING)

ROLLING_DAYS = {DAILY: 1, WEEKLY: 7, MONTHLY: 30}


def as_utc_naive(moment: datetime) -> datetime:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def _as_date(moment: Union[date, datetime]) -> date:
    if isinstance(moment, datetime):
        return as_utc_naive(moment).date()
    return moment


def _midnight(day: date) -> datetime:
    return datetime(day.year, day.month, day.day)


def _check_kind(kind: str):
    if kind not in PERIOD_TYPES:
        raise ValueError(f"Unknown period type '{kind}'")


def period_start(kind: str, moment: Union[date, datetime]) -> date:
    """Anchor of the period containing `moment`."""
    _check_kind(kind)
    day = _as_date(moment)
    if kind == DAILY:
        return day
    if kind == WEEKLY:
        return day - timedelta(days=day.weekday())
    return day.replace(day=1)


def next_period_start(kind: str, anchor: date) -> date:
    _check_kind(kind)
    if kind == DAILY:
        return anchor + timedelta(days=1)
    if kind == WEEKLY:
        return anchor + timedelta(days=7)
    if anchor.month == 12:
        return date(anchor.year + 1, 1, 1)
    return date(anchor.year, anchor.month + 1, 1)


def previous_period_start(kind: str, anchor: date) -> date:
    _check_kind(kind)
    if kind == DAILY:
        return anchor - timedelta(days=1)
    if kind == WEEKLY:
        return anchor - timedelta(days=7)
    return (anchor - timedelta(days=1)).replace(day=1)


def period_bounds(kind: str, anchor: date) -> Tuple[datetime, datetime]:
    return _midnight(anchor), _midnight(next_period_start(kind, anchor))


def completed_window(kind: str, now: datetime, policy: str = CALENDAR) -> Tuple[date, datetime, datetime]:
    """
    Most recent fully elapsed window for `kind` as (anchor, start, end).

    calendar: yesterday, the previous Monday-based week, the previous month.
    rolling:  the trailing 1 / 7 / 30 days ending today 00:00 UTC, anchored
              at the window start.
    """
    _check_kind(kind)
    today = _as_date(now)

    if policy == CALENDAR:
        anchor = previous_period_start(kind, period_start(kind, today))
        start, end = period_bounds(kind, anchor)
        return anchor, start, end

    if policy == ROLLING:
        end = _midnight(today)
        start = end - timedelta(days=ROLLING_DAYS[kind])
        return start.date(), start, end

    raise ValueError(f"Unknown window policy '{policy}'")
