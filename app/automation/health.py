"""
Stage health — traffic-light classification of an entry's time in stage.

    days_in_stage     = floor((now - entered_stage_at) / 1 day)
    warning_threshold = floor(sla_days * 0.8)

    red    if days_in_stage >  sla_days
    yellow if days_in_stage >= warning_threshold
    green  otherwise
"""
import math
from datetime import datetime, timedelta, timezone

from app.config import (
    DEFAULT_SLA_DAYS, HEALTH_WARNING_RATIO,
    HEALTH_GREEN, HEALTH_YELLOW, HEALTH_RED,
)


def as_utc(dt: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def days_between(start: datetime, end: datetime) -> int:
    """Whole days elapsed from start to end, floored."""
    return (as_utc(end) - as_utc(start)) // timedelta(days=1)


def warning_threshold(sla_days: int) -> int:
    return math.floor(sla_days * HEALTH_WARNING_RATIO)


def classify(days_in_stage: int, sla_days: int = None) -> str:
    if not sla_days or sla_days <= 0:
        sla_days = DEFAULT_SLA_DAYS
    if days_in_stage > sla_days:
        return HEALTH_RED
    if days_in_stage >= warning_threshold(sla_days):
        return HEALTH_YELLOW
    return HEALTH_GREEN


def compute_health(now: datetime, entered_stage_at: datetime, sla_days: int = None) -> str:
    """Health for an entry that entered its stage at `entered_stage_at`."""
    if entered_stage_at is None:
        return HEALTH_GREEN
    return classify(days_between(entered_stage_at, now), sla_days)
