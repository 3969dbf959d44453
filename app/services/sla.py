# File: app/services/sla.py
"""SLA clock: elapsed time, tier and dashboard label for an issue. Pure, never writes."""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from app.models.issue import Issue

SLA_HOURS = {1: 72, 2: 120, 3: 168}
WATCH_HOURS = 48
MAX_TIER = 3


class SlaLabel:
    ON_TRACK = "ON_TRACK"
    WATCH = "WATCH"
    WARNING = "WARNING"
    URGENT = "URGENT"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class SlaStatus:
    hours_elapsed: float
    tier: int
    label: str
    next_deadline_hours: Optional[int]
    hours_until_next: float


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def hours_between(start: datetime, end: datetime) -> float:
    return (as_utc(end) - as_utc(start)).total_seconds() / 3600


def tier_for_hours(hours: float) -> int:
    tier = 0
    for level, threshold in sorted(SLA_HOURS.items()):
        if hours >= threshold:
            tier = level
    return min(tier, MAX_TIER)


def label_for(stored_tier: int, hours_elapsed: float) -> str:
    # the stored tier is a high-water mark: once escalated, the label stays escalated
    if stored_tier >= 3:
        return SlaLabel.CRITICAL
    if stored_tier >= 2:
        return SlaLabel.URGENT
    if stored_tier >= 1:
        return SlaLabel.WARNING
    if hours_elapsed >= WATCH_HOURS:
        return SlaLabel.WATCH
    return SlaLabel.ON_TRACK


def sla_clock_start(issue: Issue) -> datetime:
    return issue.assigned_at or issue.created_at


def classify(issue: Issue, now: Optional[datetime] = None) -> SlaStatus:
    now = now or utcnow()
    hours = max(0.0, hours_between(sla_clock_start(issue), now))
    next_deadline = next((h for _, h in sorted(SLA_HOURS.items()) if hours < h), None)
    until = max(0.0, next_deadline - hours) if next_deadline is not None else 0.0
    return SlaStatus(
        hours_elapsed=round(hours, 1),
        tier=tier_for_hours(hours),
        label=label_for(issue.sla_tier or 0, hours),
        next_deadline_hours=next_deadline,
        hours_until_next=round(until, 1),
    )
