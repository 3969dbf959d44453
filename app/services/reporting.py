# File: app/services/reporting.py
"""Read models: dashboard counts, ward performance and rankings, hotspots, the heatmap,
the resolved feed, the critical backlog and its weekly digest."""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import Numeric, case, cast, func
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.escalation_log import EscalationLog
from app.models.issue import CLOSED_STATES, Issue, IssueCategory, IssueState
from app.models.resolution_proof import ResolutionProof
from app.models.ward import Ward
from app.services.notifications import DispatchResult, NotificationDispatcher
from app.services.sla import SLA_HOURS, SlaLabel, as_utc, classify, hours_between, utcnow

logger = logging.getLogger(__name__)

# ward ranking: score = resolution rate * 0.6 + response score * 0.4
RESOLUTION_WEIGHT = 0.6
RESPONSE_WEIGHT = 0.4
# average response at or beyond this many hours scores 0
RESPONSE_HORIZON_HOURS = 168.0
# ~100 m cells at Delhi's latitude
HOTSPOT_GRID_DECIMALS = 3


def _pct(part: int, whole: int) -> Optional[float]:
    return round(part * 100.0 / whole, 1) if whole else None


def _count_if(condition):
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


def _roots(q):
    # merged children are support, not separate work
    return q.filter(Issue.parent_id.is_(None), Issue.state != IssueState.MERGED)


def _ward_aggregates(db: Session) -> dict[int, dict]:
    """Per-ward counts in one GROUP BY, plus assigned→resolved hours of resolved issues."""
    rows = _roots(
        db.query(
            Issue.ward_id,
            func.count(Issue.id),
            _count_if(Issue.state == IssueState.RESOLVED),
            _count_if(Issue.sla_tier >= 1),
            _count_if(Issue.is_emergency.is_(True)),
            func.coalesce(func.sum(Issue.supporter_count), 0),
            func.coalesce(func.sum(Issue.accept_count), 0),
            func.coalesce(func.sum(Issue.reject_count), 0),
        ).filter(Issue.ward_id.isnot(None))
    ).group_by(Issue.ward_id).all()

    agg = {
        ward_id: {
            "total": int(total),
            "resolved": int(resolved),
            "escalated": int(escalated),
            "emergency": int(emergency),
            "supporters": int(supporters),
            "accepts": int(accepts),
            "rejects": int(rejects),
            "durations": [],
        }
        for ward_id, total, resolved, escalated, emergency, supporters, accepts, rejects in rows
    }
    # interval arithmetic differs per dialect; only the resolved rows' two timestamps are fetched
    timed = _roots(
        db.query(Issue.ward_id, Issue.assigned_at, Issue.resolved_at).filter(
            Issue.ward_id.isnot(None),
            Issue.state == IssueState.RESOLVED,
            Issue.assigned_at.isnot(None),
            Issue.resolved_at.isnot(None),
        )
    ).all()
    for ward_id, assigned_at, resolved_at in timed:
        agg[ward_id]["durations"].append(hours_between(assigned_at, resolved_at))
    return agg


EMPTY_AGGREGATE = {"total": 0, "resolved": 0, "escalated": 0, "emergency": 0, "supporters": 0, "accepts": 0, "rejects": 0, "durations": []}


def _avg(values: list[float]) -> Optional[float]:
    return round(sum(values) / len(values), 1) if values else None


def ward_performance(db: Session) -> list[dict]:
    """Per-ward resolution rate, average resolution hours, on-time % and escalation %."""
    agg = _ward_aggregates(db)
    out = []
    for w in db.query(Ward).order_by(Ward.id.asc()).all():
        a = agg.get(w.id, EMPTY_AGGREGATE)
        on_time = sum(1 for h in a["durations"] if h <= SLA_HOURS[1])
        out.append({
            "ward_id": w.id,
            "ward_name": w.name,
            "zone": w.zone,
            "officer_name": w.officer_name,
            "total_issues": a["total"],
            "resolved_count": a["resolved"],
            "pending_count": a["total"] - a["resolved"],
            "escalated_count": a["escalated"],
            "emergency_count": a["emergency"],
            "resolution_rate_pct": _pct(a["resolved"], a["total"]),
            "avg_resolution_hours": _avg(a["durations"]),
            "on_time_pct": _pct(on_time, a["resolved"]),
            "escalation_rate_pct": _pct(a["escalated"], a["total"]),
        })
    out.sort(key=lambda r: (-r["resolved_count"], -r["total_issues"], r["ward_id"]))
    return out


def response_score(avg_hours: Optional[float]) -> float:
    """1.0 for instant resolution, falling linearly to 0 at RESPONSE_HORIZON_HOURS."""
    if avg_hours is None:
        return 0.0
    return max(0.0, 1.0 - avg_hours / RESPONSE_HORIZON_HOURS)


def ward_rankings(db: Session) -> list[dict]:
    agg = _ward_aggregates(db)
    rows = []
    for w in db.query(Ward).all():
        a = agg.get(w.id, EMPTY_AGGREGATE)
        rate = a["resolved"] / a["total"] if a["total"] else 0.0
        avg_hours = _avg(a["durations"])
        resp = response_score(avg_hours)
        rows.append({
            "ward_id": w.id,
            "ward_name": w.name,
            "zone": w.zone,
            "officer_name": w.officer_name,
            "total": a["total"],
            "resolved": a["resolved"],
            "pending": a["total"] - a["resolved"],
            "avg_response_hours": avg_hours,
            "avg_supporters": round(a["supporters"] / a["total"], 1) if a["total"] else None,
            "total_accepts": a["accepts"],
            "total_rejects": a["rejects"],
            "resolution_rate": round(rate, 4),
            "response_time_score": round(resp, 4),
            "score": round(rate * RESOLUTION_WEIGHT + resp * RESPONSE_WEIGHT, 4),
        })
    rows.sort(key=lambda r: (-r["score"], -r["resolved"], r["ward_id"]))
    for rank, row in enumerate(rows, start=1):
        row["rank"] = rank
    return rows


def heatmap_points(
    db: Session,
    days: int = 90,
    category: Optional[IssueCategory] = None,
    now: Optional[datetime] = None,
) -> list[dict]:
    """Root issues with a coordinate from the last `days`; supporters are the heat value."""
    since = (now or utcnow()) - timedelta(days=days)
    q = db.query(Issue.id, Issue.lat, Issue.lon, Issue.supporter_count, Issue.category, Issue.state).filter(
        Issue.parent_id.is_(None),
        Issue.lat.isnot(None),
        Issue.lon.isnot(None),
        Issue.created_at > since,
    )
    if category:
        q = q.filter(Issue.category == category)
    return [
        {"id": i, "lat": lat, "lon": lon, "value": supporters or 1, "category": cat.value, "state": state.value}
        for i, lat, lon, supporters, cat, state in q.order_by(Issue.id.asc()).all()
    ]


def repeat_offenders(db: Session, days: int = 90, min_count: int = 3, now: Optional[datetime] = None) -> list[dict]:
    """Grid cells where the same category keeps being reported: infrastructure that keeps failing."""
    since = (now or utcnow()) - timedelta(days=days)
    cell_lat = func.round(cast(Issue.lat, Numeric), HOTSPOT_GRID_DECIMALS)
    cell_lon = func.round(cast(Issue.lon, Numeric), HOTSPOT_GRID_DECIMALS)
    incidents = func.count(Issue.id)
    supporters = func.coalesce(func.sum(Issue.supporter_count), 0)
    rows = (
        db.query(
            Issue.category,
            incidents,
            func.avg(Issue.lat),
            func.avg(Issue.lon),
            func.min(Issue.created_at),
            func.max(Issue.created_at),
            supporters,
            Ward.name,
            Ward.zone,
        )
        .outerjoin(Ward, Ward.id == Issue.ward_id)
        .filter(Issue.parent_id.is_(None), Issue.lat.isnot(None), Issue.lon.isnot(None), Issue.created_at > since)
        .group_by(Issue.category, Ward.name, Ward.zone, cell_lat, cell_lon)
        .having(incidents >= min_count)
        .order_by(incidents.desc(), supporters.desc())
        .all()
    )
    return [
        {
            "category": cat.value if isinstance(cat, IssueCategory) else cat,
            "incident_count": int(n),
            "lat": float(lat),
            "lon": float(lon),
            "first_seen": as_utc(first),
            "last_seen": as_utc(last),
            "total_supporters": int(total),
            "ward_name": ward_name,
            "zone": zone,
        }
        for cat, n, lat, lon, first, last, total, ward_name, zone in rows
    ]


def resolved_feed(db: Session, limit: int = 50, offset: int = 0) -> list[dict]:
    """Resolved root issues with their proof, newest first."""
    rows = (
        db.query(Issue, Ward, ResolutionProof)
        .outerjoin(Ward, Ward.id == Issue.ward_id)
        .outerjoin(ResolutionProof, ResolutionProof.issue_id == Issue.id)
        .filter(Issue.state == IssueState.RESOLVED, Issue.parent_id.is_(None))
        .order_by(Issue.resolved_at.is_(None), Issue.resolved_at.desc(), Issue.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return [
        {
            "id": issue.id,
            "category": issue.category.value,
            "description": issue.description,
            "location_text": issue.location_text,
            "lat": issue.lat,
            "lon": issue.lon,
            "before_photo_ref": issue.photo_ref,
            "after_photo_ref": proof.after_photo_ref if proof else None,
            "distance_m": proof.distance_m if proof else None,
            "resolved_at": issue.resolved_at,
            "supporter_count": issue.supporter_count,
            "accept_count": issue.accept_count or 0,
            "reject_count": issue.reject_count or 0,
            "resolution_accepted": bool(issue.resolution_accepted),
            "ward_name": ward.name if ward else None,
            "zone": ward.zone if ward else None,
            "officer_name": ward.officer_name if ward else None,
        }
        for issue, ward, proof in rows
    ]


def critical_backlog(db: Session, now: Optional[datetime] = None) -> list[dict]:
    now = now or utcnow()
    rows = (
        db.query(Issue, Ward)
        .outerjoin(Ward, Ward.id == Issue.ward_id)
        .filter(Issue.sla_tier >= 3, Issue.state.notin_(CLOSED_STATES))
        .order_by(Issue.assigned_at.asc(), Issue.id.asc())
        .all()
    )
    return [
        {
            "id": issue.id,
            "category": issue.category.value,
            "state": issue.state.value,
            "description": issue.description,
            "location_text": issue.location_text,
            "sla_tier": issue.sla_tier,
            "supporter_count": issue.supporter_count,
            "assigned_at": issue.assigned_at,
            "last_escalated_at": issue.last_escalated_at,
            "ward_name": ward.name if ward else None,
            "zone": ward.zone if ward else None,
            "officer_name": ward.officer_name if ward else None,
            "officer_email": ward.officer_email if ward else None,
            "hours_pending": int(hours_between(issue.assigned_at, now)) if issue.assigned_at else None,
        }
        for issue, ward in rows
    ]


def escalation_history(db: Session, issue_id: int) -> list[EscalationLog]:
    return (
        db.query(EscalationLog)
        .filter(EscalationLog.issue_id == issue_id)
        .order_by(EscalationLog.sent_at.asc(), EscalationLog.id.asc())
        .all()
    )


def send_backlog_digest(db: Session, dispatcher: NotificationDispatcher, now: Optional[datetime] = None) -> Optional[DispatchResult]:
    """Email the commissioner the critical backlog. Nothing is sent when the backlog is empty."""
    rows = critical_backlog(db, now)
    if not rows:
        logger.info("Backlog digest: nothing at tier 3")
        return None
    result = dispatcher.send_digest(settings.commissioner_email, rows, settings.commissioner_name)
    if result.success:
        logger.info("Backlog digest with %d issue(s) sent to %s", len(rows), settings.commissioner_email)
    else:
        logger.warning("Backlog digest to %s failed: %s", settings.commissioner_email, result.detail)
    return result


def open_roots_query(db: Session):
    return db.query(Issue).filter(Issue.parent_id.is_(None), Issue.state.notin_(CLOSED_STATES))


def dashboard_summary(db: Session, now: Optional[datetime] = None) -> dict:
    """Open root issues counted by SLA label. WATCH is still on track for this view."""
    now = now or utcnow()
    counts = {"total": 0, "on_track": 0, "watch": 0, "warning": 0, "urgent": 0, "critical": 0, "emergency": 0, "unrouted": 0}
    for issue in open_roots_query(db).all():
        label = classify(issue, now).label
        counts["total"] += 1
        if label in (SlaLabel.ON_TRACK, SlaLabel.WATCH):
            counts["on_track"] += 1
            if label == SlaLabel.WATCH:
                counts["watch"] += 1
        else:
            counts[label.lower()] += 1
        if issue.is_emergency:
            counts["emergency"] += 1
        if issue.ward_id is None:
            counts["unrouted"] += 1
    return counts
