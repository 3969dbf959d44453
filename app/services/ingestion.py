# File: app/services/ingestion.py
"""Submission pipeline: validate → route to a ward → find a duplicate → insert root or merged child."""
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.core.errors import IssueValidationError
from app.models.issue import CLOSED_STATES, Issue, IssueCategory, IssueState, Severity
from app.models.ward import Ward
from app.services.events import EventBroker, publish
from app.services.geo import bounding_box, haversine, resolve_ward
from app.services.lifecycle import locked_issue_query
from app.services.severity import refresh_emergency
from app.services.sla import utcnow

logger = logging.getLogger(__name__)

DUPLICATE_RADIUS_M = 50.0


@dataclass
class IngestResult:
    issue: Issue
    merged: bool
    ward: Optional[Ward]
    parent: Optional[Issue] = None

    @property
    def supporter_count(self) -> int:
        return (self.parent or self.issue).supporter_count


def _coerce_enum(enum_cls, value, field: str, default=None):
    if value is None or value == "":
        if default is not None:
            return default
        raise IssueValidationError(f"{field} is required", field=field)
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(m.value for m in enum_cls)
        raise IssueValidationError(f"Unknown {field} '{value}'. Valid: {valid}", field=field)


def validate_coordinate(lat, lon) -> tuple[Optional[float], Optional[float]]:
    if lat is None and lon is None:
        return None, None
    if lat is None or lon is None:
        raise IssueValidationError("coordinate needs both lat and lon", field="coordinate")
    try:
        lat, lon = float(lat), float(lon)
    except (TypeError, ValueError):
        raise IssueValidationError("coordinate must be numeric", field="coordinate")
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise IssueValidationError("coordinate must be finite", field="coordinate")
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        raise IssueValidationError("coordinate out of range", field="coordinate")
    return lat, lon


def find_duplicate(db: Session, category: IssueCategory, lat: float, lon: float) -> Optional[Issue]:
    """Earliest open root of the same category within DUPLICATE_RADIUS_M, row-locked.

    The bounding box only narrows the scan; the haversine check decides. A candidate
    is re-checked after its lock is taken, since it may have closed in the meantime.
    """
    min_lat, max_lat, min_lon, max_lon = bounding_box(lat, lon, DUPLICATE_RADIUS_M)
    candidates = (
        db.query(Issue.id, Issue.lat, Issue.lon)
        .filter(
            Issue.category == category,
            Issue.parent_id.is_(None),
            Issue.state.notin_(CLOSED_STATES),
            Issue.lat.isnot(None),
            Issue.lon.isnot(None),
            Issue.lat.between(min_lat, max_lat),
            Issue.lon.between(min_lon, max_lon),
        )
        .order_by(Issue.created_at.asc(), Issue.id.asc())
        .all()
    )
    for cand_id, cand_lat, cand_lon in candidates:
        if haversine(lat, lon, cand_lat, cand_lon) > DUPLICATE_RADIUS_M:
            continue
        parent = locked_issue_query(db, cand_id).first()
        if parent and parent.parent_id is None and parent.state not in CLOSED_STATES:
            return parent
    return None


def ingest(
    db: Session,
    category,
    description: Optional[str],
    lat: Optional[float] = None,
    lon: Optional[float] = None,
    severity=None,
    location_text: Optional[str] = None,
    reporter_ref: Optional[str] = None,
    photo_ref: Optional[str] = None,
    now: Optional[datetime] = None,
    broker: Optional[EventBroker] = None,
) -> IngestResult:
    # ---- validation (nothing is written before this passes) ----
    category = _coerce_enum(IssueCategory, category, "category")
    severity = _coerce_enum(Severity, severity, "severity", default=Severity.medium)
    description = (description or "").strip()
    if not description:
        raise IssueValidationError("description is required", field="description")
    lat, lon = validate_coordinate(lat, lon)
    now = now or utcnow()

    obj = Issue(
        category=category,
        description=description,
        location_text=(location_text or "").strip() or None,
        lat=lat,
        lon=lon,
        severity=severity,
        reporter_ref=reporter_ref,
        photo_ref=photo_ref,
        supporter_count=1,
        verification_count=0,
        sla_tier=0,
        created_at=now,
    )

    try:
        # ---- routing: a miss leaves the issue unrouted ----
        ward = resolve_ward(db, lat, lon)
        obj.ward_id = ward.id if ward else None

        # ---- duplicate search + merge, same transaction ----
        parent = find_duplicate(db, category, lat, lon) if obj.has_coordinate else None
        if parent:
            obj.parent_id = parent.id
            obj.state = IssueState.MERGED
            parent.supporter_count = (parent.supporter_count or 1) + 1
            parent.updated_at = now
            refresh_emergency(parent)
        else:
            obj.state = IssueState.SUBMITTED
        refresh_emergency(obj)

        db.add(obj)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(obj)
    if parent:
        db.refresh(parent)

    logger.info(
        "Issue #%s | %s | Ward: %s | Duplicate: %s | Supporters: %s",
        obj.id, category.value, ward.name if ward else "Unknown",
        bool(parent), parent.supporter_count if parent else 1,
    )
    if parent:
        publish(broker, "merged", issue_id=obj.id, parent_id=parent.id, supporter_count=parent.supporter_count)
    else:
        publish(broker, "ingested", issue_id=obj.id, ward_id=obj.ward_id, category=category.value)
    return IngestResult(issue=obj, merged=parent is not None, ward=ward, parent=parent)
