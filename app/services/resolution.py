# File: app/services/resolution.py
"""On-site resolution proof: the only writer of RESOLVED and resolved_at."""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.core.errors import GeofenceViolation, InvalidTransition, IssueValidationError
from app.models.issue import Issue, IssueState
from app.models.resolution_proof import ResolutionProof
from app.services.events import EventBroker, publish
from app.services.lifecycle import (
    GEOFENCE_RADIUS_M,
    GuardContext,
    allowed_next,
    apply_transition,
    lock_issue,
    officer_distance,
)
from app.services.sla import utcnow

logger = logging.getLogger(__name__)


def resolve_with_proof(
    db: Session,
    issue_id: int,
    officer_lat: float,
    officer_lon: float,
    after_photo_ref: str,
    now: Optional[datetime] = None,
    broker: Optional[EventBroker] = None,
) -> tuple[Issue, ResolutionProof]:
    now = now or utcnow()
    if not (after_photo_ref or "").strip():
        raise IssueValidationError("after_photo_ref is required", field="after_photo_ref")
    guard = GuardContext(officer_lat=officer_lat, officer_lon=officer_lon)
    try:
        issue = lock_issue(db, issue_id)
        # graph check first so a wrong state is reported as such, not as a distance problem
        allowed = allowed_next(issue.state)
        if IssueState.RESOLVED not in allowed:
            raise InvalidTransition(issue.state, IssueState.RESOLVED, allowed)

        distance = None
        if issue.has_coordinate:
            distance = officer_distance(issue, guard)
            if distance > GEOFENCE_RADIUS_M:
                raise GeofenceViolation(distance, GEOFENCE_RADIUS_M)
        else:
            logger.warning("Issue #%s has no coordinates, skipping resolution geofence", issue_id)

        apply_transition(issue, IssueState.RESOLVED, guard, now)
        issue.resolved_at = now
        proof = ResolutionProof(
            issue_id=issue.id,
            after_photo_ref=after_photo_ref.strip(),
            officer_lat=officer_lat,
            officer_lon=officer_lon,
            distance_m=distance,
            submitted_at=now,
        )
        db.add(proof)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(issue)
    db.refresh(proof)

    logger.info(
        "Issue #%s resolved with photo proof (%sm from site)",
        issue_id, f"{distance:.0f}" if distance is not None else "?",
    )
    publish(broker, "transition", issue_id=issue.id, from_state="IN_PROGRESS", to_state="RESOLVED")
    return issue, proof
