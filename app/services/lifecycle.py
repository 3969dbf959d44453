# File: app/services/lifecycle.py
"""Guarded state machine for issues.

    SUBMITTED → VERIFIED → ASSIGNED → IN_PROGRESS → RESOLVED

MERGED is only ever set at creation (see ingestion). IN_PROGRESS requires the acting
officer to stand within GEOFENCE_RADIUS_M of the issue. Every mutation happens under a
row lock on the issue and either commits completely or not at all.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import (
    AlreadyVerified,
    GeofenceUnavailable,
    GeofenceViolation,
    InvalidTransition,
    IssueNotFound,
    IssueValidationError,
)
from app.models.issue import Issue, IssueState, Severity
from app.models.verification import CitizenVerification
from app.services.events import EventBroker, publish
from app.services.geo import haversine
from app.services.severity import refresh_emergency
from app.services.sla import utcnow

logger = logging.getLogger(__name__)

GEOFENCE_RADIUS_M = 100.0

TRANSITIONS: dict[IssueState, tuple[IssueState, ...]] = {
    IssueState.SUBMITTED: (IssueState.VERIFIED,),
    IssueState.VERIFIED: (IssueState.ASSIGNED,),
    IssueState.ASSIGNED: (IssueState.IN_PROGRESS,),
    IssueState.IN_PROGRESS: (IssueState.RESOLVED,),
    IssueState.RESOLVED: (),
    IssueState.MERGED: (),
}

# resolved_at belongs to the resolution-proof flow
STATE_TIMESTAMP = {
    IssueState.VERIFIED: "verified_at",
    IssueState.ASSIGNED: "assigned_at",
    IssueState.IN_PROGRESS: "in_progress_at",
}


@dataclass
class GuardContext:
    officer_lat: Optional[float] = None
    officer_lon: Optional[float] = None
    officer_name: Optional[str] = None
    officer_email: Optional[str] = None
    officer_phone: Optional[str] = None

    @property
    def has_officer_coordinate(self) -> bool:
        return self.officer_lat is not None and self.officer_lon is not None


def allowed_next(state: IssueState) -> tuple[IssueState, ...]:
    return TRANSITIONS.get(state, ())


def locked_issue_query(db: Session, issue_id: int):
    """SELECT ... FOR UPDATE on one issue row; every writer goes through this."""
    return db.query(Issue).filter(Issue.id == issue_id).with_for_update()


def lock_issue(db: Session, issue_id: int) -> Issue:
    """Fetch an issue with an exclusive row lock held until commit/rollback."""
    issue = locked_issue_query(db, issue_id).first()
    if not issue:
        raise IssueNotFound(issue_id)
    return issue


def officer_distance(issue: Issue, guard: GuardContext) -> float:
    if not guard.has_officer_coordinate:
        raise GeofenceUnavailable("officer")
    if not issue.has_coordinate:
        raise GeofenceUnavailable("issue")
    return haversine(guard.officer_lat, guard.officer_lon, issue.lat, issue.lon)


def check_geofence(issue: Issue, guard: GuardContext) -> float:
    distance = officer_distance(issue, guard)
    if distance > GEOFENCE_RADIUS_M:
        raise GeofenceViolation(distance, GEOFENCE_RADIUS_M)
    return distance


def apply_transition(issue: Issue, to_state: IssueState, guard: Optional[GuardContext], now: datetime) -> IssueState:
    """Validate and apply one step on an already-locked issue. Does not commit.

    All checks run before the first attribute is written, so a rejected call leaves the
    object untouched. Returns the state the issue came from.
    """
    guard = guard or GuardContext()
    from_state = issue.state
    allowed = allowed_next(from_state)
    if to_state not in allowed:
        raise InvalidTransition(from_state, to_state, allowed)

    if to_state == IssueState.IN_PROGRESS:
        check_geofence(issue, guard)

    issue.state = to_state
    ts_field = STATE_TIMESTAMP.get(to_state)
    if ts_field:
        setattr(issue, ts_field, now)
    if to_state == IssueState.ASSIGNED:
        if guard.officer_name:
            issue.assigned_officer_name = guard.officer_name
        if guard.officer_email:
            issue.assigned_officer_email = guard.officer_email
        if guard.officer_phone:
            issue.assigned_officer_phone = guard.officer_phone
    issue.updated_at = now
    return from_state


def transition(
    db: Session,
    issue_id: int,
    to_state: IssueState,
    guard: Optional[GuardContext] = None,
    now: Optional[datetime] = None,
    broker: Optional[EventBroker] = None,
) -> Issue:
    now = now or utcnow()
    try:
        issue = lock_issue(db, issue_id)
        from_state = apply_transition(issue, to_state, guard, now)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(issue)

    logger.info("Issue #%s: %s → %s", issue_id, from_state.value, to_state.value)
    publish(broker, "transition", issue_id=issue.id, from_state=from_state.value, to_state=to_state.value)
    return issue


def verify_by_citizen(
    db: Session,
    issue_id: int,
    voter_token: str,
    now: Optional[datetime] = None,
    broker: Optional[EventBroker] = None,
) -> Issue:
    """One verification per token. A SUBMITTED issue is promoted to VERIFIED on the first one."""
    now = now or utcnow()
    token = (voter_token or "").strip()
    if len(token) < 8:
        raise IssueValidationError("voter_token is required (min 8 chars)", field="voter_token")
    try:
        issue = lock_issue(db, issue_id)
        if issue.state == IssueState.MERGED:
            raise IssueValidationError(
                f"Issue #{issue_id} was merged into #{issue.parent_id}; verify the parent issue instead"
            )
        already = (
            db.query(CitizenVerification.id)
            .filter(CitizenVerification.issue_id == issue_id, CitizenVerification.voter_token == token)
            .first()
        )
        if already:
            raise AlreadyVerified(issue_id)

        db.add(CitizenVerification(issue_id=issue_id, voter_token=token, created_at=now))
        issue.verification_count = (issue.verification_count or 0) + 1
        promoted = False
        if issue.state == IssueState.SUBMITTED:
            apply_transition(issue, IssueState.VERIFIED, None, now)
            promoted = True
        else:
            issue.updated_at = now
        db.commit()
    except IntegrityError:
        # a concurrent request with the same token won the unique constraint
        db.rollback()
        raise AlreadyVerified(issue_id)
    except Exception:
        db.rollback()
        raise
    db.refresh(issue)

    if promoted:
        logger.info("Issue #%s: SUBMITTED → VERIFIED by citizen verification", issue_id)
        publish(broker, "transition", issue_id=issue.id, from_state="SUBMITTED", to_state="VERIFIED")
    publish(broker, "verified", issue_id=issue.id, verification_count=issue.verification_count)
    return issue


def update_severity(
    db: Session,
    issue_id: int,
    severity: Severity,
    now: Optional[datetime] = None,
    broker: Optional[EventBroker] = None,
) -> Issue:
    now = now or utcnow()
    try:
        issue = lock_issue(db, issue_id)
        issue.severity = severity
        refresh_emergency(issue)
        issue.updated_at = now
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(issue)
    publish(broker, "severity", issue_id=issue.id, severity=severity.value, is_emergency=issue.is_emergency)
    return issue
