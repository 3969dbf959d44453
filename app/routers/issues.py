# File: app/routers/issues.py
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from app.core.deps import get_broker
from app.core.ratelimit import limiter
from app.db.session import SessionLocal, get_db
from app.models.issue import CLOSED_STATES, Issue, IssueCategory, IssueState
from app.models.resolution_proof import ResolutionProof
from app.models.verification import CitizenVerification
from app.models.ward import Ward
from app.schemas.issue import (
    EscalationLogOut,
    IngestOut,
    IssueCreate,
    IssueOut,
    PaginatedIssuesOut,
    ResolutionProofOut,
    ResolutionRequest,
    SeverityUpdate,
    TimelineEvent,
    TimelineOut,
    TransitionRequest,
    VerifyRequest,
    VoteOut,
    VoteRequest,
)
from app.services.acceptance import cast_vote
from app.services.events import EventBroker
from app.services.ingestion import ingest
from app.services.lifecycle import GuardContext, transition, update_severity, verify_by_citizen
from app.services.reporting import escalation_history
from app.services.resolution import resolve_with_proof
from app.services.sla import classify, utcnow

router = APIRouter(prefix="/issues", tags=["issues"])

logger = logging.getLogger(__name__)


def issue_out(issue: Issue, ward_name: Optional[str] = None, now: Optional[datetime] = None) -> IssueOut:
    sla = classify(issue, now)
    return IssueOut(
        id=issue.id,
        category=issue.category.value,
        description=issue.description,
        location_text=issue.location_text,
        lat=issue.lat,
        lon=issue.lon,
        ward_id=issue.ward_id,
        ward_name=ward_name,
        parent_id=issue.parent_id,
        supporter_count=issue.supporter_count or 1,
        verification_count=issue.verification_count or 0,
        accept_count=issue.accept_count or 0,
        reject_count=issue.reject_count or 0,
        resolution_accepted=bool(issue.resolution_accepted),
        severity=issue.severity.value,
        is_emergency=bool(issue.is_emergency),
        state=issue.state.value,
        sla_tier=issue.sla_tier or 0,
        sla_label=sla.label,
        hours_elapsed=sla.hours_elapsed,
        next_deadline_hours=sla.next_deadline_hours,
        hours_until_next=sla.hours_until_next,
        assigned_officer_name=issue.assigned_officer_name,
        assigned_officer_email=issue.assigned_officer_email,
        assigned_officer_phone=issue.assigned_officer_phone,
        photo_ref=issue.photo_ref,
        created_at=issue.created_at,
        updated_at=issue.updated_at,
        verified_at=issue.verified_at,
        assigned_at=issue.assigned_at,
        in_progress_at=issue.in_progress_at,
        resolved_at=issue.resolved_at,
        last_escalated_at=issue.last_escalated_at,
        auto_escalated_at=issue.auto_escalated_at,
    )


def _ward_name(db: Session, ward_id: Optional[int]) -> Optional[str]:
    if ward_id is None:
        return None
    ward = db.get(Ward, ward_id)
    return ward.name if ward else None


def _get_issue_or_404(db: Session, issue_id: int) -> Issue:
    issue = db.get(Issue, issue_id)
    if not issue:
        raise HTTPException(404, f"Issue #{issue_id} not found")
    return issue


def _notify_supporters_safe(parent_id: int, supporter_count: int):
    db = SessionLocal()
    try:
        from app.services.notify_push import notify_supporters

        sent = notify_supporters(db, parent_id, supporter_count)
        if sent:
            logger.info("Push sent to %d supporter(s) of issue #%s", sent, parent_id)
    except Exception as e:
        logger.error(f"Error in background supporter notifications: {e}", exc_info=True)
    finally:
        db.close()


@router.post("", response_model=IngestOut, status_code=201)
@limiter.limit("10/minute")
def create_issue(
    request: Request,
    payload: IssueCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    broker: Optional[EventBroker] = Depends(get_broker),
):
    result = ingest(
        db,
        category=payload.category,
        description=payload.description,
        lat=payload.lat,
        lon=payload.lon,
        severity=payload.severity,
        location_text=payload.location_text,
        reporter_ref=payload.reporter_ref,
        photo_ref=payload.photo_ref,
        broker=broker,
    )
    if result.merged:
        background_tasks.add_task(_notify_supporters_safe, result.parent.id, result.parent.supporter_count)
        message = (
            f"A matching issue (#{result.parent.id}) is already open nearby. "
            f"Your report was added as support: {result.supporter_count} people now back it."
        )
    else:
        message = f"Issue #{result.issue.id} submitted"
    return IngestOut(
        issue=issue_out(result.issue, result.ward.name if result.ward else None),
        merged=result.merged,
        parent_id=result.parent.id if result.parent else None,
        supporter_count=result.supporter_count,
        message=message,
    )


@router.get("", response_model=PaginatedIssuesOut)
@limiter.limit("60/minute")
def list_issues(
    request: Request,
    db: Session = Depends(get_db),
    state: Optional[IssueState] = Query(default=None),
    category: Optional[IssueCategory] = Query(default=None),
    ward_id: Optional[int] = Query(default=None),
    open_only: int = Query(default=0, ge=0, le=1),
    emergency_only: int = Query(default=0, ge=0, le=1),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
):
    # merged children are support for their root, never listed on their own
    q = db.query(Issue, Ward.name).outerjoin(Ward, Ward.id == Issue.ward_id).filter(Issue.parent_id.is_(None))
    if state:
        q = q.filter(Issue.state == state)
    if open_only:
        q = q.filter(Issue.state.notin_(CLOSED_STATES))
    if category:
        q = q.filter(Issue.category == category)
    if ward_id is not None:
        q = q.filter(Issue.ward_id == ward_id)
    if emergency_only:
        q = q.filter(Issue.is_emergency.is_(True))

    total = q.count()
    rows = (
        q.order_by(
            Issue.is_emergency.desc(),
            Issue.sla_tier.desc(),
            Issue.assigned_at.is_(None),
            Issue.assigned_at.asc(),
            Issue.created_at.desc(),
            Issue.id.asc(),
        )
        .offset(offset)
        .limit(limit)
        .all()
    )
    now = utcnow()
    return PaginatedIssuesOut(
        items=[issue_out(issue, ward_name, now) for issue, ward_name in rows],
        total=total,
        offset=offset,
        limit=limit,
    )


@router.get("/{issue_id}", response_model=IssueOut)
def get_issue(issue_id: int, db: Session = Depends(get_db)):
    issue = _get_issue_or_404(db, issue_id)
    return issue_out(issue, _ward_name(db, issue.ward_id))


@router.patch("/{issue_id}/transition", response_model=IssueOut)
def transition_issue(
    issue_id: int,
    body: TransitionRequest,
    db: Session = Depends(get_db),
    broker: Optional[EventBroker] = Depends(get_broker),
):
    if body.to_state == IssueState.RESOLVED:
        raise HTTPException(400, f"Resolve through POST /issues/{issue_id}/resolution with an after photo")
    if body.to_state == IssueState.MERGED:
        raise HTTPException(400, "MERGED is set only when a duplicate is submitted")
    guard = GuardContext(
        officer_lat=body.officer_lat,
        officer_lon=body.officer_lon,
        officer_name=body.officer_name,
        officer_email=body.officer_email,
        officer_phone=body.officer_phone,
    )
    issue = transition(db, issue_id, body.to_state, guard, broker=broker)
    return issue_out(issue, _ward_name(db, issue.ward_id))


@router.post("/{issue_id}/verify", response_model=IssueOut)
@limiter.limit("20/minute")
def verify_issue(
    request: Request,
    issue_id: int,
    body: VerifyRequest,
    db: Session = Depends(get_db),
    broker: Optional[EventBroker] = Depends(get_broker),
):
    issue = verify_by_citizen(db, issue_id, body.voter_token, broker=broker)
    return issue_out(issue, _ward_name(db, issue.ward_id))


@router.get("/{issue_id}/verify/check")
def check_verified(issue_id: int, voter_token: str = Query(..., min_length=1), db: Session = Depends(get_db)):
    exists = (
        db.query(CitizenVerification.id)
        .filter(CitizenVerification.issue_id == issue_id, CitizenVerification.voter_token == voter_token.strip())
        .first()
    )
    return {"verified": exists is not None}


@router.patch("/{issue_id}/severity", response_model=IssueOut)
def set_severity(
    issue_id: int,
    body: SeverityUpdate,
    db: Session = Depends(get_db),
    broker: Optional[EventBroker] = Depends(get_broker),
):
    issue = update_severity(db, issue_id, body.severity, broker=broker)
    return issue_out(issue, _ward_name(db, issue.ward_id))


@router.post("/{issue_id}/resolution", response_model=ResolutionProofOut, status_code=201)
def submit_resolution(
    issue_id: int,
    body: ResolutionRequest,
    db: Session = Depends(get_db),
    broker: Optional[EventBroker] = Depends(get_broker),
):
    _, proof = resolve_with_proof(
        db, issue_id, body.officer_lat, body.officer_lon, body.after_photo_ref, broker=broker
    )
    return proof


@router.get("/{issue_id}/resolution", response_model=ResolutionProofOut)
def get_resolution(issue_id: int, db: Session = Depends(get_db)):
    proof = db.query(ResolutionProof).filter(ResolutionProof.issue_id == issue_id).first()
    if not proof:
        raise HTTPException(404, f"No resolution proof for issue #{issue_id}")
    return proof


@router.post("/{issue_id}/vote", response_model=VoteOut)
@limiter.limit("20/minute")
def vote_on_resolution(
    request: Request,
    issue_id: int,
    body: VoteRequest,
    db: Session = Depends(get_db),
    broker: Optional[EventBroker] = Depends(get_broker),
):
    result = cast_vote(db, issue_id, body.vote, body.voter_token, broker=broker)
    return VoteOut.model_validate(result)


@router.get("/{issue_id}/escalations", response_model=list[EscalationLogOut])
def list_escalations(issue_id: int, db: Session = Depends(get_db)):
    _get_issue_or_404(db, issue_id)
    return escalation_history(db, issue_id)


@router.get("/{issue_id}/timeline", response_model=TimelineOut)
def get_timeline(issue_id: int, db: Session = Depends(get_db)):
    issue = _get_issue_or_404(db, issue_id)
    stamps = [
        ("submitted", issue.created_at, None),
        ("verified", issue.verified_at, f"{issue.verification_count or 0} citizen verification(s)"),
        ("assigned", issue.assigned_at, issue.assigned_officer_name),
        ("in_progress", issue.in_progress_at, None),
        ("resolved", issue.resolved_at, None),
    ]
    if issue.state == IssueState.MERGED:
        stamps.append(("merged", issue.created_at, f"into #{issue.parent_id}"))
    events = [TimelineEvent(event=name, at=at, detail=detail) for name, at, detail in stamps if at is not None]
    proof = db.query(ResolutionProof).filter(ResolutionProof.issue_id == issue_id).first()
    return TimelineOut(
        issue_id=issue.id,
        state=issue.state.value,
        sla_tier=issue.sla_tier or 0,
        events=events,
        escalations=[EscalationLogOut.model_validate(e) for e in escalation_history(db, issue_id)],
        proof=ResolutionProofOut.model_validate(proof) if proof else None,
    )
