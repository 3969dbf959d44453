# File: app/services/auto_promotion.py
"""Force-advance issues nobody acted on.

    SUBMITTED root, 72h since creation      → VERIFIED, tier ≥ 1
    VERIFIED root,  72h since verification  → ASSIGNED to the ward officer, tier ≥ 1
    ASSIGNED, tier < 2, 120h since assigned → tier 2 (state unchanged)

IN_PROGRESS is never entered here: its geofence needs a live officer location.
Each rule re-checks state and timestamps under the row lock, so re-running a sweep
over already-promoted issues is a no-op.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from app.models.issue import Issue, IssueState
from app.models.ward import Ward
from app.services.events import EventBroker, publish
from app.services.lifecycle import GuardContext, apply_transition, lock_issue
from app.services.sla import hours_between, utcnow

logger = logging.getLogger(__name__)

UNVERIFIED_HOURS = 72
UNASSIGNED_HOURS = 72
ASSIGNED_IDLE_HOURS = 120


@dataclass
class PromotionReport:
    verified: list[int] = field(default_factory=list)
    assigned: list[int] = field(default_factory=list)
    tier_raised: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    @property
    def changed(self) -> int:
        return len(self.verified) + len(self.assigned) + len(self.tier_raised)


def _raise_tier(issue: Issue, floor: int):
    issue.sla_tier = max(issue.sla_tier or 0, floor)


def _promote_submitted(db: Session, issue: Issue, now: datetime) -> bool:
    if issue.state != IssueState.SUBMITTED or issue.parent_id is not None:
        return False
    if hours_between(issue.created_at, now) < UNVERIFIED_HOURS:
        return False
    apply_transition(issue, IssueState.VERIFIED, None, now)
    _raise_tier(issue, 1)
    issue.auto_escalated_at = now
    return True


def _promote_verified(db: Session, issue: Issue, now: datetime) -> bool:
    if issue.state != IssueState.VERIFIED or issue.parent_id is not None or issue.verified_at is None:
        return False
    if hours_between(issue.verified_at, now) < UNASSIGNED_HOURS:
        return False
    ward = db.get(Ward, issue.ward_id) if issue.ward_id else None
    guard = GuardContext(
        officer_name=ward.officer_name if ward else None,
        officer_email=ward.officer_email if ward else None,
        officer_phone=ward.officer_phone if ward else None,
    )
    apply_transition(issue, IssueState.ASSIGNED, guard, now)
    _raise_tier(issue, 1)
    issue.auto_escalated_at = now
    if not ward:
        logger.warning("Issue #%s auto-assigned without a ward officer (unrouted)", issue.id)
    return True


def _raise_idle_assigned(db: Session, issue: Issue, now: datetime) -> bool:
    if issue.state != IssueState.ASSIGNED or issue.assigned_at is None or (issue.sla_tier or 0) >= 2:
        return False
    if hours_between(issue.assigned_at, now) < ASSIGNED_IDLE_HOURS:
        return False
    _raise_tier(issue, 2)
    issue.auto_escalated_at = now
    issue.updated_at = now
    return True


def _apply_rule(
    db: Session,
    issue_id: int,
    rule: Callable[[Session, Issue, datetime], bool],
    now: datetime,
) -> bool:
    try:
        issue = lock_issue(db, issue_id)
        changed = rule(db, issue, now)
        if changed:
            db.commit()
        else:
            db.rollback()
        return changed
    except Exception:
        db.rollback()
        raise


def run_auto_promotion_sweep(
    db: Session,
    now: Optional[datetime] = None,
    broker: Optional[EventBroker] = None,
) -> PromotionReport:
    now = now or utcnow()
    report = PromotionReport()

    submitted = [
        r[0] for r in db.query(Issue.id)
        .filter(
            Issue.state == IssueState.SUBMITTED,
            Issue.parent_id.is_(None),
            Issue.created_at <= now - timedelta(hours=UNVERIFIED_HOURS),
        )
        .order_by(Issue.id.asc())
        .all()
    ]
    verified = [
        r[0] for r in db.query(Issue.id)
        .filter(
            Issue.state == IssueState.VERIFIED,
            Issue.parent_id.is_(None),
            Issue.verified_at.isnot(None),
            Issue.verified_at <= now - timedelta(hours=UNASSIGNED_HOURS),
        )
        .order_by(Issue.id.asc())
        .all()
    ]
    idle = [
        r[0] for r in db.query(Issue.id)
        .filter(
            Issue.state == IssueState.ASSIGNED,
            Issue.sla_tier < 2,
            Issue.assigned_at.isnot(None),
            Issue.assigned_at <= now - timedelta(hours=ASSIGNED_IDLE_HOURS),
        )
        .order_by(Issue.id.asc())
        .all()
    ]

    # candidate lists are taken up front so an issue verified in this tick
    # waits a full window before it can be auto-assigned
    passes = (
        (submitted, _promote_submitted, report.verified, "VERIFIED"),
        (verified, _promote_verified, report.assigned, "ASSIGNED"),
        (idle, _raise_idle_assigned, report.tier_raised, None),
    )
    for ids, rule, bucket, new_state in passes:
        for issue_id in ids:
            try:
                if _apply_rule(db, issue_id, rule, now):
                    bucket.append(issue_id)
                    if new_state:
                        logger.info("Issue #%s auto-promoted to %s", issue_id, new_state)
                        publish(broker, "auto_promoted", issue_id=issue_id, to_state=new_state)
                    else:
                        logger.info("Issue #%s idle in ASSIGNED, tier raised to 2", issue_id)
                        publish(broker, "auto_promoted", issue_id=issue_id, tier=2)
            except Exception as e:
                logger.error(f"Auto-promotion of issue #{issue_id} failed: {e}", exc_info=True)
                report.failed.append(issue_id)

    logger.info(
        "Auto-promotion sweep: %d verified, %d assigned, %d raised to tier 2, %d failed",
        len(report.verified), len(report.assigned), len(report.tier_raised), len(report.failed),
    )
    return report
