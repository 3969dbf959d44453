# File: app/services/escalation.py
"""Multi-tier SLA escalation sweep.

Checks ASSIGNED/IN_PROGRESS issues against the SLA thresholds:

    Tier 1, 72h:  email the ward officer
    Tier 2, 120h: email + SMS the executive engineer (and the ward officer if not yet told)
    Tier 3, 168h: email the commissioner (+ SMS when a number is configured)

Idempotent: an issue already at (or above) the target tier is skipped, so the next tick
is the retry. The exception is a tier raised by auto-promotion with nothing logged for
it yet: that tier's notifications go out once, the tier itself is left alone.
The tier bump is committed before any notification is sent; every dispatch attempt,
including one whose transport raised, then gets one escalation_log row.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.escalation_log import EscalationAction, EscalationLog
from app.models.issue import Issue, IssueState
from app.models.ward import Ward
from app.services.events import EventBroker, publish
from app.services.lifecycle import lock_issue
from app.services.notifications import DispatchResult, IssueNotice, NotificationDispatcher
from app.services.notify_sms import build_escalation_sms
from app.services.sla import MAX_TIER, SLA_HOURS, hours_between, tier_for_hours, utcnow

logger = logging.getLogger(__name__)

ESCALATING_STATES = (IssueState.ASSIGNED, IssueState.IN_PROGRESS)


@dataclass
class PlannedDispatch:
    action: EscalationAction
    channel: str  # "email" | "sms"
    recipient: Optional[str]
    recipient_name: Optional[str] = None
    template_tier: int = 1


@dataclass
class SweepReport:
    checked: int = 0
    escalated: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


def escalation_candidates(db: Session, now: datetime) -> list[int]:
    cutoff = now - timedelta(hours=SLA_HOURS[1])
    rows = (
        db.query(Issue.id)
        .filter(
            Issue.state.in_(ESCALATING_STATES),
            Issue.assigned_at.isnot(None),
            Issue.sla_tier < MAX_TIER,
            Issue.assigned_at <= cutoff,
        )
        .order_by(Issue.assigned_at.asc(), Issue.id.asc())
        .all()
    )
    return [r[0] for r in rows]


def already_notified(db: Session, issue_id: int, action: EscalationAction) -> bool:
    return (
        db.query(EscalationLog.id)
        .filter(
            EscalationLog.issue_id == issue_id,
            EscalationLog.action == action.value,
            EscalationLog.success.is_(True),
        )
        .first()
        is not None
    )


def plan_notifications(issue: Issue, ward: Optional[Ward], target: int, officer_already_notified: bool) -> list[PlannedDispatch]:
    officer_email = (ward.officer_email if ward else None) or issue.assigned_officer_email
    officer_name = (ward.officer_name if ward else None) or issue.assigned_officer_name
    plan: list[PlannedDispatch] = []

    if target == 1:
        plan.append(PlannedDispatch(EscalationAction.email_l1, "email", officer_email, officer_name or "Ward Officer", 1))

    elif target == 2:
        if officer_email and not officer_already_notified:
            plan.append(PlannedDispatch(EscalationAction.email_l1, "email", officer_email, officer_name or "Officer", 1))
        plan.append(PlannedDispatch(EscalationAction.email_l2, "email", settings.exec_eng_email, settings.exec_eng_name, 2))
        plan.append(PlannedDispatch(EscalationAction.sms_l2, "sms", settings.exec_eng_phone, settings.exec_eng_name, 2))

    elif target >= 3:
        plan.append(PlannedDispatch(EscalationAction.email_l3, "email", settings.commissioner_email, settings.commissioner_name, 3))
        if settings.commissioner_phone:
            plan.append(PlannedDispatch(EscalationAction.sms_l3, "sms", settings.commissioner_phone, settings.commissioner_name, 3))

    return plan


def _dispatch(dispatcher: NotificationDispatcher, notice: IssueNotice, p: PlannedDispatch) -> DispatchResult:
    if not p.recipient:
        return DispatchResult(False, f"No recipient for {p.action.value}")
    try:
        if p.channel == "sms":
            text = build_escalation_sms(p.template_tier, notice.issue_id, notice.category, notice.place, notice.hours_elapsed)
            return dispatcher.send_sms(p.recipient, text)
        return dispatcher.send_email(notice, p.template_tier, p.recipient, p.recipient_name)
    except Exception as e:
        logger.error(f"Dispatch {p.action.value} for issue #{notice.issue_id} raised: {e}", exc_info=True)
        return DispatchResult(False, f"error: {e}")


def tier_logged(db: Session, issue_id: int, tier: int) -> bool:
    """True once any dispatch for this tier was attempted, successful or not."""
    return (
        db.query(EscalationLog.id)
        .filter(EscalationLog.issue_id == issue_id, EscalationLog.tier == tier)
        .first()
        is not None
    )


def escalate_issue(
    db: Session,
    issue_id: int,
    dispatcher: NotificationDispatcher,
    now: Optional[datetime] = None,
    broker: Optional[EventBroker] = None,
) -> Optional[int]:
    """Raise one issue to its due tier and notify. Returns the notified tier, or None if nothing was due.

    An issue whose stored tier already equals its due tier (>= 2) but has no log rows for that
    tier was raised by auto-promotion; it gets the tier's notifications without a tier change.
    """
    now = now or utcnow()
    try:
        issue = lock_issue(db, issue_id)
        if issue.state not in ESCALATING_STATES or issue.assigned_at is None:
            db.rollback()
            return None
        hours = hours_between(issue.assigned_at, now)
        target = tier_for_hours(hours)
        stored = issue.sla_tier or 0
        backfill = target == stored and target >= 2 and not tier_logged(db, issue.id, target)
        if target <= stored and not backfill:
            db.rollback()
            return None

        ward = db.get(Ward, issue.ward_id) if issue.ward_id else None
        plan = plan_notifications(issue, ward, target, already_notified(db, issue.id, EscalationAction.email_l1))
        notice = IssueNotice(
            issue_id=issue.id,
            category=issue.category.value,
            place=(ward.name if ward else None) or issue.location_text,
            hours_elapsed=hours,
            supporter_count=issue.supporter_count or 1,
        )
        if not backfill:
            issue.sla_tier = max(stored, target)
        issue.last_escalated_at = now
        db.commit()
    except Exception:
        db.rollback()
        raise

    if backfill:
        logger.info("Issue #%s already at L%s without notifications, sending them (%.0fh elapsed)", issue_id, target, hours)
    else:
        logger.info("Issue #%s → L%s (%.0fh elapsed)", issue_id, target, hours)

    # row lock released; deliveries may be slow
    for p in plan:
        result = _dispatch(dispatcher, notice, p)
        if not result.success:
            logger.warning("Issue #%s %s to %s failed: %s", issue_id, p.action.value, p.recipient, result.detail)
        db.add(EscalationLog(
            issue_id=issue_id,
            tier=target,
            action=p.action.value,
            recipient=p.recipient or "NONE",
            success=result.success,
            detail=result.detail,
            sent_at=now,
        ))
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise

    publish(broker, "escalated", issue_id=issue_id, tier=target)
    return target


def run_escalation_sweep(
    db: Session,
    dispatcher: NotificationDispatcher,
    now: Optional[datetime] = None,
    broker: Optional[EventBroker] = None,
) -> SweepReport:
    now = now or utcnow()
    report = SweepReport()
    candidates = escalation_candidates(db, now)
    report.checked = len(candidates)
    if not candidates:
        logger.info("Escalation sweep: no SLA breaches found")
        return report

    logger.info("Escalation sweep: %d issue(s) past the first threshold", len(candidates))
    for issue_id in candidates:
        try:
            if escalate_issue(db, issue_id, dispatcher, now=now, broker=broker) is not None:
                report.escalated.append(issue_id)
        except Exception as e:
            db.rollback()
            logger.error(f"Escalation of issue #{issue_id} failed: {e}", exc_info=True)
            report.failed.append(issue_id)
    return report
