# File: app/services/chat.py
"""Per-issue message thread between citizens and the ward authority."""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.core.errors import IssueNotFound, IssueValidationError
from app.models.chat import IssueMessage, SenderRole
from app.models.issue import Issue
from app.services.events import EventBroker, publish
from app.services.sla import utcnow

logger = logging.getLogger(__name__)

MAX_MESSAGE = 1000
MAX_NAME = 100
HISTORY_LIMIT = 200


def list_messages(db: Session, issue_id: int, limit: int = HISTORY_LIMIT) -> list[IssueMessage]:
    return (
        db.query(IssueMessage)
        .filter(IssueMessage.issue_id == issue_id)
        .order_by(IssueMessage.sent_at.asc(), IssueMessage.id.asc())
        .limit(limit)
        .all()
    )


def post_message(
    db: Session,
    issue_id: int,
    message: Optional[str],
    sender_role="citizen",
    sender_name: Optional[str] = None,
    now: Optional[datetime] = None,
    broker: Optional[EventBroker] = None,
) -> IssueMessage:
    text = (message or "").strip()
    if not text:
        raise IssueValidationError("message is required", field="message")
    try:
        role = SenderRole(sender_role)
    except ValueError:
        raise IssueValidationError("sender_role must be citizen | authority | system", field="sender_role")
    if db.get(Issue, issue_id) is None:
        raise IssueNotFound(issue_id)

    msg = IssueMessage(
        issue_id=issue_id,
        sender_role=role,
        sender_name=((sender_name or "").strip() or "Anonymous")[:MAX_NAME],
        message=text[:MAX_MESSAGE],
        sent_at=now or utcnow(),
    )
    try:
        db.add(msg)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(msg)

    publish(broker, "chat", issue_id=issue_id, message_id=msg.id, sender_role=role.value, sender_name=msg.sender_name)
    return msg
