# File: app/routers/chat.py
from typing import Optional
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from app.core.deps import get_broker
from app.core.errors import IssueNotFound
from app.core.ratelimit import limiter
from app.db.session import get_db
from app.models.chat import IssueMessage
from app.models.issue import Issue
from app.schemas.chat import ChatMessageCreate, ChatMessageOut, ChatThreadOut
from app.services.chat import list_messages, post_message
from app.services.events import EventBroker

router = APIRouter(prefix="/issues", tags=["chat"])


def message_out(m: IssueMessage) -> ChatMessageOut:
    return ChatMessageOut(
        id=m.id,
        issue_id=m.issue_id,
        sender_role=m.sender_role.value,
        sender_name=m.sender_name,
        message=m.message,
        sent_at=m.sent_at,
    )

@router.get("/{issue_id}/chat", response_model=ChatThreadOut)
def get_chat(issue_id: int, db: Session = Depends(get_db)):
    if db.get(Issue, issue_id) is None:
        raise IssueNotFound(issue_id)
    messages = [message_out(m) for m in list_messages(db, issue_id)]
    return ChatThreadOut(messages=messages, count=len(messages))

@router.post("/{issue_id}/chat", response_model=ChatMessageOut, status_code=201)
@limiter.limit("30/minute")
def send_chat(
    request: Request,
    issue_id: int,
    body: ChatMessageCreate,
    db: Session = Depends(get_db),
    broker: Optional[EventBroker] = Depends(get_broker),
):
    msg = post_message(db, issue_id, body.message, body.sender_role, body.sender_name, broker=broker)
    return message_out(msg)
