# File: app/routers/push_subscriptions.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from app.core.config import settings
from app.db.session import get_db
from app.models.issue import Issue, IssueState
from app.models.push import PushSubscription
from app.schemas.push import PushSubscribeRequest, PushUnsubscribeRequest

router = APIRouter(prefix="/push", tags=["push"])

@router.get("/vapid-public-key")
def vapid_public_key():
    if not settings.vapid_public_key:
        raise HTTPException(503, "VAPID keys not configured on server")
    return {"public_key": settings.vapid_public_key}

@router.post("/subscribe")
def subscribe(body: PushSubscribeRequest, db: Session = Depends(get_db)):
    issue = db.get(Issue, body.issue_id)
    if not issue:
        raise HTTPException(404, f"Issue #{body.issue_id} not found")
    # supporters of a merged report follow its root
    issue_id = issue.parent_id if issue.state == IssueState.MERGED and issue.parent_id else issue.id
    sub = db.query(PushSubscription).filter(PushSubscription.endpoint == body.endpoint).first()
    if sub is None:
        sub = PushSubscription(endpoint=body.endpoint)
        db.add(sub)
    sub.issue_id = issue_id
    sub.p256dh = body.keys.p256dh
    sub.auth = body.keys.auth
    db.commit()
    return {"ok": True, "issue_id": issue_id}

@router.post("/unsubscribe")
def unsubscribe(body: PushUnsubscribeRequest, db: Session = Depends(get_db)):
    if body.endpoint:
        db.query(PushSubscription).filter(PushSubscription.endpoint == body.endpoint).delete()
        db.commit()
    return {"ok": True}
