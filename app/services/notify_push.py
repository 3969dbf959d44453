# File: app/services/notify_push.py
import json
import logging
from pywebpush import webpush, WebPushException
from sqlalchemy.orm import Session
from app.core.config import settings
from app.models.push import PushSubscription

logger = logging.getLogger(__name__)

VAPID_PRIVATE = settings.vapid_private_key
VAPID_PUBLIC = settings.vapid_public_key
VAPID_CLAIMS = {"sub": settings.vapid_sub}

def send_push(subscription: dict, payload: dict) -> bool:
    if not VAPID_PRIVATE or not VAPID_PUBLIC:
        return False
    try:
        webpush(
            subscription_info=subscription,
            data=json.dumps(payload),
            vapid_private_key=VAPID_PRIVATE,
            vapid_claims=dict(VAPID_CLAIMS),
            timeout=10,
        )
        return True
    except WebPushException as e:
        logger.warning("push failed: %s", e)
        return False

def notify_supporters(db: Session, parent_id: int, supporter_count: int) -> int:
    """Tell everyone subscribed to a root issue that another neighbour backed it."""
    subs = db.query(PushSubscription).filter(PushSubscription.issue_id == parent_id).all()
    sent = 0
    for s in subs:
        ok = send_push(
            {"endpoint": s.endpoint, "keys": {"p256dh": s.p256dh, "auth": s.auth}},
            {
                "title": "CivicPulse",
                "body": f"Another neighbour supported your report #{parent_id}! {supporter_count} people now back it.",
                "issue_id": parent_id,
            },
        )
        sent += int(ok)
    return sent
