# File: app/core/deps.py
from typing import Optional
from fastapi import HTTPException, Request

from app.services.events import EventBroker
from app.services.notifications import NotificationDispatcher


def get_broker(request: Request) -> Optional[EventBroker]:
    # absent when the app runs without its lifespan (scripts, some tests)
    return getattr(request.app.state, "broker", None)


def require_broker(request: Request) -> EventBroker:
    broker = get_broker(request)
    if broker is None:
        raise HTTPException(503, "Live feed is not running")
    return broker


def get_dispatcher(request: Request) -> NotificationDispatcher:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise HTTPException(503, "Notification dispatcher is not running")
    return dispatcher
