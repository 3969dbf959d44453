# File: app/schemas/push.py

from pydantic import BaseModel, Field
from typing import Optional


class PushKeys(BaseModel):
    p256dh: str = Field(min_length=1, max_length=200)
    auth: str = Field(min_length=1, max_length=100)


class PushSubscribeRequest(BaseModel):
    issue_id: int
    endpoint: str = Field(min_length=1, max_length=500)
    keys: PushKeys


class PushUnsubscribeRequest(BaseModel):
    endpoint: Optional[str] = None
