# File: app/schemas/chat.py

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class ChatMessageCreate(BaseModel):
    message: str = Field(max_length=4000)
    sender_role: str = "citizen"
    sender_name: Optional[str] = Field(default=None, max_length=200)


class ChatMessageOut(BaseModel):
    id: int
    issue_id: int
    sender_role: str
    sender_name: str
    message: str
    sent_at: datetime

    class Config:
        from_attributes = True


class ChatThreadOut(BaseModel):
    messages: list[ChatMessageOut]
    count: int
