# File: app/models/chat.py

from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import String, DateTime, Enum, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base

class SenderRole(PyEnum):
    citizen = "citizen"
    authority = "authority"
    system = "system"

class IssueMessage(Base):
    __tablename__ = "issue_messages"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    issue_id: Mapped[int] = mapped_column(ForeignKey("issues.id", ondelete="CASCADE"), index=True)
    sender_role: Mapped[SenderRole] = mapped_column(Enum(SenderRole), default=SenderRole.citizen)
    sender_name: Mapped[str] = mapped_column(String(100), default="Anonymous")
    message: Mapped[str] = mapped_column(String(1000))
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
