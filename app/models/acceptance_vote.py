# File: app/models/acceptance_vote.py

from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import String, DateTime, Enum, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base

class VoteChoice(PyEnum):
    accept = "accept"
    reject = "reject"

class AcceptanceVote(Base):
    __tablename__ = "acceptance_votes"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    issue_id: Mapped[int] = mapped_column(ForeignKey("issues.id", ondelete="CASCADE"), index=True)
    # sha256 of the browser token, never the token itself
    voter_token: Mapped[str] = mapped_column(String(64))
    vote: Mapped[VoteChoice] = mapped_column(Enum(VoteChoice))
    voted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    __table_args__ = (UniqueConstraint("issue_id", "voter_token", name="uq_acceptance_vote"),)
