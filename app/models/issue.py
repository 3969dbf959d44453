# File: app/models/issue.py
from __future__ import annotations
from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import String, Float, Enum, Integer, Boolean, DateTime, ForeignKey, func, Index
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base

class IssueState(PyEnum):
    SUBMITTED = "SUBMITTED"
    VERIFIED = "VERIFIED"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    MERGED = "MERGED"

class IssueCategory(PyEnum):
    pothole = "pothole"
    streetlight = "streetlight"
    garbage = "garbage"
    flooding = "flooding"
    sidewalk = "sidewalk"
    graffiti = "graffiti"
    other = "other"

class Severity(PyEnum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"

# states that no longer accept duplicates or escalation
CLOSED_STATES = (IssueState.RESOLVED, IssueState.MERGED)

class Issue(Base):
    __tablename__ = "issues"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    category: Mapped[IssueCategory] = mapped_column(Enum(IssueCategory), index=True)
    description: Mapped[str] = mapped_column(String(4000))
    location_text: Mapped[str | None] = mapped_column(String(300), nullable=True)

    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lon: Mapped[float | None] = mapped_column(Float, nullable=True)

    ward_id: Mapped[int | None] = mapped_column(ForeignKey("wards.id", ondelete="SET NULL"), index=True, nullable=True)

    # set only at creation, for merged duplicates
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("issues.id", ondelete="SET NULL"), index=True, nullable=True)
    supporter_count: Mapped[int] = mapped_column(Integer, default=1, server_default="1")
    verification_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")

    # community acceptance of a resolution, recounted from acceptance_votes on every vote
    accept_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    reject_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    resolution_accepted: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")

    severity: Mapped[Severity] = mapped_column(Enum(Severity), default=Severity.medium)
    is_emergency: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false", index=True)

    state: Mapped[IssueState] = mapped_column(Enum(IssueState), default=IssueState.SUBMITTED, index=True)
    sla_tier: Mapped[int] = mapped_column(Integer, default=0, server_default="0")

    assigned_officer_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    assigned_officer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    assigned_officer_phone: Mapped[str | None] = mapped_column(String(30), nullable=True)

    reporter_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    photo_ref: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    in_progress_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_escalated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    auto_escalated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def has_coordinate(self) -> bool:
        return self.lat is not None and self.lon is not None

Index("ix_issues_lat_lon", Issue.lat, Issue.lon)
Index("ix_issues_category_state", Issue.category, Issue.state)
Index("ix_issues_state_tier", Issue.state, Issue.sla_tier)
