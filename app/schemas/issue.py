# File: app/schemas/issue.py

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from app.models.issue import IssueState, Severity


class IssueCreate(BaseModel):
    # category/severity are checked by the ingestion service so the error payload matches the rest of the API
    category: str
    description: str = Field(min_length=1, max_length=4000)
    location_text: Optional[str] = Field(default=None, max_length=300)
    lat: Optional[float] = None
    lon: Optional[float] = None
    severity: Optional[str] = None
    reporter_ref: Optional[str] = Field(default=None, max_length=100)
    photo_ref: Optional[str] = Field(default=None, max_length=500)


class IssueOut(BaseModel):
    id: int
    category: str
    description: str
    location_text: Optional[str] = None

    lat: Optional[float] = None
    lon: Optional[float] = None
    ward_id: Optional[int] = None
    ward_name: Optional[str] = None
    parent_id: Optional[int] = None

    supporter_count: int
    verification_count: int = 0
    accept_count: int = 0
    reject_count: int = 0
    resolution_accepted: bool = False
    severity: str
    is_emergency: bool = False

    state: str
    sla_tier: int = 0
    # computed from the clock, never stored
    sla_label: str
    hours_elapsed: float
    next_deadline_hours: Optional[int] = None
    hours_until_next: float = 0.0

    assigned_officer_name: Optional[str] = None
    assigned_officer_email: Optional[str] = None
    assigned_officer_phone: Optional[str] = None
    photo_ref: Optional[str] = None

    created_at: datetime
    updated_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    in_progress_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    last_escalated_at: Optional[datetime] = None
    auto_escalated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class IngestOut(BaseModel):
    issue: IssueOut
    merged: bool
    parent_id: Optional[int] = None
    supporter_count: int
    message: str


class PaginatedIssuesOut(BaseModel):
    items: list[IssueOut]
    total: int
    offset: int
    limit: int


class TransitionRequest(BaseModel):
    to_state: IssueState
    officer_lat: Optional[float] = None
    officer_lon: Optional[float] = None
    officer_name: Optional[str] = None
    officer_email: Optional[str] = None
    officer_phone: Optional[str] = None


class VerifyRequest(BaseModel):
    voter_token: str


class SeverityUpdate(BaseModel):
    severity: Severity


class ResolutionRequest(BaseModel):
    officer_lat: float = Field(ge=-90, le=90)
    officer_lon: float = Field(ge=-180, le=180)
    after_photo_ref: str = Field(min_length=1, max_length=500)


class ResolutionProofOut(BaseModel):
    issue_id: int
    after_photo_ref: str
    officer_lat: float
    officer_lon: float
    distance_m: Optional[float] = None
    submitted_at: datetime

    class Config:
        from_attributes = True


class EscalationLogOut(BaseModel):
    id: int
    issue_id: int
    tier: int
    action: str
    recipient: Optional[str] = None
    success: bool
    detail: Optional[str] = None
    sent_at: datetime

    class Config:
        from_attributes = True


class TimelineEvent(BaseModel):
    event: str
    at: datetime
    detail: Optional[str] = None


class TimelineOut(BaseModel):
    issue_id: int
    state: str
    sla_tier: int
    events: List[TimelineEvent] = []
    escalations: List[EscalationLogOut] = []
    proof: Optional[ResolutionProofOut] = None


class VoteRequest(BaseModel):
    # checked by the acceptance service so a bad value gets the usual error payload
    vote: str
    voter_token: str


class VoteOut(BaseModel):
    issue_id: int
    vote: str
    accept_count: int
    reject_count: int
    resolution_accepted: bool
    already_voted: bool = False

    class Config:
        from_attributes = True
