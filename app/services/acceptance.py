# File: app/services/acceptance.py
"""Community acceptance of a resolution.

One vote per browser token per issue; a voter may switch sides. Counts are recounted
from acceptance_votes under the issue's row lock, and a resolution counts as accepted
once it has at least ACCEPT_QUORUM accepts and more accepts than rejects.
"""
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.core.errors import IssueValidationError, VotingClosed
from app.models.acceptance_vote import AcceptanceVote, VoteChoice
from app.models.issue import IssueState
from app.services.events import EventBroker, publish
from app.services.lifecycle import lock_issue
from app.services.sla import utcnow

logger = logging.getLogger(__name__)

ACCEPT_QUORUM = 3
MIN_TOKEN_LENGTH = 8


@dataclass
class VoteResult:
    issue_id: int
    vote: str
    accept_count: int
    reject_count: int
    resolution_accepted: bool
    already_voted: bool = False


def hash_token(voter_token: str) -> str:
    return hashlib.sha256(voter_token.encode("utf-8")).hexdigest()[:32]


def is_accepted(accepts: int, rejects: int) -> bool:
    return accepts >= ACCEPT_QUORUM and accepts > rejects


def cast_vote(
    db: Session,
    issue_id: int,
    vote,
    voter_token: str,
    now: Optional[datetime] = None,
    broker: Optional[EventBroker] = None,
) -> VoteResult:
    try:
        choice = VoteChoice(vote)
    except ValueError:
        raise IssueValidationError('vote must be "accept" or "reject"', field="vote")
    token = (voter_token or "").strip()
    if len(token) < MIN_TOKEN_LENGTH:
        raise IssueValidationError("voter_token is required (min 8 chars)", field="voter_token")
    token_hash = hash_token(token)
    now = now or utcnow()

    try:
        issue = lock_issue(db, issue_id)
        if issue.state != IssueState.RESOLVED:
            raise VotingClosed(issue_id, issue.state)

        existing = (
            db.query(AcceptanceVote)
            .filter(AcceptanceVote.issue_id == issue_id, AcceptanceVote.voter_token == token_hash)
            .first()
        )
        if existing and existing.vote == choice:
            result = VoteResult(
                issue_id, choice.value, issue.accept_count or 0, issue.reject_count or 0,
                bool(issue.resolution_accepted), already_voted=True,
            )
            db.rollback()
            return result
        if existing:
            existing.vote = choice
            existing.voted_at = now
        else:
            db.add(AcceptanceVote(issue_id=issue_id, voter_token=token_hash, vote=choice, voted_at=now))
        db.flush()

        accepts, rejects = (
            db.query(
                func.coalesce(func.sum(case((AcceptanceVote.vote == VoteChoice.accept, 1), else_=0)), 0),
                func.coalesce(func.sum(case((AcceptanceVote.vote == VoteChoice.reject, 1), else_=0)), 0),
            )
            .filter(AcceptanceVote.issue_id == issue_id)
            .one()
        )
        issue.accept_count = int(accepts)
        issue.reject_count = int(rejects)
        issue.resolution_accepted = is_accepted(issue.accept_count, issue.reject_count)
        result = VoteResult(issue_id, choice.value, issue.accept_count, issue.reject_count, issue.resolution_accepted)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Issue #%s acceptance vote %s: %s accept / %s reject",
        issue_id, choice.value, result.accept_count, result.reject_count,
    )
    publish(
        broker, "vote", issue_id=issue_id, accept_count=result.accept_count,
        reject_count=result.reject_count, resolution_accepted=result.resolution_accepted,
    )
    return result
