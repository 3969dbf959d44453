# File: app/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def import_models():
    """Register every mapped class on Base.metadata (used before create_all)."""
    from app.models import ward, issue, escalation_log, verification, resolution_proof, push, acceptance_vote, chat  # noqa: F401
