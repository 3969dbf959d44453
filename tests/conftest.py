"""Shared fixtures: in-memory SQLite schema, a sample ward, a recording dispatcher, an HTTP client.

The environment is set before any app module is imported so the settings singleton
sees an in-memory database, no scheduler and no real email/SMS transport.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENABLE_SCHEDULER"] = "false"
for _var in (
    "EMAIL_FROM_ADDRESS", "SMTP_HOST", "RESEND_API_KEY", "EMAIL_REDIRECT_TO",
    "TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_FROM",
    "VAPID_PRIVATE_KEY", "VAPID_PUBLIC_KEY", "COMMISSIONER_PHONE",
):
    os.environ.pop(_var, None)

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from app.db.base import Base, import_models
from app.db.session import SessionLocal, engine, get_db
from app.models.issue import Issue, IssueCategory, IssueState, Severity
from app.models.ward import Ward
from app.services.notifications import DispatchResult

import_models()

T0 = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)

# Karol Bagh test ward: a ~2km square around (28.65, 77.19)
WARD_CENTER = (28.65, 77.19)
WARD_BOUNDARY = {
    "type": "Polygon",
    "coordinates": [[
        [77.18, 28.64], [77.20, 28.64], [77.20, 28.66], [77.18, 28.66], [77.18, 28.64],
    ]],
}
OUTSIDE_WARD = (28.70, 77.30)


def hours(n: float) -> timedelta:
    return timedelta(hours=n)


def offset_north(lat: float, lon: float, meters: float) -> tuple[float, float]:
    """Point `meters` due north; one degree of latitude is ~111.2km on the haversine sphere."""
    return lat + meters / 111194.93, lon


class FakeDispatcher:
    """Records every dispatch. Recipients or channels listed in `fail` get a failed result."""

    def __init__(self, fail=()):
        self.fail = set(fail)
        self.emails = []
        self.sms = []
        self.digests = []

    def _result(self, channel, recipient):
        if channel in self.fail or recipient in self.fail:
            return DispatchResult(False, "boom")
        return DispatchResult(True, "[fake]")

    def send_email(self, issue, tier, recipient, recipient_name=None):
        self.emails.append({"issue_id": issue.issue_id, "tier": tier, "to": recipient, "name": recipient_name})
        return self._result("email", recipient)

    def send_sms(self, phone, text):
        self.sms.append({"to": phone, "text": text})
        return self._result("sms", phone)

    def send_digest(self, recipient, rows, recipient_name=None):
        self.digests.append({"to": recipient, "rows": rows})
        return self._result("email", recipient)

    def shutdown(self):
        pass


@pytest.fixture()
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def ward(db):
    w = Ward(
        name="Karol Bagh",
        zone="Central",
        officer_name="R. Sharma",
        officer_email="ward.officer@mcd.gov.in",
        officer_phone="+91-98100-11111",
        boundary=WARD_BOUNDARY,
    )
    db.add(w)
    db.commit()
    db.refresh(w)
    return w


@pytest.fixture()
def make_issue(db):
    """Insert an issue directly, bypassing ingestion, for lifecycle and sweep tests."""

    def _make(**kw):
        kw.setdefault("category", IssueCategory.pothole)
        kw.setdefault("description", "Deep pothole near the metro gate")
        kw.setdefault("lat", WARD_CENTER[0])
        kw.setdefault("lon", WARD_CENTER[1])
        kw.setdefault("severity", Severity.medium)
        kw.setdefault("state", IssueState.SUBMITTED)
        kw.setdefault("supporter_count", 1)
        kw.setdefault("verification_count", 0)
        kw.setdefault("sla_tier", 0)
        kw.setdefault("is_emergency", False)
        kw.setdefault("created_at", T0)
        issue = Issue(**kw)
        db.add(issue)
        db.commit()
        db.refresh(issue)
        return issue

    return _make


@pytest.fixture()
def dispatcher():
    return FakeDispatcher()


@pytest.fixture()
def client(db):
    from app.core.ratelimit import limiter
    from app.main import app

    limiter.enabled = False

    def _get_test_db():
        yield db

    app.dependency_overrides[get_db] = _get_test_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
