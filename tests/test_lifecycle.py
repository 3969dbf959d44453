"""Tests for the guarded state machine, the geofence and citizen verification."""

import pytest
from conftest import T0, WARD_CENTER, hours, offset_north

from app.core.errors import (
    AlreadyVerified,
    GeofenceUnavailable,
    GeofenceViolation,
    InvalidTransition,
    IssueNotFound,
    IssueValidationError,
)
from app.models.issue import IssueState, Severity
from app.models.verification import CitizenVerification
from app.services.events import EventBroker
from app.services.lifecycle import GuardContext, allowed_next, transition, update_severity, verify_by_citizen
from app.services.sla import as_utc


def _officer_at(meters_north: float) -> GuardContext:
    lat, lon = offset_north(*WARD_CENTER, meters_north)
    return GuardContext(officer_lat=lat, officer_lon=lon)


class RecordingBroker(EventBroker):
    def __init__(self):
        super().__init__()
        self.events = []

    def publish(self, event_type, **payload):
        self.events.append((event_type, payload))


class TestGraph:
    def test_allowed_next(self):
        assert allowed_next(IssueState.SUBMITTED) == (IssueState.VERIFIED,)
        assert allowed_next(IssueState.RESOLVED) == ()
        assert allowed_next(IssueState.MERGED) == ()

    def test_skip_is_rejected_with_allowed_set(self, db, make_issue):
        issue = make_issue()
        with pytest.raises(InvalidTransition) as e:
            transition(db, issue.id, IssueState.RESOLVED, now=T0)
        assert e.value.current_state == IssueState.SUBMITTED
        assert e.value.allowed == [IssueState.VERIFIED]
        assert e.value.to_dict()["allowed_states"] == ["VERIFIED"]
        db.refresh(issue)
        assert issue.state == IssueState.SUBMITTED

    def test_no_backward_moves(self, db, make_issue):
        issue = make_issue(state=IssueState.ASSIGNED, assigned_at=T0)
        with pytest.raises(InvalidTransition):
            transition(db, issue.id, IssueState.VERIFIED, now=T0)

    def test_merged_is_terminal(self, db, make_issue):
        root = make_issue()
        child = make_issue(state=IssueState.MERGED, parent_id=root.id)
        with pytest.raises(InvalidTransition) as e:
            transition(db, child.id, IssueState.VERIFIED, now=T0)
        assert e.value.allowed == []

    def test_unknown_issue(self, db):
        with pytest.raises(IssueNotFound):
            transition(db, 999, IssueState.VERIFIED, now=T0)

    def test_forward_steps_stamp_timestamps(self, db, make_issue):
        issue = make_issue()
        transition(db, issue.id, IssueState.VERIFIED, now=T0 + hours(1))
        issue = transition(db, issue.id, IssueState.ASSIGNED, now=T0 + hours(2))
        assert as_utc(issue.verified_at) == T0 + hours(1)
        assert as_utc(issue.assigned_at) == T0 + hours(2)
        assert issue.resolved_at is None

    def test_assignment_records_officer_contact(self, db, make_issue):
        issue = make_issue(state=IssueState.VERIFIED, verified_at=T0)
        guard = GuardContext(officer_name="A. Gupta", officer_email="a.gupta@mcd.gov.in", officer_phone="+91-1")
        issue = transition(db, issue.id, IssueState.ASSIGNED, guard, now=T0)
        assert issue.assigned_officer_name == "A. Gupta"
        assert issue.assigned_officer_email == "a.gupta@mcd.gov.in"

    def test_transition_event_published(self, db, make_issue):
        broker = RecordingBroker()
        issue = make_issue()
        transition(db, issue.id, IssueState.VERIFIED, now=T0, broker=broker)
        assert broker.events == [
            ("transition", {"issue_id": issue.id, "from_state": "SUBMITTED", "to_state": "VERIFIED"})
        ]


class TestGeofence:
    def _assigned(self, make_issue, **kw):
        return make_issue(state=IssueState.ASSIGNED, assigned_at=T0, **kw)

    def test_within_radius_starts_work(self, db, make_issue):
        issue = self._assigned(make_issue)
        issue = transition(db, issue.id, IssueState.IN_PROGRESS, _officer_at(99.5), now=T0 + hours(3))
        assert issue.state == IssueState.IN_PROGRESS
        assert as_utc(issue.in_progress_at) == T0 + hours(3)

    def test_101m_is_rejected_with_distance(self, db, make_issue):
        issue = self._assigned(make_issue)
        with pytest.raises(GeofenceViolation) as e:
            transition(db, issue.id, IssueState.IN_PROGRESS, _officer_at(101), now=T0)
        assert 100.5 < e.value.distance_m < 101.5
        assert e.value.status_code == 403
        db.refresh(issue)
        assert issue.state == IssueState.ASSIGNED
        assert issue.in_progress_at is None

    def test_missing_officer_location(self, db, make_issue):
        issue = self._assigned(make_issue)
        with pytest.raises(GeofenceUnavailable) as e:
            transition(db, issue.id, IssueState.IN_PROGRESS, GuardContext(), now=T0)
        assert e.value.missing == "officer"
        assert e.value.status_code == 400

    def test_issue_without_coordinate(self, db, make_issue):
        issue = self._assigned(make_issue, lat=None, lon=None)
        with pytest.raises(GeofenceUnavailable) as e:
            transition(db, issue.id, IssueState.IN_PROGRESS, _officer_at(0), now=T0)
        assert e.value.missing == "issue"
        assert e.value.status_code == 422

    def test_other_transitions_ignore_location(self, db, make_issue):
        issue = make_issue()
        issue = transition(db, issue.id, IssueState.VERIFIED, _officer_at(5000), now=T0)
        assert issue.state == IssueState.VERIFIED


class TestCitizenVerification:
    def test_first_verification_promotes(self, db, make_issue):
        issue = make_issue()
        issue = verify_by_citizen(db, issue.id, "citizen-token-1", now=T0 + hours(2))
        assert issue.state == IssueState.VERIFIED
        assert issue.verification_count == 1
        assert as_utc(issue.verified_at) == T0 + hours(2)
        assert issue.supporter_count == 1

    def test_later_verifications_only_count(self, db, make_issue):
        issue = make_issue(state=IssueState.ASSIGNED, assigned_at=T0)
        verify_by_citizen(db, issue.id, "citizen-token-1", now=T0)
        issue = verify_by_citizen(db, issue.id, "citizen-token-2", now=T0)
        assert issue.state == IssueState.ASSIGNED
        assert issue.verification_count == 2

    def test_same_token_twice(self, db, make_issue):
        issue = make_issue()
        verify_by_citizen(db, issue.id, "citizen-token-1", now=T0)
        with pytest.raises(AlreadyVerified):
            verify_by_citizen(db, issue.id, "citizen-token-1", now=T0)
        assert db.query(CitizenVerification).count() == 1

    def test_short_token(self, db, make_issue):
        issue = make_issue()
        with pytest.raises(IssueValidationError):
            verify_by_citizen(db, issue.id, "abc", now=T0)

    def test_merged_child_cannot_be_verified(self, db, make_issue):
        root = make_issue()
        child = make_issue(state=IssueState.MERGED, parent_id=root.id)
        with pytest.raises(IssueValidationError):
            verify_by_citizen(db, child.id, "citizen-token-1", now=T0)


class TestSeverity:
    def test_critical_sets_emergency(self, db, make_issue):
        issue = make_issue()
        issue = update_severity(db, issue.id, Severity.critical, now=T0)
        assert issue.is_emergency

    def test_downgrade_clears_flag_below_ten_supporters(self, db, make_issue):
        issue = make_issue(severity=Severity.critical, is_emergency=True, supporter_count=3)
        issue = update_severity(db, issue.id, Severity.low, now=T0)
        assert not issue.is_emergency

    def test_supporters_keep_flag(self, db, make_issue):
        issue = make_issue(supporter_count=12, is_emergency=True)
        issue = update_severity(db, issue.id, Severity.low, now=T0)
        assert issue.is_emergency
