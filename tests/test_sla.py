"""Tests for the SLA clock and dashboard labels."""

from datetime import datetime

from conftest import T0, hours

from app.models.issue import Issue, IssueState
from app.services.sla import SlaLabel, as_utc, classify, label_for, tier_for_hours


def _issue(**kw) -> Issue:
    kw.setdefault("state", IssueState.ASSIGNED)
    kw.setdefault("created_at", T0)
    kw.setdefault("sla_tier", 0)
    return Issue(**kw)


class TestTierForHours:
    def test_thresholds(self):
        assert tier_for_hours(0) == 0
        assert tier_for_hours(71.9) == 0
        assert tier_for_hours(72) == 1
        assert tier_for_hours(119.9) == 1
        assert tier_for_hours(120) == 2
        assert tier_for_hours(168) == 3
        assert tier_for_hours(10_000) == 3


class TestLabel:
    def test_watch_from_48_hours(self):
        assert label_for(0, 47.9) == SlaLabel.ON_TRACK
        assert label_for(0, 48) == SlaLabel.WATCH

    def test_stored_tier_drives_label(self):
        # a tier raised early (auto-promotion) shows even though the clock is young
        assert label_for(2, 1) == SlaLabel.URGENT
        assert label_for(1, 0) == SlaLabel.WARNING
        assert label_for(3, 0) == SlaLabel.CRITICAL

    def test_clock_past_threshold_without_sweep_is_not_escalated(self):
        assert label_for(0, 130) == SlaLabel.WATCH


class TestClassify:
    def test_clock_starts_at_assignment(self):
        issue = _issue(created_at=T0 - hours(100), assigned_at=T0)
        status = classify(issue, now=T0 + hours(10))
        assert status.hours_elapsed == 10.0
        assert status.next_deadline_hours == 72
        assert status.hours_until_next == 62.0

    def test_falls_back_to_creation(self):
        issue = _issue(state=IssueState.SUBMITTED)
        assert classify(issue, now=T0 + hours(5)).hours_elapsed == 5.0

    def test_past_last_threshold(self):
        issue = _issue(assigned_at=T0, sla_tier=3)
        status = classify(issue, now=T0 + hours(200))
        assert status.tier == 3
        assert status.label == SlaLabel.CRITICAL
        assert status.next_deadline_hours is None
        assert status.hours_until_next == 0.0

    def test_naive_timestamps_are_utc(self):
        naive = datetime(2025, 3, 3, 9, 0)
        issue = _issue(assigned_at=naive)
        assert classify(issue, now=T0 + hours(1)).hours_elapsed == 1.0
        assert as_utc(naive) == T0

    def test_never_writes(self):
        issue = _issue(assigned_at=T0)
        classify(issue, now=T0 + hours(150))
        assert issue.sla_tier == 0
