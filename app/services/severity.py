# File: app/services/severity.py
from app.models.issue import Issue, Severity

EMERGENCY_SUPPORTERS = 10


def is_emergency(severity: Severity, supporter_count: int) -> bool:
    return severity == Severity.critical or supporter_count >= EMERGENCY_SUPPORTERS


def refresh_emergency(issue: Issue) -> bool:
    """Recompute the derived flag. Every writer of severity or supporter_count calls this."""
    issue.is_emergency = is_emergency(issue.severity, issue.supporter_count or 1)
    return issue.is_emergency
