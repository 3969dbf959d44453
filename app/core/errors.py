# File: app/core/errors.py
from typing import Iterable, Optional


class LifecycleError(Exception):
    """Base for errors raised by the issue lifecycle services.

    `status_code` is what the HTTP layer answers with, `to_dict()` the JSON body.
    """
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "detail": self.message}


class IssueNotFound(LifecycleError):
    status_code = 404

    def __init__(self, issue_id: int):
        super().__init__(f"Issue #{issue_id} not found")
        self.issue_id = issue_id


class IssueValidationError(LifecycleError):
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        out = super().to_dict()
        if self.field:
            out["field"] = self.field
        return out


class InvalidTransition(LifecycleError):
    status_code = 409

    def __init__(self, current_state, target_state, allowed: Iterable):
        self.current_state = current_state
        self.target_state = target_state
        self.allowed = list(allowed)
        names = ", ".join(s.value for s in self.allowed) or "none"
        super().__init__(
            f"Transition {current_state.value}→{target_state.value} is not allowed. "
            f"Valid next states: [{names}]"
        )

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["current_state"] = self.current_state.value
        out["allowed_states"] = [s.value for s in self.allowed]
        return out


class GeofenceUnavailable(LifecycleError):
    """Either the officer or the issue has no coordinate to compare."""

    def __init__(self, missing: str):
        self.missing = missing
        if missing == "officer":
            self.status_code = 400
            msg = "Officer coordinates are required to start IN_PROGRESS"
        else:
            self.status_code = 422
            msg = "Issue has no coordinates, cannot verify officer proximity"
        super().__init__(msg)

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["missing"] = self.missing
        return out


class GeofenceViolation(LifecycleError):
    status_code = 403

    def __init__(self, distance_m: float, limit_m: float):
        self.distance_m = distance_m
        self.limit_m = limit_m
        super().__init__(
            f"Officer must be within {limit_m:.0f}m of the issue location. "
            f"Current distance: {distance_m:.0f}m"
        )

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["distance_m"] = round(self.distance_m, 1)
        out["limit_m"] = self.limit_m
        return out


class AlreadyVerified(LifecycleError):
    status_code = 409

    def __init__(self, issue_id: int):
        super().__init__(f"This token has already verified issue #{issue_id}")
        self.issue_id = issue_id


class VotingClosed(LifecycleError):
    """Acceptance votes are only taken once an issue is RESOLVED."""
    status_code = 409

    def __init__(self, issue_id: int, state):
        self.state = state
        super().__init__(f"Issue #{issue_id} is {state.value}; only RESOLVED issues can be voted on")

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["current_state"] = self.state.value
        return out
