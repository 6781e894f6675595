"""Error taxonomy shared by the goal, check-in and settlement services."""

from __future__ import annotations


class GoalNotFoundError(LookupError):
    """Goal is missing or not owned by the caller (deliberately indistinguishable)."""

    kind = "not_found"

    def __init__(self, message: str = "Goal not found") -> None:
        super().__init__(message)


class GoalValidationError(ValueError):
    kind = "validation_error"


class GoalStateError(Exception):
    """Goal exists but its lifecycle state forbids the requested action."""

    kind = "state_error"


class GoalNotActiveError(GoalStateError):
    def __init__(self, message: str = "Cannot check in for a goal that is not active") -> None:
        super().__init__(message)


class GoalExpiredError(GoalStateError):
    def __init__(self, message: str = "Cannot check in for a goal that has already ended") -> None:
        super().__init__(message)


class AlreadyCheckedInError(GoalStateError):
    def __init__(self, message: str = "You have already checked in for this goal today") -> None:
        super().__init__(message)
