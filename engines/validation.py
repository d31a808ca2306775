"""Validation errors and input checks shared by the adaptive engines.

Every error is raised before an engine touches the value it was asked to
update, so callers never observe a partially applied change. Callers exposing
the engines over a transport should map these to 4xx-class responses.
"""

from typing import Any, Iterable


class EngineValidationError(ValueError):
    """Base class for engine input errors."""
    pass


class InvalidQualityRating(EngineValidationError):
    """Raised when a recall quality rating is outside 0-5."""

    def __init__(self, quality: Any) -> None:
        super().__init__(f"Quality rating must be an integer between 0 and 5, got {quality!r}")
        self.quality = quality


class InvalidReviewItem(EngineValidationError):
    """Raised when a review item violates the SM-2 state invariants."""
    pass


class UnknownBranchCondition(EngineValidationError):
    """Raised for a branch condition tag the path engine does not understand."""

    def __init__(self, condition_type: Any) -> None:
        super().__init__(f"Unknown branch condition type: {condition_type!r}")
        self.condition_type = condition_type


class MissingConceptNode(EngineValidationError):
    """Raised when a branch targets a module that has no node in the course graph."""

    def __init__(self, target_module_id: str, branch_id: str | None = None) -> None:
        where = f" (branch {branch_id})" if branch_id else ""
        super().__init__(f"No concept node for module {target_module_id!r}{where}")
        self.target_module_id = target_module_id
        self.branch_id = branch_id


class BranchNotFound(EngineValidationError):
    """Raised when an action references a branch id the course does not define."""

    def __init__(self, branch_id: Any) -> None:
        super().__init__(f"Branch not found: {branch_id!r}")
        self.branch_id = branch_id


class UnknownBranchAction(EngineValidationError):
    """Raised for an unsupported learning path action."""

    def __init__(self, action: Any, valid: Iterable[str]) -> None:
        super().__init__(
            f"Invalid action {action!r}. Must be one of: {', '.join(sorted(valid))}"
        )
        self.action = action


class PathExhausted(EngineValidationError):
    """Raised when moving forward from the terminal node of a path."""
    pass


class UnknownXPAction(EngineValidationError):
    """Raised for an XP action type missing from the reward table."""

    def __init__(self, action_type: Any) -> None:
        super().__init__(f"Unknown XP action type: {action_type!r}")
        self.action_type = action_type


class BadgeCatalogError(EngineValidationError):
    """Raised when a badge catalog contains invalid data."""
    pass


def validate_quality(quality: Any) -> int:
    """Return ``quality`` if it is an integer rating in 0-5."""
    if isinstance(quality, bool) or not isinstance(quality, int):
        raise InvalidQualityRating(quality)
    if not 0 <= quality <= 5:
        raise InvalidQualityRating(quality)
    return quality


def validate_review_state(ease_factor: float, interval: int, repetitions: int) -> None:
    """Validate SM-2 state carried by a review item."""
    if ease_factor < 1.3:
        raise InvalidReviewItem(f"Ease factor must be at least 1.3, got {ease_factor}")
    if interval < 0:
        raise InvalidReviewItem(f"Interval may not be negative, got {interval}")
    if repetitions < 0:
        raise InvalidReviewItem(f"Repetitions may not be negative, got {repetitions}")
