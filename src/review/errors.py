"""
Review Engine Errors.

Taxonomy:
- ValidationError: caller-supplied data failed a required-field or type check
- ConfigurationError: a scheduler constant is outside its documented bounds
- InsufficientDataWarning: advisory value attached to a result, never raised

Out-of-range numeric fields are clamped, not reported.
"""

from __future__ import annotations

from dataclasses import dataclass


class ReviewEngineError(Exception):
    """Base class for review engine failures."""
    pass


class ValidationError(ReviewEngineError):
    """Raised when a record or request fails boundary validation."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class ConfigurationError(ValidationError):
    """Raised when scheduler configuration is outside documented bounds."""
    pass


@dataclass(frozen=True)
class InsufficientDataWarning:
    """Fewer candidates existed than a session asked for."""

    requested: int
    available: int
    message: str

    @classmethod
    def for_session(cls, requested: int, available: int) -> InsufficientDataWarning:
        return cls(
            requested=requested,
            available=available,
            message=f"Only {available} of {requested} requested cards are available",
        )
