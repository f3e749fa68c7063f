"""
Institutional Inspections - Domain Errors

Every error raised across the core carries a `kind` so callers branch on the
taxonomy, never on message text.
"""
from typing import Optional


class InspectionError(Exception):
    """Base class for all inspection domain errors."""
    kind = "inspection_error"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "details": self.details}


class NotFoundError(InspectionError):
    """Referenced inspection, indicator or sample does not exist."""
    kind = "not_found"


class ImmutabilityViolation(InspectionError):
    """Mutation attempted on a submitted inspection or a dispatched sample."""
    kind = "immutability_violation"


class IncompleteDataError(InspectionError):
    """Submission attempted before every catalog indicator has a response."""
    kind = "incomplete_data"

    def __init__(self, answered: int, required: int):
        super().__init__(
            f"All indicators must be responded to. Got {answered} of {required}",
            details={"answered": answered, "required": required},
        )
        self.answered = answered
        self.required = required


class PersistenceError(InspectionError):
    """Storage failure after the local retry budget was spent."""
    kind = "persistence"


class DuplicateKeyError(PersistenceError):
    """A unique constraint rejected the write (e.g. inspection code already taken)."""
    kind = "duplicate_key"


class InvalidInputError(InspectionError, ValueError):
    """A required field is missing or a value is out of range."""
    kind = "invalid_input"
