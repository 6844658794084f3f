"""
Custom exceptions for the ladder engine with user-friendly error messages.

Every exception carries a ``kind`` so an outer HTTP/RPC layer can map it to a
status code without matching on class names.
"""

class LadderException(Exception):
    """Base exception for ladder-related errors."""
    kind = "error"

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class NotFoundError(LadderException):
    """Raised when a ladder, member or challenge does not exist."""
    kind = "not_found"

    def __init__(self, entity: str, identifier: str = None):
        detail = f"{entity} '{identifier}' not found" if identifier else f"{entity} not found"
        super().__init__(detail, f"{entity} not found.")
        self.entity = entity
        self.identifier = identifier

class ForbiddenError(LadderException):
    """Raised when the permission gate rejects the actor."""
    kind = "forbidden"

class InvalidInputError(LadderException):
    """Raised when caller input is malformed or violates a ladder rule."""
    kind = "invalid"

class InvalidStateError(InvalidInputError):
    """Raised when a ladder or challenge is in the wrong state for the operation."""

class UnsupportedStateError(LadderException):
    """Raised when the ladder's scoring system does not support challenges."""
    kind = "unsupported"

    def __init__(self, scoring_system: str):
        super().__init__(
            f"Scoring system '{scoring_system}' does not support challenges",
            "Challenges are only enabled for simple or Elo ladders right now."
        )
        self.scoring_system = scoring_system

class ConflictError(LadderException):
    """Raised when an optimistic-concurrency write loses the race."""
    kind = "conflict"

    def __init__(self, ladder_id: str, expected_version: int = None):
        super().__init__(
            f"Ladder {ladder_id} changed concurrently (expected version {expected_version})",
            "This ladder was updated by someone else. Please try again."
        )
        self.ladder_id = ladder_id
        self.expected_version = expected_version

class DependencyFailureError(LadderException):
    """Raised when a storage operation fails."""
    kind = "dependency"

    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Database error during {operation}: {details}",
            "Database error occurred. Please try again later."
        )
        self.operation = operation
