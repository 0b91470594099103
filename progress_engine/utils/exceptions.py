"""
Error taxonomy for the progress engine with user-friendly error messages.

Expected outcomes (not eligible, already completed, required task) are returned
as result values carrying an ErrorKind. Only the exceptions below are raised.
"""

from enum import Enum


class ErrorKind(Enum):
    VALIDATION_ERROR = "validation_error"
    NOT_ELIGIBLE = "not_eligible"
    TASK_NOT_FOUND = "task_not_found"
    TASK_REQUIRED = "task_required"
    ALREADY_COMPLETED = "already_completed"
    ALREADY_SKIPPED = "already_skipped"
    CONFLICT_RETRY = "conflict_retry"
    STORAGE_UNAVAILABLE = "storage_unavailable"


class EngineException(Exception):
    """Base exception for progress engine errors."""
    kind = ErrorKind.STORAGE_UNAVAILABLE

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.message = message
        self.user_message = user_message or message

class ValidationError(EngineException):
    """Raised when an incoming event is malformed or names an unknown event type."""
    kind = ErrorKind.VALIDATION_ERROR

    def __init__(self, reason: str):
        super().__init__(
            f"Invalid event: {reason}",
            f"Event rejected: {reason}"
        )

class ConflictRetry(EngineException):
    """Raised when a concurrent update raced on the same row."""
    kind = ErrorKind.CONFLICT_RETRY

    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Concurrent update conflict during {operation}: {details}",
            "Progress update collided with another update. Please retry."
        )
        self.operation = operation

class StorageUnavailable(EngineException):
    """Raised when a storage collaborator fails or exceeds its timeout."""
    kind = ErrorKind.STORAGE_UNAVAILABLE

    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Storage error during {operation}: {details}",
            "Progress storage is temporarily unavailable. Please try again later."
        )
        self.operation = operation
