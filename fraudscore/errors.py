"""
Error types raised by the scoring services.
"""


class FraudScoreError(Exception):
    """Base class for all scoring errors."""


class FraudValidationError(FraudScoreError, ValueError):
    """Input rejected before any write happens (bad range, regex, window...)."""


class StorageError(FraudScoreError, RuntimeError):
    """A database operation failed. Wraps the underlying SQLAlchemy error."""

    def __init__(self, action: str, cause: Exception):
        self.action = action
        self.cause = cause
        super().__init__(f"Failed to {action}: {cause}")
