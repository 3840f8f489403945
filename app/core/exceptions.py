"""
Error taxonomy shared by the store, the synchronizer and the API layer.

Storage errors raised by SQLAlchemy are classified into these types by
``app.services.async_error_handler``; the API turns them into HTTP responses.
"""

from typing import Optional


class ChatHistoryError(Exception):
    """Base exception for chat history operations."""

    retryable: bool = False

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.message = message
        self.original_error = original_error
        super().__init__(self.message)


class NotFoundError(ChatHistoryError):
    """A referenced conversation or user does not exist."""
    pass


class ConflictError(ChatHistoryError):
    """A uniqueness race that could not be resolved."""
    pass


class UnavailableError(ChatHistoryError):
    """Storage is unreachable or the connection pool is exhausted."""

    retryable = True


class ProviderFailureError(ChatHistoryError):
    """The completion provider errored or timed out."""

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
        timed_out: bool = False
    ):
        super().__init__(message, original_error)
        self.timed_out = timed_out


class MessageValidationError(ChatHistoryError):
    """Malformed request shape, rejected before any storage access."""
    pass


class TurnInProgressError(ChatHistoryError):
    """A send was attempted while a completion is still awaited."""
    pass
