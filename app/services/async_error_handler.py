"""
Async error handling utilities for database operations.

This module classifies storage-layer failures into the service error taxonomy
(``NotFound``, ``Conflict``, ``Unavailable``, ...) and maps that taxonomy onto
HTTP responses for the API layer.
"""

import logging
from typing import Any, Callable, Dict, Type
from functools import wraps

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    DisconnectionError,
    InterfaceError,
    TimeoutError as SQLTimeoutError,
    DataError,
)
import asyncpg

from app.core.exceptions import (
    ChatHistoryError,
    ConflictError,
    MessageValidationError,
    NotFoundError,
    ProviderFailureError,
    TurnInProgressError,
    UnavailableError,
)

logger = logging.getLogger(__name__)


class AsyncErrorHandler:
    """
    Error classifier for database operations.

    Storage errors are never swallowed: they are converted to a
    ``ChatHistoryError`` subclass and re-raised with the original attached.
    """

    # Order matters: the first isinstance match wins
    ERROR_MAPPINGS = [
        (SQLTimeoutError, UnavailableError, "Timed out waiting for a database connection"),
        (IntegrityError, ConflictError, "Data integrity constraint violation"),
        (DisconnectionError, UnavailableError, "Database connection lost"),
        (OperationalError, UnavailableError, "Database operation failed"),
        (InterfaceError, UnavailableError, "Database interface error"),
        (DataError, MessageValidationError, "Invalid data format"),
    ]

    STATUS_CODES: Dict[Type[ChatHistoryError], int] = {
        NotFoundError: status.HTTP_404_NOT_FOUND,
        ConflictError: status.HTTP_409_CONFLICT,
        TurnInProgressError: status.HTTP_409_CONFLICT,
        UnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
        MessageValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
        ProviderFailureError: status.HTTP_502_BAD_GATEWAY,
    }

    @classmethod
    def classify_error(cls, error: Exception) -> ChatHistoryError:
        """
        Convert a storage error into the service taxonomy.

        Args:
            error: The exception that occurred

        Returns:
            A ChatHistoryError carrying the original error
        """
        if isinstance(error, ChatHistoryError):
            return error

        for exc_type, domain_type, detail in cls.ERROR_MAPPINGS:
            if isinstance(error, exc_type):
                return domain_type(detail, original_error=error)

        if isinstance(error, asyncpg.PostgresError):
            return cls._handle_postgres_error(error)

        return ChatHistoryError("An unexpected database error occurred", original_error=error)

    @classmethod
    def _handle_postgres_error(cls, error: asyncpg.PostgresError) -> ChatHistoryError:
        """Classify PostgreSQL errors raised directly by asyncpg."""
        if isinstance(error, (asyncpg.ConnectionDoesNotExistError,
                              asyncpg.ConnectionFailureError,
                              asyncpg.TooManyConnectionsError)):
            return UnavailableError("Database connection failed", original_error=error)

        if isinstance(error, asyncpg.UniqueViolationError):
            return ConflictError("Unique constraint violation", original_error=error)

        if isinstance(error, asyncpg.ForeignKeyViolationError):
            return NotFoundError("Referenced row does not exist", original_error=error)

        if isinstance(error, asyncpg.QueryCanceledError):
            return UnavailableError("Database statement timed out", original_error=error)

        return ChatHistoryError(f"PostgreSQL error: {error.sqlstate}", original_error=error)

    @classmethod
    def handle_error(cls, error: Exception, operation_name: str = "database operation") -> ChatHistoryError:
        """
        Classify and log a storage error.

        Args:
            error: The exception that occurred
            operation_name: Name of the operation for logging

        Returns:
            The classified error, ready to be raised
        """
        domain_error = cls.classify_error(error)

        if domain_error.retryable:
            logger.warning(f"Retryable error in {operation_name}: {error}")
        else:
            logger.error(f"Non-retryable error in {operation_name}: {error}")

        return domain_error

    @classmethod
    def is_retryable(cls, error: Exception) -> bool:
        return cls.classify_error(error).retryable

    @classmethod
    def status_code_for(cls, error: ChatHistoryError) -> int:
        if isinstance(error, ProviderFailureError) and error.timed_out:
            return status.HTTP_504_GATEWAY_TIMEOUT
        for error_type, status_code in cls.STATUS_CODES.items():
            if isinstance(error, error_type):
                return status_code
        return status.HTTP_500_INTERNAL_SERVER_ERROR


def handle_async_db_errors(operation_name: str = "database operation"):
    """
    Decorator translating SQLAlchemy and asyncpg errors into the service taxonomy.

    Args:
        operation_name: Name of the operation for logging

    Returns:
        Decorated function with error handling
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            try:
                return await func(*args, **kwargs)
            except (SQLAlchemyError, asyncpg.PostgresError) as e:
                raise AsyncErrorHandler.handle_error(e, operation_name) from e
        return wrapper
    return decorator


async def chat_history_error_handler(request: Request, exc: ChatHistoryError) -> JSONResponse:
    """Render a ChatHistoryError as ``{"detail": ...}`` with its mapped status."""
    status_code = AsyncErrorHandler.status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ChatHistoryError, chat_history_error_handler)
