"""
API dependency injection module.

Resolves the caller's identity from the ``session-id`` header and provides
the shared completion provider and attachment processor.
"""

from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.async_session import get_async_db
from app.models.user import User
from app.services.async_session_identity import AsyncSessionIdentityService
from app.services.attachments import get_attachment_processor
from app.services.completion import get_completion_provider


async def get_session_user(
    session_id: Optional[str] = Header(default=None, alias=settings.SESSION_HEADER),
    db: AsyncSession = Depends(get_async_db)
) -> User:
    """
    Get the user owning the presented session token.

    A missing or blank header resolves to the shared anonymous user.
    """
    return await AsyncSessionIdentityService.resolve(db, session_id)


__all__ = [
    "get_async_db",
    "get_session_user",
    "get_completion_provider",
    "get_attachment_processor",
]
