from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ConflictError
from app.models.user import User
from app.services.async_error_handler import handle_async_db_errors
from app.utils.logger import identity_logger


class AsyncSessionIdentityService:
    """
    Maps an opaque client-held session token to a durable user.

    There is no authentication: whoever presents a token owns its history.
    Callers that send no token all share the ``DEFAULT_SESSION_TOKEN`` user.
    """

    INSERT_ATTEMPTS = 2

    @staticmethod
    def normalize_token(token: Optional[str]) -> str:
        """Missing or blank tokens fall back to the shared default token."""
        if token is None or not token.strip():
            return settings.DEFAULT_SESSION_TOKEN
        return token

    @classmethod
    async def get_user_by_token(cls, db: AsyncSession, token: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.session_token == token))
        return result.scalar_one_or_none()

    @classmethod
    @handle_async_db_errors("resolve session")
    async def resolve(cls, db: AsyncSession, token: Optional[str]) -> User:
        """
        Return the user for ``token``, creating it on first sight.

        A concurrent insert of the same token loses on the unique constraint;
        the loser re-selects and returns the winner's row. If the row is still
        not visible after one retry, ``ConflictError`` is raised.
        """
        token = cls.normalize_token(token)
        last_error: Optional[IntegrityError] = None

        for attempt in range(cls.INSERT_ATTEMPTS):
            user = await cls.get_user_by_token(db, token)
            if user is not None:
                return user

            user = User(session_token=token)
            db.add(user)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                identity_logger.warning(
                    "Concurrent insert for session token, re-selecting",
                    "resolve",
                    attempt=attempt + 1
                )
                last_error = e
                continue

            await db.refresh(user)
            identity_logger.info("Created user for new session", "resolve", user_id=user.id)
            return user

        user = await cls.get_user_by_token(db, token)
        if user is not None:
            return user

        raise ConflictError(
            "Could not resolve session token after a concurrent insert",
            original_error=last_error
        )
