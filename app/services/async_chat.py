from typing import Optional, List, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import case, desc, literal, select, update

from app.core.exceptions import NotFoundError
from app.db.types import UTCDateTime, utcnow
from app.models.conversation import Conversation, DEFAULT_CONVERSATION_TITLE
from app.models.message import Message
from app.models.user import User
from app.schemas.chat import (
    ConversationResponse, MessageResponse, MessageRole, PastedImage
)
from app.services.async_error_handler import handle_async_db_errors


def serialize_images(images: Optional[List[Any]]) -> Optional[List[Dict[str, Any]]]:
    """Turn pasted images into plain JSON values for the ``images`` column."""
    if images is None:
        return None
    serialized = []
    for image in images:
        if isinstance(image, PastedImage):
            serialized.append(image.model_dump(mode="json", exclude_unset=True))
        else:
            serialized.append(dict(image))
    return serialized


def advance_updated_at(now):
    """
    New ``updated_at`` for a touched conversation: ``now``, unless a writer
    that committed first already stored a later value.

    Evaluated against the locked row, so ``updated_at`` never moves backwards.
    """
    now = literal(now, UTCDateTime())
    return case((Conversation.updated_at > now, Conversation.updated_at), else_=now)


class AsyncChatService:
    """
    Durable store for conversations and messages.

    Every method runs on the caller's session and commits its own unit of
    work. Storage errors propagate classified into the service taxonomy;
    references to missing rows raise ``NotFoundError``.
    """

    @staticmethod
    @handle_async_db_errors("create conversation")
    async def create_conversation(
        db: AsyncSession,
        user_id: int,
        title: Optional[str] = None
    ) -> ConversationResponse:
        """Create a new conversation; a row is inserted on every call."""
        owner = await db.get(User, user_id)
        if owner is None:
            raise NotFoundError(f"User {user_id} not found")

        now = utcnow()
        db_conversation = Conversation(
            user_id=user_id,
            title=title or DEFAULT_CONVERSATION_TITLE,
            created_at=now,
            updated_at=now
        )

        db.add(db_conversation)
        await db.commit()
        await db.refresh(db_conversation)

        return ConversationResponse.model_validate(db_conversation)

    @staticmethod
    @handle_async_db_errors("get conversation")
    async def get_conversation(
        db: AsyncSession,
        conversation_id: int,
        user_id: Optional[int] = None
    ) -> ConversationResponse:
        """
        Get a conversation by ID.

        When ``user_id`` is given, a conversation owned by someone else is
        reported as not found.
        """
        query = select(Conversation).where(Conversation.id == conversation_id)
        if user_id is not None:
            query = query.where(Conversation.user_id == user_id)

        result = await db.execute(query)
        conversation = result.scalar_one_or_none()

        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")

        return ConversationResponse.model_validate(conversation)

    @staticmethod
    @handle_async_db_errors("list conversations")
    async def list_conversations(
        db: AsyncSession,
        user_id: int
    ) -> List[ConversationResponse]:
        """All conversations of a user, most recently active first."""
        owner = await db.get(User, user_id)
        if owner is None:
            raise NotFoundError(f"User {user_id} not found")

        result = await db.execute(
            select(Conversation)
            .where(Conversation.user_id == user_id)
            .order_by(desc(Conversation.updated_at), desc(Conversation.id))
        )
        conversations = result.scalars().all()

        return [ConversationResponse.model_validate(conv) for conv in conversations]

    @staticmethod
    @handle_async_db_errors("append message")
    async def append_message(
        db: AsyncSession,
        conversation_id: int,
        role: MessageRole,
        content: str,
        images: Optional[List[Any]] = None
    ) -> MessageResponse:
        """
        Append a message and bump the conversation's ``updated_at``.

        Both writes share one transaction and one timestamp, taken from the
        bumped row so message order follows commit order. The conversation
        row is touched first: that fails fast with ``NotFoundError`` when the
        conversation is gone, and holds the row lock a concurrent retention
        sweep respects.
        """
        bumped = await db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(updated_at=advance_updated_at(utcnow()))
            .returning(Conversation.updated_at)
            .execution_options(synchronize_session=False)
        )
        now = bumped.scalar_one_or_none()
        if now is None:
            await db.rollback()
            raise NotFoundError(f"Conversation {conversation_id} not found")

        db_message = Message(
            conversation_id=conversation_id,
            role=MessageRole(role).value,
            content=content,
            images=serialize_images(images),
            created_at=now
        )
        db.add(db_message)

        await db.commit()
        await db.refresh(db_message)

        return MessageResponse.model_validate(db_message)

    @staticmethod
    @handle_async_db_errors("list messages")
    async def list_messages(
        db: AsyncSession,
        conversation_id: int
    ) -> List[MessageResponse]:
        """Messages of a conversation in append order (oldest first)."""
        exists = await db.execute(
            select(Conversation.id).where(Conversation.id == conversation_id)
        )
        if exists.scalar_one_or_none() is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")

        result = await db.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
        )
        messages = result.scalars().all()

        return [MessageResponse.model_validate(message) for message in messages]

    @staticmethod
    @handle_async_db_errors("rename conversation")
    async def rename_conversation(
        db: AsyncSession,
        conversation_id: int,
        title: str
    ) -> ConversationResponse:
        """Set a new title and bump ``updated_at``; last writer wins."""
        result = await db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(title=title, updated_at=advance_updated_at(utcnow()))
            .returning(Conversation.id, Conversation.title, Conversation.created_at, Conversation.updated_at)
            .execution_options(synchronize_session=False)
        )
        row = result.one_or_none()

        if row is None:
            await db.rollback()
            raise NotFoundError(f"Conversation {conversation_id} not found")

        await db.commit()

        return ConversationResponse(
            id=row.id,
            title=row.title,
            created_at=row.created_at,
            updated_at=row.updated_at
        )
