"""
Async test utilities and helper functions.

Record helpers for the chat history tables plus doubles for the completion
provider and history gateway used by synchronizer tests.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import DeclarativeBase

from app.core.exceptions import ChatHistoryError, NotFoundError
from app.db.types import utcnow
from app.models.conversation import Conversation
from app.models.message import Message
from app.models.user import User
from app.schemas.chat import ConversationResponse, MessageResponse, MessageRole
from app.schemas.completion import AssistantMessage, CompletionResult, ProviderMessage, TokenUsage

T = TypeVar('T', bound=DeclarativeBase)


class AsyncDatabaseTestUtils:
    """Utility class for async database testing operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_record(self, model_class: Type[T], **kwargs) -> T:
        """Create a record in the database and return it."""
        record = model_class(**kwargs)
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return record

    async def count_records(self, model_class: Type[T], **filters) -> int:
        """Count records in a table with optional filters."""
        stmt = select(func.count()).select_from(model_class)
        if filters:
            stmt = stmt.where(*[getattr(model_class, key) == value for key, value in filters.items()])
        result = await self.session.execute(stmt)
        return result.scalar()

    async def create_user(self, session_token: str = "test-session") -> User:
        return await self.create_record(User, session_token=session_token)

    async def create_aged_conversation(
        self,
        user_id: int,
        age: timedelta,
        title: str = "Old chat",
        now: Optional[datetime] = None
    ) -> Conversation:
        """Insert a conversation whose last activity was ``age`` ago."""
        stamp = (now or utcnow()) - age
        return await self.create_record(
            Conversation, user_id=user_id, title=title, created_at=stamp, updated_at=stamp
        )

    async def add_aged_message(self, conversation_id: int, age: timedelta, content: str = "hello") -> Message:
        return await self.create_record(
            Message,
            conversation_id=conversation_id,
            role="user",
            content=content,
            created_at=utcnow() - age
        )


class FakeCompletionProvider:
    """Completion provider double recording every request it receives."""

    def __init__(self, replies: Optional[List[str]] = None, error: Optional[Exception] = None, delay: float = 0.0):
        self.replies = list(replies or ["Hello from the assistant"])
        self.error = error
        self.delay = delay
        self.requests: List[List[ProviderMessage]] = []
        self.release = asyncio.Event()
        self.block = False

    async def complete(self, messages: Sequence[ProviderMessage], model: Optional[str] = None) -> CompletionResult:
        self.requests.append(list(messages))
        if self.block:
            await self.release.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        content = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        return CompletionResult(
            message=AssistantMessage(content=content),
            usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15)
        )


class FakeHistoryGateway:
    """In-memory history gateway with switchable failures."""

    def __init__(self):
        self.conversations: List[ConversationResponse] = []
        self.messages: List[MessageResponse] = []
        self.fail_create: Optional[ChatHistoryError] = None
        self.fail_appends = 0
        self.append_calls = 0
        # When set, the next append waits for `released` before storing
        self.hold_next_append = False
        self.holding = asyncio.Event()
        self.released = asyncio.Event()

    async def create_conversation(self, title: Optional[str] = None) -> ConversationResponse:
        if self.fail_create is not None:
            raise self.fail_create
        now = utcnow()
        conversation = ConversationResponse(
            id=len(self.conversations) + 1,
            title=title or "New Chat",
            created_at=now,
            updated_at=now
        )
        self.conversations.append(conversation)
        return conversation

    async def append_message(self, conversation_id: int, role: MessageRole, content: str, images=None) -> MessageResponse:
        self.append_calls += 1
        if self.hold_next_append:
            self.hold_next_append = False
            self.holding.set()
            await self.released.wait()
        if self.fail_appends > 0:
            self.fail_appends -= 1
            raise NotFoundError(f"Conversation {conversation_id} not found")
        message = MessageResponse(
            id=len(self.messages) + 1,
            conversation_id=conversation_id,
            role=role,
            content=content,
            images=images,
            created_at=utcnow()
        )
        self.messages.append(message)
        return message

    def stored(self, conversation_id: int) -> List[Any]:
        return [(m.role.value, m.content) for m in self.messages if m.conversation_id == conversation_id]
