"""
Reconciles the optimistic, in-memory message list with the durable store.

A turn goes IDLE -> AWAITING_COMPLETION -> COMPLETED -> PERSIST_USER ->
PERSIST_ASSISTANT -> IDLE. Each ephemeral message carries a ``saved`` flag
that flips exactly once, after the store has accepted it; that flag is the
only thing that decides whether a message still needs saving.
"""

import asyncio
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from app.core.config import settings
from app.core.exceptions import (
    ChatHistoryError,
    MessageValidationError,
    ProviderFailureError,
    TurnInProgressError,
)
from app.db.async_session import AsyncDatabaseManager, get_async_db_manager
from app.models.conversation import DEFAULT_CONVERSATION_TITLE
from app.schemas.chat import ConversationResponse, MessageResponse, MessageRole, PastedImage
from app.schemas.completion import ImageUrl, UploadedFile
from app.schemas.ephemeral import EphemeralMessage
from app.services.async_chat import AsyncChatService
from app.services.completion import CompletionProvider
from app.services.composer import compose, durable_content
from app.utils.logger import sync_logger

TITLE_WORD_LIMIT = 6
TITLE_MAX_LENGTH = 255


class TurnState(str, Enum):
    IDLE = "idle"
    AWAITING_COMPLETION = "awaiting_completion"
    COMPLETED = "completed"
    PERSIST_USER = "persist_user"
    PERSIST_ASSISTANT = "persist_assistant"


class HistoryGateway(Protocol):
    """The slice of the conversation store the synchronizer writes through."""

    async def create_conversation(self, title: Optional[str] = None) -> ConversationResponse:
        ...

    async def append_message(
        self,
        conversation_id: int,
        role: MessageRole,
        content: str,
        images: Optional[List[PastedImage]] = None
    ) -> MessageResponse:
        ...


class DatabaseHistoryGateway:
    """History gateway writing straight to the database, one lease per call."""

    def __init__(self, user_id: int, db_manager: Optional[AsyncDatabaseManager] = None):
        self.user_id = user_id
        self.db_manager = db_manager or get_async_db_manager()

    async def create_conversation(self, title: Optional[str] = None) -> ConversationResponse:
        async with self.db_manager.lease() as db:
            return await AsyncChatService.create_conversation(db, self.user_id, title)

    async def append_message(
        self,
        conversation_id: int,
        role: MessageRole,
        content: str,
        images: Optional[List[PastedImage]] = None
    ) -> MessageResponse:
        async with self.db_manager.lease() as db:
            return await AsyncChatService.append_message(db, conversation_id, role, content, images)


def derive_title(text: str) -> str:
    """First six words of the message, or the default title for empty text."""
    words = text.split()
    if not words:
        return DEFAULT_CONVERSATION_TITLE
    return " ".join(words[:TITLE_WORD_LIMIT])[:TITLE_MAX_LENGTH]


def from_durable(message: MessageResponse) -> EphemeralMessage:
    return EphemeralMessage(
        role=message.role,
        content=message.content,
        created_at=message.created_at,
        images=message.images,
        saved=True,
        durable_id=message.id
    )


class MessageSynchronizer:
    """
    Drives one chat view: sends turns to the completion provider and saves
    each completed turn to the store exactly once.

    Not safe for concurrent use from several tasks except through the
    documented entry points: a second ``send`` while a turn is in flight
    raises ``TurnInProgressError``, and ``persist`` ignores re-entrant calls.
    """

    def __init__(
        self,
        gateway: HistoryGateway,
        provider: CompletionProvider,
        conversation: Optional[ConversationResponse] = None,
        text_timeout: Optional[float] = None,
        attachment_timeout: Optional[float] = None,
        model: Optional[str] = None
    ):
        self.gateway = gateway
        self.provider = provider
        self.conversation = conversation
        self.text_timeout = text_timeout or settings.COMPLETION_TIMEOUT_SECONDS
        self.attachment_timeout = attachment_timeout or settings.ATTACHMENT_COMPLETION_TIMEOUT_SECONDS
        self.model = model

        self.messages: List[EphemeralMessage] = []
        self.state = TurnState.IDLE
        self.epoch = 0
        self.error: Optional[ChatHistoryError] = None
        self.save_error: Optional[ChatHistoryError] = None
        self._completed: List[Tuple[EphemeralMessage, EphemeralMessage]] = []
        # Epoch of the running persist loop, None when no loop is running
        self._persist_epoch: Optional[int] = None

    @property
    def is_loading(self) -> bool:
        return self.state == TurnState.AWAITING_COMPLETION

    @property
    def unsaved_messages(self) -> List[EphemeralMessage]:
        return [m for m in self.messages if not m.saved and not m.is_loading]

    def _timeout_for(self, file: Optional[UploadedFile], images: Optional[Sequence[PastedImage]]) -> float:
        if file is not None or images:
            return self.attachment_timeout
        return self.text_timeout

    @staticmethod
    def _fallback_content(
        text: str,
        file: Optional[UploadedFile],
        images: Optional[Sequence[PastedImage]]
    ) -> str:
        content = text.strip()
        if content:
            return content
        if file is not None:
            return f"Uploaded: {file.originalname}"
        if images:
            return "Images pasted"
        return ""

    def _discard_turn(self, *turn_messages: EphemeralMessage):
        ids = {m.id for m in turn_messages}
        self.messages = [m for m in self.messages if m.id not in ids]

    async def send(
        self,
        text: str,
        file: Optional[UploadedFile] = None,
        images: Optional[Sequence[PastedImage]] = None
    ) -> Optional[EphemeralMessage]:
        """
        Run one turn: optimistic render, completion, then persistence.

        Returns:
            The assistant message, or None when the turn was superseded by a
            conversation switch while the completion was in flight.

        Raises:
            TurnInProgressError: A previous turn is still running
            MessageValidationError: Nothing to send
            ProviderFailureError: The completion failed or timed out
        """
        if self.state != TurnState.IDLE:
            raise TurnInProgressError("A message is already being sent")

        content = self._fallback_content(text, file, images)
        if not content:
            raise MessageValidationError("Nothing to send")

        # Claimed before the first await so rapid repeated sends are rejected
        self.state = TurnState.AWAITING_COMPLETION
        self.error = None
        epoch = self.epoch

        if self.conversation is None:
            try:
                conversation = await self.gateway.create_conversation(derive_title(text))
            except ChatHistoryError as e:
                sync_logger.error(f"Could not create conversation: {e}", "send")
                if epoch == self.epoch:
                    self.error = e
                    self.state = TurnState.IDLE
                raise
            if epoch != self.epoch:
                return None
            self.conversation = conversation
            sync_logger.info("Conversation created for first message", "send", conversation_id=conversation.id)

        user_message = EphemeralMessage(
            role=MessageRole.USER,
            content=content,
            file=file,
            images=list(images) if images else None,
            image_url=(
                ImageUrl(url=file.content or file.url or "")
                if file is not None and file.type == "image" else None
            )
        )
        placeholder = EphemeralMessage(role=MessageRole.ASSISTANT, is_loading=True)
        self.messages.extend([user_message, placeholder])

        history = compose(self.messages)
        timeout = self._timeout_for(file, images)

        try:
            result = await asyncio.wait_for(
                self.provider.complete(history, model=self.model),
                timeout=timeout
            )
        except asyncio.TimeoutError as e:
            failure = ProviderFailureError(
                f"Completion timed out after {timeout:g}s", original_error=e, timed_out=True
            )
            self._fail_turn(epoch, failure, user_message, placeholder)
            raise failure from e
        except ProviderFailureError as e:
            self._fail_turn(epoch, e, user_message, placeholder)
            raise
        except Exception as e:
            failure = ProviderFailureError("Completion request failed", original_error=e)
            self._fail_turn(epoch, failure, user_message, placeholder)
            raise failure from e

        if epoch != self.epoch:
            sync_logger.info("Discarding completion for a superseded conversation", "send")
            return None

        assistant_message = placeholder.model_copy(
            update={"content": result.message.content, "is_loading": False}
        )
        self.messages = [assistant_message if m.id == placeholder.id else m for m in self.messages]
        self._completed.append((user_message, assistant_message))
        self.state = TurnState.COMPLETED

        await self.persist()
        return assistant_message

    def _fail_turn(
        self,
        epoch: int,
        error: ProviderFailureError,
        user_message: EphemeralMessage,
        placeholder: EphemeralMessage
    ):
        sync_logger.error(f"Completion failed: {error.message}", "send", timed_out=error.timed_out)
        if epoch != self.epoch:
            return
        self._discard_turn(user_message, placeholder)
        self.error = error
        self.state = TurnState.IDLE

    async def persist(self) -> int:
        """
        Save every completed turn not yet in the store, user message first.

        A failed save is logged and kept in ``save_error``; the message stays
        unsaved and later turns wait behind it so stored order matches the
        rendered order. Calling again retries.

        A loop still running for a conversation that has since been switched
        away from does not block this one; it stops at its next step.

        Returns:
            int: Number of messages saved by this call
        """
        epoch = self.epoch
        if self._persist_epoch == epoch or self.conversation is None:
            if self._persist_epoch != epoch and self.state == TurnState.COMPLETED:
                self.state = TurnState.IDLE
            return 0

        self._persist_epoch = epoch
        conversation_id = self.conversation.id
        completed = self._completed
        saved_count = 0
        try:
            while completed and epoch == self.epoch:
                user_message, assistant_message = completed[0]

                if not user_message.saved:
                    self.state = TurnState.PERSIST_USER
                    if not await self._save(user_message, conversation_id, epoch):
                        break
                    saved_count += 1

                if not assistant_message.saved:
                    self.state = TurnState.PERSIST_ASSISTANT
                    if not await self._save(assistant_message, conversation_id, epoch):
                        break
                    saved_count += 1

                completed.pop(0)
        finally:
            if epoch == self.epoch:
                self._persist_epoch = None
                self.state = TurnState.IDLE

        return saved_count

    async def _save(self, message: EphemeralMessage, conversation_id: int, epoch: int) -> bool:
        try:
            stored = await self.gateway.append_message(
                conversation_id,
                message.role,
                durable_content(message),
                message.images
            )
        except ChatHistoryError as e:
            sync_logger.error(
                f"Failed to save message: {e.message}", "persist",
                conversation_id=conversation_id, role=message.role.value
            )
            if epoch == self.epoch:
                self.save_error = e
            return False

        if epoch != self.epoch:
            return False

        message.saved = True
        message.durable_id = stored.id
        self.save_error = None
        sync_logger.debug(
            "Message saved", "persist",
            conversation_id=conversation_id, message_id=stored.id, role=message.role.value
        )
        return True

    def _reset(self, conversation: Optional[ConversationResponse], messages: List[EphemeralMessage]):
        discarded = len(self.unsaved_messages)
        if discarded:
            sync_logger.warning("Discarding unsaved messages", "switch", count=discarded)
        self.epoch += 1
        self.conversation = conversation
        self.messages = messages
        self._completed = []
        self._persist_epoch = None
        self.state = TurnState.IDLE
        self.error = None
        self.save_error = None

    def select_conversation(
        self,
        conversation: ConversationResponse,
        history: Sequence[MessageResponse] = ()
    ):
        """Switch to a stored conversation; in-flight and unsaved state is dropped."""
        self._reset(conversation, [from_durable(m) for m in history])

    def start_new_chat(self):
        """Clear the view; the conversation itself is created on the next send."""
        self._reset(None, [])

    def snapshot(self) -> Dict[str, Any]:
        return {
            "conversation_id": self.conversation.id if self.conversation else None,
            "state": self.state.value,
            "epoch": self.epoch,
            "messages": len(self.messages),
            "unsaved": len(self.unsaved_messages),
        }
