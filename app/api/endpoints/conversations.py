from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_async_db, get_session_user
from app.models.user import User
from app.schemas.chat import (
    ConversationCreate,
    ConversationEnvelope,
    ConversationListResponse,
    ConversationUpdate,
    MessageCreate,
    MessageEnvelope,
    MessageListResponse,
)
from app.services.async_chat import AsyncChatService
from app.utils.logger import api_logger

router = APIRouter()


@router.get("", response_model=ConversationListResponse)
async def list_conversations(
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Depends(get_session_user)
):
    """Get the caller's conversations, most recently active first."""
    conversations = await AsyncChatService.list_conversations(db, current_user.id)
    return ConversationListResponse(conversations=conversations)


@router.post("", response_model=ConversationEnvelope, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    conversation_data: ConversationCreate,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Depends(get_session_user)
):
    """Create a new conversation."""
    conversation = await AsyncChatService.create_conversation(
        db,
        current_user.id,
        conversation_data.title
    )
    api_logger.info("Conversation created", "conversations", conversation_id=conversation.id)
    return ConversationEnvelope(conversation=conversation)


@router.put("/{conversation_id}", response_model=ConversationEnvelope)
async def rename_conversation(
    conversation_id: int,
    conversation_update: ConversationUpdate,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Depends(get_session_user)
):
    """Rename a conversation."""
    await AsyncChatService.get_conversation(db, conversation_id, current_user.id)
    conversation = await AsyncChatService.rename_conversation(
        db,
        conversation_id,
        conversation_update.title
    )
    return ConversationEnvelope(conversation=conversation)


@router.get("/{conversation_id}/messages", response_model=MessageListResponse)
async def list_messages(
    conversation_id: int,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Depends(get_session_user)
):
    """Get the messages of a conversation, oldest first."""
    await AsyncChatService.get_conversation(db, conversation_id, current_user.id)
    messages = await AsyncChatService.list_messages(db, conversation_id)
    return MessageListResponse(messages=messages)


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageEnvelope,
    status_code=status.HTTP_201_CREATED
)
async def append_message(
    conversation_id: int,
    message_data: MessageCreate,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Depends(get_session_user)
):
    """Append a message to a conversation."""
    await AsyncChatService.get_conversation(db, conversation_id, current_user.id)
    message = await AsyncChatService.append_message(
        db,
        conversation_id,
        message_data.role,
        message_data.content,
        message_data.images
    )
    return MessageEnvelope(message=message)
