from datetime import datetime
from typing import Optional, List
from enum import Enum

from pydantic import BaseModel, Field, ConfigDict, field_validator


class MessageRole(str, Enum):
    """Roles a stored message can have."""
    USER = "user"
    ASSISTANT = "assistant"


class PastedImage(BaseModel):
    """Image pasted into the input box, carried inline as a base64 data URL."""
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = Field(default=None, description="Client-generated image identifier")
    content: str = Field(..., description="Base64 data URL of the image")
    filename: str = Field(..., description="Original filename")
    size: Optional[int] = Field(default=None, ge=0, description="Size in bytes")


# Conversation Schemas
class ConversationCreate(BaseModel):
    """Schema for creating a new conversation."""
    title: Optional[str] = Field(default=None, max_length=255, description="Conversation title")

    @field_validator("title")
    @classmethod
    def blank_title_to_default(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip()


class ConversationUpdate(BaseModel):
    """Schema for renaming a conversation."""
    title: str = Field(..., min_length=1, max_length=255, description="New conversation title")

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be blank")
        return value


class ConversationResponse(BaseModel):
    """Wire shape of a conversation."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    created_at: datetime
    updated_at: datetime


class ConversationEnvelope(BaseModel):
    conversation: ConversationResponse


class ConversationListResponse(BaseModel):
    """Conversations ordered most-recently-active first."""
    conversations: List[ConversationResponse]


# Message Schemas
class MessageCreate(BaseModel):
    """Schema for appending a message to a conversation."""
    role: MessageRole = Field(..., description="Author of the message")
    content: str = Field(..., description="Message text, with any extracted file text already appended")
    images: Optional[List[PastedImage]] = Field(default=None, description="Pasted images in paste order")


class MessageResponse(BaseModel):
    """Wire shape of a stored message."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    conversation_id: int
    role: MessageRole
    content: str
    images: Optional[List[PastedImage]] = None
    created_at: datetime


class MessageEnvelope(BaseModel):
    message: MessageResponse


class MessageListResponse(BaseModel):
    """Messages ordered oldest first."""
    messages: List[MessageResponse]
