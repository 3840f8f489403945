"""Pydantic schemas for request and response validation."""

# Conversation and message schemas
from .chat import (
    MessageRole,
    PastedImage,
    ConversationCreate,
    ConversationUpdate,
    ConversationResponse,
    ConversationEnvelope,
    ConversationListResponse,
    MessageCreate,
    MessageResponse,
    MessageEnvelope,
    MessageListResponse
)

# Completion and upload schemas
from .completion import (
    ImageUrl,
    TextPart,
    ImagePart,
    ContentPart,
    ProviderMessage,
    ChatRequest,
    AssistantMessage,
    TokenUsage,
    CompletionResult,
    UploadedFile,
    FileUploadResponse
)

# Synchronizer state
from .ephemeral import EphemeralMessage

__all__ = [
    # Conversation and message schemas
    "MessageRole",
    "PastedImage",
    "ConversationCreate",
    "ConversationUpdate",
    "ConversationResponse",
    "ConversationEnvelope",
    "ConversationListResponse",
    "MessageCreate",
    "MessageResponse",
    "MessageEnvelope",
    "MessageListResponse",
    # Completion and upload schemas
    "ImageUrl",
    "TextPart",
    "ImagePart",
    "ContentPart",
    "ProviderMessage",
    "ChatRequest",
    "AssistantMessage",
    "TokenUsage",
    "CompletionResult",
    "UploadedFile",
    "FileUploadResponse",
    # Synchronizer state
    "EphemeralMessage",
]
