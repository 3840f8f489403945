"""Schemas at the completion provider and attachment processor boundaries."""

from typing import Annotated, Optional, List, Union, Literal

from pydantic import BaseModel, Field


class ImageUrl(BaseModel):
    url: str = Field(..., description="Image URL or base64 data URL")


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: ImageUrl


ContentPart = Annotated[Union[TextPart, ImagePart], Field(discriminator="type")]


class ProviderMessage(BaseModel):
    """
    One message of a completion request.

    ``content`` is either a plain string or an ordered list of parts (text
    first, then images). ``image_url`` is the legacy single-image side channel
    kept for older clients.
    """
    role: Literal["user", "assistant", "system"]
    content: Union[str, List[ContentPart]]
    image_url: Optional[ImageUrl] = None


class ChatRequest(BaseModel):
    """Schema for a completion request."""
    messages: List[ProviderMessage] = Field(..., min_length=1, description="Conversation history, oldest first")
    model: Optional[str] = Field(default=None, description="Model override")


class AssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class CompletionResult(BaseModel):
    """Assistant reply plus token usage as returned by a provider."""
    message: AssistantMessage
    usage: Optional[TokenUsage] = None


class UploadedFile(BaseModel):
    """An uploaded file after content extraction."""
    filename: str = Field(..., description="Stored filename")
    originalname: str = Field(..., description="Filename as uploaded")
    size: int = Field(..., ge=0, description="File size in bytes")
    url: Optional[str] = Field(default=None, description="Where the upload can be fetched, if stored")
    type: Literal["image", "pdf", "text"]
    content: Optional[str] = Field(default=None, description="Base64 data URL for images, extracted text otherwise")


class FileUploadResponse(BaseModel):
    success: bool = True
    file: UploadedFile
