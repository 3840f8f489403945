import asyncio
from typing import Sequence

from fastapi import APIRouter, Depends, File, UploadFile

from app.api.deps import get_attachment_processor, get_completion_provider
from app.core.config import settings
from app.core.exceptions import ProviderFailureError
from app.schemas.completion import (
    ChatRequest, CompletionResult, FileUploadResponse, ProviderMessage
)
from app.services.attachments import AttachmentProcessor
from app.services.completion import CompletionProvider
from app.utils.logger import api_logger

router = APIRouter()


def has_images(messages: Sequence[ProviderMessage]) -> bool:
    for message in messages:
        if message.image_url is not None:
            return True
        if isinstance(message.content, list) and any(p.type == "image_url" for p in message.content):
            return True
    return False


@router.post("/chat", response_model=CompletionResult)
async def chat(
    request: ChatRequest,
    provider: CompletionProvider = Depends(get_completion_provider)
):
    """
    Send a composed message history to the completion provider.

    Vision requests get the longer attachment timeout.
    """
    timeout = (
        settings.ATTACHMENT_COMPLETION_TIMEOUT_SECONDS if has_images(request.messages)
        else settings.COMPLETION_TIMEOUT_SECONDS
    )
    try:
        result = await asyncio.wait_for(
            provider.complete(request.messages, model=request.model),
            timeout=timeout
        )
    except asyncio.TimeoutError as e:
        raise ProviderFailureError(
            f"Completion timed out after {timeout}s", original_error=e, timed_out=True
        ) from e

    api_logger.info(
        "Completion served", "chat",
        messages=len(request.messages),
        total_tokens=result.usage.total_tokens if result.usage else None
    )
    return result


@router.post("/upload", response_model=FileUploadResponse)
async def upload_file(
    file: UploadFile = File(...),
    processor: AttachmentProcessor = Depends(get_attachment_processor)
):
    """Extract content from an uploaded image, PDF or text file."""
    data = await file.read()
    uploaded = processor.process(file.filename or "", data, file.content_type)
    api_logger.info("File processed", "upload", filename=uploaded.originalname, type=uploaded.type)
    return FileUploadResponse(file=uploaded)
