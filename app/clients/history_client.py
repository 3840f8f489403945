"""
Async HTTP client for the chat history API.

Implements the synchronizer's ``HistoryGateway`` and ``CompletionProvider``
over REST, so a synchronizer can run remotely against a deployed service.
Error responses are raised as the same error types the service uses.
"""

from typing import Any, Dict, List, Optional, Sequence, Type

import httpx

from app.core.config import settings
from app.core.exceptions import (
    ChatHistoryError,
    ConflictError,
    MessageValidationError,
    NotFoundError,
    ProviderFailureError,
    TurnInProgressError,
    UnavailableError,
)
from app.schemas.chat import (
    ConversationEnvelope,
    ConversationListResponse,
    ConversationResponse,
    MessageEnvelope,
    MessageListResponse,
    MessageResponse,
    MessageRole,
    PastedImage,
)
from app.schemas.completion import (
    ChatRequest, CompletionResult, FileUploadResponse, ProviderMessage, UploadedFile
)
from app.services.async_chat import serialize_images

STATUS_ERRORS: Dict[int, Type[ChatHistoryError]] = {
    404: NotFoundError,
    409: ConflictError,
    422: MessageValidationError,
    502: ProviderFailureError,
    503: UnavailableError,
    504: ProviderFailureError,
}


class ChatHistoryClient:
    """REST client that identifies itself with the ``session-id`` header."""

    def __init__(
        self,
        base_url: str,
        session_id: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.session_id = session_id or settings.DEFAULT_SESSION_TOKEN
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={settings.SESSION_HEADER: self.session_id},
            timeout=timeout,
            transport=transport
        )

    async def __aenter__(self) -> "ChatHistoryClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    @staticmethod
    def _raise_for_status(response: httpx.Response):
        if response.is_success:
            return

        try:
            detail = response.json().get("detail", response.text)
        except ValueError:
            detail = response.text
        if not isinstance(detail, str):
            detail = str(detail)

        error_type = STATUS_ERRORS.get(response.status_code, ChatHistoryError)
        if error_type is ProviderFailureError:
            raise ProviderFailureError(detail, timed_out=response.status_code == 504)
        if response.status_code == 409 and "in progress" in detail:
            raise TurnInProgressError(detail)
        raise error_type(detail)

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise UnavailableError("Chat history API timed out", original_error=e) from e
        except httpx.TransportError as e:
            raise UnavailableError("Chat history API unreachable", original_error=e) from e

        self._raise_for_status(response)
        return response.json()

    # Conversations
    async def list_conversations(self) -> List[ConversationResponse]:
        data = await self._request("GET", "/conversations")
        return ConversationListResponse.model_validate(data).conversations

    async def create_conversation(self, title: Optional[str] = None) -> ConversationResponse:
        payload = {"title": title} if title is not None else {}
        data = await self._request("POST", "/conversations", json=payload)
        return ConversationEnvelope.model_validate(data).conversation

    async def rename_conversation(self, conversation_id: int, title: str) -> ConversationResponse:
        data = await self._request("PUT", f"/conversations/{conversation_id}", json={"title": title})
        return ConversationEnvelope.model_validate(data).conversation

    # Messages
    async def list_messages(self, conversation_id: int) -> List[MessageResponse]:
        data = await self._request("GET", f"/conversations/{conversation_id}/messages")
        return MessageListResponse.model_validate(data).messages

    async def append_message(
        self,
        conversation_id: int,
        role: MessageRole,
        content: str,
        images: Optional[List[PastedImage]] = None
    ) -> MessageResponse:
        payload: Dict[str, Any] = {"role": MessageRole(role).value, "content": content}
        if images:
            payload["images"] = serialize_images(images)
        data = await self._request("POST", f"/conversations/{conversation_id}/messages", json=payload)
        return MessageEnvelope.model_validate(data).message

    # Completion and uploads
    async def complete(
        self,
        messages: Sequence[ProviderMessage],
        model: Optional[str] = None
    ) -> CompletionResult:
        request = ChatRequest(messages=list(messages), model=model)
        data = await self._request("POST", "/chat", json=request.model_dump(mode="json", exclude_none=True))
        return CompletionResult.model_validate(data)

    async def upload(self, filename: str, data: bytes, content_type: Optional[str] = None) -> UploadedFile:
        files = {"file": (filename, data, content_type or "application/octet-stream")}
        body = await self._request("POST", "/upload", files=files)
        return FileUploadResponse.model_validate(body).file
