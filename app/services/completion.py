from typing import Dict, List, Optional, Protocol, Sequence, Union

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from app.core.config import settings
from app.core.exceptions import ProviderFailureError
from app.schemas.completion import (
    AssistantMessage, CompletionResult, ProviderMessage, TextPart, TokenUsage
)
from app.utils.logger import completion_logger


class CompletionProvider(Protocol):
    """Anything that turns a message history into one assistant reply."""

    async def complete(
        self,
        messages: Sequence[ProviderMessage],
        model: Optional[str] = None
    ) -> CompletionResult:
        ...


def to_langchain_content(message: ProviderMessage) -> Union[str, List[Dict]]:
    """
    Content of a provider message in the shape LangChain chat models accept.

    Part lists are passed through; a legacy ``image_url`` side channel turns a
    scalar message into a text part followed by one image part.
    """
    if isinstance(message.content, list):
        return [part.model_dump() for part in message.content]

    if message.image_url is not None:
        return [
            TextPart(text=message.content).model_dump(),
            {"type": "image_url", "image_url": {"url": message.image_url.url}},
        ]

    return message.content


def to_langchain_message(message: ProviderMessage) -> BaseMessage:
    content = to_langchain_content(message)
    if message.role == "assistant":
        return AIMessage(content=content)
    if message.role == "system":
        return SystemMessage(content=content)
    return HumanMessage(content=content)


def reply_text(content: Union[str, List]) -> str:
    """Flatten a chat model reply into plain text."""
    if isinstance(content, str):
        return content
    chunks = []
    for part in content:
        if isinstance(part, str):
            chunks.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            chunks.append(part.get("text", ""))
    return "".join(chunks)


def classify_provider_error(error: Exception) -> ProviderFailureError:
    message = str(error)
    if "API key" in message:
        return ProviderFailureError("Invalid API key", original_error=error)
    if "quota" in message:
        return ProviderFailureError("API quota exceeded", original_error=error)
    return ProviderFailureError("Completion request failed", original_error=error)


class OpenAICompletionProvider:
    """Completion provider backed by LangChain's ``ChatOpenAI``."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ):
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.default_model = default_model or settings.COMPLETION_MODEL
        self.temperature = temperature if temperature is not None else settings.COMPLETION_TEMPERATURE
        self.max_tokens = max_tokens or settings.COMPLETION_MAX_TOKENS
        self._models: Dict[str, ChatOpenAI] = {}

        completion_logger.info(
            "OpenAICompletionProvider initialized", "INIT",
            model=self.default_model, temperature=self.temperature
        )

    def get_llm(self, model: Optional[str] = None) -> ChatOpenAI:
        name = model or self.default_model
        if name not in self._models:
            self._models[name] = ChatOpenAI(
                model=name,
                api_key=self.api_key,
                temperature=self.temperature,
                max_tokens=self.max_tokens
            )
        return self._models[name]

    async def complete(
        self,
        messages: Sequence[ProviderMessage],
        model: Optional[str] = None
    ) -> CompletionResult:
        """
        Send the history to the model and return the assistant reply.

        Raises:
            ProviderFailureError: The call failed or returned no reply
        """
        llm = self.get_llm(model)
        try:
            response = await llm.ainvoke([to_langchain_message(m) for m in messages])
        except Exception as e:
            completion_logger.error(f"Completion failed: {e}", "COMPLETE")
            raise classify_provider_error(e) from e

        text = reply_text(response.content)
        if not text:
            raise ProviderFailureError("No response from completion provider")

        usage = None
        usage_metadata = getattr(response, "usage_metadata", None)
        if usage_metadata:
            usage = TokenUsage(
                prompt_tokens=usage_metadata.get("input_tokens", 0),
                completion_tokens=usage_metadata.get("output_tokens", 0),
                total_tokens=usage_metadata.get("total_tokens", 0)
            )

        completion_logger.debug(
            "Completion received", "COMPLETE",
            response_length=len(text),
            total_tokens=usage.total_tokens if usage else None
        )
        return CompletionResult(message=AssistantMessage(content=text), usage=usage)


_completion_provider: Optional[OpenAICompletionProvider] = None


def get_completion_provider() -> CompletionProvider:
    """FastAPI dependency returning the shared provider."""
    global _completion_provider

    if _completion_provider is None:
        _completion_provider = OpenAICompletionProvider()

    return _completion_provider
