"""
Builds the completion request from the ephemeral message history.

Each message is first classified into exactly one content variant, then
rendered into a provider message. Both steps are pure.
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple, Union

from app.schemas.completion import ImagePart, ImageUrl, ProviderMessage, TextPart
from app.schemas.ephemeral import EphemeralMessage

FILE_CONTENT_SEPARATOR = "\n\nFile content:\n"


@dataclass(frozen=True)
class PlainText:
    text: str


@dataclass(frozen=True)
class TextWithAttachmentText:
    text: str
    attachment_text: str


@dataclass(frozen=True)
class TextWithImages:
    text: str
    image_urls: Tuple[str, ...]


@dataclass(frozen=True)
class TextWithLegacyImageUrl:
    text: str
    image_url: str


MessageContent = Union[PlainText, TextWithAttachmentText, TextWithImages, TextWithLegacyImageUrl]


def classify_content(message: EphemeralMessage) -> MessageContent:
    """
    Pick the content variant of a message.

    Precedence: pasted images, then a non-image uploaded file, then the legacy
    single image, then plain text.
    """
    if message.images:
        return TextWithImages(
            text=message.content,
            image_urls=tuple(image.content for image in message.images)
        )

    if message.file is not None and message.file.type != "image":
        return TextWithAttachmentText(
            text=message.content,
            attachment_text=message.file.content or ""
        )

    if message.image_url is not None:
        return TextWithLegacyImageUrl(text=message.content, image_url=message.image_url.url)

    return PlainText(text=message.content)


def render_content(role: str, content: MessageContent) -> ProviderMessage:
    if isinstance(content, TextWithImages):
        parts: List[Union[TextPart, ImagePart]] = [TextPart(text=content.text)]
        parts.extend(ImagePart(image_url=ImageUrl(url=url)) for url in content.image_urls)
        return ProviderMessage(role=role, content=parts)

    if isinstance(content, TextWithAttachmentText):
        return ProviderMessage(
            role=role,
            content=f"{content.text}{FILE_CONTENT_SEPARATOR}{content.attachment_text}"
        )

    if isinstance(content, TextWithLegacyImageUrl):
        return ProviderMessage(role=role, content=content.text, image_url=ImageUrl(url=content.image_url))

    return ProviderMessage(role=role, content=content.text)


def compose(history: Sequence[EphemeralMessage]) -> List[ProviderMessage]:
    """Provider messages for ``history`` in order, skipping loading placeholders."""
    return [
        render_content(message.role.value, classify_content(message))
        for message in history
        if not message.is_loading
    ]


def durable_content(message: EphemeralMessage) -> str:
    """Text stored for a message: attachment text is folded in, images are kept aside."""
    content = classify_content(message)
    if isinstance(content, TextWithAttachmentText):
        return f"{content.text}{FILE_CONTENT_SEPARATOR}{content.attachment_text}"
    return content.text
