"""In-memory message representation owned by the synchronizer."""

import uuid
from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field

from app.db.types import utcnow
from app.schemas.chat import MessageRole, PastedImage
from app.schemas.completion import ImageUrl, UploadedFile


def new_client_id() -> str:
    return uuid.uuid4().hex


class EphemeralMessage(BaseModel):
    """
    Optimistically rendered message.

    ``id`` is client-local and never the durable id. ``saved`` flips to True
    once the message has been persisted and is the only guard against saving
    it twice.
    """
    id: str = Field(default_factory=new_client_id)
    role: MessageRole
    content: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    images: Optional[List[PastedImage]] = None
    file: Optional[UploadedFile] = None
    image_url: Optional[ImageUrl] = None
    is_loading: bool = False
    saved: bool = False
    durable_id: Optional[int] = None
