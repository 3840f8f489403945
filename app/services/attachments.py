import base64
import io
import mimetypes
import uuid
from pathlib import Path
from typing import Optional, Protocol

import PyPDF2
from PIL import Image

from app.core.config import settings
from app.core.exceptions import MessageValidationError
from app.schemas.completion import UploadedFile


class AttachmentProcessor(Protocol):
    """Turns an uploaded blob into content the composer can use."""

    def process(self, filename: str, data: bytes, content_type: Optional[str] = None) -> UploadedFile:
        ...


class BasicAttachmentProcessor:
    """
    Content extraction for uploads.

    Images become base64 data URLs, ``.txt`` files are decoded as UTF-8 and
    PDFs have their text extracted page by page. Anything else is rejected.
    """

    def __init__(self, max_size_bytes: Optional[int] = None):
        self.max_size_bytes = max_size_bytes or settings.max_file_size_bytes

    @staticmethod
    def stored_filename(original_name: str) -> str:
        suffix = Path(original_name).suffix.lower()
        return f"{uuid.uuid4().hex}{suffix}"

    def validate(self, filename: str, data: bytes) -> str:
        """
        Check size and extension.

        Returns:
            str: The lower-cased file extension
        """
        if len(data) > self.max_size_bytes:
            raise MessageValidationError(f"File size exceeds {settings.MAX_FILE_SIZE_MB}MB limit")

        extension = Path(filename or "").suffix.lower()
        allowed = (
            settings.ALLOWED_IMAGE_EXTENSIONS
            + settings.ALLOWED_PDF_EXTENSIONS
            + settings.ALLOWED_TEXT_EXTENSIONS
        )
        if extension not in allowed:
            raise MessageValidationError("Only images, PDFs, and text documents are allowed")
        return extension

    @staticmethod
    def encode_image(data: bytes, extension: str, content_type: Optional[str] = None) -> str:
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.verify()
        except Exception as e:
            raise MessageValidationError(f"Invalid image file: {e}") from e

        mime_type = content_type if content_type and content_type.startswith("image/") else None
        mime_type = mime_type or mimetypes.types_map.get(extension, "image/jpeg")
        return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"

    @staticmethod
    def extract_pdf_text(data: bytes) -> str:
        try:
            reader = PyPDF2.PdfReader(io.BytesIO(data))
            pages = [page.extract_text() or "" for page in reader.pages]
        except Exception as e:
            raise MessageValidationError(f"Could not read PDF file: {e}") from e
        return "\n".join(pages).strip()

    @staticmethod
    def decode_text(data: bytes) -> str:
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MessageValidationError("Text files must be UTF-8 encoded") from e

    def process(self, filename: str, data: bytes, content_type: Optional[str] = None) -> UploadedFile:
        extension = self.validate(filename, data)

        if extension in settings.ALLOWED_IMAGE_EXTENSIONS:
            file_type, content = "image", self.encode_image(data, extension, content_type)
        elif extension in settings.ALLOWED_PDF_EXTENSIONS:
            file_type, content = "pdf", self.extract_pdf_text(data)
        else:
            file_type, content = "text", self.decode_text(data)

        return UploadedFile(
            filename=self.stored_filename(filename),
            originalname=filename,
            size=len(data),
            type=file_type,
            content=content
        )


def get_attachment_processor() -> AttachmentProcessor:
    return BasicAttachmentProcessor()
