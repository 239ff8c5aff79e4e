"""Uploaded bytes → plain text (PDF via pdfplumber, text/plain decoded)."""

from __future__ import annotations

import io
import logging
from typing import Optional

import pdfplumber

from finbot.core.config import get_settings
from finbot.services.errors import (
    DocumentTooLargeError,
    DocumentUnreadableError,
    UnsupportedDocumentError,
)

logger = logging.getLogger(__name__)

SUPPORTED_TYPES: dict[str, str] = {
    "application/pdf": "pdf",
    "text/plain": "txt",
}
_EXTENSION_TYPES = {".pdf": "application/pdf", ".txt": "text/plain"}


def get_supported_types() -> list[str]:
    return list(SUPPORTED_TYPES)


def resolve_content_type(content_type: Optional[str], filename: Optional[str]) -> Optional[str]:
    """Media type without parameters; falls back to the file extension for octet-stream."""
    media = (content_type or "").split(";")[0].strip().lower()
    if media in SUPPORTED_TYPES:
        return media
    if filename and (not media or media == "application/octet-stream"):
        for ext, guessed in _EXTENSION_TYPES.items():
            if filename.lower().endswith(ext):
                return guessed
    return media or None


def validate_upload(content_type: Optional[str], size: int) -> None:
    max_bytes = get_settings().upload_max_bytes
    if size > max_bytes:
        raise DocumentTooLargeError(f"File size must be less than {max_bytes // (1024 * 1024)}MB")
    if content_type not in SUPPORTED_TYPES:
        raise UnsupportedDocumentError(
            f"Unsupported file type: {content_type}. Supported types: {', '.join(SUPPORTED_TYPES)}"
        )


def _pdf_text(data: bytes) -> str:
    try:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
    except Exception as exc:
        logger.warning("PDF parsing failed: %s", exc)
        raise DocumentUnreadableError("Failed to parse PDF file") from exc
    return "\n".join(pages).strip()


def read_document(data: bytes, content_type: Optional[str], filename: Optional[str] = None) -> str:
    """Return the text of an upload after validating its type and size."""
    media = resolve_content_type(content_type, filename)
    validate_upload(media, len(data))

    if SUPPORTED_TYPES[media] == "pdf":
        text = _pdf_text(data)
    else:
        text = data.decode("utf-8", errors="replace")

    logger.info("Extracted %d characters from %s", len(text), filename or media)
    return text
