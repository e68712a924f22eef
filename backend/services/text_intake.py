"""Uploaded file to report text.

Only plain-text documents are accepted; the upstream extraction step hands
their content to the analyzer unchanged.
"""
from __future__ import annotations

import os
import re
from typing import Tuple

TEXT_EXTENSIONS = {".txt", ".text", ".md", ".csv", ".log"}
UNSUPPORTED_EXTENSIONS = {".pdf", ".doc", ".docx", ".png", ".jpg", ".jpeg", ".tiff", ".bmp", ".webp"}


class UnsupportedDocumentError(ValueError):
    """The upload is a document type that needs OCR or PDF parsing."""


def sanitize_filename(name: str) -> str:
    name = os.path.basename(name or "file")
    name = re.sub(r"[^A-Za-z0-9_.-]", "_", name)
    return name or "file"


def is_text_upload(filename: str, content_type: str) -> bool:
    mt = (content_type or "").lower()
    ext = os.path.splitext((filename or "").lower())[1]
    if ext in UNSUPPORTED_EXTENSIONS or mt == "application/pdf" or mt.startswith("image/"):
        return False
    if mt.startswith("text/"):
        return True
    return mt in ("", "application/octet-stream") and ext in TEXT_EXTENSIONS


def extract_text_from_bytes(data: bytes, filename: str, content_type: str) -> Tuple[str, str]:
    """Return ``(text, source)`` for an uploaded plain-text report."""
    if not is_text_upload(filename, content_type):
        raise UnsupportedDocumentError(f"Unsupported file type: {content_type or 'unknown'}")
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ValueError("Unable to decode file as UTF-8 text") from exc
    if not text.strip():
        raise ValueError("No text found in file")
    return text, "text"


__all__ = [
    "extract_text_from_bytes",
    "is_text_upload",
    "sanitize_filename",
    "UnsupportedDocumentError",
]
