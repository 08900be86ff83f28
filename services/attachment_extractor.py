"""Plain-text extraction for vendor reply attachments.

Every strategy returns ``None`` instead of raising: a corrupt spreadsheet or a
failed OCR pass must not stop the remaining attachments or the email body from
being processed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional

import docx
import pandas as pd
import pdfplumber
import pytesseract
from PIL import Image

from config.settings import settings

logger = logging.getLogger(__name__)

PDF = "pdf"
WORD = "word"
SPREADSHEET = "spreadsheet"
IMAGE = "image"

_EXTENSION_KINDS = {
    ".pdf": PDF,
    ".docx": WORD,
    ".doc": WORD,
    ".xlsx": SPREADSHEET,
    ".xls": SPREADSHEET,
    ".jpg": IMAGE,
    ".jpeg": IMAGE,
    ".png": IMAGE,
    ".gif": IMAGE,
    ".bmp": IMAGE,
}


@dataclass(frozen=True)
class Attachment:
    filename: Optional[str]
    content_type: Optional[str]
    content: Optional[bytes]

    @property
    def display_name(self) -> str:
        return self.filename or "unknown"


def attachment_kind(attachment: Attachment) -> Optional[str]:
    """Classify by declared content type, falling back to the file extension."""

    content_type = (attachment.content_type or "").lower()
    if "pdf" in content_type:
        return PDF
    if "wordprocessingml" in content_type or "msword" in content_type:
        return WORD
    if "spreadsheetml" in content_type or "ms-excel" in content_type:
        return SPREADSHEET
    if content_type.startswith("image/"):
        return IMAGE
    suffix = Path(attachment.filename or "").suffix.lower()
    return _EXTENSION_KINDS.get(suffix)


class ContentExtractor:
    """Turn PDF, Word, spreadsheet and image attachments into text."""

    def __init__(self, *, ocr_language: Optional[str] = None) -> None:
        self.ocr_language = ocr_language or settings.ocr_language
        self._strategies: Dict[str, Callable[[bytes], Optional[str]]] = {
            PDF: self._extract_pdf,
            WORD: self._extract_word,
            SPREADSHEET: self._extract_spreadsheet,
            IMAGE: self._extract_image,
        }

    def extract(self, attachment: Attachment) -> Optional[str]:
        if not attachment.content:
            logger.debug("Attachment %s has no content; skipping", attachment.display_name)
            return None
        kind = attachment_kind(attachment)
        if kind is None:
            logger.debug(
                "Unsupported attachment type %s (%s)",
                attachment.display_name,
                attachment.content_type,
            )
            return None
        try:
            text = self._strategies[kind](attachment.content)
        except Exception:
            logger.warning(
                "Failed to extract %s text from %s", kind, attachment.display_name, exc_info=True
            )
            return None
        if not text or not text.strip():
            logger.warning("No text extracted from %s", attachment.display_name)
            return None
        logger.info("Extracted %d characters from %s", len(text), attachment.display_name)
        return text

    def combine(self, attachments: Iterable[Attachment]) -> Optional[str]:
        """Return every extracted text under a filename header, or ``None``."""

        combined = ""
        for attachment in attachments:
            text = self.extract(attachment)
            if text:
                combined += f"\n\n=== Content from {attachment.display_name} ===\n{text}\n"
        return combined.strip() or None

    @staticmethod
    def _extract_pdf(content: bytes) -> str:
        with pdfplumber.open(BytesIO(content)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
        return "\n".join(page for page in pages if page)

    @staticmethod
    def _extract_word(content: bytes) -> str:
        document = docx.Document(BytesIO(content))
        return "\n".join(par.text for par in document.paragraphs)

    @staticmethod
    def _extract_spreadsheet(content: bytes) -> str:
        sheets = pd.read_excel(BytesIO(content), sheet_name=None, header=None)
        text = ""
        for sheet_name, frame in sheets.items():
            text += f"\n--- Sheet: {sheet_name} ---\n"
            text += frame.to_csv(index=False, header=False) + "\n"
        return text.strip()

    def _extract_image(self, content: bytes) -> str:
        with Image.open(BytesIO(content)) as image:
            return pytesseract.image_to_string(image, lang=self.ocr_language)


def combine_body_and_attachments(body: Optional[str], attachment_text: Optional[str]) -> str:
    """Append attachment text to the body; attachments never replace it."""

    body = (body or "").strip()
    if attachment_text:
        return f"{body}\n\n{attachment_text}" if body else attachment_text
    return body


__all__ = [
    "Attachment",
    "ContentExtractor",
    "attachment_kind",
    "combine_body_and_attachments",
]
