"""Subject line conventions shared by outbound RFPs and inbound replies."""

from __future__ import annotations

import re
import secrets
from typing import List, Optional

_ID_TAG_PATTERN = re.compile(r"\[ID:\s*([^\]]+?)\s*\]", re.IGNORECASE)
_MIN_SIGNIFICANT_WORD_LENGTH = 4


def generate_rfp_id() -> str:
    """Return an opaque identifier for a new RFP."""

    return secrets.token_hex(12)


def format_rfp_subject(title: str, rfp_id: str) -> str:
    return f"RFP: {title} [ID: {rfp_id}]"


def extract_rfp_id_tag(subject: Optional[str]) -> Optional[str]:
    """Return the bracketed ``[ID: ...]`` token of ``subject`` verbatim."""

    if not subject:
        return None
    match = _ID_TAG_PATTERN.search(subject)
    if not match:
        return None
    token = match.group(1).strip()
    return token or None


def is_rfp_reply(subject: Optional[str]) -> bool:
    lowered = (subject or "").lower()
    return "re:" in lowered and "rfp" in lowered


def significant_title_words(title: Optional[str]) -> List[str]:
    return [
        word
        for word in (title or "").lower().split(" ")
        if len(word) >= _MIN_SIGNIFICANT_WORD_LENGTH
    ]


def subject_match_score(title: Optional[str], subject: Optional[str]) -> tuple[int, float]:
    """Return ``(matches, ratio)`` of significant title words found in ``subject``."""

    words = significant_title_words(title)
    if not words:
        return 0, 0.0
    lowered = (subject or "").lower()
    matches = sum(1 for word in words if word in lowered)
    return matches, matches / len(words)


__all__ = [
    "extract_rfp_id_tag",
    "format_rfp_subject",
    "generate_rfp_id",
    "is_rfp_reply",
    "significant_title_words",
    "subject_match_score",
]
