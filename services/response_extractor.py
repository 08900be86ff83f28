"""Structured quote extraction from vendor reply text."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional

from pydantic import ValidationError

from config.settings import settings
from models.parsed_quote import ParsedQuote
from services.lmstudio_client import LMStudioClient, LMStudioClientError, get_lmstudio_client

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_TRAILING_COMMA_PATTERN = re.compile(r",(\s*[}\]])")

SYSTEM_PROMPT = (
    "You are an expert procurement data extraction assistant. You read vendor "
    "replies to requests for proposal and return only a JSON object."
)

EXTRACTION_PROMPT = """Extract the vendor's quote from the email below.

=== VENDOR EMAIL ===
{email}
{context}
Return a JSON object with exactly these fields:
- "items": array of every quoted item, each with "description" (string),
  "quantity" (number), "unitPrice" (number, no currency symbols or commas),
  "totalPrice" (number, quantity x unitPrice) and "specifications" (string).
- "totalCost": number, the total amount of the proposal. Look for "Total",
  "Grand Total", "Total Amount", "Total Cost" or "Sum". If not stated, sum the
  item totalPrice values.
- "deliveryTimeline": string, e.g. "21 days". "Not specified" if absent.
- "paymentTerms": string, e.g. "Net 30". "Not specified" if absent.
- "warranty": string, e.g. "2 years". "Not specified" if absent.
- "additionalInfo": string with discounts, included services or other notes,
  or "" if nothing relevant.

All prices must be plain numbers. Return only JSON without markdown or commentary.
"""


class ExtractionError(RuntimeError):
    """Raised when the AI output cannot be turned into a quote."""


def parse_json_object(raw: str) -> Dict[str, Any]:
    """Repair and decode the first JSON object in ``raw``.

    Code fences and trailing commas are removed before decoding; any text
    around the object is ignored.
    """

    cleaned = _FENCE_PATTERN.sub("", raw or "").strip()
    cleaned = _TRAILING_COMMA_PATTERN.sub(r"\1", cleaned)
    start = cleaned.find("{")
    if start < 0:
        raise ExtractionError("AI response did not contain a JSON object")
    try:
        payload, _ = json.JSONDecoder().raw_decode(cleaned[start:])
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"AI response is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ExtractionError("AI response JSON is not an object")
    return payload


def _format_context(rfp_context: Optional[Dict[str, Any]]) -> str:
    if not rfp_context:
        return ""
    try:
        serialised = json.dumps(rfp_context, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        serialised = str(rfp_context)
    return f"\n=== RFP REQUIREMENTS ===\n{serialised}\n"


class ResponseExtractor:
    def __init__(
        self,
        client: Optional[LMStudioClient] = None,
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> None:
        self._client = client
        self.model = model or settings.lmstudio_chat_model
        self.temperature = (
            settings.extraction_temperature if temperature is None else temperature
        )

    @property
    def client(self) -> LMStudioClient:
        if self._client is None:
            self._client = get_lmstudio_client()
        return self._client

    def parse(self, text: str, rfp_context: Optional[Dict[str, Any]] = None) -> ParsedQuote:
        """Return the normalised quote found in ``text``.

        Raises :class:`ExtractionError` when the model is unreachable or its
        output cannot be repaired into a JSON object.
        """

        prompt = EXTRACTION_PROMPT.format(email=text, context=_format_context(rfp_context))
        try:
            raw = self.client.chat(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                json_mode=True,
                options={"temperature": self.temperature},
            )
        except LMStudioClientError as exc:
            raise ExtractionError(f"Quote extraction request failed: {exc}") from exc

        try:
            payload = parse_json_object(raw)
        except ExtractionError:
            logger.warning("Unparseable extraction output: %s", (raw or "")[:500])
            raise
        try:
            quote = ParsedQuote.from_ai_payload(payload, source_text=text)
        except ValidationError as exc:
            raise ExtractionError(f"AI response has an invalid quote shape: {exc}") from exc
        logger.info(
            "Extracted %d items, total %.2f", len(quote.items), quote.total_cost
        )
        return quote


__all__ = ["ExtractionError", "ResponseExtractor", "parse_json_object"]
