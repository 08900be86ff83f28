"""Structured quote data extracted from vendor replies.

``ParsedQuote`` is the single place where defaulting rules are applied to
whatever the AI extraction returns.  Construction is idempotent: dumping a
normalised quote with ``to_document()`` and validating it again yields the
same values.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

NOT_SPECIFIED = "Not specified"
UNKNOWN_ITEM = "Unknown Item"

# Totals usually follow the itemisation, so the last match in a text wins.
_TOTAL_PATTERN = re.compile(
    r"(?:total|grand\s*total|total\s*amount|total\s*cost|sum)[\s:]*[$₹€£]?\s*(\d+[,\d]*(?:\.\d+)?)",
    re.IGNORECASE,
)
_NUMBER_PATTERN = re.compile(r"-?\d+(?:\.\d+)?")


def to_amount(value: Any) -> float:
    """Coerce AI supplied numbers such as ``"$1,250.00"`` into floats."""

    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).replace(",", "").strip()
    if not text:
        return 0.0
    try:
        return float(text)
    except ValueError:
        match = _NUMBER_PATTERN.search(text)
        return float(match.group(0)) if match else 0.0


def recover_total_from_text(text: Optional[str]) -> float:
    """Return the last ``total``-labelled amount found in ``text`` or ``0.0``."""

    if not text:
        return 0.0
    matches = _TOTAL_PATTERN.findall(text)
    if not matches:
        return 0.0
    try:
        return float(matches[-1].replace(",", ""))
    except ValueError:
        return 0.0


def _text_or_default(value: Any, default: str) -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


class QuoteItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    description: str = UNKNOWN_ITEM
    quantity: float = 0.0
    unit_price: float = Field(0.0, alias="unitPrice")
    total_price: float = Field(0.0, alias="totalPrice")
    specifications: str = ""

    @model_validator(mode="before")
    @classmethod
    def _normalise(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        values = dict(data)
        description = values.get("description") or values.get("name")
        values["description"] = _text_or_default(description, UNKNOWN_ITEM)
        quantity = to_amount(values.get("quantity"))
        unit_price = to_amount(values.get("unitPrice", values.get("unit_price")))
        total_price = to_amount(values.get("totalPrice", values.get("total_price")))
        if not total_price:
            total_price = quantity * unit_price
        values.pop("unit_price", None)
        values.pop("total_price", None)
        values["quantity"] = quantity
        values["unitPrice"] = unit_price
        values["totalPrice"] = total_price
        specifications = values.get("specifications")
        if isinstance(specifications, (dict, list)):
            specifications = str(specifications)
        values["specifications"] = "" if specifications is None else str(specifications)
        return values


class ParsedQuote(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    items: List[QuoteItem] = Field(default_factory=list)
    total_cost: float = Field(0.0, alias="totalCost")
    delivery_timeline: str = Field(NOT_SPECIFIED, alias="deliveryTimeline")
    payment_terms: str = Field(NOT_SPECIFIED, alias="paymentTerms")
    warranty: str = NOT_SPECIFIED
    additional_info: str = Field("", alias="additionalInfo")

    @field_validator("items", mode="before")
    @classmethod
    def _coerce_items(cls, value: Any) -> List[Any]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, (dict, QuoteItem))]

    @field_validator("total_cost", mode="before")
    @classmethod
    def _coerce_total(cls, value: Any) -> float:
        return to_amount(value)

    @field_validator("delivery_timeline", "payment_terms", "warranty", mode="before")
    @classmethod
    def _default_terms(cls, value: Any) -> str:
        return _text_or_default(value, NOT_SPECIFIED)

    @field_validator("additional_info", mode="before")
    @classmethod
    def _default_notes(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @property
    def items_total(self) -> float:
        return sum(item.total_price for item in self.items)

    def resolve_total(self, source_text: Optional[str] = None) -> float:
        """Return the stated total, else the text-recovered total, else the item sum."""

        if self.total_cost:
            return self.total_cost
        recovered = recover_total_from_text(source_text)
        if recovered:
            return recovered
        return self.items_total

    @classmethod
    def from_ai_payload(
        cls, payload: Optional[Dict[str, Any]], source_text: Optional[str] = None
    ) -> "ParsedQuote":
        quote = cls.model_validate(payload or {})
        if not quote.total_cost:
            quote.total_cost = quote.resolve_total(source_text)
        return quote

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ProposalEvaluation(BaseModel):
    """Opaque result of the external scoring step for one proposal."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    score: float = Field(..., ge=0, le=100)
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    recommendation: str = ""


__all__ = [
    "NOT_SPECIFIED",
    "ParsedQuote",
    "ProposalEvaluation",
    "QuoteItem",
    "UNKNOWN_ITEM",
    "recover_total_from_text",
    "to_amount",
]
