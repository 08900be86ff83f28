"""Domain records for vendors, RFPs, vendor conversations and proposals."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalise_email(value: Optional[str]) -> str:
    return (value or "").strip().lower()


class RFPStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    RESPONSES_RECEIVED = "responses_received"
    EVALUATED = "evaluated"

    @classmethod
    def coerce(cls, value: Any) -> "RFPStatus":
        """Return the status for ``value``, mapping the legacy ``completed`` to evaluated."""

        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        if text == "completed":
            return cls.EVALUATED
        return cls(text)


# Statuses in which an RFP is still awaiting or collecting vendor replies.
RESPONSE_ELIGIBLE_STATUSES = frozenset(
    {RFPStatus.SENT, RFPStatus.RESPONSES_RECEIVED, RFPStatus.EVALUATED}
)


class ConversationStatus(str, Enum):
    PENDING_REVIEW = "pending_review"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ProposalStatus(str, Enum):
    SENT = "sent"
    RECEIVED = "received"
    PARSED = "parsed"
    EVALUATED = "evaluated"


COMPARABLE_PROPOSAL_STATUSES = frozenset({ProposalStatus.PARSED, ProposalStatus.EVALUATED})


@dataclass
class Vendor:
    id: str
    name: str
    email: str
    contact_person: Optional[str] = None
    phone: Optional[str] = None
    specialization: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.email = normalise_email(self.email)


@dataclass
class RFP:
    id: str
    title: str
    description: str = ""
    original_prompt: str = ""
    requirements: Dict[str, Any] = field(default_factory=dict)
    status: RFPStatus = RFPStatus.DRAFT
    recipients: List[str] = field(default_factory=list)
    overall_recommendation: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.status = RFPStatus.coerce(self.status)
        self.recipients = [str(vendor_id) for vendor_id in self.recipients]

    def has_recipient(self, vendor_id: Optional[str]) -> bool:
        return vendor_id is not None and str(vendor_id) in self.recipients


@dataclass
class Conversation:
    """One vendor's latest reply to one RFP, waiting for a human decision."""

    id: str
    rfp_id: str
    vendor_id: str
    email_subject: str = ""
    email_body: str = ""
    parsed_data: Dict[str, Any] = field(default_factory=dict)
    total_amount: float = 0.0
    status: ConversationStatus = ConversationStatus.PENDING_REVIEW
    received_at: datetime = field(default_factory=utcnow)
    parsed_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    rejection_reason: Optional[str] = None

    def __post_init__(self) -> None:
        self.status = ConversationStatus(self.status)


@dataclass
class Proposal:
    id: str
    rfp_id: str
    vendor_id: str
    status: ProposalStatus = ProposalStatus.SENT
    email_subject: str = ""
    email_body: str = ""
    parsed_data: Dict[str, Any] = field(default_factory=dict)
    total_amount: float = 0.0
    evaluation: Optional[Dict[str, Any]] = None
    received_at: Optional[datetime] = None
    parsed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.status = ProposalStatus(self.status)


__all__ = [
    "COMPARABLE_PROPOSAL_STATUSES",
    "Conversation",
    "ConversationStatus",
    "Proposal",
    "ProposalStatus",
    "RESPONSE_ELIGIBLE_STATUSES",
    "RFP",
    "RFPStatus",
    "Vendor",
    "normalise_email",
    "utcnow",
]
