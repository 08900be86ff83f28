"""Review endpoints for ingested vendor replies."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field

from models.procurement import Conversation, Proposal
from services.conversation_review import (
    ConversationNotFoundError,
    ConversationReviewService,
    ConversationStateError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["Conversations"])


class ConversationModel(BaseModel):
    id: str
    rfp_id: str
    vendor_id: str
    email_subject: str
    email_body: str
    parsed_data: Dict[str, Any]
    total_amount: float
    status: str
    received_at: datetime
    parsed_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    rejection_reason: Optional[str] = None

    @classmethod
    def from_record(cls, conversation: Conversation) -> "ConversationModel":
        return cls(
            id=conversation.id,
            rfp_id=conversation.rfp_id,
            vendor_id=conversation.vendor_id,
            email_subject=conversation.email_subject,
            email_body=conversation.email_body,
            parsed_data=conversation.parsed_data,
            total_amount=conversation.total_amount,
            status=conversation.status.value,
            received_at=conversation.received_at,
            parsed_at=conversation.parsed_at,
            reviewed_at=conversation.reviewed_at,
            reviewed_by=conversation.reviewed_by,
            rejection_reason=conversation.rejection_reason,
        )


class ProposalModel(BaseModel):
    id: str
    rfp_id: str
    vendor_id: str
    status: str
    total_amount: float
    parsed_data: Dict[str, Any]

    @classmethod
    def from_record(cls, proposal: Proposal) -> "ProposalModel":
        return cls(
            id=proposal.id,
            rfp_id=proposal.rfp_id,
            vendor_id=proposal.vendor_id,
            status=proposal.status.value,
            total_amount=proposal.total_amount,
            parsed_data=proposal.parsed_data,
        )


class ReviewRequest(BaseModel):
    reviewer: Optional[str] = None


class RejectRequest(ReviewRequest):
    reason: Optional[str] = Field(default=None, description="Why the reply was rejected.")


class AcceptResponse(BaseModel):
    conversation: ConversationModel
    proposal: ProposalModel


class ConversationStats(BaseModel):
    total: int
    pending_review: int
    accepted: int
    rejected: int


def _review_service(request: Request) -> ConversationReviewService:
    service = getattr(request.app.state, "review_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Review service is not available",
        )
    return service


@router.get("/{rfp_id}", response_model=List[ConversationModel])
def list_conversations(rfp_id: str, request: Request) -> List[ConversationModel]:
    service = _review_service(request)
    return [ConversationModel.from_record(item) for item in service.list_for_rfp(rfp_id)]


@router.get("/{rfp_id}/stats", response_model=ConversationStats)
def conversation_stats(rfp_id: str, request: Request) -> ConversationStats:
    return ConversationStats(**_review_service(request).stats(rfp_id))


@router.post("/{conversation_id}/accept", response_model=AcceptResponse)
def accept_conversation(
    conversation_id: str, request: Request, payload: Optional[ReviewRequest] = None
) -> AcceptResponse:
    service = _review_service(request)
    try:
        conversation, proposal = service.accept(
            conversation_id, reviewer=payload.reviewer if payload else None
        )
    except ConversationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ConversationStateError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return AcceptResponse(
        conversation=ConversationModel.from_record(conversation),
        proposal=ProposalModel.from_record(proposal),
    )


@router.post("/{conversation_id}/reject", response_model=ConversationModel)
def reject_conversation(
    conversation_id: str, request: Request, payload: Optional[RejectRequest] = None
) -> ConversationModel:
    service = _review_service(request)
    try:
        conversation = service.reject(
            conversation_id,
            reason=payload.reason if payload else None,
            reviewer=payload.reviewer if payload else None,
        )
    except ConversationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return ConversationModel.from_record(conversation)
