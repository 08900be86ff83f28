"""Human review of ingested vendor replies."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from models.procurement import Conversation, ConversationStatus, Proposal, ProposalStatus
from repositories.procurement_store import ProcurementStore

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "Not a valid proposal"


class ConversationNotFoundError(LookupError):
    pass


class ConversationStateError(ValueError):
    pass


class ConversationReviewService:
    def __init__(self, store: ProcurementStore) -> None:
        self.store = store

    def _require(self, conversation_id: str) -> Conversation:
        conversation = self.store.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    def list_for_rfp(self, rfp_id: str) -> List[Conversation]:
        return self.store.list_conversations(rfp_id)

    def accept(
        self, conversation_id: str, reviewer: Optional[str] = None
    ) -> Tuple[Conversation, Proposal]:
        """Promote a conversation to the single proposal of its (RFP, vendor) pair.

        A revised reply replaces the proposal content and clears any earlier
        evaluation, since it was made against different evidence.
        """

        with self.store.transaction():
            conversation = self._require(conversation_id)
            if conversation.status == ConversationStatus.ACCEPTED:
                raise ConversationStateError("Conversation already accepted")

            proposal = self.store.find_proposal(conversation.rfp_id, conversation.vendor_id)
            if proposal is None:
                proposal = Proposal(
                    id=uuid.uuid4().hex,
                    rfp_id=conversation.rfp_id,
                    vendor_id=conversation.vendor_id,
                )
            proposal.status = ProposalStatus.PARSED
            proposal.email_subject = conversation.email_subject
            proposal.email_body = conversation.email_body
            proposal.parsed_data = dict(conversation.parsed_data)
            proposal.total_amount = conversation.total_amount
            proposal.received_at = conversation.received_at
            proposal.parsed_at = conversation.parsed_at
            proposal.evaluation = None
            self.store.save_proposal(proposal)

            conversation.status = ConversationStatus.ACCEPTED
            conversation.reviewed_at = datetime.now(timezone.utc)
            conversation.reviewed_by = reviewer
            conversation.rejection_reason = None
            self.store.save_conversation(conversation)

        logger.info(
            "Accepted conversation %s as proposal %s for RFP %s",
            conversation.id,
            proposal.id,
            conversation.rfp_id,
        )
        return conversation, proposal

    def reject(
        self,
        conversation_id: str,
        reason: Optional[str] = None,
        reviewer: Optional[str] = None,
    ) -> Conversation:
        with self.store.transaction():
            conversation = self._require(conversation_id)
            conversation.status = ConversationStatus.REJECTED
            conversation.rejection_reason = (reason or "").strip() or DEFAULT_REJECTION_REASON
            conversation.reviewed_at = datetime.now(timezone.utc)
            conversation.reviewed_by = reviewer
            self.store.save_conversation(conversation)
        logger.info("Rejected conversation %s: %s", conversation.id, conversation.rejection_reason)
        return conversation

    def stats(self, rfp_id: str) -> Dict[str, int]:
        conversations = self.store.list_conversations(rfp_id)
        counts = {status: 0 for status in ConversationStatus}
        for conversation in conversations:
            counts[conversation.status] += 1
        return {
            "total": len(conversations),
            "pending_review": counts[ConversationStatus.PENDING_REVIEW],
            "accepted": counts[ConversationStatus.ACCEPTED],
            "rejected": counts[ConversationStatus.REJECTED],
        }


__all__ = [
    "ConversationNotFoundError",
    "ConversationReviewService",
    "ConversationStateError",
    "DEFAULT_REJECTION_REASON",
]
