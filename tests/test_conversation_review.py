import os
import sys

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from models.procurement import Conversation, ConversationStatus, Proposal, ProposalStatus
from repositories.procurement_store import ProcurementStore
from services.conversation_review import (
    DEFAULT_REJECTION_REASON,
    ConversationNotFoundError,
    ConversationReviewService,
    ConversationStateError,
)


@pytest.fixture
def store(tmp_path):
    instance = ProcurementStore(path=str(tmp_path / "review.sqlite"))
    instance.save_conversation(
        Conversation(
            id="c1",
            rfp_id="r1",
            vendor_id="v1",
            email_subject="Re: RFP: Chairs",
            email_body="Total: 900",
            parsed_data={"items": [], "totalCost": 900.0},
            total_amount=900.0,
        )
    )
    yield instance
    instance.close()


def test_accept_promotes_to_parsed_proposal(store):
    service = ConversationReviewService(store)

    conversation, proposal = service.accept("c1", reviewer="buyer@example.com")

    assert conversation.status == ConversationStatus.ACCEPTED
    assert conversation.reviewed_by == "buyer@example.com"
    assert conversation.reviewed_at is not None
    assert proposal.status == ProposalStatus.PARSED
    assert proposal.total_amount == 900.0
    assert store.find_proposal("r1", "v1").parsed_data == {"items": [], "totalCost": 900.0}


def test_accept_replaces_existing_proposal_and_clears_evaluation(store):
    store.save_proposal(
        Proposal(
            id="p1",
            rfp_id="r1",
            vendor_id="v1",
            status=ProposalStatus.EVALUATED,
            total_amount=1200.0,
            evaluation={"score": 70},
        )
    )

    _, proposal = ConversationReviewService(store).accept("c1")

    assert proposal.id == "p1"
    assert proposal.total_amount == 900.0
    assert proposal.evaluation is None
    assert len(store.list_proposals("r1")) == 1


def test_accepting_twice_is_rejected(store):
    service = ConversationReviewService(store)
    service.accept("c1")

    with pytest.raises(ConversationStateError):
        service.accept("c1")


def test_reject_uses_default_reason(store):
    service = ConversationReviewService(store)

    rejected = service.reject("c1", reason="  ")

    assert rejected.status == ConversationStatus.REJECTED
    assert rejected.rejection_reason == DEFAULT_REJECTION_REASON
    assert store.find_proposal("r1", "v1") is None


def test_unknown_conversation_raises(store):
    service = ConversationReviewService(store)

    with pytest.raises(ConversationNotFoundError):
        service.accept("missing")
    with pytest.raises(ConversationNotFoundError):
        service.reject("missing")


def test_stats_count_each_status(store):
    store.save_conversation(Conversation(id="c2", rfp_id="r1", vendor_id="v2"))
    store.save_conversation(Conversation(id="c3", rfp_id="r1", vendor_id="v3"))
    service = ConversationReviewService(store)
    service.accept("c1")
    service.reject("c2", reason="Incomplete")

    assert service.stats("r1") == {"total": 3, "pending_review": 1, "accepted": 1, "rejected": 1}
    assert service.stats("other") == {"total": 0, "pending_review": 0, "accepted": 0, "rejected": 0}
