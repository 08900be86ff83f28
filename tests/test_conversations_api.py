import os
import sys

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.routers import conversations
from models.procurement import Conversation
from repositories.procurement_store import ProcurementStore
from services.conversation_review import ConversationReviewService


@pytest.fixture
def client(tmp_path):
    store = ProcurementStore(path=str(tmp_path / "api.sqlite"))
    store.save_conversation(
        Conversation(
            id="c1",
            rfp_id="r1",
            vendor_id="v1",
            email_subject="Re: RFP: Chairs",
            parsed_data={"items": [], "totalCost": 450.0},
            total_amount=450.0,
        )
    )
    store.save_conversation(Conversation(id="c2", rfp_id="r1", vendor_id="v2"))
    app = FastAPI()
    app.include_router(conversations.router)
    app.state.review_service = ConversationReviewService(store)
    yield TestClient(app)
    store.close()


def test_list_conversations_for_rfp(client):
    response = client.get("/conversations/r1")

    assert response.status_code == 200
    assert {item["id"] for item in response.json()} == {"c1", "c2"}
    assert all(item["status"] == "pending_review" for item in response.json())


def test_accept_returns_conversation_and_proposal(client):
    response = client.post("/conversations/c1/accept", json={"reviewer": "buyer"})

    assert response.status_code == 200
    body = response.json()
    assert body["conversation"]["status"] == "accepted"
    assert body["conversation"]["reviewed_by"] == "buyer"
    assert body["proposal"]["status"] == "parsed"
    assert body["proposal"]["total_amount"] == 450.0

    again = client.post("/conversations/c1/accept")
    assert again.status_code == 400


def test_reject_and_stats(client):
    response = client.post("/conversations/c2/reject", json={"reason": "Missing prices"})

    assert response.status_code == 200
    assert response.json()["rejection_reason"] == "Missing prices"
    stats = client.get("/conversations/r1/stats").json()
    assert stats == {"total": 2, "pending_review": 1, "accepted": 0, "rejected": 1}


def test_unknown_conversation_is_404(client):
    assert client.post("/conversations/missing/accept").status_code == 404
    assert client.post("/conversations/missing/reject").status_code == 404
