import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from models.procurement import RFP, RFPStatus, Vendor
from repositories.procurement_store import ProcurementStore
from services.mailbox_client import InboundMessage
from services.rfp_matcher import TIER_ID_TAG, TIER_MOST_RECENT, TIER_SUBJECT, VendorMatcher

BASE = datetime(2024, 7, 1, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    instance = ProcurementStore(path=str(tmp_path / "matcher.sqlite"))
    instance.save_vendor(Vendor(id="v1", name="Acme", email="sales@acme.com"))
    instance.save_vendor(Vendor(id="v2", name="Beta", email="hello@beta.io"))
    yield instance
    instance.close()


def _add_rfp(store, rfp_id, title, *, recipients=("v1",), status=RFPStatus.SENT, age_days=0):
    store.save_rfp(
        RFP(
            id=rfp_id,
            title=title,
            status=status,
            recipients=list(recipients),
            created_at=BASE - timedelta(days=age_days),
        )
    )


def _message(subject, sender="sales@acme.com"):
    return InboundMessage(subject=subject, from_address=sender, text="Quote attached")


def test_id_tag_wins_over_subject_resemblance(store):
    _add_rfp(store, "furniture", "Office Furniture Bulk Order", age_days=0)
    _add_rfp(store, "equipment", "IT Equipment", age_days=3)
    subject = "Re: RFP: IT Equipment Quote for Office Furniture Order [ID: equipment]"

    match = VendorMatcher(store).match_rfp(_message(subject), "sales@acme.com")

    assert match.rfp.id == "equipment"
    assert match.tier == TIER_ID_TAG


def test_subject_match_picks_highest_ratio(store):
    _add_rfp(store, "furniture", "Office Furniture Bulk Order", age_days=0)
    _add_rfp(store, "network", "Network Equipment Quote Renewal Program", age_days=1)
    _add_rfp(store, "it", "IT Equipment Quote Request", age_days=2)

    match = VendorMatcher(store).match_rfp(_message("Re: Quote for IT Equipment"), "sales@acme.com")

    assert match.rfp.id == "it"
    assert match.tier == TIER_SUBJECT


def test_subject_tie_goes_to_most_recent_rfp(store):
    _add_rfp(store, "older", "Laptop Equipment Quote", age_days=4)
    _add_rfp(store, "newer", "Laptop Equipment Refresh", age_days=1)

    match = VendorMatcher(store).match_rfp(_message("Re: Laptop Equipment"), "sales@acme.com")

    assert match.rfp.id == "newer"
    assert match.tier == TIER_SUBJECT


def test_single_word_overlap_falls_back_to_most_recent(store):
    _add_rfp(store, "older", "IT Equipment", age_days=5)
    _add_rfp(store, "latest", "Catering Services", age_days=1)

    match = VendorMatcher(store).match_rfp(_message("Re: Quote for IT Equipment"), "sales@acme.com")

    assert match.rfp.id == "latest"
    assert match.tier == TIER_MOST_RECENT


def test_id_tag_for_rfp_not_sent_to_vendor_is_ignored(store):
    _add_rfp(store, "theirs", "Catering Services", recipients=("v2",))
    _add_rfp(store, "mine", "Office Chairs", age_days=2)

    match = VendorMatcher(store).match_rfp(
        _message("Re: RFP: Catering Services [ID: theirs]"), "sales@acme.com"
    )

    assert match.rfp.id == "mine"
    assert match.tier == TIER_MOST_RECENT


def test_draft_rfps_are_not_candidates(store):
    _add_rfp(store, "draft", "Office Chairs Purchase", status=RFPStatus.DRAFT)

    assert VendorMatcher(store).match_rfp(_message("Re: Office Chairs Purchase"), "sales@acme.com") is None


def test_unknown_sender_has_no_match(store):
    _add_rfp(store, "r1", "Office Chairs")

    assert VendorMatcher(store).match_rfp(_message("Re: Office Chairs", "x@y.z"), "x@y.z") is None
