import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from utils.rfp_subject import (
    extract_rfp_id_tag,
    format_rfp_subject,
    generate_rfp_id,
    is_rfp_reply,
    significant_title_words,
    subject_match_score,
)


def test_outbound_subject_round_trips_id_tag():
    rfp_id = generate_rfp_id()
    subject = "Re: " + format_rfp_subject("IT Equipment", rfp_id)

    assert subject == f"Re: RFP: IT Equipment [ID: {rfp_id}]"
    assert extract_rfp_id_tag(subject) == rfp_id


def test_id_tag_is_extracted_verbatim_and_case_insensitively():
    assert extract_rfp_id_tag("RE: RFP: Chairs [id:  RFP-2024/07 ]") == "RFP-2024/07"
    assert extract_rfp_id_tag("Re: RFP: Chairs") is None
    assert extract_rfp_id_tag("Re: RFP [ID: ]") is None
    assert extract_rfp_id_tag(None) is None


def test_rfp_reply_heuristic():
    assert is_rfp_reply("Re: RFP: Office Furniture")
    assert is_rfp_reply("FW: RE: rfp response")
    assert not is_rfp_reply("RFP: Office Furniture")
    assert not is_rfp_reply("Re: lunch on friday")
    assert not is_rfp_reply(None)


def test_significant_words_skip_short_tokens():
    assert significant_title_words("IT Equipment for the New Office") == [
        "equipment",
        "office",
    ]


def test_subject_match_score_counts_substrings():
    matches, ratio = subject_match_score(
        "Office Furniture Bulk Order", "Re: quote for office furniture"
    )

    assert matches == 2
    assert ratio == 0.5
    assert subject_match_score("IT", "Re: IT") == (0, 0.0)
