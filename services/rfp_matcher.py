"""Resolve which outstanding RFP an inbound vendor reply answers.

Resolution tiers, first success wins:

1. ``[ID: ...]`` tag in the subject, accepted only when the sender is one of
   that RFP's recipients.
2. Fuzzy subject match against the titles of the vendor's eligible RFPs:
   at least two significant title words must appear in the subject and the
   best match ratio wins.  Candidates are scanned newest first so equal
   ratios resolve to the most recently created RFP.
3. The most recently created eligible RFP.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from models.procurement import RESPONSE_ELIGIBLE_STATUSES, RFP, Vendor
from repositories.procurement_store import ProcurementStore
from services.mailbox_client import InboundMessage
from utils.rfp_subject import extract_rfp_id_tag, subject_match_score

logger = logging.getLogger(__name__)

_MIN_SUBJECT_MATCHES = 2

TIER_ID_TAG = "id_tag"
TIER_SUBJECT = "subject"
TIER_MOST_RECENT = "most_recent"


@dataclass(frozen=True)
class RFPMatch:
    rfp: RFP
    tier: str


class VendorMatcher:
    def __init__(self, store: ProcurementStore) -> None:
        self.store = store

    def match_rfp(self, message: InboundMessage, vendor_email: str) -> Optional[RFPMatch]:
        vendor = self.store.find_vendor_by_email(vendor_email)
        if vendor is None:
            logger.debug("No vendor record for %s; cannot match an RFP", vendor_email)
            return None
        match = self._match_id_tag(message.subject, vendor)
        if match is None:
            candidates = self.store.eligible_rfps_for_vendor(vendor.id)
            match = self._match_subject(message.subject, candidates)
            if match is None and candidates:
                match = RFPMatch(candidates[0], TIER_MOST_RECENT)
        if match is None:
            logger.info("No RFP found for reply from %s: %r", vendor.email, message.subject)
        else:
            logger.info(
                "Matched reply from %s to RFP %s via %s", vendor.email, match.rfp.id, match.tier
            )
        return match

    def _match_id_tag(self, subject: str, vendor: Vendor) -> Optional[RFPMatch]:
        rfp_id = extract_rfp_id_tag(subject)
        if not rfp_id:
            return None
        rfp = self.store.get_rfp(rfp_id)
        if rfp is None:
            logger.debug("Subject tag references unknown RFP %s", rfp_id)
            return None
        if not rfp.has_recipient(vendor.id):
            logger.warning(
                "Ignoring ID tag %s: vendor %s is not a recipient of that RFP", rfp_id, vendor.email
            )
            return None
        return RFPMatch(rfp, TIER_ID_TAG)

    @staticmethod
    def _match_subject(subject: str, candidates: list[RFP]) -> Optional[RFPMatch]:
        best: Optional[RFP] = None
        best_ratio = 0.0
        for rfp in candidates:
            if rfp.status not in RESPONSE_ELIGIBLE_STATUSES:
                continue
            matches, ratio = subject_match_score(rfp.title, subject)
            if matches >= _MIN_SUBJECT_MATCHES and ratio > best_ratio:
                best, best_ratio = rfp, ratio
        return RFPMatch(best, TIER_SUBJECT) if best is not None else None


__all__ = ["RFPMatch", "VendorMatcher", "TIER_ID_TAG", "TIER_MOST_RECENT", "TIER_SUBJECT"]
