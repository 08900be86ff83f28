"""RFP status transitions driven by dispatch, replies and evaluation."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from models.parsed_quote import ProposalEvaluation
from models.procurement import (
    COMPARABLE_PROPOSAL_STATUSES,
    RFP,
    Proposal,
    ProposalStatus,
    RFPStatus,
)
from repositories.procurement_store import ProcurementStore

logger = logging.getLogger(__name__)


class RFPNotFoundError(LookupError):
    """Raised when an RFP id does not exist in the store."""


def _require_rfp(store: ProcurementStore, rfp_id: str) -> RFP:
    rfp = store.get_rfp(rfp_id)
    if rfp is None:
        raise RFPNotFoundError(f"RFP {rfp_id} not found")
    return rfp


def register_dispatch(store: ProcurementStore, rfp_id: str, vendor_ids: Iterable[str]) -> RFP:
    """Record that ``rfp_id`` was sent to ``vendor_ids``.

    Marks the RFP as sent, fixes its recipients and creates one placeholder
    proposal per recipient.  Existing proposals are left untouched.
    """

    with store.transaction():
        rfp = _require_rfp(store, rfp_id)
        recipients = list(dict.fromkeys(str(vendor_id) for vendor_id in vendor_ids))
        rfp.recipients = recipients
        if rfp.status == RFPStatus.DRAFT:
            rfp.status = RFPStatus.SENT
        store.save_rfp(rfp)
        for vendor_id in recipients:
            if store.find_proposal(rfp.id, vendor_id) is None:
                store.save_proposal(
                    Proposal(id=uuid.uuid4().hex, rfp_id=rfp.id, vendor_id=vendor_id)
                )
    logger.info("RFP %s sent to %d vendors", rfp.id, len(recipients))
    return rfp


def advance_on_response(store: ProcurementStore, rfp_id: str) -> RFP:
    """Move a ``sent`` RFP to ``responses_received``; other statuses are kept."""

    rfp = _require_rfp(store, rfp_id)
    if rfp.status == RFPStatus.SENT:
        rfp.status = RFPStatus.RESPONSES_RECEIVED
        store.save_rfp(rfp)
        logger.info("RFP %s status: sent -> responses_received", rfp.id)
    return rfp


def recompute_rfp_status(store: ProcurementStore, rfp_id: str) -> RFP:
    """Set ``evaluated`` iff every recipient has a parsed or evaluated proposal.

    Draft and not-yet-answered sent RFPs are left alone.
    """

    with store.transaction():
        rfp = _require_rfp(store, rfp_id)
        if rfp.status in (RFPStatus.DRAFT, RFPStatus.SENT):
            return rfp
        comparable = store.count_proposals(rfp.id, COMPARABLE_PROPOSAL_STATUSES)
        target = (
            RFPStatus.EVALUATED
            if comparable >= len(rfp.recipients)
            else RFPStatus.RESPONSES_RECEIVED
        )
        if target != rfp.status:
            logger.info(
                "RFP %s status: %s -> %s (%d/%d comparable proposals)",
                rfp.id,
                rfp.status.value,
                target.value,
                comparable,
                len(rfp.recipients),
            )
            rfp.status = target
            store.save_rfp(rfp)
    return rfp


def record_evaluation(
    store: ProcurementStore,
    rfp_id: str,
    evaluations: Mapping[str, Union[ProposalEvaluation, Dict[str, Any]]],
    overall_recommendation: Optional[str] = None,
) -> RFP:
    """Store evaluation results keyed by vendor id, then recompute the status."""

    with store.transaction():
        rfp = _require_rfp(store, rfp_id)
        for proposal in store.list_proposals(rfp.id, COMPARABLE_PROPOSAL_STATUSES):
            result = evaluations.get(proposal.vendor_id)
            if result is None:
                continue
            evaluation = ProposalEvaluation.model_validate(result)
            proposal.evaluation = evaluation.model_dump()
            proposal.status = ProposalStatus.EVALUATED
            store.save_proposal(proposal)
        if overall_recommendation is not None:
            rfp.overall_recommendation = overall_recommendation
            store.save_rfp(rfp)
        return recompute_rfp_status(store, rfp.id)


__all__ = [
    "RFPNotFoundError",
    "advance_on_response",
    "recompute_rfp_status",
    "record_evaluation",
    "register_dispatch",
]
