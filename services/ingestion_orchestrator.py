"""Vendor reply ingestion: filter, match, extract and reconcile.

Every unseen message from the mailbox flows through a short-circuiting filter
chain.  Only messages that survive all stages produce a conversation upsert.
A failure in one message is logged and counted as unprocessed; it never
aborts the rest of the batch.
"""

from __future__ import annotations

import concurrent.futures
import functools
import logging
import threading
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import AbstractSet, Dict, Optional, Tuple

from config.settings import settings
from models.procurement import Conversation, ConversationStatus, normalise_email
from repositories.procurement_store import ProcurementStore
from services.attachment_extractor import ContentExtractor, combine_body_and_attachments
from services.mailbox_client import InboundMessage, MailboxClient, MailboxTimeoutError
from services.response_extractor import ResponseExtractor
from services.rfp_matcher import VendorMatcher
from services.rfp_status import advance_on_response
from utils.rfp_subject import is_rfp_reply

logger = logging.getLogger(__name__)


class PollInProgressError(RuntimeError):
    """Raised when a poll is requested while another one is running."""


class _PairLocks:
    """One lock per ``(rfp_id, vendor_id)`` pair."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Tuple[str, str], threading.Lock] = defaultdict(threading.Lock)

    def __call__(self, rfp_id: str, vendor_id: str) -> threading.Lock:
        with self._guard:
            return self._locks[(rfp_id, vendor_id)]


class IngestionOrchestrator:
    def __init__(
        self,
        store: ProcurementStore,
        *,
        mailbox: Optional[MailboxClient] = None,
        matcher: Optional[VendorMatcher] = None,
        extractor: Optional[ResponseExtractor] = None,
        content_extractor: Optional[ContentExtractor] = None,
        poll_timeout: Optional[float] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.store = store
        self.mailbox = mailbox or MailboxClient.from_settings()
        self.matcher = matcher or VendorMatcher(store)
        self.extractor = extractor or ResponseExtractor()
        self.content_extractor = content_extractor or ContentExtractor()
        self.poll_timeout = poll_timeout or settings.imap_timeout_seconds
        self.max_workers = max_workers or settings.ingestion_max_workers
        self._poll_lock = threading.Lock()
        self._pair_lock = _PairLocks()

    @property
    def polling(self) -> bool:
        return self._poll_lock.locked()

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no poll holds the in-flight guard; ``False`` on timeout."""

        if not self._poll_lock.acquire(timeout=-1 if timeout is None else timeout):
            return False
        self._poll_lock.release()
        return True

    # ------------------------------------------------------------------
    # Per-message pipeline
    # ------------------------------------------------------------------
    def process_message(
        self, message: InboundMessage, allow_list: Optional[AbstractSet[str]] = None
    ) -> bool:
        """Run one message through the pipeline; ``True`` when reconciled."""

        try:
            return self._process(message, allow_list)
        except Exception:
            logger.exception(
                "Failed to process message %r from %s", message.subject, message.from_address
            )
            return False

    def _process(self, message: InboundMessage, allow_list: Optional[AbstractSet[str]]) -> bool:
        sender = normalise_email(message.from_address)
        if allow_list is None:
            allow_list = self.store.allow_listed_emails()
        if sender not in allow_list:
            logger.debug("Skipping message from unknown sender %s", sender)
            return False
        if not is_rfp_reply(message.subject):
            logger.debug("Skipping non-RFP reply %r from %s", message.subject, sender)
            return False

        attachment_text = self.content_extractor.combine(message.attachments)
        combined = combine_body_and_attachments(message.body, attachment_text)
        if not combined.strip():
            logger.info("Skipping empty reply %r from %s", message.subject, sender)
            return False

        match = self.matcher.match_rfp(message, sender)
        if match is None:
            return False
        rfp = match.rfp

        vendor = self.store.find_vendor_by_email(sender)
        if vendor is None:
            logger.warning("Vendor %s passed the allow-list but has no record", sender)
            return False

        quote = self.extractor.parse(combined, rfp_context=rfp.requirements or None)
        total_amount = quote.resolve_total(combined)

        with self._pair_lock(rfp.id, vendor.id), self.store.transaction():
            existing = self.store.find_conversation(rfp.id, vendor.id)
            conversation = Conversation(
                id=existing.id if existing else uuid.uuid4().hex,
                rfp_id=rfp.id,
                vendor_id=vendor.id,
                email_subject=message.subject,
                email_body=combined,
                parsed_data=quote.to_document(),
                total_amount=total_amount,
                status=ConversationStatus.PENDING_REVIEW,
                received_at=message.received_at,
                parsed_at=datetime.now(timezone.utc),
            )
            self.store.save_conversation(conversation)
            advance_on_response(self.store, rfp.id)

        logger.info(
            "%s conversation %s for RFP %s from %s (total %.2f)",
            "Updated" if existing else "Created",
            conversation.id,
            rfp.id,
            vendor.email,
            total_amount,
        )
        return True

    # ------------------------------------------------------------------
    # Polling entry points
    # ------------------------------------------------------------------
    def _drain(self, cancel_event: threading.Event) -> int:
        handler = functools.partial(
            self.process_message, allow_list=frozenset(self.store.allow_listed_emails())
        )
        if self.max_workers <= 1:
            return self.mailbox.fetch_unseen(handler, cancel_event=cancel_event)

        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="rfp-ingest"
        ) as pool:
            futures = []

            def submit(message: InboundMessage) -> bool:
                futures.append(pool.submit(handler, message))
                return True

            self.mailbox.fetch_unseen(submit, cancel_event=cancel_event)
            return sum(1 for future in futures if future.result())

    def _guarded_drain(self, cancel_event: threading.Event) -> int:
        try:
            return self._drain(cancel_event)
        finally:
            self._poll_lock.release()

    def poll_once(self) -> int:
        """Drain the mailbox once and return the number of reconciled messages.

        Raises :class:`PollInProgressError` if another poll is running and
        :class:`MailboxTimeoutError` when the poll exceeds ``poll_timeout``,
        in which case the connection is torn down.
        """

        if not self._poll_lock.acquire(blocking=False):
            raise PollInProgressError("A mailbox poll is already in progress")

        cancel_event = threading.Event()
        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="rfp-mail-poll"
        )
        try:
            future = executor.submit(self._guarded_drain, cancel_event)
        except BaseException:
            self._poll_lock.release()
            executor.shutdown(wait=False)
            raise

        try:
            count = future.result(timeout=self.poll_timeout)
        except concurrent.futures.TimeoutError:
            cancel_event.set()
            self.mailbox.abort()
            raise MailboxTimeoutError(
                f"Mailbox poll exceeded {self.poll_timeout:.0f}s and was aborted"
            ) from None
        finally:
            executor.shutdown(wait=False)

        logger.info("Mailbox poll complete: %d message(s) processed", count)
        return count

    def check_now(self) -> Dict[str, object]:
        """Manual trigger: poll once without retries and report the outcome."""

        try:
            count = self.poll_once()
        except Exception as exc:
            logger.error("Manual mailbox check failed: %s", exc)
            return {"success": False, "error": str(exc)}
        return {"success": True, "count": count}


__all__ = ["IngestionOrchestrator", "PollInProgressError"]
