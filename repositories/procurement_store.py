"""Document-style persistence for vendors, RFPs, conversations and proposals.

Each collection is a table holding its lookup keys as columns next to a JSON
``document`` with the full record.  PostgreSQL is used when ``PG_HOST`` is
configured; otherwise a local SQLite file is used.  Both accept the
``INSERT ... ON CONFLICT ... DO UPDATE`` upserts issued here.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Set, Type, TypeVar

import psycopg2
from psycopg2.extras import Json

from config.settings import settings
from models.procurement import (
    RESPONSE_ELIGIBLE_STATUSES,
    RFP,
    Conversation,
    Proposal,
    ProposalStatus,
    RFPStatus,
    Vendor,
    normalise_email,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TABLES = {
    "vendors": """
        CREATE TABLE IF NOT EXISTS vendors (
            id TEXT PRIMARY KEY,
            email TEXT NOT NULL UNIQUE,
            created_at TEXT NOT NULL,
            document {json} NOT NULL
        )
    """,
    "rfps": """
        CREATE TABLE IF NOT EXISTS rfps (
            id TEXT PRIMARY KEY,
            status TEXT NOT NULL,
            created_at TEXT NOT NULL,
            document {json} NOT NULL
        )
    """,
    "conversations": """
        CREATE TABLE IF NOT EXISTS conversations (
            id TEXT PRIMARY KEY,
            rfp_id TEXT NOT NULL,
            vendor_id TEXT NOT NULL,
            status TEXT NOT NULL,
            received_at TEXT NOT NULL,
            document {json} NOT NULL,
            UNIQUE (rfp_id, vendor_id)
        )
    """,
    "proposals": """
        CREATE TABLE IF NOT EXISTS proposals (
            id TEXT PRIMARY KEY,
            rfp_id TEXT NOT NULL,
            vendor_id TEXT NOT NULL,
            status TEXT NOT NULL,
            document {json} NOT NULL,
            UNIQUE (rfp_id, vendor_id)
        )
    """,
}


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return _iso(value)
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def to_document(record: Any) -> Dict[str, Any]:
    return _jsonable(dataclasses.asdict(record))


def from_document(cls: Type[T], document: Dict[str, Any]) -> T:
    names = {field.name for field in dataclasses.fields(cls)}
    kwargs: Dict[str, Any] = {}
    for key, value in document.items():
        if key not in names:
            continue
        if key.endswith("_at") and isinstance(value, str):
            value = datetime.fromisoformat(value)
        kwargs[key] = value
    return cls(**kwargs)


class ProcurementStore:
    """Thread-safe store shared by the poller and the review endpoints."""

    def __init__(self, *, path: Optional[str] = None, dsn: Optional[Dict[str, Any]] = None) -> None:
        self._lock = threading.RLock()
        self._depth = 0
        if dsn is None and path is None and settings.pg_host:
            dsn = {
                "host": settings.pg_host,
                "port": settings.pg_port,
                "dbname": settings.pg_database,
                "user": settings.pg_user,
                "password": settings.pg_password,
            }
        if dsn is not None:
            self.dialect = "postgres"
            self._conn = psycopg2.connect(**dsn)
        else:
            self.dialect = "sqlite"
            self._conn = sqlite3.connect(path or settings.database_path, check_same_thread=False)
        self.ensure_schema()

    def close(self) -> None:
        with self._lock:
            try:
                if self._conn is not None:
                    self._conn.close()
            finally:
                self._conn = None

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------
    def _sql(self, statement: str) -> str:
        if self.dialect == "postgres":
            return statement.replace("?", "%s")
        return statement

    def _json(self, document: Dict[str, Any]) -> Any:
        if self.dialect == "postgres":
            return Json(document)
        return json.dumps(document)

    @staticmethod
    def _load(value: Any) -> Dict[str, Any]:
        if isinstance(value, (bytes, str)):
            return json.loads(value)
        return dict(value)

    @contextmanager
    def transaction(self) -> Iterator["ProcurementStore"]:
        """Group writes so they commit together; nested calls join the outer one."""

        with self._lock:
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if self._depth == 0:
                    self._conn.rollback()
                raise
            else:
                self._depth -= 1
                if self._depth == 0:
                    self._conn.commit()

    def _execute(self, statement: str, params: Sequence[Any] = ()) -> List[Sequence[Any]]:
        with self._lock:
            cur = self._conn.cursor()
            try:
                cur.execute(self._sql(statement), tuple(params))
                if cur.description is None:
                    return []
                return list(cur.fetchall())
            finally:
                cur.close()

    def _write(self, statement: str, params: Sequence[Any] = ()) -> None:
        with self.transaction():
            self._execute(statement, params)

    def ensure_schema(self) -> None:
        json_type = "JSONB" if self.dialect == "postgres" else "TEXT"
        with self.transaction():
            for ddl in _TABLES.values():
                self._execute(ddl.format(json=json_type))
            self._execute(
                "CREATE INDEX IF NOT EXISTS conversations_rfp_idx ON conversations (rfp_id)"
            )
            self._execute("CREATE INDEX IF NOT EXISTS proposals_rfp_idx ON proposals (rfp_id)")

    def _documents(self, cls: Type[T], statement: str, params: Sequence[Any] = ()) -> List[T]:
        return [from_document(cls, self._load(row[0])) for row in self._execute(statement, params)]

    def _document(self, cls: Type[T], statement: str, params: Sequence[Any] = ()) -> Optional[T]:
        found = self._documents(cls, statement, params)
        return found[0] if found else None

    # ------------------------------------------------------------------
    # Vendors
    # ------------------------------------------------------------------
    def save_vendor(self, vendor: Vendor) -> Vendor:
        self._write(
            """
            INSERT INTO vendors (id, email, created_at, document) VALUES (?, ?, ?, ?)
            ON CONFLICT (id) DO UPDATE SET
                email = excluded.email,
                document = excluded.document
            """,
            (vendor.id, vendor.email, _iso(vendor.created_at), self._json(to_document(vendor))),
        )
        return vendor

    def get_vendor(self, vendor_id: str) -> Optional[Vendor]:
        return self._document(Vendor, "SELECT document FROM vendors WHERE id = ?", (vendor_id,))

    def find_vendor_by_email(self, email: Optional[str]) -> Optional[Vendor]:
        address = normalise_email(email)
        if not address:
            return None
        return self._document(Vendor, "SELECT document FROM vendors WHERE email = ?", (address,))

    def get_vendors(self, vendor_ids: Iterable[str]) -> List[Vendor]:
        ids = sorted({str(vendor_id) for vendor_id in vendor_ids})
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        return self._documents(
            Vendor, f"SELECT document FROM vendors WHERE id IN ({placeholders})", ids
        )

    # ------------------------------------------------------------------
    # RFPs
    # ------------------------------------------------------------------
    def save_rfp(self, rfp: RFP) -> RFP:
        rfp.updated_at = datetime.now(timezone.utc)
        self._write(
            """
            INSERT INTO rfps (id, status, created_at, document) VALUES (?, ?, ?, ?)
            ON CONFLICT (id) DO UPDATE SET
                status = excluded.status,
                document = excluded.document
            """,
            (rfp.id, rfp.status.value, _iso(rfp.created_at), self._json(to_document(rfp))),
        )
        return rfp

    def get_rfp(self, rfp_id: str) -> Optional[RFP]:
        return self._document(RFP, "SELECT document FROM rfps WHERE id = ?", (rfp_id,))

    def list_rfps(self, statuses: Optional[Iterable[RFPStatus]] = None) -> List[RFP]:
        """Return RFPs newest first, optionally restricted to ``statuses``."""

        if statuses is None:
            return self._documents(RFP, "SELECT document FROM rfps ORDER BY created_at DESC, id")
        values = {RFPStatus.coerce(status).value for status in statuses}
        if not values:
            return []
        if RFPStatus.EVALUATED.value in values:
            values.add("completed")
        values = sorted(values)
        placeholders = ", ".join("?" for _ in values)
        return self._documents(
            RFP,
            f"SELECT document FROM rfps WHERE status IN ({placeholders}) ORDER BY created_at DESC, id",
            values,
        )

    def eligible_rfps_for_vendor(self, vendor_id: str) -> List[RFP]:
        """RFPs awaiting or receiving responses that were sent to ``vendor_id``."""

        return [
            rfp for rfp in self.list_rfps(RESPONSE_ELIGIBLE_STATUSES) if rfp.has_recipient(vendor_id)
        ]

    def allow_listed_emails(self) -> Set[str]:
        """Emails of every vendor that has been sent an RFP."""

        vendor_ids: Set[str] = set()
        for rfp in self.list_rfps(RESPONSE_ELIGIBLE_STATUSES):
            vendor_ids.update(rfp.recipients)
        return {vendor.email for vendor in self.get_vendors(vendor_ids)}

    def migrate_legacy_statuses(self) -> int:
        """Rewrite RFPs stored with the legacy ``completed`` status as evaluated."""

        rows = self._execute("SELECT document FROM rfps WHERE status = ?", ("completed",))
        with self.transaction():
            for row in rows:
                rfp = from_document(RFP, self._load(row[0]))
                rfp.status = RFPStatus.EVALUATED
                self.save_rfp(rfp)
        if rows:
            logger.info("Migrated %d RFPs from 'completed' to 'evaluated'", len(rows))
        return len(rows)

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------
    def save_conversation(self, conversation: Conversation) -> Conversation:
        """Insert or replace the single conversation of ``(rfp_id, vendor_id)``."""

        with self.transaction():
            existing = self.find_conversation(conversation.rfp_id, conversation.vendor_id)
            if existing is not None:
                conversation.id = existing.id
            self._save_conversation_row(conversation)
        return conversation

    def _save_conversation_row(self, conversation: Conversation) -> None:
        self._write(
            """
            INSERT INTO conversations (id, rfp_id, vendor_id, status, received_at, document)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (rfp_id, vendor_id) DO UPDATE SET
                status = excluded.status,
                received_at = excluded.received_at,
                document = excluded.document
            """,
            (
                conversation.id,
                conversation.rfp_id,
                conversation.vendor_id,
                conversation.status.value,
                _iso(conversation.received_at),
                self._json(to_document(conversation)),
            ),
        )

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return self._document(
            Conversation, "SELECT document FROM conversations WHERE id = ?", (conversation_id,)
        )

    def find_conversation(self, rfp_id: str, vendor_id: str) -> Optional[Conversation]:
        return self._document(
            Conversation,
            "SELECT document FROM conversations WHERE rfp_id = ? AND vendor_id = ?",
            (rfp_id, vendor_id),
        )

    def list_conversations(self, rfp_id: str) -> List[Conversation]:
        return self._documents(
            Conversation,
            "SELECT document FROM conversations WHERE rfp_id = ? ORDER BY received_at DESC, id",
            (rfp_id,),
        )

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------
    def save_proposal(self, proposal: Proposal) -> Proposal:
        """Insert or replace the single proposal of ``(rfp_id, vendor_id)``."""

        with self.transaction():
            existing = self.find_proposal(proposal.rfp_id, proposal.vendor_id)
            if existing is not None:
                proposal.id = existing.id
            self._save_proposal_row(proposal)
        return proposal

    def _save_proposal_row(self, proposal: Proposal) -> None:
        self._write(
            """
            INSERT INTO proposals (id, rfp_id, vendor_id, status, document) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (rfp_id, vendor_id) DO UPDATE SET
                status = excluded.status,
                document = excluded.document
            """,
            (
                proposal.id,
                proposal.rfp_id,
                proposal.vendor_id,
                proposal.status.value,
                self._json(to_document(proposal)),
            ),
        )

    def find_proposal(self, rfp_id: str, vendor_id: str) -> Optional[Proposal]:
        return self._document(
            Proposal,
            "SELECT document FROM proposals WHERE rfp_id = ? AND vendor_id = ?",
            (rfp_id, vendor_id),
        )

    def list_proposals(
        self, rfp_id: str, statuses: Optional[Iterable[ProposalStatus]] = None
    ) -> List[Proposal]:
        proposals = self._documents(
            Proposal, "SELECT document FROM proposals WHERE rfp_id = ? ORDER BY id", (rfp_id,)
        )
        if statuses is None:
            return proposals
        wanted = {ProposalStatus(status) for status in statuses}
        return [proposal for proposal in proposals if proposal.status in wanted]

    def count_proposals(self, rfp_id: str, statuses: Iterable[ProposalStatus]) -> int:
        values = sorted({ProposalStatus(status).value for status in statuses})
        if not values:
            return 0
        placeholders = ", ".join("?" for _ in values)
        rows = self._execute(
            f"SELECT COUNT(*) FROM proposals WHERE rfp_id = ? AND status IN ({placeholders})",
            [rfp_id, *values],
        )
        return int(rows[0][0]) if rows else 0


__all__ = ["ProcurementStore", "from_document", "to_document"]
