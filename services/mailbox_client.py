"""IMAP client that drains the most recent unseen vendor replies.

Messages are fetched with ``RFC822`` which marks them ``\\Seen`` on the
server at fetch time.  A message whose downstream processing fails is still
consumed; re-processing relies on the idempotent conversation upsert rather
than on redelivery.
"""

from __future__ import annotations

import contextlib
import imaplib
import logging
import socket
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.header import decode_header, make_header
from email.message import Message
from email.parser import BytesParser
from email.policy import default as default_policy
from email.utils import parseaddr, parsedate_to_datetime
from html.parser import HTMLParser
from typing import Callable, List, Optional, Tuple

from config.settings import settings
from services.attachment_extractor import Attachment

logger = logging.getLogger(__name__)


class MailboxError(RuntimeError):
    """Base class for mailbox failures."""


class MailboxNetworkError(MailboxError):
    """Transient network failure; safe to retry with backoff."""


class MailboxResolutionError(MailboxNetworkError):
    """The mail server host name could not be resolved."""


class MailboxConnectionError(MailboxNetworkError):
    """The connection was refused or dropped."""


class MailboxTimeoutError(MailboxNetworkError):
    """The poll exceeded its time budget."""


class MailboxAuthenticationError(MailboxError):
    """The server rejected the configured credentials."""


class MailboxProtocolError(MailboxError):
    """The server answered an IMAP command with a failure."""


class MailboxConfigurationError(MailboxError):
    """IMAP credentials are missing."""


@dataclass(frozen=True)
class InboundMessage:
    subject: str
    from_address: str
    text: str = ""
    html: Optional[str] = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attachments: Tuple[Attachment, ...] = ()
    message_id: Optional[str] = None

    @property
    def body(self) -> str:
        """Plain text body, falling back to the rendered HTML body."""

        if self.text and self.text.strip():
            return self.text.strip()
        if self.html:
            return _strip_html_tags(self.html)
        return ""


class _BodyHTMLStripper(HTMLParser):
    def __init__(self) -> None:
        super().__init__()
        self._parts: List[str] = []

    def handle_data(self, data: str) -> None:
        if data:
            self._parts.append(data)

    @property
    def text(self) -> str:
        return " ".join(part.strip() for part in self._parts if part.strip())


def _strip_html_tags(html: str) -> str:
    parser = _BodyHTMLStripper()
    parser.feed(html)
    parser.close()
    return parser.text


def _decode_header(value: Optional[str]) -> str:
    if not value:
        return ""
    try:
        return str(make_header(decode_header(value)))
    except Exception:  # pragma: no cover - malformed encoded words
        return value


def _message_received_at(msg: Message) -> datetime:
    date_value = msg.get("Date")
    parsed = None
    if date_value:
        try:
            parsed = parsedate_to_datetime(date_value)
        except Exception:  # pragma: no cover - resilience against malformed dates
            parsed = None
    if parsed is None:
        parsed = datetime.now(timezone.utc)
    elif parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_attachment(part: Message) -> bool:
    if part.is_multipart():
        return False
    disposition = (part.get("Content-Disposition") or "").lower()
    return "attachment" in disposition or bool(part.get_filename())


def _extract_bodies(message: Message) -> Tuple[str, Optional[str]]:
    text_content: Optional[str] = None
    html_content: Optional[str] = None

    for part in message.walk():
        if part.is_multipart() or _is_attachment(part):
            continue
        ctype = part.get_content_type()
        try:
            candidate = part.get_content()
        except Exception as exc:
            logger.warning("Failed to decode %s part: %s", ctype, exc)
            continue
        if not isinstance(candidate, str) or not candidate.strip():
            continue
        if ctype == "text/plain" and text_content is None:
            text_content = candidate.strip()
        elif ctype == "text/html" and html_content is None:
            html_content = candidate
    return text_content or "", html_content


def _extract_attachments(message: Message) -> Tuple[Attachment, ...]:
    attachments: List[Attachment] = []
    for part in message.walk():
        if not _is_attachment(part):
            continue
        try:
            content = part.get_payload(decode=True)
        except Exception:  # pragma: no cover - undecodable transfer encoding
            content = None
        attachments.append(
            Attachment(
                filename=_decode_header(part.get_filename()) or None,
                content_type=part.get_content_type(),
                content=content or None,
            )
        )
    return tuple(attachments)


def parse_message(raw: bytes) -> InboundMessage:
    """Parse raw RFC822 bytes into :class:`InboundMessage`."""

    msg = BytesParser(policy=default_policy).parsebytes(raw)
    text, html = _extract_bodies(msg)
    _, from_address = parseaddr(_decode_header(msg.get("From")))
    return InboundMessage(
        subject=_decode_header(msg.get("Subject")),
        from_address=from_address.strip().lower(),
        text=text,
        html=html,
        received_at=_message_received_at(msg),
        attachments=_extract_attachments(msg),
        message_id=(msg.get("Message-ID") or "").strip() or None,
    )


class MailboxClient:
    """Connect, drain up to ``max_messages`` unseen messages, disconnect."""

    def __init__(
        self,
        *,
        host: str,
        user: Optional[str],
        password: Optional[str],
        port: int = 993,
        mailbox: str = "INBOX",
        use_ssl: bool = True,
        timeout: float = 30.0,
        max_messages: int = 10,
        imap_factory: Optional[Callable[..., imaplib.IMAP4]] = None,
        resolver: Callable[..., object] = socket.getaddrinfo,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.mailbox = mailbox
        self.use_ssl = use_ssl
        self.timeout = timeout
        self.max_messages = max_messages
        self._imap_factory = imap_factory
        self._resolver = resolver
        self._connection: Optional[imaplib.IMAP4] = None
        self._connection_lock = threading.Lock()

    @classmethod
    def from_settings(cls, app_settings=settings) -> "MailboxClient":
        return cls(
            host=app_settings.imap_host,
            port=app_settings.imap_port,
            user=app_settings.imap_user,
            password=app_settings.imap_password,
            mailbox=app_settings.imap_mailbox,
            use_ssl=app_settings.imap_use_ssl,
            timeout=app_settings.imap_timeout_seconds,
            max_messages=app_settings.imap_max_messages_per_poll,
        )

    @property
    def configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    def _resolve_host(self) -> None:
        try:
            self._resolver(self.host, self.port)
        except socket.gaierror as exc:
            raise MailboxResolutionError(
                f"Cannot resolve mail server {self.host}: {exc}"
            ) from exc

    def _open(self) -> imaplib.IMAP4:
        if self._imap_factory is not None:
            return self._imap_factory(self.host, self.port, timeout=self.timeout)
        if self.use_ssl:
            return imaplib.IMAP4_SSL(self.host, self.port, timeout=self.timeout)
        return imaplib.IMAP4(self.host, self.port, timeout=self.timeout)

    def abort(self) -> None:
        """Tear down the live connection from another thread."""

        with self._connection_lock:
            connection = self._connection
        if connection is None:
            return
        logger.warning("Forcing IMAP connection to %s closed", self.host)
        with contextlib.suppress(Exception):
            connection.shutdown()

    def fetch_unseen(
        self,
        handler: Callable[[InboundMessage], bool],
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> int:
        """Hand each recent unseen message to ``handler``; return how many succeeded."""

        if not self.configured:
            raise MailboxConfigurationError("IMAP credentials are not configured")

        self._resolve_host()
        try:
            connection = self._open()
        except TimeoutError as exc:
            raise MailboxTimeoutError(f"Timed out connecting to {self.host}") from exc
        except OSError as exc:
            raise MailboxConnectionError(f"Cannot connect to {self.host}: {exc}") from exc

        with self._connection_lock:
            self._connection = connection
        try:
            return self._drain(connection, handler, cancel_event)
        except MailboxError:
            raise
        except TimeoutError as exc:
            raise MailboxTimeoutError(f"IMAP operation timed out: {exc}") from exc
        except imaplib.IMAP4.abort as exc:
            raise MailboxConnectionError(f"IMAP connection aborted: {exc}") from exc
        except imaplib.IMAP4.error as exc:
            raise MailboxProtocolError(str(exc)) from exc
        except OSError as exc:
            raise MailboxConnectionError(str(exc)) from exc
        finally:
            with self._connection_lock:
                self._connection = None
            with contextlib.suppress(Exception):
                connection.logout()

    def _drain(
        self,
        connection: imaplib.IMAP4,
        handler: Callable[[InboundMessage], bool],
        cancel_event: Optional[threading.Event],
    ) -> int:
        try:
            connection.login(self.user, self.password)
        except imaplib.IMAP4.abort:
            raise
        except imaplib.IMAP4.error as exc:
            raise MailboxAuthenticationError(f"IMAP login failed for {self.user}: {exc}") from exc

        status, _ = connection.select(self.mailbox, readonly=False)
        if status != "OK":
            raise MailboxProtocolError(f"Unable to select IMAP folder {self.mailbox}")
        status, data = connection.search(None, "UNSEEN")
        if status != "OK":
            raise MailboxProtocolError("IMAP search for unseen messages failed")

        ids = data[0].split() if data and data[0] else []
        if not ids:
            logger.info("No unseen messages in %s", self.mailbox)
            return 0
        if len(ids) > self.max_messages:
            logger.info(
                "%d unseen messages; processing the latest %d", len(ids), self.max_messages
            )
            ids = ids[-self.max_messages:]

        processed = 0
        for msg_id in ids:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Poll cancelled; leaving remaining messages for the next cycle")
                break
            status, msg_data = connection.fetch(msg_id, "(RFC822)")
            if status != "OK":
                logger.warning("Failed to fetch message %s", msg_id)
                continue
            raw = next(
                (part[1] for part in msg_data or [] if isinstance(part, tuple)), None
            )
            if raw is None:
                continue
            try:
                message = parse_message(raw)
            except Exception:
                logger.exception("Failed to parse message %s", msg_id)
                continue
            if handler(message):
                processed += 1
        return processed


__all__ = [
    "InboundMessage",
    "MailboxAuthenticationError",
    "MailboxClient",
    "MailboxConfigurationError",
    "MailboxConnectionError",
    "MailboxError",
    "MailboxNetworkError",
    "MailboxProtocolError",
    "MailboxResolutionError",
    "MailboxTimeoutError",
    "parse_message",
]
