import imaplib
import os
import socket
import sys
import threading
from email.message import EmailMessage

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from services.mailbox_client import (
    MailboxAuthenticationError,
    MailboxClient,
    MailboxConfigurationError,
    MailboxConnectionError,
    MailboxProtocolError,
    MailboxResolutionError,
    MailboxTimeoutError,
    parse_message,
)


def _raw_message(subject="Re: RFP: Chairs", sender="Vendor <Sales@Vendor.com>", body="Total: 100"):
    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = sender
    message["To"] = "buyer@example.com"
    message["Date"] = "Tue, 02 Jul 2024 10:00:00 +0000"
    message["Message-ID"] = "<abc@vendor.com>"
    message.set_content(body)
    return message


class FakeIMAP:
    def __init__(self, messages, *, login_error=None, select_status="OK"):
        self.messages = messages
        self.login_error = login_error
        self.select_status = select_status
        self.selected = None
        self.fetched = []
        self.logged_out = False
        self.shutdown_called = False

    def login(self, user, password):
        if self.login_error:
            raise self.login_error

    def select(self, mailbox, readonly=False):
        self.selected = (mailbox, readonly)
        return self.select_status, [b"0"]

    def search(self, charset, criteria):
        assert criteria == "UNSEEN"
        ids = b" ".join(str(index + 1).encode() for index in range(len(self.messages)))
        return "OK", [ids]

    def fetch(self, msg_id, parts):
        assert parts == "(RFC822)"
        self.fetched.append(msg_id)
        raw = self.messages[int(msg_id) - 1]
        return "OK", [(b"1 (RFC822 {100}", raw), b")"]

    def logout(self):
        self.logged_out = True

    def shutdown(self):
        self.shutdown_called = True


def _client(fake, **overrides):
    options = dict(
        host="imap.example.com",
        user="buyer@example.com",
        password="secret",
        max_messages=10,
        imap_factory=lambda host, port, timeout: fake,
        resolver=lambda host, port: [("ok",)],
    )
    options.update(overrides)
    return MailboxClient(**options)


def test_parse_message_normalises_sender_and_body():
    message = parse_message(_raw_message().as_bytes())

    assert message.subject == "Re: RFP: Chairs"
    assert message.from_address == "sales@vendor.com"
    assert message.body == "Total: 100"
    assert message.message_id == "<abc@vendor.com>"
    assert message.received_at.year == 2024
    assert message.attachments == ()


def test_parse_message_collects_attachments_and_html_fallback():
    raw = EmailMessage()
    raw["Subject"] = "Re: RFP: Desks"
    raw["From"] = "sales@vendor.com"
    raw.set_content("<p>Our <b>quote</b> attached</p>", subtype="html")
    raw.add_attachment(
        b"%PDF-1.4", maintype="application", subtype="pdf", filename="quote.pdf"
    )

    message = parse_message(raw.as_bytes())

    assert message.text == ""
    assert message.body == "Our quote attached"
    assert len(message.attachments) == 1
    attachment = message.attachments[0]
    assert attachment.filename == "quote.pdf"
    assert attachment.content_type == "application/pdf"
    assert attachment.content == b"%PDF-1.4"


def test_fetch_unseen_only_takes_most_recent_messages():
    raws = [_raw_message(subject=f"Re: RFP #{index}").as_bytes() for index in range(15)]
    fake = FakeIMAP(raws)
    seen = []

    count = _client(fake).fetch_unseen(lambda message: seen.append(message.subject) or True)

    assert count == 10
    assert fake.selected == ("INBOX", False)
    assert fake.fetched == [str(index).encode() for index in range(6, 16)]
    assert seen[0] == "Re: RFP #5"
    assert seen[-1] == "Re: RFP #14"
    assert fake.logged_out


def test_fetch_unseen_counts_only_successful_handlers():
    fake = FakeIMAP([_raw_message().as_bytes(), _raw_message().as_bytes()])
    results = iter([True, False])

    assert _client(fake).fetch_unseen(lambda message: next(results)) == 1


def test_resolution_failure_is_distinct():
    def resolver(host, port):
        raise socket.gaierror(-2, "Name or service not known")

    client = _client(FakeIMAP([]), resolver=resolver)

    with pytest.raises(MailboxResolutionError):
        client.fetch_unseen(lambda message: True)


def test_login_failure_is_authentication_error():
    fake = FakeIMAP([], login_error=imaplib.IMAP4.error("AUTHENTICATIONFAILED"))

    with pytest.raises(MailboxAuthenticationError):
        _client(fake).fetch_unseen(lambda message: True)
    assert fake.logged_out


def test_select_failure_is_protocol_error():
    fake = FakeIMAP([], select_status="NO")

    with pytest.raises(MailboxProtocolError):
        _client(fake).fetch_unseen(lambda message: True)


def test_connection_errors_are_mapped():
    def refused(host, port, timeout):
        raise ConnectionRefusedError(111, "Connection refused")

    def slow(host, port, timeout):
        raise socket.timeout("timed out")

    with pytest.raises(MailboxConnectionError):
        _client(FakeIMAP([]), imap_factory=refused).fetch_unseen(lambda message: True)
    with pytest.raises(MailboxTimeoutError):
        _client(FakeIMAP([]), imap_factory=slow).fetch_unseen(lambda message: True)


def test_missing_credentials_raise_configuration_error():
    client = _client(FakeIMAP([]), password=None)

    assert not client.configured
    with pytest.raises(MailboxConfigurationError):
        client.fetch_unseen(lambda message: True)


def test_cancel_event_stops_draining():
    fake = FakeIMAP([_raw_message().as_bytes() for _ in range(3)])
    cancel = threading.Event()

    def handler(message):
        cancel.set()
        return True

    assert _client(fake).fetch_unseen(handler, cancel_event=cancel) == 1
    assert len(fake.fetched) == 1


def test_abort_shuts_down_live_connection():
    fake = FakeIMAP([_raw_message().as_bytes()])
    client = _client(fake)

    def handler(message):
        client.abort()
        return True

    client.fetch_unseen(handler)

    assert fake.shutdown_called
    client.abort()
