"""Shared test fixtures for the espwatch test suite."""

from __future__ import annotations

from email.mime.text import MIMEText
from unittest.mock import AsyncMock

import pytest

from espwatch.config import ElasticsearchConfig, ImapConfig, PollConfig, ServiceConfig
from espwatch.imap_client import AsyncImapClient, FetchedEmail
from espwatch.models import MailMessage
from espwatch.store import MessageStore


@pytest.fixture
def imap_config() -> ImapConfig:
    return ImapConfig(
        host="imap.test.com",
        port=993,
        use_ssl=True,
        username="watcher@test.com",
        password="testpass",
        mailbox="INBOX",
    )


@pytest.fixture
def poll_config() -> PollConfig:
    return PollConfig(
        interval_seconds=0.05,
        subject_filter="EMAIL_ANALYSIS_TEST",
        max_reconnect_attempts=3,
        reconnect_delay_seconds=0,
        max_reconnect_delay_seconds=0,
        connect_timeout_seconds=1.0,
    )


@pytest.fixture
def es_config() -> ElasticsearchConfig:
    return ElasticsearchConfig(url="http://es.test:9200", index="emails-test")


@pytest.fixture
def service_config(
    imap_config: ImapConfig,
    poll_config: PollConfig,
    es_config: ElasticsearchConfig,
) -> ServiceConfig:
    return ServiceConfig(
        port=13000,
        imap=imap_config,
        poll=poll_config,
        elasticsearch=es_config,
    )


# ------------------------------------------------------------------
# In-memory store
# ------------------------------------------------------------------


class InMemoryMessageStore(MessageStore):
    """MessageStore keeping records in a dict keyed by message id."""

    def __init__(self) -> None:
        self.records: dict[str, MailMessage] = {}
        self.insert_calls = 0

    async def exists(self, message_id: str) -> bool:
        return message_id in self.records

    async def insert(self, message: MailMessage) -> bool:
        self.insert_calls += 1
        if message.message_id in self.records:
            return False
        self.records[message.message_id] = message
        return True

    async def find_by_message_id(self, message_id: str) -> MailMessage | None:
        return self.records.get(message_id)

    async def find_by_id(self, doc_id: str) -> MailMessage | None:
        return next((m for m in self.records.values() if m.id == doc_id), None)

    async def list_all(self) -> list[MailMessage]:
        return sorted(self.records.values(), key=lambda m: m.received_at, reverse=True)


@pytest.fixture
def memory_store() -> InMemoryMessageStore:
    return InMemoryMessageStore()


# ------------------------------------------------------------------
# Sample EML builders
# ------------------------------------------------------------------

SAMPLE_RECEIVED = [
    "by mx.google.com with SMTPS id abc123; Mon, 01 Jun 2025 12:00:03 +0000",
    "from o1.mail.sendgrid.net (o1.mail.sendgrid.net [167.89.0.1]) by mx.google.com "
    "with ESMTPS id def456; Mon, 01 Jun 2025 12:00:02 +0000",
    "from [10.0.0.5] by o1.mail.sendgrid.net with HTTP; Mon, 01 Jun 2025 12:00:01 +0000",
]


def _build_plain_email(
    *,
    subject: str = "EMAIL_ANALYSIS_TEST",
    from_addr: str = "Alerts <alerts@mail.sendgrid.net>",
    to_addr: str = "watcher@test.com",
    body: str = "Hello, World!",
    message_id: str | None = "<test-001@mail.sendgrid.net>",
    received: list[str] | None = None,
) -> bytes:
    """Build a simple plain-text email as raw bytes.

    *received* is given newest hop first, the order servers prepend them.
    """
    msg = MIMEText(body, "plain")
    for hop in received if received is not None else SAMPLE_RECEIVED:
        msg["Received"] = hop
    msg["Subject"] = subject
    if from_addr:
        msg["From"] = from_addr
    msg["To"] = to_addr
    if message_id:
        msg["Message-ID"] = message_id
    msg["Date"] = "Mon, 01 Jun 2025 12:00:00 +0000"
    return msg.as_bytes()


def _make_fetched(uid: str = "100", **kwargs) -> FetchedEmail:
    kwargs.setdefault("message_id", f"<msg-{uid}@example.com>")
    return FetchedEmail(uid=uid, raw_bytes=_build_plain_email(**kwargs))


def _make_record(message_id: str = "<rec-1@example.com>", **overrides) -> MailMessage:
    data = {
        "message_id": message_id,
        "sender": "Alerts <alerts@mail.sendgrid.net>",
        "subject": "EMAIL_ANALYSIS_TEST",
        "raw_headers": {"received": ["by mx.google.com; x"], "subject": "EMAIL_ANALYSIS_TEST"},
        "receiving_chain": ["mx.google.com"],
        "esp_type": "mail.sendgrid.net",
        "esp_details": "alerts@mail.sendgrid.net",
    }
    data.update(overrides)
    return MailMessage(**data)


@pytest.fixture
def plain_eml_bytes() -> bytes:
    return _build_plain_email()


@pytest.fixture
def imap_client_mock() -> AsyncMock:
    """AsyncImapClient stand-in: empty mailbox unless reprogrammed."""
    client = AsyncMock(spec=AsyncImapClient)
    client.select_mailbox.return_value = 0
    client.search.return_value = []
    client.fetch.return_value = []
    return client
