"""espwatch — IMAP mailbox watcher that reconstructs receiving chains and
classifies sending providers.

Public API re-exported here for convenience::

    from espwatch import EspwatchService, ServiceConfig, extract_receiving_chain
"""

from .analyzer import detect_esp, extract_receiving_chain
from .config import ElasticsearchConfig, ImapConfig, PollConfig, ServiceConfig
from .connection import ConnectionManager
from .errors import (
    ConnectError,
    ConnectTimeout,
    EspwatchError,
    FetchError,
    FlagError,
    MailboxError,
    ParseError,
    SearchError,
)
from .fetcher import MessageFetcher
from .imap_client import AsyncImapClient, FetchedEmail
from .logging import setup_logging
from .models import (
    ConnectionState,
    CycleReport,
    EspAnalysis,
    MailMessage,
    MessageOutcome,
    MessageResult,
    ServiceStatus,
)
from .parser import FromField, MessageParser, ParsedMessage
from .scheduler import PollScheduler
from .service import EspwatchService
from .store import ElasticsearchMessageStore, MessageStore

__all__ = [
    "AsyncImapClient",
    "ConnectError",
    "ConnectTimeout",
    "ConnectionManager",
    "ConnectionState",
    "CycleReport",
    "ElasticsearchConfig",
    "ElasticsearchMessageStore",
    "EspAnalysis",
    "EspwatchError",
    "EspwatchService",
    "FetchError",
    "FetchedEmail",
    "FlagError",
    "FromField",
    "ImapConfig",
    "MailMessage",
    "MailboxError",
    "MessageFetcher",
    "MessageOutcome",
    "MessageParser",
    "MessageResult",
    "MessageStore",
    "ParseError",
    "ParsedMessage",
    "PollConfig",
    "PollScheduler",
    "SearchError",
    "ServiceConfig",
    "ServiceStatus",
    "detect_esp",
    "extract_receiving_chain",
    "setup_logging",
]
