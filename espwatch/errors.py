"""Exception taxonomy for the ingestion pipeline.

Connection-level errors abort the current poll cycle.  :class:`ParseError`
is per-message and never escapes the fetcher.  A message that was already
ingested is not an error at all; it is reported as
:attr:`espwatch.models.MessageOutcome.DUPLICATE`.
"""

from __future__ import annotations


class EspwatchError(Exception):
    """Base class for all pipeline errors."""


class ConnectTimeout(EspwatchError):
    """The IMAP session did not authenticate within the connect budget."""


class ConnectError(EspwatchError):
    """Connecting or logging in failed (network, TLS or credentials).

    The underlying exception is available as ``__cause__``.
    """


class MailboxError(EspwatchError):
    """The target mailbox could not be selected."""


class SearchError(EspwatchError):
    """The IMAP SEARCH command failed for the whole cycle."""


class FetchError(EspwatchError):
    """The FETCH batch could not complete; nothing from it was flagged seen."""


class FlagError(EspwatchError):
    """Setting ``\\Seen`` on processed messages failed."""


class ParseError(EspwatchError):
    """A single message could not be parsed into a structured record."""

    def __init__(self, uid: str, reason: str) -> None:
        super().__init__(f"message {uid}: {reason}")
        self.uid = uid
        self.reason = reason
