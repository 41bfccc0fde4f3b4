"""MessageFetcher — one search -> fetch -> process cycle on an
authenticated IMAP session.
"""

from __future__ import annotations

import asyncio
import imaplib

import structlog

from .analyzer import detect_esp, extract_receiving_chain
from .config import ImapConfig, PollConfig
from .connection import ConnectionManager
from .errors import EspwatchError, FetchError, FlagError, MailboxError, ParseError, SearchError
from .imap_client import SESSION_LOST_ERRORS, AsyncImapClient, FetchedEmail, imap_quote
from .models import CycleReport, MailMessage, MessageOutcome, MessageResult
from .parser import MessageParser, ParsedMessage
from .store import MessageStore

logger = structlog.get_logger()

# Headers included in failure logs; enough to find the message by hand.
_SNAPSHOT_HEADERS = ("message-id", "from", "subject", "date")


def build_search_criteria(subject_filter: str) -> tuple[list[str], bytes | None]:
    """Return ``(criteria, literal)`` for ``UNSEEN SUBJECT <filter>``.

    Non-ASCII filters are sent as a UTF-8 literal.
    """
    if not subject_filter:
        return ["UNSEEN"], None
    if subject_filter.isascii():
        return ["UNSEEN", "SUBJECT", imap_quote(subject_filter)], None
    return ["UNSEEN", "SUBJECT"], subject_filter.encode("utf-8")


class MessageFetcher:
    """Search the watched mailbox and ingest every matching message.

    Each fetched message runs through its own task (parse, dedup check,
    analysis, insert).  A failure in one message is logged and reported;
    it never cancels its siblings or fails the cycle.
    """

    def __init__(
        self,
        imap_config: ImapConfig,
        poll_config: PollConfig,
        store: MessageStore,
        connection: ConnectionManager,
        parser: MessageParser | None = None,
    ) -> None:
        self._imap_config = imap_config
        self._poll_config = poll_config
        self._store = store
        self._connection = connection
        self._parser = parser or MessageParser()

    async def run(self, client: AsyncImapClient) -> CycleReport:
        """Run one cycle.  Raises MailboxError, SearchError, FetchError or FlagError."""
        report = CycleReport()
        mailbox = self._imap_config.mailbox

        # read-write so STORE can set \Seen
        await self._protocol_call(
            MailboxError,
            f"cannot open mailbox {mailbox!r}",
            client.select_mailbox(mailbox, readonly=False),
        )

        criteria, literal = build_search_criteria(self._poll_config.subject_filter)
        uids: list[str] = await self._protocol_call(
            SearchError,
            "search failed",
            client.search(criteria, literal=literal),
        )
        report.matched = len(uids)
        if not uids:
            logger.info("no_new_messages", mailbox=mailbox, subject_filter=self._poll_config.subject_filter)
            return report

        logger.info("messages_matched", mailbox=mailbox, count=len(uids))
        # Peek only: \Seen is set below, once each message is settled.
        fetched: list[FetchedEmail] = await self._protocol_call(
            FetchError,
            "fetch failed",
            client.fetch(uids, mark_seen=False),
        )

        claimed: set[str] = set()
        async with asyncio.TaskGroup() as tg:
            tasks = [tg.create_task(self._process(email_data, claimed)) for email_data in fetched]
        report.results = [task.result() for task in tasks]

        settled = [result.uid for result in report.results if not result.retry]
        await self._protocol_call(
            FlagError,
            "cannot flag messages seen",
            client.mark_seen(settled),
        )

        logger.info(
            "fetch_cycle_finished",
            matched=report.matched,
            stored=report.stored,
            duplicates=report.duplicates,
            failed=report.failed,
            left_unseen=len(report.results) - len(settled),
        )
        return report

    async def _protocol_call(self, error_cls: type[EspwatchError], what: str, call):
        """Await an IMAP call, mapping protocol failures to *error_cls*."""
        try:
            return await call
        except EspwatchError:
            raise
        except SESSION_LOST_ERRORS as exc:
            await self._connection.mark_lost(exc)
            raise error_cls(f"{what}: {exc}") from exc
        except imaplib.IMAP4.error as exc:
            raise error_cls(f"{what}: {exc}") from exc

    # ------------------------------------------------------------------
    # Per-message pipeline
    # ------------------------------------------------------------------

    async def _process(self, email_data: FetchedEmail, claimed: set[str]) -> MessageResult:
        """Never raises: every failure becomes a ``failed`` result.

        Failures that may succeed later (refused FETCH, store errors) are
        marked ``retry`` and the message stays unseen.  Unparseable messages
        are settled, since parsing them again gives the same result.
        """
        uid = email_data.uid
        if email_data.error is not None:
            return MessageResult(uid=uid, outcome=MessageOutcome.FAILED, error=email_data.error, retry=True)

        parsed: ParsedMessage | None = None
        try:
            parsed = self._parse(email_data)
            message_id = parsed.message_id or f"imap-uid-{uid}"

            # Claimed synchronously, before any await, so two copies of the
            # same message in one batch cannot both pass the store check.
            if message_id in claimed or await self._is_stored(message_id, claimed):
                logger.info("message_duplicate_skipped", uid=uid, message_id=message_id)
                return MessageResult(uid=uid, outcome=MessageOutcome.DUPLICATE, message_id=message_id)

            record = self._build_record(message_id, parsed)
            if not await self._store.insert(record):
                return MessageResult(uid=uid, outcome=MessageOutcome.DUPLICATE, message_id=message_id)
        except Exception as exc:
            logger.exception(
                "message_processing_failed",
                uid=uid,
                headers=_snapshot(parsed),
                size_bytes=len(email_data.raw_bytes),
            )
            return MessageResult(
                uid=uid,
                outcome=MessageOutcome.FAILED,
                message_id=parsed.message_id if parsed else None,
                error=str(exc),
                retry=not isinstance(exc, ParseError),
            )

        logger.info(
            "message_stored",
            uid=uid,
            message_id=record.message_id,
            sender=record.sender,
            esp_type=record.esp_type,
            hops=len(record.receiving_chain),
        )
        return MessageResult(uid=uid, outcome=MessageOutcome.STORED, message_id=record.message_id)

    def _parse(self, email_data: FetchedEmail) -> ParsedMessage:
        try:
            return self._parser.parse(email_data.raw_bytes)
        except Exception as exc:
            raise ParseError(email_data.uid, str(exc)) from exc

    async def _is_stored(self, message_id: str, claimed: set[str]) -> bool:
        claimed.add(message_id)
        return await self._store.exists(message_id)

    def _build_record(self, message_id: str, parsed: ParsedMessage) -> MailMessage:
        esp = detect_esp(parsed.from_field)
        return MailMessage(
            message_id=message_id,
            sender=parsed.from_field.text if parsed.from_field and parsed.from_field.text else "Unknown",
            subject=parsed.subject,
            raw_headers=parsed.headers,
            receiving_chain=extract_receiving_chain(parsed.headers),
            esp_type=esp.type,
            esp_details=esp.details,
            processed=True,
        )


def _snapshot(parsed: ParsedMessage | None) -> dict[str, object]:
    if parsed is None:
        return {}
    return {name: parsed.headers[name] for name in _SNAPSHOT_HEADERS if name in parsed.headers}
