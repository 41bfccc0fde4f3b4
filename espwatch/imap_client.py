"""Async IMAP client wrapping stdlib imaplib with asyncio.to_thread."""

from __future__ import annotations

import asyncio
import imaplib
import ssl
from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from .config import ImapConfig
from .errors import FlagError, MailboxError, SearchError

logger = structlog.get_logger()

# Errors that mean the session itself is gone, not just a failed command.
SESSION_LOST_ERRORS: tuple[type[BaseException], ...] = (imaplib.IMAP4.abort, OSError)


@dataclass
class FetchedEmail:
    """Raw email data fetched from IMAP."""

    uid: str
    raw_bytes: bytes
    error: str | None = None


def imap_quote(text: str) -> str:
    """Quote *text* as an IMAP quoted string."""
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_tls_context(verify: bool) -> ssl.SSLContext:
    """TLS context for the IMAP socket; *verify* toggles certificate checks."""
    context = ssl.create_default_context()
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


class AsyncImapClient:
    """Async-friendly IMAP client for a single session.

    All blocking ``imaplib`` operations are wrapped with
    ``asyncio.to_thread()`` to avoid blocking the event loop.  Command
    failures reported by the server raise the pipeline's own errors; socket
    and protocol failures propagate as ``imaplib``/``OSError`` exceptions so
    callers can tell a failed command from a lost session.
    """

    def __init__(self, config: ImapConfig, *, timeout: float | None = None) -> None:
        self._config = config
        self._timeout = timeout
        self._conn: imaplib.IMAP4_SSL | imaplib.IMAP4 | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the socket and log in.

        The blocking login keeps running in its worker thread when the
        awaiting task is cancelled (connect timeout).  A session that
        authenticates after that point is logged out as soon as it arrives,
        so an abandoned attempt never leaves a second session open.
        """
        opening = asyncio.ensure_future(asyncio.to_thread(self._open_sync))
        try:
            conn = await asyncio.shield(opening)
        except asyncio.CancelledError:
            opening.add_done_callback(self._discard_late_session)
            raise
        self._conn = conn
        logger.info("imap_connected", host=self._config.host, port=self._config.port)

    def _discard_late_session(self, opening: asyncio.Future) -> None:
        if opening.cancelled() or opening.exception() is not None:
            return
        logger.warning("imap_late_session_discarded", host=self._config.host)
        asyncio.get_running_loop().run_in_executor(None, self._disconnect_sync, opening.result())

    def _open_sync(self) -> imaplib.IMAP4_SSL | imaplib.IMAP4:
        conn: imaplib.IMAP4_SSL | imaplib.IMAP4
        if self._config.use_ssl:
            conn = imaplib.IMAP4_SSL(
                self._config.host,
                self._config.port,
                ssl_context=build_tls_context(self._config.tls_reject_unauthorized),
                timeout=self._timeout,
            )
        else:
            conn = imaplib.IMAP4(self._config.host, self._config.port, timeout=self._timeout)
        try:
            conn.login(self._config.username, self._config.password.get_secret_value())
        except Exception:
            conn.shutdown()
            raise
        return conn

    async def disconnect(self) -> None:
        """Close mailbox and logout."""
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await asyncio.to_thread(self._disconnect_sync, conn)
            logger.info("imap_disconnected", host=self._config.host)

    @staticmethod
    def _disconnect_sync(conn: imaplib.IMAP4) -> None:
        try:
            conn.close()
        except (imaplib.IMAP4.error, OSError):
            pass
        try:
            conn.logout()
        except (imaplib.IMAP4.error, OSError):
            pass

    async def is_connected(self) -> bool:
        """Check connection liveness with a NOOP command."""
        if self._conn is None:
            return False
        try:
            status, _ = await asyncio.to_thread(self._conn.noop)
            return status == "OK"
        except (imaplib.IMAP4.error, OSError):
            return False

    # ------------------------------------------------------------------
    # Mailbox operations
    # ------------------------------------------------------------------

    async def select_mailbox(self, name: str, *, readonly: bool = False) -> int:
        """Select *name*; returns the number of messages it holds."""
        conn = self._require_conn()
        mailbox = imap_quote(name) if " " in name else name
        status, data = await asyncio.to_thread(conn.select, mailbox, readonly)
        if status != "OK":
            raise MailboxError(f"cannot open mailbox {name!r}: {_describe(data)}")
        try:
            return int(data[0]) if data and data[0] else 0
        except ValueError:
            return 0

    async def search(self, criteria: Sequence[str], *, literal: bytes | None = None) -> list[str]:
        """UID SEARCH with the given criteria tokens; returns UIDs in server order.

        When *literal* is given it is sent as the final (UTF-8) search key.
        """
        conn = self._require_conn()
        status, data = await asyncio.to_thread(self._search_sync, conn, list(criteria), literal)
        if status != "OK":
            raise SearchError(f"search {' '.join(criteria)} failed: {_describe(data)}")
        if not data or not data[0]:
            return []
        return [uid.decode() for uid in data[0].split()]

    @staticmethod
    def _search_sync(conn: imaplib.IMAP4, criteria: list[str], literal: bytes | None):
        if literal is None:
            return conn.uid("SEARCH", None, *criteria)
        conn.literal = literal
        return conn.uid("SEARCH", "CHARSET", "UTF-8", *criteria)

    async def fetch(self, uids: Sequence[str], *, mark_seen: bool = False) -> list[FetchedEmail]:
        """Fetch full RFC 822 bodies for *uids*, in the given order.

        ``BODY.PEEK[]`` leaves ``\\Seen`` unset; ``RFC822`` sets it.  A UID the
        server refuses comes back with ``error`` set instead of failing the
        batch.  When peeking, a session lost partway leaves every message
        unseen for the next cycle.
        """
        conn = self._require_conn()
        item = "(RFC822)" if mark_seen else "(BODY.PEEK[])"
        return await asyncio.to_thread(self._fetch_sync, conn, list(uids), item)

    @staticmethod
    def _fetch_sync(conn: imaplib.IMAP4, uids: list[str], item: str) -> list[FetchedEmail]:
        results: list[FetchedEmail] = []
        for uid in uids:
            status, msg_data = conn.uid("FETCH", uid, item)
            if status != "OK":
                reason = f"fetch of uid {uid} failed: {_describe(msg_data)}"
                logger.warning("imap_fetch_refused", uid=uid, reason=reason)
                results.append(FetchedEmail(uid=uid, raw_bytes=b"", error=reason))
                continue

            raw_bytes = _first_literal(msg_data)
            if raw_bytes is None:
                # Expunged between SEARCH and FETCH.
                logger.warning("imap_fetch_empty", uid=uid)
                continue
            results.append(FetchedEmail(uid=uid, raw_bytes=raw_bytes))

        logger.debug("imap_fetch_complete", requested=len(uids), fetched=len(results))
        return results

    async def mark_seen(self, uids: Sequence[str]) -> None:
        """Set ``\\Seen`` on *uids* with a single ``UID STORE``."""
        if not uids:
            return
        conn = self._require_conn()
        uid_set = ",".join(uids)
        status, data = await asyncio.to_thread(conn.uid, "STORE", uid_set, "+FLAGS", "(\\Seen)")
        if status != "OK":
            raise FlagError(f"store \\Seen on {uid_set} failed: {_describe(data)}")

    def _require_conn(self) -> imaplib.IMAP4:
        if self._conn is None:
            raise imaplib.IMAP4.abort("not connected")
        return self._conn


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _first_literal(msg_data: list) -> bytes | None:
    for part in msg_data or ():
        if isinstance(part, tuple) and len(part) > 1 and isinstance(part[1], bytes):
            return part[1]
    return None


def _describe(data: list | None) -> str:
    if not data:
        return "no response"
    first = data[0]
    if isinstance(first, bytes):
        return first.decode(errors="replace")
    return str(first)
