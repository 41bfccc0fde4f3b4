"""ConnectionManager — owns the single IMAP session.

``ensure_connected()`` is single-flight: overlapping callers share one
connect task instead of racing to open two sessions.  Connect attempts are
retried with exponential backoff; once ``max_reconnect_attempts`` attempts
fail, the attempt counter is reset and the error is raised so the next
attempt only happens on the next scheduler tick.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

from .config import ImapConfig, PollConfig
from .errors import ConnectError, ConnectTimeout, EspwatchError
from .imap_client import AsyncImapClient
from .models import ConnectionState
from .retry import with_reconnect_backoff

logger = structlog.get_logger()

ClientFactory = Callable[[], AsyncImapClient]


class ConnectionManager:
    """State machine around one :class:`AsyncImapClient`.

    ``disconnected -> connecting -> authenticated``; a failed attempt goes
    back to ``disconnected``; ``mark_lost()`` and ``close()`` pass through
    ``closing`` on the way down.  At most one client handle is alive at a
    time.
    """

    def __init__(
        self,
        imap_config: ImapConfig,
        poll_config: PollConfig,
        *,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._imap_config = imap_config
        self._poll_config = poll_config
        self._client_factory = client_factory or (
            lambda: AsyncImapClient(imap_config, timeout=poll_config.connect_timeout_seconds)
        )

        self._client: AsyncImapClient | None = None
        self._state = ConnectionState.DISCONNECTED
        self._reconnect_attempts = 0
        self._inflight: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Public properties (used by the fetcher and health checks)
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.AUTHENTICATED and self._client is not None

    @property
    def client(self) -> AsyncImapClient:
        if not self.is_connected:
            raise ConnectError("IMAP session is not authenticated")
        assert self._client is not None
        return self._client

    # ------------------------------------------------------------------
    # Connect
    # ------------------------------------------------------------------

    async def ensure_connected(self) -> AsyncImapClient:
        """Return an authenticated client, connecting if necessary.

        An authenticated session is checked with NOOP before it is reused;
        a dead one is torn down and replaced.  Concurrent callers all await
        the same check-or-connect task.  Raises :class:`ConnectTimeout` or
        :class:`ConnectError` once the in-cycle retry budget is spent.
        """
        if self._inflight is None:
            self._inflight = asyncio.create_task(self._establish())
            self._inflight.add_done_callback(self._clear_inflight)

        # shield: a cancelled waiter must not cancel the shared attempt
        await asyncio.shield(self._inflight)
        return self.client

    def _clear_inflight(self, task: asyncio.Task[None]) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            task.exception()  # consumed here; waiters re-raise it themselves

    async def _establish(self) -> None:
        if await self._session_alive():
            return

        @with_reconnect_backoff(self._poll_config)
        async def _attempt() -> None:
            await self._connect_once()

        try:
            await _attempt()
        except EspwatchError as exc:
            logger.error(
                "imap_reconnect_exhausted",
                attempts=self._reconnect_attempts,
                host=self._imap_config.host,
                error=str(exc),
            )
            # Next attempt waits for the next scheduler tick.
            self._reconnect_attempts = 0
            raise

    async def _session_alive(self) -> bool:
        if not self.is_connected:
            return False
        assert self._client is not None
        if await self._client.is_connected():
            return True
        logger.warning("imap_session_stale", host=self._imap_config.host)
        await self._teardown()
        return False

    async def _connect_once(self) -> None:
        await self._teardown()

        self._state = ConnectionState.CONNECTING
        client = self._client_factory()
        self._client = client
        timeout = self._poll_config.connect_timeout_seconds
        logger.info(
            "imap_connecting",
            host=self._imap_config.host,
            attempt=self._reconnect_attempts + 1,
        )

        try:
            await asyncio.wait_for(client.connect(), timeout=timeout)
        except TimeoutError as exc:
            self._fail_attempt()
            raise ConnectTimeout(
                f"IMAP connection to {self._imap_config.host} timed out after {timeout}s"
            ) from exc
        except Exception as exc:
            self._fail_attempt()
            raise ConnectError(f"IMAP connection to {self._imap_config.host} failed: {exc}") from exc

        self._state = ConnectionState.AUTHENTICATED
        self._reconnect_attempts = 0
        logger.info("imap_authenticated", host=self._imap_config.host)

    def _fail_attempt(self) -> None:
        # The half-open handle is abandoned, never reused.
        self._client = None
        self._state = ConnectionState.DISCONNECTED
        self._reconnect_attempts += 1

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def mark_lost(self, cause: BaseException) -> None:
        """Record that the session dropped (socket closed, IMAP abort)."""
        if self._client is None:
            return
        logger.warning("imap_connection_lost", host=self._imap_config.host, error=str(cause))
        await self._teardown()

    async def close(self) -> None:
        """Cancel any in-flight attempt and log out."""
        if self._inflight is not None:
            self._inflight.cancel()
            try:
                await self._inflight
            except (asyncio.CancelledError, EspwatchError):
                pass
        await self._teardown()

    async def _teardown(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            self._state = ConnectionState.CLOSING
            await client.disconnect()
        self._state = ConnectionState.DISCONNECTED
