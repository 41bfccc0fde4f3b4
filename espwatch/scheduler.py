"""PollScheduler — fixed-interval ticks driving connect + fetch cycles."""

from __future__ import annotations

import asyncio
import contextlib
from datetime import UTC, datetime

import structlog

from .config import PollConfig
from .connection import ConnectionManager
from .errors import EspwatchError
from .fetcher import MessageFetcher
from .models import CycleReport

logger = structlog.get_logger()


class PollScheduler:
    """Fire a tick every ``interval_seconds``; each tick runs one cycle.

    Ticks are not delayed by slow cycles, but a tick that fires while the
    previous cycle is still running is skipped, so there is never more than
    one cycle using the IMAP session.  Failures are logged and the next
    attempt waits for the next tick.
    """

    def __init__(
        self,
        config: PollConfig,
        connection: ConnectionManager,
        fetcher: MessageFetcher,
    ) -> None:
        self._config = config
        self._connection = connection
        self._fetcher = fetcher
        self._cycle_lock = asyncio.Lock()
        self._cycle_tasks: set[asyncio.Task[CycleReport | None]] = set()

        self.last_poll_time: datetime | None = None
        self.last_report: CycleReport | None = None
        self.last_error: str | None = None
        self.cycles_completed: int = 0
        self.cycles_failed: int = 0
        self.ticks_skipped: int = 0

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle_lock.locked()

    async def tick(self) -> CycleReport | None:
        """Run one cycle unless one is already running.

        Returns the cycle's report, or None if the tick was skipped or the
        cycle failed.
        """
        if self._cycle_lock.locked():
            self.ticks_skipped += 1
            logger.warning("poll_cycle_skipped", reason="cycle_in_progress")
            return None

        async with self._cycle_lock:
            self.last_poll_time = datetime.now(UTC)
            try:
                client = await self._connection.ensure_connected()
                report = await self._fetcher.run(client)
            except EspwatchError as exc:
                self._record_failure(exc)
                logger.warning("poll_cycle_failed", error_type=type(exc).__name__, error=str(exc))
                return None
            except Exception as exc:
                self._record_failure(exc)
                logger.exception("poll_cycle_error")
                return None

            self.last_report = report
            self.last_error = None
            self.cycles_completed += 1
            logger.info(
                "poll_cycle_completed",
                matched=report.matched,
                stored=report.stored,
                duplicates=report.duplicates,
                failed=report.failed,
            )
            return report

    def _record_failure(self, exc: BaseException) -> None:
        self.cycles_failed += 1
        self.last_error = f"{type(exc).__name__}: {exc}"

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Tick until *shutdown_event* is set, then let the running cycle drain."""
        logger.info(
            "poll_scheduler_started",
            interval_seconds=self._config.interval_seconds,
            subject_filter=self._config.subject_filter,
        )
        burst = self._config.max_reconnect_burst_seconds
        if burst > self._config.interval_seconds:
            logger.warning(
                "reconnect_burst_exceeds_interval",
                burst_seconds=burst,
                interval_seconds=self._config.interval_seconds,
            )
        try:
            while not shutdown_event.is_set():
                task = asyncio.create_task(self.tick())
                self._cycle_tasks.add(task)
                task.add_done_callback(self._cycle_tasks.discard)

                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(shutdown_event.wait(), timeout=self._config.interval_seconds)
        finally:
            if self._cycle_tasks:
                await asyncio.gather(*self._cycle_tasks, return_exceptions=True)
            logger.info("poll_scheduler_stopped", cycles_completed=self.cycles_completed)
