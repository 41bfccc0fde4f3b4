"""EspwatchService — wires the pipeline and runs scheduler + read API."""

from __future__ import annotations

import asyncio
import signal
import time

import structlog
import uvicorn

from .api import create_app
from .config import ServiceConfig
from .connection import ConnectionManager
from .fetcher import MessageFetcher
from .models import ServiceStatus
from .scheduler import PollScheduler
from .store import ElasticsearchMessageStore, MessageStore

logger = structlog.get_logger()

SERVICE_NAME = "espwatch"


class EspwatchService:
    """Owns every long-lived component of the watcher process.

    ``run()`` starts the following concurrently via
    :class:`asyncio.TaskGroup`:

    * the poll scheduler (IMAP connect + fetch cycles)
    * the FastAPI read API (stored emails, health, readiness)
    """

    def __init__(
        self,
        config: ServiceConfig,
        *,
        store: MessageStore | None = None,
        connection: ConnectionManager | None = None,
    ) -> None:
        self.config = config
        self.status: ServiceStatus = ServiceStatus.STARTING
        self.start_time: float = time.monotonic()

        self.store = store or ElasticsearchMessageStore(config.elasticsearch)
        self.connection = connection or ConnectionManager(config.imap, config.poll)
        self.fetcher = MessageFetcher(config.imap, config.poll, self.store, self.connection)
        self.scheduler = PollScheduler(config.poll, self.connection, self.fetcher)
        self._shutdown_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @property
    def effective_status(self) -> ServiceStatus:
        """RUNNING turns into DEGRADED while the latest cycle is failing."""
        if self.status is ServiceStatus.RUNNING and self.scheduler.last_error is not None:
            return ServiceStatus.DEGRADED
        return self.status

    async def health_check(self) -> dict[str, object]:
        scheduler = self.scheduler
        last_report = scheduler.last_report
        return {
            "imap_state": self.connection.state.value,
            "imap_host": self.config.imap.host,
            "imap_mailbox": self.config.imap.mailbox,
            "reconnect_attempts": self.connection.reconnect_attempts,
            "last_poll_time": (
                scheduler.last_poll_time.isoformat() if scheduler.last_poll_time else None
            ),
            "last_error": scheduler.last_error,
            "cycles_completed": scheduler.cycles_completed,
            "cycles_failed": scheduler.cycles_failed,
            "ticks_skipped": scheduler.ticks_skipped,
            "last_cycle": (
                {
                    "matched": last_report.matched,
                    "stored": last_report.stored,
                    "duplicates": last_report.duplicates,
                    "failed": last_report.failed,
                }
                if last_report
                else None
            ),
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def run(self) -> None:
        """Start all subsystems and run until SIGTERM / SIGINT."""
        self.start_time = time.monotonic()
        self._install_signal_handlers()
        logger.info("espwatch_starting", imap_host=self.config.imap.host)

        await self.store.start()
        self.status = ServiceStatus.RUNNING

        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(self.scheduler.run(self._shutdown_event))
                tg.create_task(self._run_api_server())
        except* Exception:
            logger.exception("espwatch_task_group_error")
        finally:
            self.status = ServiceStatus.STOPPING
            await self.connection.close()
            await self.store.close()
            self.status = ServiceStatus.STOPPED
            logger.info("espwatch_stopped")

    async def _run_api_server(self) -> None:
        """Serve the read API until the shutdown event fires."""
        app = create_app(self)
        config = uvicorn.Config(
            app,
            host=self.config.host,
            port=self.config.port,
            log_level="warning",
        )
        server = uvicorn.Server(config)

        # Run until the shutdown event fires
        serve_task = asyncio.create_task(server.serve())
        await self._shutdown_event.wait()
        server.should_exit = True
        await serve_task

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()

        def _handle(sig: signal.Signals) -> None:
            logger.info("shutdown_signal_received", signal=sig.name)
            self._shutdown_event.set()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, _handle, sig)
