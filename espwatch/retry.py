"""Tenacity reconnect backoff driven by PollConfig."""

from __future__ import annotations

from collections.abc import Callable

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import PollConfig
from .errors import ConnectError, ConnectTimeout

logger = structlog.get_logger()


def _log_backoff(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "imap_reconnect_scheduled",
        attempt=retry_state.attempt_number,
        wait_seconds=round(retry_state.next_action.sleep, 3) if retry_state.next_action else 0,
        error=str(exc),
    )


def with_reconnect_backoff(
    config: PollConfig,
    *,
    retryable_exceptions: tuple[type[BaseException], ...] = (ConnectError, ConnectTimeout),
) -> Callable:
    """Return a tenacity retry decorator for IMAP connect attempts.

    At most ``max_reconnect_attempts`` attempts are made, waiting
    exponentially between them from ``reconnect_delay_seconds`` up to
    ``max_reconnect_delay_seconds``.  The last error is re-raised.

    Usage::

        @with_reconnect_backoff(config.poll)
        async def attempt() -> None: ...
    """
    return retry(
        stop=stop_after_attempt(config.max_reconnect_attempts),
        wait=wait_exponential(
            multiplier=config.reconnect_delay_seconds,
            exp_base=config.reconnect_multiplier,
            min=config.reconnect_delay_seconds,
            max=max(config.max_reconnect_delay_seconds, config.reconnect_delay_seconds),
        ),
        retry=retry_if_exception_type(retryable_exceptions),
        before_sleep=_log_backoff,
        reraise=True,
    )
