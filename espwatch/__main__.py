"""Entry point for the watcher.

Usage::

    python -m espwatch
"""

from __future__ import annotations

import asyncio

from .config import ServiceConfig
from .logging import setup_logging
from .service import SERVICE_NAME, EspwatchService


def main() -> None:
    config = ServiceConfig()
    setup_logging(json=config.log_json, level=config.log_level, service=SERVICE_NAME)
    service = EspwatchService(config)
    asyncio.run(service.run())


if __name__ == "__main__":
    main()
