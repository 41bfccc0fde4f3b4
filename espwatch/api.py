"""FastAPI read API over stored emails, plus health and readiness probes.

The API only reads from the store; ingestion failures never surface here,
the listing simply reflects what has been stored so far.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .models import HealthStatus, ServiceStatus

if TYPE_CHECKING:
    from .service import EspwatchService


def create_app(service: EspwatchService) -> FastAPI:
    """Build the FastAPI app bound to a running :class:`EspwatchService`."""
    app = FastAPI(title="espwatch", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=service.config.cors_origins,
        allow_methods=["GET", "HEAD", "OPTIONS"],
        allow_headers=["*"],
        allow_credentials=True,
    )

    @app.get("/health")
    async def health() -> JSONResponse:
        current = service.effective_status
        body = HealthStatus(
            service_name="espwatch",
            status=current,
            uptime_seconds=time.monotonic() - service.start_time,
            details=await service.health_check(),
        )
        code = 200 if current in (ServiceStatus.RUNNING, ServiceStatus.STARTING) else 503
        return JSONResponse(content=body.model_dump(mode="json"), status_code=code)

    @app.get("/ready")
    async def ready() -> JSONResponse:
        is_ready = service.status == ServiceStatus.RUNNING
        return JSONResponse(
            content={"ready": is_ready},
            status_code=200 if is_ready else 503,
        )

    @app.get("/emails")
    async def list_emails() -> list[dict[str, Any]]:
        """All stored emails, newest first."""
        return [message.to_document() for message in await service.store.list_all()]

    @app.get("/emails/latest")
    async def latest_email() -> dict[str, Any] | None:
        message = await service.store.find_latest()
        return message.to_document() if message else None

    # Declared before /emails/{email_id} so "config" is not taken as an id.
    @app.get("/emails/config/email-address")
    async def email_address() -> dict[str, str]:
        """Where to send test mail, for the dashboard's instructions panel."""
        return {
            "emailAddress": service.config.imap.username,
            "subject": service.config.poll.subject_filter,
        }

    @app.get("/emails/{email_id}")
    async def get_email(email_id: str) -> dict[str, Any]:
        message = await service.store.find_by_id(email_id)
        if message is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Email not found")
        return message.to_document()

    return app
