"""Data models for the ingestion pipeline."""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

HeaderValue = str | list[str]


def record_id(message_id: str) -> str:
    """Deterministic store document id for a ``Message-ID``."""
    return hashlib.sha256(message_id.encode("utf-8")).hexdigest()


class ConnectionState(str, Enum):
    """Lifecycle of the single IMAP session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    CLOSING = "closing"


class ServiceStatus(str, Enum):
    """Runtime status of the watcher process."""

    STARTING = "starting"
    RUNNING = "running"
    DEGRADED = "degraded"
    STOPPING = "stopping"
    STOPPED = "stopped"


class MessageOutcome(str, Enum):
    STORED = "stored"
    DUPLICATE = "duplicate"
    FAILED = "failed"


class MailMessage(BaseModel):
    """A message ingested from the watched mailbox.

    Field aliases keep the camelCase document shape consumed by the
    dashboard; Python code uses the snake_case names.  Records are
    created once and never mutated.
    """

    model_config = {"populate_by_name": True, "frozen": True}

    id: str = Field(description="Store document id (SHA-256 of message_id)")
    message_id: str = Field(alias="messageId", description="Message-ID header value")
    sender: str = Field(description="Display text of the From header")
    subject: str = Field(default="", description="Subject header")
    received_at: datetime = Field(
        alias="receivedAt",
        default_factory=lambda: datetime.now(UTC),
        description="Ingestion timestamp (UTC), not the Date header",
    )
    raw_headers: dict[str, HeaderValue] = Field(
        alias="rawHeaders",
        default_factory=dict,
        description="Lower-cased header name to one or many raw values",
    )
    receiving_chain: list[str] = Field(
        alias="receivingChain",
        default_factory=list,
        description="Relay hostnames, oldest hop first",
    )
    esp_type: str = Field(alias="espType", description="Sending domain or 'unknown'")
    esp_details: str = Field(alias="espDetails", description="Sender address used for classification")
    processed: bool = Field(default=True)

    @model_validator(mode="before")
    @classmethod
    def _derive_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("id"):
            message_id = data.get("message_id", data.get("messageId"))
            if isinstance(message_id, str):
                data = {**data, "id": record_id(message_id)}
        return data

    def to_document(self) -> dict[str, Any]:
        """JSON-ready document in the stored (camelCase) shape."""
        return self.model_dump(mode="json", by_alias=True)


class EspAnalysis(BaseModel):
    """Sending-provider classification for one message."""

    type: str
    details: str


class MessageResult(BaseModel):
    """Outcome of the per-message pipeline for one fetched message."""

    uid: str
    outcome: MessageOutcome
    message_id: str | None = None
    error: str | None = None
    # Left unseen on the server so the next cycle fetches it again.
    retry: bool = False


class CycleReport(BaseModel):
    """Summary of one search -> fetch -> process cycle."""

    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    matched: int = 0
    results: list[MessageResult] = Field(default_factory=list)

    def _count(self, outcome: MessageOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def stored(self) -> int:
        return self._count(MessageOutcome.STORED)

    @property
    def duplicates(self) -> int:
        return self._count(MessageOutcome.DUPLICATE)

    @property
    def failed(self) -> int:
        return self._count(MessageOutcome.FAILED)


class HealthStatus(BaseModel):
    """Response model for the /health endpoint."""

    service_name: str = Field(description="Name of the service")
    status: ServiceStatus = Field(description="Current service status")
    uptime_seconds: float = Field(description="Seconds since the service started")
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="IMAP connection state, last poll time and ingestion counters",
    )
