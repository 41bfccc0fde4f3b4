"""espwatch configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
"""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings


class ImapConfig(BaseSettings):
    """IMAP server connection settings."""

    model_config = {"env_prefix": "IMAP_"}

    host: str = Field(default="imap.gmail.com", description="IMAP server hostname")
    port: int = Field(default=993, description="IMAP server port")
    use_ssl: bool = Field(default=True, description="Use SSL/TLS connection")
    tls_reject_unauthorized: bool = Field(
        default=False,
        description="Verify the server certificate and hostname",
    )
    username: str = Field(description="IMAP login username (the watched address)")
    password: SecretStr = Field(description="IMAP login password or app password")
    mailbox: str = Field(default="INBOX", description="IMAP mailbox/folder to poll")


class PollConfig(BaseSettings):
    """Polling schedule, search filter and reconnect policy.

    The whole reconnect burst runs inside one cycle and holds the cycle
    lock, so ticks that fire meanwhile are skipped.  With the defaults a
    burst against an unreachable server lasts up to
    :attr:`max_reconnect_burst_seconds` (600 s, about 20 ticks); lower
    ``max_reconnect_attempts`` or the delays to keep it within one interval.
    """

    model_config = {"env_prefix": "POLL_"}

    interval_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Seconds between scheduler ticks",
    )
    subject_filter: str = Field(
        default="EMAIL_ANALYSIS_TEST",
        description="Only unseen messages whose subject contains this text are fetched",
    )
    max_reconnect_attempts: int = Field(
        default=5,
        ge=1,
        description=(
            "Connect attempts per cycle before deferring to the next tick; "
            "later ticks are skipped while the attempts run"
        ),
    )
    reconnect_delay_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Initial backoff wait between connect attempts (grows by reconnect_multiplier)",
    )
    max_reconnect_delay_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Upper bound for the exponential connect backoff",
    )
    reconnect_multiplier: float = Field(
        default=2.0,
        ge=1,
        description="Exponential backoff multiplier",
    )
    connect_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Budget for connect + login before the attempt is abandoned",
    )

    @property
    def max_reconnect_burst_seconds(self) -> float:
        """Worst-case time one failing ``ensure_connected()`` can take.

        Every attempt times out and every backoff wait is taken in full.
        """
        cap = max(self.max_reconnect_delay_seconds, self.reconnect_delay_seconds)
        waits = sum(
            min(self.reconnect_delay_seconds * self.reconnect_multiplier**n, cap)
            for n in range(self.max_reconnect_attempts - 1)
        )
        return waits + self.max_reconnect_attempts * self.connect_timeout_seconds


class ElasticsearchConfig(BaseSettings):
    """Document store settings."""

    model_config = {"env_prefix": "ELASTICSEARCH_"}

    url: str = Field(default="http://localhost:9200", description="Elasticsearch base URL")
    index: str = Field(default="emails", description="Index holding ingested messages")
    request_timeout: float = Field(default=30.0, description="Per-request timeout in seconds")
    list_limit: int = Field(
        default=1000,
        description="Maximum number of records returned by a listing",
    )


class ServiceConfig(BaseSettings):
    """Root configuration for the espwatch process.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "ESPWATCH_"}

    host: str = Field(default="0.0.0.0", description="Bind address for the read API")
    port: int = Field(default=3000, description="Bind port for the read API")
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"],
        description="Dashboard origins allowed to call the read API",
    )
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(
        default=True,
        description="Use JSON log output (True for prod, False for dev)",
    )

    imap: ImapConfig = Field(default_factory=ImapConfig)
    poll: PollConfig = Field(default_factory=PollConfig)
    elasticsearch: ElasticsearchConfig = Field(default_factory=ElasticsearchConfig)
