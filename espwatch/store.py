"""Message store — the persistence port and its Elasticsearch adapter."""

from __future__ import annotations

import abc
from typing import Any

import structlog
from elasticsearch import AsyncElasticsearch, BadRequestError, ConflictError, NotFoundError

from .config import ElasticsearchConfig
from .models import MailMessage, record_id

logger = structlog.get_logger()

EMAIL_INDEX_MAPPINGS: dict[str, Any] = {
    "properties": {
        "id": {"type": "keyword"},
        "messageId": {"type": "keyword"},
        "sender": {"type": "text", "fields": {"raw": {"type": "keyword"}}},
        "subject": {"type": "text", "fields": {"raw": {"type": "keyword"}}},
        "receivedAt": {"type": "date"},
        # Kept verbatim for re-deriving chain/ESP later; not searchable.
        "rawHeaders": {"type": "object", "enabled": False},
        "receivingChain": {"type": "keyword"},
        "espType": {"type": "keyword"},
        "espDetails": {"type": "keyword"},
        "processed": {"type": "boolean"},
    }
}


class MessageStore(abc.ABC):
    """Persistence port consumed by the fetcher and the read API."""

    @abc.abstractmethod
    async def exists(self, message_id: str) -> bool:
        """Return True if a record with *message_id* is already stored."""

    @abc.abstractmethod
    async def insert(self, message: MailMessage) -> bool:
        """Persist *message*.

        Returns False, without writing, when a record with the same
        ``message_id`` already exists.
        """

    @abc.abstractmethod
    async def find_by_message_id(self, message_id: str) -> MailMessage | None: ...

    @abc.abstractmethod
    async def find_by_id(self, doc_id: str) -> MailMessage | None: ...

    @abc.abstractmethod
    async def list_all(self) -> list[MailMessage]:
        """All records, newest ``received_at`` first."""

    async def find_latest(self) -> MailMessage | None:
        messages = await self.list_all()
        return messages[0] if messages else None

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None


class ElasticsearchMessageStore(MessageStore):
    """Stores one document per message, keyed by the hashed ``Message-ID``.

    Documents are created with ``op_type="create"``, so Elasticsearch itself
    rejects a second record for the same message id.
    """

    def __init__(
        self,
        config: ElasticsearchConfig,
        client: AsyncElasticsearch | None = None,
    ) -> None:
        self._config = config
        self._client = client or AsyncElasticsearch(
            hosts=[config.url],
            request_timeout=config.request_timeout,
        )

    @property
    def client(self) -> AsyncElasticsearch:
        return self._client

    async def ensure_index(self) -> None:
        """Create the index with its mapping if it does not exist yet."""
        if await self._client.indices.exists(index=self._config.index):
            return
        try:
            await self._client.indices.create(
                index=self._config.index,
                mappings=EMAIL_INDEX_MAPPINGS,
            )
            logger.info("email_index_created", index=self._config.index)
        except BadRequestError as exc:
            # Another process created it first.
            if exc.error != "resource_already_exists_exception":
                raise

    async def start(self) -> None:
        await self.ensure_index()

    async def close(self) -> None:
        await self._client.close()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def exists(self, message_id: str) -> bool:
        return bool(await self._client.exists(index=self._config.index, id=record_id(message_id)))

    async def insert(self, message: MailMessage) -> bool:
        try:
            await self._client.index(
                index=self._config.index,
                id=message.id,
                document=message.to_document(),
                op_type="create",
                refresh="wait_for",
            )
        except ConflictError:
            logger.info("email_already_stored", message_id=message.message_id)
            return False
        logger.debug("email_stored", message_id=message.message_id, id=message.id)
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_by_message_id(self, message_id: str) -> MailMessage | None:
        hits = await self._search({"term": {"messageId": message_id}}, size=1)
        return hits[0] if hits else None

    async def find_by_id(self, doc_id: str) -> MailMessage | None:
        try:
            resp = await self._client.get(index=self._config.index, id=doc_id)
        except NotFoundError:
            return None
        return MailMessage.model_validate(resp["_source"])

    async def list_all(self) -> list[MailMessage]:
        return await self._search({"match_all": {}}, size=self._config.list_limit)

    async def find_latest(self) -> MailMessage | None:
        hits = await self._search({"match_all": {}}, size=1)
        return hits[0] if hits else None

    async def _search(self, query: dict[str, Any], *, size: int) -> list[MailMessage]:
        try:
            resp = await self._client.search(
                index=self._config.index,
                query=query,
                sort=[{"receivedAt": {"order": "desc"}}],
                size=size,
            )
        except NotFoundError:
            # Index not created yet: nothing ingested.
            return []

        messages: list[MailMessage] = []
        for hit in resp.get("hits", {}).get("hits", []):
            try:
                messages.append(MailMessage.model_validate(hit["_source"]))
            except ValueError:
                logger.warning("email_document_invalid", id=hit.get("_id"))
        return messages
