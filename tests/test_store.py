"""Tests for espwatch.store (Elasticsearch adapter, client mocked)."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from elasticsearch import BadRequestError, ConflictError, NotFoundError

from espwatch.config import ElasticsearchConfig
from espwatch.models import record_id
from espwatch.store import EMAIL_INDEX_MAPPINGS, ElasticsearchMessageStore

from tests.conftest import _make_record


def _api_error(cls, error_type: str):
    body = {"error": {"root_cause": [{"type": error_type}], "type": error_type}}
    return cls(error_type, meta=MagicMock(status=400), body=body)


@pytest.fixture
def es_client() -> MagicMock:
    client = MagicMock()
    client.indices.exists = AsyncMock(return_value=False)
    client.indices.create = AsyncMock()
    client.exists = AsyncMock(return_value=False)
    client.index = AsyncMock()
    client.get = AsyncMock()
    client.search = AsyncMock(return_value={"hits": {"hits": []}})
    client.close = AsyncMock()
    return client


@pytest.fixture
def store(es_config: ElasticsearchConfig, es_client: MagicMock) -> ElasticsearchMessageStore:
    return ElasticsearchMessageStore(es_config, client=es_client)


def _hit(record) -> dict:
    return {"_id": record.id, "_source": record.to_document()}


class TestEnsureIndex:
    @pytest.mark.asyncio
    async def test_creates_missing_index(self, store, es_client):
        await store.start()
        es_client.indices.create.assert_awaited_once_with(
            index="emails-test",
            mappings=EMAIL_INDEX_MAPPINGS,
        )

    @pytest.mark.asyncio
    async def test_existing_index_untouched(self, store, es_client):
        es_client.indices.exists.return_value = True
        await store.ensure_index()
        es_client.indices.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_creation_tolerated(self, store, es_client):
        es_client.indices.create.side_effect = _api_error(
            BadRequestError, "resource_already_exists_exception"
        )
        await store.ensure_index()  # should not raise

    @pytest.mark.asyncio
    async def test_other_bad_requests_raise(self, store, es_client):
        es_client.indices.create.side_effect = _api_error(BadRequestError, "mapper_parsing_exception")
        with pytest.raises(BadRequestError):
            await store.ensure_index()

    def test_raw_headers_not_indexed(self):
        assert EMAIL_INDEX_MAPPINGS["properties"]["rawHeaders"]["enabled"] is False


class TestWrites:
    @pytest.mark.asyncio
    async def test_insert_creates_by_hashed_id(self, store, es_client):
        record = _make_record("<a@example.com>")

        assert await store.insert(record) is True

        es_client.index.assert_awaited_once_with(
            index="emails-test",
            id=record_id("<a@example.com>"),
            document=record.to_document(),
            op_type="create",
            refresh="wait_for",
        )

    @pytest.mark.asyncio
    async def test_insert_conflict_is_duplicate(self, store, es_client):
        es_client.index.side_effect = _api_error(ConflictError, "version_conflict_engine_exception")
        assert await store.insert(_make_record()) is False

    @pytest.mark.asyncio
    async def test_exists_checks_hashed_id(self, store, es_client):
        es_client.exists.return_value = True
        assert await store.exists("<a@example.com>") is True
        es_client.exists.assert_awaited_once_with(index="emails-test", id=record_id("<a@example.com>"))

    @pytest.mark.asyncio
    async def test_close(self, store, es_client):
        await store.close()
        es_client.close.assert_awaited_once()


class TestReads:
    @pytest.mark.asyncio
    async def test_list_all_newest_first(self, store, es_client):
        newer, older = _make_record("<2@x>"), _make_record("<1@x>")
        es_client.search.return_value = {"hits": {"hits": [_hit(newer), _hit(older)]}}

        result = await store.list_all()

        assert [m.message_id for m in result] == ["<2@x>", "<1@x>"]
        kwargs = es_client.search.await_args.kwargs
        assert kwargs["sort"] == [{"receivedAt": {"order": "desc"}}]
        assert kwargs["size"] == 1000

    @pytest.mark.asyncio
    async def test_list_all_without_index(self, store, es_client):
        es_client.search.side_effect = _api_error(NotFoundError, "index_not_found_exception")
        assert await store.list_all() == []

    @pytest.mark.asyncio
    async def test_invalid_documents_skipped(self, store, es_client):
        good = _make_record()
        es_client.search.return_value = {
            "hits": {"hits": [{"_id": "bad", "_source": {"messageId": 7}}, _hit(good)]}
        }
        assert await store.list_all() == [good]

    @pytest.mark.asyncio
    async def test_find_latest(self, store, es_client):
        record = _make_record()
        es_client.search.return_value = {"hits": {"hits": [_hit(record)]}}

        assert await store.find_latest() == record
        assert es_client.search.await_args.kwargs["size"] == 1

    @pytest.mark.asyncio
    async def test_find_latest_empty(self, store):
        assert await store.find_latest() is None

    @pytest.mark.asyncio
    async def test_find_by_message_id(self, store, es_client):
        record = _make_record("<a@example.com>")
        es_client.search.return_value = {"hits": {"hits": [_hit(record)]}}

        assert await store.find_by_message_id("<a@example.com>") == record
        assert es_client.search.await_args.kwargs["query"] == {"term": {"messageId": "<a@example.com>"}}

    @pytest.mark.asyncio
    async def test_find_by_id(self, store, es_client):
        record = _make_record()
        es_client.get.return_value = {"_id": record.id, "_source": record.to_document()}
        assert await store.find_by_id(record.id) == record

    @pytest.mark.asyncio
    async def test_find_by_id_missing(self, store, es_client):
        es_client.get.side_effect = _api_error(NotFoundError, "not_found")
        assert await store.find_by_id("nope") is None
