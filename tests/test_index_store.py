"""Tests for searchengine.storage.index_store and the database plumbing."""

import asyncio

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from searchengine.exceptions import DatabaseError, StoreContentionError
from searchengine.storage.database import DatabaseManager
from searchengine.storage.models import Keyword, KeywordWebpageRecord, Metadata, UrlRecord
from searchengine.crawler.url_frontier import URLFrontier


async def _count(database, model):
    async with database.session() as session:
        return await session.scalar(select(func.count()).select_from(model))


class TestCreateWebpage:
    async def test_creates_webpage_with_metadata_and_domain(self, index_store):
        webpage = await index_store.create_webpage(
            "https://example.com/", Metadata.create("Example", "An example page"), "example.com"
        )
        assert webpage.id is not None
        assert webpage.guid
        assert webpage.domain.domain == "example.com"
        assert webpage.page_metadata.title == "Example"
        assert await index_store.exists_in_index("https://example.com/")

    async def test_without_metadata(self, index_store):
        webpage = await index_store.create_webpage("https://example.com/", Metadata.create(None, None), "example.com")
        assert webpage.page_metadata is None

    async def test_second_create_returns_none(self, index_store):
        first = await index_store.create_webpage("https://example.com/", None, "example.com")
        second = await index_store.create_webpage("https://example.com/", None, "example.com")
        assert first is not None
        assert second is None

    async def test_concurrent_creates_index_once(self, index_store, database):
        results = await asyncio.gather(*(
            index_store.create_webpage("https://example.com/", None, "example.com") for _ in range(5)
        ))
        assert sum(result is not None for result in results) == 1
        stats = await database.get_stats()
        assert stats["webpages"] == 1
        assert stats["domains"] == 1

    async def test_removes_pending_frontier_entry(self, index_store, database):
        frontier = URLFrontier(database)
        await frontier.enqueue_discovered(["https://example.com/page"])
        assert await _count(database, UrlRecord) == 1

        await index_store.create_webpage("https://example.com/page", None, "example.com")
        assert await _count(database, UrlRecord) == 0


class TestKeywords:
    async def test_get_or_create_keyword_is_idempotent(self, index_store):
        first = await index_store.get_or_create_keyword("widget")
        second = await index_store.get_or_create_keyword("widget")
        assert first.id == second.id

    async def test_concurrent_get_or_create_keyword(self, index_store, database):
        keywords = await asyncio.gather(*(index_store.get_or_create_keyword("widget") for _ in range(20)))
        assert len({keyword.id for keyword in keywords}) == 1
        assert await _count(database, Keyword) == 1

    async def test_keywords_are_case_sensitive(self, index_store, database):
        lower = await index_store.get_or_create_keyword("apple")
        upper = await index_store.get_or_create_keyword("Apple")
        assert lower.id != upper.id
        assert await _count(database, Keyword) == 2


class TestAssociations:
    async def test_upsert_accumulates(self, index_store):
        webpage = await index_store.create_webpage("https://example.com/", None, "example.com")
        keyword = await index_store.get_or_create_keyword("widget")

        await index_store.upsert_association(keyword, webpage, 48)
        await index_store.upsert_association(keyword.id, webpage.id, 14)

        record = await index_store.get_association("widget", webpage.id)
        assert record.score == 62

    async def test_concurrent_upserts_lose_nothing(self, index_store, database):
        webpage = await index_store.create_webpage("https://example.com/", None, "example.com")
        keyword = await index_store.get_or_create_keyword("widget")

        await asyncio.gather(*(index_store.upsert_association(keyword, webpage, 3) for _ in range(25)))

        record = await index_store.get_association("widget", webpage.id)
        assert record.score == 75
        assert await _count(database, KeywordWebpageRecord) == 1

    async def test_zero_delta_writes_nothing(self, index_store, database):
        webpage = await index_store.create_webpage("https://example.com/", None, "example.com")
        keyword = await index_store.get_or_create_keyword("widget")
        await index_store.upsert_association(keyword, webpage, 0)
        assert await _count(database, KeywordWebpageRecord) == 0

    async def test_negative_delta_rejected(self, index_store):
        with pytest.raises(ValueError):
            await index_store.upsert_association(1, 1, -5)

    async def test_concurrent_link_keywords_sum_per_pair(self, index_store, database):
        webpage = await index_store.create_webpage("https://example.com/", None, "example.com")

        written = await asyncio.gather(
            index_store.link_keywords(webpage.id, {"widget": 48, "exampl": 48}),
            index_store.link_keywords(webpage.id, {"widget": 24}),
            index_store.link_keywords(webpage.id, {"widget": 14, "gadget": 0}),
        )

        assert written == [2, 1, 1]
        assert (await index_store.get_association("widget", webpage.id)).score == 86
        assert await index_store.get_association("gadget", webpage.id) is None
        assert await _count(database, Keyword) == 2

    async def test_get_webpages_loads_metadata(self, index_store):
        webpage = await index_store.create_webpage(
            "https://example.com/", Metadata.create("Title", None), "example.com"
        )
        found = await index_store.get_webpages([webpage.id, 999])
        assert list(found) == [webpage.id]
        assert found[webpage.id].page_metadata.title == "Title"


class TestTransactionRetry:
    async def test_conflicts_retry_then_succeed(self, database):
        attempts = []

        async def flaky(session):
            attempts.append(1)
            if len(attempts) < 3:
                raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
            return "done"

        assert await database.transaction(flaky) == "done"
        assert len(attempts) == 3
        assert database.stats["conflicts_retried"] == 2

    async def test_exhausted_retries_raise(self, database):
        attempts = []

        async def always_conflicts(session):
            attempts.append(1)
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

        with pytest.raises(StoreContentionError):
            await database.transaction(always_conflicts)
        assert len(attempts) == database.config.max_retries

    async def test_lock_errors_are_retried(self, database):
        attempts = []

        async def locked_once(session):
            attempts.append(1)
            if len(attempts) == 1:
                raise OperationalError("UPDATE", {}, Exception("database is locked"))
            return "done"

        assert await database.transaction(locked_once) == "done"
        assert len(attempts) == 2

    async def test_other_operational_errors_are_not_retried(self, database):
        attempts = []

        async def broken(session):
            attempts.append(1)
            raise OperationalError("SELECT", {}, Exception("no such table: missing"))

        with pytest.raises(DatabaseError) as excinfo:
            await database.transaction(broken)
        assert not isinstance(excinfo.value, StoreContentionError)
        assert len(attempts) == 1

    async def test_uninitialized_database(self, database_config):
        with pytest.raises(DatabaseError):
            await DatabaseManager(database_config).transaction(lambda session: None)

    async def test_flush(self, database):
        await database.flush()
