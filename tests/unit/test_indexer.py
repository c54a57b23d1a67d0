"""Unit tests for sitecache.indexer."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock

import aiosqlite
import pytest

from sitecache.errors import DepthExceededError, FetchError
from sitecache.hashing import url_key
from sitecache.indexer import UrlIndexer
from sitecache.models.sitemap import PageDescriptor

if TYPE_CHECKING:
    from sitecache.store import ContentStore

SITEMAP = "https://www.example.com/sitemap.xml"
URLS = [f"https://www.example.com/page-{i}" for i in range(5)]


@pytest.fixture()
def resolver() -> AsyncMock:
    resolver = AsyncMock()
    resolver.resolve.return_value = [PageDescriptor(loc=url, priority=0.5) for url in URLS]
    return resolver


@pytest.fixture()
def indexer(store: ContentStore, resolver: AsyncMock) -> UrlIndexer:
    return UrlIndexer(store, resolver)


class TestIndexSitemap:
    async def test_indexes_up_to_max_urls_in_order(
        self, indexer: UrlIndexer, store: ContentStore
    ) -> None:
        result = await indexer.index_sitemap(SITEMAP, max_urls=3, batch_size=2)

        assert result.success is True
        assert result.domain == "example.com"
        assert result.total_urls == 3
        assert result.indexed_urls == 3
        assert result.errors == []

        pages = await store.list_pages("example.com")
        assert [page.url for page in pages] == URLS[:3]
        assert pages[0].display_name == "Page 0"
        assert pages[0].priority == 0.5
        assert pages[0].processed is False

    async def test_writes_meta_and_completed_status(
        self, indexer: UrlIndexer, store: ContentStore
    ) -> None:
        await indexer.index_sitemap(SITEMAP, max_urls=4, batch_size=3)

        meta = await store.get_sitemap_meta("example.com")
        assert meta is not None
        assert meta.status == "completed"
        assert meta.total_urls == 4
        assert meta.processed_urls == 4
        assert meta.sitemap_url == SITEMAP

        status = await store.get_status("example.com")
        assert status is not None
        assert status.status == "completed"
        assert status.progress.total == 4
        assert status.progress.completed == 4
        assert status.completed_at is not None

    async def test_status_written_after_each_batch(
        self, indexer: UrlIndexer, store: ContentStore
    ) -> None:
        seen: list[str] = []
        original = store.put_status

        async def recording_put_status(status):
            seen.append(f"{status.status}:{status.progress.completed}")
            await original(status)

        store.put_status = recording_put_status  # type: ignore[method-assign]
        await indexer.index_sitemap(SITEMAP, max_urls=5, batch_size=2)

        assert seen == [
            "parsing:0",
            "indexing:0",
            "indexing:2",
            "indexing:4",
            "indexing:5",
            "completed:5",
        ]

    async def test_skip_existing(self, indexer: UrlIndexer) -> None:
        await indexer.index_sitemap(SITEMAP, max_urls=2)
        again = await indexer.index_sitemap(SITEMAP, max_urls=3)

        assert again.skipped_urls == 2
        assert again.indexed_urls == 1

    async def test_without_skip_existing_reupserts(
        self, indexer: UrlIndexer, store: ContentStore
    ) -> None:
        await indexer.index_sitemap(SITEMAP, max_urls=2)
        again = await indexer.index_sitemap(SITEMAP, max_urls=2, skip_existing=False)

        assert again.indexed_urls == 2
        assert again.skipped_urls == 0
        assert await store.get_url_count("example.com") == 2

    async def test_same_sitemap_twice_is_idempotent(
        self, indexer: UrlIndexer, store: ContentStore
    ) -> None:
        first = await indexer.index_sitemap(SITEMAP)
        size = await store.get_url_count("example.com")
        again = await indexer.index_sitemap(SITEMAP)

        assert first.indexed_urls == len(URLS)
        assert again.indexed_urls == 0
        assert again.skipped_urls == again.total_urls == len(URLS)
        assert await store.get_url_count("example.com") == size

    async def test_repeated_urls_indexed_once(
        self, indexer: UrlIndexer, resolver: AsyncMock, store: ContentStore
    ) -> None:
        resolver.resolve.return_value = [
            PageDescriptor(loc=URLS[0]),
            PageDescriptor(loc=URLS[1]),
            PageDescriptor(loc=URLS[0]),
            PageDescriptor(loc=URLS[2]),
        ]
        result = await indexer.index_sitemap(SITEMAP, max_urls=3)

        assert result.total_urls == 3
        assert result.indexed_urls == 3
        assert result.skipped_urls == 1
        pages = await store.list_pages("example.com")
        assert [page.url for page in pages] == URLS[:3]

    async def test_resolution_failure_is_reported(
        self, indexer: UrlIndexer, resolver: AsyncMock, store: ContentStore
    ) -> None:
        resolver.resolve.side_effect = DepthExceededError("Maximum sitemap depth 3 reached")
        result = await indexer.index_sitemap(SITEMAP)

        assert result.success is False
        assert result.errors == ["Maximum sitemap depth 3 reached"]
        status = await store.get_status("example.com")
        assert status is not None
        assert status.status == "error"
        assert status.error == "Maximum sitemap depth 3 reached"

    async def test_failed_run_overwrites_meta(
        self, indexer: UrlIndexer, resolver: AsyncMock, store: ContentStore
    ) -> None:
        await indexer.index_sitemap(SITEMAP, max_urls=2)
        resolver.resolve.side_effect = FetchError("HTTP 503 fetching sitemap")
        result = await indexer.index_sitemap(SITEMAP)

        assert result.success is False
        meta = await store.get_sitemap_meta("example.com")
        assert meta is not None
        assert meta.status == "failed"
        assert meta.processed_urls == 0

    async def test_failure_before_any_meta_creates_failed_meta(
        self, indexer: UrlIndexer, resolver: AsyncMock, store: ContentStore
    ) -> None:
        resolver.resolve.side_effect = FetchError("HTTP 404 fetching sitemap")
        await indexer.index_sitemap(SITEMAP)

        meta = await store.get_sitemap_meta("example.com")
        assert meta is not None
        assert meta.status == "failed"
        assert meta.sitemap_url == SITEMAP
        assert meta.total_urls == 0

    async def test_per_url_failure_does_not_abort(
        self, indexer: UrlIndexer, store: ContentStore
    ) -> None:
        original = store.index_page
        doomed = url_key(URLS[1])

        async def flaky_index_page(record):
            if record.key == doomed:
                raise aiosqlite.OperationalError("disk I/O error")
            await original(record)

        store.index_page = flaky_index_page  # type: ignore[method-assign]
        result = await indexer.index_sitemap(SITEMAP, max_urls=3)

        assert result.success is True
        assert result.indexed_urls == 2
        assert len(result.errors) == 1
        assert URLS[1] in result.errors[0]


class TestAutoDiscover:
    async def test_uses_discovered_descriptors(
        self, indexer: UrlIndexer, resolver: AsyncMock
    ) -> None:
        resolver.discover.return_value = (SITEMAP, [PageDescriptor(loc=URLS[0])])
        result = await indexer.auto_discover_and_index("example.com")

        assert result.success is True
        assert result.indexed_urls == 1
        resolver.resolve.assert_not_awaited()

    async def test_nothing_found(self, indexer: UrlIndexer, resolver: AsyncMock) -> None:
        resolver.discover.side_effect = FetchError("no sitemap", recoverable=False)
        result = await indexer.auto_discover_and_index("example.com")

        assert result.success is False
        assert result.domain == "example.com"
        assert result.errors == ["Could not find or parse sitemap"]


class TestReindexDomain:
    async def test_requires_metadata(self, indexer: UrlIndexer) -> None:
        result = await indexer.reindex_domain("example.com")
        assert result.success is False
        assert result.errors == ["No existing sitemap metadata found"]

    async def test_purges_then_reindexes(
        self, indexer: UrlIndexer, resolver: AsyncMock, store: ContentStore, make_content
    ) -> None:
        await indexer.index_sitemap(SITEMAP, max_urls=5)
        key = url_key(URLS[0])
        await store.put_content(key, make_content(URLS[0]))
        resolver.resolve.return_value = [PageDescriptor(loc=URLS[0])]

        result = await indexer.reindex_domain("example.com")

        assert result.success is True
        assert result.indexed_urls == 1
        assert await store.get_url_count("example.com") == 1
        assert await store.get_content(key) is None
        resolver.resolve.assert_awaited_with(SITEMAP)


class TestIndexingStats:
    async def test_stats(self, indexer: UrlIndexer) -> None:
        await indexer.index_sitemap(SITEMAP, max_urls=2)
        stats = await indexer.get_indexing_stats("example.com")

        assert stats["url_count"] == 2
        assert stats["metadata"]["status"] == "completed"
        assert stats["status"]["status"] == "completed"

    async def test_unknown_domain(self, indexer: UrlIndexer) -> None:
        stats = await indexer.get_indexing_stats("nowhere.com")
        assert stats == {"metadata": None, "status": None, "url_count": 0}
