"""Unit tests for sitecache.processor."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock

import pytest

from sitecache.errors import CompletionError, ContentMissingError, FetchError
from sitecache.hashing import url_key
from sitecache.models.fetch import FetchResult
from sitecache.processor import CacheAwareProcessor, build_prompt
from sitecache.semantic import LocalSemanticIndex

if TYPE_CHECKING:
    from sitecache.store import ContentStore

URL = "https://example.com/guide"


def _fetcher(text: str = "# Guide\n\nHow to do things.") -> AsyncMock:
    fetcher = AsyncMock()
    fetcher.fetch.return_value = FetchResult(
        success=True,
        url=URL,
        display_name="Guide",
        normalized_text=text,
        length=len(text),
        method_used="direct",
    )
    return fetcher


@pytest.fixture()
def fetcher() -> AsyncMock:
    return _fetcher()


@pytest.fixture()
def processor(store: ContentStore, fetcher: AsyncMock) -> CacheAwareProcessor:
    return CacheAwareProcessor(store, fetcher, lease_poll_seconds=0.01)


class TestBuildPrompt:
    def test_template(self, make_content) -> None:
        content = make_content(URL, text="Line with \"quotes\" and ünïcode", display_name="Guide")
        prompt = build_prompt(content)

        assert prompt.startswith("Page Analysis Request\n\nPage Name: Guide\n\nPage Data:\n")
        data = prompt.split("Page Data:\n", 1)[1].split("\n\nPlease analyze", 1)[0]
        assert json.loads(data) == {"url": URL, "content": content.normalized_text}
        assert "ünïcode" in data
        assert "4. Potential use cases or applications" in prompt


class TestEnsureContent:
    async def test_fetches_once_then_hits_cache(
        self, processor: CacheAwareProcessor, fetcher: AsyncMock, store: ContentStore
    ) -> None:
        first = await processor.ensure_content(URL)
        second = await processor.ensure_content(URL)

        assert fetcher.fetch.await_count == 1
        assert first == second
        assert first.display_name == "Guide"
        assert first.length == len(first.normalized_text)
        assert await store.get_content(url_key(URL)) == first

    async def test_fetch_failure_raises_and_stores_nothing(self, store: ContentStore) -> None:
        fetcher = AsyncMock()
        fetcher.fetch.return_value = FetchResult(success=False, url=URL, error="HTTP 500 fetching x")
        processor = CacheAwareProcessor(store, fetcher)

        with pytest.raises(FetchError, match="HTTP 500"):
            await processor.ensure_content(URL)
        assert await store.get_content(url_key(URL)) is None

    async def test_indexes_semantic_entry(self, store: ContentStore, fetcher: AsyncMock) -> None:
        index = LocalSemanticIndex()
        processor = CacheAwareProcessor(store, fetcher, index)
        await processor.ensure_content(URL)
        assert len(index) == 1

    async def test_semantic_failure_does_not_fail_fetch(
        self, store: ContentStore, fetcher: AsyncMock
    ) -> None:
        index = AsyncMock()
        index.remove.side_effect = KeyError("absent")
        index.index.side_effect = RuntimeError("backend down")
        processor = CacheAwareProcessor(store, fetcher, index)

        content = await processor.ensure_content(URL)
        assert content.url == URL
        index.index.assert_awaited_once()


class TestEnsurePrompt:
    async def test_requires_content(self, processor: CacheAwareProcessor) -> None:
        with pytest.raises(ContentMissingError):
            await processor.ensure_prompt(URL)

    async def test_cached_after_first_build(
        self, processor: CacheAwareProcessor, store: ContentStore
    ) -> None:
        await processor.ensure_content(URL)
        first = await processor.ensure_prompt(URL)
        second = await processor.ensure_prompt(URL)
        assert first == second
        assert (await store.get_prompt(url_key(URL))) == first


class TestEnsureResponse:
    async def test_write_once(self, processor: CacheAwareProcessor) -> None:
        await processor.ensure_content(URL)
        complete = AsyncMock(return_value="first analysis")
        outcome = await processor.ensure_response(URL, complete)
        assert outcome.from_cache is False
        assert outcome.entry.response == "first analysis"

        changed = AsyncMock(return_value="second analysis")
        again = await processor.ensure_response(URL, changed)
        assert again.from_cache is True
        assert again.entry.response == "first analysis"
        changed.assert_not_awaited()

    async def test_prompt_passed_to_completion(self, processor: CacheAwareProcessor) -> None:
        await processor.ensure_content(URL)
        complete = AsyncMock(return_value="analysis")
        outcome = await processor.ensure_response(URL, complete)
        complete.assert_awaited_once_with(outcome.entry.prompt)
        assert outcome.entry.prompt.startswith("Page Analysis Request")

    async def test_missing_content_never_calls_completion(
        self, processor: CacheAwareProcessor
    ) -> None:
        complete = AsyncMock(return_value="analysis")
        with pytest.raises(ContentMissingError):
            await processor.ensure_response(URL, complete)
        complete.assert_not_awaited()

    async def test_failed_completion_is_not_cached(
        self, processor: CacheAwareProcessor, store: ContentStore
    ) -> None:
        await processor.ensure_content(URL)
        with pytest.raises(CompletionError, match="quota"):
            await processor.ensure_response(URL, AsyncMock(side_effect=RuntimeError("quota")))
        assert await store.get_response(url_key(URL)) is None

        outcome = await processor.ensure_response(URL, AsyncMock(return_value="recovered"))
        assert outcome.entry.response == "recovered"

    async def test_lease_released_after_failure(
        self, processor: CacheAwareProcessor, store: ContentStore
    ) -> None:
        await processor.ensure_content(URL)
        with pytest.raises(CompletionError):
            await processor.ensure_response(URL, AsyncMock(side_effect=CompletionError("down")))
        assert await store.acquire_lease(url_key(URL)) is not None

    async def test_concurrent_callers_complete_once(self, processor: CacheAwareProcessor) -> None:
        await processor.ensure_content(URL)
        calls = 0

        async def slow_complete(prompt: str) -> str:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.05)
            return "analysis"

        outcomes = await asyncio.gather(
            *(processor.ensure_response(URL, slow_complete) for _ in range(3))
        )
        assert calls == 1
        assert {outcome.entry.response for outcome in outcomes} == {"analysis"}
        assert sum(not outcome.from_cache for outcome in outcomes) == 1


class TestProcessUrl:
    async def test_success_reports_timing_and_cache(self, processor: CacheAwareProcessor) -> None:
        await processor.ensure_content(URL)
        complete = AsyncMock(return_value="analysis")

        first = await processor.process_url(URL, complete)
        second = await processor.process_url(URL, complete)

        assert first.success is True
        assert first.from_cache is False
        assert first.response == "analysis"
        assert first.processing_ms >= 0
        assert second.from_cache is True

    async def test_failure_is_a_result_not_an_exception(
        self, processor: CacheAwareProcessor
    ) -> None:
        result = await processor.process_url(URL, AsyncMock(return_value="unused"))
        assert result.success is False
        assert result.error is not None
        assert "not found in cache" in result.error


class TestMaintenance:
    async def test_clear_keeps_content(
        self, processor: CacheAwareProcessor, store: ContentStore
    ) -> None:
        await processor.ensure_content(URL)
        await processor.ensure_response(URL, AsyncMock(return_value="analysis"))

        await processor.clear(URL)

        key = url_key(URL)
        assert await store.get_prompt(key) is None
        assert await store.get_response(key) is None
        assert await store.get_content(key) is not None

    async def test_response_cache_stats(self, processor: CacheAwareProcessor) -> None:
        await processor.ensure_content(URL)
        await processor.ensure_response(URL, AsyncMock(return_value="analysis"))

        stats = await processor.response_cache_stats([URL, "https://example.com/other"])
        assert stats == {"total": 2, "cached": 1, "uncached": 1}
