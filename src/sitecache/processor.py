"""Cache-aware page processor.

Per page key the artifacts move through::

    no content -> content cached -> prompt cached -> response cached

Each ``ensure_*`` call returns the cached artifact when present and computes
and stores it otherwise. A cached response is never recomputed until
``clear`` removes it.

Concurrency: the response check-then-write is guarded by a per-key lease in
the shared store (``lease:{key}``), so concurrent callers, in this process or
another one on the same database, make at most one completion call per key
while the lease holder is alive. If the holder dies, its lease expires after
``store.lease_seconds`` and a waiter takes over. With ``single_flight=False``
two concurrent misses may both call the completion function and the last
write wins.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from sitecache.errors import CompletionError, ContentMissingError, FetchError, SiteCacheError
from sitecache.hashing import url_key
from sitecache.models.pipeline import ProcessResult
from sitecache.models.store import PageContent
from sitecache.semantic import build_semantic_entry

if TYPE_CHECKING:
    from sitecache.models.store import PromptCacheEntry, ResponseCacheEntry
    from sitecache.protocols import CompletionFn, FetchChainProtocol, SemanticIndexProtocol
    from sitecache.store import ContentStore

log = structlog.get_logger()

_PROMPT_TEMPLATE = """Page Analysis Request

Page Name: {display_name}

Page Data:
{page_data}

Please analyze this page content and provide insights about:
1. Main topics and themes
2. Key information and takeaways
3. Content structure and organization
4. Potential use cases or applications"""


def build_prompt(content: PageContent) -> str:
    page_data = json.dumps(
        {"url": content.url, "content": content.normalized_text},
        indent=2,
        ensure_ascii=False,
    )
    return _PROMPT_TEMPLATE.format(display_name=content.display_name, page_data=page_data)


@dataclass
class ResponseOutcome:
    entry: ResponseCacheEntry
    from_cache: bool


class CacheAwareProcessor:
    def __init__(
        self,
        store: ContentStore,
        fetcher: FetchChainProtocol,
        semantic_index: SemanticIndexProtocol | None = None,
        *,
        single_flight: bool = True,
        lease_poll_seconds: float = 0.5,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._semantic_index = semantic_index
        self._single_flight = single_flight
        self._lease_poll_seconds = lease_poll_seconds

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    async def ensure_content(self, url: str) -> PageContent:
        """Cached page content, or fetch, store and index it. Raises FetchError on failure."""
        key = url_key(url)
        cached = await self._store.get_content(key)
        if cached is not None:
            log.info("cache_hit", artifact="content", url=url)
            return cached

        result = await self._fetcher.fetch(url)
        if not result.success or result.normalized_text is None:
            raise FetchError(result.error or f"Failed to fetch {url}")

        content = PageContent(
            url=url,
            display_name=result.display_name,
            normalized_text=result.normalized_text,
            fetched_at=datetime.now(UTC),
            length=len(result.normalized_text),
        )
        await self._store.put_content(key, content)
        await self._reindex_semantic(key, content)
        return content

    async def _reindex_semantic(self, key: str, content: PageContent) -> None:
        if self._semantic_index is None:
            return
        try:
            await self._semantic_index.remove(key)
        except Exception:
            # Absent on first indexing.
            log.debug("semantic_remove_skipped", key=key)

        entry = build_semantic_entry(key, content)
        if entry is None:
            return
        try:
            await self._semantic_index.index(entry)
        except Exception:
            log.warning("semantic_index_failed", key=key, url=content.url, exc_info=True)

    # ------------------------------------------------------------------
    # Prompt
    # ------------------------------------------------------------------

    async def ensure_prompt(self, url: str) -> PromptCacheEntry:
        key = url_key(url)
        content = await self._store.get_content(key)
        if content is None:
            raise ContentMissingError(f"Page content not found in cache for {url}")

        cached = await self._store.get_prompt(key)
        if cached is not None:
            return cached

        return await self._store.put_prompt(key, build_prompt(content))

    # ------------------------------------------------------------------
    # Response
    # ------------------------------------------------------------------

    async def ensure_response(self, url: str, complete: CompletionFn) -> ResponseOutcome:
        key = url_key(url)
        cached = await self._store.get_response(key)
        if cached is not None:
            log.info("cache_hit", artifact="response", url=url)
            return ResponseOutcome(entry=cached, from_cache=True)

        if not self._single_flight:
            return await self._compute_response(url, key, complete)

        while True:
            token = await self._store.acquire_lease(key)
            if token is not None:
                try:
                    # Another holder may have finished between our miss and the lease.
                    cached = await self._store.get_response(key)
                    if cached is not None:
                        return ResponseOutcome(entry=cached, from_cache=True)
                    return await self._compute_response(url, key, complete)
                finally:
                    await self._store.release_lease(key, token)

            log.debug("response_lease_busy", url=url)
            await asyncio.sleep(self._lease_poll_seconds)
            cached = await self._store.get_response(key)
            if cached is not None:
                return ResponseOutcome(entry=cached, from_cache=True)

    async def _compute_response(
        self, url: str, key: str, complete: CompletionFn
    ) -> ResponseOutcome:
        prompt = await self.ensure_prompt(url)
        try:
            response = await complete(prompt.prompt)
        except SiteCacheError:
            raise
        except Exception as exc:
            raise CompletionError(f"Completion failed for {url}: {exc}") from exc

        entry = await self._store.put_response(key, prompt.prompt, response)
        log.info("response_cached", url=url, key=key, response_length=len(response))
        return ResponseOutcome(entry=entry, from_cache=False)

    async def process_url(self, url: str, complete: CompletionFn) -> ProcessResult:
        """``ensure_response`` folded into a result object with timing. Never raises SiteCacheError."""
        started = time.monotonic()
        try:
            outcome = await self.ensure_response(url, complete)
        except SiteCacheError as exc:
            log.warning("process_url_failed", url=url, code=exc.code, error=exc.message)
            return ProcessResult(
                url=url,
                success=False,
                error=exc.message,
                processing_ms=int((time.monotonic() - started) * 1000),
            )
        return ProcessResult(
            url=url,
            success=True,
            response=outcome.entry.response,
            from_cache=outcome.from_cache,
            processing_ms=int((time.monotonic() - started) * 1000),
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def clear(self, url: str) -> None:
        """Drop prompt and response for *url*. Page content is kept."""
        key = url_key(url)
        await self._store.delete_prompt(key)
        await self._store.delete_response(key)

    async def response_cache_stats(self, urls: list[str]) -> dict[str, int]:
        cached = 0
        for url in urls:
            if await self._store.get_response(url_key(url)) is not None:
                cached += 1
        return {"total": len(urls), "cached": cached, "uncached": len(urls) - cached}
