"""Pipeline orchestrator: index → scrape → AI-process for one sitemap.

Stages run strictly one after another. Within the scrape and AI stages pages
are handled one at a time in domain-index order, with the configured delay
between consecutive requests (never before the first or after the last).
Progress is written after every item so an interrupted run can be resumed;
cache hits make the resumed work cheap.
"""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from sitecache.errors import SiteCacheError
from sitecache.hashing import extract_domain, url_key
from sitecache.models.pipeline import (
    AIProcessingCounts,
    AIStageResult,
    AIStageSummary,
    IndexingCounts,
    PipelineResult,
    PipelineStages,
    ProcessResult,
    ScrapeStageResult,
    ScrapingCounts,
)
from sitecache.models.store import ProcessingStatus, Progress

if TYPE_CHECKING:
    from sitecache.config import PipelineSettings
    from sitecache.indexer import UrlIndexer
    from sitecache.processor import CacheAwareProcessor
    from sitecache.protocols import CompletionFn
    from sitecache.store import ContentStore

log = structlog.get_logger()


async def _pause(delay: float, index: int, total: int) -> None:
    if delay > 0 and index < total - 1:
        await asyncio.sleep(delay)


class Pipeline:
    def __init__(
        self,
        store: ContentStore,
        indexer: UrlIndexer,
        processor: CacheAwareProcessor,
        settings: PipelineSettings,
    ) -> None:
        self._store = store
        self._indexer = indexer
        self._processor = processor
        self._settings = settings

    async def scrape_urls(self, urls: list[str], *, delay: float | None = None) -> ScrapeStageResult:
        """Ensure content for each URL in order and mark its page record."""
        delay = self._settings.scrape_delay_seconds if delay is None else delay
        result = ScrapeStageResult()

        for index, url in enumerate(urls):
            key = url_key(url)
            try:
                content = await self._processor.ensure_content(url)
                await self._store.mark_processed(key, True)
            except (SiteCacheError, aiosqlite.Error) as exc:
                message = exc.message if isinstance(exc, SiteCacheError) else str(exc)
                log.warning("scrape_failed", url=url, error=message)
                await self._mark_failed(key, message)
                result.results.append({"url": url, "success": False, "error": message})
                result.summary.failed += 1
            else:
                result.results.append({"url": url, "success": True, "length": content.length})
                result.summary.success += 1

            await _pause(delay, index, len(urls))

        log.info(
            "stage_complete",
            stage="scrape",
            succeeded=result.summary.success,
            failed=result.summary.failed,
        )
        return result

    async def _mark_failed(self, key: str, message: str) -> None:
        try:
            await self._store.mark_processed(key, False, message)
        except aiosqlite.Error:
            log.warning("mark_processed_failed", key=key, exc_info=True)

    async def process_domain(
        self,
        domain: str,
        complete: CompletionFn,
        *,
        max_urls: int | None = None,
        delay: float | None = None,
    ) -> AIStageResult:
        """Obtain an AI response for each indexed page of *domain*, updating status per item."""
        max_urls = self._settings.max_urls if max_urls is None else max_urls
        delay = self._settings.ai_delay_seconds if delay is None else delay

        pages = await self._store.list_pages(domain, limit=max_urls)
        started_at = datetime.now(UTC)
        status = ProcessingStatus(
            domain=domain,
            status="scraping",
            progress=Progress(total=len(pages)),
            started_at=started_at,
        )
        await self._store.put_status(status)

        result = AIStageResult(summary=AIStageSummary(total=len(pages)))
        for index, page in enumerate(pages):
            try:
                outcome = await self._processor.process_url(page.url, complete)
            except aiosqlite.Error as exc:
                log.warning("process_url_failed", url=page.url, exc_info=True)
                outcome = ProcessResult(url=page.url, success=False, error=str(exc))
            result.results.append(outcome)
            result.summary.total_ms += outcome.processing_ms
            if outcome.success:
                result.summary.successful += 1
                if outcome.from_cache:
                    result.summary.cached += 1
            else:
                result.summary.failed += 1

            status.current_url = page.url
            status.progress = Progress(
                total=len(pages),
                completed=result.summary.successful,
                failed=result.summary.failed,
            )
            await self._store.put_status(status)

            await _pause(delay, index, len(pages))

        status.status = "completed"
        status.current_url = None
        status.completed_at = datetime.now(UTC)
        await self._store.put_status(status)

        log.info(
            "stage_complete",
            stage="ai",
            domain=domain,
            total=result.summary.total,
            succeeded=result.summary.successful,
            cached=result.summary.cached,
            failed=result.summary.failed,
        )
        return result

    async def run(
        self,
        sitemap_url: str,
        complete: CompletionFn,
        *,
        max_urls: int | None = None,
        scrape_delay: float | None = None,
        ai_delay: float | None = None,
    ) -> PipelineResult:
        """Run all three stages. Per-item failures are collected; a stage failure ends the run."""
        max_urls = self._settings.max_urls if max_urls is None else max_urls
        domain = extract_domain(sitemap_url)
        bound = log.bind(domain=domain, sitemap_url=sitemap_url)
        started = time.monotonic()
        stages = PipelineStages()
        errors: list[str] = []

        def _finish(success: bool) -> PipelineResult:
            elapsed = round(time.monotonic() - started, 2)
            bound.info("pipeline_finished", success=success, elapsed_seconds=elapsed)
            return PipelineResult(
                success=success,
                domain=domain,
                stages=stages,
                elapsed_seconds=elapsed,
                errors=errors,
            )

        bound.info("pipeline_started", max_urls=max_urls)

        indexing = await self._indexer.index_sitemap(
            sitemap_url,
            max_urls=max_urls,
            skip_existing=self._settings.skip_existing,
            batch_size=self._settings.batch_size,
        )
        stages.indexing = IndexingCounts(
            total_urls=indexing.total_urls,
            indexed_urls=indexing.indexed_urls,
            skipped_urls=indexing.skipped_urls,
        )
        errors.extend(indexing.errors)
        if not indexing.success:
            return _finish(False)

        try:
            pages = await self._store.list_pages(domain, limit=max_urls)
            scrape = await self.scrape_urls([page.url for page in pages], delay=scrape_delay)
        except aiosqlite.Error as exc:
            errors.append(f"Scrape stage failed: {exc}")
            bound.error("stage_failed", stage="scrape", exc_info=True)
            return _finish(False)

        stages.scraping = ScrapingCounts(
            attempted=len(scrape.results),
            successful=scrape.summary.success,
            failed=scrape.summary.failed,
        )
        errors.extend(item["error"] for item in scrape.results if not item["success"])

        try:
            ai = await self.process_domain(domain, complete, max_urls=max_urls, delay=ai_delay)
        except aiosqlite.Error as exc:
            errors.append(f"AI stage failed: {exc}")
            bound.error("stage_failed", stage="ai", exc_info=True)
            return _finish(False)

        stages.ai_processing = AIProcessingCounts(
            attempted=ai.summary.total,
            successful=ai.summary.successful,
            cached=ai.summary.cached,
            failed=ai.summary.failed,
        )
        errors.extend(item.error for item in ai.results if item.error)

        return _finish(True)

