"""Index stage: sitemap → page records in the content store.

URLs are upserted in fixed-size batches. Within a batch the upserts run
concurrently and the batch is awaited as a whole before progress is written
and the next batch starts.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Literal

import aiosqlite
import structlog

from sitecache.errors import SiteCacheError
from sitecache.hashing import extract_domain, page_name_from_url, url_key
from sitecache.models.pipeline import IndexingResult
from sitecache.models.sitemap import SitemapMeta
from sitecache.models.store import PageRecord, ProcessingStatus, Progress

if TYPE_CHECKING:
    from sitecache.models.sitemap import PageDescriptor
    from sitecache.sitemap import SitemapResolver
    from sitecache.store import ContentStore

log = structlog.get_logger()

DEFAULT_MAX_URLS = 10_000
DEFAULT_BATCH_SIZE = 50

_Outcome = Literal["indexed", "skipped"]


def _unique_descriptors(
    descriptors: list[PageDescriptor], limit: int
) -> tuple[list[PageDescriptor], int]:
    """First *limit* descriptors with distinct URLs, plus the repeats passed over."""
    unique: list[PageDescriptor] = []
    seen: set[str] = set()
    repeats = 0
    for descriptor in descriptors:
        if len(unique) >= limit:
            break
        if descriptor.loc in seen:
            repeats += 1
            continue
        seen.add(descriptor.loc)
        unique.append(descriptor)
    return unique, repeats


class UrlIndexer:
    def __init__(self, store: ContentStore, resolver: SitemapResolver) -> None:
        self._store = store
        self._resolver = resolver

    async def index_sitemap(
        self,
        sitemap_url: str,
        *,
        max_urls: int = DEFAULT_MAX_URLS,
        skip_existing: bool = True,
        batch_size: int = DEFAULT_BATCH_SIZE,
        descriptors: list[PageDescriptor] | None = None,
    ) -> IndexingResult:
        """Resolve *sitemap_url* (unless *descriptors* are given) and index up to *max_urls*."""
        domain = extract_domain(sitemap_url)
        bound = log.bind(domain=domain, sitemap_url=sitemap_url)
        started_at = datetime.now(UTC)
        errors: list[str] = []
        indexed = 0
        skipped = 0
        repeats = 0
        meta: SitemapMeta | None = None

        try:
            await self._store.put_status(
                ProcessingStatus(domain=domain, status="parsing", started_at=started_at)
            )

            if descriptors is None:
                descriptors = await self._resolver.resolve(sitemap_url)
            to_index, repeats = _unique_descriptors(descriptors, max_urls)
            total = len(to_index)

            meta = SitemapMeta(
                domain=domain,
                sitemap_url=sitemap_url,
                total_urls=total,
                last_processed=started_at,
                status="processing",
            )
            await self._store.put_sitemap_meta(meta)
            await self._store.put_status(
                ProcessingStatus(
                    domain=domain,
                    status="indexing",
                    progress=Progress(total=total),
                    started_at=started_at,
                )
            )

            for start in range(0, total, batch_size):
                batch = to_index[start : start + batch_size]
                # Distinct, ordered timestamps keep the domain index in sitemap order.
                outcomes = await asyncio.gather(
                    *(
                        self._index_one(
                            descriptor,
                            domain,
                            skip_existing=skip_existing,
                            indexed_at=started_at + timedelta(microseconds=start + offset),
                        )
                        for offset, descriptor in enumerate(batch)
                    )
                )
                for outcome in outcomes:
                    if outcome == "indexed":
                        indexed += 1
                    elif outcome == "skipped":
                        skipped += 1
                    else:
                        errors.append(outcome)

                await self._store.put_status(
                    ProcessingStatus(
                        domain=domain,
                        status="indexing",
                        progress=Progress(
                            total=total, completed=indexed + skipped, failed=len(errors)
                        ),
                        started_at=started_at,
                    )
                )

            meta.status = "completed"
            meta.processed_urls = indexed
            await self._store.put_sitemap_meta(meta)
            await self._store.put_status(
                ProcessingStatus(
                    domain=domain,
                    status="completed",
                    progress=Progress(total=total, completed=indexed + skipped, failed=len(errors)),
                    started_at=started_at,
                    completed_at=datetime.now(UTC),
                )
            )
        except (SiteCacheError, aiosqlite.Error) as exc:
            message = exc.message if isinstance(exc, SiteCacheError) else str(exc)
            errors.append(message)
            bound.warning("indexing_failed", error=message, indexed=indexed)
            if meta is None:
                meta = SitemapMeta(
                    domain=domain,
                    sitemap_url=sitemap_url,
                    total_urls=0,
                    last_processed=started_at,
                )
            meta.status = "failed"
            meta.processed_urls = indexed
            await self._record_failure(meta, message, len(errors))
            return IndexingResult(
                success=False,
                domain=domain,
                indexed_urls=indexed,
                skipped_urls=skipped + repeats,
                errors=errors,
            )

        bound.info(
            "indexing_complete",
            total=total,
            indexed=indexed,
            skipped=skipped,
            repeated=repeats,
            failed=len(errors),
        )
        return IndexingResult(
            success=True,
            domain=domain,
            total_urls=total,
            indexed_urls=indexed,
            skipped_urls=skipped + repeats,
            errors=errors,
        )

    async def _index_one(
        self,
        descriptor: PageDescriptor,
        domain: str,
        *,
        skip_existing: bool,
        indexed_at: datetime,
    ) -> _Outcome | str:
        """Upsert one URL. Returns the outcome, or an error string."""
        try:
            key = url_key(descriptor.loc)
            if skip_existing and await self._store.get_page(key) is not None:
                return "skipped"

            await self._store.index_page(
                PageRecord(
                    url=descriptor.loc,
                    key=key,
                    domain=domain,
                    display_name=page_name_from_url(descriptor.loc),
                    priority=descriptor.priority,
                    last_modified=descriptor.lastmod,
                    change_frequency=descriptor.changefreq,
                    indexed_at=indexed_at,
                )
            )
            return "indexed"
        except Exception as exc:
            log.warning("index_url_failed", url=descriptor.loc, exc_info=True)
            return f"Failed to index {descriptor.loc}: {exc}"

    async def _record_failure(self, meta: SitemapMeta, message: str, failed: int) -> None:
        try:
            await self._store.put_sitemap_meta(meta)
            await self._store.put_status(
                ProcessingStatus(
                    domain=meta.domain,
                    status="error",
                    progress=Progress(
                        total=meta.total_urls, completed=meta.processed_urls, failed=failed
                    ),
                    error=message,
                )
            )
        except aiosqlite.Error:
            log.warning("status_write_failed", domain=meta.domain, exc_info=True)

    async def auto_discover_and_index(
        self,
        domain: str,
        *,
        max_urls: int = DEFAULT_MAX_URLS,
        skip_existing: bool = True,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> IndexingResult:
        """Find the domain's sitemap (robots.txt, then conventional paths) and index it."""
        try:
            sitemap_url, descriptors = await self._resolver.discover(domain)
        except SiteCacheError as exc:
            log.warning("sitemap_discovery_failed", domain=domain, error=exc.message)
            return IndexingResult(
                success=False,
                domain=extract_domain(domain if "://" in domain else f"https://{domain}"),
                errors=["Could not find or parse sitemap"],
            )

        return await self.index_sitemap(
            sitemap_url,
            max_urls=max_urls,
            skip_existing=skip_existing,
            batch_size=batch_size,
            descriptors=descriptors,
        )

    async def reindex_domain(
        self,
        domain: str,
        *,
        max_urls: int = DEFAULT_MAX_URLS,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> IndexingResult:
        """Purge the domain and index its stored sitemap URL again from scratch."""
        meta = await self._store.get_sitemap_meta(domain)
        if meta is None:
            return IndexingResult(
                success=False, domain=domain, errors=["No existing sitemap metadata found"]
            )

        await self._store.purge_domain(domain)
        return await self.index_sitemap(
            meta.sitemap_url, max_urls=max_urls, skip_existing=False, batch_size=batch_size
        )

    async def get_indexing_stats(self, domain: str) -> dict:
        meta = await self._store.get_sitemap_meta(domain)
        status = await self._store.get_status(domain)
        return {
            "metadata": meta.model_dump(mode="json") if meta else None,
            "status": status.model_dump(mode="json") if status else None,
            "url_count": await self._store.get_url_count(domain),
        }
