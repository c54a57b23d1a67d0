"""Content store: the domain view over the key-value engine.

Every persisted artifact goes through here. Logical key layout::

    sitemap:{domain}   SitemapMeta           no expiry, overwritten per run
    urls:{domain}      ordered index of keys  score = first insertion time
    url:{key}          PageRecord            no expiry
    content:{key}      PageContent           expires after content_ttl_days
    prompt:{key}       PromptCacheEntry      no expiry, explicit delete only
    response:{key}     ResponseCacheEntry    no expiry, explicit delete only
    status:{domain}    ProcessingStatus      expires after status_ttl_hours
    lease:{key}        single-flight lease   expires after lease_seconds

No operation spanning several keys is transactional.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from sitecache.models.sitemap import SitemapMeta
from sitecache.models.store import (
    PageContent,
    PageRecord,
    ProcessingStatus,
    PromptCacheEntry,
    ResponseCacheEntry,
)

if TYPE_CHECKING:
    from sitecache.config import StoreSettings
    from sitecache.kv import KeyValueStore

log = structlog.get_logger()


class StoreKeys:
    @staticmethod
    def sitemap(domain: str) -> str:
        return f"sitemap:{domain}"

    @staticmethod
    def url_list(domain: str) -> str:
        return f"urls:{domain}"

    @staticmethod
    def url(key: str) -> str:
        return f"url:{key}"

    @staticmethod
    def content(key: str) -> str:
        return f"content:{key}"

    @staticmethod
    def prompt(key: str) -> str:
        return f"prompt:{key}"

    @staticmethod
    def response(key: str) -> str:
        return f"response:{key}"

    @staticmethod
    def status(domain: str) -> str:
        return f"status:{domain}"

    @staticmethod
    def lease(key: str) -> str:
        return f"lease:{key}"


def _suffix(key: str) -> str:
    return key.split(":", 1)[1] if ":" in key else key


class ContentStore:
    """Sitemap metadata, page records, domain indexes, and per-page caches."""

    def __init__(self, kv: KeyValueStore, settings: StoreSettings) -> None:
        self._kv = kv
        self._content_ttl = timedelta(days=settings.content_ttl_days)
        self._status_ttl = timedelta(hours=settings.status_ttl_hours)
        self._lease_ttl = timedelta(seconds=settings.lease_seconds)

    # ------------------------------------------------------------------
    # Sitemap metadata / processing status
    # ------------------------------------------------------------------

    async def put_sitemap_meta(self, meta: SitemapMeta) -> None:
        await self._kv.set(StoreKeys.sitemap(meta.domain), meta.model_dump_json())

    async def get_sitemap_meta(self, domain: str) -> SitemapMeta | None:
        data = await self._kv.get(StoreKeys.sitemap(domain))
        return SitemapMeta.model_validate_json(data) if data else None

    async def put_status(self, status: ProcessingStatus) -> None:
        await self._kv.set(
            StoreKeys.status(status.domain), status.model_dump_json(), ttl=self._status_ttl
        )

    async def get_status(self, domain: str) -> ProcessingStatus | None:
        data = await self._kv.get(StoreKeys.status(domain))
        return ProcessingStatus.model_validate_json(data) if data else None

    # ------------------------------------------------------------------
    # Page records and the domain index
    # ------------------------------------------------------------------

    async def index_page(self, record: PageRecord) -> None:
        """Upsert the record and add its key to the domain index.

        Re-indexing keeps the key's original position in the index along with
        the stored ``indexed_at``, ``processed`` and ``error`` of the record.
        """
        existing = await self.get_page(record.key)
        if existing is not None:
            record = record.model_copy(
                update={
                    "indexed_at": existing.indexed_at,
                    "processed": existing.processed,
                    "error": existing.error,
                }
            )
        await self._kv.set(StoreKeys.url(record.key), record.model_dump_json())
        await self._kv.zadd_nx(
            StoreKeys.url_list(record.domain), record.key, record.indexed_at.timestamp()
        )

    async def get_page(self, key: str) -> PageRecord | None:
        data = await self._kv.get(StoreKeys.url(key))
        return PageRecord.model_validate_json(data) if data else None

    async def list_pages(self, domain: str, limit: int = 100, offset: int = 0) -> list[PageRecord]:
        """Records of *domain* in insertion order. Dangling index entries are skipped."""
        keys = await self._kv.zrange(StoreKeys.url_list(domain), offset=offset, limit=limit)
        if not keys:
            return []
        records = await asyncio.gather(*(self.get_page(key) for key in keys))
        return [record for record in records if record is not None]

    async def get_url_count(self, domain: str) -> int:
        return await self._kv.zcard(StoreKeys.url_list(domain))

    async def mark_processed(self, key: str, success: bool, error: str | None = None) -> None:
        """Set ``processed``/``error`` on an existing record; unknown keys are dropped.

        A success clears the error left by an earlier failed attempt.
        """
        record = await self.get_page(key)
        if record is None:
            log.debug("mark_processed_unknown_key", key=key)
            return
        record.processed = success
        if success:
            record.error = None
        elif error:
            record.error = error
        await self._kv.set(StoreKeys.url(key), record.model_dump_json())

    # ------------------------------------------------------------------
    # Per-page artifacts
    # ------------------------------------------------------------------

    async def put_content(self, key: str, content: PageContent) -> None:
        await self._kv.set(StoreKeys.content(key), content.model_dump_json(), ttl=self._content_ttl)

    async def get_content(self, key: str) -> PageContent | None:
        data = await self._kv.get(StoreKeys.content(key))
        return PageContent.model_validate_json(data) if data else None

    async def delete_content(self, key: str) -> None:
        await self._kv.delete(StoreKeys.content(key))

    async def put_prompt(self, key: str, prompt: str) -> PromptCacheEntry:
        entry = PromptCacheEntry(prompt=prompt, cached_at=datetime.now(UTC))
        await self._kv.set(StoreKeys.prompt(key), entry.model_dump_json())
        return entry

    async def get_prompt(self, key: str) -> PromptCacheEntry | None:
        data = await self._kv.get(StoreKeys.prompt(key))
        return PromptCacheEntry.model_validate_json(data) if data else None

    async def delete_prompt(self, key: str) -> None:
        await self._kv.delete(StoreKeys.prompt(key))

    async def put_response(self, key: str, prompt: str, response: str) -> ResponseCacheEntry:
        entry = ResponseCacheEntry(prompt=prompt, response=response, cached_at=datetime.now(UTC))
        await self._kv.set(StoreKeys.response(key), entry.model_dump_json())
        return entry

    async def get_response(self, key: str) -> ResponseCacheEntry | None:
        data = await self._kv.get(StoreKeys.response(key))
        return ResponseCacheEntry.model_validate_json(data) if data else None

    async def delete_response(self, key: str) -> None:
        await self._kv.delete(StoreKeys.response(key))

    # ------------------------------------------------------------------
    # Single-flight leases
    # ------------------------------------------------------------------

    async def acquire_lease(self, key: str) -> str | None:
        return await self._kv.acquire_lease(StoreKeys.lease(key), self._lease_ttl)

    async def release_lease(self, key: str, token: str) -> None:
        await self._kv.release_lease(StoreKeys.lease(key), token)

    # ------------------------------------------------------------------
    # Aggregates (full keyspace scans)
    # ------------------------------------------------------------------

    async def count_by_pattern(self, prefix: str) -> int:
        """Count live keys starting with *prefix*. O(total keys)."""
        return await self._kv.count(f"{prefix}*")

    async def list_domains(self) -> list[str]:
        """Domains with an index or sitemap metadata, sorted. O(total keys)."""
        domains: set[str] = set()
        for pattern in ("urls:*", "sitemap:*"):
            for key in await self._kv.scan(pattern):
                domain = _suffix(key)
                if domain:
                    domains.add(domain)
        return sorted(domains)

    async def recent_pages(self, limit: int = 20) -> list[PageRecord]:
        """Most recently indexed records across all domains, newest first. O(total keys)."""
        keys = await self._kv.scan("url:*")
        records = await asyncio.gather(*(self.get_page(_suffix(key)) for key in keys))
        live = [record for record in records if record is not None]
        live.sort(key=lambda record: record.indexed_at, reverse=True)
        return live[:limit]

    async def purge_domain(self, domain: str) -> int:
        """Delete every key reachable from the domain index, then the index itself.

        Not transactional: a concurrent writer may re-create keys mid-purge.
        """
        keys = await self._kv.zrange(StoreKeys.url_list(domain))
        doomed = [
            store_key
            for key in keys
            for store_key in (
                StoreKeys.url(key),
                StoreKeys.content(key),
                StoreKeys.prompt(key),
                StoreKeys.response(key),
            )
        ]
        doomed += [StoreKeys.sitemap(domain), StoreKeys.url_list(domain), StoreKeys.status(domain)]
        removed = await self._kv.delete(*doomed)
        log.info("domain_purged", domain=domain, pages=len(keys), keys_removed=removed)
        return removed
