"""Tool handlers for the index stage: index_sitemap, reindex_domain, get_status."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from sitecache.errors import NotFoundError
from sitecache.models.tools import DomainInput, IndexSitemapInput
from sitecache.tools._input import validate_input

if TYPE_CHECKING:
    from sitecache.state import AppState

_DOMAIN_HINT = "Provide a bare domain such as example.com."


async def index_sitemap(
    target: str,
    state: AppState,
    *,
    max_urls: int | None = None,
    skip_existing: bool = True,
) -> dict:
    """Index a sitemap URL, or auto-discover the sitemap of a bare domain."""
    log = structlog.get_logger().bind(tool="index_sitemap", target=target)
    log.info("handler_called")

    validated = validate_input(
        IndexSitemapInput,
        "Provide a sitemap URL (https://example.com/sitemap.xml) or a domain (example.com).",
        target=target,
        max_urls=max_urls,
        skip_existing=skip_existing,
    )
    options = {
        "skip_existing": validated.skip_existing,
        "batch_size": state.settings.pipeline.batch_size,
    }
    if validated.max_urls is not None:
        options["max_urls"] = validated.max_urls

    if validated.is_sitemap_url:
        result = await state.indexer.index_sitemap(validated.target, **options)
    else:
        result = await state.indexer.auto_discover_and_index(validated.target, **options)
    return result.model_dump(mode="json")


async def reindex_domain(domain: str, state: AppState) -> dict:
    validated = validate_input(DomainInput, _DOMAIN_HINT, domain=domain)
    structlog.get_logger().info("handler_called", tool="reindex_domain", domain=validated.domain)

    result = await state.indexer.reindex_domain(
        validated.domain, batch_size=state.settings.pipeline.batch_size
    )
    return result.model_dump(mode="json")


async def get_status(domain: str, state: AppState) -> dict:
    """Sitemap metadata, latest processing status and indexed URL count for a domain."""
    validated = validate_input(DomainInput, _DOMAIN_HINT, domain=domain)

    stats = await state.indexer.get_indexing_stats(validated.domain)
    if stats["metadata"] is None and stats["status"] is None and stats["url_count"] == 0:
        raise NotFoundError(f"No indexing data for {validated.domain}")
    return {"domain": validated.domain, **stats}
