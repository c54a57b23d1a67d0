"""Tool handlers for cache maintenance and statistics."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from sitecache.errors import NotFoundError
from sitecache.models.tools import DomainInput, UrlInput
from sitecache.tools._input import validate_input

if TYPE_CHECKING:
    from sitecache.state import AppState

log = structlog.get_logger()

_DOMAIN_HINT = "Provide a bare domain such as example.com."

# Upper bound on pages inspected for per-domain cache stats.
DOMAIN_STATS_PAGE_LIMIT = 1000


def _hit_rate(hits: int, total: int) -> float:
    return round(hits / total * 100, 1) if total else 0.0


async def clear_cache(url: str, state: AppState) -> dict:
    """Drop the cached prompt and response for a page. Content stays cached."""
    validated = validate_input(UrlInput, "Provide an http(s) page URL.", url=url)
    await state.processor.clear(validated.url)
    log.info("cache_cleared", url=validated.url)
    return {"url": validated.url, "cleared": True}


async def purge_domain(domain: str, state: AppState) -> dict:
    validated = validate_input(DomainInput, _DOMAIN_HINT, domain=domain)
    if validated.domain not in await state.store.list_domains():
        raise NotFoundError(f"Domain not indexed: {validated.domain}")

    removed = await state.store.purge_domain(validated.domain)
    return {"domain": validated.domain, "keys_removed": removed}


async def cache_stats(domain: str, state: AppState) -> dict:
    """Cached vs uncached AI responses over the first pages of a domain."""
    validated = validate_input(DomainInput, _DOMAIN_HINT, domain=domain)
    pages = await state.store.list_pages(validated.domain, limit=DOMAIN_STATS_PAGE_LIMIT)
    if not pages:
        raise NotFoundError(f"No indexed pages for {validated.domain}")

    stats = await state.processor.response_cache_stats([page.url for page in pages])
    return {
        "domain": validated.domain,
        **stats,
        "hit_rate": _hit_rate(stats["cached"], stats["total"]),
    }


async def overview_stats(state: AppState) -> dict:
    """Store-wide totals. Scans the whole keyspace."""
    domains = await state.store.list_domains()
    total_urls = 0
    for domain in domains:
        total_urls += await state.store.get_url_count(domain)

    prompts = await state.store.count_by_pattern("prompt:")
    responses = await state.store.count_by_pattern("response:")
    return {
        "domains": len(domains),
        "total_urls": total_urls,
        "cached_prompts": prompts,
        "cached_responses": responses,
        "cache_hit_rate": _hit_rate(responses, total_urls),
    }
