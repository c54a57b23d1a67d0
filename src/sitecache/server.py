"""MCP server entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState via the FastMCP lifespan context manager
- Register tools
- Start the stdio transport
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog
from mcp.server.fastmcp import Context, FastMCP
from mcp.types import CallToolResult, TextContent

import sitecache.tools.cache as t_cache
import sitecache.tools.indexing as t_indexing
import sitecache.tools.pages as t_pages
import sitecache.tools.run_pipeline as t_run_pipeline
import sitecache.tools.search_pages as t_search
from sitecache import __version__
from sitecache.config import Settings
from sitecache.errors import SiteCacheError
from sitecache.fetcher import build_fetch_chain, build_http_client
from sitecache.indexer import UrlIndexer
from sitecache.kv import KeyValueStore
from sitecache.pipeline import Pipeline
from sitecache.processor import CacheAwareProcessor
from sitecache.semantic import LocalSemanticIndex
from sitecache.sitemap import SitemapResolver
from sitecache.state import AppState
from sitecache.store import ContentStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # stdout carries the MCP JSON-RPC stream
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources for the server's lifetime."""
    settings = Settings()
    _setup_logging(settings)

    log.info("server_starting", version=__version__)

    http_client = build_http_client(settings.fetcher)

    db_path = Path(settings.store.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(db_path))
    kv = KeyValueStore(db)
    await kv.init_db()
    await kv.cleanup_expired()

    store = ContentStore(kv, settings.store)
    semantic_index = LocalSemanticIndex()
    fetch_chain = build_fetch_chain(http_client, settings.fetcher)
    processor = CacheAwareProcessor(store, fetch_chain, semantic_index)
    indexer = UrlIndexer(store, SitemapResolver(http_client, settings.sitemap))

    state = AppState(
        settings=settings,
        kv=kv,
        store=store,
        indexer=indexer,
        processor=processor,
        pipeline=Pipeline(store, indexer, processor, settings.pipeline),
        http_client=http_client,
        semantic_index=semantic_index,
    )

    log.info(
        "server_started",
        version=__version__,
        db_path=str(db_path),
        fetch_strategies=fetch_chain.strategy_names,
    )

    try:
        yield state
    finally:
        await http_client.aclose()
        await db.close()
        log.info("server_stopping")


# ---------------------------------------------------------------------------
# FastMCP instance and tool registration
# ---------------------------------------------------------------------------

mcp = FastMCP("sitecache", lifespan=lifespan)
# FastMCP doesn't expose a version kwarg; set it on the underlying Server
# so the MCP initialize handshake reports our version, not the SDK's.
mcp._mcp_server.version = __version__  # pyright: ignore[reportPrivateUsage]


def _serialise_tool_error(error: SiteCacheError) -> CallToolResult:
    """Convert a SiteCacheError to the MCP tool error result envelope."""
    return CallToolResult(
        content=[TextContent(type="text", text=json.dumps(error.to_dict()))],
        isError=True,
    )


async def _invoke(tool: str, call: Awaitable[dict]) -> object:
    try:
        return await call
    except SiteCacheError as exc:
        log.warning(
            "tool_error",
            tool=tool,
            code=exc.code,
            message=exc.message,
            recoverable=exc.recoverable,
        )
        return _serialise_tool_error(exc)
    except Exception:
        log.error("tool_unexpected_error", tool=tool, exc_info=True)
        raise


def _state(ctx: Context) -> AppState:
    return ctx.request_context.lifespan_context


@mcp.tool()
async def run_pipeline(
    sitemap_url: str,
    ctx: Context,
    max_urls: int | None = None,
    scrape_delay: float | None = None,
    ai_delay: float | None = None,
    model: str | None = None,
    temperature: float | None = None,
) -> object:
    """Index a sitemap, fetch every page, and produce a cached AI analysis per page.

    Delays are seconds between consecutive requests. Cached content and
    responses are reused, so re-running an interrupted pipeline is cheap.
    """
    return await _invoke(
        "run_pipeline",
        t_run_pipeline.handle(
            sitemap_url,
            _state(ctx),
            max_urls=max_urls,
            scrape_delay=scrape_delay,
            ai_delay=ai_delay,
            model=model,
            temperature=temperature,
        ),
    )


@mcp.tool()
async def index_sitemap(
    target: str,
    ctx: Context,
    max_urls: int | None = None,
    skip_existing: bool = True,
) -> object:
    """Index the URLs of a sitemap. Accepts a sitemap URL or a bare domain to auto-discover."""
    return await _invoke(
        "index_sitemap",
        t_indexing.index_sitemap(
            target, _state(ctx), max_urls=max_urls, skip_existing=skip_existing
        ),
    )


@mcp.tool()
async def reindex_domain(domain: str, ctx: Context) -> object:
    """Purge a domain and index its stored sitemap again from scratch."""
    return await _invoke("reindex_domain", t_indexing.reindex_domain(domain, _state(ctx)))


@mcp.tool()
async def get_status(domain: str, ctx: Context) -> object:
    """Sitemap metadata, processing status and URL count for a domain."""
    return await _invoke("get_status", t_indexing.get_status(domain, _state(ctx)))


@mcp.tool()
async def list_pages(domain: str, ctx: Context, limit: int = 100, offset: int = 0) -> object:
    """List a domain's indexed pages in indexing order."""
    return await _invoke(
        "list_pages", t_pages.list_pages(domain, _state(ctx), limit=limit, offset=offset)
    )


@mcp.tool()
async def recent_pages(ctx: Context, limit: int = 20) -> object:
    """Most recently indexed pages across all domains."""
    return await _invoke("recent_pages", t_pages.recent_pages(_state(ctx), limit=limit))


@mcp.tool()
async def process_url(
    url: str,
    ctx: Context,
    model: str | None = None,
    temperature: float | None = None,
) -> object:
    """Fetch a single page if needed and return its (possibly cached) AI analysis."""
    return await _invoke(
        "process_url",
        t_pages.process_url(url, _state(ctx), model=model, temperature=temperature),
    )


@mcp.tool()
async def clear_cache(url: str, ctx: Context) -> object:
    """Drop the cached prompt and AI response for a page."""
    return await _invoke("clear_cache", t_cache.clear_cache(url, _state(ctx)))


@mcp.tool()
async def purge_domain(domain: str, ctx: Context) -> object:
    """Delete everything stored for a domain."""
    return await _invoke("purge_domain", t_cache.purge_domain(domain, _state(ctx)))


@mcp.tool()
async def cache_stats(domain: str, ctx: Context) -> object:
    """Cached vs uncached AI responses for a domain."""
    return await _invoke("cache_stats", t_cache.cache_stats(domain, _state(ctx)))


@mcp.tool()
async def overview_stats(ctx: Context) -> object:
    """Store-wide URL, prompt and response totals with the overall cache hit rate."""
    return await _invoke("overview_stats", t_cache.overview_stats(_state(ctx)))


@mcp.tool()
async def search_pages(
    query: str,
    ctx: Context,
    domain: str | None = None,
    limit: int = 10,
) -> object:
    """Similarity search over fetched page content."""
    return await _invoke(
        "search_pages", t_search.handle(query, _state(ctx), domain=domain, limit=limit)
    )


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
