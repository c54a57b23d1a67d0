"""Tool handlers for page records and single-page processing."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field

from sitecache.errors import SiteCacheError
from sitecache.models.pipeline import ProcessResult
from sitecache.models.tools import ListPagesInput, UrlInput
from sitecache.tools._input import validate_input

if TYPE_CHECKING:
    from sitecache.state import AppState


class _RecentInput(BaseModel):
    limit: int = Field(default=20, ge=1, le=200)


async def list_pages(domain: str, state: AppState, *, limit: int = 100, offset: int = 0) -> dict:
    """One page of a domain's records, in indexing order."""
    validated = validate_input(
        ListPagesInput,
        "Provide a bare domain, 1 <= limit <= 1000 and offset >= 0.",
        domain=domain,
        limit=limit,
        offset=offset,
    )
    pages = await state.store.list_pages(
        validated.domain, limit=validated.limit, offset=validated.offset
    )
    return {
        "domain": validated.domain,
        "total": await state.store.get_url_count(validated.domain),
        "offset": validated.offset,
        "pages": [page.model_dump(mode="json") for page in pages],
    }


async def recent_pages(state: AppState, *, limit: int = 20) -> dict:
    validated = validate_input(_RecentInput, "limit must be between 1 and 200.", limit=limit)
    pages = await state.store.recent_pages(validated.limit)
    return {"pages": [page.model_dump(mode="json") for page in pages]}


async def process_url(
    url: str,
    state: AppState,
    *,
    model: str | None = None,
    temperature: float | None = None,
) -> dict:
    """Fetch (if needed) and analyse a single page, reusing any cached response."""
    log = structlog.get_logger().bind(tool="process_url", url=url)
    log.info("handler_called")

    validated = validate_input(UrlInput, "Provide an http(s) page URL.", url=url)
    complete = state.completion_for(model=model, temperature=temperature)

    # Content first, so a fetch failure is reported as such rather than as missing content.
    try:
        await state.processor.ensure_content(validated.url)
    except SiteCacheError as exc:
        log.warning("content_unavailable", code=exc.code, error=exc.message)
        return ProcessResult(url=validated.url, success=False, error=exc.message).model_dump(
            mode="json"
        )

    result = await state.processor.process_url(validated.url, complete)
    return result.model_dump(mode="json")
