"""Tool handler for run_pipeline.

Validates arguments, builds the completion backend up front (so missing
credentials fail before any indexing work), then runs the three stages.
No MCP or FastMCP imports; server.py handles the MCP wiring.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from sitecache.models.tools import RunPipelineInput
from sitecache.tools._input import validate_input

if TYPE_CHECKING:
    from sitecache.state import AppState


async def handle(
    sitemap_url: str,
    state: AppState,
    *,
    max_urls: int | None = None,
    scrape_delay: float | None = None,
    ai_delay: float | None = None,
    model: str | None = None,
    temperature: float | None = None,
) -> dict:
    """Handle a run_pipeline tool call."""
    log = structlog.get_logger().bind(tool="run_pipeline", sitemap_url=sitemap_url)
    log.info("handler_called")

    validated = validate_input(
        RunPipelineInput,
        "Provide an http(s) sitemap URL, max_urls between 1 and 1000, and non-negative delays.",
        sitemap_url=sitemap_url,
        max_urls=max_urls,
        scrape_delay=scrape_delay,
        ai_delay=ai_delay,
        model=model,
        temperature=temperature,
    )

    complete = state.completion_for(model=validated.model, temperature=validated.temperature)
    result = await state.pipeline.run(
        validated.sitemap_url,
        complete,
        max_urls=validated.max_urls,
        scrape_delay=validated.scrape_delay,
        ai_delay=validated.ai_delay,
    )
    return result.model_dump(mode="json")
