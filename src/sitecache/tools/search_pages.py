"""Tool handler for search_pages."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sitecache.errors import ConfigurationError
from sitecache.models.tools import SearchInput
from sitecache.semantic import to_search_result
from sitecache.tools._input import validate_input

if TYPE_CHECKING:
    from sitecache.state import AppState


async def handle(query: str, state: AppState, *, domain: str | None = None, limit: int = 10) -> dict:
    validated = validate_input(
        SearchInput,
        "Provide a non-empty query and 1 <= limit <= 50.",
        query=query,
        domain=domain,
        limit=limit,
    )
    if state.semantic_index is None:
        raise ConfigurationError("No semantic index is configured.")

    hits = await state.semantic_index.search(
        validated.query, domain=validated.domain, limit=validated.limit
    )
    return {
        "query": validated.query,
        "results": [to_search_result(hit).model_dump(mode="json") for hit in hits],
    }
