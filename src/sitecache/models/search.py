from __future__ import annotations

from pydantic import BaseModel


class SemanticEntry(BaseModel):
    """Side-index record for similarity lookup. One per page key."""

    key: str
    url: str
    display_name: str
    domain: str
    prompt_text: str
    compact_payload: str  # JSON: url, display_name, snippet, fetched_at, domain


class SearchHit(BaseModel):
    """Raw backend match."""

    id: str
    similarity: float
    stored_payload: str


class SearchResult(BaseModel):
    """Search hit projected for callers."""

    id: str
    url: str
    display_name: str
    snippet: str
    similarity: float
    fetched_at: str | None = None
