"""Semantic side index over normalized page content.

``build_semantic_entry`` shapes a page into the compact record every backend
stores; ``LocalSemanticIndex`` is an in-process backend ranking entries with
rapidfuzz string similarity.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import structlog
from rapidfuzz import fuzz, process, utils

from sitecache.hashing import extract_domain
from sitecache.models.search import SearchHit, SearchResult, SemanticEntry

if TYPE_CHECKING:
    from sitecache.models.store import PageContent

log = structlog.get_logger()

MAX_PROMPT_LENGTH = 1024
MAX_PAYLOAD_SNIPPET = 2000
MAX_RESULT_SNIPPET = 280


def _truncate(text: str, limit: int, marker: str = "...") -> str:
    if len(text) <= limit:
        return text
    return text[: limit - len(marker)] + marker


def build_semantic_entry(key: str, content: PageContent) -> SemanticEntry | None:
    """Compact index record for a page, or None when there is nothing to index."""
    text = content.normalized_text.strip()
    if not text:
        return None

    prompt_text = (content.display_name or content.url or "").strip()
    if not prompt_text:
        return None

    domain = extract_domain(content.url)
    payload = {
        "url": content.url,
        "display_name": content.display_name,
        "snippet": _truncate(text, MAX_PAYLOAD_SNIPPET),
        "fetched_at": content.fetched_at.isoformat(),
        "domain": domain,
    }
    return SemanticEntry(
        key=key,
        url=content.url,
        display_name=content.display_name,
        domain=domain,
        prompt_text=_truncate(prompt_text, MAX_PROMPT_LENGTH, marker="…"),
        compact_payload=json.dumps(payload),
    )


def to_search_result(hit: SearchHit) -> SearchResult:
    """Project a raw hit for callers. Unparsable payloads are shown verbatim."""
    try:
        payload = json.loads(hit.stored_payload)
    except json.JSONDecodeError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}

    content = payload.get("snippet") or hit.stored_payload
    return SearchResult(
        id=hit.id,
        url=payload.get("url", ""),
        display_name=payload.get("display_name") or "Untitled",
        snippet=_truncate(content, MAX_RESULT_SNIPPET),
        similarity=hit.similarity,
        fetched_at=payload.get("fetched_at"),
    )


class LocalSemanticIndex:
    """In-memory SemanticIndexProtocol backed by rapidfuzz WRatio scoring."""

    def __init__(self, *, score_cutoff: float = 40.0) -> None:
        self._entries: dict[str, SemanticEntry] = {}
        self._score_cutoff = score_cutoff

    def __len__(self) -> int:
        return len(self._entries)

    async def index(self, entry: SemanticEntry) -> None:
        self._entries[entry.key] = entry

    async def remove(self, key: str) -> None:
        self._entries.pop(key, None)

    async def search(
        self, query: str, *, domain: str | None = None, limit: int = 10
    ) -> list[SearchHit]:
        query = query.strip()
        if not query:
            return []

        corpus = {
            key: f"{entry.prompt_text}\n{json.loads(entry.compact_payload).get('snippet', '')}"
            for key, entry in self._entries.items()
            if domain is None or entry.domain == domain
        }
        results = process.extract(
            query,
            corpus,
            scorer=fuzz.WRatio,
            processor=utils.default_process,
            limit=limit,
            score_cutoff=self._score_cutoff,
        )
        return [
            SearchHit(
                id=key,
                similarity=round(score / 100, 2),
                stored_payload=self._entries[key].compact_payload,
            )
            for _text, score, key in results
        ]
