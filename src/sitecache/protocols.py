"""Protocol interfaces for swappable components.

The processor and pipeline reference these protocols, not the concrete
implementations, so tests can inject lightweight fakes and deployments can
swap the completion or semantic-search backend without touching the pipeline.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from sitecache.models.fetch import FetchResult
    from sitecache.models.search import SearchHit, SemanticEntry

# Renders a prompt to response text. Opaque to the pipeline.
CompletionFn = Callable[[str], Awaitable[str]]


class FetchChainProtocol(Protocol):
    """Interface for page retrieval."""

    async def fetch(self, url: str) -> FetchResult: ...


class SemanticIndexProtocol(Protocol):
    """Interface for the similarity-search side index."""

    async def index(self, entry: SemanticEntry) -> None: ...

    async def remove(self, key: str) -> None: ...

    async def search(
        self, query: str, *, domain: str | None = None, limit: int = 10
    ) -> list[SearchHit]: ...
