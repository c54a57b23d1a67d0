"""Application state container.

AppState is created once at server startup (inside the FastMCP lifespan context
manager) and injected into every tool handler via the MCP Context object.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from sitecache.completion import build_openai_completion

if TYPE_CHECKING:
    import httpx

    from sitecache.config import Settings
    from sitecache.indexer import UrlIndexer
    from sitecache.kv import KeyValueStore
    from sitecache.pipeline import Pipeline
    from sitecache.processor import CacheAwareProcessor
    from sitecache.protocols import CompletionFn, SemanticIndexProtocol
    from sitecache.store import ContentStore


@dataclass
class AppState:
    """Holds all shared runtime state. Passed to every tool handler."""

    settings: Settings
    kv: KeyValueStore
    store: ContentStore
    indexer: UrlIndexer
    processor: CacheAwareProcessor
    pipeline: Pipeline
    http_client: httpx.AsyncClient | None = None
    semantic_index: SemanticIndexProtocol | None = None

    # Injected completion backend; when None one is built from settings.ai.
    completion: CompletionFn | None = None

    def completion_for(
        self, *, model: str | None = None, temperature: float | None = None
    ) -> CompletionFn:
        """Completion function for a request. Raises ConfigurationError without credentials."""
        if self.completion is not None:
            return self.completion
        return build_openai_completion(self.settings.ai, model=model, temperature=temperature)
