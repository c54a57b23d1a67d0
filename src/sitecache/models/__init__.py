from __future__ import annotations

from sitecache.models.fetch import FetchResult, NormalizedPage
from sitecache.models.pipeline import (
    AIStageResult,
    AIStageSummary,
    IndexingResult,
    PipelineResult,
    ProcessResult,
    ScrapeStageResult,
)
from sitecache.models.search import SearchHit, SearchResult, SemanticEntry
from sitecache.models.sitemap import PageDescriptor, SitemapMeta
from sitecache.models.store import (
    PageContent,
    PageRecord,
    ProcessingStatus,
    Progress,
    PromptCacheEntry,
    ResponseCacheEntry,
)

__all__ = [
    # sitemap
    "PageDescriptor",
    "SitemapMeta",
    # store
    "PageRecord",
    "PageContent",
    "ProcessingStatus",
    "Progress",
    "PromptCacheEntry",
    "ResponseCacheEntry",
    # fetch
    "FetchResult",
    "NormalizedPage",
    # pipeline
    "IndexingResult",
    "ScrapeStageResult",
    "ProcessResult",
    "AIStageResult",
    "AIStageSummary",
    "PipelineResult",
    # search
    "SemanticEntry",
    "SearchHit",
    "SearchResult",
]
