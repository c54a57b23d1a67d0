from __future__ import annotations

from pydantic import BaseModel, Field


class IndexingResult(BaseModel):
    success: bool
    domain: str
    total_urls: int = 0
    indexed_urls: int = 0
    skipped_urls: int = 0
    errors: list[str] = Field(default_factory=list)


class ScrapeSummary(BaseModel):
    success: int = 0
    failed: int = 0


class ScrapeStageResult(BaseModel):
    results: list[dict] = Field(default_factory=list)
    summary: ScrapeSummary = Field(default_factory=ScrapeSummary)


class ProcessResult(BaseModel):
    """Outcome of obtaining the AI analysis for one URL."""

    url: str
    success: bool
    response: str | None = None
    from_cache: bool = False
    processing_ms: int = 0
    error: str | None = None


class AIStageSummary(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    cached: int = 0
    total_ms: int = 0


class AIStageResult(BaseModel):
    results: list[ProcessResult] = Field(default_factory=list)
    summary: AIStageSummary = Field(default_factory=AIStageSummary)


class IndexingCounts(BaseModel):
    total_urls: int = 0
    indexed_urls: int = 0
    skipped_urls: int = 0


class ScrapingCounts(BaseModel):
    attempted: int = 0
    successful: int = 0
    failed: int = 0


class AIProcessingCounts(BaseModel):
    attempted: int = 0
    successful: int = 0
    cached: int = 0
    failed: int = 0


class PipelineStages(BaseModel):
    indexing: IndexingCounts = Field(default_factory=IndexingCounts)
    scraping: ScrapingCounts = Field(default_factory=ScrapingCounts)
    ai_processing: AIProcessingCounts = Field(default_factory=AIProcessingCounts)


class PipelineResult(BaseModel):
    success: bool
    domain: str = ""
    stages: PipelineStages = Field(default_factory=PipelineStages)
    elapsed_seconds: float = 0.0
    errors: list[str] = Field(default_factory=list)
