from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

RunStatus = Literal["idle", "parsing", "indexing", "scraping", "completed", "error"]


class PageRecord(BaseModel):
    """Indexed page. Identity is ``key``; only ``processed``/``error`` change after creation."""

    url: str
    key: str
    domain: str
    display_name: str
    priority: float | None = None
    last_modified: str | None = None
    change_frequency: str | None = None
    indexed_at: datetime
    processed: bool = False
    error: str | None = None


class Progress(BaseModel):
    total: int = 0
    completed: int = 0
    failed: int = 0


class ProcessingStatus(BaseModel):
    """Live progress cursor for a domain. Expires; not an audit log."""

    domain: str
    status: RunStatus = "idle"
    current_url: str | None = None
    progress: Progress = Field(default_factory=Progress)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None


class PageContent(BaseModel):
    """Normalized page text, produced once per successful fetch."""

    url: str
    display_name: str
    normalized_text: str
    fetched_at: datetime
    length: int


class PromptCacheEntry(BaseModel):
    prompt: str
    cached_at: datetime


class ResponseCacheEntry(BaseModel):
    prompt: str
    response: str
    cached_at: datetime
