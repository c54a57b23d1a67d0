from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

SitemapStatus = Literal["pending", "processing", "completed", "failed"]


class PageDescriptor(BaseModel):
    """One ``<url>`` entry of a sitemap urlset. Never persisted directly."""

    loc: str
    lastmod: str | None = None
    changefreq: str | None = None
    priority: float | None = None


class SitemapMeta(BaseModel):
    """Per-domain indexing metadata, overwritten on every indexing run."""

    domain: str
    sitemap_url: str
    total_urls: int
    processed_urls: int = 0
    last_processed: datetime
    status: SitemapStatus = "pending"
