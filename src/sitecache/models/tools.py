"""Input models for the operation surface.

Handlers validate raw arguments through these before touching the store.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from sitecache.sitemap import validate_sitemap_url

_MAX_URL_LENGTH = 2048


def _check_http_url(value: str) -> str:
    value = value.strip()
    if len(value) > _MAX_URL_LENGTH:
        raise ValueError(f"URL exceeds {_MAX_URL_LENGTH} characters")
    if not value.startswith(("http://", "https://")):
        raise ValueError("URL must start with http:// or https://")
    return value


class RunPipelineInput(BaseModel):
    sitemap_url: str
    max_urls: int | None = Field(default=None, ge=1, le=1000)
    scrape_delay: float | None = Field(default=None, ge=0, le=60)
    ai_delay: float | None = Field(default=None, ge=0, le=60)
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0, le=2)

    @field_validator("sitemap_url")
    @classmethod
    def _valid_sitemap(cls, value: str) -> str:
        value = value.strip()
        error = validate_sitemap_url(value)
        if error:
            raise ValueError(error)
        return value


class IndexSitemapInput(BaseModel):
    """Either a sitemap URL or a bare domain to auto-discover."""

    target: str = Field(min_length=1, max_length=_MAX_URL_LENGTH)
    max_urls: int | None = Field(default=None, ge=1, le=10_000)
    skip_existing: bool = True

    @field_validator("target")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("target must not be blank")
        return value

    @property
    def is_sitemap_url(self) -> bool:
        return self.target.startswith(("http://", "https://"))


class DomainInput(BaseModel):
    domain: str = Field(min_length=1, max_length=253)

    @field_validator("domain")
    @classmethod
    def _normalise(cls, value: str) -> str:
        value = value.strip().lower()
        if not value or "/" in value or " " in value:
            raise ValueError("domain must be a bare hostname such as example.com")
        return value.removeprefix("www.")


class ListPagesInput(DomainInput):
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


class UrlInput(BaseModel):
    url: str

    @field_validator("url")
    @classmethod
    def _valid_url(cls, value: str) -> str:
        return _check_http_url(value)


class SearchInput(BaseModel):
    query: str = Field(min_length=1, max_length=500)
    domain: str | None = None
    limit: int = Field(default=10, ge=1, le=50)
