"""Sitemap resolution and discovery.

``SitemapResolver.resolve`` expands sitemap indexes depth-first into a flat
list of page descriptors. A broken child sitemap is logged and skipped; a
nesting deeper than ``max_depth`` aborts the whole resolution.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from urllib.parse import urlparse

import httpx
import structlog
from defusedxml import DefusedXmlException
from defusedxml.ElementTree import ParseError, fromstring

from sitecache.errors import (
    DepthExceededError,
    FetchError,
    FetchTimeoutError,
    FormatError,
    SiteCacheError,
)
from sitecache.models.sitemap import PageDescriptor

if TYPE_CHECKING:
    from xml.etree.ElementTree import Element

    from sitecache.config import SitemapSettings

log = structlog.get_logger()

COMMON_SITEMAP_PATHS = (
    "/sitemap.xml",
    "/sitemap_index.xml",
    "/sitemap-index.xml",
    "/sitemap1.xml",
)


@dataclass
class ParsedSitemap:
    """One fetched sitemap document: either page entries or child sitemap URLs."""

    urls: list[PageDescriptor] = field(default_factory=list)
    child_sitemaps: list[str] = field(default_factory=list)

    @property
    def is_index(self) -> bool:
        return bool(self.child_sitemaps)


def _local_name(tag: str) -> str:
    """Strip the XML namespace: ``{http://...}urlset`` → ``urlset``."""
    return tag.rsplit("}", 1)[-1]


def _child_text(element: Element, name: str) -> str | None:
    for child in element:
        if _local_name(child.tag) == name:
            text = (child.text or "").strip()
            return text or None
    return None


def _parse_priority(raw: str | None) -> float | None:
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def parse_sitemap_xml(xml_text: str) -> ParsedSitemap:
    """Parse a ``urlset`` or ``sitemapindex`` document. Anything else is a FormatError."""
    try:
        root = fromstring(xml_text)
    except (ParseError, DefusedXmlException) as exc:
        raise FormatError(f"Sitemap is not well-formed XML: {exc}") from exc

    kind = _local_name(root.tag)
    if kind == "sitemapindex":
        children = [
            loc
            for element in root
            if _local_name(element.tag) == "sitemap" and (loc := _child_text(element, "loc"))
        ]
        return ParsedSitemap(child_sitemaps=children)

    if kind == "urlset":
        urls = [
            PageDescriptor(
                loc=loc,
                lastmod=_child_text(element, "lastmod"),
                changefreq=_child_text(element, "changefreq"),
                priority=_parse_priority(_child_text(element, "priority")),
            )
            for element in root
            if _local_name(element.tag) == "url" and (loc := _child_text(element, "loc"))
        ]
        return ParsedSitemap(urls=urls)

    raise FormatError("Invalid sitemap format: no urlset or sitemapindex found")


def site_origin(domain: str) -> str:
    """``example.com`` or ``https://example.com/x`` → ``https://example.com``."""
    base_url = domain if domain.startswith("http") else f"https://{domain}"
    parsed = urlparse(base_url)
    return f"{parsed.scheme}://{parsed.netloc}"


def common_sitemap_urls(domain: str) -> list[str]:
    origin = site_origin(domain)
    return [f"{origin}{path}" for path in COMMON_SITEMAP_PATHS]


def validate_sitemap_url(url: str) -> str | None:
    """Return a human-readable problem with *url*, or None when it looks like a sitemap."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "Invalid URL format"
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return "Sitemap URL must use HTTP or HTTPS protocol"
    if not url.endswith(".xml") and "sitemap" not in url:
        return "URL should point to a sitemap file (typically .xml)"
    return None


def parse_robots_sitemaps(robots_text: str) -> list[str]:
    """``Sitemap:`` directives in file order. The key is case-insensitive."""
    sitemaps: list[str] = []
    for line in robots_text.splitlines():
        stripped = line.strip()
        if stripped.lower().startswith("sitemap:"):
            url = stripped[len("sitemap:") :].strip()
            if url:
                sitemaps.append(url)
    return sitemaps


class SitemapResolver:
    """Fetches sitemaps over a shared httpx client. No retries at this layer."""

    def __init__(self, client: httpx.AsyncClient, settings: SitemapSettings) -> None:
        self._client = client
        self._settings = settings

    async def _get(self, url: str) -> httpx.Response:
        try:
            response = await self._client.get(
                url, headers={"User-Agent": self._settings.user_agent}
            )
        except httpx.TimeoutException as exc:
            raise FetchTimeoutError(f"Timed out fetching {url}") from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"Network error fetching {url}: {exc}") from exc

        if not response.is_success:
            raise FetchError(f"HTTP {response.status_code} fetching {url}")
        return response

    async def fetch_sitemap(self, sitemap_url: str) -> ParsedSitemap:
        if sitemap_url.endswith(".gz"):
            raise FormatError(
                "Gzip-compressed sitemaps are not supported; provide the uncompressed URL."
            )
        response = await self._get(sitemap_url)
        if "gzip" in response.headers.get("content-type", ""):
            raise FormatError(
                "Gzip-compressed sitemaps are not supported; provide the uncompressed URL."
            )
        parsed = parse_sitemap_xml(response.text)
        log.info(
            "sitemap_fetched",
            url=sitemap_url,
            urls=len(parsed.urls),
            child_sitemaps=len(parsed.child_sitemaps),
        )
        return parsed

    async def resolve(
        self,
        sitemap_url: str,
        max_depth: int | None = None,
        current_depth: int = 0,
    ) -> list[PageDescriptor]:
        """Depth-first flattening of a sitemap (index) into page descriptors.

        Sibling order is preserved. A failing child sitemap is skipped, except
        for DepthExceededError which always propagates.
        """
        if max_depth is None:
            max_depth = self._settings.max_depth
        if current_depth >= max_depth:
            raise DepthExceededError(
                f"Maximum sitemap depth {max_depth} reached at {sitemap_url}"
            )

        parsed = await self.fetch_sitemap(sitemap_url)
        if not parsed.is_index:
            return parsed.urls

        descriptors: list[PageDescriptor] = []
        for child_url in parsed.child_sitemaps:
            try:
                descriptors.extend(await self.resolve(child_url, max_depth, current_depth + 1))
            except DepthExceededError:
                raise
            except SiteCacheError as exc:
                log.warning(
                    "child_sitemap_failed",
                    parent=sitemap_url,
                    url=child_url,
                    code=exc.code,
                    error=exc.message,
                )
        return descriptors

    async def find_sitemaps_in_robots(self, domain: str) -> list[str]:
        """Sitemap URLs announced in robots.txt; empty when it is missing or unreachable."""
        robots_url = f"{site_origin(domain)}/robots.txt"
        try:
            response = await self._get(robots_url)
        except SiteCacheError:
            log.debug("robots_unavailable", url=robots_url)
            return []
        return parse_robots_sitemaps(response.text)

    async def discover(self, domain: str) -> tuple[str, list[PageDescriptor]]:
        """Resolve the first working sitemap for a bare domain.

        Tries robots.txt directives in file order, then the conventional paths.
        """
        candidates = await self.find_sitemaps_in_robots(domain)
        candidates += [url for url in common_sitemap_urls(domain) if url not in candidates]

        for candidate in candidates:
            problem = validate_sitemap_url(candidate)
            if problem is not None:
                log.debug("sitemap_candidate_rejected", url=candidate, reason=problem)
                continue
            try:
                return candidate, await self.resolve(candidate)
            except SiteCacheError as exc:
                log.info("sitemap_candidate_failed", url=candidate, error=exc.message)

        raise FetchError(
            f"Could not find or parse a sitemap for {domain}",
            suggestion="Pass the sitemap URL explicitly.",
            recoverable=False,
        )
