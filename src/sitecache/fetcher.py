"""Page retrieval: an ordered chain of interchangeable fetch strategies.

Each strategy implements ``attempt(url) -> NormalizedPage`` and raises a
``SiteCacheError`` on failure. The chain returns the first success. Direct
HTTP fetching is always the last link, whatever else is enabled.

All strategies share one httpx.AsyncClient created at startup; the lifespan
owns its lifecycle.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import httpx
import structlog

from sitecache.errors import ConfigurationError, FetchError, FetchTimeoutError, SiteCacheError
from sitecache.models.fetch import FetchResult, NormalizedPage
from sitecache.normalizer import UNTITLED, collapse_blank_lines, normalize
from sitecache.retry import exponential_backoff, with_retries

if TYPE_CHECKING:
    from sitecache.config import FetcherSettings

log = structlog.get_logger()

_HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


def build_http_client(settings: FetcherSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(settings.timeout_seconds),
        headers={"User-Agent": settings.user_agent},
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


async def _get_text(client: httpx.AsyncClient, url: str, **kwargs: object) -> str:
    """GET *url* and return the body, mapping transport failures to FetchError."""
    try:
        response = await client.get(url, **kwargs)  # type: ignore[arg-type]
    except httpx.TimeoutException as exc:
        raise FetchTimeoutError(f"Timed out fetching {url}") from exc
    except httpx.HTTPError as exc:
        raise FetchError(f"Network error fetching {url}: {exc}") from exc

    if not response.is_success:
        raise FetchError(f"HTTP {response.status_code} fetching {url}")
    return response.text


class FetchStrategy(Protocol):
    name: str

    async def attempt(self, url: str) -> NormalizedPage: ...


class ReaderServiceStrategy:
    """Remote document-to-text service (``https://r.jina.ai/<url>`` style)."""

    name = "reader"

    def __init__(self, client: httpx.AsyncClient, settings: FetcherSettings) -> None:
        self._client = client
        self._settings = settings

    async def attempt(self, url: str) -> NormalizedPage:
        headers = {"Accept": "text/plain"}
        if self._settings.reader_api_key:
            headers["Authorization"] = f"Bearer {self._settings.reader_api_key}"

        text = await _get_text(self._client, f"{self._settings.reader_url}{url}", headers=headers)
        text = collapse_blank_lines(text)
        if not text:
            raise FetchError(f"Reader service returned an empty body for {url}")

        # The service leads with "Title: <page title>" when it finds one.
        first_line = text.split("\n", 1)[0]
        display_name = UNTITLED
        if first_line.lower().startswith("title:"):
            display_name = first_line[len("title:") :].strip() or UNTITLED

        return NormalizedPage(normalized_text=text, display_name=display_name)


class BrowserStrategy:
    """Headless Chromium via Playwright, for pages that need scripts to render."""

    name = "browser"

    def __init__(self, settings: FetcherSettings) -> None:
        self._settings = settings

    async def attempt(self, url: str) -> NormalizedPage:
        try:
            from playwright.async_api import Error as PlaywrightError
            from playwright.async_api import TimeoutError as PlaywrightTimeoutError
            from playwright.async_api import async_playwright
        except ImportError as exc:
            raise ConfigurationError(
                "The browser strategy requires Playwright.",
                suggestion="Install the 'browser' extra and run 'playwright install chromium'.",
            ) from exc

        try:
            async with async_playwright() as p:
                browser = await p.chromium.launch(headless=True)
                try:
                    context = await browser.new_context(user_agent=self._settings.user_agent)
                    page = await context.new_page()
                    response = await page.goto(
                        url,
                        timeout=self._settings.timeout_seconds * 1000,
                        wait_until="networkidle",
                    )
                    if response is not None and not response.ok:
                        raise FetchError(f"HTTP {response.status} fetching {url}")
                    html = await page.content()
                finally:
                    await browser.close()
        except PlaywrightTimeoutError as exc:
            raise FetchTimeoutError(f"Timed out rendering {url}") from exc
        except PlaywrightError as exc:
            raise FetchError(f"Browser error rendering {url}: {exc}") from exc

        return normalize(
            html,
            url,
            clean=self._settings.clean_html,
            include_metadata=self._settings.include_metadata,
        )


class DirectFetchStrategy:
    """Plain GET plus local normalization, retried with exponential backoff."""

    name = "direct"

    def __init__(self, client: httpx.AsyncClient, settings: FetcherSettings) -> None:
        self._client = client
        self._settings = settings

    async def attempt(self, url: str) -> NormalizedPage:
        html = await with_retries(
            lambda: _get_text(self._client, url, headers={"Accept": _HTML_ACCEPT}),
            attempts=self._settings.retries,
            backoff=exponential_backoff(self._settings.backoff_base_seconds),
        )
        return normalize(
            html,
            url,
            clean=self._settings.clean_html,
            include_metadata=self._settings.include_metadata,
        )


class FetchStrategyChain:
    """Tries each strategy in order and reports the first success."""

    def __init__(self, strategies: list[FetchStrategy]) -> None:
        self._strategies = strategies

    @property
    def strategy_names(self) -> list[str]:
        return [strategy.name for strategy in self._strategies]

    async def fetch(self, url: str) -> FetchResult:
        last_error = "No fetch strategy configured"
        for strategy in self._strategies:
            try:
                page = await strategy.attempt(url)
            except SiteCacheError as exc:
                log.warning("strategy_failed", url=url, strategy=strategy.name, error=exc.message)
                last_error = exc.message
                continue

            log.info(
                "fetch_complete",
                url=url,
                strategy=strategy.name,
                content_length=len(page.normalized_text),
            )
            return FetchResult(
                success=True,
                url=url,
                display_name=page.display_name,
                normalized_text=page.normalized_text,
                length=len(page.normalized_text),
                method_used=strategy.name,
            )

        return FetchResult(success=False, url=url, error=last_error)


def build_fetch_chain(client: httpx.AsyncClient, settings: FetcherSettings) -> FetchStrategyChain:
    strategies: list[FetchStrategy] = []
    if settings.reader_enabled:
        strategies.append(ReaderServiceStrategy(client, settings))
    if settings.browser_enabled:
        strategies.append(BrowserStrategy(settings))
    strategies.append(DirectFetchStrategy(client, settings))
    return FetchStrategyChain(strategies)
