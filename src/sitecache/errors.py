from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    CONFIGURATION_MISSING = "CONFIGURATION_MISSING"
    FETCH_FAILED = "FETCH_FAILED"
    FETCH_TIMEOUT = "FETCH_TIMEOUT"
    INVALID_SITEMAP = "INVALID_SITEMAP"
    SITEMAP_TOO_DEEP = "SITEMAP_TOO_DEEP"
    CONTENT_MISSING = "CONTENT_MISSING"
    COMPLETION_FAILED = "COMPLETION_FAILED"
    DOMAIN_NOT_FOUND = "DOMAIN_NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"


class SiteCacheError(Exception):
    """Base class for every expected failure condition.

    Tool handlers let these propagate; server.py serialises them into the
    MCP error envelope so callers get a code and a suggestion, never a
    stack trace.
    """

    code: ErrorCode = ErrorCode.FETCH_FAILED
    suggestion: str = ""
    recoverable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        suggestion: str | None = None,
        recoverable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if suggestion is not None:
            self.suggestion = suggestion
        if recoverable is not None:
            self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }


class ConfigurationError(SiteCacheError):
    """Required external credentials or settings are missing."""

    code = ErrorCode.CONFIGURATION_MISSING
    suggestion = "Set the missing value in sitecache.yaml or via SITECACHE__* env vars."


class FetchError(SiteCacheError):
    """Non-2xx response or network fault. Transient unless stated otherwise."""

    code = ErrorCode.FETCH_FAILED
    suggestion = "The upstream may be temporarily unavailable. Try again later."
    recoverable = True


class FetchTimeoutError(FetchError):
    code = ErrorCode.FETCH_TIMEOUT
    suggestion = "The upstream did not answer within the request timeout."


class FormatError(SiteCacheError):
    """The sitemap document is neither a urlset nor a sitemapindex."""

    code = ErrorCode.INVALID_SITEMAP
    suggestion = "Provide an uncompressed sitemap in the sitemaps.org XML format."


class DepthExceededError(SiteCacheError):
    code = ErrorCode.SITEMAP_TOO_DEEP
    suggestion = "The sitemap index nests deeper than allowed; point at a child sitemap directly."


class ContentMissingError(SiteCacheError):
    """A prompt was requested before the page content was fetched."""

    code = ErrorCode.CONTENT_MISSING
    suggestion = "Fetch the page content first (scrape stage) before requesting an analysis."


class CompletionError(SiteCacheError):
    code = ErrorCode.COMPLETION_FAILED
    suggestion = "The AI backend call failed; the result was not cached and can be retried."
    recoverable = True


class InvalidInputError(SiteCacheError):
    code = ErrorCode.INVALID_INPUT


class NotFoundError(SiteCacheError):
    code = ErrorCode.DOMAIN_NOT_FOUND
    suggestion = "Index the domain's sitemap first."
