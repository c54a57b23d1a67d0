"""Unit tests for sitecache.retry."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from sitecache.errors import FetchError, FormatError
from sitecache.retry import exponential_backoff, is_transient, with_retries


class TestExponentialBackoff:
    def test_doubles_from_base(self) -> None:
        delay = exponential_backoff(1.0)
        assert [delay(n) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self) -> None:
        delay = exponential_backoff(10.0, max_seconds=25.0)
        assert delay(3) == 25.0

    def test_negative_base_rejected(self) -> None:
        with pytest.raises(ValueError):
            exponential_backoff(-1.0)


class TestIsTransient:
    def test_recoverable_errors_are_transient(self) -> None:
        assert is_transient(FetchError("HTTP 503"))

    def test_format_errors_are_not(self) -> None:
        assert not is_transient(FormatError("not a sitemap"))

    def test_foreign_exceptions_are_not(self) -> None:
        assert not is_transient(RuntimeError("boom"))


class TestWithRetries:
    async def test_first_success_needs_no_sleep(self) -> None:
        operation = AsyncMock(return_value="ok")
        sleep = AsyncMock()
        result = await with_retries(
            operation, attempts=3, backoff=exponential_backoff(1.0), sleep=sleep
        )
        assert result == "ok"
        assert operation.await_count == 1
        sleep.assert_not_awaited()

    async def test_retries_transient_then_succeeds(self) -> None:
        operation = AsyncMock(side_effect=[FetchError("HTTP 503"), FetchError("HTTP 503"), "ok"])
        sleep = AsyncMock()
        result = await with_retries(
            operation, attempts=3, backoff=exponential_backoff(1.0), sleep=sleep
        )
        assert result == "ok"
        assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]

    async def test_reraises_last_error_after_exhaustion(self) -> None:
        errors = [FetchError("first"), FetchError("second"), FetchError("third")]
        operation = AsyncMock(side_effect=errors)
        with pytest.raises(FetchError, match="third"):
            await with_retries(
                operation, attempts=3, backoff=exponential_backoff(0.5), sleep=AsyncMock()
            )
        assert operation.await_count == 3

    async def test_non_transient_fails_immediately(self) -> None:
        operation = AsyncMock(side_effect=FormatError("bad xml"))
        sleep = AsyncMock()
        with pytest.raises(FormatError):
            await with_retries(operation, attempts=5, backoff=exponential_backoff(1.0), sleep=sleep)
        assert operation.await_count == 1
        sleep.assert_not_awaited()

    async def test_default_sleep_is_asyncio_sleep(self) -> None:
        operation = AsyncMock(side_effect=[FetchError("HTTP 502"), "ok"])
        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            assert await with_retries(operation, attempts=2, backoff=lambda n: 7.0) == "ok"
        mock_sleep.assert_awaited_once_with(7.0)

    async def test_attempts_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            await with_retries(AsyncMock(), attempts=0, backoff=exponential_backoff(1.0))
