"""Shared test fixtures for the sitecache test suite."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime

import aiosqlite
import pytest

from sitecache.config import StoreSettings
from sitecache.hashing import url_key
from sitecache.kv import KeyValueStore
from sitecache.models.store import PageContent, PageRecord
from sitecache.store import ContentStore


@pytest.fixture()
async def kv() -> AsyncIterator[KeyValueStore]:
    """Key-value engine over a fresh in-memory database."""
    async with aiosqlite.connect(":memory:") as db:
        engine = KeyValueStore(db)
        await engine.init_db()
        yield engine


@pytest.fixture()
def store_settings() -> StoreSettings:
    return StoreSettings(db_path=":memory:", lease_seconds=5)


@pytest.fixture()
def store(kv: KeyValueStore, store_settings: StoreSettings) -> ContentStore:
    return ContentStore(kv, store_settings)


@pytest.fixture()
def make_record() -> Callable[..., PageRecord]:
    """Factory for PageRecords with sensible defaults."""

    def _make(url: str, *, domain: str = "example.com", indexed_at: datetime | None = None):
        return PageRecord(
            url=url,
            key=url_key(url),
            domain=domain,
            display_name=url.rstrip("/").rsplit("/", 1)[-1],
            indexed_at=indexed_at or datetime.now(UTC),
        )

    return _make


@pytest.fixture()
def make_content() -> Callable[..., PageContent]:
    """Factory for PageContent with sensible defaults."""

    def _make(url: str, text: str = "# Title\n\nBody text.", display_name: str = "Title"):
        return PageContent(
            url=url,
            display_name=display_name,
            normalized_text=text,
            fetched_at=datetime.now(UTC),
            length=len(text),
        )

    return _make
