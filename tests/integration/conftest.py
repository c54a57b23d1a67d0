"""Integration test fixtures.

Provides a fully wired AppState with in-memory SQLite, a real httpx client
(mocked per test with respx), the local semantic index and a fake completion
backend.
"""

from __future__ import annotations

import json
import os
import subprocess
import sys
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock

import aiosqlite
import httpx
import pytest

from sitecache.config import Settings
from sitecache.fetcher import build_fetch_chain
from sitecache.indexer import UrlIndexer
from sitecache.kv import KeyValueStore
from sitecache.pipeline import Pipeline
from sitecache.processor import CacheAwareProcessor
from sitecache.semantic import LocalSemanticIndex
from sitecache.sitemap import SitemapResolver
from sitecache.state import AppState
from sitecache.store import ContentStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from pathlib import Path


def _run_mcp_exchange(env: dict[str, str], messages: list[dict]) -> list[dict]:
    proc = subprocess.Popen(
        [sys.executable, "-m", "sitecache.server"],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        env=env,
    )

    assert proc.stdin is not None
    assert proc.stdout is not None
    assert proc.stderr is not None

    for message in messages:
        proc.stdin.write(json.dumps(message) + "\n")
    proc.stdin.flush()

    # Keep stdin open until every request is answered: closing it early tears
    # down the write stream and drops in-flight tool responses.
    expected_ids = frozenset(msg["id"] for msg in messages if "id" in msg)
    responses: list[dict] = []
    seen_ids: set = set()
    while seen_ids < expected_ids:
        line = proc.stdout.readline()
        if not line:
            break
        stripped = line.strip()
        if stripped:
            resp = json.loads(stripped)
            responses.append(resp)
            if resp.get("id") is not None:
                seen_ids.add(resp["id"])

    proc.stdin.close()
    proc.stderr.read()
    proc.wait(timeout=10)
    proc.stdout.close()
    proc.stderr.close()
    return responses


@pytest.fixture()
def subprocess_env(tmp_path: Path) -> dict[str, str]:
    """Baseline env for subprocess-based MCP tests: isolated database, no AI key."""
    env = os.environ.copy()
    env["SITECACHE__STORE__DB_PATH"] = str(tmp_path / "store.db")
    env["SITECACHE__LOGGING__LEVEL"] = "WARNING"
    env.pop("SITECACHE__AI__API_KEY", None)
    return env


@pytest.fixture()
def mcp_exchange() -> Callable[[dict[str, str], list[dict]], list[dict]]:
    """Run a JSON-RPC exchange against `python -m sitecache.server` over stdio."""
    return _run_mcp_exchange


@pytest.fixture()
def completion() -> AsyncMock:
    return AsyncMock(return_value="Topics: testing.")


@pytest.fixture()
async def app_state(completion: AsyncMock) -> AsyncIterator[AppState]:
    """Full AppState wired as the server lifespan does, with zero pipeline delays."""
    settings = Settings(
        pipeline={"scrape_delay_seconds": 0, "ai_delay_seconds": 0},
        fetcher={"retries": 1},
    )
    async with aiosqlite.connect(":memory:") as db:
        kv = KeyValueStore(db)
        await kv.init_db()
        store = ContentStore(kv, settings.store)

        async with httpx.AsyncClient() as client:
            semantic_index = LocalSemanticIndex()
            processor = CacheAwareProcessor(
                store, build_fetch_chain(client, settings.fetcher), semantic_index
            )
            indexer = UrlIndexer(store, SitemapResolver(client, settings.sitemap))
            yield AppState(
                settings=settings,
                kv=kv,
                store=store,
                indexer=indexer,
                processor=processor,
                pipeline=Pipeline(store, indexer, processor, settings.pipeline),
                http_client=client,
                semantic_index=semantic_index,
                completion=completion,
            )
