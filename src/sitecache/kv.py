"""SQLite key-value engine with per-key expiry and sorted sets.

One flat keyspace: plain string values live in ``kv`` (optionally with an
``expires_at``), ordered sets live in ``zset``. Expired keys are invisible to
reads and are physically removed by ``cleanup_expired``.

Unlike a read-through documentation cache, this store is also the work queue
and progress ledger of the pipeline, so ``aiosqlite.Error`` is not swallowed
here: callers decide whether a failed write is a per-item error or fatal.
"""

from __future__ import annotations

import secrets
from datetime import UTC, datetime, timedelta

import aiosqlite
import structlog

log = structlog.get_logger()

_CREATE_KV_TABLE = """
CREATE TABLE IF NOT EXISTS kv (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    expires_at TEXT
)
"""

_CREATE_ZSET_TABLE = """
CREATE TABLE IF NOT EXISTS zset (
    key    TEXT NOT NULL,
    member TEXT NOT NULL,
    score  REAL NOT NULL,
    PRIMARY KEY (key, member)
)
"""

_CREATE_KV_INDEX = "CREATE INDEX IF NOT EXISTS idx_kv_expires ON kv(expires_at)"
_CREATE_ZSET_INDEX = "CREATE INDEX IF NOT EXISTS idx_zset_score ON zset(key, score)"

# Stays well under SQLite's bound-parameter limit.
_DELETE_CHUNK = 500


def _now() -> str:
    return datetime.now(UTC).isoformat()


class KeyValueStore:
    """aiosqlite-backed key-value store. The connection is owned by the caller."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_KV_TABLE)
        await self._db.execute(_CREATE_ZSET_TABLE)
        await self._db.execute(_CREATE_KV_INDEX)
        await self._db.execute(_CREATE_ZSET_INDEX)
        await self._db.commit()

    # ------------------------------------------------------------------
    # Plain values
    # ------------------------------------------------------------------

    async def get(self, key: str) -> str | None:
        cursor = await self._db.execute(
            "SELECT value FROM kv WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)",
            (key, _now()),
        )
        row = await cursor.fetchone()
        return row[0] if row is not None else None

    async def set(self, key: str, value: str, *, ttl: timedelta | None = None) -> None:
        """Overwrite *key*. A ``None`` ttl means the key never expires."""
        expires_at = (datetime.now(UTC) + ttl).isoformat() if ttl is not None else None
        await self._db.execute(
            "INSERT OR REPLACE INTO kv (key, value, expires_at) VALUES (?, ?, ?)",
            (key, value, expires_at),
        )
        await self._db.commit()

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def delete(self, *keys: str) -> int:
        """Delete plain and sorted-set keys alike. Returns the number of rows removed."""
        removed = 0
        for start in range(0, len(keys), _DELETE_CHUNK):
            chunk = keys[start : start + _DELETE_CHUNK]
            placeholders = ", ".join("?" for _ in chunk)
            cursor = await self._db.execute(f"DELETE FROM kv WHERE key IN ({placeholders})", chunk)
            removed += cursor.rowcount
            cursor = await self._db.execute(
                f"DELETE FROM zset WHERE key IN ({placeholders})", chunk
            )
            removed += cursor.rowcount
        if keys:
            await self._db.commit()
        return removed

    # ------------------------------------------------------------------
    # Sorted sets
    # ------------------------------------------------------------------

    async def zadd_nx(self, key: str, member: str, score: float) -> bool:
        """Add *member* unless present. An existing member keeps its original score."""
        cursor = await self._db.execute(
            "INSERT OR IGNORE INTO zset (key, member, score) VALUES (?, ?, ?)",
            (key, member, score),
        )
        await self._db.commit()
        return cursor.rowcount == 1

    async def zrange(self, key: str, offset: int = 0, limit: int | None = None) -> list[str]:
        """Members in ascending score order (insertion order for time scores)."""
        cursor = await self._db.execute(
            "SELECT member FROM zset WHERE key = ? ORDER BY score, rowid LIMIT ? OFFSET ?",
            (key, -1 if limit is None else limit, offset),
        )
        return [row[0] for row in await cursor.fetchall()]

    async def zcard(self, key: str) -> int:
        cursor = await self._db.execute("SELECT COUNT(*) FROM zset WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return row[0] if row is not None else 0

    # ------------------------------------------------------------------
    # Keyspace scans
    # ------------------------------------------------------------------

    async def scan(self, pattern: str) -> list[str]:
        """Every live key matching a glob *pattern*, e.g. ``"prompt:*"``.

        Walks the whole keyspace: O(total keys), not O(matches).
        """
        cursor = await self._db.execute(
            "SELECT key FROM kv WHERE key GLOB ? AND (expires_at IS NULL OR expires_at > ?) "
            "UNION SELECT DISTINCT key FROM zset WHERE key GLOB ?",
            (pattern, _now(), pattern),
        )
        return [row[0] for row in await cursor.fetchall()]

    async def count(self, pattern: str) -> int:
        return len(await self.scan(pattern))

    # ------------------------------------------------------------------
    # Leases
    # ------------------------------------------------------------------

    async def acquire_lease(self, key: str, ttl: timedelta) -> str | None:
        """Take an expiring lease on *key*. Returns a release token, or None if held.

        The insert-or-take-over-expired step is a single statement, so two
        callers sharing the database cannot both win.
        """
        token = secrets.token_hex(8)
        now = datetime.now(UTC)
        cursor = await self._db.execute(
            "INSERT INTO kv (key, value, expires_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
            "expires_at = excluded.expires_at "
            "WHERE kv.expires_at IS NOT NULL AND kv.expires_at <= ?",
            (key, token, (now + ttl).isoformat(), now.isoformat()),
        )
        await self._db.commit()
        return token if cursor.rowcount == 1 else None

    async def release_lease(self, key: str, token: str) -> None:
        """Release a lease, but only if *token* still owns it."""
        await self._db.execute("DELETE FROM kv WHERE key = ? AND value = ?", (key, token))
        await self._db.commit()

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup_expired(self) -> int:
        """Physically delete expired keys. Non-fatal on failure."""
        try:
            cursor = await self._db.execute(
                "DELETE FROM kv WHERE expires_at IS NOT NULL AND expires_at <= ?", (_now(),)
            )
            deleted = cursor.rowcount
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("store_cleanup_error", exc_info=True)
            return 0
        log.info("store_cleanup_complete", deleted=deleted)
        return deleted
