"""Non-blocking run locks guarding full pipeline runs and document reprocessing."""
from __future__ import annotations

import logging
import os
import socket
import uuid
from datetime import datetime, timedelta, timezone

import aiosqlite

from feature_engine import config

logger = logging.getLogger("feature_engine.db")


def _holder_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class InProcessRunLock:
    """Run lock for a single process with no shared database."""

    def __init__(self) -> None:
        self._held: set[str] = set()

    async def try_acquire(self, key: str) -> bool:
        # No await between check and add, so this is atomic on the event loop.
        if key in self._held:
            return False
        self._held.add(key)
        return True

    async def release(self, key: str) -> None:
        self._held.discard(key)


class SqliteRunLock:
    """Lock row in ``pipeline_locks``; the primary key makes acquisition exclusive.

    A row survives the process that wrote it, so rows older than
    ``ttl_seconds`` are treated as left behind by a crashed run and replaced.
    """

    def __init__(self, db: aiosqlite.Connection, ttl_seconds: int = config.RUN_LOCK_TTL_SECONDS):
        self.db = db
        self.ttl_seconds = ttl_seconds
        self.holder = _holder_id()

    async def try_acquire(self, key: str) -> bool:
        now = datetime.now(timezone.utc)
        cutoff = (now - timedelta(seconds=self.ttl_seconds)).isoformat()
        async with self.db.execute(
            "SELECT holder, acquired_at FROM pipeline_locks WHERE lock_key = ? AND acquired_at < ?",
            (key, cutoff),
        ) as cur:
            expired = await cur.fetchone()
        if expired:
            logger.warning(
                "Run lock '%s' held by %s since %s has expired; taking it over",
                key, expired["holder"], expired["acquired_at"],
            )
            await self.db.execute(
                "DELETE FROM pipeline_locks WHERE lock_key = ? AND acquired_at < ?",
                (key, cutoff),
            )
        cursor = await self.db.execute(
            "INSERT OR IGNORE INTO pipeline_locks (lock_key, holder, acquired_at) VALUES (?, ?, ?)",
            (key, self.holder, now.isoformat()),
        )
        await self.db.commit()
        acquired = cursor.rowcount == 1
        if not acquired:
            logger.info("Run lock '%s' is already held", key)
        return acquired

    async def release(self, key: str) -> None:
        # Only our own row; an expired lock may since have been taken over.
        await self.db.execute(
            "DELETE FROM pipeline_locks WHERE lock_key = ? AND holder = ?",
            (key, self.holder),
        )
        await self.db.commit()
