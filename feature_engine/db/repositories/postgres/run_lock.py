"""PostgreSQL advisory-lock implementation of the run lock."""
from __future__ import annotations

import logging
from typing import Any

import asyncpg

logger = logging.getLogger("feature_engine.db")


class PostgresRunLock:
    """Session-level ``pg_try_advisory_lock`` held on a dedicated pooled connection.

    Advisory locks belong to the database session, so the connection that took
    the lock is kept out of the pool until ``release``.
    """

    def __init__(self, db: asyncpg.Pool):
        self.db = db
        self._connections: dict[str, Any] = {}

    async def try_acquire(self, key: str) -> bool:
        if key in self._connections:
            return False
        conn = await self.db.acquire()
        try:
            acquired = await conn.fetchval("SELECT pg_try_advisory_lock(hashtext($1))", key)
        except Exception:
            await self.db.release(conn)
            raise
        if not acquired:
            await self.db.release(conn)
            logger.info("Run lock '%s' is already held", key)
            return False
        self._connections[key] = conn
        return True

    async def release(self, key: str) -> None:
        conn = self._connections.pop(key, None)
        if conn is None:
            return
        try:
            await conn.fetchval("SELECT pg_advisory_unlock(hashtext($1))", key)
        finally:
            await self.db.release(conn)
