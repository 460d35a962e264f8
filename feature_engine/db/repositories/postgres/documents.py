"""PostgreSQL implementation of DocumentRepository."""
from __future__ import annotations

from datetime import datetime, timezone

import asyncpg


class PostgresDocumentRepository:
    """PostgreSQL-backed document storage."""

    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def upsert(self, doc_data: dict) -> None:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            """INSERT INTO documents (id, filename, file_hash, version, created_at, updated_at)
               VALUES ($1, $2, $3, $4, $5, $6)
               ON CONFLICT(id) DO UPDATE SET
                   filename=EXCLUDED.filename,
                   file_hash=EXCLUDED.file_hash,
                   updated_at=EXCLUDED.updated_at""",
            doc_data["id"],
            doc_data.get("filename", ""),
            doc_data.get("fileHash", ""),
            doc_data.get("version", 1),
            now,
            now,
        )

    async def get_by_id(self, document_id: str) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM documents WHERE id = $1", document_id)
        return dict(row) if row else None

    async def increment_version(self, document_id: str) -> int:
        now = datetime.now(timezone.utc).isoformat()
        version = await self.db.fetchval(
            "UPDATE documents SET version = version + 1, updated_at = $1 WHERE id = $2 RETURNING version",
            now, document_id,
        )
        return int(version or 0)
