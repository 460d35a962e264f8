"""SQLite implementation of DocumentRepository."""
from __future__ import annotations

from datetime import datetime, timezone

import aiosqlite


class SqliteDocumentRepository:
    """Minimal document storage: the engine only reads documents and bumps their version."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def upsert(self, doc_data: dict) -> None:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            """INSERT INTO documents (id, filename, file_hash, version, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   filename=excluded.filename,
                   file_hash=excluded.file_hash,
                   updated_at=excluded.updated_at""",
            (
                doc_data["id"],
                doc_data.get("filename", ""),
                doc_data.get("fileHash", ""),
                doc_data.get("version", 1),
                now,
                now,
            ),
        )
        await self.db.commit()

    async def get_by_id(self, document_id: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM documents WHERE id = ?", (document_id,)
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def increment_version(self, document_id: str) -> int:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            "UPDATE documents SET version = version + 1, updated_at = ? WHERE id = ?",
            (now, document_id),
        )
        await self.db.commit()
        async with self.db.execute(
            "SELECT version FROM documents WHERE id = ?", (document_id,)
        ) as cur:
            row = await cur.fetchone()
            return int(row[0]) if row else 0
