"""SQLite implementation of EvidenceRepository."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Iterable

import aiosqlite

from feature_engine.errors import ValidationError
from feature_engine.models import EVIDENCE_TYPES


def _placeholders(count: int) -> str:
    return ",".join("?" for _ in range(count))


class SqliteEvidenceRepository:
    """SQLite-backed evidence storage. Evidence is never deleted, only marked obsolete."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def insert(self, evidence_data: dict) -> None:
        evidence_type = evidence_data.get("type", "")
        if evidence_type not in EVIDENCE_TYPES:
            raise ValidationError(f"Unknown evidence type: {evidence_type!r}")

        embedding = evidence_data.get("embedding")
        await self.db.execute(
            """INSERT INTO evidence (
                id, document_id, type, content, embedding_json, obsolete, extracted_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                evidence_data["id"],
                evidence_data["documentId"],
                evidence_type,
                evidence_data.get("content", ""),
                json.dumps(embedding) if embedding is not None else None,
                1 if evidence_data.get("obsolete") else 0,
                evidence_data.get("extractedAt") or datetime.now(timezone.utc).isoformat(),
            ),
        )
        await self.db.commit()

    async def get_by_id(self, evidence_id: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM evidence WHERE id = ?", (evidence_id,)
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def get_by_ids(self, evidence_ids: Iterable[str]) -> list[dict]:
        ids = list(evidence_ids)
        if not ids:
            return []
        async with self.db.execute(
            f"SELECT * FROM evidence WHERE id IN ({_placeholders(len(ids))}) ORDER BY id",
            ids,
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def list_unembedded(self) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM evidence WHERE embedding_json IS NULL AND obsolete = 0 ORDER BY id"
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def list_unclustered(self) -> list[dict]:
        """Active, embedded evidence not yet linked to any feature."""
        async with self.db.execute(
            """SELECT e.* FROM evidence e
               WHERE e.obsolete = 0
                 AND e.embedding_json IS NOT NULL
                 AND NOT EXISTS (
                     SELECT 1 FROM feature_evidence fe WHERE fe.evidence_id = e.id
                 )
               ORDER BY e.id"""
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def list_by_document(self, document_id: str, include_obsolete: bool = False) -> list[dict]:
        query = "SELECT * FROM evidence WHERE document_id = ?"
        if not include_obsolete:
            query += " AND obsolete = 0"
        async with self.db.execute(query + " ORDER BY id", (document_id,)) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def list_unlinked_by_document(self, document_id: str) -> list[dict]:
        async with self.db.execute(
            """SELECT e.* FROM evidence e
               WHERE e.document_id = ? AND e.obsolete = 0
                 AND NOT EXISTS (
                     SELECT 1 FROM feature_evidence fe WHERE fe.evidence_id = e.id
                 )
               ORDER BY e.id""",
            (document_id,),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def update_embeddings(self, embeddings: dict[str, list[float]]) -> int:
        if not embeddings:
            return 0
        await self.db.executemany(
            "UPDATE evidence SET embedding_json = ? WHERE id = ?",
            [(json.dumps(vector), evidence_id) for evidence_id, vector in embeddings.items()],
        )
        await self.db.commit()
        return len(embeddings)

    async def mark_obsolete(self, evidence_ids: Iterable[str]) -> int:
        ids = list(evidence_ids)
        if not ids:
            return 0
        cursor = await self.db.execute(
            f"UPDATE evidence SET obsolete = 1 WHERE obsolete = 0 AND id IN ({_placeholders(len(ids))})",
            ids,
        )
        await self.db.commit()
        return cursor.rowcount

    async def get_obsolete_stats(self, document_id: str | None = None) -> dict:
        query = """SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN obsolete = 1 THEN 1 ELSE 0 END), 0) AS obsolete,
                COUNT(DISTINCT CASE WHEN obsolete = 1 THEN document_id END) AS documents_with_obsolete
               FROM evidence"""
        params: tuple = ()
        if document_id is not None:
            query += " WHERE document_id = ?"
            params = (document_id,)
        async with self.db.execute(query, params) as cur:
            row = await cur.fetchone()
        total = int(row["total"] or 0) if row else 0
        obsolete = int(row["obsolete"] or 0) if row else 0
        return {
            "totalEvidence": total,
            "obsoleteEvidence": obsolete,
            "activeEvidence": total - obsolete,
            "documentsWithObsolete": int(row["documents_with_obsolete"] or 0) if row else 0,
        }
