"""PostgreSQL implementation of EvidenceRepository."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Iterable

import asyncpg

from feature_engine.errors import ValidationError
from feature_engine.models import EVIDENCE_TYPES


class PostgresEvidenceRepository:
    """PostgreSQL-backed evidence storage."""

    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def insert(self, evidence_data: dict) -> None:
        evidence_type = evidence_data.get("type", "")
        if evidence_type not in EVIDENCE_TYPES:
            raise ValidationError(f"Unknown evidence type: {evidence_type!r}")

        embedding = evidence_data.get("embedding")
        await self.db.execute(
            """INSERT INTO evidence (
                id, document_id, type, content, embedding_json, obsolete, extracted_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7)""",
            evidence_data["id"],
            evidence_data["documentId"],
            evidence_type,
            evidence_data.get("content", ""),
            json.dumps(embedding) if embedding is not None else None,
            bool(evidence_data.get("obsolete")),
            evidence_data.get("extractedAt") or datetime.now(timezone.utc).isoformat(),
        )

    async def get_by_id(self, evidence_id: str) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM evidence WHERE id = $1", evidence_id)
        return dict(row) if row else None

    async def get_by_ids(self, evidence_ids: Iterable[str]) -> list[dict]:
        ids = list(evidence_ids)
        if not ids:
            return []
        rows = await self.db.fetch(
            "SELECT * FROM evidence WHERE id = ANY($1::text[]) ORDER BY id", ids
        )
        return [dict(r) for r in rows]

    async def list_unembedded(self) -> list[dict]:
        rows = await self.db.fetch(
            "SELECT * FROM evidence WHERE embedding_json IS NULL AND NOT obsolete ORDER BY id"
        )
        return [dict(r) for r in rows]

    async def list_unclustered(self) -> list[dict]:
        rows = await self.db.fetch(
            """SELECT e.* FROM evidence e
               WHERE NOT e.obsolete
                 AND e.embedding_json IS NOT NULL
                 AND NOT EXISTS (
                     SELECT 1 FROM feature_evidence fe WHERE fe.evidence_id = e.id
                 )
               ORDER BY e.id"""
        )
        return [dict(r) for r in rows]

    async def list_by_document(self, document_id: str, include_obsolete: bool = False) -> list[dict]:
        query = "SELECT * FROM evidence WHERE document_id = $1"
        if not include_obsolete:
            query += " AND NOT obsolete"
        rows = await self.db.fetch(query + " ORDER BY id", document_id)
        return [dict(r) for r in rows]

    async def list_unlinked_by_document(self, document_id: str) -> list[dict]:
        rows = await self.db.fetch(
            """SELECT e.* FROM evidence e
               WHERE e.document_id = $1 AND NOT e.obsolete
                 AND NOT EXISTS (
                     SELECT 1 FROM feature_evidence fe WHERE fe.evidence_id = e.id
                 )
               ORDER BY e.id""",
            document_id,
        )
        return [dict(r) for r in rows]

    async def update_embeddings(self, embeddings: dict[str, list[float]]) -> int:
        if not embeddings:
            return 0
        await self.db.executemany(
            "UPDATE evidence SET embedding_json = $1 WHERE id = $2",
            [(json.dumps(vector), evidence_id) for evidence_id, vector in embeddings.items()],
        )
        return len(embeddings)

    async def mark_obsolete(self, evidence_ids: Iterable[str]) -> int:
        ids = list(evidence_ids)
        if not ids:
            return 0
        status = await self.db.execute(
            "UPDATE evidence SET obsolete = TRUE WHERE NOT obsolete AND id = ANY($1::text[])",
            ids,
        )
        return int(status.split()[-1])

    async def get_obsolete_stats(self, document_id: str | None = None) -> dict:
        query = """SELECT
                COUNT(*) AS total,
                COUNT(*) FILTER (WHERE obsolete) AS obsolete,
                COUNT(DISTINCT document_id) FILTER (WHERE obsolete) AS documents_with_obsolete
               FROM evidence"""
        if document_id is not None:
            row = await self.db.fetchrow(query + " WHERE document_id = $1", document_id)
        else:
            row = await self.db.fetchrow(query)
        total = int(row["total"] or 0) if row else 0
        obsolete = int(row["obsolete"] or 0) if row else 0
        return {
            "totalEvidence": total,
            "obsoleteEvidence": obsolete,
            "activeEvidence": total - obsolete,
            "documentsWithObsolete": int(row["documents_with_obsolete"] or 0) if row else 0,
        }
