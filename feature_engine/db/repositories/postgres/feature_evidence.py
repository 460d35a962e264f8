"""PostgreSQL implementation of the feature ↔ evidence link repository."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

import asyncpg

_LINK_COLUMNS = """
    fe.feature_id, fe.evidence_id, fe.relationship_type, fe.strength, fe.reasoning,
    fe.created_at, e.type AS evidence_type, e.content AS evidence_content, e.obsolete
"""


def _affected(status: str) -> int:
    # asyncpg returns the command tag, e.g. "INSERT 0 3" or "DELETE 2".
    try:
        return int(status.split()[-1])
    except (AttributeError, ValueError, IndexError):
        return 0


class PostgresFeatureEvidenceRepository:
    """PostgreSQL-backed feature ↔ evidence links."""

    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def link_many(self, feature_id: str, evidence_ids: Iterable[str]) -> int:
        ids = list(dict.fromkeys(evidence_ids))
        if not ids:
            return 0
        now = datetime.now(timezone.utc).isoformat()
        status = await self.db.execute(
            """INSERT INTO feature_evidence (feature_id, evidence_id, created_at)
               SELECT $1, evidence_id, $3 FROM unnest($2::text[]) AS evidence_id
               ON CONFLICT (feature_id, evidence_id) DO NOTHING""",
            feature_id, ids, now,
        )
        return _affected(status)

    async def list_for_feature(self, feature_id: str, include_obsolete: bool = False) -> list[dict]:
        query = f"""SELECT {_LINK_COLUMNS}
                    FROM feature_evidence fe
                    JOIN evidence e ON e.id = fe.evidence_id
                    WHERE fe.feature_id = $1"""
        if not include_obsolete:
            query += " AND NOT e.obsolete"
        rows = await self.db.fetch(query + " ORDER BY fe.evidence_id", feature_id)
        return [dict(r) for r in rows]

    async def list_unclassified(self, feature_id: str) -> list[dict]:
        rows = await self.db.fetch(
            f"""SELECT {_LINK_COLUMNS}
                FROM feature_evidence fe
                JOIN evidence e ON e.id = fe.evidence_id
                WHERE fe.feature_id = $1 AND NOT e.obsolete AND fe.relationship_type IS NULL
                ORDER BY fe.evidence_id""",
            feature_id,
        )
        return [dict(r) for r in rows]

    async def feature_ids_with_unclassified(self) -> list[str]:
        rows = await self.db.fetch(
            """SELECT DISTINCT fe.feature_id
               FROM feature_evidence fe
               JOIN evidence e ON e.id = fe.evidence_id
               WHERE NOT e.obsolete AND fe.relationship_type IS NULL
               ORDER BY fe.feature_id"""
        )
        return [str(r["feature_id"]) for r in rows]

    async def feature_ids_for_evidence(self, evidence_ids: Iterable[str]) -> list[str]:
        ids = list(evidence_ids)
        if not ids:
            return []
        rows = await self.db.fetch(
            """SELECT DISTINCT feature_id FROM feature_evidence
               WHERE evidence_id = ANY($1::text[])
               ORDER BY feature_id""",
            ids,
        )
        return [str(r["feature_id"]) for r in rows]

    async def update_classifications(self, feature_id: str, classifications: list[dict]) -> int:
        if not classifications:
            return 0
        await self.db.executemany(
            """UPDATE feature_evidence
               SET relationship_type = $1, strength = $2, reasoning = $3
               WHERE feature_id = $4 AND evidence_id = $5""",
            [
                (
                    item["relationshipType"],
                    item["strength"],
                    item.get("reasoning"),
                    feature_id,
                    item["evidenceId"],
                )
                for item in classifications
            ],
        )
        return len(classifications)

    async def reassign(self, from_feature_id: str, to_feature_id: str) -> int:
        now = datetime.now(timezone.utc).isoformat()
        async with self.db.acquire() as conn:
            async with conn.transaction():
                status = await conn.execute(
                    """INSERT INTO feature_evidence (feature_id, evidence_id, created_at)
                       SELECT $1, evidence_id, $2 FROM feature_evidence WHERE feature_id = $3
                       ON CONFLICT (feature_id, evidence_id) DO NOTHING""",
                    to_feature_id, now, from_feature_id,
                )
                await conn.execute("DELETE FROM feature_evidence WHERE feature_id = $1", from_feature_id)
        return _affected(status)

    async def delete_obsolete_links(self, feature_ids: Iterable[str]) -> int:
        ids = list(feature_ids)
        if not ids:
            return 0
        status = await self.db.execute(
            """DELETE FROM feature_evidence
               WHERE feature_id = ANY($1::text[])
                 AND evidence_id IN (SELECT id FROM evidence WHERE obsolete)""",
            ids,
        )
        return _affected(status)
