"""SQLite implementation of the feature ↔ evidence link repository."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

import aiosqlite


def _placeholders(count: int) -> str:
    return ",".join("?" for _ in range(count))


_LINK_COLUMNS = """
    fe.feature_id, fe.evidence_id, fe.relationship_type, fe.strength, fe.reasoning,
    fe.created_at, e.type AS evidence_type, e.content AS evidence_content, e.obsolete
"""


class SqliteFeatureEvidenceRepository:
    """Unique (feature_id, evidence_id) links with optional relationship typing."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def link_many(self, feature_id: str, evidence_ids: Iterable[str]) -> int:
        ids = list(dict.fromkeys(evidence_ids))
        if not ids:
            return 0
        now = datetime.now(timezone.utc).isoformat()
        cursor = await self.db.executemany(
            """INSERT OR IGNORE INTO feature_evidence (feature_id, evidence_id, created_at)
               VALUES (?, ?, ?)""",
            [(feature_id, evidence_id, now) for evidence_id in ids],
        )
        await self.db.commit()
        return max(0, cursor.rowcount)

    async def list_for_feature(self, feature_id: str, include_obsolete: bool = False) -> list[dict]:
        query = f"""SELECT {_LINK_COLUMNS}
                    FROM feature_evidence fe
                    JOIN evidence e ON e.id = fe.evidence_id
                    WHERE fe.feature_id = ?"""
        if not include_obsolete:
            query += " AND e.obsolete = 0"
        async with self.db.execute(query + " ORDER BY fe.evidence_id", (feature_id,)) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def list_unclassified(self, feature_id: str) -> list[dict]:
        async with self.db.execute(
            f"""SELECT {_LINK_COLUMNS}
                FROM feature_evidence fe
                JOIN evidence e ON e.id = fe.evidence_id
                WHERE fe.feature_id = ? AND e.obsolete = 0 AND fe.relationship_type IS NULL
                ORDER BY fe.evidence_id""",
            (feature_id,),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def feature_ids_with_unclassified(self) -> list[str]:
        async with self.db.execute(
            """SELECT DISTINCT fe.feature_id
               FROM feature_evidence fe
               JOIN evidence e ON e.id = fe.evidence_id
               WHERE e.obsolete = 0 AND fe.relationship_type IS NULL
               ORDER BY fe.feature_id"""
        ) as cur:
            return [str(r[0]) for r in await cur.fetchall()]

    async def feature_ids_for_evidence(self, evidence_ids: Iterable[str]) -> list[str]:
        ids = list(evidence_ids)
        if not ids:
            return []
        async with self.db.execute(
            f"""SELECT DISTINCT feature_id FROM feature_evidence
                WHERE evidence_id IN ({_placeholders(len(ids))})
                ORDER BY feature_id""",
            ids,
        ) as cur:
            return [str(r[0]) for r in await cur.fetchall()]

    async def update_classifications(self, feature_id: str, classifications: list[dict]) -> int:
        if not classifications:
            return 0
        await self.db.executemany(
            """UPDATE feature_evidence
               SET relationship_type = ?, strength = ?, reasoning = ?
               WHERE feature_id = ? AND evidence_id = ?""",
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
        await self.db.commit()
        return len(classifications)

    async def reassign(self, from_feature_id: str, to_feature_id: str) -> int:
        """Move links to another feature, skipping evidence it already links.

        Moved links are reset to unclassified. Returns the number moved.
        """
        now = datetime.now(timezone.utc).isoformat()
        cursor = await self.db.execute(
            """INSERT OR IGNORE INTO feature_evidence (feature_id, evidence_id, created_at)
               SELECT ?, evidence_id, ? FROM feature_evidence WHERE feature_id = ?""",
            (to_feature_id, now, from_feature_id),
        )
        moved = max(0, cursor.rowcount)
        await self.db.execute("DELETE FROM feature_evidence WHERE feature_id = ?", (from_feature_id,))
        await self.db.commit()
        return moved

    async def delete_obsolete_links(self, feature_ids: Iterable[str]) -> int:
        ids = list(feature_ids)
        if not ids:
            return 0
        cursor = await self.db.execute(
            f"""DELETE FROM feature_evidence
                WHERE feature_id IN ({_placeholders(len(ids))})
                  AND evidence_id IN (SELECT id FROM evidence WHERE obsolete = 1)""",
            ids,
        )
        await self.db.commit()
        return max(0, cursor.rowcount)
