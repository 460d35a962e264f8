"""SQLite implementation of FeatureRepository."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Iterable

import aiosqlite


class SqliteFeatureRepository:
    """SQLite-backed storage for inferred features."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def create(self, feature_data: dict) -> None:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            """INSERT INTO features (
                id, name, description, confidence_score, status, feature_type,
                parent_id, inferred_at, reviewed_at, classified_at, metadata_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                feature_data["id"],
                feature_data.get("name", ""),
                feature_data.get("description"),
                feature_data.get("confidenceScore"),
                feature_data.get("status", "candidate"),
                feature_data.get("featureType", "task"),
                feature_data.get("parentId"),
                feature_data.get("inferredAt") or now,
                feature_data.get("reviewedAt"),
                feature_data.get("classifiedAt"),
                json.dumps(feature_data.get("metadata") or {}),
            ),
        )
        await self.db.commit()

    async def get_by_id(self, feature_id: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM features WHERE id = ?", (feature_id,)
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def list_all(self) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM features ORDER BY inferred_at, id"
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def list_by_status(self, statuses: Iterable[str]) -> list[dict]:
        values = list(statuses)
        if not values:
            return []
        placeholders = ",".join("?" for _ in values)
        async with self.db.execute(
            f"SELECT * FROM features WHERE status IN ({placeholders}) ORDER BY inferred_at, id",
            values,
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def list_unreviewed(self) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM features WHERE reviewed_at IS NULL ORDER BY inferred_at, id"
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def list_children(self, parent_id: str) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM features WHERE parent_id = ? ORDER BY name, id",
            (parent_id,),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def update_confidence(self, feature_id: str, score: float, status: str | None = None) -> None:
        if status is None:
            await self.db.execute(
                "UPDATE features SET confidence_score = ? WHERE id = ?",
                (score, feature_id),
            )
        else:
            await self.db.execute(
                "UPDATE features SET confidence_score = ?, status = ? WHERE id = ?",
                (score, status, feature_id),
            )
        await self.db.commit()

    async def update_hierarchy(
        self,
        feature_id: str,
        feature_type: str,
        parent_id: str | None,
        classified_at: str | None = None,
    ) -> None:
        await self.db.execute(
            """UPDATE features
               SET feature_type = ?, parent_id = ?, classified_at = COALESCE(?, classified_at)
               WHERE id = ?""",
            (feature_type, parent_id, classified_at, feature_id),
        )
        await self.db.commit()

    async def update_metadata(self, feature_id: str, metadata: dict) -> None:
        await self.db.execute(
            "UPDATE features SET metadata_json = ? WHERE id = ?",
            (json.dumps(metadata), feature_id),
        )
        await self.db.commit()

    async def mark_reviewed(self, feature_id: str, status: str, reviewed_at: str | None = None) -> None:
        await self.db.execute(
            "UPDATE features SET status = ?, reviewed_at = ? WHERE id = ?",
            (status, reviewed_at or datetime.now(timezone.utc).isoformat(), feature_id),
        )
        await self.db.commit()

    async def delete(self, feature_id: str) -> None:
        """Delete a feature; its children become roots."""
        await self.db.execute("UPDATE features SET parent_id = NULL WHERE parent_id = ?", (feature_id,))
        await self.db.execute("DELETE FROM features WHERE id = ?", (feature_id,))
        await self.db.commit()
