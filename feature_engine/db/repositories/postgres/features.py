"""PostgreSQL implementation of FeatureRepository."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Iterable

import asyncpg


class PostgresFeatureRepository:
    """PostgreSQL-backed feature storage."""

    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def create(self, feature_data: dict) -> None:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            """INSERT INTO features (
                id, name, description, confidence_score, status, feature_type,
                parent_id, inferred_at, reviewed_at, classified_at, metadata_json
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)""",
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
        )

    async def get_by_id(self, feature_id: str) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM features WHERE id = $1", feature_id)
        return dict(row) if row else None

    async def list_all(self) -> list[dict]:
        rows = await self.db.fetch("SELECT * FROM features ORDER BY inferred_at, id")
        return [dict(r) for r in rows]

    async def list_by_status(self, statuses: Iterable[str]) -> list[dict]:
        values = list(statuses)
        if not values:
            return []
        rows = await self.db.fetch(
            "SELECT * FROM features WHERE status = ANY($1::text[]) ORDER BY inferred_at, id",
            values,
        )
        return [dict(r) for r in rows]

    async def list_unreviewed(self) -> list[dict]:
        rows = await self.db.fetch(
            "SELECT * FROM features WHERE reviewed_at IS NULL ORDER BY inferred_at, id"
        )
        return [dict(r) for r in rows]

    async def list_children(self, parent_id: str) -> list[dict]:
        rows = await self.db.fetch(
            "SELECT * FROM features WHERE parent_id = $1 ORDER BY name, id", parent_id
        )
        return [dict(r) for r in rows]

    async def update_confidence(self, feature_id: str, score: float, status: str | None = None) -> None:
        if status is None:
            await self.db.execute(
                "UPDATE features SET confidence_score = $1 WHERE id = $2", score, feature_id
            )
        else:
            await self.db.execute(
                "UPDATE features SET confidence_score = $1, status = $2 WHERE id = $3",
                score, status, feature_id,
            )

    async def update_hierarchy(
        self,
        feature_id: str,
        feature_type: str,
        parent_id: str | None,
        classified_at: str | None = None,
    ) -> None:
        await self.db.execute(
            """UPDATE features
               SET feature_type = $1, parent_id = $2, classified_at = COALESCE($3, classified_at)
               WHERE id = $4""",
            feature_type, parent_id, classified_at, feature_id,
        )

    async def update_metadata(self, feature_id: str, metadata: dict) -> None:
        await self.db.execute(
            "UPDATE features SET metadata_json = $1 WHERE id = $2",
            json.dumps(metadata), feature_id,
        )

    async def mark_reviewed(self, feature_id: str, status: str, reviewed_at: str | None = None) -> None:
        await self.db.execute(
            "UPDATE features SET status = $1, reviewed_at = $2 WHERE id = $3",
            status, reviewed_at or datetime.now(timezone.utc).isoformat(), feature_id,
        )

    async def delete(self, feature_id: str) -> None:
        async with self.db.acquire() as conn:
            async with conn.transaction():
                await conn.execute("UPDATE features SET parent_id = NULL WHERE parent_id = $1", feature_id)
                await conn.execute("DELETE FROM features WHERE id = $1", feature_id)
