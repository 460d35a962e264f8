"""PostgreSQL schema creation and versioning."""
from __future__ import annotations

import logging

import asyncpg

logger = logging.getLogger("feature_engine.db")

SCHEMA_VERSION = 3

_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS documents (
    id          TEXT PRIMARY KEY,
    filename    TEXT NOT NULL DEFAULT '',
    file_hash   TEXT DEFAULT '',
    version     INTEGER NOT NULL DEFAULT 1,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS evidence (
    id              TEXT PRIMARY KEY,
    document_id     TEXT NOT NULL,
    type            TEXT NOT NULL,
    content         TEXT NOT NULL,
    embedding_json  TEXT,
    obsolete        BOOLEAN NOT NULL DEFAULT FALSE,
    extracted_at    TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_evidence_document ON evidence(document_id, obsolete);

CREATE TABLE IF NOT EXISTS features (
    id                TEXT PRIMARY KEY,
    name              TEXT NOT NULL,
    description       TEXT,
    confidence_score  DOUBLE PRECISION,
    status            TEXT NOT NULL DEFAULT 'candidate',
    feature_type      TEXT NOT NULL DEFAULT 'task',
    parent_id         TEXT,
    inferred_at       TEXT NOT NULL,
    reviewed_at       TEXT,
    classified_at     TEXT,
    metadata_json     TEXT DEFAULT '{}'
);

CREATE INDEX IF NOT EXISTS idx_features_status ON features(status);
CREATE INDEX IF NOT EXISTS idx_features_parent ON features(parent_id);

CREATE TABLE IF NOT EXISTS feature_evidence (
    feature_id         TEXT NOT NULL,
    evidence_id        TEXT NOT NULL,
    relationship_type  TEXT,
    strength           DOUBLE PRECISION,
    reasoning          TEXT,
    created_at         TEXT NOT NULL,
    PRIMARY KEY (feature_id, evidence_id)
);

CREATE INDEX IF NOT EXISTS idx_feature_evidence_evidence ON feature_evidence(evidence_id);

CREATE TABLE IF NOT EXISTS pipeline_locks (
    lock_key     TEXT PRIMARY KEY,
    holder       TEXT NOT NULL,
    acquired_at  TEXT NOT NULL
);
"""


async def run_migrations(pool: asyncpg.Pool) -> None:
    """Create all tables. Idempotent."""
    async with pool.acquire() as conn:
        await conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL, applied TIMESTAMPTZ NOT NULL DEFAULT now())"
        )
        current_version = await conn.fetchval("SELECT MAX(version) FROM schema_version") or 0
        if current_version >= SCHEMA_VERSION:
            logger.info("Schema is up to date (version %s)", current_version)
            return

        logger.info("Running Postgres migrations: %s → %s", current_version, SCHEMA_VERSION)
        async with conn.transaction():
            await conn.execute(_TABLES)
            await conn.execute("ALTER TABLE features ADD COLUMN IF NOT EXISTS classified_at TEXT")
            await conn.execute("ALTER TABLE documents ADD COLUMN IF NOT EXISTS file_hash TEXT DEFAULT ''")
            await conn.execute("INSERT INTO schema_version (version) VALUES ($1)", SCHEMA_VERSION)
        logger.info("Postgres migrations complete, schema version %s", SCHEMA_VERSION)
