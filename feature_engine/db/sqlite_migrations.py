"""Database schema creation and versioning.

All CREATE TABLE statements for the feature catalog.
Uses IF NOT EXISTS for idempotent runs.
"""
from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger("feature_engine.db")

SCHEMA_VERSION = 3

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── 1. Source documents (owned by the upload collaborator) ─────────
CREATE TABLE IF NOT EXISTS documents (
    id          TEXT PRIMARY KEY,
    filename    TEXT NOT NULL DEFAULT '',
    file_hash   TEXT DEFAULT '',
    version     INTEGER NOT NULL DEFAULT 1,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

-- ── 2. Evidence facts ──────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS evidence (
    id              TEXT PRIMARY KEY,
    document_id     TEXT NOT NULL,
    type            TEXT NOT NULL,
    content         TEXT NOT NULL,
    embedding_json  TEXT,
    obsolete        INTEGER NOT NULL DEFAULT 0,
    extracted_at    TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_evidence_document ON evidence(document_id, obsolete);
CREATE INDEX IF NOT EXISTS idx_evidence_unembedded ON evidence(id) WHERE embedding_json IS NULL;

-- ── 3. Inferred features ───────────────────────────────────────────
CREATE TABLE IF NOT EXISTS features (
    id                TEXT PRIMARY KEY,
    name              TEXT NOT NULL,
    description       TEXT,
    confidence_score  REAL,
    status            TEXT NOT NULL DEFAULT 'candidate',
    feature_type      TEXT NOT NULL DEFAULT 'task',
    parent_id         TEXT,
    inferred_at       TEXT NOT NULL,
    reviewed_at       TEXT,
    metadata_json     TEXT DEFAULT '{}'
);

CREATE INDEX IF NOT EXISTS idx_features_status ON features(status);
CREATE INDEX IF NOT EXISTS idx_features_parent ON features(parent_id);

-- ── 4. Feature ↔ evidence links ────────────────────────────────────
CREATE TABLE IF NOT EXISTS feature_evidence (
    feature_id         TEXT NOT NULL,
    evidence_id        TEXT NOT NULL,
    relationship_type  TEXT,
    strength           REAL,
    reasoning          TEXT,
    created_at         TEXT NOT NULL,
    PRIMARY KEY (feature_id, evidence_id)
);

CREATE INDEX IF NOT EXISTS idx_feature_evidence_evidence ON feature_evidence(evidence_id);

-- ── 5. Run exclusion ───────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS pipeline_locks (
    lock_key     TEXT PRIMARY KEY,
    holder       TEXT NOT NULL,
    acquired_at  TEXT NOT NULL
);
"""


async def _column_exists(db: aiosqlite.Connection, table: str, column: str) -> bool:
    async with db.execute(f"PRAGMA table_info({table})") as cur:
        rows = await cur.fetchall()
    return any(row[1] == column for row in rows)


async def _ensure_column(db: aiosqlite.Connection, table: str, column: str, definition: str) -> None:
    if await _column_exists(db, table, column):
        return
    await db.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Create all tables. Idempotent."""
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
            current_version = row[0] if row and row[0] else 0
    except aiosqlite.OperationalError:
        current_version = 0

    if current_version >= SCHEMA_VERSION:
        logger.info("Schema is up to date (version %s)", current_version)
        return

    logger.info("Running migrations: %s → %s", current_version, SCHEMA_VERSION)

    await db.executescript(_TABLES)

    # Version 2 added hierarchy classification tracking.
    await _ensure_column(db, "features", "classified_at", "TEXT")
    # Version 3 tracks document change detection.
    await _ensure_column(db, "documents", "file_hash", "TEXT DEFAULT ''")

    await db.execute(
        "INSERT INTO schema_version (version) VALUES (?)",
        (SCHEMA_VERSION,),
    )
    await db.commit()
    logger.info("Migrations complete, schema version %s", SCHEMA_VERSION)
