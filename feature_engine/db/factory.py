"""Repository factory to abstract DB backend (SQLite vs Postgres)."""
from __future__ import annotations

from typing import Any
import aiosqlite

from feature_engine.db.repositories.documents import SqliteDocumentRepository
from feature_engine.db.repositories.evidence import SqliteEvidenceRepository
from feature_engine.db.repositories.feature_evidence import SqliteFeatureEvidenceRepository
from feature_engine.db.repositories.features import SqliteFeatureRepository
from feature_engine.db.repositories.run_lock import SqliteRunLock

def get_evidence_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteEvidenceRepository(db)
    from feature_engine.db.repositories.postgres.evidence import PostgresEvidenceRepository
    return PostgresEvidenceRepository(db)

def get_feature_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteFeatureRepository(db)
    from feature_engine.db.repositories.postgres.features import PostgresFeatureRepository
    return PostgresFeatureRepository(db)

def get_feature_evidence_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteFeatureEvidenceRepository(db)
    from feature_engine.db.repositories.postgres.feature_evidence import PostgresFeatureEvidenceRepository
    return PostgresFeatureEvidenceRepository(db)

def get_document_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteDocumentRepository(db)
    from feature_engine.db.repositories.postgres.documents import PostgresDocumentRepository
    return PostgresDocumentRepository(db)

def get_run_lock(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteRunLock(db)
    from feature_engine.db.repositories.postgres.run_lock import PostgresRunLock
    return PostgresRunLock(db)
