"""Repository package for database access."""

from .documents import SqliteDocumentRepository
from .evidence import SqliteEvidenceRepository
from .feature_evidence import SqliteFeatureEvidenceRepository
from .features import SqliteFeatureRepository
from .run_lock import InProcessRunLock, SqliteRunLock

__all__ = [
    "SqliteDocumentRepository",
    "SqliteEvidenceRepository",
    "SqliteFeatureEvidenceRepository",
    "SqliteFeatureRepository",
    "InProcessRunLock",
    "SqliteRunLock",
]
