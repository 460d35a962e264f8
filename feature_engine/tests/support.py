"""In-memory fakes and seed helpers shared by the test modules."""
from __future__ import annotations

import re
from typing import Any, Callable

import aiosqlite
from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError

from feature_engine.db.sqlite_migrations import run_migrations
from feature_engine.errors import MalformedResponseError, ProviderError
from feature_engine.providers.retry import RetryPolicy

NO_RETRY = RetryPolicy(max_attempts=1, base_delay=0.0, max_delay=0.0)
FAST_RETRY = RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0)

_ID_RE = re.compile(r"\[ID: ([^\]]+)\]")


def ids_in_prompt(prompt: str) -> list[str]:
    return _ID_RE.findall(prompt)


class FakeReasoningProvider:
    """Dispatches on the requested response model to a per-model handler.

    A handler returns a dict, a model instance, or an exception to raise.
    """

    def __init__(self, handlers: dict[type, Callable[[str], Any]] | None = None):
        self.handlers = dict(handlers or {})
        self.calls: list[tuple[type, str]] = []

    def calls_for(self, response_model: type) -> list[str]:
        return [prompt for model, prompt in self.calls if model is response_model]

    async def complete(self, prompt: str, response_model: type[BaseModel]) -> BaseModel:
        self.calls.append((response_model, prompt))
        handler = self.handlers.get(response_model)
        if handler is None:
            raise ProviderError(f"No handler for {response_model.__name__}", kind="other")
        value = handler(prompt)
        if isinstance(value, BaseException):
            raise value
        if isinstance(value, BaseModel):
            return value
        try:
            return response_model.model_validate(value)
        except SchemaValidationError as exc:
            raise MalformedResponseError(str(exc)) from exc


class FakeEmbeddingProvider:
    def __init__(self, vectors: dict[str, list[float]], default: list[float] | None = None):
        self.vectors = vectors
        self.default = default or [0.0, 0.0, 1.0]
        self.calls: list[list[str]] = []

    async def embed(self, texts):
        self.calls.append(list(texts))
        return [list(self.vectors.get(text, self.default)) for text in texts]


async def open_test_db() -> aiosqlite.Connection:
    db = await aiosqlite.connect(":memory:")
    db.row_factory = aiosqlite.Row
    await run_migrations(db)
    return db


async def seed_document(db: aiosqlite.Connection, document_id: str = "doc-1", filename: str = "product-brief.pdf") -> None:
    from feature_engine.db.repositories.documents import SqliteDocumentRepository

    await SqliteDocumentRepository(db).upsert({"id": document_id, "filename": filename})


async def seed_evidence(
    db: aiosqlite.Connection,
    evidence_id: str,
    evidence_type: str,
    content: str,
    *,
    embedding: list[float] | None = None,
    document_id: str = "doc-1",
) -> None:
    from feature_engine.db.repositories.evidence import SqliteEvidenceRepository

    await SqliteEvidenceRepository(db).insert(
        {
            "id": evidence_id,
            "documentId": document_id,
            "type": evidence_type,
            "content": content,
            "embedding": embedding,
        }
    )


async def seed_feature(db: aiosqlite.Connection, feature_id: str, name: str, **fields: Any) -> None:
    from feature_engine.db.repositories.features import SqliteFeatureRepository

    data = {"id": feature_id, "name": name, "description": fields.pop("description", f"{name} description")}
    data.update(fields)
    await SqliteFeatureRepository(db).create(data)
