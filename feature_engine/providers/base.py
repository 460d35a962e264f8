"""Interfaces the engine consumes from external collaborators."""
from __future__ import annotations

from typing import Protocol, Sequence, TypeVar, runtime_checkable

from pydantic import BaseModel

from feature_engine.models import EvidenceDraft

ResponseT = TypeVar("ResponseT", bound=BaseModel)


@runtime_checkable
class EmbeddingProvider(Protocol):
    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Return one vector per input text, in input order."""
        ...


@runtime_checkable
class ReasoningProvider(Protocol):
    async def complete(self, prompt: str, response_model: type[ResponseT]) -> ResponseT:
        """Return a structured result validated against ``response_model``.

        Raises ProviderError (rate_limited, timeout, malformed, other).
        """
        ...


@runtime_checkable
class EvidenceExtractor(Protocol):
    async def extract(self, document_id: str) -> list[EvidenceDraft]:
        ...


@runtime_checkable
class RunLock(Protocol):
    async def try_acquire(self, key: str) -> bool:
        ...

    async def release(self, key: str) -> None:
        ...
