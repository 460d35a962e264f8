"""Batch embedding of evidence that has no vector yet."""
from __future__ import annotations

import logging
from typing import Any

from feature_engine import config
from feature_engine.errors import ProviderError
from feature_engine.models import StageReport, UnitFailure
from feature_engine.observability import record_unit_failure
from feature_engine.providers.base import EmbeddingProvider
from feature_engine.providers.retry import RetryPolicy, call_with_retries

logger = logging.getLogger("feature_engine.inference")


class EvidenceEmbedder:
    def __init__(
        self,
        evidence_repo: Any,
        provider: EmbeddingProvider,
        *,
        batch_size: int = config.EMBEDDING_BATCH_SIZE,
        retry_policy: RetryPolicy | None = None,
    ):
        self.evidence_repo = evidence_repo
        self.provider = provider
        self.batch_size = max(1, batch_size)
        self.retry_policy = retry_policy or RetryPolicy()

    async def embed_missing(self) -> StageReport:
        rows = await self.evidence_repo.list_unembedded()
        report = StageReport(stage="embed", attempted=len(rows))

        for start in range(0, len(rows), self.batch_size):
            batch = rows[start:start + self.batch_size]
            unit = f"batch-{start // self.batch_size}"
            texts = [str(row["content"]) for row in batch]
            try:
                vectors = await call_with_retries(
                    lambda: self.provider.embed(texts),
                    policy=self.retry_policy,
                    description="Evidence embedding",
                )
                if len(vectors) != len(batch):
                    raise ProviderError(
                        f"Embedding provider returned {len(vectors)} vectors for {len(batch)} texts",
                        kind="malformed",
                    )
            except ProviderError as exc:
                logger.warning("Embedding %s failed: %s", unit, exc)
                report.failures.append(UnitFailure(unit=unit, reason=str(exc), errorType=type(exc).__name__))
                record_unit_failure(report.stage, type(exc).__name__)
                continue

            stored = await self.evidence_repo.update_embeddings(
                {str(row["id"]): vector for row, vector in zip(batch, vectors)}
            )
            report.succeeded += stored

        logger.info("Embedded %s/%s evidence items", report.succeeded, report.attempted)
        return report
