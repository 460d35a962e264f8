"""Wiring of repositories, providers and services into a runnable engine."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from feature_engine import config, observability
from feature_engine.db import connection
from feature_engine.db.factory import (
    get_document_repository,
    get_evidence_repository,
    get_feature_evidence_repository,
    get_feature_repository,
    get_run_lock,
)
from feature_engine.db.migrations import run_migrations
from feature_engine.providers.base import EmbeddingProvider, EvidenceExtractor, ReasoningProvider, RunLock
from feature_engine.providers.openai_client import OpenAIEmbeddingProvider, OpenAIReasoningProvider
from feature_engine.providers.retry import RetryPolicy
from feature_engine.services.clustering import ClusteringEngine
from feature_engine.services.confidence_scorer import ConfidenceScorer
from feature_engine.services.deduplication import DeduplicationEngine
from feature_engine.services.embedding import EvidenceEmbedder
from feature_engine.services.feature_updates import FeatureUpdateService
from feature_engine.services.hierarchy import HierarchyBuilder
from feature_engine.services.hypothesis import FeatureHypothesisGenerator
from feature_engine.services.incremental import IncrementalReprocessor
from feature_engine.services.pipeline import FeatureInferencePipeline
from feature_engine.services.relationships import RelationshipClassifier

logger = logging.getLogger("feature_engine")


@dataclass
class Engine:
    pipeline: FeatureInferencePipeline
    reprocessor: IncrementalReprocessor
    updates: FeatureUpdateService
    scorer: ConfidenceScorer
    dedup: DeduplicationEngine
    hierarchy: HierarchyBuilder
    relationships: RelationshipClassifier


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_engine(
    db: Any,
    *,
    embedding_provider: EmbeddingProvider,
    reasoning_provider: ReasoningProvider,
    run_lock: RunLock | None = None,
    extractor: EvidenceExtractor | None = None,
    retry_policy: RetryPolicy | None = None,
) -> Engine:
    """Assemble every component over one database handle."""
    evidence_repo = get_evidence_repository(db)
    feature_repo = get_feature_repository(db)
    link_repo = get_feature_evidence_repository(db)
    document_repo = get_document_repository(db)
    lock = run_lock or get_run_lock(db)
    policy = retry_policy or RetryPolicy()

    scorer = ConfidenceScorer(feature_repo, link_repo)
    hypothesis = FeatureHypothesisGenerator(feature_repo, link_repo, reasoning_provider, retry_policy=policy)
    dedup = DeduplicationEngine(feature_repo, link_repo, reasoning_provider, scorer, retry_policy=policy)
    hierarchy = HierarchyBuilder(feature_repo, reasoning_provider, retry_policy=policy)
    relationships = RelationshipClassifier(feature_repo, link_repo, reasoning_provider, retry_policy=policy)
    updates = FeatureUpdateService(feature_repo, evidence_repo, link_repo, scorer, hypothesis, dedup)

    pipeline = FeatureInferencePipeline(
        embedder=EvidenceEmbedder(evidence_repo, embedding_provider, retry_policy=policy),
        clustering=ClusteringEngine(evidence_repo),
        hypothesis=hypothesis,
        dedup=dedup,
        hierarchy=hierarchy,
        scorer=scorer,
        relationships=relationships,
        run_lock=lock,
    )
    reprocessor = IncrementalReprocessor(
        evidence_repo,
        link_repo,
        document_repo,
        updates,
        lock,
        extractor=extractor,
    )
    return Engine(
        pipeline=pipeline,
        reprocessor=reprocessor,
        updates=updates,
        scorer=scorer,
        dedup=dedup,
        hierarchy=hierarchy,
        relationships=relationships,
    )


async def open_engine(*, extractor: EvidenceExtractor | None = None) -> Engine:
    """Connect using the configured backend, migrate, and wire OpenAI providers."""
    observability.initialize()
    db = await connection.get_connection()
    await run_migrations(db)
    logger.info("Feature engine ready (backend=%s)", config.DB_BACKEND)
    return build_engine(
        db,
        embedding_provider=OpenAIEmbeddingProvider(),
        reasoning_provider=OpenAIReasoningProvider(),
        extractor=extractor,
    )


async def close_engine() -> None:
    await connection.close_connection()
    observability.shutdown()
