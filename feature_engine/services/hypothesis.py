"""Feature hypothesis generation from evidence clusters."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Sequence

from feature_engine import config
from feature_engine.errors import ValidationError
from feature_engine.models import Evidence, EvidenceCluster, Feature, StageReport
from feature_engine.prompts import FeatureHypothesisResponse, build_hypothesis_prompt
from feature_engine.providers.base import ReasoningProvider
from feature_engine.providers.retry import RetryPolicy, call_with_retries
from feature_engine.services.units import run_units

logger = logging.getLogger("feature_engine.inference")


class FeatureHypothesisGenerator:
    def __init__(
        self,
        feature_repo: Any,
        link_repo: Any,
        reasoning: ReasoningProvider,
        *,
        retry_policy: RetryPolicy | None = None,
        concurrency: int = config.UNIT_CONCURRENCY,
    ):
        self.feature_repo = feature_repo
        self.link_repo = link_repo
        self.reasoning = reasoning
        self.retry_policy = retry_policy or RetryPolicy()
        self.concurrency = concurrency

    async def generate_from_cluster(self, evidence: Sequence[Evidence]) -> Feature:
        """Create one candidate feature linked to every item of the cluster.

        The provider's self-reported confidence is advisory and only kept in
        metadata; ``confidenceScore`` stays unset until the scorer runs.
        """
        if not evidence:
            raise ValidationError("Cannot generate a feature hypothesis from an empty cluster")

        prompt = build_hypothesis_prompt(evidence)
        hypothesis = await call_with_retries(
            lambda: self.reasoning.complete(prompt, FeatureHypothesisResponse),
            policy=self.retry_policy,
            description="Feature hypothesis",
        )

        feature = Feature(
            id=str(uuid.uuid4()),
            name=hypothesis.feature_name,
            description=hypothesis.description,
            status="candidate",
            featureType="task",
            inferredAt=datetime.now(timezone.utc).isoformat(),
            metadata={
                "reasoning": hypothesis.reasoning,
                "reportedConfidence": hypothesis.confidence,
                "sourceEvidenceCount": len(evidence),
            },
        )
        await self.feature_repo.create(feature.model_dump())
        try:
            await self.link_repo.link_many(feature.id, [item.id for item in evidence])
        except Exception:
            # No candidate is left without linked evidence.
            logger.warning("Linking evidence to '%s' failed; removing the feature", feature.name)
            await self.feature_repo.delete(feature.id)
            raise
        logger.info("Generated feature '%s' from %s evidence items", feature.name, len(evidence))
        return feature

    async def generate_for_clusters(self, clusters: Sequence[EvidenceCluster]) -> tuple[StageReport, list[str]]:
        report = StageReport(stage="hypothesize", attempted=len(clusters))

        async def _generate(cluster: EvidenceCluster) -> str:
            feature = await self.generate_from_cluster(cluster.evidence)
            return feature.id

        feature_ids = await run_units(
            clusters,
            _generate,
            limit=self.concurrency,
            report=report,
            unit_name=lambda cluster: f"cluster-{cluster.clusterId}",
            logger=logger,
        )
        report.succeeded = len(feature_ids)
        return report, feature_ids
