"""Typing of feature ↔ evidence links (implements/supports/constrains/extends)."""
from __future__ import annotations

import logging
from collections import Counter
from typing import Any

from feature_engine import config
from feature_engine.errors import RelationshipBatchMismatchError, ValidationError
from feature_engine.models import (
    RelationshipStatistics,
    StageReport,
    StrongRelationship,
    feature_from_row,
    link_from_row,
)
from feature_engine.prompts import RelationshipBatchResponse, build_relationship_prompt
from feature_engine.providers.base import ReasoningProvider
from feature_engine.providers.retry import RetryPolicy, call_with_retries
from feature_engine.services.units import run_units

logger = logging.getLogger("feature_engine.relationships")


class RelationshipClassifier:
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

    async def classify_feature(self, feature_id: str) -> int:
        """Classify every unclassified active link of one feature in a single call.

        Results are matched by evidence id; a response that does not cover
        exactly the submitted ids is rejected as a whole.
        """
        row = await self.feature_repo.get_by_id(feature_id)
        if not row:
            raise ValidationError(f"Feature not found: {feature_id}")
        feature = feature_from_row(row)
        links = [link_from_row(r) for r in await self.link_repo.list_unclassified(feature_id)]
        if not links:
            return 0

        prompt = build_relationship_prompt(feature, links)
        response = await call_with_retries(
            lambda: self.reasoning.complete(prompt, RelationshipBatchResponse),
            policy=self.retry_policy,
            description="Relationship classification",
        )

        submitted = {link.evidenceId for link in links}
        returned = {item.evidence_id for item in response.relationships}
        if len(response.relationships) != len(links) or returned != submitted:
            raise RelationshipBatchMismatchError(feature_id, len(links), len(response.relationships))

        classifications = [
            {
                "evidenceId": item.evidence_id,
                "relationshipType": item.relationship_type,
                "strength": item.strength,
                "reasoning": item.reasoning,
            }
            for item in response.relationships
        ]
        updated = await self.link_repo.update_classifications(feature_id, classifications)
        logger.debug("Classified %s links for feature %s", updated, feature_id)
        return updated

    async def classify_all(self) -> tuple[StageReport, int]:
        """Classify every feature with unclassified links; returns (report, links classified)."""
        feature_ids = await self.link_repo.feature_ids_with_unclassified()
        report = StageReport(stage="relationships", attempted=len(feature_ids))
        counts = await run_units(
            feature_ids,
            self.classify_feature,
            limit=self.concurrency,
            report=report,
            unit_name=str,
            logger=logger,
        )
        report.succeeded = len(counts)
        logger.info(
            "Classified %s links across %s/%s features",
            sum(counts), len(counts), len(feature_ids),
        )
        return report, sum(counts)

    async def get_relationship_statistics(self, feature_id: str) -> RelationshipStatistics:
        if not await self.feature_repo.get_by_id(feature_id):
            raise ValidationError(f"Feature not found: {feature_id}")
        links = [link_from_row(r) for r in await self.link_repo.list_for_feature(feature_id)]
        typed = [link for link in links if link.relationshipType]
        strengths = [link.strength for link in typed if link.strength is not None]
        strongest = sorted(
            (link for link in typed if link.strength is not None),
            key=lambda link: (-(link.strength or 0.0), link.evidenceId),
        )[:5]
        return RelationshipStatistics(
            featureId=feature_id,
            total=len(links),
            byType=dict(Counter(link.relationshipType for link in typed)),
            averageStrength=round(sum(strengths) / len(strengths), 4) if strengths else 0.0,
            strongestRelationships=[
                StrongRelationship(
                    evidenceId=link.evidenceId,
                    relationshipType=link.relationshipType or "",
                    strength=link.strength or 0.0,
                    reasoning=link.reasoning,
                )
                for link in strongest
            ],
        )
