"""Two-phase duplicate detection and merging of inferred features.

A cheap lexical name filter shortlists candidate pairs; only shortlisted
pairs are sent to the reasoning provider for a semantic verdict.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from feature_engine import config
from feature_engine.errors import ProviderError
from feature_engine.models import DeduplicationResult, Feature, MergeRecord, UnitFailure, feature_from_row
from feature_engine.name_similarity import are_names_similar
from feature_engine.observability import record_unit_failure
from feature_engine.prompts import FeatureComparisonResponse, build_comparison_prompt
from feature_engine.providers.base import ReasoningProvider
from feature_engine.providers.retry import RetryPolicy, call_with_retries

logger = logging.getLogger("feature_engine.dedup")

_DEDUP_STATUSES = ("candidate", "confirmed")


def _ancestor_ids(feature_id: str, parents: dict[str, str | None]) -> set[str]:
    seen: set[str] = set()
    current = parents.get(feature_id)
    while current and current not in seen:
        seen.add(current)
        current = parents.get(current)
    return seen


def choose_survivor(
    feature1: Feature,
    feature2: Feature,
    recommended: str | None = None,
) -> tuple[Feature, Feature] | None:
    """Return (survivor, loser), or None when both are human-reviewed.

    Order of preference: the provider's recommendation, then the higher
    confidence score, then the earlier inference time, then the smaller id.
    A reviewed feature is never the loser.
    """
    if feature1.reviewedAt and feature2.reviewedAt:
        return None

    if recommended == "feature1":
        survivor, loser = feature1, feature2
    elif recommended == "feature2":
        survivor, loser = feature2, feature1
    else:
        def _rank(feature: Feature) -> tuple[float, str, str]:
            return (-(feature.confidenceScore or 0.0), feature.inferredAt, feature.id)

        survivor, loser = sorted((feature1, feature2), key=_rank)

    if loser.reviewedAt:
        survivor, loser = loser, survivor
    return survivor, loser


class DeduplicationEngine:
    def __init__(
        self,
        feature_repo: Any,
        link_repo: Any,
        reasoning: ReasoningProvider,
        scorer: Any,
        *,
        name_threshold: float = config.NAME_SIMILARITY_THRESHOLD,
        similarity_threshold: float = config.DEDUP_SIMILARITY_THRESHOLD,
        retry_policy: RetryPolicy | None = None,
    ):
        self.feature_repo = feature_repo
        self.link_repo = link_repo
        self.reasoning = reasoning
        self.scorer = scorer
        self.name_threshold = name_threshold
        self.similarity_threshold = similarity_threshold
        self.retry_policy = retry_policy or RetryPolicy()

    def shortlist(self, features: list[Feature]) -> list[tuple[Feature, Feature]]:
        parents = {f.id: f.parentId for f in features}
        pairs: list[tuple[Feature, Feature]] = []
        for i, first in enumerate(features):
            for second in features[i + 1:]:
                if not are_names_similar(first.name, second.name, self.name_threshold):
                    continue
                if first.id in _ancestor_ids(second.id, parents) or second.id in _ancestor_ids(first.id, parents):
                    continue
                pairs.append((first, second))
        return pairs

    async def compare(self, feature1: Feature, feature2: Feature) -> FeatureComparisonResponse:
        prompt = build_comparison_prompt(feature1, feature2)
        return await call_with_retries(
            lambda: self.reasoning.complete(prompt, FeatureComparisonResponse),
            policy=self.retry_policy,
            description="Feature comparison",
        )

    async def merge_features(
        self,
        survivor_id: str,
        loser_id: str,
        *,
        reasoning: str = "",
        similarity_score: float | None = None,
    ) -> MergeRecord | None:
        """Fold ``loser_id`` into ``survivor_id``. No-op when either is gone."""
        if survivor_id == loser_id:
            return None
        survivor_row = await self.feature_repo.get_by_id(survivor_id)
        loser_row = await self.feature_repo.get_by_id(loser_id)
        if not survivor_row or not loser_row:
            logger.info("Skipping merge %s <- %s: feature no longer exists", survivor_id, loser_id)
            return None

        survivor = feature_from_row(survivor_row)
        loser = feature_from_row(loser_row)

        moved = await self.link_repo.reassign(loser.id, survivor.id)
        await self.feature_repo.delete(loser.id)

        metadata = dict(survivor.metadata)
        merged_from = list(metadata.get("mergedFrom") or [])
        merged_from.append(
            {
                "id": loser.id,
                "name": loser.name,
                "reasoning": reasoning,
                "similarityScore": similarity_score,
                "mergedAt": datetime.now(timezone.utc).isoformat(),
            }
        )
        metadata["mergedFrom"] = merged_from
        await self.feature_repo.update_metadata(survivor.id, metadata)
        await self.scorer.recalculate(survivor.id)

        logger.info("Merged feature '%s' into '%s' (%s links moved)", loser.name, survivor.name, moved)
        return MergeRecord(
            survivorId=survivor.id,
            mergedId=loser.id,
            similarityScore=similarity_score or 0.0,
            reasoning=reasoning,
            movedLinks=moved,
        )

    async def validate_and_merge_duplicates(self) -> DeduplicationResult:
        rows = await self.feature_repo.list_by_status(_DEDUP_STATUSES)
        features = [feature_from_row(row) for row in rows]
        pairs = self.shortlist(features)
        total_pairs = len(features) * (len(features) - 1) // 2
        result = DeduplicationResult(pairsShortlisted=len(pairs))
        logger.info("Name filter shortlisted %s of %s feature pairs", len(pairs), total_pairs)

        for stale_first, stale_second in pairs:
            # Earlier merges in this run delete features and rescore survivors.
            first_row = await self.feature_repo.get_by_id(stale_first.id)
            second_row = await self.feature_repo.get_by_id(stale_second.id)
            if not first_row or not second_row:
                continue
            first = feature_from_row(first_row)
            second = feature_from_row(second_row)
            try:
                verdict = await self.compare(first, second)
            except ProviderError as exc:
                unit = f"{first.id}:{second.id}"
                logger.warning("Duplicate check failed for %s: %s", unit, exc)
                result.failures.append(UnitFailure(unit=unit, reason=str(exc), errorType=type(exc).__name__))
                record_unit_failure("deduplicate", type(exc).__name__)
                continue
            result.pairsCompared += 1

            if not verdict.is_duplicate or verdict.similarity_score < self.similarity_threshold:
                continue

            choice = choose_survivor(first, second, verdict.recommended_survivor)
            if choice is None:
                logger.info("Not merging reviewed features '%s' and '%s'", first.name, second.name)
                continue
            survivor, loser = choice
            record = await self.merge_features(
                survivor.id,
                loser.id,
                reasoning=verdict.reasoning,
                similarity_score=verdict.similarity_score,
            )
            if record is not None:
                result.merges.append(record)

        result.merged = len(result.merges)
        logger.info("Deduplication merged %s features", result.merged)
        return result
