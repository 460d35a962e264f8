"""Evidence-type confidence scoring with per-type saturation.

Each evidence type carries a base weight. Only the first ``max_items_per_type``
items of a type count, and the i-th counted item contributes
``weight / 2**i``. The score is ``1 - prod(1 - effective_weight)`` rounded to
two decimals, and the status follows from the rounded score.
"""
from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Iterable

from feature_engine import config
from feature_engine.errors import ValidationError
from feature_engine.models import ConfidenceResult, StageReport, TypeContribution, UnitFailure

logger = logging.getLogger("feature_engine.scoring")

SIGNAL_WEIGHTS: dict[str, float] = {
    "endpoint": 0.4,
    "payload": 0.35,
    "ui_element": 0.3,
    "acceptance_criteria": 0.3,
    "requirement": 0.25,
    "flow": 0.2,
    "bug": 0.2,
    "edge_case": 0.15,
    "constraint": 0.15,
}
DEFAULT_SIGNAL_WEIGHT = 0.1


def determine_status(
    score: float,
    *,
    reject_threshold: float = config.REJECT_THRESHOLD,
    confirmed_threshold: float = config.CONFIRMED_THRESHOLD,
) -> str:
    if score >= confirmed_threshold:
        return "confirmed"
    if score >= reject_threshold:
        return "candidate"
    return "rejected"


def score_evidence_types(
    evidence_types: Iterable[str],
    *,
    max_items_per_type: int = config.MAX_ITEMS_PER_TYPE,
    reject_threshold: float = config.REJECT_THRESHOLD,
    confirmed_threshold: float = config.CONFIRMED_THRESHOLD,
) -> ConfidenceResult:
    counts = Counter(evidence_types)
    total = sum(counts.values())
    if total == 0:
        return ConfidenceResult(confidenceScore=0.0, status="rejected", evidenceCount=0)

    product = 1.0
    breakdown: list[TypeContribution] = []
    for evidence_type in sorted(counts):
        count = counts[evidence_type]
        weight = SIGNAL_WEIGHTS.get(evidence_type, DEFAULT_SIGNAL_WEIGHT)
        type_product = 1.0
        for index in range(min(count, max(0, max_items_per_type))):
            type_product *= 1.0 - weight / (2 ** index)
        product *= type_product
        breakdown.append(
            TypeContribution(
                type=evidence_type,
                count=count,
                weight=weight,
                contribution=round(1.0 - type_product, 4),
            )
        )

    score = round(min(1.0, max(0.0, 1.0 - product)), 2)
    status = determine_status(
        score,
        reject_threshold=reject_threshold,
        confirmed_threshold=confirmed_threshold,
    )
    return ConfidenceResult(
        confidenceScore=score,
        status=status,
        evidenceCount=total,
        breakdown=breakdown,
    )


class ConfidenceScorer:
    """Recomputes and persists confidence from a feature's active evidence links."""

    def __init__(
        self,
        feature_repo: Any,
        link_repo: Any,
        *,
        max_items_per_type: int = config.MAX_ITEMS_PER_TYPE,
        reject_threshold: float = config.REJECT_THRESHOLD,
        confirmed_threshold: float = config.CONFIRMED_THRESHOLD,
    ):
        self.feature_repo = feature_repo
        self.link_repo = link_repo
        self.max_items_per_type = max_items_per_type
        self.reject_threshold = reject_threshold
        self.confirmed_threshold = confirmed_threshold

    def score(self, evidence_types: Iterable[str]) -> ConfidenceResult:
        return score_evidence_types(
            evidence_types,
            max_items_per_type=self.max_items_per_type,
            reject_threshold=self.reject_threshold,
            confirmed_threshold=self.confirmed_threshold,
        )

    async def _score_feature(self, feature_id: str) -> tuple[dict, ConfidenceResult]:
        feature = await self.feature_repo.get_by_id(feature_id)
        if not feature:
            raise ValidationError(f"Feature not found: {feature_id}")
        links = await self.link_repo.list_for_feature(feature_id)
        result = self.score(link["evidence_type"] for link in links)
        result.featureId = feature_id
        return feature, result

    async def calculate_for_feature(self, feature_id: str) -> ConfidenceResult:
        """Score a feature and persist it; reviewed features keep their status."""
        feature, result = await self._score_feature(feature_id)
        if feature.get("reviewed_at"):
            await self.feature_repo.update_confidence(feature_id, result.confidenceScore)
            result.statusApplied = False
            result.status = feature.get("status") or result.status
        else:
            await self.feature_repo.update_confidence(feature_id, result.confidenceScore, result.status)
        logger.debug(
            "Scored feature %s: %.2f (%s) from %s evidence items",
            feature_id, result.confidenceScore, result.status, result.evidenceCount,
        )
        return result

    async def recalculate(self, feature_id: str) -> ConfidenceResult:
        return await self.calculate_for_feature(feature_id)

    async def calculate_for_all_features(self) -> StageReport:
        report = StageReport(stage="score")
        features = await self.feature_repo.list_unreviewed()
        report.attempted = len(features)
        for feature in features:
            feature_id = str(feature["id"])
            try:
                await self.calculate_for_feature(feature_id)
                report.succeeded += 1
            except ValidationError as exc:
                # Deleted by a concurrent merge between listing and scoring.
                report.failures.append(UnitFailure(unit=feature_id, reason=str(exc), errorType="ValidationError"))
        logger.info("Scored %s/%s unreviewed features", report.succeeded, report.attempted)
        return report

    async def get_breakdown(self, feature_id: str) -> ConfidenceResult:
        """Per-type contributions for a feature, without persisting anything."""
        _, result = await self._score_feature(feature_id)
        return result
