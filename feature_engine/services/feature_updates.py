"""Keeps the catalog consistent after a document's evidence changes."""
from __future__ import annotations

import logging
from typing import Any, Iterable

from feature_engine.errors import FeatureEngineError, ValidationError
from feature_engine.models import (
    ChangeNotification,
    FeatureUpdateResult,
    UnitFailure,
    evidence_from_row,
    feature_from_row,
)

logger = logging.getLogger("feature_engine.incremental")

SIGNIFICANT_CHANGE = 0.1

_STATUS_CHANGE_KEYS = {
    "confirmed": "toConfirmed",
    "candidate": "toCandidate",
    "rejected": "toRejected",
}


class FeatureUpdateService:
    def __init__(
        self,
        feature_repo: Any,
        evidence_repo: Any,
        link_repo: Any,
        scorer: Any,
        hypothesis: Any,
        dedup: Any,
    ):
        self.feature_repo = feature_repo
        self.evidence_repo = evidence_repo
        self.link_repo = link_repo
        self.scorer = scorer
        self.hypothesis = hypothesis
        self.dedup = dedup

    async def update_affected_features(self, feature_ids: Iterable[str]) -> ChangeNotification:
        """Drop links to obsolete evidence and rescore each feature.

        ``statusChanged`` separates features that crossed a status threshold
        from those whose score merely drifted.
        """
        ids = sorted(set(feature_ids))
        notification = ChangeNotification(totalFeatures=len(ids))
        if not ids:
            return notification

        notification.removedLinks = await self.link_repo.delete_obsolete_links(ids)

        for feature_id in ids:
            try:
                row = await self.feature_repo.get_by_id(feature_id)
                if not row:
                    raise ValidationError(f"Feature not found: {feature_id}")
                before = feature_from_row(row)
                scored = await self.scorer.recalculate(feature_id)
            except FeatureEngineError as exc:
                logger.warning("Failed to update feature %s: %s", feature_id, exc)
                notification.failures.append(
                    UnitFailure(unit=feature_id, reason=str(exc), errorType=type(exc).__name__)
                )
                continue

            previous = before.confidenceScore
            change = round(scored.confidenceScore - (previous or 0.0), 2)
            status_changed = scored.status != before.status
            update = FeatureUpdateResult(
                featureId=feature_id,
                featureName=before.name,
                previousConfidence=previous,
                newConfidence=scored.confidenceScore,
                confidenceChange=change,
                previousStatus=before.status,
                status=scored.status,
                statusChanged=status_changed,
            )
            notification.updatedFeatures.append(update)
            if status_changed:
                notification.statusChanges[_STATUS_CHANGE_KEYS[scored.status]] += 1
            if status_changed or abs(change) > SIGNIFICANT_CHANGE:
                logger.info(
                    "Feature '%s' confidence %s -> %.2f (%s -> %s)",
                    before.name, previous, scored.confidenceScore, before.status, scored.status,
                )

        return notification

    async def infer_features_from_new_evidence(self, document_id: str) -> list[str]:
        """Hypothesize one feature from the document's active, unlinked evidence."""
        rows = await self.evidence_repo.list_unlinked_by_document(document_id)
        if not rows:
            return []
        evidence = [evidence_from_row(row) for row in rows]
        feature = await self.hypothesis.generate_from_cluster(evidence)
        await self.scorer.calculate_for_feature(feature.id)
        return [feature.id]

    async def merge_new_with_existing_features(self) -> int:
        result = await self.dedup.validate_and_merge_duplicates()
        return result.merged
