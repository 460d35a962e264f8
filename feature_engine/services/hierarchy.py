"""Epic/story/task hierarchy inference.

Features form a forest where a task's parent is a story and a story's parent
is an epic. Every proposed parent assignment is validated against that rule
before it is written, which also rules out cycles.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from feature_engine import config
from feature_engine.errors import ConsistencyError, HierarchyCycleError, ProviderError, ValidationError
from feature_engine.models import (
    HIERARCHY_LEVELS,
    Feature,
    HierarchyResult,
    HierarchyTree,
    StageReport,
    feature_from_row,
)
from feature_engine.prompts import (
    FeatureClassificationResponse,
    HierarchyAssignmentResponse,
    HierarchyPairResponse,
    build_assignment_prompt,
    build_classification_prompt,
    build_pair_prompt,
)
from feature_engine.providers.base import ReasoningProvider
from feature_engine.providers.retry import RetryPolicy, call_with_retries
from feature_engine.services.units import run_units

logger = logging.getLogger("feature_engine.hierarchy")

MAX_ANCESTOR_DEPTH = 10

_ACTION_VERBS = ("manage", "create", "update", "delete", "view", "search", "filter")
_DOMAIN_KEYWORDS = ("management", "system", "service", "platform", "authentication")
_TASK_KEYWORDS = ("button", "click", "form")
_PARENT_TYPE = {"story": "epic", "task": "story"}


def classify_by_heuristics(feature: Feature) -> str:
    name = feature.name.lower()
    word_count = len(name.split())
    verb_count = sum(1 for verb in _ACTION_VERBS if verb in name)

    if verb_count >= 2 or any(keyword in name for keyword in _DOMAIN_KEYWORDS):
        return "epic"
    if word_count <= 3 and any(keyword in name for keyword in _TASK_KEYWORDS):
        return "task"
    if (feature.confidenceScore or 0.0) >= 0.85 and word_count >= 3:
        return "epic"
    return "story"


def validate_assignment(
    child_id: str,
    parent_id: str,
    types: dict[str, str],
    parents: dict[str, str | None],
) -> None:
    """Raise unless ``parent_id`` may become the parent of ``child_id``."""
    if child_id not in types:
        raise ValidationError(f"Feature not found: {child_id}")
    if parent_id not in types:
        raise ConsistencyError(f"Parent feature {parent_id} does not exist")

    current: str | None = parent_id
    seen: set[str] = set()
    while current is not None and current not in seen:
        if current == child_id:
            raise HierarchyCycleError(child_id, parent_id)
        seen.add(current)
        current = parents.get(current)

    child_type = types[child_id]
    parent_type = types[parent_id]
    if HIERARCHY_LEVELS[parent_type] != HIERARCHY_LEVELS[child_type] - 1:
        raise ConsistencyError(
            f"A {child_type} cannot be placed under a {parent_type} ({child_id} -> {parent_id})"
        )


def repair_forest(types: dict[str, str], parents: dict[str, str | None]) -> list[str]:
    """Detach features whose parent is missing or not exactly one level up."""
    detached: list[str] = []
    for feature_id in sorted(types):
        parent_id = parents.get(feature_id)
        if parent_id is None:
            continue
        parent_type = types.get(parent_id)
        if parent_type is None or HIERARCHY_LEVELS[parent_type] != HIERARCHY_LEVELS[types[feature_id]] - 1:
            parents[feature_id] = None
            detached.append(feature_id)
    return detached


class HierarchyBuilder:
    def __init__(
        self,
        feature_repo: Any,
        reasoning: ReasoningProvider,
        *,
        confidence_threshold: float = config.HIERARCHY_CONFIDENCE_THRESHOLD,
        retry_policy: RetryPolicy | None = None,
        concurrency: int = config.UNIT_CONCURRENCY,
    ):
        self.feature_repo = feature_repo
        self.reasoning = reasoning
        self.confidence_threshold = confidence_threshold
        self.retry_policy = retry_policy or RetryPolicy()
        self.concurrency = concurrency

    async def classify_feature(self, feature: Feature) -> str:
        try:
            response = await call_with_retries(
                lambda: self.reasoning.complete(build_classification_prompt(feature), FeatureClassificationResponse),
                policy=self.retry_policy,
                description="Feature classification",
            )
            return response.feature_type
        except ProviderError as exc:
            logger.warning("Classification of '%s' failed, using heuristics: %s", feature.name, exc)
            return classify_by_heuristics(feature)

    async def build(self) -> HierarchyResult:
        all_features = [feature_from_row(row) for row in await self.feature_repo.list_all()]
        original = {f.id: (f.featureType, f.parentId) for f in all_features}
        types = {f.id: f.featureType for f in all_features}
        parents = {f.id: f.parentId for f in all_features}
        scope = [f for f in all_features if f.status != "rejected"]
        locked = {f.id for f in all_features if f.reviewedAt}
        result = HierarchyResult()

        pending = [f for f in scope if not f.classifiedAt and f.id not in locked]
        report = StageReport(stage="hierarchy", attempted=len(pending))

        async def _classify(feature: Feature) -> tuple[str, str]:
            return feature.id, await self.classify_feature(feature)

        classified = await run_units(
            pending, _classify, limit=self.concurrency, report=report, unit_name=lambda f: f.id, logger=logger,
        )
        newly_classified = set()
        for feature_id, feature_type in classified:
            types[feature_id] = feature_type
            newly_classified.add(feature_id)
        result.classified = len(newly_classified)

        for feature_id in repair_forest(types, parents):
            logger.info("Detached feature %s from an incompatible parent", feature_id)

        by_id = {f.id: f.model_copy(update={"featureType": types[f.id]}) for f in scope}
        proposals = await self._propose_assignments(by_id, parents, locked, result)
        for child_id, parent_id in proposals:
            try:
                if parent_id not in by_id:
                    raise ConsistencyError(f"Parent feature {parent_id} is not an active feature")
                validate_assignment(child_id, parent_id, types, parents)
            except (ConsistencyError, ValidationError) as exc:
                logger.warning("Rejected hierarchy assignment %s -> %s: %s", child_id, parent_id, exc)
                result.rejected += 1
                continue
            parents[child_id] = parent_id
            result.relationships += 1

        repair_forest(types, parents)

        classified_at = datetime.now(timezone.utc).isoformat()
        for feature_id, (feature_type, parent_id) in original.items():
            changed = (types[feature_id], parents[feature_id]) != (feature_type, parent_id)
            if changed or feature_id in newly_classified:
                await self.feature_repo.update_hierarchy(
                    feature_id,
                    types[feature_id],
                    parents[feature_id],
                    classified_at if feature_id in newly_classified else None,
                )

        for feature in scope:
            feature_type = types[feature.id]
            if feature_type == "epic":
                result.epics += 1
            elif feature_type == "story":
                result.stories += 1
            else:
                result.tasks += 1
        result.failures = [*report.failures, *result.failures]
        logger.info(
            "Hierarchy built: %s classified, %s relationships, %s rejected (%s epics, %s stories, %s tasks)",
            result.classified, result.relationships, result.rejected,
            result.epics, result.stories, result.tasks,
        )
        return result

    async def _propose_assignments(
        self,
        by_id: dict[str, Feature],
        parents: dict[str, str | None],
        locked: set[str],
        result: HierarchyResult,
    ) -> list[tuple[str, str]]:
        orphans = [
            f for f in by_id.values()
            if f.featureType in _PARENT_TYPE and parents.get(f.id) is None and f.id not in locked
        ]
        orphans = [f for f in orphans if any(p.featureType == _PARENT_TYPE[f.featureType] for p in by_id.values())]
        if not orphans:
            return []
        candidates = [f for f in by_id.values() if f.featureType in ("epic", "story")]

        try:
            response = await call_with_retries(
                lambda: self.reasoning.complete(build_assignment_prompt(orphans, candidates), HierarchyAssignmentResponse),
                policy=self.retry_policy,
                description="Hierarchy assignment",
            )
        except ProviderError as exc:
            logger.warning("Batched hierarchy assignment failed, falling back to pairwise analysis: %s", exc)
            return await self._propose_pairwise(orphans, candidates, result)

        orphan_ids = {f.id for f in orphans}
        proposals: list[tuple[str, str]] = []
        assigned: set[str] = set()
        for item in response.assignments:
            if item.confidence < self.confidence_threshold or item.child_id in assigned:
                continue
            if item.child_id not in orphan_ids:
                logger.warning("Ignoring assignment for unknown or already parented feature %s", item.child_id)
                result.rejected += 1
                continue
            assigned.add(item.child_id)
            proposals.append((item.child_id, item.parent_id))
        return proposals

    async def _propose_pairwise(
        self,
        orphans: list[Feature],
        candidates: list[Feature],
        result: HierarchyResult,
    ) -> list[tuple[str, str]]:
        pairs = [
            (child, parent)
            for child in orphans
            for parent in candidates
            if parent.featureType == _PARENT_TYPE[child.featureType]
        ]
        report = StageReport(stage="hierarchy", attempted=len(pairs))

        async def _analyze(pair: tuple[Feature, Feature]) -> tuple[str, str, float]:
            child, parent = pair
            verdict = await call_with_retries(
                lambda: self.reasoning.complete(build_pair_prompt(child, parent), HierarchyPairResponse),
                policy=self.retry_policy,
                description="Hierarchy pair analysis",
            )
            return child.id, parent.id, verdict.confidence if verdict.is_child_of else 0.0

        verdicts = await run_units(
            pairs, _analyze, limit=self.concurrency, report=report,
            unit_name=lambda pair: f"{pair[0].id}:{pair[1].id}", logger=logger,
        )
        result.failures.extend(report.failures)

        best: dict[str, tuple[float, str]] = {}
        for child_id, parent_id, confidence in verdicts:
            if confidence < self.confidence_threshold:
                continue
            current = best.get(child_id)
            if current is None or confidence > current[0] or (confidence == current[0] and parent_id < current[1]):
                best[child_id] = (confidence, parent_id)
        return [(child_id, best[child_id][1]) for child_id in sorted(best)]

    async def _load_forest(self) -> tuple[dict[str, str], dict[str, str | None]]:
        features = [feature_from_row(row) for row in await self.feature_repo.list_all()]
        return {f.id: f.featureType for f in features}, {f.id: f.parentId for f in features}

    async def assign_parent(self, child_id: str, parent_id: str | None) -> Feature:
        """Manually set or clear a feature's parent, enforcing the forest rules."""
        types, parents = await self._load_forest()
        if child_id not in types:
            raise ValidationError(f"Feature not found: {child_id}")
        if parent_id is not None:
            validate_assignment(child_id, parent_id, types, parents)
        await self.feature_repo.update_hierarchy(child_id, types[child_id], parent_id)
        row = await self.feature_repo.get_by_id(child_id)
        return feature_from_row(row)

    async def get_hierarchy_tree(self, feature_id: str) -> HierarchyTree:
        row = await self.feature_repo.get_by_id(feature_id)
        if not row:
            raise ValidationError(f"Feature not found: {feature_id}")
        feature = feature_from_row(row)

        ancestors: list[Feature] = []
        seen = {feature.id}
        current_id = feature.parentId
        while current_id and current_id not in seen and len(ancestors) < MAX_ANCESTOR_DEPTH:
            ancestor_row = await self.feature_repo.get_by_id(current_id)
            if not ancestor_row:
                break
            ancestor = feature_from_row(ancestor_row)
            ancestors.append(ancestor)
            seen.add(ancestor.id)
            current_id = ancestor.parentId

        children = [feature_from_row(r) for r in await self.feature_repo.list_children(feature_id)]
        return HierarchyTree(
            feature=feature,
            parent=ancestors[0] if ancestors else None,
            children=children,
            ancestors=ancestors,
        )
