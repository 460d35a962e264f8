"""Prompt builders and the structured response shapes expected back."""
from __future__ import annotations

from typing import Literal, Optional, Sequence

from pydantic import BaseModel, Field, field_validator

from feature_engine.models import Evidence, Feature, FeatureEvidenceLink, FeatureType, RelationshipType


# ── Response shapes ─────────────────────────────────────────────────

class FeatureHypothesisResponse(BaseModel):
    feature_name: str
    description: str
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str

    @field_validator("feature_name", "description", "reasoning")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value.strip()


class FeatureComparisonResponse(BaseModel):
    is_duplicate: bool
    similarity_score: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    recommended_survivor: Optional[Literal["feature1", "feature2", "combine"]] = None


class RelationshipItem(BaseModel):
    evidence_id: str
    relationship_type: RelationshipType
    strength: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""


class RelationshipBatchResponse(BaseModel):
    relationships: list[RelationshipItem]


class FeatureClassificationResponse(BaseModel):
    feature_type: FeatureType
    reasoning: str = ""


class HierarchyAssignmentItem(BaseModel):
    child_id: str
    parent_id: str
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    reasoning: str = ""


class HierarchyAssignmentResponse(BaseModel):
    assignments: list[HierarchyAssignmentItem] = Field(default_factory=list)


class HierarchyPairResponse(BaseModel):
    is_child_of: bool
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""


# ── Prompt builders ─────────────────────────────────────────────────

def _describe(feature: Feature) -> str:
    return f'"{feature.name}": {feature.description or "(no description)"}'


def build_hypothesis_prompt(evidence: Sequence[Evidence]) -> str:
    lines = "\n".join(f"{idx}. [{item.type}] {item.content}" for idx, item in enumerate(evidence, start=1))
    return f"""The following evidence items were grouped together because they describe related behaviour.

{lines}

Infer the single product feature these items describe. Respond as JSON:
{{
  "feature_name": "short title-case name (2-5 words)",
  "description": "one or two sentences describing what the feature does",
  "confidence": 0.0-1.0,
  "reasoning": "why these items belong to this feature"
}}"""


def build_comparison_prompt(feature1: Feature, feature2: Feature) -> str:
    return f"""Decide whether these two inferred features describe the same product capability.

Feature 1: {_describe(feature1)}
Feature 2: {_describe(feature2)}

Respond as JSON:
{{
  "is_duplicate": true or false,
  "similarity_score": 0.0-1.0,
  "reasoning": "short explanation",
  "recommended_survivor": "feature1", "feature2", "combine" or null
}}"""


def build_relationship_prompt(feature: Feature, links: Sequence[FeatureEvidenceLink]) -> str:
    items = "\n".join(
        f"[ID: {link.evidenceId}] (type: {link.evidenceType}) {link.evidenceContent}" for link in links
    )
    return f"""Feature: {_describe(feature)}

Classify how each evidence item relates to the feature:
- implements: the item directly implements the feature
- supports: the item supports or enables the feature
- constrains: the item limits or validates the feature
- extends: the item adds optional behaviour to the feature

Evidence:
{items}

Respond as JSON with exactly {len(links)} entries, one per evidence ID above:
{{
  "relationships": [
    {{"evidence_id": "<ID>", "relationship_type": "implements|supports|constrains|extends", "strength": 0.0-1.0, "reasoning": "short explanation"}}
  ]
}}"""


def build_classification_prompt(feature: Feature) -> str:
    return f"""Classify this product feature by scope.

Feature: {_describe(feature)}

- epic: a broad capability area spanning several user-facing stories
- story: a single user-facing capability
- task: a narrow implementation detail of a story (a button, a field, a single call)

Respond as JSON:
{{"feature_type": "epic|story|task", "reasoning": "short explanation"}}"""


def build_assignment_prompt(children: Sequence[Feature], parents: Sequence[Feature]) -> str:
    child_lines = "\n".join(f"[ID: {f.id}] ({f.featureType}) {_describe(f)}" for f in children)
    parent_lines = "\n".join(f"[ID: {f.id}] ({f.featureType}) {_describe(f)}" for f in parents)
    return f"""Assign each unparented feature to the best parent one level above it.
Stories may only be placed under epics; tasks may only be placed under stories.
Leave a feature out when no parent fits.

Unparented features:
{child_lines}

Candidate parents:
{parent_lines}

Respond as JSON using the IDs exactly as given:
{{
  "assignments": [
    {{"child_id": "<ID>", "parent_id": "<ID>", "confidence": 0.0-1.0, "reasoning": "short explanation"}}
  ]
}}"""


def build_pair_prompt(child: Feature, parent: Feature) -> str:
    return f"""Is the first feature a part of the second feature's scope?

Child candidate ({child.featureType}): {_describe(child)}
Parent candidate ({parent.featureType}): {_describe(parent)}

Respond as JSON:
{{"is_child_of": true or false, "confidence": 0.0-1.0, "reasoning": "short explanation"}}"""
