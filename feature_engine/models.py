"""Pydantic models for evidence, features and pipeline reports."""
from __future__ import annotations
import json
from pydantic import BaseModel, Field
from typing import Any, Literal, Optional

EvidenceType = Literal[
    "ui_element",
    "flow",
    "endpoint",
    "payload",
    "requirement",
    "edge_case",
    "acceptance_criteria",
    "bug",
    "constraint",
]
FeatureStatus = Literal["candidate", "confirmed", "rejected"]
FeatureType = Literal["epic", "story", "task"]
RelationshipType = Literal["implements", "supports", "constrains", "extends"]

EVIDENCE_TYPES: tuple[str, ...] = (
    "ui_element",
    "flow",
    "endpoint",
    "payload",
    "requirement",
    "edge_case",
    "acceptance_criteria",
    "bug",
    "constraint",
)
RELATIONSHIP_TYPES: tuple[str, ...] = ("implements", "supports", "constrains", "extends")

# epic=0, story=1, task=2
HIERARCHY_LEVELS: dict[str, int] = {"epic": 0, "story": 1, "task": 2}


# ── Catalog entities ────────────────────────────────────────────────

class Evidence(BaseModel):
    id: str
    documentId: str
    type: str
    content: str
    embedding: Optional[list[float]] = None
    obsolete: bool = False
    extractedAt: str = ""


class EvidenceDraft(BaseModel):
    """Evidence produced by a fresh extraction, not yet stored."""
    type: EvidenceType
    content: str


class Feature(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    confidenceScore: Optional[float] = None
    status: FeatureStatus = "candidate"
    featureType: FeatureType = "task"
    parentId: Optional[str] = None
    inferredAt: str = ""
    reviewedAt: Optional[str] = None
    classifiedAt: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class FeatureEvidenceLink(BaseModel):
    featureId: str
    evidenceId: str
    relationshipType: Optional[RelationshipType] = None
    strength: Optional[float] = None
    reasoning: Optional[str] = None
    evidenceType: str = ""
    evidenceContent: str = ""


class Document(BaseModel):
    id: str
    filename: str = ""
    version: int = 1


# ── Clustering ──────────────────────────────────────────────────────

class EvidenceCluster(BaseModel):
    clusterId: int
    evidenceIds: list[str]
    evidence: list[Evidence] = Field(default_factory=list)
    centroid: list[float] = Field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.evidenceIds)


class ClusteringResult(BaseModel):
    clusters: list[EvidenceCluster] = Field(default_factory=list)
    noiseEvidenceIds: list[str] = Field(default_factory=list)
    consideredCount: int = 0


# ── Scoring ─────────────────────────────────────────────────────────

class TypeContribution(BaseModel):
    type: str
    count: int
    weight: float
    contribution: float


class ConfidenceResult(BaseModel):
    featureId: str = ""
    confidenceScore: float
    status: FeatureStatus
    evidenceCount: int = 0
    breakdown: list[TypeContribution] = Field(default_factory=list)
    statusApplied: bool = True


# ── Stage reporting ─────────────────────────────────────────────────

class UnitFailure(BaseModel):
    unit: str
    reason: str
    errorType: str = ""


class StageReport(BaseModel):
    stage: str
    attempted: int = 0
    succeeded: int = 0
    failures: list[UnitFailure] = Field(default_factory=list)
    durationMs: float = 0.0

    @property
    def failed(self) -> int:
        return len(self.failures)


class MergeRecord(BaseModel):
    survivorId: str
    mergedId: str
    similarityScore: float = 0.0
    reasoning: str = ""
    movedLinks: int = 0


class DeduplicationResult(BaseModel):
    merged: int = 0
    pairsCompared: int = 0
    pairsShortlisted: int = 0
    merges: list[MergeRecord] = Field(default_factory=list)
    failures: list[UnitFailure] = Field(default_factory=list)


class HierarchyResult(BaseModel):
    classified: int = 0
    relationships: int = 0
    epics: int = 0
    stories: int = 0
    tasks: int = 0
    rejected: int = 0
    failures: list[UnitFailure] = Field(default_factory=list)


class HierarchyTree(BaseModel):
    feature: Feature
    parent: Optional[Feature] = None
    children: list[Feature] = Field(default_factory=list)
    ancestors: list[Feature] = Field(default_factory=list)


class StrongRelationship(BaseModel):
    evidenceId: str
    relationshipType: str
    strength: float
    reasoning: Optional[str] = None


class RelationshipStatistics(BaseModel):
    featureId: str
    total: int = 0
    byType: dict[str, int] = Field(default_factory=dict)
    averageStrength: float = 0.0
    strongestRelationships: list[StrongRelationship] = Field(default_factory=list)


# ── Incremental reprocessing ────────────────────────────────────────

class IncrementalExtractionResult(BaseModel):
    documentId: str
    obsoleteEvidenceCount: int = 0
    newEvidenceCount: int = 0
    newEvidenceIds: list[str] = Field(default_factory=list)
    affectedFeatureIds: list[str] = Field(default_factory=list)


class BatchExtractionResult(BaseModel):
    totalDocuments: int = 0
    results: list[IncrementalExtractionResult] = Field(default_factory=list)
    failures: list[UnitFailure] = Field(default_factory=list)


class FeatureUpdateResult(BaseModel):
    featureId: str
    featureName: str
    previousConfidence: Optional[float] = None
    newConfidence: float
    confidenceChange: float
    previousStatus: FeatureStatus
    status: FeatureStatus
    statusChanged: bool = False


class ChangeNotification(BaseModel):
    totalFeatures: int = 0
    removedLinks: int = 0
    updatedFeatures: list[FeatureUpdateResult] = Field(default_factory=list)
    statusChanges: dict[str, int] = Field(
        default_factory=lambda: {"toConfirmed": 0, "toCandidate": 0, "toRejected": 0}
    )
    failures: list[UnitFailure] = Field(default_factory=list)


class ReprocessReport(BaseModel):
    documentId: str
    documentVersion: int
    extraction: IncrementalExtractionResult
    changes: ChangeNotification
    newFeatureIds: list[str] = Field(default_factory=list)
    featuresMerged: int = 0


# ── Pipeline ────────────────────────────────────────────────────────

class PipelineSummary(BaseModel):
    embeddingsGenerated: int = 0
    clustersFound: int = 0
    featuresGenerated: int = 0
    featuresMerged: int = 0
    hierarchyDetected: int = 0
    confidenceScored: int = 0
    relationshipsBuilt: int = 0
    stages: dict[str, StageReport] = Field(default_factory=dict)

    def as_counts(self) -> dict[str, int]:
        return self.model_dump(exclude={"stages"})


# ── Row conversion ──────────────────────────────────────────────────

def _load_json(value: Any, default: Any) -> Any:
    if value is None or value == "":
        return default
    if isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


def evidence_from_row(row: dict[str, Any]) -> Evidence:
    return Evidence(
        id=str(row["id"]),
        documentId=str(row.get("document_id") or ""),
        type=str(row.get("type") or ""),
        content=str(row.get("content") or ""),
        embedding=_load_json(row.get("embedding_json"), None),
        obsolete=bool(row.get("obsolete")),
        extractedAt=str(row.get("extracted_at") or ""),
    )


def feature_from_row(row: dict[str, Any]) -> Feature:
    score = row.get("confidence_score")
    return Feature(
        id=str(row["id"]),
        name=str(row.get("name") or ""),
        description=row.get("description"),
        confidenceScore=float(score) if score is not None else None,
        status=row.get("status") or "candidate",
        featureType=row.get("feature_type") or "task",
        parentId=row.get("parent_id"),
        inferredAt=str(row.get("inferred_at") or ""),
        reviewedAt=row.get("reviewed_at"),
        classifiedAt=row.get("classified_at"),
        metadata=_load_json(row.get("metadata_json"), {}),
    )


def link_from_row(row: dict[str, Any]) -> FeatureEvidenceLink:
    strength = row.get("strength")
    return FeatureEvidenceLink(
        featureId=str(row["feature_id"]),
        evidenceId=str(row["evidence_id"]),
        relationshipType=row.get("relationship_type"),
        strength=float(strength) if strength is not None else None,
        reasoning=row.get("reasoning"),
        evidenceType=str(row.get("evidence_type") or ""),
        evidenceContent=str(row.get("evidence_content") or ""),
    )
