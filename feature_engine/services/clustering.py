"""Density-based clustering of evidence embeddings."""
from __future__ import annotations

import logging
from typing import Any, Sequence

import numpy as np
from sklearn.cluster import DBSCAN

from feature_engine import config
from feature_engine.models import ClusteringResult, Evidence, EvidenceCluster, evidence_from_row
from feature_engine.vector_math import cosine_distance_matrix

logger = logging.getLogger("feature_engine.clustering")


def cluster_evidence(
    evidence: Sequence[Evidence],
    *,
    eps: float = config.CLUSTER_EPS,
    min_points: int = config.CLUSTER_MIN_POINTS,
) -> ClusteringResult:
    """DBSCAN over cosine distance.

    Items are ordered by id before clustering so identical input always yields
    identical clusters; ``min_points`` counts the item itself.
    """
    items = sorted((e for e in evidence if e.embedding), key=lambda e: e.id)
    if not items:
        return ClusteringResult()
    if len(items) < max(1, min_points):
        return ClusteringResult(noiseEvidenceIds=[e.id for e in items], consideredCount=len(items))

    distances = cosine_distance_matrix([e.embedding for e in items])
    labels = DBSCAN(eps=eps, min_samples=max(1, min_points), metric="precomputed").fit_predict(distances)

    grouped: dict[int, list[int]] = {}
    noise: list[str] = []
    for index, label in enumerate(labels):
        if label == -1:
            noise.append(items[index].id)
        else:
            grouped.setdefault(int(label), []).append(index)

    member_lists = sorted(grouped.values(), key=lambda indices: items[indices[0]].id)
    clusters: list[EvidenceCluster] = []
    for cluster_id, indices in enumerate(member_lists):
        members = [items[i] for i in indices]
        vectors = [m.embedding for m in members]
        centroid: list[float] = []
        if len({len(v) for v in vectors}) == 1:
            centroid = np.mean(np.asarray(vectors, dtype=float), axis=0).tolist()
        clusters.append(
            EvidenceCluster(
                clusterId=cluster_id,
                evidenceIds=[m.id for m in members],
                evidence=members,
                centroid=centroid,
            )
        )

    return ClusteringResult(clusters=clusters, noiseEvidenceIds=noise, consideredCount=len(items))


class ClusteringEngine:
    def __init__(
        self,
        evidence_repo: Any,
        *,
        eps: float = config.CLUSTER_EPS,
        min_points: int = config.CLUSTER_MIN_POINTS,
    ):
        self.evidence_repo = evidence_repo
        self.eps = eps
        self.min_points = min_points

    async def cluster_unclustered(self) -> ClusteringResult:
        rows = await self.evidence_repo.list_unclustered()
        evidence = [evidence_from_row(row) for row in rows]
        result = cluster_evidence(evidence, eps=self.eps, min_points=self.min_points)
        logger.info(
            "Clustered %s evidence items into %s clusters (%s noise, eps=%s, min_points=%s)",
            result.consideredCount, len(result.clusters), len(result.noiseEvidenceIds),
            self.eps, self.min_points,
        )
        return result
