"""Cosine similarity helpers over embedding vectors."""
from __future__ import annotations

from typing import Sequence

import numpy as np


def cosine_similarity(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
    """Cosine similarity in [-1, 1].

    Returns 0.0 for empty vectors, vectors of different length, or a zero norm
    on either side instead of raising.
    """
    if a is None or b is None:
        return 0.0
    if len(a) == 0 or len(a) != len(b):
        return 0.0

    vec_a = np.asarray(a, dtype=float)
    vec_b = np.asarray(b, dtype=float)
    denominator = float(np.linalg.norm(vec_a) * np.linalg.norm(vec_b))
    if denominator == 0.0 or not np.isfinite(denominator):
        return 0.0

    similarity = float(np.dot(vec_a, vec_b) / denominator)
    return max(-1.0, min(1.0, similarity))


def cosine_distance(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
    return 1.0 - cosine_similarity(a, b)


def cosine_distance_matrix(vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """Pairwise cosine distances, clipped to [0, 2].

    Vectors of mixed length or with zero norm get similarity 0 (distance 1)
    against everything, matching ``cosine_similarity``.
    """
    count = len(vectors)
    if count == 0:
        return np.zeros((0, 0), dtype=float)

    lengths = {len(v) for v in vectors}
    if len(lengths) == 1 and 0 not in lengths:
        matrix = np.asarray(vectors, dtype=float)
        norms = np.linalg.norm(matrix, axis=1)
        safe = np.where(norms == 0.0, 1.0, norms)
        normalized = matrix / safe[:, None]
        similarity = normalized @ normalized.T
        zero_rows = norms == 0.0
        similarity[zero_rows, :] = 0.0
        similarity[:, zero_rows] = 0.0
    else:
        similarity = np.zeros((count, count), dtype=float)
        for i in range(count):
            for j in range(i + 1, count):
                value = cosine_similarity(vectors[i], vectors[j])
                similarity[i, j] = value
                similarity[j, i] = value

    distances = np.clip(1.0 - np.clip(similarity, -1.0, 1.0), 0.0, 2.0)
    np.fill_diagonal(distances, 0.0)
    return distances
