"""Lexical name similarity used to pre-filter duplicate and hierarchy candidates."""
from __future__ import annotations

import re
from typing import Mapping

STOPWORDS = frozenset({
    "a", "an", "the", "and", "or", "of", "for", "in", "on", "to", "with", "by",
    "at", "from", "is", "are", "was", "be", "has", "had", "have", "do", "does",
    "did", "not", "no", "but", "if", "so", "as", "it", "its", "this", "that",
    "all", "each", "every", "both", "few", "more", "most", "other", "some",
    "such", "than", "too", "very", "can", "will", "just", "should", "now",
    "also", "into", "only", "own", "same", "then", "when", "where", "which",
    "while", "how", "what", "who", "why",
})

_TOKEN_SPLIT_RE = re.compile(r"[\s\-_/&+,.:;()]+")


def extract_meaningful_words(text: str | None) -> set[str]:
    tokens = _TOKEN_SPLIT_RE.split((text or "").lower())
    return {token for token in tokens if len(token) > 1 and token not in STOPWORDS}


def calculate_word_overlap(name1: str | None, name2: str | None) -> float:
    """Jaccard overlap of meaningful words.

    Requires at least two shared words, unless both names reduce to a single
    meaningful word, in which case one shared word is enough.
    """
    words1 = extract_meaningful_words(name1)
    words2 = extract_meaningful_words(name2)
    if not words1 or not words2:
        return 0.0

    common = words1 & words2
    required = 1 if len(words1) == 1 and len(words2) == 1 else 2
    if len(common) < required:
        return 0.0

    union = words1 | words2
    return len(common) / len(union)


def are_names_similar(name1: str | None, name2: str | None, threshold: float = 0.5) -> bool:
    normalized1 = (name1 or "").strip().lower()
    normalized2 = (name2 or "").strip().lower()
    if not normalized1 or not normalized2:
        return False
    if normalized1 == normalized2:
        return True
    if normalized1 in normalized2 or normalized2 in normalized1:
        return True
    return calculate_word_overlap(normalized1, normalized2) >= threshold


def find_best_match(candidate: str, name_to_id: Mapping[str, str], threshold: float = 0.5) -> str | None:
    """Return the id whose name best matches ``candidate``, or None."""
    normalized = (candidate or "").strip().lower()
    if not normalized:
        return None

    for name, entity_id in name_to_id.items():
        if name.strip().lower() == normalized:
            return entity_id

    best_id: str | None = None
    best_score = 0.0
    for name, entity_id in name_to_id.items():
        score = calculate_word_overlap(normalized, name)
        if score >= threshold and score > best_score:
            best_score = score
            best_id = entity_id
    return best_id
