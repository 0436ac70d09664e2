"""Levenshtein edit distance and the normalized similarity ratio built on it."""

from __future__ import annotations

from rapidfuzz.distance import Levenshtein


def distance(a: str, b: str) -> int:
    """Minimum number of single-character insertions, deletions and
    substitutions needed to turn ``a`` into ``b``."""
    return Levenshtein.distance(a, b)


def similarity(a: str, b: str) -> float:
    """``1 - distance / max(len(a), len(b))``; two empty strings are identical."""
    return Levenshtein.normalized_similarity(a, b)
