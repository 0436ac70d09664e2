"""
Approximate substring matching inside a single line.

Windows of the pattern's length and of lengths one and two characters
shorter/longer slide across the line and are scored with the edit-distance
similarity ratio. The canonical-length pass skips ahead by half the pattern
length after each accepted window; the other lengths drop any candidate that
overlaps a window accepted earlier. Matches found this way can still sit close
together (or, at the canonical length, overlap) on repetitive text.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

from .distance import similarity
from .exceptions import InvalidParametersError

DEFAULT_THRESHOLD = 0.7
MIN_VARIANT_LENGTH = 2
LENGTH_DELTAS = (-1, 1, -2, 2)


@dataclass(frozen=True)
class FuzzyMatch:
    start: int
    end: int
    matched_substring: str
    similarity: float

    def overlaps(self, start: int, end: int) -> bool:
        return start < self.end and self.start < end

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start,
            "end": self.end,
            "matchedSubstring": self.matched_substring,
            "similarity": round(self.similarity, 4),
        }


def validate_threshold(threshold: Any) -> float:
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
        raise InvalidParametersError(
            f"fuzzyThreshold must be a number between 0 and 1, got {threshold!r}",
            details={"fuzzyThreshold": threshold},
        )
    if not 0.0 <= threshold <= 1.0:
        raise InvalidParametersError(
            f"fuzzyThreshold must be between 0 and 1, got {threshold}",
            details={"fuzzyThreshold": threshold},
        )
    return float(threshold)


def window_lengths(pattern_length: int) -> List[int]:
    """Canonical length first, then the variants in scan order."""
    lengths = [pattern_length]
    for delta in LENGTH_DELTAS:
        candidate = pattern_length + delta
        if candidate >= MIN_VARIANT_LENGTH:
            lengths.append(candidate)
    return lengths


def _fold(text: str) -> str:
    # Lower-case per character so offsets stay aligned with the original text.
    return "".join(ch if len(ch.lower()) != 1 else ch.lower() for ch in text)


def find_fuzzy_matches(
    line: str,
    pattern: str,
    threshold: float = DEFAULT_THRESHOLD,
    case_sensitive: bool = True,
) -> List[FuzzyMatch]:
    """Return non-duplicated approximate occurrences of ``pattern`` in ``line``,
    ordered by start offset."""
    threshold = validate_threshold(threshold)
    if not pattern:
        return []

    haystack = line if case_sensitive else _fold(line)
    needle = pattern if case_sensitive else _fold(pattern)
    size = len(needle)
    accepted: List[FuzzyMatch] = []

    skip = max(1, size // 2)
    pos = 0
    while pos + size <= len(haystack):
        score = similarity(haystack[pos:pos + size], needle)
        if score >= threshold:
            accepted.append(FuzzyMatch(pos, pos + size, line[pos:pos + size], score))
            pos += skip
        else:
            pos += 1

    for length in window_lengths(size)[1:]:
        for pos in range(len(haystack) - length + 1):
            end = pos + length
            if any(match.overlaps(pos, end) for match in accepted):
                continue
            score = similarity(haystack[pos:end], needle)
            if score >= threshold:
                accepted.append(FuzzyMatch(pos, end, line[pos:end], score))

    accepted.sort(key=lambda match: (match.start, match.end))
    return accepted
