"""
Exact-substring replacement with a uniqueness policy.

The whole file is read and checked before anything is written. A target that
occurs more than once is refused unless ``replace_all`` is set, and no failure
path ever touches the file.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from .config import validate_flag
from .exceptions import (
    AmbiguousMatchError,
    ErrorCode,
    FileAccessError,
    InvalidParametersError,
    NoMatchError,
    OodaError,
)
from .fileio import read_text, resolve, write_text_atomic

logger = logging.getLogger(__name__)

Reader = Callable[[str], str]
Writer = Callable[[str, str], int]


@dataclass
class ReplacementSpec:
    path: str
    search_text: str
    replacement_text: str = ""
    replace_all: bool = False

    def __post_init__(self):
        if not isinstance(self.path, str) or not self.path:
            raise InvalidParametersError("path must be a non-empty string")
        if not isinstance(self.search_text, str) or not self.search_text:
            raise InvalidParametersError("searchText must be a non-empty string", details={"path": self.path})
        if self.replacement_text is None:
            self.replacement_text = ""
        if not isinstance(self.replacement_text, str):
            raise InvalidParametersError("replacementText must be a string", details={"path": self.path})
        validate_flag(self.replace_all, "replaceAll")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReplacementSpec":
        if not isinstance(data, dict):
            raise InvalidParametersError(f"replacement must be an object, got {type(data).__name__}")
        return cls(
            path=data.get("path"),
            search_text=data.get("searchText"),
            replacement_text=data.get("replacementText", ""),
            replace_all=data.get("replaceAll", False),
        )


@dataclass
class Substitution:
    """What a successful replacement changed."""

    path: str
    occurrences_found: int
    occurrences_replaced: int
    chars_before: int
    chars_after: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "occurrencesFound": self.occurrences_found,
            "occurrencesReplaced": self.occurrences_replaced,
            "charsBefore": self.chars_before,
            "charsAfter": self.chars_after,
        }


@dataclass
class ReplacementOutcome:
    path: str
    success: bool
    occurrences_replaced: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"path": self.path, "success": self.success}
        if self.success:
            data["occurrencesReplaced"] = self.occurrences_replaced
        else:
            data["error"] = self.error
            data["errorCode"] = self.error_code
        return data


def count_occurrences(text: str, needle: str) -> int:
    """Non-overlapping occurrences, counted left to right."""
    return text.count(needle)


def plan_substitution(text: str, spec: ReplacementSpec) -> Tuple[str, int]:
    """Return the new text and the number of replacements, or raise."""
    occurrences = count_occurrences(text, spec.search_text)
    if occurrences == 0:
        raise NoMatchError(
            f"Text not found in {spec.path}; check whitespace and line endings",
            details={"path": spec.path},
        )
    if occurrences > 1 and not spec.replace_all:
        raise AmbiguousMatchError(
            f"Text appears {occurrences} times in {spec.path}; "
            f"add surrounding context to make it unique or set replaceAll",
            occurrences=occurrences,
            details={"path": spec.path},
        )
    if spec.replace_all:
        return text.replace(spec.search_text, spec.replacement_text), occurrences
    return text.replace(spec.search_text, spec.replacement_text, 1), 1


def apply_replacement(
    spec: ReplacementSpec,
    reader: Reader = read_text,
    writer: Writer = write_text_atomic,
) -> Substitution:
    """Read, validate and rewrite ``spec.path``. Raises ``OodaError`` subclasses."""
    if not resolve(spec.path).is_file():
        raise FileAccessError(
            f"File not found: {spec.path}", path=spec.path, code=ErrorCode.FILE_NOT_FOUND
        )

    original = reader(spec.path)
    updated, replaced = plan_substitution(original, spec)
    writer(spec.path, updated)

    logger.info(f"Replaced {replaced} occurrence(s) in {spec.path}")
    return Substitution(
        path=spec.path,
        occurrences_found=count_occurrences(original, spec.search_text),
        occurrences_replaced=replaced,
        chars_before=len(original),
        chars_after=len(updated),
    )


def replace_in_file(
    spec: ReplacementSpec,
    reader: Reader = read_text,
    writer: Writer = write_text_atomic,
) -> ReplacementOutcome:
    """``apply_replacement`` with failures folded into the outcome."""
    try:
        change = apply_replacement(spec, reader, writer)
    except OodaError as e:
        logger.debug(f"Replacement in {spec.path} failed: {e.message}")
        return ReplacementOutcome(path=spec.path, success=False, error=e.message, error_code=e.code.name)
    return ReplacementOutcome(path=spec.path, success=True, occurrences_replaced=change.occurrences_replaced)
