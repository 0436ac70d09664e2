"""
Line scanner: literal, regex or fuzzy search over a file's text.

Exact mode reports each matching line once. Fuzzy mode reports one record per
approximate occurrence found by ``fuzzy.find_fuzzy_matches``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Pattern

from .config import SearchDefaults, validate_flag
from .exceptions import InvalidParametersError, InvalidPatternError, OodaError
from .fileio import read_text
from .fuzzy import DEFAULT_THRESHOLD, find_fuzzy_matches, validate_threshold

logger = logging.getLogger(__name__)

Reader = Callable[[str], str]


@dataclass
class SearchOptions:
    is_regex: bool = False
    is_fuzzy: bool = False
    case_sensitive: bool = True
    context_lines: int = 0
    max_matches: int = 100
    fuzzy_threshold: float = DEFAULT_THRESHOLD

    @classmethod
    def from_defaults(cls, defaults: SearchDefaults, **overrides: Any) -> "SearchOptions":
        """Start from the configured defaults; ``None`` overrides are ignored."""
        options = cls(
            context_lines=defaults.context_lines,
            max_matches=defaults.max_matches,
            fuzzy_threshold=defaults.fuzzy_threshold,
        )
        for name, value in overrides.items():
            if value is not None:
                setattr(options, name, value)
        return options.validate()

    def validate(self) -> "SearchOptions":
        validate_flag(self.is_regex, "isRegex")
        validate_flag(self.is_fuzzy, "isFuzzy")
        validate_flag(self.case_sensitive, "caseSensitive")
        if isinstance(self.context_lines, bool) or not isinstance(self.context_lines, int) or self.context_lines < 0:
            raise InvalidParametersError(
                f"contextLines must be a non-negative integer, got {self.context_lines!r}"
            )
        if isinstance(self.max_matches, bool) or not isinstance(self.max_matches, int) or self.max_matches < 1:
            raise InvalidParametersError(
                f"maxMatches must be a positive integer, got {self.max_matches!r}"
            )
        self.fuzzy_threshold = validate_threshold(self.fuzzy_threshold)
        return self


@dataclass
class ContextLine:
    line_number: int
    line_text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"lineNumber": self.line_number, "lineText": self.line_text}


@dataclass
class MatchRecord:
    line_number: int
    line_text: str
    context_before: List[ContextLine] = field(default_factory=list)
    context_after: List[ContextLine] = field(default_factory=list)
    similarity: Optional[float] = None
    matched_substring: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"lineNumber": self.line_number, "lineText": self.line_text}
        if self.similarity is not None:
            data["similarity"] = round(self.similarity, 4)
            data["matchedSubstring"] = self.matched_substring
        data["contextBefore"] = [c.to_dict() for c in self.context_before]
        data["contextAfter"] = [c.to_dict() for c in self.context_after]
        return data


@dataclass
class SearchOutcome:
    path: str
    pattern: str
    success: bool
    total_lines: Optional[int] = None
    match_count: Optional[int] = None
    truncated: Optional[bool] = None
    matches: Optional[List[MatchRecord]] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, path: str, pattern: str, error: str) -> "SearchOutcome":
        return cls(path=path, pattern=pattern, success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"path": self.path, "pattern": self.pattern, "success": self.success}
        if self.success:
            data["totalLines"] = self.total_lines
            data["matchCount"] = self.match_count
            data["truncated"] = self.truncated
            data["matches"] = [m.to_dict() for m in self.matches or []]
        else:
            data["error"] = self.error
        return data


def compile_pattern(pattern: str, is_regex: bool, case_sensitive: bool) -> Pattern[str]:
    source = pattern if is_regex else re.escape(pattern)
    flags = 0 if case_sensitive else re.IGNORECASE
    try:
        return re.compile(source, flags)
    except re.error as e:
        raise InvalidPatternError(f"Invalid regular expression {pattern!r}: {e}", pattern=pattern, cause=e)


def _context(lines: List[str], index: int, count: int) -> tuple[List[ContextLine], List[ContextLine]]:
    if count <= 0:
        return [], []
    before = [ContextLine(i + 1, lines[i]) for i in range(max(0, index - count), index)]
    after = [ContextLine(i + 1, lines[i]) for i in range(index + 1, min(len(lines), index + count + 1))]
    return before, after


def scan_text(text: str, pattern: str, options: SearchOptions, path: str = "") -> SearchOutcome:
    """Scan ``text`` line by line. Raises ``InvalidPatternError`` before any scanning."""
    if not pattern:
        raise InvalidParametersError("pattern must not be empty")

    regex = None if options.is_fuzzy else compile_pattern(pattern, options.is_regex, options.case_sensitive)
    lines = text.splitlines()
    limit = options.max_matches
    matches: List[MatchRecord] = []
    truncated = False

    for index, line in enumerate(lines):
        if len(matches) >= limit:
            truncated = True
            break
        if regex is not None:
            if regex.search(line):
                before, after = _context(lines, index, options.context_lines)
                matches.append(MatchRecord(index + 1, line, before, after))
            continue

        for found in find_fuzzy_matches(line, pattern, options.fuzzy_threshold, options.case_sensitive):
            if len(matches) >= limit:
                truncated = True
                break
            before, after = _context(lines, index, options.context_lines)
            matches.append(
                MatchRecord(
                    index + 1,
                    line,
                    before,
                    after,
                    similarity=found.similarity,
                    matched_substring=found.matched_substring,
                )
            )
        if truncated:
            break

    return SearchOutcome(
        path=path,
        pattern=pattern,
        success=True,
        total_lines=len(lines),
        match_count=len(matches),
        truncated=truncated,
        matches=matches,
    )


def _precheck(pattern: str, options: SearchOptions) -> None:
    # A bad pattern fails without touching the file.
    if not pattern:
        raise InvalidParametersError("pattern must not be empty")
    if not options.is_fuzzy:
        compile_pattern(pattern, options.is_regex, options.case_sensitive)


def search_file(path: str, pattern: str, options: SearchOptions, reader: Reader = read_text) -> SearchOutcome:
    """Search one file; every failure becomes an unsuccessful outcome."""
    try:
        _precheck(pattern, options)
        return scan_text(reader(path), pattern, options, path=path)
    except OodaError as e:
        logger.debug(f"Search in {path} failed: {e.message}")
        return SearchOutcome.failure(path, pattern, e.message)


async def search_file_async(
    path: str, pattern: str, options: SearchOptions, reader: Reader = read_text
) -> SearchOutcome:
    """Like ``search_file`` but the read runs in the default executor."""
    loop = asyncio.get_running_loop()
    try:
        _precheck(pattern, options)
        text = await loop.run_in_executor(None, reader, path)
        return scan_text(text, pattern, options, path=path)
    except OodaError as e:
        logger.debug(f"Search in {path} failed: {e.message}")
        return SearchOutcome.failure(path, pattern, e.message)
