"""
Unit Tests for the Line Scanner
===============================
"""

import asyncio

import pytest

from ooda_computer.config import SearchDefaults
from ooda_computer.exceptions import InvalidParametersError, InvalidPatternError
from ooda_computer.scanner import (
    SearchOptions,
    compile_pattern,
    scan_text,
    search_file,
    search_file_async,
)

FIVE_LINES = "l1\nl2\nl3\nl4\nl5\n"


class TestSearchOptions:
    """Tests for option defaults and validation"""

    def test_from_defaults_ignores_none(self):
        """Test unset caller values fall back to configured defaults"""
        defaults = SearchDefaults(max_matches=7, context_lines=2, fuzzy_threshold=0.8)
        options = SearchOptions.from_defaults(defaults, max_matches=None, is_regex=True)
        assert options.max_matches == 7
        assert options.context_lines == 2
        assert options.fuzzy_threshold == 0.8
        assert options.is_regex is True

    @pytest.mark.parametrize("field, value", [
        ("context_lines", -1),
        ("context_lines", "2"),
        ("max_matches", 0),
        ("max_matches", True),
        ("fuzzy_threshold", 2.0),
        ("is_regex", "true"),
        ("is_fuzzy", 1),
        ("case_sensitive", "false"),
    ])
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(InvalidParametersError):
            SearchOptions(**{field: value}).validate()


class TestExactScan:
    """Tests for literal and regex line matching"""

    def test_literal_matches_each_line_once(self):
        outcome = scan_text("alpha alpha\nbeta\nalphabet\n", "alpha", SearchOptions())
        assert outcome.success
        assert outcome.total_lines == 3
        assert [m.line_number for m in outcome.matches] == [1, 3]
        assert outcome.truncated is False

    def test_literal_escapes_metacharacters(self):
        """Test '.' is literal unless isRegex is set"""
        assert scan_text("abc\na.c\n", "a.c", SearchOptions()).match_count == 1
        assert scan_text("abc\na.c\n", "a.c", SearchOptions(is_regex=True)).match_count == 2

    def test_case_insensitive(self):
        outcome = scan_text("Error\nerror\nERROR\n", "error", SearchOptions(case_sensitive=False))
        assert outcome.match_count == 3

    def test_context_lines(self):
        """Test context is ordered and excludes the match line"""
        match = scan_text(FIVE_LINES, "l3", SearchOptions(context_lines=1)).matches[0]
        assert [c.line_number for c in match.context_before] == [2]
        assert [c.line_number for c in match.context_after] == [4]

    def test_context_clipped_at_file_boundaries(self):
        first = scan_text(FIVE_LINES, "l1", SearchOptions(context_lines=2)).matches[0]
        assert first.context_before == []
        assert [c.line_text for c in first.context_after] == ["l2", "l3"]
        last = scan_text(FIVE_LINES, "l5", SearchOptions(context_lines=3)).matches[0]
        assert [c.line_number for c in last.context_before] == [2, 3, 4]
        assert last.context_after == []

    def test_max_matches_truncates(self):
        outcome = scan_text("x\nx\nx\nx\n", "x", SearchOptions(max_matches=2))
        assert outcome.match_count == 2
        assert outcome.truncated is True

    def test_limit_reached_at_end_is_not_truncated(self):
        """Test truncated only when the scan stopped before EOF"""
        outcome = scan_text("x\nx", "x", SearchOptions(max_matches=2))
        assert outcome.match_count == 2
        assert outcome.truncated is False

    def test_crlf_lines(self):
        """Test universal newlines: no trailing carriage returns"""
        outcome = scan_text("a\r\nb\r\n", "b", SearchOptions())
        assert outcome.total_lines == 2
        assert outcome.matches[0].line_text == "b"

    def test_invalid_regex_raises(self):
        with pytest.raises(InvalidPatternError) as exc:
            compile_pattern("foo(", is_regex=True, case_sensitive=True)
        assert "foo(" in exc.value.message

    def test_exact_record_has_no_similarity(self):
        data = scan_text("hello\n", "hello", SearchOptions()).to_dict()
        assert "similarity" not in data["matches"][0]
        assert data["matchCount"] == 1


class TestFuzzyScan:
    """Tests for fuzzy mode through the scanner"""

    def test_one_record_per_window(self):
        outcome = scan_text("The color is red\nnothing here\n", "colour", SearchOptions(is_fuzzy=True))
        assert outcome.match_count == 1
        record = outcome.matches[0]
        assert record.line_number == 1
        assert record.matched_substring == "color"
        assert record.similarity == pytest.approx(5 / 6)

    def test_fuzzy_ignores_regex_syntax(self):
        """Test a malformed regex is just text in fuzzy mode"""
        outcome = scan_text("call foo( now\n", "foo(", SearchOptions(is_fuzzy=True, is_regex=True))
        assert outcome.success
        assert outcome.match_count >= 1

    def test_fuzzy_limit_counts_windows(self):
        outcome = scan_text("abc abc abc\n", "abc", SearchOptions(is_fuzzy=True, fuzzy_threshold=1.0, max_matches=2))
        assert outcome.match_count == 2
        assert outcome.truncated is True

    def test_to_dict_includes_similarity(self):
        data = scan_text("The color is red\n", "colour", SearchOptions(is_fuzzy=True)).to_dict()
        assert data["matches"][0]["similarity"] == 0.8333
        assert data["matches"][0]["matchedSubstring"] == "color"


class TestSearchFile:
    """Tests for the file-level boundary"""

    def test_reads_file(self, make_file):
        path = make_file("a.txt", "one\ntwo\nthree\n")
        outcome = search_file(path, "two", SearchOptions())
        assert outcome.success
        assert outcome.path == path
        assert outcome.matches[0].line_number == 2

    def test_missing_file_is_failure(self, temp_dir):
        missing = str(temp_dir / "nope.txt")
        outcome = search_file(missing, "x", SearchOptions())
        assert outcome.success is False
        assert missing in outcome.error
        assert outcome.to_dict()["success"] is False

    def test_directory_is_failure(self, temp_dir):
        outcome = search_file(str(temp_dir), "x", SearchOptions())
        assert outcome.success is False

    def test_invalid_regex_is_failure_without_read(self):
        """Test the pattern is rejected before the reader runs"""
        def reader(path):
            raise AssertionError("reader must not be called")

        outcome = search_file("whatever", "[unclosed", SearchOptions(is_regex=True), reader=reader)
        assert outcome.success is False
        assert "Invalid regular expression" in outcome.error
        assert outcome.matches is None

    def test_async_variant(self, make_file):
        path = make_file("b.txt", "foo\nbar\n")
        outcome = asyncio.run(search_file_async(path, "bar", SearchOptions()))
        assert outcome.success
        assert outcome.match_count == 1
