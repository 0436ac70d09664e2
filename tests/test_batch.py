"""
Unit Tests for the Batch Orchestrator
=====================================
"""

import asyncio

import pytest

from conftest import read_raw
from ooda_computer.batch import (
    BatchItemResult,
    BatchReport,
    batch_replace,
    batch_search,
    run_concurrent,
    run_sequential,
)
from ooda_computer.exceptions import InvalidParametersError
from ooda_computer.scanner import SearchOptions


class TestBatchReport:
    """Tests for summary and isError policy"""

    def _report(self, *flags):
        return BatchReport(
            total=len(flags),
            results=[BatchItemResult(index=i, success=ok) for i, ok in enumerate(flags)],
        )

    def test_results_sorted_by_index(self):
        report = BatchReport(total=3, results=[
            BatchItemResult(index=2, success=True),
            BatchItemResult(index=0, success=True),
            BatchItemResult(index=1, success=False),
        ])
        assert [r.index for r in report.results] == [0, 1, 2]

    def test_summary_counts(self):
        summary = self._report(True, False, True).summary()
        assert summary["total"] == 3
        assert summary["successful"] == 2
        assert summary["failed"] == 1
        assert "elapsed_ms" in summary

    def test_read_style_error_only_when_all_fail(self):
        assert self._report(True, False).is_error() is False
        assert self._report(False, False).is_error() is True

    def test_mutating_error_on_any_failure(self):
        assert self._report(True, False).is_error(mutating=True) is True
        assert self._report(True, True).is_error(mutating=True) is False

    def test_empty_batch_is_not_error(self):
        assert self._report().is_error() is False
        assert self._report().is_error(mutating=True) is False


class TestRunners:
    """Tests for concurrent and sequential execution"""

    def test_concurrent_results_follow_request_order(self):
        """Test later items finishing first still sort by index"""
        async def worker(index, delay):
            await asyncio.sleep(delay)
            return BatchItemResult(index=index, success=True, result=delay)

        report = asyncio.run(run_concurrent([0.05, 0.02, 0.0], worker))
        assert [r.result for r in report.results] == [0.05, 0.02, 0.0]

    def test_raising_worker_becomes_failed_item(self):
        async def worker(index, item):
            if item == "boom":
                raise RuntimeError("exploded")
            return BatchItemResult(index=index, success=True)

        report = asyncio.run(run_concurrent(["ok", "boom", "ok"], worker))
        assert report.successful == 2
        assert report.results[1].success is False
        assert "RuntimeError" in report.results[1].error

    def test_sequential_runs_in_order(self):
        seen = []

        async def worker(index, item):
            seen.append(item)
            return BatchItemResult(index=index, success=True)

        asyncio.run(run_sequential(["a", "b", "c"], worker))
        assert seen == ["a", "b", "c"]

    def test_stop_on_error_omits_later_items(self):
        async def worker(index, item):
            return BatchItemResult(index=index, success=item)

        report = asyncio.run(run_sequential([True, False, True], worker, stop_on_error=True))
        assert report.total == 3
        assert [r.index for r in report.results] == [0, 1]

    def test_without_stop_all_items_run(self):
        async def worker(index, item):
            return BatchItemResult(index=index, success=item)

        report = asyncio.run(run_sequential([True, False, True], worker))
        assert len(report.results) == 3


class TestBatchSearch:
    """Tests for concurrent file search"""

    def test_partial_failure(self, make_file, temp_dir):
        good = make_file("good.txt", "needle\nhay\n")
        missing = str(temp_dir / "missing.txt")
        report = asyncio.run(batch_search(
            [{"path": good, "pattern": "needle"}, {"path": missing, "pattern": "needle"}],
            SearchOptions(),
        ))
        assert report.successful == 1
        assert report.results[0].result["matchCount"] == 1
        assert report.results[1].error.startswith(missing)
        assert report.is_error() is False

    def test_invalid_item_does_not_abort_siblings(self, make_file):
        good = make_file("g.txt", "abc\n")
        report = asyncio.run(batch_search(
            [{"path": good}, {"path": good, "pattern": "abc"}, "not-an-object"],
            SearchOptions(),
        ))
        assert [r.success for r in report.results] == [False, True, False]

    def test_shared_options_apply_per_file(self, make_file):
        a = make_file("a.txt", "x\nx\nx\n")
        b = make_file("b.txt", "x\n")
        report = asyncio.run(batch_search(
            [{"path": a, "pattern": "x"}, {"path": b, "pattern": "x"}],
            SearchOptions(max_matches=2),
        ))
        assert report.results[0].result["truncated"] is True
        assert report.results[1].result["truncated"] is False

    def test_fuzzy_batch(self, make_file):
        path = make_file("f.txt", "The color is red\n")
        report = asyncio.run(batch_search(
            [{"path": path, "pattern": "colour"}],
            SearchOptions(is_fuzzy=True),
        ))
        match = report.results[0].result["matches"][0]
        assert match["matchedSubstring"] == "color"


class TestBatchReplace:
    """Tests for sequential replacement"""

    def test_items_on_same_file_see_earlier_changes(self, make_file):
        path = make_file("chain.txt", "foo bar\n")
        report = asyncio.run(batch_replace([
            {"path": path, "searchText": "foo", "replacementText": "baz"},
            {"path": path, "searchText": "baz bar", "replacementText": "done"},
        ]))
        assert report.failed == 0
        assert read_raw(path) == "done\n"

    def test_stop_on_error(self, make_file):
        first = make_file("one.txt", "aaa\n")
        second = make_file("two.txt", "bbb\n")
        report = asyncio.run(batch_replace([
            {"path": first, "searchText": "zzz", "replacementText": "x"},
            {"path": second, "searchText": "bbb", "replacementText": "ccc"},
        ], stop_on_error=True))
        assert report.total == 2
        assert len(report.results) == 1
        assert report.results[0].result["errorCode"] == "NO_MATCH"
        assert read_raw(second) == "bbb\n"

    def test_continue_after_error(self, make_file):
        first = make_file("one.txt", "dup dup\n")
        second = make_file("two.txt", "bbb\n")
        report = asyncio.run(batch_replace([
            {"path": first, "searchText": "dup", "replacementText": "x"},
            {"path": second, "searchText": "bbb", "replacementText": "ccc"},
        ]))
        assert [r.success for r in report.results] == [False, True]
        assert "2 times" in report.results[0].error
        assert read_raw(first) == "dup dup\n"
        assert read_raw(second) == "ccc\n"
        assert report.is_error(mutating=True) is True

    def test_invalid_spec_is_item_failure(self, make_file):
        path = make_file("v.txt", "abc\n")
        report = asyncio.run(batch_replace([
            {"path": path, "searchText": ""},
            {"path": path, "searchText": "abc", "replacementText": "xyz"},
        ]))
        assert report.results[0].success is False
        assert report.results[1].success is True

    def test_string_replace_all_is_item_failure(self, make_file):
        """Test "false" as replaceAll is refused instead of replacing every occurrence"""
        path = make_file("x.txt", "aXbXc")
        report = asyncio.run(batch_replace([
            {"path": path, "searchText": "X", "replacementText": "Y", "replaceAll": "false"},
        ]))
        assert report.results[0].success is False
        assert "replaceAll" in report.results[0].error
        assert read_raw(path) == "aXbXc"

    def test_stop_on_error_must_be_boolean(self, make_file):
        path = make_file("s.txt", "abc\n")
        with pytest.raises(InvalidParametersError):
            asyncio.run(batch_replace([{"path": path, "searchText": "abc"}], stop_on_error="yes"))
        assert read_raw(path) == "abc\n"
