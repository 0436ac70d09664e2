"""
Batch orchestration.

Independent read-style items run concurrently on the event loop; mutating
items run one after another in request order. One item's failure never aborts
its siblings except under the explicit ``stop_on_error`` policy.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from .config import validate_flag
from .exceptions import InvalidParametersError, OodaError
from .fileio import read_text, write_text_atomic
from .replace import ReplacementSpec, replace_in_file
from .scanner import SearchOptions, search_file_async

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BatchItemResult:
    index: int
    success: bool
    result: Any = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"index": self.index, "success": self.success}
        if self.result is not None:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class BatchReport:
    total: int
    results: List[BatchItemResult] = field(default_factory=list)
    elapsed_ms: float = 0.0

    def __post_init__(self):
        self.results.sort(key=lambda item: item.index)

    @property
    def successful(self) -> int:
        return sum(1 for item in self.results if item.success)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.results if not item.success)

    def is_error(self, mutating: bool = False) -> bool:
        """Mutating batches fail on any failed item, others only when all failed."""
        if mutating:
            return self.failed > 0
        return self.failed > 0 and self.successful == 0

    def summary(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {"summary": self.summary(), "results": [item.to_dict() for item in self.results]}


Worker = Callable[[int, T], Awaitable[BatchItemResult]]


async def _guarded(index: int, item: T, worker: Worker) -> BatchItemResult:
    try:
        return await worker(index, item)
    except Exception as e:
        logger.exception(f"Batch item {index} raised")
        return BatchItemResult(index=index, success=False, error=f"{type(e).__name__}: {e}")


async def run_concurrent(items: Sequence[T], worker: Worker) -> BatchReport:
    start = time.perf_counter()
    results = await asyncio.gather(*(_guarded(i, item, worker) for i, item in enumerate(items)))
    elapsed = (time.perf_counter() - start) * 1000
    return BatchReport(total=len(items), results=list(results), elapsed_ms=elapsed)


async def run_sequential(items: Sequence[T], worker: Worker, stop_on_error: bool = False) -> BatchReport:
    start = time.perf_counter()
    results: List[BatchItemResult] = []
    for index, item in enumerate(items):
        outcome = await _guarded(index, item, worker)
        results.append(outcome)
        if stop_on_error and not outcome.success:
            logger.info(f"Stopping batch at item {index} of {len(items)} (stopOnError)")
            break
    elapsed = (time.perf_counter() - start) * 1000
    return BatchReport(total=len(items), results=results, elapsed_ms=elapsed)


@dataclass
class SearchRequest:
    path: str
    pattern: str

    @classmethod
    def from_dict(cls, data: Any) -> "SearchRequest":
        if not isinstance(data, dict):
            raise InvalidParametersError(f"search item must be an object, got {type(data).__name__}")
        path, pattern = data.get("path"), data.get("pattern")
        if not isinstance(path, str) or not path:
            raise InvalidParametersError("search item needs a non-empty string 'path'")
        if not isinstance(pattern, str) or not pattern:
            raise InvalidParametersError(f"{path}: search item needs a non-empty string 'pattern'")
        return cls(path=path, pattern=pattern)


async def batch_search(
    requests: Sequence[Any],
    options: SearchOptions,
    reader: Callable[[str], str] = read_text,
) -> BatchReport:
    """Search every ``{path, pattern}`` item concurrently with shared options."""

    async def _search(index: int, item: Any) -> BatchItemResult:
        try:
            request = item if isinstance(item, SearchRequest) else SearchRequest.from_dict(item)
        except OodaError as e:
            return BatchItemResult(index=index, success=False, error=e.message)
        outcome = await search_file_async(request.path, request.pattern, options, reader)
        if outcome.success:
            return BatchItemResult(index=index, success=True, result=outcome.to_dict())
        return BatchItemResult(index=index, success=False, error=f"{request.path}: {outcome.error}")

    return await run_concurrent(requests, _search)


async def batch_replace(
    specs: Sequence[Any],
    stop_on_error: bool = False,
    reader: Callable[[str], str] = read_text,
    writer: Callable[[str, str], int] = write_text_atomic,
) -> BatchReport:
    """Apply replacements one at a time, in order; items may target the same file."""
    validate_flag(stop_on_error, "stopOnError")
    loop = asyncio.get_running_loop()

    async def _replace(index: int, item: Any) -> BatchItemResult:
        try:
            spec = item if isinstance(item, ReplacementSpec) else ReplacementSpec.from_dict(item)
        except OodaError as e:
            return BatchItemResult(index=index, success=False, error=e.message)
        outcome = await loop.run_in_executor(None, replace_in_file, spec, reader, writer)
        if outcome.success:
            return BatchItemResult(index=index, success=True, result=outcome.to_dict())
        return BatchItemResult(
            index=index, success=False, result=outcome.to_dict(), error=f"{spec.path}: {outcome.error}"
        )

    return await run_sequential(specs, _replace, stop_on_error=stop_on_error)
