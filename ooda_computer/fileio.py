"""
Filesystem primitives used by the tools.

Reads and writes are synchronous whole-file operations; callers on the event
loop dispatch them to the default executor.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import shutil
import stat
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from .config import expand_home
from .exceptions import ErrorCode, FileAccessError, InvalidParametersError, WriteFailureError

logger = logging.getLogger(__name__)


def resolve(path: str) -> Path:
    return Path(expand_home(path))


def read_text(path: str) -> str:
    """Return the whole file as text with its newlines untouched."""
    target = resolve(path)
    try:
        if target.exists() and not target.is_file():
            raise FileAccessError(f"{path}: not a regular file", path=path)
        with open(target, "r", encoding="utf-8", newline="") as fh:
            return fh.read()
    except FileNotFoundError as e:
        raise FileAccessError(
            f"{path}: {e.strerror or 'no such file'}",
            path=path,
            code=ErrorCode.FILE_NOT_FOUND,
            cause=e,
        )
    except UnicodeDecodeError as e:
        raise FileAccessError(f"{path}: not valid UTF-8 text ({e.reason})", path=path, cause=e)
    except OSError as e:
        raise FileAccessError(f"{path}: {e.strerror or e}", path=path, cause=e)


def write_text(path: str, content: str) -> int:
    """Write ``content`` to ``path``, creating parent directories."""
    target = resolve(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8", newline="") as fh:
            written = fh.write(content)
    except UnicodeEncodeError as e:
        raise WriteFailureError(f"{path}: content is not encodable as UTF-8 ({e.reason})", path=path, cause=e)
    except OSError as e:
        raise WriteFailureError(f"{path}: {e.strerror or e}", path=path, cause=e)
    logger.debug(f"Wrote {written} chars to {target}")
    return written


def _discard(temp_path: str) -> None:
    try:
        os.unlink(temp_path)
    except OSError:
        logger.warning(f"Could not remove temp file {temp_path}")


def write_text_atomic(path: str, content: str) -> int:
    """
    Replace ``path`` with ``content`` through a temp file beside it.

    Symlinks are followed so the link survives and its target is rewritten.
    The temp file never outlives a failed write.
    """
    target = resolve(path).resolve()
    try:
        mode = stat.S_IMODE(target.stat().st_mode) if target.exists() else None
        fd, temp_path = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    except OSError as e:
        raise WriteFailureError(f"{path}: {e.strerror or e}", path=path, cause=e)

    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
            written = fh.write(content)
        if mode is not None:
            os.chmod(temp_path, mode)
        os.replace(temp_path, target)
    except UnicodeEncodeError as e:
        _discard(temp_path)
        raise WriteFailureError(f"{path}: content is not encodable as UTF-8 ({e.reason})", path=path, cause=e)
    except OSError as e:
        _discard(temp_path)
        raise WriteFailureError(f"{path}: {e.strerror or e}", path=path, cause=e)
    except BaseException:
        _discard(temp_path)
        raise
    return written


def list_directory(path: str) -> List[Dict[str, str]]:
    target = resolve(path)
    try:
        entries = sorted(os.scandir(target), key=lambda entry: entry.name)
    except FileNotFoundError as e:
        raise FileAccessError(f"{path}: no such directory", path=path, code=ErrorCode.FILE_NOT_FOUND, cause=e)
    except OSError as e:
        raise FileAccessError(f"{path}: {e.strerror or e}", path=path, cause=e)
    return [
        {"name": entry.name, "type": "directory" if entry.is_dir() else "file"}
        for entry in entries
    ]


def read_lines(path: str, start_line: int, end_line: int | None = None) -> Dict[str, Any]:
    """Read a 1-indexed inclusive line range."""
    if start_line < 1:
        raise InvalidParametersError("startLine must be >= 1", details={"startLine": start_line})
    if end_line is not None and end_line < start_line:
        raise InvalidParametersError(
            "endLine must be >= startLine",
            details={"startLine": start_line, "endLine": end_line},
        )
    lines = read_text(path).splitlines()
    stop = len(lines) if end_line is None else min(end_line, len(lines))
    selected = lines[start_line - 1:stop]
    return {
        "path": path,
        "startLine": start_line,
        "endLine": start_line + len(selected) - 1 if selected else None,
        "totalLines": len(lines),
        "lines": [
            {"lineNumber": start_line + offset, "lineText": text}
            for offset, text in enumerate(selected)
        ],
    }


def file_info(path: str) -> Dict[str, Any]:
    target = resolve(path)
    try:
        st = target.stat()
    except FileNotFoundError as e:
        raise FileAccessError(f"{path}: no such file or directory", path=path, code=ErrorCode.FILE_NOT_FOUND, cause=e)
    except OSError as e:
        raise FileAccessError(f"{path}: {e.strerror or e}", path=path, cause=e)
    return {
        "path": str(target),
        "type": "directory" if stat.S_ISDIR(st.st_mode) else "file" if stat.S_ISREG(st.st_mode) else "other",
        "size": st.st_size,
        "permissions": oct(stat.S_IMODE(st.st_mode)),
        "modified": datetime.fromtimestamp(st.st_mtime, tz=timezone.utc).isoformat(),
        "created": datetime.fromtimestamp(st.st_ctime, tz=timezone.utc).isoformat(),
    }


def _source_file(path: str) -> Path:
    source = resolve(path)
    if not source.exists():
        raise FileAccessError(f"{path}: no such file", path=path, code=ErrorCode.FILE_NOT_FOUND)
    if not source.is_file():
        raise FileAccessError(f"{path}: not a regular file", path=path)
    return source


def copy_file(source: str, destination: str) -> Dict[str, Any]:
    """Copy a file with its metadata, creating the destination's parents."""
    src = _source_file(source)
    dst = resolve(destination)
    try:
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, dst)
    except OSError as e:
        raise WriteFailureError(f"{destination}: {e.strerror or e}", path=destination, cause=e)
    logger.debug(f"Copied {src} -> {dst}")
    return {"source": source, "destination": destination, "size": dst.stat().st_size}


def move_file(source: str, destination: str) -> Dict[str, Any]:
    src = _source_file(source)
    dst = resolve(destination)
    try:
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(src), str(dst))
    except OSError as e:
        raise WriteFailureError(f"{destination}: {e.strerror or e}", path=destination, cause=e)
    logger.debug(f"Moved {src} -> {dst}")
    return {"source": source, "destination": destination}


def delete_file(path: str) -> Dict[str, Any]:
    """Delete a single file; directories are refused."""
    target = _source_file(path)
    try:
        target.unlink()
    except OSError as e:
        raise WriteFailureError(f"{path}: {e.strerror or e}", path=path, cause=e)
    logger.info(f"Deleted {target}")
    return {"path": path, "deleted": True}


def search_files(
    directory: str, pattern: str, recursive: bool = True, max_results: int = 1000
) -> Dict[str, Any]:
    """
    Find files whose name (or path relative to ``directory``) matches a glob.

    Results are relative POSIX paths in walk order, sorted per directory.
    """
    if not isinstance(pattern, str) or not pattern:
        raise InvalidParametersError("pattern must be a non-empty glob string")
    if isinstance(max_results, bool) or not isinstance(max_results, int) or max_results < 1:
        raise InvalidParametersError(f"maxResults must be a positive integer, got {max_results!r}")
    root = resolve(directory)
    if not root.is_dir():
        raise FileAccessError(f"{directory}: no such directory", path=directory, code=ErrorCode.FILE_NOT_FOUND)

    found: List[str] = []
    truncated = False
    for current, dirs, files in os.walk(root):
        dirs.sort()
        if not recursive:
            dirs.clear()
        for name in sorted(files):
            relative = (Path(current) / name).relative_to(root).as_posix()
            if fnmatch.fnmatch(name, pattern) or fnmatch.fnmatch(relative, pattern):
                if len(found) == max_results:
                    truncated = True
                    break
                found.append(relative)
        if truncated:
            break
    return {"directory": directory, "pattern": pattern, "count": len(found), "truncated": truncated, "files": found}
