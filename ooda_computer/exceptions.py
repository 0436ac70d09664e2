"""
ooda-computer exception hierarchy and error handling utilities.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ErrorCode(Enum):
    """Standard error codes for ooda-computer operations."""

    # General errors (1xxx)
    UNKNOWN = 1000
    INVALID_INPUT = 1001
    TIMEOUT = 1002

    # Permission errors (2xxx)
    PERMISSION_DENIED = 2000

    # File errors (3xxx)
    FILE_NOT_FOUND = 3000
    FILE_UNREADABLE = 3001
    WRITE_FAILURE = 3002

    # Search / replace errors (4xxx)
    INVALID_PATTERN = 4000
    NO_MATCH = 4001
    AMBIGUOUS_MATCH = 4002

    # MCP errors (5xxx)
    TOOL_NOT_FOUND = 5000
    TOOL_EXECUTION_FAILED = 5001
    INVALID_PARAMETERS = 5002

    # Command errors (6xxx)
    COMMAND_BLOCKED = 6000
    COMMAND_FAILED = 6001

    # Storage errors (7xxx)
    STORAGE_ERROR = 7000
    RECORD_NOT_FOUND = 7001


class OodaError(Exception):
    """Base exception for all ooda-computer errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to JSON-serializable dict."""
        result = {
            "error": self.__class__.__name__,
            "message": self.message,
            "code": self.code.value,
            "code_name": self.code.name,
        }
        if self.details:
            result["details"] = self.details
        if self.cause:
            result["cause"] = str(self.cause)
        return result

    def log(self, level: int = logging.ERROR):
        """Log this exception with context."""
        logger.log(
            level,
            f"{self.__class__.__name__}: {self.message} (code={self.code.name})",
            extra={"details": self.details, "cause": self.cause},
        )


class InvalidParametersError(OodaError):
    """Tool arguments failed validation at the boundary."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", ErrorCode.INVALID_PARAMETERS)
        super().__init__(message, **kwargs)


class InvalidPatternError(OodaError):
    """Malformed regular expression."""

    def __init__(self, message: str, pattern: str, **kwargs):
        kwargs.setdefault("code", ErrorCode.INVALID_PATTERN)
        kwargs.setdefault("details", {})
        kwargs["details"]["pattern"] = pattern
        super().__init__(message, **kwargs)


class FileAccessError(OodaError):
    """Missing or unreadable file. Code is FILE_NOT_FOUND or FILE_UNREADABLE."""

    def __init__(self, message: str, path: str, **kwargs):
        kwargs.setdefault("code", ErrorCode.FILE_UNREADABLE)
        kwargs.setdefault("details", {})
        kwargs["details"]["path"] = path
        super().__init__(message, **kwargs)


class NoMatchError(OodaError):
    """Substitution target absent from the file."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", ErrorCode.NO_MATCH)
        super().__init__(message, **kwargs)


class AmbiguousMatchError(OodaError):
    """Substitution target occurs more than once and replaceAll is not set."""

    def __init__(self, message: str, occurrences: int, **kwargs):
        kwargs.setdefault("code", ErrorCode.AMBIGUOUS_MATCH)
        kwargs.setdefault("details", {})
        kwargs["details"]["occurrences"] = occurrences
        super().__init__(message, **kwargs)
        self.occurrences = occurrences


class WriteFailureError(OodaError):
    """Writing a file failed."""

    def __init__(self, message: str, path: str, **kwargs):
        kwargs.setdefault("code", ErrorCode.WRITE_FAILURE)
        kwargs.setdefault("details", {})
        kwargs["details"]["path"] = path
        super().__init__(message, **kwargs)


class CommandBlockedError(OodaError):
    """Shell command rejected by the command policy."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", ErrorCode.COMMAND_BLOCKED)
        super().__init__(message, **kwargs)


class MCPError(OodaError):
    """MCP tool execution errors."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", ErrorCode.TOOL_EXECUTION_FAILED)
        super().__init__(message, **kwargs)


class ToolPermissionError(OodaError):
    """Tool disabled by the permission policy."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", ErrorCode.PERMISSION_DENIED)
        super().__init__(message, **kwargs)


class StorageError(OodaError):
    """Storage and database errors."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", ErrorCode.STORAGE_ERROR)
        super().__init__(message, **kwargs)


class RecordNotFoundError(StorageError):
    def __init__(self, collection: str, record_id: str, **kwargs):
        kwargs.setdefault("code", ErrorCode.RECORD_NOT_FOUND)
        kwargs.setdefault("details", {"collection": collection, "id": record_id})
        super().__init__(
            f"Record not found in collection {collection} with id {record_id}", **kwargs
        )


def format_exception_details(exc: Exception) -> Dict[str, Any]:
    """Client-safe summary of an exception; the traceback stays in the server log."""
    return {
        "type": type(exc).__name__,
        "message": str(exc),
    }
