"""Tool result envelope shared by the MCP handlers."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict

from .exceptions import OodaError


@dataclass
class ToolResponse:
    """A tool's JSON payload plus the ``isError`` flag reported to the client."""

    payload: Any
    is_error: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"isError": self.is_error, "result": self.payload}

    def to_mcp(self) -> Dict[str, Any]:
        return {
            "content": [{"type": "text", "text": json.dumps(self.payload, default=str, ensure_ascii=False)}],
            "isError": self.is_error,
        }


def failure(error: OodaError, **fields: Any) -> ToolResponse:
    return ToolResponse({**fields, "error": error.message, "errorCode": error.code.name}, is_error=True)
