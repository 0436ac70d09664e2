"""
MCP (Model Context Protocol) implementation for ooda-computer.
Exposes the search, replace and filesystem tools to LLMs.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional

from . import __version__
from .batch import BatchItemResult, batch_replace, batch_search, run_concurrent
from .config import validate_flag
from .context import OodaContext
from .decorators import audited, require_permission, tool_args
from .exceptions import (
    ErrorCode,
    InvalidParametersError,
    MCPError,
    OodaError,
    format_exception_details,
)
from .fileio import (
    copy_file,
    delete_file,
    file_info,
    list_directory,
    move_file,
    read_lines,
    read_text,
    search_files,
    write_text,
)
from .mcp_extended import ExtendedMCPTools
from .permissions import Permission
from .replace import ReplacementSpec, apply_replacement
from .responses import ToolResponse, failure
from .scanner import SearchOptions, SearchOutcome, search_file_async

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"


class MCPTool:
    def __init__(
        self,
        name: str,
        description: str,
        handler: Callable[..., Any],
        parameters: Dict[str, Any],
    ):
        self.name = name
        self.description = description
        self.handler = handler
        self.parameters = parameters

    def to_schema(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.parameters,
        }


SEARCH_OPTION_PROPERTIES = {
    "isRegex": {"type": "boolean", "default": False, "description": "Treat pattern as a regular expression"},
    "caseSensitive": {"type": "boolean", "default": True},
    "contextLines": {"type": "integer", "minimum": 0, "description": "Lines of context before and after each match"},
}

TRANSFER_PROPERTIES = {
    "source": {"type": "string"},
    "destination": {"type": "string"},
}


class MCPHandler:
    def __init__(self, context: OodaContext):
        self.context = context
        self.tools: Dict[str, MCPTool] = {}
        self.extended = ExtendedMCPTools(context)
        self._register_tools()
        self.extended.register_all(self)

    def _register_tools(self):
        # ===== Search & replace =====
        self.register_tool(
            "search_in_file",
            "Search a file line by line for a literal or regex pattern; returns matching lines with optional context",
            self.tool_search_in_file,
            {
                "type": "object",
                "properties": {
                    "path": {"type": "string"},
                    "pattern": {"type": "string"},
                    **SEARCH_OPTION_PROPERTIES,
                    "maxMatches": {"type": "integer", "minimum": 1},
                },
                "required": ["path", "pattern"],
            },
        )
        self.register_tool(
            "batch_search_in_files",
            "Search several files in parallel; isFuzzy finds approximate matches scored by edit-distance similarity",
            self.tool_batch_search_in_files,
            {
                "type": "object",
                "properties": {
                    "searches": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {"path": {"type": "string"}, "pattern": {"type": "string"}},
                            "required": ["path", "pattern"],
                        },
                    },
                    **SEARCH_OPTION_PROPERTIES,
                    "isFuzzy": {"type": "boolean", "default": False},
                    "fuzzyThreshold": {"type": "number", "minimum": 0, "maximum": 1, "default": 0.7},
                    "maxMatchesPerFile": {"type": "integer", "minimum": 1},
                },
                "required": ["searches"],
            },
        )
        self.register_tool(
            "str_replace",
            "Replace text that occurs exactly once in a file; fails without writing if it is absent or ambiguous",
            self.tool_str_replace,
            {
                "type": "object",
                "properties": {
                    "path": {"type": "string"},
                    "oldText": {"type": "string", "description": "Exact text to replace, must be unique in the file"},
                    "newText": {"type": "string", "default": ""},
                },
                "required": ["path", "oldText"],
            },
        )
        self.register_tool(
            "batch_str_replace",
            "Apply several exact replacements in order; replaceAll allows multiple occurrences",
            self.tool_batch_str_replace,
            {
                "type": "object",
                "properties": {
                    "replacements": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "path": {"type": "string"},
                                "searchText": {"type": "string"},
                                "replacementText": {"type": "string", "default": ""},
                                "replaceAll": {"type": "boolean", "default": False},
                            },
                            "required": ["path", "searchText"],
                        },
                    },
                    "stopOnError": {"type": "boolean", "default": False},
                },
                "required": ["replacements"],
            },
        )
        # ===== Filesystem =====
        self.register_tool(
            "read_file",
            "Read entire contents of a file",
            self.tool_read_file,
            {"type": "object", "properties": {"path": {"type": "string"}}, "required": ["path"]},
        )
        self.register_tool(
            "write_file",
            "Write content to a file, creating parent directories",
            self.tool_write_file,
            {
                "type": "object",
                "properties": {"path": {"type": "string"}, "content": {"type": "string"}},
                "required": ["path", "content"],
            },
        )
        self.register_tool(
            "list_directory",
            "List contents of a single directory",
            self.tool_list_directory,
            {"type": "object", "properties": {"path": {"type": "string"}}, "required": ["path"]},
        )
        self.register_tool(
            "read_file_lines",
            "Read a 1-indexed inclusive line range from a file",
            self.tool_read_file_lines,
            {
                "type": "object",
                "properties": {
                    "path": {"type": "string"},
                    "startLine": {"type": "integer", "minimum": 1},
                    "endLine": {"type": "integer", "minimum": 1},
                },
                "required": ["path", "startLine"],
            },
        )
        self.register_tool(
            "file_info",
            "Get metadata about a file or directory",
            self.tool_file_info,
            {"type": "object", "properties": {"path": {"type": "string"}}, "required": ["path"]},
        )
        self.register_tool(
            "batch_read_files",
            "Read multiple files in parallel",
            self.tool_batch_read_files,
            {
                "type": "object",
                "properties": {"paths": {"type": "array", "items": {"type": "string"}}},
                "required": ["paths"],
            },
        )
        self.register_tool(
            "batch_write_files",
            "Write multiple files in parallel",
            self.tool_batch_write_files,
            {
                "type": "object",
                "properties": {
                    "files": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {"path": {"type": "string"}, "content": {"type": "string"}},
                            "required": ["path", "content"],
                        },
                    },
                },
                "required": ["files"],
            },
        )
        self.register_tool(
            "batch_list_directories",
            "List multiple directories in parallel",
            self.tool_batch_list_directories,
            {
                "type": "object",
                "properties": {"paths": {"type": "array", "items": {"type": "string"}}},
                "required": ["paths"],
            },
        )
        # ===== File management =====
        self.register_tool(
            "copy_file",
            "Copy a file to a new location, creating parent directories",
            self.tool_copy_file,
            {"type": "object", "properties": TRANSFER_PROPERTIES, "required": ["source", "destination"]},
        )
        self.register_tool(
            "move_file",
            "Move or rename a file",
            self.tool_move_file,
            {"type": "object", "properties": TRANSFER_PROPERTIES, "required": ["source", "destination"]},
        )
        self.register_tool(
            "delete_file",
            "Delete a file (directories are refused)",
            self.tool_delete_file,
            {"type": "object", "properties": {"path": {"type": "string"}}, "required": ["path"]},
        )
        self.register_tool(
            "search_files",
            "Find files under a directory whose name or relative path matches a glob",
            self.tool_search_files,
            {
                "type": "object",
                "properties": {
                    "directory": {"type": "string"},
                    "pattern": {"type": "string", "description": "Glob such as '*.py' or 'src/*.ts'"},
                    "recursive": {"type": "boolean", "default": True},
                    "maxResults": {"type": "integer", "minimum": 1, "default": 1000},
                },
                "required": ["directory", "pattern"],
            },
        )
        self.register_tool(
            "batch_copy_files",
            "Copy multiple files in parallel",
            self.tool_batch_copy_files,
            {
                "type": "object",
                "properties": {
                    "operations": {
                        "type": "array",
                        "items": {"type": "object", "properties": TRANSFER_PROPERTIES, "required": ["source", "destination"]},
                    },
                },
                "required": ["operations"],
            },
        )
        self.register_tool(
            "batch_move_files",
            "Move multiple files in parallel",
            self.tool_batch_move_files,
            {
                "type": "object",
                "properties": {
                    "operations": {
                        "type": "array",
                        "items": {"type": "object", "properties": TRANSFER_PROPERTIES, "required": ["source", "destination"]},
                    },
                },
                "required": ["operations"],
            },
        )
        self.register_tool(
            "batch_delete_files",
            "Delete multiple files in parallel",
            self.tool_batch_delete_files,
            {
                "type": "object",
                "properties": {"paths": {"type": "array", "items": {"type": "string"}}},
                "required": ["paths"],
            },
        )
        self.register_tool(
            "batch_file_info",
            "Get metadata for multiple files in parallel",
            self.tool_batch_file_info,
            {
                "type": "object",
                "properties": {"paths": {"type": "array", "items": {"type": "string"}}},
                "required": ["paths"],
            },
        )

    def register_tool(
        self,
        name: str,
        description: str,
        handler: Callable[..., Any],
        parameters: Dict[str, Any],
    ):
        self.tools[name] = MCPTool(name, description, handler, parameters)

    def visible_tools(self) -> List[MCPTool]:
        """Registered tools minus those the permission policy disables."""
        manager = self.context.permission_manager
        if manager is None:
            return list(self.tools.values())
        return [t for t in self.tools.values() if manager.check(t.name) != Permission.DISABLED]

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolResponse:
        """
        Execute a tool by name with arguments.
        Simplified interface for HTTP API (non JSON-RPC).
        """
        if name not in self.tools:
            raise MCPError(
                f"Tool not found: {name}",
                code=ErrorCode.TOOL_NOT_FOUND,
                details={"tool": name, "available": sorted(self.tools.keys())},
            )

        handler = self.tools[name].handler
        args = tool_args(arguments)
        try:
            inspect.signature(handler).bind(**args)
        except TypeError as e:
            raise InvalidParametersError(f"Invalid arguments for {name}: {e}", details={"tool": name})

        try:
            logger.debug(f"Executing MCP tool: {name} with args: {list(args)}")
            result = await handler(**args)
            logger.debug(f"Tool {name} completed (isError={result.is_error})")
            return result
        except OodaError:
            raise
        except Exception as e:
            logger.exception(f"Unhandled error executing tool {name}")
            raise MCPError(
                f"Tool execution failed: {str(e)}",
                code=ErrorCode.TOOL_EXECUTION_FAILED,
                details=format_exception_details(e),
                cause=e,
            )

    def _normalize_method(self, method: str | None) -> str:
        if not method:
            return ''
        normalized = method.strip()
        if normalized.startswith('mcp.') or normalized.startswith('mcp/'):
            normalized = normalized[4:]
        return normalized.replace('.', '/')

    def _json_error(self, msg_id: Any, code: int, message: str, data: Any | None = None) -> Dict[str, Any]:
        error = {"code": code, "message": message}
        if data is not None:
            error["data"] = data
        return {"jsonrpc": "2.0", "id": msg_id, "error": error}

    async def process_request(self, request_data: Dict[str, Any]) -> Dict[str, Any]:
        """Handle a JSON-RPC request from an MCP client."""
        if not isinstance(request_data, dict):
            return self._json_error(None, -32600, "Invalid Request")
        method = request_data.get("method")
        normalized = self._normalize_method(method)
        params = request_data.get("params") or {}
        msg_id = request_data.get("id")

        if normalized == "initialize":
            return {
                "jsonrpc": "2.0",
                "id": msg_id,
                "result": {
                    "protocolVersion": PROTOCOL_VERSION,
                    "serverInfo": {"name": "ooda-computer", "version": __version__},
                    "capabilities": {"tools": {"listChanged": False}},
                },
            }

        if normalized == "ping":
            return {"jsonrpc": "2.0", "id": msg_id, "result": {}}

        if normalized == "tools/list":
            return {
                "jsonrpc": "2.0",
                "id": msg_id,
                "result": {"tools": [t.to_schema() for t in self.visible_tools()]},
            }

        if normalized == "tools/call":
            name = params.get("name")
            if name not in self.tools:
                return self._json_error(msg_id, -32601, f"Tool not found: {name}")
            try:
                response = await self.call_tool(name, params.get("arguments"))
                return {"jsonrpc": "2.0", "id": msg_id, "result": response.to_mcp()}
            except OodaError as e:
                e.log(logging.ERROR)
                return self._json_error(msg_id, e.code.value, e.message, e.to_dict())

        logger.warning(f"Unsupported MCP method: {method!r} (normalized: {normalized})")
        return self._json_error(msg_id, -32601, "Method not found")

    # --- Tool Implementations ---

    async def _in_executor(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    @audited("search_in_file")
    @require_permission("search_in_file")
    async def tool_search_in_file(
        self,
        path: str,
        pattern: str,
        isRegex: bool = False,
        caseSensitive: bool = True,
        contextLines: Optional[int] = None,
        maxMatches: Optional[int] = None,
    ) -> ToolResponse:
        try:
            options = SearchOptions.from_defaults(
                self.context.config.search,
                is_regex=isRegex,
                case_sensitive=caseSensitive,
                context_lines=contextLines,
                max_matches=maxMatches,
            )
        except OodaError as e:
            outcome = SearchOutcome.failure(path, pattern, e.message)
        else:
            outcome = await search_file_async(path, pattern, options)
        return ToolResponse(outcome.to_dict(), is_error=not outcome.success)

    @audited("batch_search_in_files")
    @require_permission("batch_search_in_files")
    async def tool_batch_search_in_files(
        self,
        searches: List[Dict[str, Any]],
        isRegex: bool = False,
        isFuzzy: bool = False,
        fuzzyThreshold: Optional[float] = None,
        caseSensitive: bool = True,
        contextLines: Optional[int] = None,
        maxMatchesPerFile: Optional[int] = None,
    ) -> ToolResponse:
        try:
            if not isinstance(searches, list):
                raise InvalidParametersError("searches must be an array of {path, pattern}")
            options = SearchOptions.from_defaults(
                self.context.config.search,
                is_regex=isRegex,
                is_fuzzy=isFuzzy,
                case_sensitive=caseSensitive,
                context_lines=contextLines,
                max_matches=maxMatchesPerFile,
                fuzzy_threshold=fuzzyThreshold,
            )
        except OodaError as e:
            return failure(e)

        report = await batch_search(searches, options)
        return ToolResponse(report.to_dict(), is_error=report.is_error())

    @audited("str_replace")
    @require_permission("str_replace")
    async def tool_str_replace(self, path: str, oldText: str, newText: str = "") -> ToolResponse:
        try:
            spec = ReplacementSpec(path=path, search_text=oldText, replacement_text=newText)
            change = await self._in_executor(apply_replacement, spec)
        except OodaError as e:
            return ToolResponse(
                {"success": False, "message": e.message, "errorCode": e.code.name},
                is_error=True,
            )
        return ToolResponse({
            "success": True,
            "message": f"Replaced 1 occurrence in {path}",
            **change.to_dict(),
        })

    @audited("batch_str_replace")
    @require_permission("batch_str_replace")
    async def tool_batch_str_replace(
        self, replacements: List[Dict[str, Any]], stopOnError: bool = False
    ) -> ToolResponse:
        try:
            if not isinstance(replacements, list):
                raise InvalidParametersError("replacements must be an array")
            validate_flag(stopOnError, "stopOnError")
        except OodaError as e:
            return failure(e)
        report = await batch_replace(replacements, stop_on_error=stopOnError)
        return ToolResponse(report.to_dict(), is_error=report.is_error(mutating=True))

    @audited("read_file")
    @require_permission("read_file")
    async def tool_read_file(self, path: str) -> ToolResponse:
        try:
            content = await self._in_executor(read_text, path)
        except OodaError as e:
            return failure(e, path=path)
        return ToolResponse({"path": path, "content": content, "size": len(content)})

    @audited("write_file")
    @require_permission("write_file")
    async def tool_write_file(self, path: str, content: str) -> ToolResponse:
        if not isinstance(content, str):
            return failure(InvalidParametersError("content must be a string"), path=path)
        try:
            written = await self._in_executor(write_text, path, content)
        except OodaError as e:
            return failure(e, path=path)
        return ToolResponse({"path": path, "success": True, "charsWritten": written})

    @audited("list_directory")
    @require_permission("list_directory")
    async def tool_list_directory(self, path: str) -> ToolResponse:
        try:
            entries = await self._in_executor(list_directory, path)
        except OodaError as e:
            return failure(e, path=path)
        return ToolResponse({"path": path, "entries": entries})

    @audited("read_file_lines")
    @require_permission("read_file_lines")
    async def tool_read_file_lines(self, path: str, startLine: int, endLine: Optional[int] = None) -> ToolResponse:
        try:
            if isinstance(startLine, bool) or not isinstance(startLine, int):
                raise InvalidParametersError(f"startLine must be an integer, got {startLine!r}")
            if endLine is not None and (isinstance(endLine, bool) or not isinstance(endLine, int)):
                raise InvalidParametersError(f"endLine must be an integer, got {endLine!r}")
            result = await self._in_executor(read_lines, path, startLine, endLine)
        except OodaError as e:
            return failure(e, path=path)
        return ToolResponse(result)

    @audited("file_info")
    @require_permission("file_info")
    async def tool_file_info(self, path: str) -> ToolResponse:
        try:
            info = await self._in_executor(file_info, path)
        except OodaError as e:
            return failure(e, path=path)
        return ToolResponse(info)

    async def _path_batch(
        self, paths: Any, func: Callable[[str], Any], key: Optional[str] = None, mutating: bool = False
    ) -> ToolResponse:
        """Run ``func`` on each path concurrently; ``key=None`` reports its result as is."""
        if not isinstance(paths, list):
            return failure(InvalidParametersError("paths must be an array of strings"))

        async def _one(index: int, path: Any) -> BatchItemResult:
            if not isinstance(path, str) or not path:
                return BatchItemResult(index=index, success=False, error=f"invalid path: {path!r}")
            try:
                value = await self._in_executor(func, path)
            except OodaError as e:
                return BatchItemResult(index=index, success=False, error=e.message)
            if key is None:
                return BatchItemResult(index=index, success=True, result=value)
            result = {"path": path, key: value}
            if isinstance(value, str):
                result["size"] = len(value)
            return BatchItemResult(index=index, success=True, result=result)

        report = await run_concurrent(paths, _one)
        return ToolResponse(report.to_dict(), is_error=report.is_error(mutating=mutating))

    @audited("batch_read_files")
    @require_permission("batch_read_files")
    async def tool_batch_read_files(self, paths: List[str]) -> ToolResponse:
        return await self._path_batch(paths, read_text, "content")

    @audited("batch_list_directories")
    @require_permission("batch_list_directories")
    async def tool_batch_list_directories(self, paths: List[str]) -> ToolResponse:
        return await self._path_batch(paths, list_directory, "entries")

    @audited("batch_write_files")
    @require_permission("batch_write_files")
    async def tool_batch_write_files(self, files: List[Dict[str, Any]]) -> ToolResponse:
        if not isinstance(files, list):
            return failure(InvalidParametersError("files must be an array of {path, content}"))

        async def _write(index: int, item: Any) -> BatchItemResult:
            if not isinstance(item, dict) or not isinstance(item.get("path"), str) \
                    or not isinstance(item.get("content"), str):
                return BatchItemResult(index=index, success=False, error="each file needs string 'path' and 'content'")
            try:
                written = await self._in_executor(write_text, item["path"], item["content"])
            except OodaError as e:
                return BatchItemResult(index=index, success=False, error=e.message)
            return BatchItemResult(index=index, success=True, result={"path": item["path"], "charsWritten": written})

        report = await run_concurrent(files, _write)
        return ToolResponse(report.to_dict(), is_error=report.is_error(mutating=True))

    # ===== File management =====

    @audited("copy_file")
    @require_permission("copy_file")
    async def tool_copy_file(self, source: str, destination: str) -> ToolResponse:
        try:
            result = await self._in_executor(copy_file, source, destination)
        except OodaError as e:
            return failure(e, source=source, destination=destination)
        return ToolResponse(result)

    @audited("move_file")
    @require_permission("move_file")
    async def tool_move_file(self, source: str, destination: str) -> ToolResponse:
        try:
            result = await self._in_executor(move_file, source, destination)
        except OodaError as e:
            return failure(e, source=source, destination=destination)
        return ToolResponse(result)

    @audited("delete_file")
    @require_permission("delete_file")
    async def tool_delete_file(self, path: str) -> ToolResponse:
        try:
            result = await self._in_executor(delete_file, path)
        except OodaError as e:
            return failure(e, path=path)
        return ToolResponse(result)

    @audited("search_files")
    @require_permission("search_files")
    async def tool_search_files(
        self, directory: str, pattern: str, recursive: bool = True, maxResults: int = 1000
    ) -> ToolResponse:
        try:
            validate_flag(recursive, "recursive")
            result = await self._in_executor(search_files, directory, pattern, recursive, maxResults)
        except OodaError as e:
            return failure(e, directory=directory, pattern=pattern)
        return ToolResponse(result)

    async def _transfer_batch(self, operations: Any, func: Callable[[str, str], Any]) -> ToolResponse:
        if not isinstance(operations, list):
            return failure(InvalidParametersError("operations must be an array of {source, destination}"))

        async def _one(index: int, item: Any) -> BatchItemResult:
            if not isinstance(item, dict) or not isinstance(item.get("source"), str) \
                    or not isinstance(item.get("destination"), str):
                return BatchItemResult(index=index, success=False, error="each operation needs string 'source' and 'destination'")
            try:
                result = await self._in_executor(func, item["source"], item["destination"])
            except OodaError as e:
                return BatchItemResult(index=index, success=False, error=e.message)
            return BatchItemResult(index=index, success=True, result=result)

        report = await run_concurrent(operations, _one)
        return ToolResponse(report.to_dict(), is_error=report.is_error(mutating=True))

    @audited("batch_copy_files")
    @require_permission("batch_copy_files")
    async def tool_batch_copy_files(self, operations: List[Dict[str, Any]]) -> ToolResponse:
        return await self._transfer_batch(operations, copy_file)

    @audited("batch_move_files")
    @require_permission("batch_move_files")
    async def tool_batch_move_files(self, operations: List[Dict[str, Any]]) -> ToolResponse:
        return await self._transfer_batch(operations, move_file)

    @audited("batch_delete_files")
    @require_permission("batch_delete_files")
    async def tool_batch_delete_files(self, paths: List[str]) -> ToolResponse:
        return await self._path_batch(paths, delete_file, mutating=True)

    @audited("batch_file_info")
    @require_permission("batch_file_info")
    async def tool_batch_file_info(self, paths: List[str]) -> ToolResponse:
        return await self._path_batch(paths, file_info, "info")
