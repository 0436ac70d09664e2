"""
Extended MCP tools: shell, record store, system inspection and tool discovery.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .batch import BatchItemResult, run_concurrent
from .catalog import CATEGORIES, search_tools
from .config import validate_flag
from .decorators import audited, require_permission
from .exceptions import InvalidParametersError, OodaError, StorageError
from .records import RecordStore, parse_json_object
from .responses import ToolResponse, failure
from .shell import run_command
from .system import (
    SORT_KEYS,
    SystemSensors,
    get_environment,
    get_network_info,
    kill_process,
    list_processes,
    set_environment,
)

logger = logging.getLogger(__name__)

COLLECTION_ID = {
    "collection": {"type": "string"},
    "id": {"type": "string"},
}


class ExtendedMCPTools:
    """Collaborator tools registered alongside the core search/replace tools."""

    def __init__(self, context):
        self.context = context
        self.sensors = SystemSensors()

    def register_all(self, handler):
        """Register all extended tools to MCPHandler"""
        # ===== CLI =====
        handler.register_tool(
            "exec_cli", "Execute a shell command (blocked patterns and restricted mode apply)", self.tool_exec_cli,
            {"type": "object", "properties": {
                "command": {"type": "string", "description": "The command to execute"},
                "cwd": {"type": "string", "description": "Working directory for the command"},
            }, "required": ["command"]}
        )
        handler.register_tool(
            "batch_exec_cli", "Execute multiple shell commands in parallel", self.tool_batch_exec_cli,
            {"type": "object", "properties": {
                "commands": {"type": "array", "items": {"type": "object", "properties": {
                    "command": {"type": "string"}, "cwd": {"type": "string"},
                }, "required": ["command"]}},
            }, "required": ["commands"]}
        )

        # ===== RECORD STORE =====
        handler.register_tool(
            "crud_create", "Create a record (JSON object) in a collection", self.tool_crud_create,
            {"type": "object", "properties": {
                "collection": {"type": "string"},
                "data": {"type": ["object", "string"], "description": "JSON object or JSON text"},
            }, "required": ["collection", "data"]}
        )
        handler.register_tool(
            "crud_read", "Read a record by id", self.tool_crud_read,
            {"type": "object", "properties": COLLECTION_ID, "required": ["collection", "id"]}
        )
        handler.register_tool(
            "crud_update", "Shallow-merge fields into an existing record", self.tool_crud_update,
            {"type": "object", "properties": {
                **COLLECTION_ID,
                "data": {"type": ["object", "string"]},
            }, "required": ["collection", "id", "data"]}
        )
        handler.register_tool(
            "crud_delete", "Delete a record by id", self.tool_crud_delete,
            {"type": "object", "properties": COLLECTION_ID, "required": ["collection", "id"]}
        )
        handler.register_tool(
            "crud_query", "Query a collection, newest first, keeping records whose fields equal the filter",
            self.tool_crud_query,
            {"type": "object", "properties": {
                "collection": {"type": "string"},
                "filter": {"type": ["object", "string"]},
                "limit": {"type": "integer", "minimum": 1},
            }, "required": ["collection"]}
        )
        handler.register_tool(
            "crud_batch_create", "Create several records in one collection", self.tool_crud_batch_create,
            {"type": "object", "properties": {
                "collection": {"type": "string"},
                "items": {"type": "array", "items": {"type": ["object", "string"]}},
            }, "required": ["collection", "items"]}
        )
        handler.register_tool(
            "crud_batch_read", "Read several records by id", self.tool_crud_batch_read,
            {"type": "object", "properties": {
                "collection": {"type": "string"},
                "ids": {"type": "array", "items": {"type": "string"}},
            }, "required": ["collection", "ids"]}
        )
        handler.register_tool(
            "crud_batch_update", "Merge fields into several records", self.tool_crud_batch_update,
            {"type": "object", "properties": {
                "collection": {"type": "string"},
                "updates": {"type": "array", "items": {"type": "object", "properties": {
                    "id": {"type": "string"}, "data": {"type": ["object", "string"]},
                }, "required": ["id", "data"]}},
            }, "required": ["collection", "updates"]}
        )
        handler.register_tool(
            "crud_batch_delete", "Delete several records by id", self.tool_crud_batch_delete,
            {"type": "object", "properties": {
                "collection": {"type": "string"},
                "ids": {"type": "array", "items": {"type": "string"}},
            }, "required": ["collection", "ids"]}
        )

        # ===== SYSTEM =====
        handler.register_tool(
            "get_system_info", "Get host platform, CPU, memory and disk metrics", self.tool_get_system_info,
            {"type": "object", "properties": {}}
        )
        handler.register_tool(
            "list_processes", "List running processes with details", self.tool_list_processes,
            {"type": "object", "properties": {
                "limit": {"type": "integer", "description": "Max number of processes to return"},
                "sort_by": {"type": "string", "enum": list(SORT_KEYS), "default": "cpu"},
            }}
        )
        handler.register_tool(
            "kill_process", "Terminate a process by PID", self.tool_kill_process,
            {"type": "object", "properties": {
                "pid": {"type": "integer"},
                "force": {"type": "boolean", "default": False},
            }, "required": ["pid"]}
        )
        handler.register_tool(
            "get_environment", "Read one environment variable, or all of them", self.tool_get_environment,
            {"type": "object", "properties": {"name": {"type": "string"}}}
        )
        handler.register_tool(
            "set_environment", "Set an environment variable for this server and the commands it runs",
            self.tool_set_environment,
            {"type": "object", "properties": {
                "name": {"type": "string"},
                "value": {"type": "string"},
            }, "required": ["name", "value"]}
        )
        handler.register_tool(
            "get_network_info", "Get network interfaces, addresses and I/O counters", self.tool_get_network_info,
            {"type": "object", "properties": {}}
        )

        # ===== DISCOVERY =====
        handler.register_tool(
            "search_tools", "Find tools relevant to a task by keyword", self.tool_search_tools,
            {"type": "object", "properties": {
                "query": {"type": "string", "description": "Natural language or keyword query"},
                "category": {"type": "string", "enum": list(CATEGORIES)},
                "maxResults": {"type": "integer", "default": 10},
                "contextWindow": {"type": "integer", "description": "LLM total context window size"},
                "contextUsed": {"type": "integer", "description": "Tokens already used"},
            }, "required": ["query"]}
        )

    # --- helpers ---

    @property
    def records(self) -> RecordStore:
        if self.context.records is None:
            raise StorageError("Record store is not configured")
        return self.context.records

    async def _in_executor(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    # ===== CLI =====

    @audited("exec_cli")
    @require_permission("exec_cli")
    async def tool_exec_cli(self, command: str, cwd: Optional[str] = None) -> ToolResponse:
        try:
            result = await run_command(command, self.context.command_policy, cwd)
        except OodaError as e:
            return failure(e, command=command)
        return ToolResponse(result.to_dict(), is_error=not result.success)

    @audited("batch_exec_cli")
    @require_permission("batch_exec_cli")
    async def tool_batch_exec_cli(self, commands: List[Any]) -> ToolResponse:
        if not isinstance(commands, list):
            return failure(InvalidParametersError("commands must be an array"))

        async def _run(index: int, item: Any) -> BatchItemResult:
            # Plain strings are accepted as {command}.
            spec = {"command": item} if isinstance(item, str) else item
            if not isinstance(spec, dict):
                return BatchItemResult(index=index, success=False, error="each item needs a 'command'")
            try:
                result = await run_command(spec.get("command"), self.context.command_policy, spec.get("cwd"))
            except OodaError as e:
                return BatchItemResult(index=index, success=False, error=e.message)
            return BatchItemResult(
                index=index,
                success=result.success,
                result=result.to_dict(),
                error=None if result.success else f"exit code {result.exit_code}",
            )

        report = await run_concurrent(commands, _run)
        return ToolResponse(report.to_dict(), is_error=report.is_error())

    # ===== RECORD STORE =====

    @audited("crud_create")
    @require_permission("crud_create")
    async def tool_crud_create(self, collection: str, data: Any) -> ToolResponse:
        try:
            record = await self._in_executor(self.records.create, collection, parse_json_object(data, "data"))
        except OodaError as e:
            return failure(e, collection=collection)
        return ToolResponse(record)

    @audited("crud_read")
    @require_permission("crud_read")
    async def tool_crud_read(self, collection: str, id: str) -> ToolResponse:
        try:
            record = await self._in_executor(self.records.read, collection, id)
        except OodaError as e:
            return failure(e, collection=collection, id=id)
        return ToolResponse(record)

    @audited("crud_update")
    @require_permission("crud_update")
    async def tool_crud_update(self, collection: str, id: str, data: Any) -> ToolResponse:
        try:
            record = await self._in_executor(self.records.update, collection, id, parse_json_object(data, "data"))
        except OodaError as e:
            return failure(e, collection=collection, id=id)
        return ToolResponse(record)

    @audited("crud_delete")
    @require_permission("crud_delete")
    async def tool_crud_delete(self, collection: str, id: str) -> ToolResponse:
        try:
            await self._in_executor(self.records.delete, collection, id)
        except OodaError as e:
            return failure(e, collection=collection, id=id)
        return ToolResponse({"collection": collection, "id": id, "deleted": True})

    @audited("crud_query")
    @require_permission("crud_query")
    async def tool_crud_query(self, collection: str, filter: Any = None, limit: Optional[int] = None) -> ToolResponse:
        try:
            criteria = None if filter is None else parse_json_object(filter, "filter")
            if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
                raise InvalidParametersError(f"limit must be a positive integer, got {limit!r}")
            rows = await self._in_executor(self.records.query, collection, criteria, limit)
        except OodaError as e:
            return failure(e, collection=collection)
        return ToolResponse({"collection": collection, "count": len(rows), "records": rows})

    @audited("crud_batch_create")
    @require_permission("crud_batch_create")
    async def tool_crud_batch_create(self, collection: str, items: List[Any]) -> ToolResponse:
        if not isinstance(items, list):
            return failure(InvalidParametersError("items must be an array"), collection=collection)

        async def _create(index: int, item: Any) -> BatchItemResult:
            try:
                record = await self._in_executor(self.records.create, collection, parse_json_object(item, "item"))
            except OodaError as e:
                return BatchItemResult(index=index, success=False, error=e.message)
            return BatchItemResult(index=index, success=True, result=record)

        report = await run_concurrent(items, _create)
        return ToolResponse(report.to_dict(), is_error=report.is_error(mutating=True))

    @audited("crud_batch_read")
    @require_permission("crud_batch_read")
    async def tool_crud_batch_read(self, collection: str, ids: List[str]) -> ToolResponse:
        if not isinstance(ids, list):
            return failure(InvalidParametersError("ids must be an array"), collection=collection)

        async def _read(index: int, record_id: Any) -> BatchItemResult:
            try:
                record = await self._in_executor(self.records.read, collection, str(record_id))
            except OodaError as e:
                return BatchItemResult(index=index, success=False, error=e.message)
            return BatchItemResult(index=index, success=True, result=record)

        report = await run_concurrent(ids, _read)
        return ToolResponse(report.to_dict(), is_error=report.is_error())

    @audited("crud_batch_update")
    @require_permission("crud_batch_update")
    async def tool_crud_batch_update(self, collection: str, updates: List[Any]) -> ToolResponse:
        if not isinstance(updates, list):
            return failure(InvalidParametersError("updates must be an array of {id, data}"), collection=collection)

        async def _update(index: int, item: Any) -> BatchItemResult:
            try:
                if not isinstance(item, dict) or not isinstance(item.get("id"), str):
                    raise InvalidParametersError("each update needs a string 'id' and 'data'")
                changes = parse_json_object(item.get("data"), "data")
                record = await self._in_executor(self.records.update, collection, item["id"], changes)
            except OodaError as e:
                return BatchItemResult(index=index, success=False, error=e.message)
            return BatchItemResult(index=index, success=True, result=record)

        report = await run_concurrent(updates, _update)
        return ToolResponse(report.to_dict(), is_error=report.is_error(mutating=True))

    @audited("crud_batch_delete")
    @require_permission("crud_batch_delete")
    async def tool_crud_batch_delete(self, collection: str, ids: List[str]) -> ToolResponse:
        if not isinstance(ids, list):
            return failure(InvalidParametersError("ids must be an array"), collection=collection)

        async def _delete(index: int, record_id: Any) -> BatchItemResult:
            try:
                await self._in_executor(self.records.delete, collection, str(record_id))
            except OodaError as e:
                return BatchItemResult(index=index, success=False, error=e.message)
            return BatchItemResult(index=index, success=True, result={"id": str(record_id), "deleted": True})

        report = await run_concurrent(ids, _delete)
        return ToolResponse(report.to_dict(), is_error=report.is_error(mutating=True))

    # ===== SYSTEM =====

    @audited("get_system_info")
    @require_permission("get_system_info")
    async def tool_get_system_info(self) -> ToolResponse:
        return ToolResponse(await self._in_executor(self.sensors.get_all))

    @audited("list_processes")
    @require_permission("list_processes")
    async def tool_list_processes(self, limit: int = 50, sort_by: str = "cpu") -> ToolResponse:
        try:
            procs = await self._in_executor(list_processes, limit, sort_by)
        except OodaError as e:
            return failure(e)
        return ToolResponse({"count": len(procs), "processes": procs})

    @audited("kill_process")
    @require_permission("kill_process")
    async def tool_kill_process(self, pid: int, force: bool = False) -> ToolResponse:
        try:
            validate_flag(force, "force")
            result = await self._in_executor(kill_process, pid, force)
        except OodaError as e:
            return failure(e, pid=pid)
        logger.warning(f"Sent {result['signal']} to process {pid} ({result['name']})")
        return ToolResponse(result)

    @audited("get_environment")
    @require_permission("get_environment")
    async def tool_get_environment(self, name: Optional[str] = None) -> ToolResponse:
        return ToolResponse(get_environment(name))

    @audited("set_environment")
    @require_permission("set_environment")
    async def tool_set_environment(self, name: str, value: str) -> ToolResponse:
        try:
            result = set_environment(name, value)
        except OodaError as e:
            return failure(e, name=name)
        logger.info(f"Environment variable {name} set")
        return ToolResponse(result)

    @audited("get_network_info")
    @require_permission("get_network_info")
    async def tool_get_network_info(self) -> ToolResponse:
        return ToolResponse(await self._in_executor(get_network_info))

    # ===== DISCOVERY =====

    @audited("search_tools")
    @require_permission("search_tools")
    async def tool_search_tools(
        self,
        query: str,
        category: Optional[str] = None,
        maxResults: int = 10,
        contextWindow: Optional[int] = None,
        contextUsed: Optional[int] = None,
    ) -> ToolResponse:
        try:
            result: Dict[str, Any] = search_tools(query, category, maxResults, contextWindow, contextUsed)
        except OodaError as e:
            return failure(e, query=query)
        return ToolResponse(result)
