"""
Tool discovery: keyword scoring over a metadata catalog of the served tools.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .exceptions import InvalidParametersError

CATEGORIES = ("batch", "filesystem", "search", "cli", "database", "system", "meta")

NAME_EXACT = 1.0
NAME_CONTAINS = 0.8
CATEGORY_MATCH = 0.9
KEYWORD_WEIGHT = 0.7
DESCRIPTION_MATCH = 0.5
CAPABILITY_WEIGHT = 0.6
CONTEXT_AWARE_BONUS = 0.2


@dataclass
class ToolMetadata:
    name: str
    category: str
    description: str
    keywords: List[str] = field(default_factory=list)
    capabilities: List[str] = field(default_factory=list)
    context_aware: bool = False
    estimated_token_cost: str = "low"
    usage_example: Optional[str] = None


TOOL_CATALOG: List[ToolMetadata] = [
    # Batch operations
    ToolMetadata(
        "batch_search_in_files", "batch",
        "Search several files in parallel, with optional fuzzy matching",
        ["search", "grep", "files", "parallel", "batch", "fuzzy", "typo"],
        ["Parallel search", "Fuzzy matching", "Per-file match limits", "Context lines"],
        context_aware=True, estimated_token_cost="variable",
        usage_example="batch_search_in_files({ searches: [{ path: 'a.py', pattern: 'TODO' }], isFuzzy: true })",
    ),
    ToolMetadata(
        "batch_str_replace", "batch",
        "Apply several exact text replacements in order",
        ["replace", "edit", "batch", "multiple", "refactor"],
        ["Sequential replacement", "Stop on first error", "Replace all occurrences"],
        estimated_token_cost="low",
    ),
    ToolMetadata(
        "batch_read_files", "batch",
        "Read multiple files in parallel",
        ["read", "files", "parallel", "batch", "multiple"],
        ["Parallel file reading", "Per-file errors"],
        context_aware=True, estimated_token_cost="variable",
        usage_example="batch_read_files({ paths: ['file1.txt', 'file2.txt'] })",
    ),
    ToolMetadata(
        "batch_write_files", "batch",
        "Write multiple files in parallel",
        ["write", "files", "parallel", "batch", "multiple", "create"],
        ["Parallel file writing"],
        estimated_token_cost="low",
    ),
    ToolMetadata(
        "batch_list_directories", "batch",
        "List multiple directories in parallel",
        ["list", "directories", "parallel", "batch", "multiple", "ls"],
        ["Parallel directory listing"],
        context_aware=True, estimated_token_cost="variable",
        usage_example="batch_list_directories({ paths: ['src', 'tests'] })",
    ),
    ToolMetadata(
        "batch_exec_cli", "batch",
        "Execute multiple shell commands in parallel",
        ["execute", "commands", "parallel", "batch", "shell", "cli"],
        ["Parallel command execution", "Aggregated results"],
        estimated_token_cost="variable",
    ),
    ToolMetadata(
        "batch_copy_files", "batch",
        "Copy multiple files in parallel",
        ["copy", "files", "parallel", "batch", "multiple", "duplicate"],
        ["Parallel file copying"],
    ),
    ToolMetadata(
        "batch_move_files", "batch",
        "Move multiple files in parallel",
        ["move", "rename", "files", "parallel", "batch", "multiple"],
        ["Parallel file moving"],
    ),
    ToolMetadata(
        "batch_delete_files", "batch",
        "Delete multiple files in parallel",
        ["delete", "remove", "files", "parallel", "batch", "multiple"],
        ["Parallel file deletion"],
    ),
    ToolMetadata(
        "batch_file_info", "batch",
        "Get metadata for multiple files in parallel",
        ["info", "metadata", "stat", "files", "parallel", "batch"],
        ["Parallel metadata lookup"],
        context_aware=True, estimated_token_cost="medium",
        usage_example="batch_file_info({ paths: ['a.txt', 'b.txt'] })",
    ),
    # Filesystem operations
    ToolMetadata(
        "read_file", "filesystem", "Read entire contents of a file",
        ["read", "file", "cat", "view", "content"],
        ["Read full file content"],
        estimated_token_cost="variable",
        usage_example="read_file({ path: 'example.txt' })",
    ),
    ToolMetadata(
        "read_file_lines", "filesystem", "Read specific line range from a file",
        ["read", "file", "lines", "range", "partial", "head", "tail"],
        ["Targeted line reading", "Efficient for large files"],
        usage_example="read_file_lines({ path: 'large-file.txt', startLine: 1, endLine: 100 })",
    ),
    ToolMetadata(
        "list_directory", "filesystem", "List contents of a single directory",
        ["list", "directory", "ls", "dir", "files"],
        ["Directory listing", "File type identification"],
        usage_example="list_directory({ path: 'src' })",
    ),
    ToolMetadata(
        "write_file", "filesystem", "Write content to a file",
        ["write", "file", "create", "save"],
        ["File creation", "Content writing"],
    ),
    ToolMetadata(
        "file_info", "filesystem", "Get metadata about a file or directory",
        ["info", "metadata", "stat", "size", "permissions"],
        ["File metadata", "Size", "Permissions", "Timestamps"],
    ),
    ToolMetadata(
        "copy_file", "filesystem", "Copy a file to a new location",
        ["copy", "file", "duplicate", "cp"],
        ["File copying", "Creates parent directories"],
    ),
    ToolMetadata(
        "move_file", "filesystem", "Move or rename a file",
        ["move", "rename", "file", "mv"],
        ["File moving", "Renaming"],
    ),
    ToolMetadata(
        "delete_file", "filesystem", "Delete a file",
        ["delete", "remove", "file", "rm"],
        ["File deletion"],
    ),
    ToolMetadata(
        "search_files", "filesystem", "Search for files matching a glob pattern in a directory",
        ["search", "find", "pattern", "glob", "filter"],
        ["Pattern matching", "Recursive search", "Glob support"],
        estimated_token_cost="medium",
        usage_example="search_files({ directory: 'src', pattern: '*.py' })",
    ),
    # Search and edit
    ToolMetadata(
        "search_in_file", "search", "Search for a text pattern within a file",
        ["search", "grep", "pattern", "regex", "find", "text"],
        ["Regex search", "Line number reporting", "Context lines"],
        usage_example="search_in_file({ path: 'file.txt', pattern: 'ERROR' })",
    ),
    ToolMetadata(
        "str_replace", "search", "Replace one unique occurrence of text in a file",
        ["replace", "edit", "substitute", "text", "change"],
        ["Exact replacement", "Uniqueness check"],
        usage_example="str_replace({ path: 'app.py', oldText: 'foo()', newText: 'bar()' })",
    ),
    # CLI operations
    ToolMetadata(
        "exec_cli", "cli", "Execute a shell command",
        ["execute", "command", "shell", "bash", "run", "cli"],
        ["Shell execution", "Command output"],
        estimated_token_cost="variable",
    ),
    # Database operations
    ToolMetadata(
        "crud_create", "database", "Create a record in a collection",
        ["create", "record", "database", "insert", "new", "store"],
        ["Database insertion"],
    ),
    ToolMetadata(
        "crud_read", "database", "Retrieve a record by ID",
        ["get", "record", "database", "read", "retrieve", "fetch"],
        ["Database query", "Record retrieval"],
    ),
    ToolMetadata(
        "crud_update", "database", "Merge fields into an existing record",
        ["update", "record", "database", "modify", "edit", "merge"],
        ["Database update", "Shallow merge"],
    ),
    ToolMetadata(
        "crud_delete", "database", "Delete a record",
        ["delete", "record", "database", "remove"],
        ["Database deletion"],
    ),
    ToolMetadata(
        "crud_query", "database", "Query records in a collection by field equality",
        ["query", "list", "records", "database", "filter", "all"],
        ["Database query", "Field filters"],
        estimated_token_cost="medium",
    ),
    ToolMetadata(
        "crud_batch_create", "database", "Create several records at once",
        ["create", "records", "database", "batch", "insert"],
        ["Bulk insertion"],
    ),
    ToolMetadata(
        "crud_batch_read", "database", "Read several records by ID",
        ["read", "records", "database", "batch", "fetch"],
        ["Bulk retrieval"],
    ),
    ToolMetadata(
        "crud_batch_update", "database", "Update several records at once",
        ["update", "records", "database", "batch", "modify", "merge"],
        ["Bulk update"],
    ),
    ToolMetadata(
        "crud_batch_delete", "database", "Delete several records by ID",
        ["delete", "records", "database", "batch", "remove"],
        ["Bulk deletion"],
    ),
    # System
    ToolMetadata(
        "get_system_info", "system", "Get host platform, CPU, memory and disk metrics",
        ["system", "info", "cpu", "memory", "disk", "metrics"],
        ["Host metrics"],
    ),
    ToolMetadata(
        "list_processes", "system", "List running processes",
        ["process", "list", "ps", "running", "cpu", "memory"],
        ["Process listing", "Sorting"],
        estimated_token_cost="medium",
    ),
    ToolMetadata(
        "kill_process", "system", "Terminate a process by PID",
        ["kill", "process", "terminate", "stop", "pid"],
        ["Process termination"],
    ),
    ToolMetadata(
        "get_environment", "system", "Read environment variables",
        ["environment", "env", "variable", "get"],
        ["Environment inspection"],
    ),
    ToolMetadata(
        "set_environment", "system", "Set an environment variable",
        ["environment", "env", "variable", "set"],
        ["Environment configuration"],
    ),
    ToolMetadata(
        "get_network_info", "system", "Get network interfaces and traffic counters",
        ["network", "interfaces", "ip", "address", "info"],
        ["Network inspection"],
    ),
    # Meta
    ToolMetadata(
        "search_tools", "meta", "Find the right tool for a task",
        ["search", "tools", "discover", "help", "find"],
        ["Tool discovery", "Relevance ranking"],
    ),
]


def score_tool(tool: ToolMetadata, query: str, terms: Sequence[str], context_given: bool = False) -> float:
    score = 0.0
    name = tool.name.lower()
    if name == query:
        score += NAME_EXACT
    elif query in name:
        score += NAME_CONTAINS
    if tool.category == query:
        score += CATEGORY_MATCH

    keyword_hits = sum(1 for term in terms if any(term in kw for kw in tool.keywords))
    score += keyword_hits / len(terms) * KEYWORD_WEIGHT
    if query in tool.description.lower():
        score += DESCRIPTION_MATCH
    capability_hits = sum(1 for term in terms if any(term in cap.lower() for cap in tool.capabilities))
    score += capability_hits / len(terms) * CAPABILITY_WEIGHT

    if context_given and tool.context_aware:
        score += CONTEXT_AWARE_BONUS
    return score


def search_tools(
    query: str,
    category: Optional[str] = None,
    max_results: int = 10,
    context_window: Optional[int] = None,
    context_used: Optional[int] = None,
    catalog: Optional[Sequence[ToolMetadata]] = None,
) -> Dict[str, Any]:
    if not isinstance(query, str) or not query.strip():
        raise InvalidParametersError("query must be a non-empty string")
    if category is not None and category not in CATEGORIES:
        raise InvalidParametersError(
            f"Unknown category: {category}", details={"valid_values": list(CATEGORIES)}
        )

    query_lower = query.lower().strip()
    terms = query_lower.split()
    context_given = bool(context_window and context_used)
    candidates = [t for t in (catalog or TOOL_CATALOG) if category is None or t.category == category]

    scored = []
    for tool in candidates:
        score = score_tool(tool, query_lower, terms, context_given)
        if score > 0:
            entry = asdict(tool)
            entry["usage_example"] = tool.usage_example or f"{tool.name}({{ ... }})"
            entry["relevance_score"] = round(score, 4)
            scored.append(entry)
    scored.sort(key=lambda entry: entry["relevance_score"], reverse=True)
    results = scored[:max_results]

    has_context_aware = any(r["context_aware"] for r in results)
    suggestions = []
    if context_given and has_context_aware:
        suggestions.append("Context-aware tools available; batch reads report per-item sizes.")
    if any(r["category"] == "batch" for r in results):
        suggestions.append("For large operations, consider batch_* tools which support parallel execution.")
    if "read" in query_lower or "file" in query_lower:
        suggestions.append("For large files, use 'read_file_lines' to read specific ranges instead of entire file.")
    if "replace" in query_lower or "edit" in query_lower:
        suggestions.append("str_replace needs text that occurs exactly once; include surrounding lines to disambiguate.")

    categories: List[str] = []
    for r in results:
        if r["category"] not in categories:
            categories.append(r["category"])

    return {
        "tools": results,
        "summary": {
            "total_found": len(scored),
            "returned": len(results),
            "categories": categories,
            "context_aware_available": has_context_aware,
        },
        "suggestions": suggestions,
    }
