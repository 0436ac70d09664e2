"""
Integration Tests for the MCP Handler
=====================================
"""

import asyncio
import os

import pytest

from conftest import read_raw
from ooda_computer.catalog import TOOL_CATALOG
from ooda_computer.exceptions import ErrorCode, InvalidParametersError, MCPError


class TestProtocol:
    """JSON-RPC surface"""

    def test_initialize(self, handler):
        response = asyncio.run(handler.process_request({"jsonrpc": "2.0", "id": 1, "method": "initialize"}))
        assert response["result"]["serverInfo"]["name"] == "ooda-computer"
        assert "tools" in response["result"]["capabilities"]

    def test_ping_with_prefixed_method(self, handler):
        response = asyncio.run(handler.process_request({"jsonrpc": "2.0", "id": 7, "method": "mcp.ping"}))
        assert response == {"jsonrpc": "2.0", "id": 7, "result": {}}

    def test_tools_list_hides_disabled(self, handler):
        response = asyncio.run(handler.process_request({"jsonrpc": "2.0", "id": 1, "method": "tools/list"}))
        names = {t["name"] for t in response["result"]["tools"]}
        assert {"search_in_file", "batch_search_in_files", "str_replace", "batch_str_replace"} <= names
        assert "kill_process" not in names
        assert "kill_process" in handler.tools

    def test_unknown_method(self, handler):
        response = asyncio.run(handler.process_request({"jsonrpc": "2.0", "id": 1, "method": "bogus"}))
        assert response["error"]["code"] == -32601

    def test_non_object_request(self, handler):
        response = asyncio.run(handler.process_request(["not", "a", "request"]))
        assert response["error"]["code"] == -32600

    def test_unknown_tool(self, call):
        response, payload = call("no_such_tool")
        assert payload is None
        assert response["error"]["code"] == -32601

    def test_arguments_must_be_object(self, handler):
        response = asyncio.run(handler.process_request({
            "jsonrpc": "2.0", "id": 1, "method": "tools/call",
            "params": {"name": "read_file", "arguments": ["x"]},
        }))
        assert response["error"]["code"] == ErrorCode.INVALID_PARAMETERS.value

    def test_disabled_tool_is_rejected(self, call):
        response, payload = call("kill_process", {"pid": 1})
        assert payload is None
        assert response["error"]["code"] == ErrorCode.PERMISSION_DENIED.value


class TestCallTool:
    """Direct call_tool interface used by HTTP /call"""

    def test_unknown_tool_raises(self, handler):
        with pytest.raises(MCPError) as exc:
            asyncio.run(handler.call_tool("nope", {}))
        assert exc.value.code == ErrorCode.TOOL_NOT_FOUND

    def test_unexpected_argument_raises(self, handler, make_file):
        path = make_file("a.txt", "x\n")
        with pytest.raises(InvalidParametersError):
            asyncio.run(handler.call_tool("read_file", {"path": path, "bogus": 1}))

    def test_missing_argument_raises(self, handler):
        with pytest.raises(InvalidParametersError):
            asyncio.run(handler.call_tool("search_in_file", {"pattern": "x"}))

    def test_returns_tool_response(self, handler, make_file):
        path = make_file("a.txt", "hello\n")
        response = asyncio.run(handler.call_tool("read_file", {"path": path}))
        assert response.is_error is False
        assert response.to_dict()["result"]["content"] == "hello\n"


class TestSearchTools:
    """search_in_file and batch_search_in_files"""

    def test_search_in_file(self, call, make_file):
        path = make_file("log.txt", "ok\nERROR one\nok\nERROR two\n")
        result, payload = call("search_in_file", {"path": path, "pattern": "ERROR", "contextLines": 1})
        assert result["isError"] is False
        assert payload["matchCount"] == 2
        assert [m["lineNumber"] for m in payload["matches"]] == [2, 4]
        assert payload["matches"][0]["contextBefore"] == [{"lineNumber": 1, "lineText": "ok"}]

    def test_search_missing_file(self, call, temp_dir):
        result, payload = call("search_in_file", {"path": str(temp_dir / "missing.txt"), "pattern": "x"})
        assert result["isError"] is True
        assert payload["success"] is False

    def test_search_invalid_regex(self, call, make_file):
        path = make_file("a.txt", "abc\n")
        result, payload = call("search_in_file", {"path": path, "pattern": "(", "isRegex": True})
        assert result["isError"] is True
        assert "regular expression" in payload["error"]

    def test_batch_partial_failure_is_not_error(self, call, make_file, temp_dir):
        path = make_file("a.txt", "needle\n")
        result, payload = call("batch_search_in_files", {"searches": [
            {"path": path, "pattern": "needle"},
            {"path": str(temp_dir / "missing.txt"), "pattern": "needle"},
        ]})
        assert result["isError"] is False
        assert payload["summary"]["successful"] == 1
        assert payload["summary"]["failed"] == 1
        assert payload["results"][0]["result"]["matchCount"] == 1

    def test_batch_all_failed_is_error(self, call, temp_dir):
        result, payload = call("batch_search_in_files", {"searches": [
            {"path": str(temp_dir / "missing.txt"), "pattern": "x"},
        ]})
        assert result["isError"] is True

    def test_batch_fuzzy(self, call, make_file):
        path = make_file("code.py", "def calculate_total(items):\n    return 0\n")
        result, payload = call("batch_search_in_files", {
            "searches": [{"path": path, "pattern": "calculate_totl"}],
            "isFuzzy": True,
            "fuzzyThreshold": 0.8,
        })
        match = payload["results"][0]["result"]["matches"][0]
        assert match["lineNumber"] == 1
        assert match["similarity"] >= 0.8
        assert "matchedSubstring" in match

    def test_batch_invalid_threshold(self, call, make_file):
        path = make_file("a.txt", "x\n")
        result, payload = call("batch_search_in_files", {
            "searches": [{"path": path, "pattern": "x"}], "isFuzzy": True, "fuzzyThreshold": 1.5,
        })
        assert result["isError"] is True
        assert payload["errorCode"] == "INVALID_PARAMETERS"


class TestReplaceTools:
    """str_replace and batch_str_replace"""

    def test_str_replace_unique(self, call, make_file):
        path = make_file("app.py", "x = 1\ny = 2\n")
        result, payload = call("str_replace", {"path": path, "oldText": "y = 2", "newText": "y = 3"})
        assert result["isError"] is False
        assert payload["success"] is True
        assert payload["occurrencesReplaced"] == 1
        assert read_raw(path) == "x = 1\ny = 3\n"

    def test_str_replace_ambiguous_leaves_file(self, call, make_file):
        path = make_file("app.py", "foo\nfoo\n")
        result, payload = call("str_replace", {"path": path, "oldText": "foo", "newText": "bar"})
        assert result["isError"] is True
        assert "2 times" in payload["message"]
        assert payload["errorCode"] == "AMBIGUOUS_MATCH"
        assert read_raw(path) == "foo\nfoo\n"

    def test_str_replace_not_found(self, call, make_file):
        path = make_file("app.py", "foo\n")
        result, payload = call("str_replace", {"path": path, "oldText": "bar"})
        assert result["isError"] is True
        assert payload["errorCode"] == "NO_MATCH"

    def test_batch_replace_any_failure_is_error(self, call, make_file):
        path = make_file("a.txt", "alpha beta alpha\n")
        result, payload = call("batch_str_replace", {"replacements": [
            {"path": path, "searchText": "beta", "replacementText": "gamma"},
            {"path": path, "searchText": "alpha", "replacementText": "omega"},
        ]})
        assert result["isError"] is True
        assert payload["summary"] == {
            "total": 2, "successful": 1, "failed": 1,
            "elapsed_ms": payload["summary"]["elapsed_ms"],
        }
        assert read_raw(path) == "alpha gamma alpha\n"

    def test_batch_replace_all_and_order(self, call, make_file):
        path = make_file("a.txt", "alpha beta alpha\n")
        result, payload = call("batch_str_replace", {"replacements": [
            {"path": path, "searchText": "alpha", "replacementText": "beta", "replaceAll": True},
            {"path": path, "searchText": "beta", "replacementText": "x", "replaceAll": True},
        ]})
        assert result["isError"] is False
        assert read_raw(path) == "x x x\n"

    def test_batch_replace_stop_on_error(self, call, make_file):
        path = make_file("a.txt", "one two\n")
        result, payload = call("batch_str_replace", {"stopOnError": True, "replacements": [
            {"path": path, "searchText": "missing", "replacementText": "x"},
            {"path": path, "searchText": "one", "replacementText": "1"},
        ]})
        assert result["isError"] is True
        assert len(payload["results"]) == 1
        assert payload["summary"]["total"] == 2
        assert read_raw(path) == "one two\n"


class TestFilesystemTools:
    """read/write/list helpers"""

    def test_write_then_read(self, call, temp_dir):
        path = str(temp_dir / "nested" / "out.txt")
        result, payload = call("write_file", {"path": path, "content": "hi\n"})
        assert payload["charsWritten"] == 3
        result, payload = call("read_file", {"path": path})
        assert payload["content"] == "hi\n"

    def test_read_file_lines(self, call, make_file):
        path = make_file("a.txt", "1\n2\n3\n4\n")
        result, payload = call("read_file_lines", {"path": path, "startLine": 2, "endLine": 3})
        assert result["isError"] is False
        assert [l["lineText"] for l in payload["lines"]] == ["2", "3"]
        assert payload["totalLines"] == 4

    def test_batch_read_files(self, call, make_file, temp_dir):
        a = make_file("a.txt", "A")
        result, payload = call("batch_read_files", {"paths": [a, str(temp_dir / "nope.txt")]})
        assert result["isError"] is False
        assert payload["results"][0]["result"] == {"path": a, "content": "A", "size": 1}
        assert payload["results"][1]["success"] is False

    def test_batch_write_files_any_failure_is_error(self, call, temp_dir):
        result, payload = call("batch_write_files", {"files": [
            {"path": str(temp_dir / "ok.txt"), "content": "x"},
            {"path": str(temp_dir / "bad.txt")},
        ]})
        assert result["isError"] is True
        assert (temp_dir / "ok.txt").read_text() == "x"

    def test_list_directory(self, call, make_file, temp_dir):
        make_file("listed.txt", "")
        result, payload = call("list_directory", {"path": str(temp_dir)})
        assert "listed.txt" in str(payload["entries"])


class TestExtendedTools:
    """Shell, record store, discovery"""

    def test_exec_cli_blocked(self, call):
        result, payload = call("exec_cli", {"command": "rm -rf /"})
        assert result["isError"] is True
        assert payload["errorCode"] == "COMMAND_BLOCKED"

    def test_crud_roundtrip(self, call):
        _, created = call("crud_create", {"collection": "notes", "data": '{"title": "a", "tag": "x"}'})
        record_id = created["id"]
        _, updated = call("crud_update", {"collection": "notes", "id": record_id, "data": {"title": "b"}})
        assert updated == {"id": record_id, "title": "b", "tag": "x"}
        _, queried = call("crud_query", {"collection": "notes", "filter": {"tag": "x"}})
        assert queried["count"] == 1
        result, _ = call("crud_delete", {"collection": "notes", "id": record_id})
        assert result["isError"] is False
        result, payload = call("crud_read", {"collection": "notes", "id": record_id})
        assert result["isError"] is True
        assert payload["errorCode"] == "RECORD_NOT_FOUND"

    def test_crud_invalid_json(self, call):
        result, payload = call("crud_create", {"collection": "notes", "data": "{not json"})
        assert result["isError"] is True

    def test_search_tools(self, call):
        result, payload = call("search_tools", {"query": "fuzzy"})
        assert payload["tools"][0]["name"] == "batch_search_in_files"


class TestAudit:
    """Every tool call lands on the audit bus"""

    def test_calls_are_recorded(self, call, context, make_file):
        path = make_file("a.txt", "foo\nfoo\n")
        call("search_in_file", {"path": path, "pattern": "foo"})
        call("str_replace", {"path": path, "oldText": "foo", "newText": "bar"})
        assert context.audit_bus.count() == 2
        errors = list(context.audit_bus.query(errors_only=True))
        assert [e["operation"] for e in errors] == ["str_replace"]
        assert "2 times" in errors[0]["error"]

    def test_denied_call_is_recorded(self, call, context):
        call("kill_process", {"pid": 1})
        events = list(context.audit_bus.query(operation="kill_process"))
        assert events and events[0]["error"]


class TestStrictInputs:
    """Flags and text that must not be coerced"""

    def test_search_flag_must_be_boolean(self, call, make_file):
        path = make_file("a.txt", "abc\n")
        result, payload = call("search_in_file", {"path": path, "pattern": "a.c", "isRegex": "true"})
        assert result["isError"] is True
        assert "isRegex" in payload["error"]

    def test_stop_on_error_must_be_boolean(self, call, make_file):
        path = make_file("a.txt", "one\n")
        result, payload = call("batch_str_replace", {
            "stopOnError": "false",
            "replacements": [{"path": path, "searchText": "one", "replacementText": "1"}],
        })
        assert result["isError"] is True
        assert payload["errorCode"] == "INVALID_PARAMETERS"
        assert read_raw(path) == "one\n"

    def test_replace_all_string_leaves_file(self, call, make_file):
        path = make_file("a.txt", "aXbXc")
        result, payload = call("batch_str_replace", {"replacements": [
            {"path": path, "searchText": "X", "replacementText": "Y", "replaceAll": "false"},
        ]})
        assert result["isError"] is True
        assert read_raw(path) == "aXbXc"

    def test_lone_surrogate_is_write_failure(self, call, make_file, temp_dir):
        path = make_file("edit/a.txt", "old\n")
        result, payload = call("str_replace", {"path": path, "oldText": "old", "newText": "\ud800"})
        assert result["isError"] is True
        assert payload["errorCode"] == "WRITE_FAILURE"
        assert os.listdir(temp_dir / "edit") == ["a.txt"]
        assert read_raw(path) == "old\n"

    def test_unhandled_error_hides_traceback(self, handler):
        async def explode():
            raise RuntimeError("kaboom")

        handler.register_tool("explode", "always fails", explode, {"type": "object", "properties": {}})
        response = asyncio.run(handler.process_request({
            "jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": "explode"},
        }))
        assert response["error"]["code"] == ErrorCode.TOOL_EXECUTION_FAILED.value
        details = response["error"]["data"]["details"]
        assert details == {"type": "RuntimeError", "message": "kaboom"}
        assert "traceback" not in str(response["error"]["data"])


class TestFileManagementTools:
    """copy/move/delete/search_files and their batches"""

    def test_copy_and_move(self, call, make_file, temp_dir):
        src = make_file("src.txt", "data")
        copied = str(temp_dir / "out" / "copy.txt")
        result, payload = call("copy_file", {"source": src, "destination": copied})
        assert result["isError"] is False
        assert payload["size"] == 4
        moved = str(temp_dir / "moved.txt")
        call("move_file", {"source": copied, "destination": moved})
        assert read_raw(moved) == "data"
        assert not os.path.exists(copied)

    def test_copy_missing_source(self, call, temp_dir):
        result, payload = call("copy_file", {
            "source": str(temp_dir / "nope"), "destination": str(temp_dir / "x"),
        })
        assert result["isError"] is True
        assert payload["errorCode"] == "FILE_NOT_FOUND"

    def test_delete_file_refuses_directory(self, call, make_file, temp_dir):
        path = make_file("gone.txt", "x")
        result, _ = call("delete_file", {"path": path})
        assert result["isError"] is False
        assert not os.path.exists(path)
        (temp_dir / "dir").mkdir()
        result, _ = call("delete_file", {"path": str(temp_dir / "dir")})
        assert result["isError"] is True

    def test_search_files(self, call, make_file, temp_dir):
        make_file("pkg/a.py", "")
        make_file("pkg/sub/b.py", "")
        make_file("pkg/c.txt", "")
        _, payload = call("search_files", {"directory": str(temp_dir / "pkg"), "pattern": "*.py"})
        assert payload["files"] == ["a.py", "sub/b.py"]
        _, payload = call("search_files", {
            "directory": str(temp_dir / "pkg"), "pattern": "*.py", "recursive": False,
        })
        assert payload["files"] == ["a.py"]
        _, payload = call("search_files", {"directory": str(temp_dir / "pkg"), "pattern": "*", "maxResults": 2})
        assert payload["count"] == 2 and payload["truncated"] is True

    def test_batch_copy_any_failure_is_error(self, call, make_file, temp_dir):
        src = make_file("a.txt", "A")
        result, payload = call("batch_copy_files", {"operations": [
            {"source": src, "destination": str(temp_dir / "b.txt")},
            {"source": str(temp_dir / "missing"), "destination": str(temp_dir / "c.txt")},
        ]})
        assert result["isError"] is True
        assert payload["summary"]["successful"] == 1
        assert read_raw(temp_dir / "b.txt") == "A"

    def test_batch_move_files(self, call, make_file, temp_dir):
        src = make_file("m.txt", "M")
        result, _ = call("batch_move_files", {"operations": [
            {"source": src, "destination": str(temp_dir / "moved" / "m.txt")},
        ]})
        assert result["isError"] is False
        assert read_raw(temp_dir / "moved" / "m.txt") == "M"

    def test_batch_delete_and_info(self, call, make_file, temp_dir):
        a = make_file("a.txt", "A")
        result, payload = call("batch_file_info", {"paths": [a, str(temp_dir / "none")]})
        assert result["isError"] is False
        assert payload["results"][0]["result"]["info"]["size"] == 1
        result, payload = call("batch_delete_files", {"paths": [a, str(temp_dir / "none")]})
        assert result["isError"] is True
        assert payload["results"][0]["result"] == {"path": a, "deleted": True}
        assert not os.path.exists(a)


class TestMoreExtendedTools:
    """Record batches, environment and network"""

    def test_crud_batch_update_and_delete(self, call):
        _, a = call("crud_create", {"collection": "c", "data": {"n": 1}})
        _, b = call("crud_create", {"collection": "c", "data": {"n": 2}})
        result, payload = call("crud_batch_update", {"collection": "c", "updates": [
            {"id": a["id"], "data": {"n": 10}},
            {"id": b["id"], "data": '{"tag": "x"}'},
        ]})
        assert result["isError"] is False
        assert payload["results"][1]["result"] == {"id": b["id"], "n": 2, "tag": "x"}
        result, payload = call("crud_batch_delete", {"collection": "c", "ids": [a["id"], "missing"]})
        assert result["isError"] is True
        assert payload["summary"]["successful"] == 1
        _, queried = call("crud_query", {"collection": "c"})
        assert [r["id"] for r in queried["records"]] == [b["id"]]

    def test_set_environment(self, call, monkeypatch):
        monkeypatch.delenv("OODA_SET_TEST", raising=False)
        result, payload = call("set_environment", {"name": "OODA_SET_TEST", "value": "on"})
        assert result["isError"] is False
        assert payload["previous"] is None
        assert os.environ["OODA_SET_TEST"] == "on"
        monkeypatch.delenv("OODA_SET_TEST")

    def test_set_environment_rejects_bad_name(self, call):
        result, payload = call("set_environment", {"name": "A=B", "value": "x"})
        assert result["isError"] is True

    def test_get_network_info(self, call):
        result, payload = call("get_network_info")
        assert result["isError"] is False
        assert {"hostname", "interfaces", "io"} <= set(payload)

    def test_catalog_covers_every_tool(self, handler):
        assert {t.name for t in TOOL_CATALOG} == set(handler.tools)
