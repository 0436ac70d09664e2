"""Gradio control panel: run searches and replacements, browse the audit log."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

import gradio as gr

from ..permissions import Permission

logger = logging.getLogger(__name__)


def _parse_args(args_json: str) -> Dict[str, Any]:
    args = json.loads(args_json) if args_json and args_json.strip() else {}
    if not isinstance(args, dict):
        raise ValueError("arguments must be a JSON object")
    return args


def _searches(paths_text: str, pattern: str) -> List[Dict[str, str]]:
    return [{"path": line.strip(), "pattern": pattern} for line in paths_text.splitlines() if line.strip()]


def create_ui(mcp, context) -> gr.Blocks:
    """Build the control panel around an ``MCPHandler`` and its context."""
    perm_mgr = context.permission_manager

    async def run_search(paths_text, pattern, fuzzy, threshold, case_sensitive, context_lines):
        response = await mcp.call_tool("batch_search_in_files", {
            "searches": _searches(paths_text, pattern),
            "isFuzzy": bool(fuzzy),
            "fuzzyThreshold": float(threshold),
            "caseSensitive": bool(case_sensitive),
            "contextLines": int(context_lines),
        })
        return response.to_dict()

    async def run_replace(path, old_text, new_text):
        response = await mcp.call_tool("str_replace", {"path": path, "oldText": old_text, "newText": new_text})
        return response.to_dict()

    async def execute_tool(tool_name, args_json):
        try:
            response = await mcp.call_tool(tool_name, _parse_args(args_json))
        except ValueError as e:
            return {"error": f"Invalid arguments: {e}"}
        except Exception as e:
            logger.exception(f"UI call to {tool_name} failed")
            return {"error": str(e)}
        return response.to_dict()

    def load_audit(operation, errors_only, limit):
        if context.audit_bus is None:
            return []
        return list(context.audit_bus.query(
            operation=operation or None, errors_only=bool(errors_only), limit=int(limit)
        ))

    def get_permissions():
        if perm_mgr is None:
            return {}
        return {name: perm_mgr.check(name).value for name in sorted(mcp.tools)}

    def set_permission(tool_name, value):
        if perm_mgr is None:
            return "Permission manager not initialized"
        perm_mgr.set_permission(tool_name, Permission(value))
        return f"{tool_name} -> {value}"

    with gr.Blocks(title="ooda-computer Control Panel") as demo:
        gr.Markdown("# ooda-computer")
        gr.Markdown(f"Total MCP Tools: {len(mcp.tools)}")

        with gr.Tab("Search"):
            paths = gr.Textbox(label="Files (one path per line)", lines=4)
            pattern = gr.Textbox(label="Pattern")
            with gr.Row():
                fuzzy = gr.Checkbox(label="Fuzzy", value=False)
                threshold = gr.Slider(0.0, 1.0, value=context.config.search.fuzzy_threshold, label="Fuzzy threshold")
                case_sensitive = gr.Checkbox(label="Case sensitive", value=True)
                context_lines = gr.Number(value=context.config.search.context_lines, precision=0, label="Context lines")
            search_btn = gr.Button("Search", variant="primary")
            search_out = gr.JSON(label="Results")
            search_btn.click(
                run_search,
                inputs=[paths, pattern, fuzzy, threshold, case_sensitive, context_lines],
                outputs=[search_out],
            )

        with gr.Tab("Replace"):
            rep_path = gr.Textbox(label="File")
            old_text = gr.Textbox(label="Old text (must be unique)", lines=4)
            new_text = gr.Textbox(label="New text", lines=4)
            rep_btn = gr.Button("Replace", variant="primary")
            rep_out = gr.JSON(label="Result")
            rep_btn.click(run_replace, inputs=[rep_path, old_text, new_text], outputs=[rep_out])

        with gr.Tab("MCP Tools"):
            tool_select = gr.Dropdown(choices=sorted(mcp.tools.keys()), label="Select MCP Tool", value="search_tools")
            tool_args = gr.Textbox(label="Tool Arguments (JSON format)", value='{"query": "search"}', lines=4)
            tool_exec_btn = gr.Button("Execute Tool", variant="primary")
            tool_result = gr.JSON(label="Execution Result")
            tool_exec_btn.click(execute_tool, inputs=[tool_select, tool_args], outputs=[tool_result])

        with gr.Tab("Audit Log"):
            with gr.Row():
                audit_op = gr.Dropdown(choices=[""] + sorted(mcp.tools.keys()), label="Operation", value="")
                audit_errors = gr.Checkbox(label="Errors only", value=False)
                audit_limit = gr.Number(value=50, precision=0, label="Limit")
            audit_btn = gr.Button("Refresh")
            audit_out = gr.JSON(label="Events")
            audit_btn.click(load_audit, inputs=[audit_op, audit_errors, audit_limit], outputs=[audit_out])

        with gr.Tab("Permissions"):
            perm_out = gr.JSON(label="Current permissions", value=get_permissions())
            with gr.Row():
                perm_tool = gr.Dropdown(choices=sorted(mcp.tools.keys()), label="Tool")
                perm_value = gr.Radio(choices=[p.value for p in Permission], label="Permission")
            perm_btn = gr.Button("Apply")
            perm_status = gr.Textbox(label="Status", interactive=False)
            perm_btn.click(set_permission, inputs=[perm_tool, perm_value], outputs=[perm_status]).then(
                get_permissions, outputs=[perm_out]
            )

    return demo
