"""
Permission Manager for MCP tools.
Controls which tools the agent can use autonomously.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Dict, List

logger = logging.getLogger(__name__)


class Permission(str, Enum):
    DISABLED = "disabled"  # Tool cannot be used
    READ_ONLY = "read_only"  # Can observe but not modify
    AI_ASK = "ai_ask"  # Agent should confirm with a human
    AI_AUTO = "ai_auto"  # Agent can execute autonomously


OBSERVATION_VERBS = ("list", "get", "read", "query", "search", "info")
MODIFICATION_VERBS = ("write", "replace", "create", "update", "exec", "set")
DANGEROUS_VERBS = ("kill", "delete", "remove", "shutdown", "reboot")


class PermissionManager:
    def __init__(self, config_file: Path):
        self.config_file = config_file
        self.permissions: Dict[str, Permission] = {}
        self.load()

    def load(self):
        if self.config_file.exists():
            try:
                data = json.loads(self.config_file.read_text())
                self.permissions = {k: Permission(v) for k, v in data.items()}
                return
            except (ValueError, AttributeError) as e:
                logger.error(f"Invalid permission file {self.config_file}, restoring defaults: {e}")
        self.permissions = self.get_defaults()
        self.save()

    def save(self):
        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        self.config_file.write_text(
            json.dumps({k: v.value for k, v in self.permissions.items()}, indent=2)
        )

    def get_defaults(self) -> Dict[str, Permission]:
        """Default policy: observe freely, confirm mutations, never kill."""
        return {
            # === OBSERVATION TOOLS (AI_AUTO) ===
            "search_tools": Permission.AI_AUTO,
            "read_file": Permission.AI_AUTO,
            "read_file_lines": Permission.AI_AUTO,
            "list_directory": Permission.AI_AUTO,
            "file_info": Permission.AI_AUTO,
            "search_in_file": Permission.AI_AUTO,
            "batch_search_in_files": Permission.AI_AUTO,
            "batch_read_files": Permission.AI_AUTO,
            "batch_list_directories": Permission.AI_AUTO,
            "crud_read": Permission.AI_AUTO,
            "crud_query": Permission.AI_AUTO,
            "crud_batch_read": Permission.AI_AUTO,
            "get_system_info": Permission.AI_AUTO,
            "list_processes": Permission.AI_AUTO,
            "get_environment": Permission.AI_AUTO,
            "search_files": Permission.AI_AUTO,
            "batch_file_info": Permission.AI_AUTO,
            "get_network_info": Permission.AI_AUTO,

            # === MODIFICATION TOOLS (AI_ASK) ===
            "write_file": Permission.AI_ASK,
            "batch_write_files": Permission.AI_ASK,
            "str_replace": Permission.AI_ASK,
            "batch_str_replace": Permission.AI_ASK,
            "exec_cli": Permission.AI_ASK,
            "batch_exec_cli": Permission.AI_ASK,
            "crud_create": Permission.AI_ASK,
            "crud_update": Permission.AI_ASK,
            "crud_delete": Permission.AI_ASK,
            "crud_batch_create": Permission.AI_ASK,
            "crud_batch_update": Permission.AI_ASK,
            "crud_batch_delete": Permission.AI_ASK,
            "copy_file": Permission.AI_ASK,
            "move_file": Permission.AI_ASK,
            "delete_file": Permission.AI_ASK,
            "batch_copy_files": Permission.AI_ASK,
            "batch_move_files": Permission.AI_ASK,
            "batch_delete_files": Permission.AI_ASK,
            "set_environment": Permission.AI_ASK,

            # === DANGEROUS OPERATIONS (DISABLED) ===
            "kill_process": Permission.DISABLED,
        }

    def check(self, tool_name: str) -> Permission:
        """
        Permission for a tool. Unconfigured tools fall back on their name:
        dangerous verbs are disabled, observation verbs auto, the rest ask.
        """
        if tool_name in self.permissions:
            return self.permissions[tool_name]

        lower_name = tool_name.lower()
        if any(verb in lower_name for verb in DANGEROUS_VERBS):
            return Permission.DISABLED
        if any(verb in lower_name for verb in MODIFICATION_VERBS):
            return Permission.AI_ASK
        if any(verb in lower_name for verb in OBSERVATION_VERBS):
            return Permission.AI_AUTO
        return Permission.AI_ASK

    def set_permission(self, tool_name: str, permission: Permission, auto_save: bool = True):
        self.permissions[tool_name] = Permission(permission)
        if auto_save:
            self.save()

    def get_all(self) -> Dict[str, str]:
        return {k: v.value for k, v in self.permissions.items()}

    def get_disabled_tools(self) -> List[str]:
        return [name for name, perm in self.permissions.items() if perm == Permission.DISABLED]
