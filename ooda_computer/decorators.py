"""
Decorators for MCP tool authorization and auditing.
"""

from __future__ import annotations

import asyncio
import logging
from functools import wraps
from typing import Any, Callable, Dict, Optional

from .auditbus import AuditEvent
from .exceptions import InvalidParametersError, OodaError, ToolPermissionError
from .permissions import Permission

logger = logging.getLogger(__name__)


def require_permission(tool_name: str):
    """
    Decorator to enforce permission checks on MCP tool methods.

    Args:
        tool_name: Name of the tool (used for permission lookup)

    Raises:
        ToolPermissionError: If the tool is disabled by policy
    """
    def _check(self) -> None:
        permission_manager = getattr(self.context, "permission_manager", None)
        if permission_manager is None:
            logger.debug(f"No permission manager, allowing '{tool_name}' (dev mode)")
            return

        perm = permission_manager.check(tool_name)
        if perm == Permission.DISABLED:
            logger.warning(f"Permission denied for tool '{tool_name}': disabled")
            raise ToolPermissionError(
                f"Tool '{tool_name}' is disabled",
                details={
                    "tool": tool_name,
                    "permission": perm.value,
                    "reason": "Tool is disabled by permission policy",
                },
            )
        if perm == Permission.AI_ASK:
            logger.info(f"Tool '{tool_name}' requires human approval (AI_ASK mode)")
        logger.debug(f"Permission '{perm.value}' granted for tool '{tool_name}'")

    def decorator(func: Callable) -> Callable:
        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(self, *args, **kwargs):
                _check(self)
                return await func(self, *args, **kwargs)
            return async_wrapper

        @wraps(func)
        def sync_wrapper(self, *args, **kwargs):
            _check(self)
            return func(self, *args, **kwargs)
        return sync_wrapper

    return decorator


def _error_text(payload: Any) -> str:
    if isinstance(payload, dict):
        for key in ("error", "message"):
            if payload.get(key):
                return str(payload[key])
        if "summary" in payload:
            summary = payload["summary"]
            return f"{summary.get('failed', 0)} of {summary.get('total', 0)} items failed"
    return "tool reported an error"


def audited(operation: str):
    """
    Decorator that emits an ``AuditEvent`` once the tool has produced its result.

    The handler's keyword arguments are the event input. A result flagged
    ``is_error`` or a raised ``OodaError`` is recorded as an error event; the
    exception still propagates.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(self, **kwargs):
            trail = getattr(self.context, "audit", None)
            try:
                result = await func(self, **kwargs)
            except OodaError as e:
                if trail is not None:
                    trail.emit(AuditEvent(operation, kwargs, error=e.message))
                raise

            if trail is not None:
                payload = getattr(result, "payload", result)
                error: Optional[str] = _error_text(payload) if getattr(result, "is_error", False) else None
                trail.emit(AuditEvent(operation, kwargs, output=None if error else payload, error=error))
            return result

        return wrapper

    return decorator


def tool_args(arguments: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Normalize a JSON-RPC ``arguments`` value to a kwargs dict."""
    if arguments is None:
        return {}
    if not isinstance(arguments, dict):
        raise InvalidParametersError(
            f"arguments must be an object, got {type(arguments).__name__}"
        )
    return arguments
