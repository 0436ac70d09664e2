"""
Shell command execution guarded by the configured command policy.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .config import CliPolicy, expand_home
from .exceptions import CommandBlockedError, ErrorCode, InvalidParametersError, OodaError

logger = logging.getLogger(__name__)

# Refused even in allow-all mode.
BASE_BLOCKLIST = (
    "rm -rf /",
    "mkfs",
    ":(){:|:&};:",
)


class CommandPolicy:
    def __init__(self, policy: CliPolicy):
        self.mode = policy.mode
        self.blocklist: List[str] = list(BASE_BLOCKLIST) + list(policy.extra_blocked_patterns)
        self.allowed_commands = set(policy.allowed_commands)
        self.timeout = policy.timeout_ms / 1000.0

    def check(self, command: str) -> None:
        """Raise ``CommandBlockedError`` when ``command`` may not run."""
        for pattern in self.blocklist:
            if pattern in command:
                logger.warning(f"Blocked command containing {pattern!r}: {command}")
                raise CommandBlockedError(
                    "Command blocked by safety policy",
                    details={"command": command, "pattern": pattern},
                )

        if self.mode == "restricted":
            try:
                words = shlex.split(command)
            except ValueError:
                words = command.split()
            program = words[0] if words else ""
            if program not in self.allowed_commands:
                logger.warning(f"Command '{program}' not in allowed list (restricted mode)")
                raise CommandBlockedError(
                    f"Command '{program}' is not allowed in restricted mode",
                    details={"command": command, "allowed": sorted(self.allowed_commands)},
                )


@dataclass
class CommandResult:
    command: str
    exit_code: Optional[int]
    stdout: str
    stderr: str
    elapsed_ms: float
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command": self.command,
            "success": self.success,
            "exitCode": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "timedOut": self.timed_out,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }


async def run_command(command: str, policy: CommandPolicy, cwd: Optional[str] = None) -> CommandResult:
    """Run ``command`` through the shell. Blocked commands raise before spawning."""
    if not isinstance(command, str) or not command.strip():
        raise InvalidParametersError("command must be a non-empty string")
    policy.check(command)

    start = time.perf_counter()
    try:
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=expand_home(cwd) if cwd else None,
        )
    except OSError as e:
        raise OodaError(
            f"Failed to start command: {e}",
            code=ErrorCode.COMMAND_FAILED,
            details={"command": command, "cwd": cwd},
            cause=e,
        )

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=policy.timeout)
    except asyncio.TimeoutError:
        proc.kill()
        stdout, stderr = await proc.communicate()
        elapsed = (time.perf_counter() - start) * 1000
        logger.warning(f"Command timed out after {policy.timeout}s: {command}")
        return CommandResult(
            command=command,
            exit_code=proc.returncode,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            elapsed_ms=elapsed,
            timed_out=True,
        )

    elapsed = (time.perf_counter() - start) * 1000
    logger.debug(f"Command exited {proc.returncode} in {elapsed:.0f}ms: {command}")
    return CommandResult(
        command=command,
        exit_code=proc.returncode,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
        elapsed_ms=elapsed,
    )
