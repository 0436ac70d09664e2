"""
Server configuration.

Loaded once at startup from ``~/.ooda/config.json`` (or ``$OODA_CONFIG``) and
handed to every subsystem through ``OodaContext``.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from .exceptions import InvalidParametersError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.ooda/config.json")


def expand_home(file_path: str) -> str:
    if file_path.startswith("~"):
        return str(Path.home()) + file_path[1:]
    return file_path


def validate_flag(value: Any, name: str) -> bool:
    """Accept only real booleans; JSON strings like "false" are refused."""
    if not isinstance(value, bool):
        raise InvalidParametersError(
            f"{name} must be a boolean, got {value!r}",
            details={name: value},
        )
    return value


@dataclass
class StorageConfig:
    path: str = "~/.ooda/workspace.db"


@dataclass
class CliPolicy:
    mode: str = "allow-all"  # allow-all | restricted
    extra_blocked_patterns: List[str] = field(default_factory=list)
    allowed_commands: List[str] = field(default_factory=list)
    timeout_ms: int = 30000


@dataclass
class CrudConfig:
    default_limit: int = 1000


@dataclass
class SearchDefaults:
    max_matches: int = 100
    context_lines: int = 0
    fuzzy_threshold: float = 0.7


@dataclass
class ServerConfig:
    storage: StorageConfig = field(default_factory=StorageConfig)
    cli_policy: CliPolicy = field(default_factory=CliPolicy)
    crud: CrudConfig = field(default_factory=CrudConfig)
    search: SearchDefaults = field(default_factory=SearchDefaults)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServerConfig":
        """Merge each known section over its defaults; unknown keys are ignored."""
        return cls(
            storage=_merge(StorageConfig, data.get("storage")),
            cli_policy=_merge(CliPolicy, data.get("cli_policy", data.get("cliPolicy"))),
            crud=_merge(CrudConfig, data.get("crud")),
            search=_merge(SearchDefaults, data.get("search")),
        )


def _merge(section_cls, overrides: Optional[Dict[str, Any]]):
    if not isinstance(overrides, dict):
        return section_cls()
    known = {f.name for f in fields(section_cls)}
    values = {}
    for key, value in overrides.items():
        name = _snake(key)
        if name in known:
            values[name] = value
        else:
            logger.debug(f"Ignoring unknown config key {section_cls.__name__}.{key}")
    return section_cls(**values)


def _snake(name: str) -> str:
    out = []
    for ch in name:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out)


def load_config(path: Optional[Path] = None) -> ServerConfig:
    """Read the config file, falling back to defaults when absent or malformed."""
    if path is None:
        env_path = os.environ.get("OODA_CONFIG")
        path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH
    config_path = Path(expand_home(str(path)))

    if not config_path.exists():
        logger.debug(f"No config file at {config_path}, using defaults")
        return ServerConfig()

    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("top-level config must be a JSON object")
        config = ServerConfig.from_dict(data)
    except (OSError, ValueError, TypeError) as e:
        logger.error(f"Failed to load config {config_path}, using defaults: {e}")
        return ServerConfig()

    logger.info(f"Loaded config from {config_path}")
    return config
