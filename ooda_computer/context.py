from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .auditbus import AuditBus, AuditTrail, log_audit_event
from .config import ServerConfig, expand_home
from .permissions import PermissionManager
from .records import RecordStore
from .shell import CommandPolicy

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = Path("~/.ooda")


@dataclass
class OodaContext:
    """Holds shared components for the tool handlers."""

    state_dir: Path
    config: ServerConfig = field(default_factory=ServerConfig)
    audit: AuditTrail = field(default_factory=AuditTrail)
    audit_bus: Optional[AuditBus] = None
    records: Optional[RecordStore] = None
    permission_manager: Optional[PermissionManager] = None
    command_policy: Optional[CommandPolicy] = None

    def __post_init__(self):
        if self.command_policy is None:
            self.command_policy = CommandPolicy(self.config.cli_policy)

    @classmethod
    def create(cls, config: ServerConfig, state_dir: Optional[Path] = None) -> "OodaContext":
        """Open the stores under ``state_dir`` and wire the audit observers."""
        state_dir = Path(expand_home(str(state_dir or DEFAULT_STATE_DIR)))
        state_dir.mkdir(parents=True, exist_ok=True)

        audit = AuditTrail()
        audit.subscribe(log_audit_event)
        audit_bus = AuditBus(state_dir / "audit.db")
        audit.subscribe(audit_bus)

        context = cls(
            state_dir=state_dir,
            config=config,
            audit=audit,
            audit_bus=audit_bus,
            records=RecordStore(Path(expand_home(config.storage.path)), config.crud.default_limit),
            permission_manager=PermissionManager(state_dir / "permissions.json"),
        )
        logger.info(f"Context ready (state_dir={state_dir})")
        return context

    def close(self) -> None:
        if self.audit_bus is not None:
            self.audit.unsubscribe(self.audit_bus)
            self.audit_bus.close()
        if self.records is not None:
            self.records.close()
