"""SQLite-backed audit trail with WAL mode and auto-cleanup.

Tool handlers emit an ``AuditEvent`` after each operation; the ``AuditTrail``
hands it to every subscribed observer. Observers run after the result is built,
and their failures are logged, never raised back into the tool.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("ooda_computer.audit")

MAX_FIELD_CHARS = 2000


@dataclass
class AuditEvent:
    operation: str
    input: Any
    output: Any = None
    error: Optional[str] = None
    ts: float = field(default_factory=time.time)

    @property
    def ok(self) -> bool:
        return self.error is None


Observer = Callable[[AuditEvent], None]


def _clip(value: Any) -> str:
    text = json.dumps(value, default=str, ensure_ascii=False)
    # sqlite rejects lone surrogates
    text = text.encode("utf-8", "backslashreplace").decode("utf-8")
    if len(text) > MAX_FIELD_CHARS:
        return text[:MAX_FIELD_CHARS] + f"...(+{len(text) - MAX_FIELD_CHARS} chars)"
    return text


class AuditTrail:
    def __init__(self) -> None:
        self._observers: List[Observer] = []

    def subscribe(self, observer: Observer) -> None:
        self._observers.append(observer)

    def unsubscribe(self, observer: Observer) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def emit(self, event: AuditEvent) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception:
                logger.exception(f"Audit observer {observer!r} failed for '{event.operation}'")


def log_audit_event(event: AuditEvent) -> None:
    """Observer that writes each event to the ``ooda_computer.audit`` logger."""
    if event.ok:
        audit_logger.info(f"[AUDIT] {event.operation} succeeded")
    else:
        audit_logger.warning(f"[AUDIT] {event.operation} failed: {event.error}")


class AuditBus:
    def __init__(self, storage: Path, max_rows: int = 100_000, retention_days: int = 30) -> None:
        self.storage = storage
        self.max_rows = max_rows
        self.retention_days = retention_days
        self._writes = 0
        self._lock = threading.Lock()
        self.storage.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(
                self.storage,
                check_same_thread=False,  # the Gradio panel runs its own loop thread
                timeout=10.0,
            )
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS audit (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    operation TEXT NOT NULL,
                    input TEXT NOT NULL,
                    output TEXT,
                    error TEXT,
                    ts REAL NOT NULL
                )
                """
            )
            self._conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_operation ON audit(operation)")
            self._conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_ts ON audit(ts)")
            self._conn.commit()
            logger.info(f"AuditBus initialized: {self.storage} (max_rows={max_rows}, retention={retention_days}d)")
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize AuditBus database: {e}")
            raise

    def __call__(self, event: AuditEvent) -> None:
        self.record(event)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def record(self, event: AuditEvent) -> None:
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT INTO audit(operation, input, output, error, ts) VALUES (?, ?, ?, ?, ?)",
                    (
                        event.operation,
                        _clip(event.input),
                        None if event.output is None else _clip(event.output),
                        event.error,
                        event.ts,
                    ),
                )
                self._conn.commit()
                self._writes += 1
                if self._writes % 100 == 0:
                    self._enforce_retention()
            except sqlite3.Error as e:
                logger.error(f"Failed to record audit event '{event.operation}': {e}")
                self._conn.rollback()

    def query(
        self,
        *,
        operation: Optional[str] = None,
        errors_only: bool = False,
        limit: int = 100,
    ) -> Iterable[Dict[str, Any]]:
        sql = "SELECT operation, input, output, error, ts FROM audit"
        clauses = []
        params: list[Any] = []
        if operation:
            clauses.append("operation = ?")
            params.append(operation)
        if errors_only:
            clauses.append("error IS NOT NULL")
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        for row in rows:
            yield {
                "operation": row[0],
                "input": row[1],
                "output": row[2],
                "error": row[3],
                "ts": row[4],
            }

    def count(self) -> int:
        try:
            with self._lock:
                val = self._conn.execute("SELECT COUNT(1) FROM audit").fetchone()
            return int(val[0]) if val and val[0] is not None else 0
        except sqlite3.Error as e:
            logger.error(f"Failed to count audit events: {e}")
            return 0

    def _enforce_retention(self) -> None:
        # Caller holds the lock.
        try:
            if self.retention_days > 0:
                cutoff = time.time() - self.retention_days * 86400
                deleted = self._conn.execute("DELETE FROM audit WHERE ts < ?", (cutoff,)).rowcount
                if deleted > 0:
                    logger.debug(f"Deleted {deleted} audit events older than {self.retention_days} days")

            count = self._conn.execute("SELECT COUNT(*) FROM audit").fetchone()[0]
            if count > self.max_rows:
                excess = count - self.max_rows
                self._conn.execute(
                    "DELETE FROM audit WHERE id IN (SELECT id FROM audit ORDER BY id ASC LIMIT ?)",
                    (excess,),
                )
                logger.debug(f"Deleted {excess} excess audit events (row limit: {self.max_rows})")
            self._conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to enforce audit retention: {e}")
