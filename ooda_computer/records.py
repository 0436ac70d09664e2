"""
Key-value record store: JSON documents grouped by collection in one SQLite table.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from .exceptions import InvalidParametersError, RecordNotFoundError, StorageError

logger = logging.getLogger(__name__)


def parse_json_object(value: Any, field_name: str) -> Dict[str, Any]:
    """Accept a dict or JSON text encoding one."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError as e:
            raise InvalidParametersError(f"{field_name} is not valid JSON: {e}", cause=e)
    if not isinstance(value, dict):
        raise InvalidParametersError(
            f"{field_name} must be a JSON object, got {type(value).__name__}"
        )
    return value


class RecordStore:
    def __init__(self, storage: Path, default_limit: int = 1000):
        self.storage = storage
        self.default_limit = default_limit
        self._lock = threading.Lock()
        self.storage.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(self.storage, check_same_thread=False, timeout=10.0)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (collection, id)
                )
                """
            )
            self._conn.execute("CREATE INDEX IF NOT EXISTS idx_kv_collection ON kv_store(collection)")
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open record store {storage}: {e}", cause=e)
        logger.info(f"RecordStore initialized: {self.storage}")

    def close(self) -> None:
        self._conn.close()

    def _load(self, collection: str, record_id: str) -> Dict[str, Any]:
        row = self._conn.execute(
            "SELECT data FROM kv_store WHERE collection = ? AND id = ?",
            (collection, record_id),
        ).fetchone()
        if row is None:
            raise RecordNotFoundError(collection, record_id)
        return json.loads(row[0])

    def create(self, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
        record_id = str(uuid.uuid4())
        try:
            with self._lock:
                self._conn.execute(
                    "INSERT INTO kv_store (collection, id, data) VALUES (?, ?, ?)",
                    (collection, record_id, json.dumps(data)),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to create record in {collection}: {e}", cause=e)
        return {"id": record_id, **data}

    def read(self, collection: str, record_id: str) -> Dict[str, Any]:
        with self._lock:
            data = self._load(collection, record_id)
        return {"id": record_id, **data}

    def update(self, collection: str, record_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Shallow-merge ``data`` over the stored document."""
        try:
            with self._lock:
                merged = {**self._load(collection, record_id), **data}
                self._conn.execute(
                    "UPDATE kv_store SET data = ?, updated_at = CURRENT_TIMESTAMP "
                    "WHERE collection = ? AND id = ?",
                    (json.dumps(merged), collection, record_id),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to update {collection}/{record_id}: {e}", cause=e)
        return {"id": record_id, **merged}

    def delete(self, collection: str, record_id: str) -> None:
        try:
            with self._lock:
                changes = self._conn.execute(
                    "DELETE FROM kv_store WHERE collection = ? AND id = ?",
                    (collection, record_id),
                ).rowcount
                self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete {collection}/{record_id}: {e}", cause=e)
        if not changes:
            raise RecordNotFoundError(collection, record_id)

    def query(
        self,
        collection: str,
        filter: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Newest first; ``filter`` keeps documents whose fields equal every given value."""
        limit = limit or self.default_limit
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, data FROM kv_store WHERE collection = ? "
                "ORDER BY created_at DESC, rowid DESC",
                (collection,),
            ).fetchall()

        results = []
        for record_id, raw in rows:
            doc = {"id": record_id, **json.loads(raw)}
            if filter and any(doc.get(key) != value for key, value in filter.items()):
                continue
            results.append(doc)
            if len(results) >= limit:
                break
        return results

    def count(self, collection: str) -> int:
        with self._lock:
            return self._conn.execute(
                "SELECT COUNT(1) FROM kv_store WHERE collection = ?", (collection,)
            ).fetchone()[0]
