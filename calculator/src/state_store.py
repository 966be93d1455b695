"""
Durable per-instance key/value state backed by SQLite.

Each calculator engine owns one *instance key* (``facility-<id>``) and
persists its fields (``entity``, ``facilityId``, ``config``,
``lastCalculation``, ``alarm``) as JSON values under that key. The store
is the source of truth after a crash: in-memory handles are rebuilt from
it, never the other way around.

Operations:
- put(instance_key, key, value): UPSERT one JSON value.
- get(instance_key, key, default): SELECT one value.
- delete(instance_key, key): DELETE one value.
- instance_keys(): DISTINCT instance keys with persisted state.
- close(): Close the underlying database connection.

CHANGELOG:
- 2026-10-17: Initial creation

TODO:
- None
"""

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS instance_state (
    instance_key TEXT NOT NULL,
    key TEXT NOT NULL,
    value_json TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (instance_key, key)
);
"""

_UPSERT_SQL = """\
INSERT INTO instance_state (instance_key, key, value_json)
VALUES (:instance_key, :key, :value_json)
ON CONFLICT (instance_key, key) DO UPDATE SET
    value_json = excluded.value_json,
    updated_at = datetime('now');
"""

_GET_SQL = """\
SELECT value_json FROM instance_state
WHERE instance_key = :instance_key AND key = :key;
"""

_DELETE_SQL = """\
DELETE FROM instance_state
WHERE instance_key = :instance_key AND key = :key;
"""

_KEYS_SQL = """\
SELECT DISTINCT instance_key FROM instance_state
ORDER BY instance_key ASC;
"""

_MISSING = object()


class StateStore:
    """Durable key/value store shared by all engine instances.

    A single connection is shared across engine threads and guarded by a
    lock. Every write is committed before returning.

    Args:
        path: Filesystem path for the SQLite database file, or
              ``":memory:"``.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = str(path)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute(_CREATE_TABLE_SQL)
        self._conn.commit()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def put(self, instance_key: str, key: str, value: Any) -> None:
        """Persist *value* (JSON-serializable) under ``(instance_key, key)``."""
        params = {
            "instance_key": instance_key,
            "key": key,
            "value_json": json.dumps(value),
        }
        with self._lock:
            self._conn.execute(_UPSERT_SQL, params)
            self._conn.commit()

    def get(self, instance_key: str, key: str, default: Any = None) -> Any:
        """Return the value stored under ``(instance_key, key)``.

        Returns *default* when nothing is stored.
        """
        with self._lock:
            row = self._conn.execute(
                _GET_SQL, {"instance_key": instance_key, "key": key}
            ).fetchone()
        if row is None:
            return default
        return json.loads(row["value_json"])

    def has(self, instance_key: str, key: str) -> bool:
        """Return whether a value is stored under ``(instance_key, key)``."""
        return self.get(instance_key, key, _MISSING) is not _MISSING

    def delete(self, instance_key: str, key: str) -> None:
        """Remove ``(instance_key, key)``. Missing keys are ignored."""
        with self._lock:
            self._conn.execute(_DELETE_SQL, {"instance_key": instance_key, "key": key})
            self._conn.commit()

    def instance_keys(self) -> list[str]:
        """Return every instance key that has persisted state."""
        with self._lock:
            rows = self._conn.execute(_KEYS_SQL).fetchall()
        return [row["instance_key"] for row in rows]

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        with self._lock:
            self._conn.close()
