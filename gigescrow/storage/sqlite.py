"""SQLite-backed record store.

All entity groups share one table. Each row keeps the JSON document plus a
``version`` column; conditional updates compare-and-swap on that column in a
single statement so two writers racing on the same record cannot both win.
"""

import contextlib
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from gigescrow.errors import ConflictError, StorageError
from gigescrow.storage.base import VersionConflictError, check_field_name, check_group
from gigescrow.utils import utc_now

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    entity_group TEXT NOT NULL,
    id TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 1,
    data TEXT NOT NULL,
    PRIMARY KEY (entity_group, id)
);
CREATE INDEX IF NOT EXISTS idx_records_group ON records (entity_group);
"""


class SQLiteRecordStore:
    """Record store persisted in a local SQLite database."""

    def __init__(self, db_path: Union[str, Path] = "data/gigescrow.db"):
        self.db_path = str(db_path)
        if self.db_path == ":memory:":
            # Connections are per-operation, so an in-memory database would vanish
            raise ValueError("SQLiteRecordStore needs a file path; use InMemoryRecordStore")
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Yield a connection; commit on success, roll back on error, always close."""
        try:
            conn = self._get_conn()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {self.db_path}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Storage operation failed: {e}")
            raise StorageError(f"Storage operation failed: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self):
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> Dict[str, Any]:
        record = json.loads(row["data"])
        record["version"] = row["version"]
        return record

    def all(self, group: str) -> List[Dict[str, Any]]:
        check_group(group)
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT data, version FROM records WHERE entity_group = ? ORDER BY rowid",
                (group,),
            ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def get(self, group: str, record_id: str) -> Optional[Dict[str, Any]]:
        check_group(group)
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data, version FROM records WHERE entity_group = ? AND id = ?",
                (group, record_id),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def find(self, group: str, **fields: Any) -> List[Dict[str, Any]]:
        check_group(group)
        clauses = ["entity_group = ?"]
        params: List[Any] = [group]
        for name, value in fields.items():
            path = f"$.{check_field_name(name)}"
            if value is None:
                clauses.append("json_extract(data, ?) IS NULL")
                params.append(path)
            else:
                clauses.append("json_extract(data, ?) = ?")
                params.extend([path, int(value) if isinstance(value, bool) else value])
        sql = f"SELECT data, version FROM records WHERE {' AND '.join(clauses)} ORDER BY rowid"
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_record(r) for r in rows]

    def insert(self, group: str, record: Dict[str, Any]) -> Dict[str, Any]:
        check_group(group)
        record_id = record.get("id")
        if not record_id:
            raise ValueError("Record must have an id")
        stored = dict(record)
        version = stored.pop("version", 1)
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO records (entity_group, id, version, data) VALUES (?, ?, ?, ?)",
                    (group, record_id, version, json.dumps(stored, default=str)),
                )
        except StorageError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                raise ConflictError(f"{group} record {record_id} already exists") from e
            raise
        stored["version"] = version
        return stored

    def update(
        self,
        group: str,
        record_id: str,
        changes: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Optional[Dict[str, Any]]:
        check_group(group)
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data, version FROM records WHERE entity_group = ? AND id = ?",
                (group, record_id),
            ).fetchone()
            if row is None:
                return None
            found = row["version"]
            if expected_version is not None and found != expected_version:
                raise VersionConflictError(group, record_id, expected_version, found)

            merged = {**json.loads(row["data"]), **changes}
            merged.pop("version", None)
            merged["id"] = record_id
            merged["updated_at"] = utc_now().isoformat()

            cursor = conn.execute(
                "UPDATE records SET data = ?, version = version + 1 "
                "WHERE entity_group = ? AND id = ? AND version = ?",
                (json.dumps(merged, default=str), group, record_id, found),
            )
            if cursor.rowcount == 0:
                # Another writer got in between our read and write
                current = conn.execute(
                    "SELECT version FROM records WHERE entity_group = ? AND id = ?",
                    (group, record_id),
                ).fetchone()
                raise VersionConflictError(
                    group, record_id, found, current["version"] if current else -1
                )
        merged["version"] = found + 1
        return merged

    def delete(self, group: str, record_id: str) -> bool:
        check_group(group)
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM records WHERE entity_group = ? AND id = ?",
                (group, record_id),
            )
        return cursor.rowcount > 0
