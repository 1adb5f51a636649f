"""In-memory record store for testing and local development."""

import copy
import logging
import threading
from typing import Any, Dict, List, Optional

from gigescrow.errors import ConflictError
from gigescrow.storage.base import VersionConflictError, check_field_name, check_group
from gigescrow.utils import utc_now

logger = logging.getLogger(__name__)


class InMemoryRecordStore:
    """Thread-safe in-memory store.

    Records are deep-copied on the way in and out so callers can never
    mutate stored state without going through ``update``.
    """

    def __init__(self):
        """Initialize empty storage."""
        self._lock = threading.Lock()
        self._groups: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _group(self, group: str) -> Dict[str, Dict[str, Any]]:
        return self._groups.setdefault(check_group(group), {})

    def all(self, group: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._group(group).values()]

    def get(self, group: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._group(group).get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def find(self, group: str, **fields: Any) -> List[Dict[str, Any]]:
        for name in fields:
            check_field_name(name)
        with self._lock:
            return [
                copy.deepcopy(r)
                for r in self._group(group).values()
                if all(r.get(k) == v for k, v in fields.items())
            ]

    def insert(self, group: str, record: Dict[str, Any]) -> Dict[str, Any]:
        record_id = record.get("id")
        if not record_id:
            raise ValueError("Record must have an id")
        stored = copy.deepcopy(record)
        stored.setdefault("version", 1)
        with self._lock:
            items = self._group(group)
            if record_id in items:
                raise ConflictError(f"{group} record {record_id} already exists")
            items[record_id] = stored
            return copy.deepcopy(stored)

    def update(
        self,
        group: str,
        record_id: str,
        changes: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Optional[Dict[str, Any]]:
        with self._lock:
            items = self._group(group)
            current = items.get(record_id)
            if current is None:
                return None
            found = current.get("version", 1)
            if expected_version is not None and found != expected_version:
                raise VersionConflictError(group, record_id, expected_version, found)
            merged = {**current, **copy.deepcopy(changes)}
            merged["id"] = record_id
            merged["version"] = found + 1
            merged["updated_at"] = utc_now().isoformat()
            items[record_id] = merged
            return copy.deepcopy(merged)

    def delete(self, group: str, record_id: str) -> bool:
        with self._lock:
            return self._group(group).pop(record_id, None) is not None
