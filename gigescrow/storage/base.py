"""Record store protocol.

The store holds JSON documents grouped by entity type and keyed by ``id``.
Every record carries a ``version`` counter; ``update`` can be made
conditional on it, which is what the services use to keep read-modify-write
sequences on one record from losing updates.
"""

import re
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from gigescrow.errors import ConflictError

ESCROWS = "escrows"
ESCROW_TRANSITIONS = "escrow_transitions"
DISPUTES = "disputes"
NOTIFICATIONS = "notifications"
GIGS = "gigs"
USERS = "users"
ARBITERS = "arbiters"
MESSAGES = "messages"

ENTITY_GROUPS = (
    USERS,
    GIGS,
    ARBITERS,
    ESCROWS,
    ESCROW_TRANSITIONS,
    DISPUTES,
    NOTIFICATIONS,
    MESSAGES,
)

_FIELD_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class VersionConflictError(ConflictError):
    """A conditional update found a different version than expected."""

    def __init__(self, group: str, record_id: str, expected: int, found: int):
        super().__init__(
            f"{group} record {record_id} was modified concurrently "
            f"(expected version {expected}, found {found})"
        )
        self.group = group
        self.record_id = record_id
        self.expected = expected
        self.found = found


def check_group(group: str) -> str:
    """Validate an entity group name."""
    if group not in ENTITY_GROUPS:
        raise ValueError(f"Unknown entity group: {group}")
    return group


def check_field_name(name: str) -> str:
    """Validate a field name used in a lookup."""
    if not _FIELD_NAME.match(name):
        raise ValueError(f"Invalid field name: {name!r}")
    return name


@runtime_checkable
class RecordStore(Protocol):
    """Protocol for record persistence backends."""

    def all(self, group: str) -> List[Dict[str, Any]]:
        """Return every record of a group in insertion order."""
        ...

    def get(self, group: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Get a record by id."""
        ...

    def find(self, group: str, **fields: Any) -> List[Dict[str, Any]]:
        """Return records whose fields equal all given values."""
        ...

    def insert(self, group: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a new record. Returns the stored copy (with ``version``)."""
        ...

    def update(
        self,
        group: str,
        record_id: str,
        changes: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Optional[Dict[str, Any]]:
        """Merge ``changes`` into a record and bump its version.

        Returns the updated record, or None if it does not exist.
        Raises VersionConflictError if ``expected_version`` is given and
        does not match the stored version.
        """
        ...

    def delete(self, group: str, record_id: str) -> bool:
        """Delete a record. Returns True if it existed."""
        ...
