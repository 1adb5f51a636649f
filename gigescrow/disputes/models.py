"""
Dispute data models.

A dispute suspends an escrow's buyer-driven settlement and hands the
release/refund decision to an arbiter.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

from gigescrow.utils import format_datetime, parse_datetime, utc_now


class DisputeStatus(str, Enum):
    """Dispute lifecycle status."""

    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class DisputeOutcome(str, Enum):
    """Arbiter decision."""

    RELEASE_TO_SELLER = "RELEASE_TO_SELLER"
    REFUND_TO_BUYER = "REFUND_TO_BUYER"


VALID_DISPUTE_TRANSITIONS = {
    DisputeStatus.OPEN: {DisputeStatus.RESOLVED},
    DisputeStatus.RESOLVED: {DisputeStatus.CLOSED},
    DisputeStatus.CLOSED: set(),
}


def can_transition(
    from_status: Union[str, DisputeStatus], to_status: Union[str, DisputeStatus]
) -> bool:
    """Check if a dispute status transition is valid."""
    try:
        return DisputeStatus(to_status) in VALID_DISPUTE_TRANSITIONS[DisputeStatus(from_status)]
    except ValueError:
        return False


@dataclass
class Dispute:
    """An arbitration case against one escrow.

    Attributes:
        id: Opaque unique id
        escrow_id: Disputed escrow
        reason: Complainant's description of the problem
        complainant_id: Party (buyer or seller) who opened the dispute
        status: Current status
        assigned_arbiter_id: Arbiter picked when the dispute was opened
        arbiter_id: Arbiter who decided (set on resolution)
        resolution: Decision (set on resolution)
        version: Optimistic concurrency counter
    """

    id: str
    escrow_id: str
    reason: str
    complainant_id: Optional[str] = None
    status: str = DisputeStatus.OPEN.value
    assigned_arbiter_id: Optional[str] = None
    arbiter_id: Optional[str] = None
    resolution: Optional[str] = None
    version: int = 1
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        """Validate dispute data."""
        if isinstance(self.status, DisputeStatus):
            self.status = self.status.value
        if isinstance(self.resolution, DisputeOutcome):
            self.resolution = self.resolution.value
        try:
            status = DisputeStatus(self.status)
        except ValueError:
            raise ValueError(f"Invalid status: {self.status}")
        if self.resolution is not None:
            try:
                DisputeOutcome(self.resolution)
            except ValueError:
                raise ValueError(f"Invalid resolution: {self.resolution}")

        decided = self.arbiter_id is not None and self.resolution is not None
        if status == DisputeStatus.OPEN and (self.arbiter_id or self.resolution):
            raise ValueError("Open dispute cannot carry an arbiter decision")
        if status != DisputeStatus.OPEN and not decided:
            raise ValueError(f"{status.value} dispute requires arbiter_id and resolution")

        self.created_at = parse_datetime(self.created_at)
        self.updated_at = parse_datetime(self.updated_at)

    def can_transition_to(self, new_status: Union[str, DisputeStatus]) -> bool:
        return can_transition(self.status, new_status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "escrow_id": self.escrow_id,
            "status": self.status,
            "reason": self.reason,
            "complainant_id": self.complainant_id,
            "assigned_arbiter_id": self.assigned_arbiter_id,
            "arbiter_id": self.arbiter_id,
            "resolution": self.resolution,
            "version": self.version,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Dispute":
        return cls(
            id=data["id"],
            escrow_id=data["escrow_id"],
            reason=data.get("reason", ""),
            complainant_id=data.get("complainant_id"),
            status=data.get("status", DisputeStatus.OPEN.value),
            assigned_arbiter_id=data.get("assigned_arbiter_id"),
            arbiter_id=data.get("arbiter_id"),
            resolution=data.get("resolution"),
            version=data.get("version", 1),
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
        )
