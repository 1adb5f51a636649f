"""Dispute resolution for gigescrow.

Models:
- Dispute: An arbitration case against one escrow
- DisputeStatus / DisputeOutcome

Services:
- DisputeService: open, resolve and close disputes
- ArbiterDirectory: authorized arbiters and assignment
"""

from gigescrow.disputes.models import (
    VALID_DISPUTE_TRANSITIONS,
    Dispute,
    DisputeOutcome,
    DisputeStatus,
)
from gigescrow.disputes.arbiters import Arbiter, ArbiterDirectory
from gigescrow.disputes.service import DisputeService

__all__ = [
    "Arbiter",
    "ArbiterDirectory",
    "Dispute",
    "DisputeOutcome",
    "DisputeService",
    "DisputeStatus",
    "VALID_DISPUTE_TRANSITIONS",
]
