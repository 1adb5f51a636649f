"""Escrow lifecycle for gigescrow.

Models:
- Escrow: A payment held in trust for one gig purchase
- EscrowState: Escrow lifecycle state
- EscrowTransition: Audit log entry for state changes

Service:
- EscrowService: Escrow operations (create, lock, deliver, release, refund)
- ExpiryMonitor: Automatic refund of expired escrows
"""

from gigescrow.escrow.models import (
    VALID_ESCROW_TRANSITIONS,
    Escrow,
    EscrowState,
    EscrowTransition,
)
from gigescrow.escrow.service import EscrowService
from gigescrow.escrow.monitor import ExpiryMonitor, SweepAction, SweepReport

__all__ = [
    # Models
    "Escrow",
    "EscrowState",
    "EscrowTransition",
    "VALID_ESCROW_TRANSITIONS",
    # Services
    "EscrowService",
    "ExpiryMonitor",
    "SweepAction",
    "SweepReport",
]
