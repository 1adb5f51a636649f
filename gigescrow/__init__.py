"""
gigescrow - Escrow backend for a freelance marketplace settling on Cardano.

Funds for a gig purchase are locked at a Plutus script address, released to
the seller on delivery, refunded to the buyer on expiry, or routed by an
arbiter when the parties disagree.
"""

from .escrow import EscrowService, EscrowState, ExpiryMonitor
from .disputes import DisputeService

try:
    from importlib.metadata import version

    __version__ = version("gigescrow")
except Exception:
    __version__ = "0.0.0"

__all__ = ["EscrowService", "EscrowState", "ExpiryMonitor", "DisputeService"]
