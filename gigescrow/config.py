"""Configuration for the escrow core services.

The API builds an ``EscrowConfig`` from its environment settings; tests and
the CLI construct one directly.
"""

from dataclasses import dataclass
from typing import Optional

# Reserved signer identity for system-initiated refunds
SYSTEM_SIGNER = "SYSTEM"
# Signature sentinel accompanying system-initiated refunds
AUTOMATIC_TIMEOUT_SIGNATURE = "AUTOMATIC_TIMEOUT"

SUPPORTED_NETWORKS = ("mainnet", "preprod", "preview")


@dataclass
class EscrowConfig:
    """Settings shared by the escrow, dispute and monitor services.

    Attributes:
        network: Cardano network name (mainnet, preprod, preview)
        escrow_contract_address: Bech32 address of the escrow script
        escrow_script_hash: Hex script hash, used when no address is given
        arbiter_address: Bech32 address whose key hash goes into the datum
        verify_lock_outputs: Cross-check amount/destination when locking
        dispute_resolution_days: Age after which an open dispute is stale
    """

    network: str = "preprod"
    escrow_contract_address: Optional[str] = None
    escrow_script_hash: Optional[str] = None
    arbiter_address: Optional[str] = None
    verify_lock_outputs: bool = True
    dispute_resolution_days: int = 7

    def __post_init__(self):
        if self.network not in SUPPORTED_NETWORKS:
            raise ValueError(
                f"Unsupported network: {self.network}. Expected one of {SUPPORTED_NETWORKS}"
            )
        if self.dispute_resolution_days < 1:
            raise ValueError("dispute_resolution_days must be at least 1")
