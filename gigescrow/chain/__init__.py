"""Cardano chain integration: indexer client, retry policy and encoders."""

from gigescrow.chain.adapter import (
    REDEEMER_REFUND_TO_BUYER,
    REDEEMER_RELEASE_TO_SELLER,
    CardanoChainAdapter,
    LockPayload,
)
from gigescrow.chain.client import BlockfrostClient, ChainClientError, ChainNotFoundError
from gigescrow.chain.retry import RetryPolicy, TransientChainError, retry_async

__all__ = [
    "BlockfrostClient",
    "CardanoChainAdapter",
    "ChainClientError",
    "ChainNotFoundError",
    "LockPayload",
    "REDEEMER_REFUND_TO_BUYER",
    "REDEEMER_RELEASE_TO_SELLER",
    "RetryPolicy",
    "TransientChainError",
    "retry_async",
]
