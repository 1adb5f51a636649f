"""Retry with exponential backoff for chain indexer calls.

Usage:
    policy = RetryPolicy(attempts=3, base_delay=1.0)
    data = await retry_async(lambda: client._get("/txs/abc"), policy, "GET /txs/abc")

Only ``TransientChainError`` is retried. Anything else propagates on the
first attempt. Once the attempt cap is reached the last transient error is
converted into ``ChainUnavailableError``.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from gigescrow.errors import ChainUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransientChainError(Exception):
    """A chain call failed in a way worth retrying (rate limit, 5xx, network)."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff policy parameters.

    attempts: Total number of tries, including the first one.
    base_delay: Delay in seconds before the first retry.
    multiplier: Exponential scale factor per attempt.
    max_delay: Upper bound for a single delay.
    jitter_fraction: +/- fraction applied as random jitter.
    """

    attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    jitter_fraction: float = 0.1

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if not 0 <= self.jitter_fraction < 1:
            raise ValueError("jitter_fraction must be in [0, 1)")

    def delay_for(self, retry_number: int, rng: Optional[random.Random] = None) -> float:
        """Delay before retry ``retry_number`` (1-based)."""
        delay = min(self.max_delay, self.base_delay * (self.multiplier ** (retry_number - 1)))
        if self.jitter_fraction and delay:
            r = (rng or random).uniform(-self.jitter_fraction, self.jitter_fraction)
            delay = max(0.0, delay * (1 + r))
        return delay


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str = "chain call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds, fails permanently, or runs out of attempts."""
    last_error: Optional[TransientChainError] = None
    for attempt in range(1, policy.attempts + 1):
        try:
            return await operation()
        except TransientChainError as e:
            last_error = e
            if attempt == policy.attempts:
                break
            delay = policy.delay_for(attempt)
            if e.retry_after is not None:
                delay = min(policy.max_delay, max(delay, e.retry_after))
            logger.warning(
                f"{description} failed ({e}), retrying in {delay:.2f}s "
                f"(attempt {attempt}/{policy.attempts})"
            )
            await sleep(delay)

    logger.error(f"{description} failed after {policy.attempts} attempts: {last_error}")
    raise ChainUnavailableError(
        f"{description} failed after {policy.attempts} attempts: {last_error}"
    ) from last_error
