"""Blockfrost-compatible chain indexer client.

Read-only queries against the indexer REST API (network, clock, addresses,
UTxOs, transactions, scripts) plus transaction submission. Every request has
a bounded timeout and goes through ``retry_async``; rate limiting (429),
server errors and transport failures are retried with backoff before the
caller sees ``ChainUnavailableError``.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from gigescrow.chain.retry import RetryPolicy, TransientChainError, retry_async
from gigescrow.errors import ChainUnavailableError
from gigescrow.utils import parse_datetime

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://cardano-preprod.blockfrost.io/api/v0"


class ChainClientError(Exception):
    """Non-retryable error answered by the indexer."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code


class ChainNotFoundError(ChainClientError):
    """The indexer does not know the requested object."""

    def __init__(self, path: str):
        super().__init__(404, f"Not found: {path}")
        self.path = path


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class BlockfrostClient:
    """Async client for a Blockfrost-style indexer.

    Args:
        base_url: API root, e.g. https://cardano-preprod.blockfrost.io/api/v0
        project_id: API credential sent in the ``project_id`` header
        timeout: Per-request timeout in seconds
        retry_policy: Backoff policy for transient failures
        transport: Optional httpx transport (tests use httpx.MockTransport)
        sleep: Coroutine used between retries
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        project_id: str = "",
        timeout: float = 30.0,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={"project_id": project_id, "Content-Type": "application/json"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "BlockfrostClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        description = f"{method} {path}"

        async def attempt() -> Any:
            try:
                response = await self._client.request(
                    method, path, params=params, content=content, headers=headers
                )
            except httpx.TimeoutException as e:
                raise TransientChainError(f"timeout: {e}") from e
            except httpx.TransportError as e:
                raise TransientChainError(f"transport error: {e}") from e

            logger.debug(f"Chain API response: {response.status_code} {description}")
            if response.status_code == 429:
                raise TransientChainError("rate limited", retry_after=_retry_after(response))
            if response.status_code >= 500:
                raise TransientChainError(f"server error {response.status_code}")
            if response.status_code == 404:
                raise ChainNotFoundError(path)
            if response.status_code >= 400:
                raise ChainClientError(response.status_code, response.text[:200])
            return response.json()

        return await retry_async(attempt, self.retry_policy, description, sleep=self._sleep)

    # === Network ===

    async def get_network(self) -> Dict[str, Any]:
        """Get network information."""
        return await self._request("GET", "/network")

    async def get_clock(self) -> Dict[str, Any]:
        """Get the network clock (``slot``, ``time``, ``slot_time``)."""
        return await self._request("GET", "/clock")

    async def get_current_slot(self) -> int:
        clock = await self.get_clock()
        return int(clock["slot"])

    async def slot_from_timestamp(self, timestamp: datetime) -> int:
        """Project a wall-clock time onto the slot clock reported by the indexer."""
        clock = await self.get_clock()
        target = parse_datetime(timestamp)
        slot_time = parse_datetime(clock["slot_time"])
        return int(clock["slot"]) + int((target - slot_time).total_seconds())

    async def health_check(self) -> bool:
        """True if the indexer reports itself healthy."""
        try:
            result = await self._request("GET", "/health")
        except (ChainClientError, ChainUnavailableError) as e:
            logger.warning(f"Chain API health check failed: {e}")
            return False
        return bool(result.get("is_healthy", True)) if isinstance(result, dict) else True

    # === Addresses ===

    async def get_address(self, address: str) -> Dict[str, Any]:
        return await self._request("GET", f"/addresses/{address}")

    async def get_address_utxos(self, address: str) -> List[Dict[str, Any]]:
        return await self._request("GET", f"/addresses/{address}/utxos")

    async def get_address_transactions(self, address: str, count: int = 100) -> List[Dict[str, Any]]:
        return await self._request(
            "GET", f"/addresses/{address}/transactions", params={"count": count, "order": "desc"}
        )

    async def get_address_balance(self, address: str) -> int:
        """Lovelace held by an address (0 for an address never seen on chain)."""
        try:
            info = await self.get_address(address)
        except ChainNotFoundError:
            return 0
        for item in info.get("amount") or []:
            if item.get("unit") == "lovelace":
                return int(item.get("quantity", 0))
        return 0

    # === Transactions ===

    async def get_transaction(self, tx_hash: str) -> Dict[str, Any]:
        return await self._request("GET", f"/txs/{tx_hash}")

    async def get_transaction_utxos(self, tx_hash: str) -> Dict[str, Any]:
        return await self._request("GET", f"/txs/{tx_hash}/utxos")

    async def verify_transaction(self, tx_hash: str) -> bool:
        """True if the transaction exists on chain and its scripts validated.

        Unknown or malformed hashes answer False; an unreachable indexer
        raises ChainUnavailableError.
        """
        try:
            tx = await self.get_transaction(tx_hash)
        except ChainNotFoundError:
            return False
        except ChainClientError as e:
            if e.status_code == 400:
                return False
            raise
        return bool(tx) and bool(tx.get("valid_contract", False))

    async def submit_transaction(self, signed_tx: bytes) -> str:
        """Submit a signed, CBOR-serialized transaction. Returns its hash."""
        return await self._request(
            "POST",
            "/tx/submit",
            content=signed_tx,
            headers={"Content-Type": "application/cbor"},
        )

    # === Scripts ===

    async def get_script(self, script_hash: str) -> Dict[str, Any]:
        return await self._request("GET", f"/scripts/{script_hash}")

    async def get_script_utxos(self, script_hash: str) -> List[Dict[str, Any]]:
        return await self._request("GET", f"/scripts/{script_hash}/utxos")
