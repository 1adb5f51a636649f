"""
Pytest fixtures and test configuration for gigescrow tests.

The chain indexer is replaced by ``ChainStub`` behind ``httpx.MockTransport``
and the store is in memory, so the full service graph runs without network
or disk.
"""

import hashlib
import os
from datetime import timedelta
from typing import Any, Dict, List, Optional

import httpx
import pytest

# Keep the module-level app settings off disk and without a scheduler
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("AUTO_REFUND_AFTER_EXPIRY", "false")

from fastapi.testclient import TestClient  # noqa: E402

from gigescrow.api.config import Settings, get_settings  # noqa: E402
from gigescrow.api.deps import build_services, get_services  # noqa: E402
from gigescrow.api.main import app  # noqa: E402
from gigescrow.api.rate_limit import limiter  # noqa: E402
from gigescrow.chain.address import encode_key_address, encode_script_address  # noqa: E402
from gigescrow.chain.client import BlockfrostClient  # noqa: E402
from gigescrow.chain.retry import RetryPolicy  # noqa: E402
from gigescrow.notifications.models import Notification  # noqa: E402
from gigescrow.signing import generate_key_pair, sign_settlement  # noqa: E402
from gigescrow.storage.base import GIGS, NOTIFICATIONS, USERS  # noqa: E402
from gigescrow.storage.memory import InMemoryRecordStore  # noqa: E402
from gigescrow.utils import ada_to_lovelace, utc_now  # noqa: E402

BUYER_ID = "user-buyer"
SELLER_ID = "user-seller"
STRANGER_ID = "user-stranger"
ARBITER_ID = "arbiter-1"
GIG_ID = "gig-logo-design"

NETWORK = "preprod"
CONTRACT_ADDRESS = encode_script_address(bytes([0xAB]) * 28, NETWORK)
ARBITER_ADDRESS = encode_key_address(bytes([0x09]) * 28, NETWORK)
BUYER_ADDRESS = encode_key_address(bytes([0x01]) * 28, NETWORK)
SELLER_ADDRESS = encode_key_address(bytes([0x02]) * 28, NETWORK)

CHAIN_BASE_URL = "https://chain.test"


async def no_sleep(_delay: float) -> None:
    return None


class ChainStub:
    """In-process stand-in for the Blockfrost endpoints the services use."""

    def __init__(self):
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.submitted: List[bytes] = []
        self.requests: List[httpx.Request] = []
        self.outages = 0
        self.reject_submissions = False

    def add_lock(
        self,
        tx_hash: str,
        lovelace: int,
        address: str = CONTRACT_ADDRESS,
        valid: bool = True,
        inline_datum: Optional[str] = None,
    ) -> None:
        self.transactions[tx_hash] = {
            "valid": valid,
            "outputs": [
                {
                    "address": address,
                    "amount": [{"unit": "lovelace", "quantity": str(lovelace)}],
                    "inline_datum": inline_datum,
                }
            ],
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.outages:
            self.outages -= 1
            return httpx.Response(503, json={"message": "Service unavailable"})

        path = request.url.path
        if path == "/health":
            return httpx.Response(200, json={"is_healthy": True})
        if path == "/tx/submit":
            if self.reject_submissions:
                return httpx.Response(400, json={"message": "ValueNotConservedUTxO"})
            self.submitted.append(request.content)
            return httpx.Response(200, json=hashlib.blake2b(request.content, digest_size=32).hexdigest())

        parts = path.strip("/").split("/")
        if parts[0] == "txs" and len(parts) >= 2:
            tx = self.transactions.get(parts[1])
            if tx is None:
                return httpx.Response(404, json={"message": "The requested component has not been found."})
            if len(parts) == 3 and parts[2] == "utxos":
                return httpx.Response(200, json={"hash": parts[1], "inputs": [], "outputs": tx["outputs"]})
            return httpx.Response(200, json={"hash": parts[1], "valid_contract": tx["valid"]})
        return httpx.Response(404, json={"message": "Not found"})


class RecordingSink:
    """Notification sink that keeps deliveries in a list."""

    def __init__(self):
        self.deliveries: List[tuple] = []
        self.fail = False

    async def deliver(
        self,
        notification: Notification,
        channel: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self.fail:
            raise RuntimeError("mail relay down")
        self.deliveries.append((notification, channel, payload))


@pytest.fixture
def chain():
    return ChainStub()


@pytest.fixture
def chain_client(chain):
    return BlockfrostClient(
        base_url=CHAIN_BASE_URL,
        project_id="preprodTEST",
        retry_policy=RetryPolicy(attempts=3, base_delay=0.0, jitter_fraction=0.0),
        transport=httpx.MockTransport(chain.handler),
        sleep=no_sleep,
    )


@pytest.fixture
def settings():
    return Settings(
        store_backend="memory",
        cardano_network=NETWORK,
        blockfrost_url=CHAIN_BASE_URL,
        escrow_contract_address=CONTRACT_ADDRESS,
        arbiter_address=ARBITER_ADDRESS,
        verify_lock_outputs=True,
        auto_refund_after_expiry=False,
        admin_api_key=None,
    )


@pytest.fixture(scope="session")
def keys():
    """Ed25519 key pairs for every signer used in tests."""
    return {
        user_id: generate_key_pair()
        for user_id in (BUYER_ID, SELLER_ID, STRANGER_ID, ARBITER_ID, "arbiter-2")
    }


@pytest.fixture
def store(keys):
    """In-memory store seeded with the marketplace's users and one gig."""
    store = InMemoryRecordStore()
    for user_id, address in (
        (BUYER_ID, BUYER_ADDRESS),
        (SELLER_ID, SELLER_ADDRESS),
        (STRANGER_ID, None),
    ):
        store.insert(
            USERS,
            {
                "id": user_id,
                "email": f"{user_id}@example.com",
                "wallet_address": address,
                "public_key": keys[user_id].public_key,
            },
        )
    store.insert(
        GIGS,
        {
            "id": GIG_ID,
            "seller_id": SELLER_ID,
            "title": "Logo design",
            "description": "Three logo concepts",
            "price": 100,
        },
    )
    return store


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def services(settings, store, chain_client, sink, keys):
    services = build_services(settings, store=store, chain_client=chain_client, sink=sink)
    services.arbiters.register(ARBITER_ID, keys[ARBITER_ID].public_key, display_name="Ada Arbiter")
    return services


class Marketplace:
    """Drives escrows into a given state through the real services."""

    def __init__(self, services, chain: ChainStub, keys):
        self.services = services
        self.chain = chain
        self.keys = keys

    def sign(self, action: str, escrow_id: str, signer_id: str) -> str:
        return sign_settlement(self.keys[signer_id].private_key, action, escrow_id, signer_id)

    def notifications_for(self, user_id: str) -> List[str]:
        """Notification types recorded for a user, oldest first."""
        return [r["type"] for r in self.services.store.find(NOTIFICATIONS, user_id=user_id)]

    async def created(self, amount: Any = "100", expires_in: timedelta = timedelta(days=7)):
        return await self.services.escrows.create_escrow(
            GIG_ID, BUYER_ID, amount, utc_now() + expires_in
        )

    async def locked(self, **kwargs):
        escrow = await self.created(**kwargs)
        tx_hash = f"{len(self.chain.transactions):064x}"
        self.chain.add_lock(tx_hash, ada_to_lovelace(escrow.amount))
        return await self.services.escrows.lock_escrow(escrow.id, tx_hash)

    async def delivered(self, **kwargs):
        escrow = await self.locked(**kwargs)
        return await self.services.escrows.deliver_escrow(
            escrow.id, "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi", "Final files attached"
        )

    async def disputed(self, state: str = "delivered", complainant_id: str = BUYER_ID):
        escrow = await (self.delivered() if state == "delivered" else self.locked())
        dispute = await self.services.disputes.open_dispute(
            escrow.id, "Work does not match the brief", complainant_id
        )
        return escrow, dispute


@pytest.fixture
def market(services, chain, keys):
    return Marketplace(services, chain, keys)


@pytest.fixture
def client(services, settings):
    """Test client whose requests run against the ``services`` fixture."""
    app.dependency_overrides[get_services] = lambda: services
    app.dependency_overrides[get_settings] = lambda: settings
    limiter.enabled = False
    yield TestClient(app)
    limiter.enabled = True
    app.dependency_overrides.clear()
