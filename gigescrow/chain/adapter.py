"""Chain adapter between the escrow services and the Cardano ledger.

The escrow services only ever ask three things of the chain:

- ``build_lock_payload``: what the buyer must send to the escrow script
- ``verify_lock``: whether a submitted transaction really locked the funds
- ``submit_settlement``: hand a signed release/refund transaction to the node

All address, slot and datum encoding lives here so the state machine stays
encoding-agnostic.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from gigescrow.chain.address import (
    InvalidAddressError,
    decode_address,
    encode_script_address,
    payment_key_hash,
)
from gigescrow.chain.client import BlockfrostClient, ChainClientError
from gigescrow.chain.datum import Constr, decode_plutus, encode_plutus, to_json
from gigescrow.chain.slots import datetime_to_slot
from gigescrow.config import EscrowConfig
from gigescrow.errors import (
    ChainSubmissionFailedError,
    ChainUnavailableError,
    InvalidArgumentError,
)
from gigescrow.utils import ada_to_lovelace, parse_datetime

logger = logging.getLogger(__name__)

# Redeemer constructor indexes understood by the escrow validator
REDEEMER_RELEASE_TO_SELLER = 0
REDEEMER_REFUND_TO_BUYER = 1

SETTLEMENT_REDEEMERS = {
    "release": REDEEMER_RELEASE_TO_SELLER,
    "refund": REDEEMER_REFUND_TO_BUYER,
}


@dataclass
class LockPayload:
    """Everything a wallet needs to build the buyer's locking transaction."""

    escrow_id: str
    contract_address: str
    lovelace: int
    expiry_slot: int
    datum_cbor: bytes
    datum: Dict[str, Any]
    redeemers: Dict[str, int] = field(default_factory=lambda: dict(SETTLEMENT_REDEEMERS))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "escrow_id": self.escrow_id,
            "contract_address": self.contract_address,
            "lovelace": self.lovelace,
            "expiry_slot": self.expiry_slot,
            "datum_cbor": self.datum_cbor.hex(),
            "datum": self.datum,
            "redeemers": dict(self.redeemers),
        }


class CardanoChainAdapter:
    """Builds lock payloads and talks to the indexer on behalf of the services.

    Args:
        client: Indexer client used for verification and submission
        config: Network and contract settings
    """

    def __init__(self, client: BlockfrostClient, config: EscrowConfig):
        self.client = client
        self.config = config

    # === Lock payload ===

    def contract_address(self) -> str:
        """Bech32 address of the escrow script."""
        if self.config.escrow_contract_address:
            return self.config.escrow_contract_address
        if self.config.escrow_script_hash:
            try:
                script_hash = bytes.fromhex(self.config.escrow_script_hash)
            except ValueError as e:
                raise InvalidArgumentError(f"Invalid escrow script hash: {e}") from e
            return encode_script_address(script_hash, self.config.network)
        raise InvalidArgumentError("No escrow contract address or script hash configured")

    def _key_hash(self, address: Optional[str], role: str) -> bytes:
        if not address:
            raise InvalidArgumentError(f"{role} has no wallet address")
        try:
            return payment_key_hash(address)
        except InvalidAddressError as e:
            raise InvalidArgumentError(f"Invalid {role} wallet address: {e}") from e

    def build_lock_payload(
        self, escrow: Dict[str, Any], buyer: Dict[str, Any], seller: Dict[str, Any]
    ) -> LockPayload:
        """Build the locking payload for an escrow record.

        Args:
            escrow: Escrow record (``id``, ``amount``, ``expires_at``)
            buyer: Buyer user record with ``wallet_address``
            seller: Seller user record with ``wallet_address``

        Raises:
            InvalidArgumentError: If an address is missing or malformed
        """
        buyer_pkh = self._key_hash(buyer.get("wallet_address"), "buyer")
        seller_pkh = self._key_hash(seller.get("wallet_address"), "seller")
        arbiter_pkh = self._key_hash(self.config.arbiter_address, "arbiter")

        expires_at = parse_datetime(escrow["expires_at"])
        expiry_slot = datetime_to_slot(expires_at, self.config.network)

        datum = Constr(
            0,
            [
                buyer_pkh,
                seller_pkh,
                arbiter_pkh,
                expiry_slot,
                str(escrow["id"]).encode("utf-8"),
            ],
        )
        return LockPayload(
            escrow_id=escrow["id"],
            contract_address=self.contract_address(),
            lovelace=ada_to_lovelace(escrow["amount"]),
            expiry_slot=expiry_slot,
            datum_cbor=encode_plutus(datum),
            datum=to_json(datum),
        )

    # === Verification ===

    async def verify_lock(self, escrow: Dict[str, Any], tx_hash: str) -> bool:
        """Check that ``tx_hash`` is a valid transaction locking this escrow's funds.

        Returns False for a negative answer (unknown transaction, failed
        scripts, missing or underfunded contract output, or an inline datum
        naming a different escrow). Raises ChainUnavailableError when the
        indexer cannot be reached.
        """
        try:
            valid = await self.client.verify_transaction(tx_hash)
        except ChainClientError as e:
            raise ChainUnavailableError(f"Indexer refused lookup of {tx_hash}: {e}") from e
        if not valid:
            logger.info(f"Lock transaction not valid on chain | escrow={escrow['id']} | tx={tx_hash}")
            return False

        if not (self.config.verify_lock_outputs and self.config.escrow_contract_address):
            return True

        try:
            utxos = await self.client.get_transaction_utxos(tx_hash)
        except ChainClientError as e:
            raise ChainUnavailableError(f"Could not read outputs of {tx_hash}: {e}") from e

        expected = ada_to_lovelace(escrow["amount"])
        target = decode_address(self.config.escrow_contract_address).payment_credential
        for output in utxos.get("outputs") or []:
            address = output.get("address")
            try:
                credential = decode_address(address).payment_credential if address else None
            except InvalidAddressError:
                continue
            if credential != target:
                continue
            if not self._datum_matches(escrow, output.get("inline_datum")):
                continue
            for amount in output.get("amount") or []:
                if amount.get("unit") == "lovelace" and int(amount.get("quantity", 0)) >= expected:
                    return True

        logger.info(
            f"Lock transaction does not fund the contract | escrow={escrow['id']} | "
            f"tx={tx_hash} | expected_lovelace={expected}"
        )
        return False

    @staticmethod
    def _datum_matches(escrow: Dict[str, Any], inline_datum: Optional[str]) -> bool:
        """Whether an output's inline datum (hex CBOR) carries this escrow's id.

        Outputs without an inline datum are accepted on amount alone.
        """
        if not inline_datum:
            return True
        try:
            datum = decode_plutus(bytes.fromhex(inline_datum))
        except (TypeError, ValueError):
            return False
        if not isinstance(datum, Constr) or len(datum.fields) != 5:
            return False
        return datum.fields[4] == str(escrow["id"]).encode("utf-8")

    # === Settlement ===

    async def submit_settlement(
        self, escrow: Dict[str, Any], action: str, signed_tx: Optional[bytes] = None
    ) -> Optional[str]:
        """Submit a signed release/refund transaction, if one was provided.

        Returns the submitted transaction hash, or None when no transaction
        was supplied and settlement is left to the parties' wallets.

        Raises:
            ChainSubmissionFailedError: If the node rejects the transaction
                or the indexer cannot be reached
        """
        if action not in SETTLEMENT_REDEEMERS:
            raise InvalidArgumentError(f"Unknown settlement action: {action}")
        if not signed_tx:
            logger.info(
                f"Settlement deferred to wallet | escrow={escrow['id']} | action={action} | "
                f"redeemer={SETTLEMENT_REDEEMERS[action]}"
            )
            return None
        try:
            tx_hash = await self.client.submit_transaction(signed_tx)
        except (ChainClientError, ChainUnavailableError) as e:
            logger.error(f"Settlement submission failed | escrow={escrow['id']} | action={action} | {e}")
            raise ChainSubmissionFailedError(f"Settlement transaction rejected: {e}") from e
        logger.info(f"Settlement submitted | escrow={escrow['id']} | action={action} | tx={tx_hash}")
        return tx_hash
