"""Cardano Shelley address decoding and script address construction.

Address bytes start with a header: the high nibble is the address type and
the low nibble the network id (1 for mainnet, 0 for test networks). Types
0-7 carry a 28-byte payment credential right after the header; odd types
hold a script hash there, even types a verification key hash.
"""

from dataclasses import dataclass
from typing import Optional

from gigescrow.chain.bech32 import Bech32Error, decode_bytes, encode_bytes

CREDENTIAL_LENGTH = 28

MAINNET_ID = 1
TESTNET_ID = 0

_PAYMENT_HRPS = {MAINNET_ID: "addr", TESTNET_ID: "addr_test"}
_STAKE_HRPS = {MAINNET_ID: "stake", TESTNET_ID: "stake_test"}

# Header types
BASE_TYPES = (0, 1, 2, 3)
POINTER_TYPES = (4, 5)
ENTERPRISE_KEY = 6
ENTERPRISE_SCRIPT = 7
REWARD_TYPES = (14, 15)


class InvalidAddressError(ValueError):
    """Address is not a well-formed Cardano Shelley address."""


@dataclass(frozen=True)
class CardanoAddress:
    """A decoded Shelley address."""

    hrp: str
    address_type: int
    network_id: int
    payment_credential: Optional[bytes]
    payment_is_script: bool
    stake_credential: Optional[bytes] = None

    @property
    def is_mainnet(self) -> bool:
        return self.network_id == MAINNET_ID


def network_id_for(network: str) -> int:
    """Map a network name to its address network id."""
    return MAINNET_ID if network == "mainnet" else TESTNET_ID


def decode_address(address: str) -> CardanoAddress:
    """Decode a bech32 Cardano address.

    Raises:
        InvalidAddressError: If the string is not a valid Shelley address
    """
    try:
        hrp, payload = decode_bytes(address)
    except Bech32Error as e:
        raise InvalidAddressError(f"Invalid bech32 address: {e}") from e
    if not payload:
        raise InvalidAddressError("Empty address payload")

    header = payload[0]
    address_type = header >> 4
    network_id = header & 0x0F
    body = payload[1:]

    if address_type in REWARD_TYPES:
        expected_hrp = _STAKE_HRPS.get(network_id)
    else:
        expected_hrp = _PAYMENT_HRPS.get(network_id)
    if hrp != expected_hrp:
        raise InvalidAddressError(
            f"Prefix {hrp!r} does not match network id {network_id}"
        )

    if address_type in BASE_TYPES:
        if len(body) != 2 * CREDENTIAL_LENGTH:
            raise InvalidAddressError("Base address must carry two 28-byte credentials")
        return CardanoAddress(
            hrp=hrp,
            address_type=address_type,
            network_id=network_id,
            payment_credential=body[:CREDENTIAL_LENGTH],
            payment_is_script=bool(address_type & 1),
            stake_credential=body[CREDENTIAL_LENGTH:],
        )
    if address_type in POINTER_TYPES:
        if len(body) <= CREDENTIAL_LENGTH:
            raise InvalidAddressError("Pointer address is too short")
        return CardanoAddress(
            hrp=hrp,
            address_type=address_type,
            network_id=network_id,
            payment_credential=body[:CREDENTIAL_LENGTH],
            payment_is_script=bool(address_type & 1),
        )
    if address_type in (ENTERPRISE_KEY, ENTERPRISE_SCRIPT):
        if len(body) != CREDENTIAL_LENGTH:
            raise InvalidAddressError("Enterprise address must carry one 28-byte credential")
        return CardanoAddress(
            hrp=hrp,
            address_type=address_type,
            network_id=network_id,
            payment_credential=body,
            payment_is_script=address_type == ENTERPRISE_SCRIPT,
        )
    if address_type in REWARD_TYPES:
        if len(body) != CREDENTIAL_LENGTH:
            raise InvalidAddressError("Reward address must carry one 28-byte credential")
        return CardanoAddress(
            hrp=hrp,
            address_type=address_type,
            network_id=network_id,
            payment_credential=None,
            payment_is_script=False,
            stake_credential=body,
        )
    raise InvalidAddressError(f"Unsupported address type: {address_type}")


def payment_key_hash(address: str) -> bytes:
    """Extract the payment verification key hash from an address.

    Raises:
        InvalidAddressError: If the address is malformed or pays to a script
    """
    decoded = decode_address(address)
    if decoded.payment_credential is None:
        raise InvalidAddressError("Reward addresses have no payment credential")
    if decoded.payment_is_script:
        raise InvalidAddressError("Address pays to a script, not a key")
    return decoded.payment_credential


def _encode(address_type: int, credential: bytes, network: str) -> str:
    if len(credential) != CREDENTIAL_LENGTH:
        raise InvalidAddressError(f"Credential must be {CREDENTIAL_LENGTH} bytes")
    network_id = network_id_for(network)
    header = bytes([(address_type << 4) | network_id])
    return encode_bytes(_PAYMENT_HRPS[network_id], header + credential)


def encode_script_address(script_hash: bytes, network: str) -> str:
    """Build the enterprise address of a Plutus script."""
    return _encode(ENTERPRISE_SCRIPT, script_hash, network)


def encode_key_address(key_hash: bytes, network: str) -> str:
    """Build an enterprise address for a verification key hash."""
    return _encode(ENTERPRISE_KEY, key_hash, network)
