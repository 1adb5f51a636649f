"""
Settlement signatures.

Release and refund requests must carry an Ed25519 signature over a message
that binds the action, the escrow and the signer:

    gigescrow:<action>:<escrow_id>:<signer_id>

Signatures and keys travel base64-encoded. The verifier looks the signer's
public key up in the user record first and the arbiter record second.
"""

import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from gigescrow.storage.base import ARBITERS, USERS, RecordStore
from gigescrow.utils import utc_now

logger = logging.getLogger(__name__)

SETTLEMENT_ACTIONS = ("release", "refund")


class SigningError(Exception):
    """Key material could not be used for signing."""

    pass


@dataclass
class KeyPair:
    """Ed25519 key pair.

    Attributes:
        public_key: Base64-encoded public key
        private_key: Base64-encoded private key
        created_at: When the key was generated
        key_id: Short identifier derived from public key
    """

    public_key: str
    private_key: str
    created_at: Optional[datetime] = None
    key_id: Optional[str] = None


def settlement_message(action: str, escrow_id: str, signer_id: str) -> bytes:
    """Canonical bytes a signer signs to authorize a settlement."""
    if action not in SETTLEMENT_ACTIONS:
        raise ValueError(f"Unknown settlement action: {action}")
    return f"gigescrow:{action}:{escrow_id}:{signer_id}".encode("utf-8")


def generate_key_pair() -> KeyPair:
    """Generate a new Ed25519 key pair."""
    private_key = Ed25519PrivateKey.generate()
    public_bytes = private_key.public_key().public_bytes_raw()
    return KeyPair(
        public_key=base64.b64encode(public_bytes).decode("ascii"),
        private_key=base64.b64encode(private_key.private_bytes_raw()).decode("ascii"),
        created_at=utc_now(),
        key_id=hashlib.sha256(public_bytes).hexdigest()[:8],
    )


def sign_settlement(private_key_b64: str, action: str, escrow_id: str, signer_id: str) -> str:
    """Sign a settlement message. Returns the base64 signature.

    Raises:
        SigningError: If the private key is malformed
    """
    try:
        private_key = Ed25519PrivateKey.from_private_bytes(base64.b64decode(private_key_b64))
    except (binascii.Error, ValueError) as e:
        raise SigningError(f"Invalid private key: {e}") from e
    signature = private_key.sign(settlement_message(action, escrow_id, signer_id))
    return base64.b64encode(signature).decode("ascii")


def verify_signature(message: bytes, signature_b64: str, public_key_b64: str) -> bool:
    """Check an Ed25519 signature. Malformed input counts as invalid."""
    try:
        public_key = Ed25519PublicKey.from_public_bytes(base64.b64decode(public_key_b64))
        public_key.verify(base64.b64decode(signature_b64), message)
        return True
    except (InvalidSignature, binascii.Error, ValueError) as e:
        logger.debug(f"Signature verification failed: {type(e).__name__}")
        return False


@runtime_checkable
class SignatureVerifier(Protocol):
    """Decides whether a signature authorizes a settlement action."""

    def verify(self, signature: str, signer_id: str, escrow_id: str, action: str) -> bool:
        ...


class Ed25519SignatureVerifier:
    """Verifies settlement signatures against keys held in the record store."""

    def __init__(self, store: RecordStore):
        self.store = store

    def public_key_for(self, signer_id: str) -> Optional[str]:
        for group in (USERS, ARBITERS):
            record = self.store.get(group, signer_id)
            if record and record.get("public_key"):
                return record["public_key"]
        return None

    def verify(self, signature: str, signer_id: str, escrow_id: str, action: str) -> bool:
        if not signature or action not in SETTLEMENT_ACTIONS:
            return False
        public_key = self.public_key_for(signer_id)
        if public_key is None:
            logger.info(f"No public key registered | signer={signer_id}")
            return False
        return verify_signature(
            settlement_message(action, escrow_id, signer_id), signature, public_key
        )
