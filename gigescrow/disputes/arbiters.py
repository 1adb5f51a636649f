"""
Arbiter directory.

Keeps the set of arbiters allowed to decide disputes, and picks one for a
new dispute: the active arbiter with the fewest open assignments who is
not a party to the escrow.
"""

import base64
import binascii
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from gigescrow.errors import InvalidArgumentError, NotFoundError
from gigescrow.storage.base import ARBITERS, DISPUTES, RecordStore
from gigescrow.utils import format_datetime, parse_datetime, utc_now

logger = logging.getLogger(__name__)

ED25519_PUBLIC_KEY_LENGTH = 32


@dataclass
class Arbiter:
    """A registered arbiter.

    Attributes:
        id: Arbiter identity (also the signer id on resolutions)
        public_key: Base64 Ed25519 key used to verify resolution signatures
        display_name: Human-readable name
        active: Only active arbiters are assigned and authorized
        wallet_address: Optional payout/identity address
    """

    id: str
    public_key: str
    display_name: Optional[str] = None
    active: bool = True
    wallet_address: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "public_key": self.public_key,
            "display_name": self.display_name,
            "active": self.active,
            "wallet_address": self.wallet_address,
            "created_at": format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Arbiter":
        return cls(
            id=data["id"],
            public_key=data.get("public_key", ""),
            display_name=data.get("display_name"),
            active=bool(data.get("active", True)),
            wallet_address=data.get("wallet_address"),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
        )


def _check_public_key(public_key: str) -> None:
    try:
        raw = base64.b64decode(public_key, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidArgumentError(f"Public key is not valid base64: {e}") from e
    if len(raw) != ED25519_PUBLIC_KEY_LENGTH:
        raise InvalidArgumentError(
            f"Public key must be {ED25519_PUBLIC_KEY_LENGTH} bytes, got {len(raw)}"
        )


class ArbiterDirectory:
    """Registry of authorized arbiters backed by the record store."""

    def __init__(self, store: RecordStore):
        self.store = store

    def register(
        self,
        arbiter_id: str,
        public_key: str,
        display_name: Optional[str] = None,
        wallet_address: Optional[str] = None,
        active: bool = True,
    ) -> Arbiter:
        """Add an arbiter, or update the key and details of an existing one."""
        if not arbiter_id:
            raise InvalidArgumentError("Arbiter id is required")
        _check_public_key(public_key)

        existing = self.store.get(ARBITERS, arbiter_id)
        if existing is not None:
            changes = {
                "public_key": public_key,
                "display_name": display_name or existing.get("display_name"),
                "wallet_address": wallet_address or existing.get("wallet_address"),
                "active": active,
            }
            updated = self.store.update(ARBITERS, arbiter_id, changes)
            logger.info(f"Arbiter updated | id={arbiter_id} | active={active}")
            return Arbiter.from_dict(updated)

        arbiter = Arbiter(
            id=arbiter_id,
            public_key=public_key,
            display_name=display_name,
            wallet_address=wallet_address,
            active=active,
        )
        self.store.insert(ARBITERS, arbiter.to_dict())
        logger.info(f"Arbiter registered | id={arbiter_id}")
        return arbiter

    def deactivate(self, arbiter_id: str) -> Arbiter:
        updated = self.store.update(ARBITERS, arbiter_id, {"active": False})
        if updated is None:
            raise NotFoundError(f"Arbiter {arbiter_id} not found")
        logger.info(f"Arbiter deactivated | id={arbiter_id}")
        return Arbiter.from_dict(updated)

    def get(self, arbiter_id: str) -> Optional[Arbiter]:
        record = self.store.get(ARBITERS, arbiter_id)
        return Arbiter.from_dict(record) if record else None

    def list_available(self) -> List[Arbiter]:
        """Active arbiters."""
        return [Arbiter.from_dict(r) for r in self.store.find(ARBITERS, active=True)]

    def is_authorized(self, arbiter_id: Optional[str]) -> bool:
        if not arbiter_id:
            return False
        arbiter = self.get(arbiter_id)
        return arbiter is not None and arbiter.active

    def open_assignments(self, arbiter_id: str) -> int:
        return len(self.store.find(DISPUTES, assigned_arbiter_id=arbiter_id, status="OPEN"))

    def assign(self, escrow) -> Optional[Arbiter]:
        """Pick an arbiter for a dispute on ``escrow``.

        Returns None when no active arbiter is independent of both parties.
        """
        parties = {escrow.buyer_id, escrow.seller_id}
        candidates = [a for a in self.list_available() if a.id not in parties]
        if not candidates:
            logger.warning(f"No arbiter available | escrow={escrow.id}")
            return None
        chosen = min(candidates, key=lambda a: (self.open_assignments(a.id), a.created_at, a.id))
        logger.info(f"Arbiter assigned | escrow={escrow.id} | arbiter={chosen.id}")
        return chosen
