"""
Escrow data models.

An escrow holds a buyer's payment for a gig until the work is delivered and
the funds are released to the seller, or refunded to the buyer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union

from gigescrow.utils import format_datetime, parse_datetime, to_decimal, utc_now


class EscrowState(str, Enum):
    """Lifecycle state of an escrow."""

    CREATED = "CREATED"  # Record exists, funds not yet on chain
    LOCKED = "LOCKED"  # Buyer's deposit confirmed at the script address
    DELIVERED = "DELIVERED"  # Seller submitted the work
    RELEASED = "RELEASED"  # Funds went to the seller
    REFUNDED = "REFUNDED"  # Funds went back to the buyer
    CLOSED = "CLOSED"  # Archived


VALID_ESCROW_TRANSITIONS = {
    EscrowState.CREATED: {EscrowState.LOCKED},
    EscrowState.LOCKED: {EscrowState.DELIVERED, EscrowState.REFUNDED},
    EscrowState.DELIVERED: {EscrowState.RELEASED, EscrowState.REFUNDED},
    EscrowState.RELEASED: {EscrowState.CLOSED},
    EscrowState.REFUNDED: {EscrowState.CLOSED},
    EscrowState.CLOSED: set(),
}

# States in which funds sit on chain (or did at some point)
ON_CHAIN_STATES = {
    EscrowState.LOCKED,
    EscrowState.DELIVERED,
    EscrowState.RELEASED,
    EscrowState.REFUNDED,
    EscrowState.CLOSED,
}
DELIVERY_REQUIRED_STATES = {EscrowState.DELIVERED, EscrowState.RELEASED}
PRE_DELIVERY_STATES = {EscrowState.CREATED, EscrowState.LOCKED}


def can_transition(from_state: Union[str, EscrowState], to_state: Union[str, EscrowState]) -> bool:
    """Check if an escrow state transition is valid."""
    try:
        current = EscrowState(from_state)
        target = EscrowState(to_state)
    except ValueError:
        return False
    return target in VALID_ESCROW_TRANSITIONS[current]


@dataclass
class Escrow:
    """A payment held in trust for one gig purchase.

    Attributes:
        id: Opaque unique id
        gig_id: Gig being purchased
        buyer_id: User paying into escrow
        seller_id: Gig owner receiving funds on release
        amount: Amount in ADA
        expires_at: Deadline after which a locked escrow is refunded
        state: Current lifecycle state
        on_chain_tx_hash: Locking transaction, set once when locked
        delivery_hash: Content hash of the delivered work, set once
        delivery_message: Optional note sent with the delivery
        version: Optimistic concurrency counter
    """

    id: str
    gig_id: str
    buyer_id: str
    seller_id: str
    amount: Decimal
    expires_at: datetime
    state: str = EscrowState.CREATED.value
    on_chain_tx_hash: Optional[str] = None
    delivery_hash: Optional[str] = None
    delivery_message: Optional[str] = None
    version: int = 1
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        """Validate escrow data."""
        if isinstance(self.state, EscrowState):
            self.state = self.state.value
        try:
            state = EscrowState(self.state)
        except ValueError:
            raise ValueError(f"Invalid state: {self.state}")

        self.amount = to_decimal(self.amount)
        if not self.amount.is_finite() or self.amount <= 0:
            raise ValueError("Amount must be positive")

        self.expires_at = parse_datetime(self.expires_at)
        self.created_at = parse_datetime(self.created_at)
        self.updated_at = parse_datetime(self.updated_at)
        if self.expires_at is None:
            raise ValueError("Escrow requires an expiry")

        if state in ON_CHAIN_STATES and not self.on_chain_tx_hash:
            raise ValueError(f"Escrow in {state.value} requires an on-chain transaction hash")
        if state not in ON_CHAIN_STATES and self.on_chain_tx_hash:
            raise ValueError(f"Escrow in {state.value} cannot carry an on-chain transaction hash")
        if state in DELIVERY_REQUIRED_STATES and not self.delivery_hash:
            raise ValueError(f"Escrow in {state.value} requires a delivery hash")
        if state in PRE_DELIVERY_STATES and self.delivery_hash:
            raise ValueError(f"Escrow in {state.value} cannot carry a delivery hash")

    @property
    def state_enum(self) -> EscrowState:
        return EscrowState(self.state)

    def can_transition_to(self, new_state: Union[str, EscrowState]) -> bool:
        return can_transition(self.state, new_state)

    def is_party(self, user_id: str) -> bool:
        return user_id in (self.buyer_id, self.seller_id)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at <= (now or utc_now())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-safe record."""
        return {
            "id": self.id,
            "gig_id": self.gig_id,
            "buyer_id": self.buyer_id,
            "seller_id": self.seller_id,
            "state": self.state,
            "amount": str(self.amount),
            "expires_at": format_datetime(self.expires_at),
            "on_chain_tx_hash": self.on_chain_tx_hash,
            "delivery_hash": self.delivery_hash,
            "delivery_message": self.delivery_message,
            "version": self.version,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Escrow":
        """Build from a stored record (legacy records lack ``version``)."""
        return cls(
            id=data["id"],
            gig_id=data["gig_id"],
            buyer_id=data["buyer_id"],
            seller_id=data["seller_id"],
            amount=data["amount"],
            expires_at=data["expires_at"],
            state=data.get("state", EscrowState.CREATED.value),
            on_chain_tx_hash=data.get("on_chain_tx_hash"),
            delivery_hash=data.get("delivery_hash"),
            delivery_message=data.get("delivery_message"),
            version=data.get("version", 1),
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
        )


@dataclass
class EscrowTransition:
    """Audit record of one escrow state change."""

    id: str
    escrow_id: str
    to_state: str
    actor_id: str
    from_state: Optional[str] = None
    reason: Optional[str] = None
    tx_hash: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if isinstance(self.to_state, EscrowState):
            self.to_state = self.to_state.value
        if isinstance(self.from_state, EscrowState):
            self.from_state = self.from_state.value
        self.created_at = parse_datetime(self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "escrow_id": self.escrow_id,
            "from_state": self.from_state,
            "to_state": self.to_state,
            "actor_id": self.actor_id,
            "reason": self.reason,
            "tx_hash": self.tx_hash,
            "created_at": format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EscrowTransition":
        return cls(
            id=data["id"],
            escrow_id=data["escrow_id"],
            from_state=data.get("from_state"),
            to_state=data["to_state"],
            actor_id=data["actor_id"],
            reason=data.get("reason"),
            tx_hash=data.get("tx_hash"),
            created_at=data.get("created_at") or utc_now(),
        )
