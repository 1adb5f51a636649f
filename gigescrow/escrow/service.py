"""
Escrow service.

Drives escrows through their lifecycle:

    CREATED -> LOCKED -> DELIVERED -> RELEASED
                  |          |
                  +----------+--> REFUNDED

Each transition is a read-modify-write on one record. It runs under a
per-escrow asyncio lock and is committed with a version compare-and-swap,
so two concurrent requests can never both succeed from the same prior
state. Notifications go out after the commit and never undo it.
"""

import asyncio
import logging
import weakref
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from gigescrow.chain.adapter import CardanoChainAdapter, LockPayload
from gigescrow.config import AUTOMATIC_TIMEOUT_SIGNATURE, SYSTEM_SIGNER, EscrowConfig
from gigescrow.disputes.arbiters import ArbiterDirectory
from gigescrow.disputes.models import DisputeStatus
from gigescrow.errors import (
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    StorageError,
    UnauthorizedError,
    VerificationFailedError,
)
from gigescrow.escrow.models import Escrow, EscrowState, EscrowTransition
from gigescrow.notifications.service import NotificationService
from gigescrow.signing import SignatureVerifier
from gigescrow.storage.base import DISPUTES, ESCROW_TRANSITIONS, ESCROWS, GIGS, USERS, RecordStore
from gigescrow.utils import generate_id, parse_datetime, to_decimal, utc_now

logger = logging.getLogger(__name__)

REFUNDABLE_STATES = {EscrowState.LOCKED, EscrowState.DELIVERED}


class EscrowService:
    """Escrow lifecycle operations.

    Args:
        store: Record store
        notifications: Notification service for party updates
        chain: Chain adapter (lock payloads, lock verification, settlement)
        verifier: Settlement signature verifier
        arbiters: Arbiter directory used for authorization
        config: Core configuration
    """

    def __init__(
        self,
        store: RecordStore,
        notifications: NotificationService,
        chain: CardanoChainAdapter,
        verifier: SignatureVerifier,
        arbiters: ArbiterDirectory,
        config: Optional[EscrowConfig] = None,
    ):
        self.store = store
        self.notifications = notifications
        self.chain = chain
        self.verifier = verifier
        self.arbiters = arbiters
        self.config = config or EscrowConfig()
        # Entries vanish once no coroutine holds or awaits the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def lock_for(self, escrow_id: str) -> asyncio.Lock:
        """The mutex serializing transitions of one escrow."""
        lock = self._locks.get(escrow_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[escrow_id] = lock
        return lock

    def _load(self, escrow_id: str) -> Escrow:
        record = self.store.get(ESCROWS, escrow_id)
        if record is None:
            raise NotFoundError(f"Escrow {escrow_id} not found")
        try:
            return Escrow.from_dict(record)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Malformed escrow record | id={escrow_id} | {e}")
            raise StorageError(f"Escrow {escrow_id} is malformed: {e}") from e

    def _parse_all(self, records: Iterable[Dict[str, Any]]) -> List[Escrow]:
        """Parse escrow records, leaving out any that fail validation."""
        escrows = []
        for record in records:
            try:
                escrows.append(Escrow.from_dict(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Skipping malformed escrow record | id={record.get('id')} | {e}")
        return escrows

    def _require_state(self, escrow: Escrow, allowed: Iterable[EscrowState], action: str) -> None:
        allowed = set(allowed)
        if escrow.state_enum not in allowed:
            expected = " or ".join(sorted(s.value for s in allowed))
            raise InvalidStateError(
                f"Cannot {action} escrow {escrow.id} in state {escrow.state}; must be {expected}"
            )

    def _transition(
        self,
        escrow: Escrow,
        new_state: EscrowState,
        actor_id: str,
        reason: Optional[str] = None,
        changes: Optional[Dict[str, Any]] = None,
    ) -> Escrow:
        """Commit a state change conditioned on the version that was read."""
        if not escrow.can_transition_to(new_state):
            raise InvalidStateError(f"Invalid transition: {escrow.state} -> {new_state.value}")

        update = dict(changes or {})
        update["state"] = new_state.value
        updated = self.store.update(ESCROWS, escrow.id, update, expected_version=escrow.version)
        if updated is None:
            raise NotFoundError(f"Escrow {escrow.id} not found")

        self._record_transition(
            escrow.id, escrow.state, new_state, actor_id, reason, update.get("on_chain_tx_hash")
        )
        logger.info(
            f"Escrow transition | id={escrow.id} | {escrow.state} -> {new_state.value} | "
            f"actor={actor_id}"
        )
        return Escrow.from_dict(updated)

    def _record_transition(
        self,
        escrow_id: str,
        from_state: Optional[str],
        to_state: EscrowState,
        actor_id: str,
        reason: Optional[str] = None,
        tx_hash: Optional[str] = None,
    ) -> None:
        transition = EscrowTransition(
            id=generate_id(),
            escrow_id=escrow_id,
            from_state=from_state,
            to_state=to_state,
            actor_id=actor_id,
            reason=reason,
            tx_hash=tx_hash,
        )
        try:
            self.store.insert(ESCROW_TRANSITIONS, transition.to_dict())
        except StorageError as e:
            # The state change itself is already committed
            logger.error(f"Failed to record escrow transition | id={escrow_id} | {e}")

    def open_dispute_for(self, escrow_id: str) -> Optional[Dict[str, Any]]:
        """The OPEN dispute record on an escrow, if any."""
        disputes = self.store.find(DISPUTES, escrow_id=escrow_id, status=DisputeStatus.OPEN.value)
        return disputes[0] if disputes else None

    def _authorize(
        self, escrow: Escrow, action: str, signer_id: str, signature: str, party_id: str
    ) -> None:
        """Check that ``signer_id`` may settle ``escrow`` and that the signature verifies.

        ``party_id`` is the one party allowed to settle in this direction
        without an arbiter: the buyer releases, the seller refunds.
        """
        if not signer_id:
            raise UnauthorizedError("Signer is required")
        if signer_id == SYSTEM_SIGNER:
            raise UnauthorizedError(f"Signer {SYSTEM_SIGNER} is reserved for automatic refunds")

        is_arbiter = self.arbiters.is_authorized(signer_id) and not escrow.is_party(signer_id)
        dispute = self.open_dispute_for(escrow.id)
        if dispute is not None:
            if not is_arbiter:
                raise UnauthorizedError(
                    f"Escrow {escrow.id} is under dispute; only an arbiter may {action} it"
                )
            assigned = dispute.get("assigned_arbiter_id")
            if assigned and assigned != signer_id:
                raise UnauthorizedError(f"Dispute {dispute['id']} is assigned to another arbiter")
        elif signer_id != party_id and not is_arbiter:
            raise UnauthorizedError(f"Signer {signer_id} may not {action} escrow {escrow.id}")

        if not self.verifier.verify(signature, signer_id, escrow.id, action):
            logger.warning(f"Signature rejected | escrow={escrow.id} | action={action} | signer={signer_id}")
            raise UnauthorizedError("Invalid signature")

    async def _notify_parties(self, escrow: Escrow, buyer_message: str, seller_message: str) -> None:
        await self.notifications.notify_escrow(escrow.buyer_id, escrow.id, escrow.state, buyer_message)
        await self.notifications.notify_escrow(escrow.seller_id, escrow.id, escrow.state, seller_message)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def create_escrow(
        self,
        gig_id: str,
        buyer_id: str,
        amount: Any,
        expires_at: Any,
    ) -> Escrow:
        """Create an escrow for a gig purchase.

        Args:
            gig_id: Gig being bought
            buyer_id: Paying user
            amount: Amount in ADA (number or decimal string)
            expires_at: Deadline (datetime or ISO string), must be in the future

        Returns:
            The new escrow in CREATED

        Raises:
            InvalidArgumentError: Bad amount or expiry, or buyer owns the gig
            NotFoundError: Gig or buyer does not exist
        """
        try:
            amount = to_decimal(amount)
        except ValueError as e:
            raise InvalidArgumentError(str(e)) from e
        if not amount.is_finite() or amount <= 0:
            raise InvalidArgumentError("Amount must be positive")

        try:
            expiry = parse_datetime(expires_at)
        except (TypeError, ValueError) as e:
            raise InvalidArgumentError(f"Invalid expiry: {expires_at!r}") from e
        if expiry is None:
            raise InvalidArgumentError("Expiry is required")
        if expiry <= utc_now():
            raise InvalidArgumentError("Expiry date must be in the future")

        gig = self.store.get(GIGS, gig_id)
        if gig is None:
            raise NotFoundError(f"Gig {gig_id} not found")
        if self.store.get(USERS, buyer_id) is None:
            raise NotFoundError(f"Buyer {buyer_id} not found")
        seller_id = gig.get("seller_id")
        if not seller_id:
            raise InvalidArgumentError(f"Gig {gig_id} has no seller")
        if seller_id == buyer_id:
            raise InvalidArgumentError("Buyer cannot purchase their own gig")

        escrow = Escrow(
            id=generate_id(),
            gig_id=gig_id,
            buyer_id=buyer_id,
            seller_id=seller_id,
            amount=amount,
            expires_at=expiry,
        )
        stored = self.store.insert(ESCROWS, escrow.to_dict())
        escrow = Escrow.from_dict(stored)
        self._record_transition(escrow.id, None, EscrowState.CREATED, buyer_id, "created")
        logger.info(
            f"Escrow created | id={escrow.id} | gig={gig_id} | buyer={buyer_id} | amount={amount}"
        )

        await self.notifications.notify_escrow(
            seller_id,
            escrow.id,
            escrow.state,
            f'A new escrow has been created for your gig "{gig.get("title", gig_id)}" '
            f"with amount {amount} ADA.",
        )
        return escrow

    async def build_lock_payload(self, escrow_id: str) -> LockPayload:
        """Build the payload the buyer's wallet needs to lock the funds."""
        escrow = self._load(escrow_id)
        buyer = self.store.get(USERS, escrow.buyer_id)
        if buyer is None:
            raise NotFoundError(f"Buyer {escrow.buyer_id} not found")
        seller = self.store.get(USERS, escrow.seller_id)
        if seller is None:
            raise NotFoundError(f"Seller {escrow.seller_id} not found")
        return self.chain.build_lock_payload(escrow.to_dict(), buyer, seller)

    async def lock_escrow(self, escrow_id: str, tx_hash: str) -> Escrow:
        """Mark an escrow LOCKED once its funding transaction checks out on chain.

        Raises:
            NotFoundError: Escrow does not exist
            InvalidStateError: Escrow is not CREATED
            VerificationFailedError: The chain does not confirm the lock, or the
                transaction already locks another escrow
            ChainUnavailableError: The chain could not be queried
        """
        if not tx_hash:
            raise InvalidArgumentError("Transaction hash is required")

        async with self.lock_for(escrow_id):
            escrow = self._load(escrow_id)
            self._require_state(escrow, {EscrowState.CREATED}, "lock")

            if not await self.chain.verify_lock(escrow.to_dict(), tx_hash):
                raise VerificationFailedError(f"Transaction {tx_hash} not found or invalid")
            # A funding transaction backs one escrow; nothing is awaited between here and the commit
            if self.store.find(ESCROWS, on_chain_tx_hash=tx_hash):
                raise VerificationFailedError(f"Transaction {tx_hash} already locks another escrow")

            escrow = self._transition(
                escrow,
                EscrowState.LOCKED,
                escrow.buyer_id,
                "funds locked",
                {"on_chain_tx_hash": tx_hash},
            )

        await self._notify_parties(
            escrow,
            f'Your escrow for gig "{escrow.gig_id}" has been locked on the blockchain.',
            f'The escrow for your gig "{escrow.gig_id}" has been locked. You can now start working.',
        )
        return escrow

    async def deliver_escrow(
        self, escrow_id: str, delivery_hash: str, message: Optional[str] = None
    ) -> Escrow:
        """Record the seller's delivery."""
        if not delivery_hash:
            raise InvalidArgumentError("Delivery hash is required")

        async with self.lock_for(escrow_id):
            escrow = self._load(escrow_id)
            self._require_state(escrow, {EscrowState.LOCKED}, "deliver")
            escrow = self._transition(
                escrow,
                EscrowState.DELIVERED,
                escrow.seller_id,
                "work delivered",
                {"delivery_hash": delivery_hash, "delivery_message": message},
            )

        text = f'Your work for escrow "{escrow.id}" has been delivered. Please review and release payment.'
        if message:
            text = f"{text} Message from seller: {message}"
        await self.notifications.notify_escrow(escrow.buyer_id, escrow.id, escrow.state, text)
        return escrow

    async def release_escrow(
        self,
        escrow_id: str,
        signature: str,
        signer_id: str,
        signed_tx: Optional[bytes] = None,
    ) -> Escrow:
        """Release the funds to the seller.

        The signer must be the buyer or an independent arbiter, and the
        signature must verify against the signer's registered key.

        Raises:
            NotFoundError, InvalidStateError, UnauthorizedError,
            ChainSubmissionFailedError
        """
        async with self.lock_for(escrow_id):
            escrow = self._load(escrow_id)
            self._require_state(escrow, {EscrowState.DELIVERED}, "release")
            self._authorize(escrow, "release", signer_id, signature, party_id=escrow.buyer_id)
            await self.chain.submit_settlement(escrow.to_dict(), "release", signed_tx)
            escrow = self._transition(escrow, EscrowState.RELEASED, signer_id, "released to seller")

        await self._notify_parties(
            escrow,
            f'Payment for escrow "{escrow.id}" has been released to the seller.',
            f'Payment for escrow "{escrow.id}" has been released to your wallet.',
        )
        return escrow

    async def refund_escrow(
        self,
        escrow_id: str,
        signature: str,
        signer_id: str,
        reason: Optional[str] = None,
        signed_tx: Optional[bytes] = None,
    ) -> Escrow:
        """Refund the funds to the buyer.

        The signer must be the seller (giving up the payment) or an
        independent arbiter. ``SYSTEM`` is not accepted here; expired
        escrows go through ``system_refund``.
        """
        async with self.lock_for(escrow_id):
            escrow = self._load(escrow_id)
            self._require_state(escrow, REFUNDABLE_STATES, "refund")
            self._authorize(escrow, "refund", signer_id, signature, party_id=escrow.seller_id)
            await self.chain.submit_settlement(escrow.to_dict(), "refund", signed_tx)
            escrow = self._transition(
                escrow, EscrowState.REFUNDED, signer_id, reason or "refunded to buyer"
            )

        await self._refund_notifications(escrow)
        return escrow

    async def system_refund(self, escrow_id: str, reason: str = "Escrow expired") -> Escrow:
        """Refund on behalf of the system after expiry. No signature involved."""
        async with self.lock_for(escrow_id):
            escrow = self._load(escrow_id)
            self._require_state(escrow, REFUNDABLE_STATES, "refund")
            logger.info(
                f"Automatic refund | id={escrow.id} | signer={SYSTEM_SIGNER} | "
                f"signature={AUTOMATIC_TIMEOUT_SIGNATURE} | reason={reason}"
            )
            await self.chain.submit_settlement(escrow.to_dict(), "refund")
            escrow = self._transition(escrow, EscrowState.REFUNDED, SYSTEM_SIGNER, reason)

        await self._refund_notifications(escrow)
        return escrow

    async def _refund_notifications(self, escrow: Escrow) -> None:
        await self._notify_parties(
            escrow,
            f'Payment for escrow "{escrow.id}" has been refunded to your wallet.',
            f'Payment for escrow "{escrow.id}" has been refunded to the buyer.',
        )

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_escrow(self, escrow_id: str) -> Escrow:
        return self._load(escrow_id)

    async def list_escrows_for_user(self, user_id: str) -> List[Escrow]:
        """Escrows where the user is buyer or seller."""
        records = self.store.find(ESCROWS, buyer_id=user_id) + self.store.find(
            ESCROWS, seller_id=user_id
        )
        unique = {record["id"]: record for record in records}
        return self._parse_all(unique.values())

    async def get_transitions(self, escrow_id: str) -> List[EscrowTransition]:
        """Audit trail of an escrow, oldest first."""
        self._load(escrow_id)
        transitions = [
            EscrowTransition.from_dict(r)
            for r in self.store.find(ESCROW_TRANSITIONS, escrow_id=escrow_id)
        ]
        transitions.sort(key=lambda t: t.created_at)
        return transitions

    async def list_expired_locked(self, now: Optional[datetime] = None) -> List[Escrow]:
        """LOCKED escrows whose expiry has passed."""
        now = now or utc_now()
        escrows = self._parse_all(self.store.find(ESCROWS, state=EscrowState.LOCKED.value))
        return [e for e in escrows if e.is_expired(now)]
