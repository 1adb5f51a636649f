"""
Dispute service.

A dispute moves OPEN -> RESOLVED -> CLOSED. Resolving it settles the
escrow: the arbiter's signature is passed on to the escrow service's
release or refund, and the dispute only records the decision once that
settlement has succeeded.
"""

import asyncio
import logging
import weakref
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Dict, List, Optional, Union

from gigescrow.config import EscrowConfig
from gigescrow.disputes.arbiters import ArbiterDirectory
from gigescrow.disputes.models import Dispute, DisputeOutcome, DisputeStatus
from gigescrow.errors import (
    ConflictError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from gigescrow.escrow.models import EscrowState
from gigescrow.notifications.service import NotificationService
from gigescrow.storage.base import DISPUTES, RecordStore
from gigescrow.utils import generate_id, utc_now

if TYPE_CHECKING:
    from gigescrow.escrow.service import EscrowService

logger = logging.getLogger(__name__)

DISPUTABLE_STATES = {EscrowState.LOCKED, EscrowState.DELIVERED}


class DisputeService:
    """Dispute lifecycle operations.

    Args:
        store: Record store
        escrows: Escrow service used to settle resolved disputes
        arbiters: Arbiter directory
        notifications: Notification service
        config: Core configuration
    """

    def __init__(
        self,
        store: RecordStore,
        escrows: "EscrowService",
        arbiters: ArbiterDirectory,
        notifications: NotificationService,
        config: Optional[EscrowConfig] = None,
    ):
        self.store = store
        self.escrows = escrows
        self.arbiters = arbiters
        self.notifications = notifications
        self.config = config or EscrowConfig()
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, dispute_id: str) -> asyncio.Lock:
        lock = self._locks.get(dispute_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[dispute_id] = lock
        return lock

    def _load(self, dispute_id: str) -> Dispute:
        record = self.store.get(DISPUTES, dispute_id)
        if record is None:
            raise NotFoundError(f"Dispute {dispute_id} not found")
        return Dispute.from_dict(record)

    def _update(self, dispute: Dispute, changes: Dict) -> Dispute:
        updated = self.store.update(DISPUTES, dispute.id, changes, expected_version=dispute.version)
        if updated is None:
            raise NotFoundError(f"Dispute {dispute.id} not found")
        return Dispute.from_dict(updated)

    async def open_dispute(self, escrow_id: str, reason: str, complainant_id: str) -> Dispute:
        """Open a dispute against an escrow.

        Raises:
            InvalidArgumentError: Empty reason
            NotFoundError: Escrow does not exist
            UnauthorizedError: Complainant is neither buyer nor seller
            InvalidStateError: Escrow is not LOCKED or DELIVERED
            ConflictError: The escrow already has a dispute
        """
        if not reason or not reason.strip():
            raise InvalidArgumentError("Dispute reason is required")

        # Serialized with the escrow's own transitions and settlements
        async with self.escrows.lock_for(escrow_id):
            escrow = await self.escrows.get_escrow(escrow_id)
            if not escrow.is_party(complainant_id):
                raise UnauthorizedError("Only the buyer or seller can open a dispute")
            if escrow.state_enum not in DISPUTABLE_STATES:
                raise InvalidStateError(
                    f"Escrow {escrow_id} must be LOCKED or DELIVERED to dispute, not {escrow.state}"
                )
            if self.store.find(DISPUTES, escrow_id=escrow_id):
                raise ConflictError(f"A dispute already exists for escrow {escrow_id}")

            arbiter = self.arbiters.assign(escrow)
            dispute = Dispute(
                id=generate_id(),
                escrow_id=escrow_id,
                reason=reason.strip(),
                complainant_id=complainant_id,
                assigned_arbiter_id=arbiter.id if arbiter else None,
            )
            dispute = Dispute.from_dict(self.store.insert(DISPUTES, dispute.to_dict()))

        logger.info(
            f"Dispute opened | id={dispute.id} | escrow={escrow_id} | "
            f"complainant={complainant_id} | arbiter={dispute.assigned_arbiter_id}"
        )
        message = f'A dispute has been opened for escrow "{escrow_id}". Reason: {dispute.reason}'
        for user_id in (escrow.buyer_id, escrow.seller_id):
            await self.notifications.notify_dispute(user_id, dispute.id, dispute.status, message)
        if dispute.assigned_arbiter_id:
            await self.notifications.notify_dispute(
                dispute.assigned_arbiter_id,
                dispute.id,
                dispute.status,
                f'You have been assigned to arbitrate the dispute on escrow "{escrow_id}".',
            )
        return dispute

    async def resolve_dispute(
        self,
        dispute_id: str,
        arbiter_id: str,
        signature: str,
        outcome: Union[str, DisputeOutcome],
    ) -> Dispute:
        """Decide a dispute and settle its escrow accordingly.

        If settling the escrow fails (for example because it is no longer
        in a state that allows the outcome) the error propagates and the
        dispute stays OPEN.
        """
        try:
            outcome = DisputeOutcome(outcome)
        except ValueError:
            raise InvalidArgumentError(f"Invalid outcome: {outcome}")

        async with self._lock_for(dispute_id):
            dispute = self._load(dispute_id)
            if dispute.status != DisputeStatus.OPEN.value:
                raise InvalidStateError(f"Dispute {dispute_id} is {dispute.status}, not OPEN")

            escrow = await self.escrows.get_escrow(dispute.escrow_id)
            if not self.arbiters.is_authorized(arbiter_id):
                raise UnauthorizedError(f"{arbiter_id} is not an authorized arbiter")
            if escrow.is_party(arbiter_id):
                raise UnauthorizedError("An arbiter cannot decide a dispute they are party to")
            if dispute.assigned_arbiter_id and dispute.assigned_arbiter_id != arbiter_id:
                raise UnauthorizedError(
                    f"Dispute {dispute_id} is assigned to arbiter {dispute.assigned_arbiter_id}"
                )

            if outcome == DisputeOutcome.RELEASE_TO_SELLER:
                escrow = await self.escrows.release_escrow(escrow.id, signature, arbiter_id)
            else:
                escrow = await self.escrows.refund_escrow(
                    escrow.id, signature, arbiter_id, reason=f"Dispute {dispute_id} resolved"
                )

            dispute = self._update(
                dispute,
                {
                    "status": DisputeStatus.RESOLVED.value,
                    "arbiter_id": arbiter_id,
                    "resolution": outcome.value,
                },
            )

        logger.info(
            f"Dispute resolved | id={dispute_id} | arbiter={arbiter_id} | "
            f"outcome={outcome.value} | escrow_state={escrow.state}"
        )
        message = (
            f'The dispute for escrow "{escrow.id}" has been resolved: '
            f"{outcome.value.replace('_', ' ').lower()}."
        )
        for user_id in (escrow.buyer_id, escrow.seller_id):
            await self.notifications.notify_dispute(user_id, dispute.id, dispute.status, message)
        return dispute

    async def close_dispute(self, dispute_id: str) -> Dispute:
        """Archive a resolved dispute."""
        async with self._lock_for(dispute_id):
            dispute = self._load(dispute_id)
            if not dispute.can_transition_to(DisputeStatus.CLOSED):
                raise InvalidStateError(
                    f"Dispute {dispute_id} must be RESOLVED to close, not {dispute.status}"
                )
            dispute = self._update(dispute, {"status": DisputeStatus.CLOSED.value})
        logger.info(f"Dispute closed | id={dispute_id}")
        return dispute

    async def get_dispute(self, dispute_id: str) -> Dispute:
        return self._load(dispute_id)

    async def list_disputes_for_escrow(self, escrow_id: str) -> List[Dispute]:
        disputes = [Dispute.from_dict(r) for r in self.store.find(DISPUTES, escrow_id=escrow_id)]
        disputes.sort(key=lambda d: d.created_at)
        return disputes

    async def list_open_disputes(self) -> List[Dispute]:
        disputes = [
            Dispute.from_dict(r)
            for r in self.store.find(DISPUTES, status=DisputeStatus.OPEN.value)
        ]
        disputes.sort(key=lambda d: d.created_at)
        return disputes

    async def list_stale_disputes(
        self, older_than: Optional[timedelta] = None, now: Optional[datetime] = None
    ) -> List[Dispute]:
        """OPEN disputes older than ``older_than`` (default: the resolution window)."""
        older_than = older_than or timedelta(days=self.config.dispute_resolution_days)
        cutoff = (now or utc_now()) - older_than
        return [d for d in await self.list_open_disputes() if d.created_at <= cutoff]
