"""
Expiry monitor.

Finds LOCKED escrows whose deadline has passed and refunds them on behalf
of the system. Each escrow is handled on its own: one failure is recorded
and the sweep moves on. Escrows under an open dispute are left to their
arbiter. Running a sweep twice refunds nothing the second time, because
the refund itself requires the escrow to still be LOCKED.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from gigescrow.errors import EscrowServiceError, InvalidStateError
from gigescrow.escrow.service import EscrowService
from gigescrow.utils import format_datetime, utc_now

if TYPE_CHECKING:
    from gigescrow.disputes.service import DisputeService

logger = logging.getLogger(__name__)

EXPIRY_REASON = "Escrow expired"

ACTION_REFUNDED = "refunded"
ACTION_WOULD_REFUND = "would_refund"
ACTION_SKIPPED = "skipped"
ACTION_FAILED = "failed"


@dataclass
class SweepAction:
    """What the sweep did (or would do) with one expired escrow."""

    escrow_id: str
    action: str
    reason: str
    expires_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "escrow_id": self.escrow_id,
            "action": self.action,
            "reason": self.reason,
            "expires_at": format_datetime(self.expires_at),
        }


@dataclass
class SweepReport:
    """Outcome of one expiry sweep."""

    checked_at: datetime
    dry_run: bool = False
    actions: List[SweepAction] = field(default_factory=list)

    def _ids(self, action: str) -> List[str]:
        return [a.escrow_id for a in self.actions if a.action == action]

    @property
    def refunded(self) -> List[str]:
        return self._ids(ACTION_REFUNDED)

    @property
    def would_refund(self) -> List[str]:
        return self._ids(ACTION_WOULD_REFUND)

    @property
    def skipped(self) -> List[str]:
        return self._ids(ACTION_SKIPPED)

    @property
    def errors(self) -> List[SweepAction]:
        return [a for a in self.actions if a.action == ACTION_FAILED]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked_at": format_datetime(self.checked_at),
            "dry_run": self.dry_run,
            "checked": len(self.actions),
            "refunded": self.refunded,
            "would_refund": self.would_refund,
            "skipped": self.skipped,
            "errors": [{"escrow_id": a.escrow_id, "error": a.reason} for a in self.errors],
            "actions": [a.to_dict() for a in self.actions],
        }


class ExpiryMonitor:
    """Refunds expired LOCKED escrows.

    Args:
        escrows: Escrow service performing the refunds
        disputes: Optional dispute service, used for health reporting
    """

    def __init__(self, escrows: EscrowService, disputes: Optional["DisputeService"] = None):
        self.escrows = escrows
        self.disputes = disputes
        self.last_report: Optional[SweepReport] = None

    async def sweep(self, now: Optional[datetime] = None, dry_run: bool = False) -> SweepReport:
        """Run one sweep.

        Args:
            now: Reference time (default: current UTC time)
            dry_run: Report what would be refunded without changing anything
        """
        now = now or utc_now()
        report = SweepReport(checked_at=now, dry_run=dry_run)

        for escrow in await self.escrows.list_expired_locked(now):
            dispute = self.escrows.open_dispute_for(escrow.id)
            if dispute is not None:
                report.actions.append(
                    SweepAction(
                        escrow.id, ACTION_SKIPPED, f"open dispute {dispute['id']}", escrow.expires_at
                    )
                )
                continue

            if dry_run:
                report.actions.append(
                    SweepAction(escrow.id, ACTION_WOULD_REFUND, EXPIRY_REASON, escrow.expires_at)
                )
                continue

            try:
                await self.escrows.system_refund(escrow.id, EXPIRY_REASON)
            except InvalidStateError as e:
                # Moved on since the scan, e.g. a concurrent sweep refunded it
                report.actions.append(SweepAction(escrow.id, ACTION_SKIPPED, e.message, escrow.expires_at))
            except EscrowServiceError as e:
                logger.error(f"Automatic refund failed | escrow={escrow.id} | {e.kind}: {e.message}")
                report.actions.append(
                    SweepAction(escrow.id, ACTION_FAILED, f"{e.kind}: {e.message}", escrow.expires_at)
                )
            except Exception as e:
                logger.exception(f"Automatic refund crashed | escrow={escrow.id}")
                report.actions.append(
                    SweepAction(
                        escrow.id, ACTION_FAILED, f"{type(e).__name__}: {e}", escrow.expires_at
                    )
                )
            else:
                report.actions.append(
                    SweepAction(escrow.id, ACTION_REFUNDED, EXPIRY_REASON, escrow.expires_at)
                )

        logger.info(
            f"Expiry sweep complete | dry_run={dry_run} | refunded={len(report.refunded)} | "
            f"would_refund={len(report.would_refund)} | skipped={len(report.skipped)} | "
            f"errors={len(report.errors)}"
        )
        if not dry_run:
            self.last_report = report
        return report

    async def health(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Counts of work the monitor (or an arbiter) still has to do."""
        now = now or utc_now()
        expired = await self.escrows.list_expired_locked(now)
        stale = await self.disputes.list_stale_disputes(now=now) if self.disputes else []
        return {
            "status": "healthy" if not (expired or stale) else "action_needed",
            "expired_locked_escrows": len(expired),
            "stale_disputes": len(stale),
            "last_sweep_at": format_datetime(self.last_report.checked_at) if self.last_report else None,
            "checked_at": format_datetime(now),
        }
