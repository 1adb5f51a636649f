"""Tests for the expiry monitor (automatic refunds)."""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from gigescrow.errors import ChainSubmissionFailedError
from gigescrow.storage.base import ESCROWS
from gigescrow.utils import utc_now

from conftest import BUYER_ID, SELLER_ID

LATER = timedelta(days=30)


class TestSweep:
    """Tests for ExpiryMonitor.sweep."""

    @pytest.mark.asyncio
    async def test_refunds_expired_locked(self, market, services):
        escrow = await market.locked(expires_in=timedelta(days=1))

        report = await services.monitor.sweep(now=utc_now() + LATER)

        assert report.refunded == [escrow.id]
        assert report.errors == []
        refunded = await services.escrows.get_escrow(escrow.id)
        assert refunded.state == "REFUNDED"
        transitions = await services.escrows.get_transitions(escrow.id)
        assert transitions[-1].actor_id == "SYSTEM"
        assert market.notifications_for(BUYER_ID)[-1] == "ESCROW_REFUNDED"
        assert market.notifications_for(SELLER_ID)[-1] == "ESCROW_REFUNDED"

    @pytest.mark.asyncio
    async def test_idempotent(self, market, services):
        """A second sweep finds nothing to do."""
        await market.locked(expires_in=timedelta(days=1))
        now = utc_now() + LATER

        await services.monitor.sweep(now=now)
        second = await services.monitor.sweep(now=now)

        assert second.refunded == []
        assert second.actions == []

    @pytest.mark.asyncio
    async def test_ignores_unexpired_and_other_states(self, market, services):
        await market.locked(expires_in=timedelta(days=60))
        await market.created(expires_in=timedelta(days=1))
        await market.delivered(expires_in=timedelta(days=1))

        report = await services.monitor.sweep(now=utc_now() + LATER)

        assert report.actions == []

    @pytest.mark.asyncio
    async def test_dry_run(self, market, services):
        escrow = await market.locked(expires_in=timedelta(days=1))

        report = await services.monitor.sweep(now=utc_now() + LATER, dry_run=True)

        assert report.would_refund == [escrow.id]
        assert report.refunded == []
        assert (await services.escrows.get_escrow(escrow.id)).state == "LOCKED"
        assert services.monitor.last_report is None

    @pytest.mark.asyncio
    async def test_skips_disputed(self, market, services):
        """The arbiter owns settlement of a disputed escrow."""
        escrow, dispute = await market.disputed(state="locked")

        report = await services.monitor.sweep(now=utc_now() + LATER)

        assert report.skipped == [escrow.id]
        assert dispute.id in report.actions[0].reason
        assert (await services.escrows.get_escrow(escrow.id)).state == "LOCKED"

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_sweep(self, market, services):
        first = await market.locked(expires_in=timedelta(days=1))
        second = await market.locked(expires_in=timedelta(days=1))

        with patch.object(
            services.chain,
            "submit_settlement",
            new_callable=AsyncMock,
            side_effect=[ChainSubmissionFailedError("node rejected"), None],
        ):
            report = await services.monitor.sweep(now=utc_now() + LATER)

        assert report.refunded == [second.id]
        assert [a.escrow_id for a in report.errors] == [first.id]
        assert "ChainSubmissionFailed" in report.errors[0].reason
        assert (await services.escrows.get_escrow(first.id)).state == "LOCKED"

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_stop_sweep(self, market, services):
        first = await market.locked(expires_in=timedelta(days=1))
        second = await market.locked(expires_in=timedelta(days=1))

        with patch.object(
            services.chain,
            "submit_settlement",
            new_callable=AsyncMock,
            side_effect=[RuntimeError("socket closed"), None],
        ):
            report = await services.monitor.sweep(now=utc_now() + LATER)

        assert report.refunded == [second.id]
        assert [a.escrow_id for a in report.errors] == [first.id]
        assert report.errors[0].reason == "RuntimeError: socket closed"

    @pytest.mark.asyncio
    async def test_malformed_record_does_not_stop_sweep(self, market, services):
        """A LOCKED record missing its funding transaction is left out of the sweep."""
        broken = await market.created(expires_in=timedelta(days=1))
        services.store.update(ESCROWS, broken.id, {"state": "LOCKED"})
        good = await market.locked(expires_in=timedelta(days=1))

        report = await services.monitor.sweep(now=utc_now() + LATER)

        assert report.refunded == [good.id]
        assert (await services.escrows.get_escrow(good.id)).state == "REFUNDED"
        assert services.store.get(ESCROWS, broken.id)["state"] == "LOCKED"

    @pytest.mark.asyncio
    async def test_report_dict(self, market, services):
        escrow = await market.locked(expires_in=timedelta(days=1))
        report = (await services.monitor.sweep(now=utc_now() + LATER)).to_dict()

        assert report["checked"] == 1
        assert report["refunded"] == [escrow.id]
        assert report["errors"] == []
        assert report["actions"][0]["action"] == "refunded"
        assert report["dry_run"] is False


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, services):
        health = await services.monitor.health()
        assert health["status"] == "healthy"
        assert health["expired_locked_escrows"] == 0
        assert health["last_sweep_at"] is None

    @pytest.mark.asyncio
    async def test_action_needed(self, market, services):
        await market.locked(expires_in=timedelta(days=1))
        await market.disputed()

        health = await services.monitor.health(now=utc_now() + LATER)

        assert health["status"] == "action_needed"
        assert health["expired_locked_escrows"] == 1
        assert health["stale_disputes"] == 1

    @pytest.mark.asyncio
    async def test_last_sweep_recorded(self, services):
        await services.monitor.sweep()
        assert (await services.monitor.health())["last_sweep_at"] is not None
