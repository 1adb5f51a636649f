"""Tests for the escrow lifecycle service."""

import asyncio
import gc
from datetime import timedelta
from decimal import Decimal

import pytest

from gigescrow.chain.datum import Constr, decode_plutus
from gigescrow.errors import (
    ChainSubmissionFailedError,
    ChainUnavailableError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    StorageError,
    UnauthorizedError,
    VerificationFailedError,
)
from gigescrow.escrow.models import EscrowState
from gigescrow.storage.base import ESCROWS, USERS
from gigescrow.utils import utc_now

from conftest import (
    ARBITER_ID,
    BUYER_ID,
    CONTRACT_ADDRESS,
    GIG_ID,
    SELLER_ID,
    STRANGER_ID,
)


class TestCreateEscrow:
    """Tests for escrow creation."""

    @pytest.mark.asyncio
    async def test_create(self, market):
        """A new escrow starts CREATED with the gig's seller."""
        escrow = await market.created(amount=250)

        assert escrow.state == "CREATED"
        assert escrow.gig_id == GIG_ID
        assert escrow.buyer_id == BUYER_ID
        assert escrow.seller_id == SELLER_ID
        assert escrow.amount == Decimal("250")
        assert escrow.version == 1

    @pytest.mark.asyncio
    async def test_create_notifies_seller(self, market):
        await market.created()
        assert market.notifications_for(SELLER_ID) == ["ESCROW_CREATED"]
        assert market.notifications_for(BUYER_ID) == []

    @pytest.mark.asyncio
    async def test_create_records_transition(self, market, services):
        escrow = await market.created()
        transitions = await services.escrows.get_transitions(escrow.id)
        assert [(t.from_state, t.to_state) for t in transitions] == [(None, "CREATED")]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, "-5", "abc"])
    async def test_invalid_amount_persists_nothing(self, market, services, amount):
        with pytest.raises(InvalidArgumentError):
            await market.created(amount=amount)
        assert services.store.all(ESCROWS) == []

    @pytest.mark.asyncio
    async def test_expiry_in_past(self, market, services):
        with pytest.raises(InvalidArgumentError, match="future"):
            await market.created(expires_in=timedelta(minutes=-1))
        assert services.store.all(ESCROWS) == []

    @pytest.mark.asyncio
    async def test_unknown_gig(self, services):
        with pytest.raises(NotFoundError, match="Gig"):
            await services.escrows.create_escrow(
                "missing-gig", BUYER_ID, 10, utc_now() + timedelta(days=1)
            )

    @pytest.mark.asyncio
    async def test_unknown_buyer(self, services):
        with pytest.raises(NotFoundError, match="Buyer"):
            await services.escrows.create_escrow(
                GIG_ID, "ghost", 10, utc_now() + timedelta(days=1)
            )

    @pytest.mark.asyncio
    async def test_seller_cannot_buy_own_gig(self, services):
        with pytest.raises(InvalidArgumentError, match="own gig"):
            await services.escrows.create_escrow(
                GIG_ID, SELLER_ID, 10, utc_now() + timedelta(days=1)
            )

    @pytest.mark.asyncio
    async def test_get_round_trip(self, market, services):
        """get_escrow returns what create_escrow returned."""
        escrow = await market.created()
        assert await services.escrows.get_escrow(escrow.id) == escrow

    @pytest.mark.asyncio
    async def test_get_missing(self, services):
        with pytest.raises(NotFoundError):
            await services.escrows.get_escrow("nope")


class TestLockPayload:
    """Tests for the payload handed to the buyer's wallet."""

    @pytest.mark.asyncio
    async def test_payload(self, market, services):
        escrow = await market.created(amount="12.5")
        payload = await services.escrows.build_lock_payload(escrow.id)

        assert payload.contract_address == CONTRACT_ADDRESS
        assert payload.lovelace == 12_500_000
        assert payload.redeemers == {"release": 0, "refund": 1}

        datum = decode_plutus(payload.datum_cbor)
        assert isinstance(datum, Constr)
        assert datum.index == 0
        buyer_pkh, seller_pkh, arbiter_pkh, expiry_slot, escrow_id = datum.fields
        assert buyer_pkh == bytes([0x01]) * 28
        assert seller_pkh == bytes([0x02]) * 28
        assert arbiter_pkh == bytes([0x09]) * 28
        assert expiry_slot == payload.expiry_slot
        assert escrow_id == escrow.id.encode("utf-8")

    @pytest.mark.asyncio
    async def test_payload_requires_wallets(self, market, services):
        escrow = await market.created()
        services.store.update(USERS, BUYER_ID, {"wallet_address": None})
        with pytest.raises(InvalidArgumentError, match="buyer has no wallet"):
            await services.escrows.build_lock_payload(escrow.id)


class TestLockEscrow:
    """Tests for CREATED -> LOCKED."""

    @pytest.mark.asyncio
    async def test_lock(self, market):
        escrow = await market.locked()
        assert escrow.state == "LOCKED"
        assert escrow.on_chain_tx_hash
        assert escrow.version == 2
        assert market.notifications_for(BUYER_ID) == ["ESCROW_LOCKED"]
        assert market.notifications_for(SELLER_ID) == ["ESCROW_CREATED", "ESCROW_LOCKED"]

    @pytest.mark.asyncio
    async def test_lock_twice(self, market, services, chain):
        escrow = await market.locked()
        chain.add_lock("b" * 64, 100_000_000)
        with pytest.raises(InvalidStateError, match="must be CREATED"):
            await services.escrows.lock_escrow(escrow.id, "b" * 64)
        assert (await services.escrows.get_escrow(escrow.id)).on_chain_tx_hash == escrow.on_chain_tx_hash

    @pytest.mark.asyncio
    async def test_lock_with_transaction_of_another_escrow(self, market, services):
        """A funding transaction already recorded on one escrow cannot lock a second."""
        first = await market.locked()
        second = await market.created()

        with pytest.raises(VerificationFailedError, match="already locks another escrow"):
            await services.escrows.lock_escrow(second.id, first.on_chain_tx_hash)

        assert (await services.escrows.get_escrow(second.id)).state == "CREATED"
        assert len(services.store.find(ESCROWS, on_chain_tx_hash=first.on_chain_tx_hash)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_locks_with_one_transaction(self, market, services, chain):
        first = await market.created()
        second = await market.created()
        chain.add_lock("a" * 64, 100_000_000)

        results = await asyncio.gather(
            services.escrows.lock_escrow(first.id, "a" * 64),
            services.escrows.lock_escrow(second.id, "a" * 64),
            return_exceptions=True,
        )

        assert [type(r) for r in results].count(VerificationFailedError) == 1
        assert len(services.store.find(ESCROWS, state="LOCKED")) == 1

    @pytest.mark.asyncio
    async def test_lock_unknown_transaction(self, market, services):
        """A transaction the chain does not know leaves the escrow CREATED."""
        escrow = await market.created()
        with pytest.raises(VerificationFailedError):
            await services.escrows.lock_escrow(escrow.id, "f" * 64)
        assert (await services.escrows.get_escrow(escrow.id)).state == "CREATED"

    @pytest.mark.asyncio
    async def test_lock_failed_scripts(self, market, services, chain):
        escrow = await market.created()
        chain.add_lock("c" * 64, 100_000_000, valid=False)
        with pytest.raises(VerificationFailedError):
            await services.escrows.lock_escrow(escrow.id, "c" * 64)

    @pytest.mark.asyncio
    async def test_lock_underfunded(self, market, services, chain):
        """The contract output must carry at least the escrow amount."""
        escrow = await market.created(amount=100)
        chain.add_lock("d" * 64, 99_999_999)
        with pytest.raises(VerificationFailedError):
            await services.escrows.lock_escrow(escrow.id, "d" * 64)

    @pytest.mark.asyncio
    async def test_lock_paid_elsewhere(self, market, services, chain):
        from conftest import SELLER_ADDRESS

        escrow = await market.created(amount=100)
        chain.add_lock("e" * 64, 100_000_000, address=SELLER_ADDRESS)
        with pytest.raises(VerificationFailedError):
            await services.escrows.lock_escrow(escrow.id, "e" * 64)

    @pytest.mark.asyncio
    async def test_lock_chain_unavailable(self, market, services, chain):
        """Retries are exhausted -> ChainUnavailable, escrow untouched."""
        escrow = await market.created()
        chain.add_lock("a" * 64, 100_000_000)
        chain.outages = 10
        with pytest.raises(ChainUnavailableError):
            await services.escrows.lock_escrow(escrow.id, "a" * 64)
        assert (await services.escrows.get_escrow(escrow.id)).state == "CREATED"

    @pytest.mark.asyncio
    async def test_lock_recovers_from_transient_outage(self, market, services, chain):
        escrow = await market.created()
        chain.add_lock("a" * 64, 100_000_000)
        chain.outages = 1
        locked = await services.escrows.lock_escrow(escrow.id, "a" * 64)
        assert locked.state == "LOCKED"

    @pytest.mark.asyncio
    async def test_lock_requires_hash(self, market, services):
        escrow = await market.created()
        with pytest.raises(InvalidArgumentError):
            await services.escrows.lock_escrow(escrow.id, "")

    @pytest.mark.asyncio
    async def test_lock_missing_escrow(self, services):
        with pytest.raises(NotFoundError):
            await services.escrows.lock_escrow("nope", "a" * 64)


class TestDeliverEscrow:
    @pytest.mark.asyncio
    async def test_deliver(self, market):
        escrow = await market.delivered()
        assert escrow.state == "DELIVERED"
        assert escrow.delivery_hash.startswith("bafy")
        assert escrow.delivery_message == "Final files attached"
        assert market.notifications_for(BUYER_ID)[-1] == "ESCROW_DELIVERED"

    @pytest.mark.asyncio
    async def test_deliver_requires_lock(self, market, services):
        escrow = await market.created()
        with pytest.raises(InvalidStateError, match="must be LOCKED"):
            await services.escrows.deliver_escrow(escrow.id, "Qm")

    @pytest.mark.asyncio
    async def test_deliver_twice(self, market, services):
        escrow = await market.delivered()
        with pytest.raises(InvalidStateError):
            await services.escrows.deliver_escrow(escrow.id, "Qm-other")
        assert (await services.escrows.get_escrow(escrow.id)).delivery_hash == escrow.delivery_hash


class TestReleaseEscrow:
    """Tests for DELIVERED -> RELEASED."""

    @pytest.mark.asyncio
    async def test_release_by_buyer(self, market, services):
        """End-to-end: create, lock, deliver, release."""
        escrow = await market.delivered()
        signature = market.sign("release", escrow.id, BUYER_ID)

        released = await services.escrows.release_escrow(escrow.id, signature, BUYER_ID)

        assert released.state == "RELEASED"
        assert market.notifications_for(SELLER_ID)[-1] == "ESCROW_RELEASED"
        assert market.notifications_for(BUYER_ID)[-1] == "ESCROW_RELEASED"
        transitions = await services.escrows.get_transitions(escrow.id)
        assert [t.to_state for t in transitions] == ["CREATED", "LOCKED", "DELIVERED", "RELEASED"]
        assert transitions[-1].actor_id == BUYER_ID

    @pytest.mark.asyncio
    async def test_release_by_arbiter(self, market, services):
        escrow = await market.delivered()
        signature = market.sign("release", escrow.id, ARBITER_ID)
        released = await services.escrows.release_escrow(escrow.id, signature, ARBITER_ID)
        assert released.state == "RELEASED"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("signer_id", [SELLER_ID, STRANGER_ID])
    async def test_release_by_other_signer(self, market, services, signer_id):
        escrow = await market.delivered()
        signature = market.sign("release", escrow.id, signer_id)
        with pytest.raises(UnauthorizedError):
            await services.escrows.release_escrow(escrow.id, signature, signer_id)
        assert (await services.escrows.get_escrow(escrow.id)).state == "DELIVERED"

    @pytest.mark.asyncio
    async def test_release_bad_signature(self, market, services):
        escrow = await market.delivered()
        with pytest.raises(UnauthorizedError, match="Invalid signature"):
            await services.escrows.release_escrow(escrow.id, "bm90LWEtc2lnbmF0dXJl", BUYER_ID)

    @pytest.mark.asyncio
    async def test_release_with_refund_signature(self, market, services):
        """Signatures are bound to the action they authorize."""
        escrow = await market.delivered()
        signature = market.sign("refund", escrow.id, BUYER_ID)
        with pytest.raises(UnauthorizedError, match="Invalid signature"):
            await services.escrows.release_escrow(escrow.id, signature, BUYER_ID)

    @pytest.mark.asyncio
    async def test_release_with_other_escrow_signature(self, market, services):
        first = await market.delivered()
        second = await market.delivered()
        signature = market.sign("release", first.id, BUYER_ID)
        with pytest.raises(UnauthorizedError):
            await services.escrows.release_escrow(second.id, signature, BUYER_ID)

    @pytest.mark.asyncio
    async def test_release_before_delivery(self, market, services):
        escrow = await market.locked()
        signature = market.sign("release", escrow.id, BUYER_ID)
        with pytest.raises(InvalidStateError, match="must be DELIVERED"):
            await services.escrows.release_escrow(escrow.id, signature, BUYER_ID)

    @pytest.mark.asyncio
    async def test_release_submits_signed_transaction(self, market, services, chain):
        escrow = await market.delivered()
        signature = market.sign("release", escrow.id, BUYER_ID)
        await services.escrows.release_escrow(escrow.id, signature, BUYER_ID, signed_tx=b"\x84\xa4")
        assert chain.submitted == [b"\x84\xa4"]
        submit = chain.requests[-1]
        assert submit.headers["content-type"] == "application/cbor"

    @pytest.mark.asyncio
    async def test_release_rejected_submission(self, market, services, chain):
        """A rejected settlement transaction leaves the escrow DELIVERED."""
        escrow = await market.delivered()
        chain.reject_submissions = True
        signature = market.sign("release", escrow.id, BUYER_ID)
        with pytest.raises(ChainSubmissionFailedError):
            await services.escrows.release_escrow(escrow.id, signature, BUYER_ID, signed_tx=b"\x84")
        assert (await services.escrows.get_escrow(escrow.id)).state == "DELIVERED"

    @pytest.mark.asyncio
    async def test_concurrent_release(self, market, services):
        """Two simultaneous releases: exactly one wins."""
        escrow = await market.delivered()
        signature = market.sign("release", escrow.id, BUYER_ID)

        results = await asyncio.gather(
            services.escrows.release_escrow(escrow.id, signature, BUYER_ID),
            services.escrows.release_escrow(escrow.id, signature, BUYER_ID),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], InvalidStateError)
        transitions = await services.escrows.get_transitions(escrow.id)
        assert [t.to_state for t in transitions].count("RELEASED") == 1


class TestRefundEscrow:
    """Tests for {LOCKED, DELIVERED} -> REFUNDED."""

    @pytest.mark.asyncio
    async def test_refund_locked_by_seller(self, market, services):
        escrow = await market.locked()
        signature = market.sign("refund", escrow.id, SELLER_ID)
        refunded = await services.escrows.refund_escrow(
            escrow.id, signature, SELLER_ID, reason="Cannot take this job"
        )
        assert refunded.state == "REFUNDED"
        assert market.notifications_for(BUYER_ID)[-1] == "ESCROW_REFUNDED"
        transitions = await services.escrows.get_transitions(escrow.id)
        assert transitions[-1].reason == "Cannot take this job"

    @pytest.mark.asyncio
    async def test_refund_delivered_by_arbiter(self, market, services):
        escrow = await market.delivered()
        signature = market.sign("refund", escrow.id, ARBITER_ID)
        refunded = await services.escrows.refund_escrow(escrow.id, signature, ARBITER_ID)
        assert refunded.state == "REFUNDED"
        assert refunded.delivery_hash == escrow.delivery_hash

    @pytest.mark.asyncio
    async def test_buyer_cannot_refund_self(self, market, services):
        escrow = await market.locked()
        signature = market.sign("refund", escrow.id, BUYER_ID)
        with pytest.raises(UnauthorizedError):
            await services.escrows.refund_escrow(escrow.id, signature, BUYER_ID)

    @pytest.mark.asyncio
    async def test_system_signer_rejected(self, market, services):
        """SYSTEM refunds only happen through the expiry monitor."""
        escrow = await market.locked()
        with pytest.raises(UnauthorizedError, match="reserved"):
            await services.escrows.refund_escrow(escrow.id, "AUTOMATIC_TIMEOUT", "SYSTEM")

    @pytest.mark.asyncio
    async def test_refund_created(self, market, services):
        escrow = await market.created()
        signature = market.sign("refund", escrow.id, SELLER_ID)
        with pytest.raises(InvalidStateError):
            await services.escrows.refund_escrow(escrow.id, signature, SELLER_ID)

    @pytest.mark.asyncio
    async def test_refund_after_release(self, market, services):
        escrow = await market.delivered()
        await services.escrows.release_escrow(
            escrow.id, market.sign("release", escrow.id, BUYER_ID), BUYER_ID
        )
        with pytest.raises(InvalidStateError):
            await services.escrows.refund_escrow(
                escrow.id, market.sign("refund", escrow.id, SELLER_ID), SELLER_ID
            )

    @pytest.mark.asyncio
    async def test_system_refund(self, market, services):
        escrow = await market.locked()
        refunded = await services.escrows.system_refund(escrow.id)
        assert refunded.state == "REFUNDED"
        transitions = await services.escrows.get_transitions(escrow.id)
        assert transitions[-1].actor_id == "SYSTEM"
        assert transitions[-1].reason == "Escrow expired"


class TestQueries:
    @pytest.mark.asyncio
    async def test_list_for_user(self, market, services):
        first = await market.created()
        second = await market.locked()

        buyer_escrows = {e.id for e in await services.escrows.list_escrows_for_user(BUYER_ID)}
        seller_escrows = {e.id for e in await services.escrows.list_escrows_for_user(SELLER_ID)}

        assert buyer_escrows == {first.id, second.id}
        assert seller_escrows == {first.id, second.id}
        assert await services.escrows.list_escrows_for_user(STRANGER_ID) == []

    @pytest.mark.asyncio
    async def test_list_expired_locked(self, market, services):
        locked = await market.locked(expires_in=timedelta(days=1))
        await market.created(expires_in=timedelta(days=1))

        assert await services.escrows.list_expired_locked() == []
        expired = await services.escrows.list_expired_locked(utc_now() + timedelta(days=2))
        assert [e.id for e in expired] == [locked.id]
        assert expired[0].state_enum == EscrowState.LOCKED

    @pytest.mark.asyncio
    async def test_malformed_record(self, market, services):
        """A record that fails validation is a storage failure, not a crash."""
        escrow = await market.created()
        services.store.update(ESCROWS, escrow.id, {"state": "LOCKED"})

        with pytest.raises(StorageError, match="malformed"):
            await services.escrows.get_escrow(escrow.id)

    @pytest.mark.asyncio
    async def test_lists_leave_out_malformed_records(self, market, services):
        good = await market.locked(expires_in=timedelta(days=1))
        broken = await market.created(expires_in=timedelta(days=1))
        services.store.update(ESCROWS, broken.id, {"state": "LOCKED"})

        mine = await services.escrows.list_escrows_for_user(BUYER_ID)
        expired = await services.escrows.list_expired_locked(utc_now() + timedelta(days=2))

        assert [e.id for e in mine] == [good.id]
        assert [e.id for e in expired] == [good.id]


class TestEscrowLocks:
    """Per-escrow mutexes live only while they are in use."""

    @pytest.mark.asyncio
    async def test_missing_escrows_leave_no_locks(self, services):
        for i in range(500):
            try:
                await services.escrows.deliver_escrow(f"missing-{i}", "bafy")
            except NotFoundError:
                pass
        gc.collect()
        assert len(services.escrows._locks) == 0

    @pytest.mark.asyncio
    async def test_finished_transitions_leave_no_locks(self, market, services):
        await market.delivered()
        gc.collect()
        assert len(services.escrows._locks) == 0

    def test_same_lock_while_referenced(self, services):
        lock = services.escrows.lock_for("escrow-1")
        assert services.escrows.lock_for("escrow-1") is lock
        assert services.escrows.lock_for("escrow-2") is not lock
