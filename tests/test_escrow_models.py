"""Tests for escrow data models and the transition table."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from gigescrow.escrow.models import (
    VALID_ESCROW_TRANSITIONS,
    Escrow,
    EscrowState,
    EscrowTransition,
    can_transition,
)

EXPIRY = datetime(2030, 1, 1, tzinfo=timezone.utc)


def make_escrow(**overrides):
    fields = dict(
        id="1700000000000-abc123def",
        gig_id="gig-1",
        buyer_id="buyer",
        seller_id="seller",
        amount=Decimal("100"),
        expires_at=EXPIRY,
    )
    fields.update(overrides)
    return Escrow(**fields)


class TestTransitionTable:
    """Tests for escrow state transition legality."""

    def test_happy_path(self):
        """CREATED -> LOCKED -> DELIVERED -> RELEASED -> CLOSED is legal."""
        assert can_transition("CREATED", "LOCKED")
        assert can_transition("LOCKED", "DELIVERED")
        assert can_transition("DELIVERED", "RELEASED")
        assert can_transition("RELEASED", "CLOSED")

    def test_refund_paths(self):
        """Refunds are possible from LOCKED and DELIVERED only."""
        assert can_transition(EscrowState.LOCKED, EscrowState.REFUNDED)
        assert can_transition(EscrowState.DELIVERED, EscrowState.REFUNDED)
        assert not can_transition(EscrowState.CREATED, EscrowState.REFUNDED)
        assert not can_transition(EscrowState.RELEASED, EscrowState.REFUNDED)

    def test_no_skipping_or_going_back(self):
        assert not can_transition("CREATED", "DELIVERED")
        assert not can_transition("LOCKED", "RELEASED")
        assert not can_transition("DELIVERED", "LOCKED")

    def test_closed_is_terminal(self):
        assert VALID_ESCROW_TRANSITIONS[EscrowState.CLOSED] == set()
        for state in EscrowState:
            assert not can_transition("CLOSED", state)

    def test_unknown_state(self):
        """Unknown states never transition."""
        assert not can_transition("PENDING", "LOCKED")
        assert not can_transition("LOCKED", "SETTLED")


class TestEscrowValidation:
    """Validation performed at construction."""

    def test_defaults(self):
        escrow = make_escrow()
        assert escrow.state == "CREATED"
        assert escrow.version == 1
        assert escrow.on_chain_tx_hash is None
        assert escrow.delivery_hash is None

    def test_enum_state_is_stored_as_value(self):
        escrow = make_escrow(state=EscrowState.LOCKED, on_chain_tx_hash="abc")
        assert escrow.state == "LOCKED"
        assert escrow.state_enum == EscrowState.LOCKED

    def test_invalid_state(self):
        with pytest.raises(ValueError, match="Invalid state"):
            make_escrow(state="PENDING")

    @pytest.mark.parametrize("amount", ["0", "-1", 0, Decimal("-0.5")])
    def test_amount_must_be_positive(self, amount):
        with pytest.raises(ValueError, match="Amount must be positive"):
            make_escrow(amount=amount)

    def test_amount_parsed_from_string(self):
        assert make_escrow(amount="12.5").amount == Decimal("12.5")

    def test_locked_requires_tx_hash(self):
        with pytest.raises(ValueError, match="on-chain transaction hash"):
            make_escrow(state="LOCKED")

    def test_created_cannot_carry_tx_hash(self):
        with pytest.raises(ValueError, match="cannot carry an on-chain"):
            make_escrow(on_chain_tx_hash="abc")

    def test_delivered_requires_delivery_hash(self):
        with pytest.raises(ValueError, match="requires a delivery hash"):
            make_escrow(state="DELIVERED", on_chain_tx_hash="abc")

    def test_locked_cannot_carry_delivery_hash(self):
        with pytest.raises(ValueError, match="cannot carry a delivery hash"):
            make_escrow(state="LOCKED", on_chain_tx_hash="abc", delivery_hash="Qm")

    def test_refunded_after_delivery_keeps_hash(self):
        """A delivered escrow may still be refunded; the hash is never cleared."""
        escrow = make_escrow(state="REFUNDED", on_chain_tx_hash="abc", delivery_hash="Qm")
        assert escrow.delivery_hash == "Qm"

    def test_naive_expiry_is_utc(self):
        escrow = make_escrow(expires_at="2030-01-01T00:00:00")
        assert escrow.expires_at == EXPIRY


class TestEscrowHelpers:
    def test_is_party(self):
        escrow = make_escrow()
        assert escrow.is_party("buyer")
        assert escrow.is_party("seller")
        assert not escrow.is_party("someone")

    def test_is_expired(self):
        escrow = make_escrow()
        assert not escrow.is_expired(EXPIRY - timedelta(seconds=1))
        assert escrow.is_expired(EXPIRY)
        assert escrow.is_expired(EXPIRY + timedelta(days=1))

    def test_dict_round_trip(self):
        """to_dict output rebuilds an equal escrow."""
        escrow = make_escrow(
            state="DELIVERED",
            on_chain_tx_hash="abc",
            delivery_hash="Qm",
            delivery_message="done",
            version=4,
        )
        record = escrow.to_dict()
        assert record["amount"] == "100"
        assert Escrow.from_dict(record) == escrow

    def test_legacy_record_without_version(self):
        """Records imported from the original data file have no version."""
        record = make_escrow().to_dict()
        del record["version"]
        assert Escrow.from_dict(record).version == 1


class TestEscrowTransition:
    def test_enum_values_are_stored(self):
        transition = EscrowTransition(
            id="t1",
            escrow_id="e1",
            from_state=EscrowState.LOCKED,
            to_state=EscrowState.REFUNDED,
            actor_id="SYSTEM",
        )
        record = transition.to_dict()
        assert record["from_state"] == "LOCKED"
        assert record["to_state"] == "REFUNDED"
        assert EscrowTransition.from_dict(record) == transition
