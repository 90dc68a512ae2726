"""
test_snapshot.py - Unit tests for the snapshot assembler
"""

import pytest
from datetime import datetime

from equity_ledger import (
    assemble_snapshot, CheckpointCache, CorruptionError, ROUNDING_NOTE, EPOCH,
)
from tests.helpers import transfer_event, mint_event, split_event


class TestAssembleSnapshot:

    def test_two_thirds_one_third(self):
        events = [mint_event("alice", 2, 1, 0), mint_event("bob", 1, 1, 1)]
        snap = assemble_snapshot(events, height=1, ledger_id="cet")
        assert [h.address for h in snap.holders] == ["alice", "bob"]
        assert [h.percentage for h in snap.holders] == ["66.666666", "33.333333"]
        assert snap.percentage_sum == "99.999999"
        assert snap.rounding_residual == 1
        assert snap.rounding_note == ROUNDING_NOTE
        assert snap.total_supply == 3
        assert snap.ledger_id == "cet"

    def test_exact_split_has_no_note(self):
        events = [mint_event("alice", 1, 1, 0), mint_event("bob", 3, 1, 1)]
        snap = assemble_snapshot(events, height=1)
        assert snap.rounding_note is None
        assert snap.percentage_sum == "100.000000"

    def test_historical_multiplier(self):
        events = [mint_event("alice", 1000, 1, 0), split_event(7, 7, 2, 1), split_event(3, 21, 3, 2)]
        assert assemble_snapshot(events, 1).holders[0].balance == 1000
        assert assemble_snapshot(events, 2).holders[0].balance == 7000
        top = assemble_snapshot(events, 3).holders[0]
        assert top.balance == 21000
        assert top.base_balance == 1000

    def test_sorted_by_balance_then_address(self):
        events = [
            mint_event("carol", 5, 1, 0),
            mint_event("bob", 10, 1, 1),
            mint_event("alice", 5, 1, 2),
        ]
        snap = assemble_snapshot(events, 1)
        assert [h.address for h in snap.holders] == ["bob", "alice", "carol"]

    def test_empty_supply(self):
        snap = assemble_snapshot([], height=0)
        assert snap.holders == ()
        assert snap.is_empty
        assert snap.total_supply == 0
        assert snap.rounding_note is None
        assert snap.percentage_sum == "0.000000"

    def test_supply_fully_moved_away_and_back(self):
        events = [mint_event("alice", 5, 1, 0), transfer_event("alice", "bob", 5, 2, 1)]
        snap = assemble_snapshot(events, 2)
        assert [h.address for h in snap.holders] == ["bob"]
        assert snap.holders[0].percentage == "100.000000"

    def test_height_none_uses_last_event(self):
        events = [mint_event("alice", 5, 1, 0), mint_event("bob", 5, 4, 1)]
        assert assemble_snapshot(events).height == 4

    def test_timestamp(self):
        stamp = datetime(2025, 6, 1)
        assert assemble_snapshot([], 0, timestamp=stamp).timestamp == stamp
        assert assemble_snapshot([], 0).timestamp == EPOCH

    def test_precision(self):
        events = [mint_event("alice", 2, 1, 0), mint_event("bob", 1, 1, 1)]
        snap = assemble_snapshot(events, 1, precision=2)
        assert snap.holders[0].percentage == "66.66"
        assert snap.rounding_residual == 1

    def test_checkpoints_do_not_change_result(self):
        events = [mint_event("alice", 2, 1, 0), split_event(2, 2, 2, 1), mint_event("bob", 1, 3, 2)]
        cache = CheckpointCache()
        for height in (1, 3, 2, 3):
            assert assemble_snapshot(events, height, checkpoints=cache) == assemble_snapshot(events, height)

    def test_corrupted_input(self):
        events = [mint_event("alice", 2, 3, 0), mint_event("bob", 1, 1, 1)]
        with pytest.raises(CorruptionError):
            assemble_snapshot(events, 3)

    def test_holder_lookup(self):
        snap = assemble_snapshot([mint_event("alice", 2, 1, 0)], 1)
        assert snap.holder("alice").balance == 2
        assert snap.holder("bob") is None
        assert "alice" in repr(snap)
