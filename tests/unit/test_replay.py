"""
test_replay.py - Unit tests for the replay engine

Tests:
- Balance fold (mint, transfer, burn) and zero elision
- Height bounds
- Multiplier reconstruction
- Full state replay (roles, allowlist, symbol, allowances)
- Corruption detection
- Checkpoint cache reuse and invalidation
"""

import pytest
from concurrent.futures import ThreadPoolExecutor

from equity_ledger import (
    EventKind, CorruptionError, ledger_event,
    replay_balances, replay_state, multiplier_at, total_base_supply_at,
    CheckpointCache, NULL_ACCOUNT, DEFAULT_ADMIN_ROLE, MINTER_ROLE,
)
from tests.helpers import ADMIN, transfer_event, mint_event, split_event, at_height


EVENTS = [
    mint_event("alice", 1000, 1, 0),
    mint_event("bob", 500, 1, 1),
    transfer_event("alice", "bob", 200, 3, 2),
    split_event(2, 2, 4, 3),
    transfer_event("bob", "charlie", 700, 6, 4),
    split_event(3, 6, 8, 5),
]


class TestReplayBalances:

    def test_full_replay(self):
        assert replay_balances(EVENTS) == {"alice": 800, "charlie": 700}

    def test_bounded_replay(self):
        assert replay_balances(EVENTS, 1) == {"alice": 1000, "bob": 500}
        assert replay_balances(EVENTS, 3) == {"alice": 800, "bob": 700}
        assert replay_balances(EVENTS, 5) == {"alice": 800, "bob": 700}

    def test_before_first_event(self):
        assert replay_balances(EVENTS, 0) == {}

    def test_empty(self):
        assert replay_balances([]) == {}

    def test_zero_balances_dropped(self):
        assert "bob" not in replay_balances(EVENTS, 6)

    def test_burn_shaped_event(self):
        events = [mint_event("alice", 10, 1, 0), transfer_event("alice", NULL_ACCOUNT, 4, 2, 1)]
        assert replay_balances(events) == {"alice": 6}
        assert total_base_supply_at(events) == 6

    def test_non_transfer_events_ignored(self):
        events = [
            ledger_event(EventKind.ALLOWLIST_UPDATED, {'account': 'alice', 'approved': True}, 1, 0),
            mint_event("alice", 10, 1, 1),
        ]
        assert replay_balances(events) == {"alice": 10}

    def test_input_not_mutated(self):
        events = list(EVENTS)
        replay_balances(events, 3)
        assert events == EVENTS


class TestMultiplier:

    def test_no_splits(self):
        assert multiplier_at(EVENTS, 3) == 1

    def test_product_of_factors(self):
        assert multiplier_at(EVENTS, 4) == 2
        assert multiplier_at(EVENTS, 7) == 2
        assert multiplier_at(EVENTS, 8) == 6
        assert multiplier_at(EVENTS) == 6

    def test_recorded_multiplier_mismatch(self):
        events = [split_event(2, 2, 1, 0), split_event(3, 5, 2, 1)]
        with pytest.raises(CorruptionError, match="multiplier"):
            multiplier_at(events)

    def test_zero_factor_is_corruption(self):
        with pytest.raises(CorruptionError):
            multiplier_at([split_event(0, 0, 1, 0)])


class TestReplayState:

    def test_state_matches_live_ledger(self, funded):
        funded.transfer("alice", "bob", 100)
        funded.execute_split(ADMIN, 3)
        state = replay_state(funded.events)
        assert dict(state.balances) == {"alice": 900, "bob": 600}
        assert state.multiplier == 3
        assert state.symbol == "CET"
        assert ADMIN in state.roles[DEFAULT_ADMIN_ROLE]
        assert ADMIN in state.roles[MINTER_ROLE]
        assert "alice" in state.allowlist
        assert state.total_base_supply == 1500
        assert state.displayed_balance("alice") == 2700
        assert state.event_count == len(funded.events)
        assert state.height == 10

    def test_state_at_genesis(self, funded):
        state = replay_state(funded.events, 0)
        assert dict(state.balances) == {}
        assert state.symbol == "CET"

    def test_symbol_chain_mismatch(self):
        events = [
            ledger_event(EventKind.SYMBOL_CHANGED, {'old_symbol': "", 'new_symbol': "A"}, 0, 0),
            ledger_event(EventKind.SYMBOL_CHANGED, {'old_symbol': "B", 'new_symbol': "C"}, 1, 1),
        ]
        with pytest.raises(CorruptionError):
            replay_state(events)

    def test_revoked_role_dropped(self, operational):
        operational.revoke_role(ADMIN, MINTER_ROLE, ADMIN)
        assert MINTER_ROLE not in replay_state(operational.events).roles

    def test_allowances_follow_approval_events(self, funded):
        funded.approve("alice", "dave", 300)
        funded.transfer_from("dave", "alice", "bob", 120)
        funded.approve("bob", "charlie", 40)
        funded.approve("bob", "charlie", 0)
        assert dict(replay_state(funded.events).allowances) == {("alice", "dave"): 180}

    def test_malformed_approval(self):
        ev = ledger_event(EventKind.APPROVAL, {'owner': "alice", 'spender': "bob", 'value': -3}, 1, 0)
        with pytest.raises(CorruptionError):
            replay_state([ev])


class TestCorruption:

    def test_out_of_order_heights(self):
        events = [mint_event("alice", 5, 3, 0), mint_event("bob", 5, 2, 1)]
        with pytest.raises(CorruptionError):
            replay_balances(events)

    def test_disorder_beyond_target_still_detected(self):
        events = [mint_event("alice", 5, 1, 0), mint_event("bob", 5, 9, 1), mint_event("bob", 5, 2, 2)]
        with pytest.raises(CorruptionError):
            replay_balances(events, 1)

    def test_duplicate_position(self):
        events = [mint_event("alice", 5, 1, 0), mint_event("alice", 5, 1, 0)]
        with pytest.raises(CorruptionError):
            replay_balances(events)

    def test_overdraft(self):
        events = [mint_event("alice", 5, 1, 0), transfer_event("alice", "bob", 6, 2, 1)]
        with pytest.raises(CorruptionError, match="overdraws"):
            replay_balances(events)

    @pytest.mark.parametrize("args", [
        {'from_account': NULL_ACCOUNT, 'to_account': 'alice'},
        {'from_account': NULL_ACCOUNT, 'to_account': 'alice', 'value': -1},
        {'from_account': NULL_ACCOUNT, 'to_account': 'alice', 'value': "10"},
        {'from_account': NULL_ACCOUNT, 'to_account': 'alice', 'value': True},
        {'from_account': NULL_ACCOUNT, 'to_account': '', 'value': 1},
        {'to_account': 'alice', 'value': 1},
    ])
    def test_malformed_transfer(self, args):
        with pytest.raises(CorruptionError):
            replay_balances([ledger_event(EventKind.TRANSFER, args, 1, 0)])


class TestCheckpointCache:

    def test_matches_full_replay(self, funded):
        cache = CheckpointCache()
        events = funded.events
        for height in (0, 10, 5, 10):
            assert cache.state_at(events, height) == replay_state(events, height)

    def test_reuses_checkpoint_for_extended_log(self, funded):
        cache = CheckpointCache()
        cache.state_at(funded.events, 10)
        at_height(funded, 20)
        funded.transfer("alice", "bob", 10)
        state = cache.state_at(funded.events, 20)
        assert cache.hits == 1
        assert state == replay_state(funded.events, 20)

    def test_discards_checkpoint_when_prefix_changes(self):
        cache = CheckpointCache()
        original = [mint_event("alice", 10, 1, 0), mint_event("bob", 10, 2, 1)]
        cache.state_at(original, 2)
        rewritten = [mint_event("alice", 99, 1, 0), mint_event("bob", 10, 2, 1)]
        state = cache.state_at(rewritten, 3)
        assert cache.discarded == 1
        assert dict(state.balances) == {"alice": 99, "bob": 10}

    def test_eviction(self):
        cache = CheckpointCache(max_entries=2)
        events = [mint_event("alice", 1, h, h) for h in range(5)]
        for height in range(5):
            cache.state_at(events, height)
        assert len(cache) == 2
        cache.clear()
        assert len(cache) == 0

    def test_counters_account_for_every_lookup(self):
        cache = CheckpointCache()
        events = [mint_event("alice", 1, h, h) for h in range(6)]
        cache.state_at(events, 2)
        cache.state_at(events, 4)
        cache.state_at(events, 1)
        assert (cache.hits, cache.misses) == (1, 2)

    def test_counters_consistent_under_concurrent_lookups(self):
        cache = CheckpointCache()
        events = [mint_event("alice", 1, h, h) for h in range(20)]
        heights = [h % 20 for h in range(200)]
        with ThreadPoolExecutor(max_workers=8) as pool:
            states = list(pool.map(lambda h: cache.state_at(events, h), heights))
        assert cache.hits + cache.misses == len(heights)
        assert all(s == replay_state(events, h) for s, h in zip(states, heights))
