"""
test_history.py - Unit tests for transaction history and wallet rows
"""

import pytest

from equity_ledger import (
    classify_event, transaction_history, wallet_rows, CorruptionError,
    EventKind, ledger_event, NULL_ACCOUNT, MINTER_ROLE,
)
from equity_ledger.history import (
    MINT, BURN, TRANSFER, SPLIT, SYMBOL_CHANGE, ALLOWLIST, ROLE, APPROVAL,
    SENDER, RECIPIENT, MINT_RECIPIENT, SYSTEM_EVENT,
)
from tests.helpers import ADMIN, at_height, transfer_event, mint_event, split_event


class TestClassify:

    def test_mint(self):
        entry = classify_event(mint_event("alice", 10, 1, 0))
        assert entry.entry_type == MINT
        assert entry.from_account is None
        assert entry.to_account == "alice"
        assert entry.amount == 10

    def test_burn(self):
        entry = classify_event(transfer_event("alice", NULL_ACCOUNT, 3, 1, 0))
        assert entry.entry_type == BURN
        assert entry.to_account is None

    def test_transfer_with_multiplier(self):
        entry = classify_event(transfer_event("alice", "bob", 3, 1, 0), multiplier=4)
        assert entry.entry_type == TRANSFER
        assert entry.displayed_amount == 12

    def test_split(self):
        entry = classify_event(split_event(2, 2, 1, 0), multiplier=2)
        assert entry.entry_type == SPLIT
        assert entry.is_system
        assert dict(entry.details)['factor'] == 2

    def test_symbol_change(self):
        ev = ledger_event(EventKind.SYMBOL_CHANGED, {'old_symbol': "A", 'new_symbol': "B"}, 1, 0)
        assert classify_event(ev).entry_type == SYMBOL_CHANGE

    def test_allowlist(self):
        ev = ledger_event(EventKind.ALLOWLIST_UPDATED, {'account': "alice", 'approved': False}, 1, 0)
        entry = classify_event(ev)
        assert entry.entry_type == ALLOWLIST
        assert entry.to_account == "alice"
        assert dict(entry.details) == {'approved': False}

    def test_role(self):
        ev = ledger_event(EventKind.ROLE_REVOKED,
                          {'role': MINTER_ROLE, 'account': "bob", 'sender': ADMIN}, 1, 0)
        entry = classify_event(ev)
        assert entry.entry_type == ROLE
        assert dict(entry.details)['granted'] is False

    def test_approval(self):
        ev = ledger_event(EventKind.APPROVAL, {'owner': "alice", 'spender': "bob", 'value': 25}, 1, 0)
        entry = classify_event(ev)
        assert entry.entry_type == APPROVAL
        assert (entry.from_account, entry.to_account) == ("alice", "bob")
        assert dict(entry.details) == {'value': 25}
        assert entry.involves("BOB")

    def test_transfer_missing_value_is_corruption(self):
        ev = ledger_event(EventKind.TRANSFER, {'from_account': "alice", 'to_account': "bob"}, 1, 0)
        with pytest.raises(CorruptionError):
            classify_event(ev)

    def test_malformed_account_is_corruption(self):
        ev = ledger_event(EventKind.ALLOWLIST_UPDATED, {'account': 7, 'approved': True}, 1, 0)
        with pytest.raises(CorruptionError):
            classify_event(ev)


class TestTransactionHistory:

    def _events(self, funded):
        at_height(funded, 20)
        funded.execute_split(ADMIN, 2)
        funded.transfer("alice", "bob", 100)
        return funded.events

    def test_newest_first(self, funded):
        entries = transaction_history(self._events(funded))
        assert entries[0].entry_type == TRANSFER
        assert entries[0].height >= entries[-1].height

    def test_oldest_first(self, funded):
        entries = transaction_history(self._events(funded), newest_first=False)
        assert entries[0].entry_type == ROLE

    def test_filter_types(self, funded):
        entries = transaction_history(self._events(funded), entry_types=[MINT])
        assert [e.to_account for e in entries] == ["bob", "alice"]

    def test_unknown_type(self, funded):
        with pytest.raises(ValueError):
            transaction_history(funded.events, entry_types=["Airdrop"])

    def test_filter_account_case_insensitive(self, funded):
        entries = transaction_history(self._events(funded), account="BOB", entry_types=[MINT, TRANSFER])
        assert len(entries) == 2

    def test_displayed_amount_uses_multiplier_at_event(self, funded):
        entries = transaction_history(self._events(funded), entry_types=[TRANSFER, MINT])
        transfer = entries[0]
        assert transfer.amount == 50
        assert transfer.displayed_amount == 100
        assert entries[-1].displayed_amount == entries[-1].amount

    def test_height_window(self, funded):
        events = self._events(funded)
        entries = transaction_history(events, from_height=20)
        assert {e.entry_type for e in entries} == {SPLIT, TRANSFER}
        assert all(e.height <= 10 for e in transaction_history(events, to_height=10))

    def test_filtered_out_split_still_applies(self, funded):
        window = transaction_history(self._events(funded), entry_types=[TRANSFER])
        assert window[0].multiplier == 2

    def test_corrupted(self):
        with pytest.raises(CorruptionError):
            transaction_history([mint_event("a", 1, 2, 0), mint_event("a", 1, 1, 1)])

    def test_malformed_split_is_corruption(self):
        events = [mint_event("a", 10, 1, 0), split_event(2, 5, 2, 1)]
        with pytest.raises(CorruptionError):
            transaction_history(events)

    def test_approval_entries(self, funded):
        funded.approve("alice", "dave", 30)
        funded.transfer_from("dave", "alice", "bob", 10)
        entries = transaction_history(funded.events, entry_types=[APPROVAL])
        assert [dict(e.details)["value"] for e in entries] == [20, 30]
        assert all(e.from_account == "alice" and e.to_account == "dave" for e in entries)


class TestWalletRows:

    def _entries(self):
        return transaction_history([
            mint_event("alice", 10, 1, 0),
            transfer_event("alice", "bob", 4, 2, 1),
            split_event(2, 2, 3, 2),
        ], newest_first=False)

    def test_rows_without_filter(self):
        rows = wallet_rows(self._entries())
        assert [(r.address, r.role) for r in rows] == [
            ("alice", MINT_RECIPIENT),
            ("bob", RECIPIENT),
            ("alice", SENDER),
            ("", SYSTEM_EVENT),
        ]

    def test_transfer_rows_are_linked(self):
        rows = wallet_rows(self._entries())
        recipient, sender = rows[1], rows[2]
        assert recipient.linked_row_id == sender.row_id
        assert sender.linked_row_id == recipient.row_id
        assert recipient.is_linked and sender.is_linked
        assert not rows[0].is_linked

    def test_filter_hides_other_wallets_and_system_rows(self):
        rows = wallet_rows(self._entries(), filter_address="ALICE")
        assert [(r.address, r.role) for r in rows] == [
            ("alice", MINT_RECIPIENT),
            ("alice", SENDER),
        ]

    def test_allowlist_row(self):
        entries = transaction_history([
            ledger_event(EventKind.ALLOWLIST_UPDATED, {'account': "carol", 'approved': True}, 1, 0),
        ])
        (row,) = wallet_rows(entries)
        assert row.address == "carol"
        assert row.role == RECIPIENT
        assert not row.is_linked
