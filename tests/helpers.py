"""
helpers.py - Ledger and event builders shared by the test suites
"""

from datetime import datetime, timedelta
from typing import Dict, List

from equity_ledger import (
    GatedLedger,
    LedgerEvent, EventKind, ledger_event,
    NULL_ACCOUNT, MINTER_ROLE, APPROVER_ROLE,
)


ADMIN = "issuer"
HOLDERS = ["alice", "bob", "charlie", "dave"]
T0 = datetime(2025, 1, 1)


def make_operational_ledger(
    ledger_id: str = "cet",
    symbol: str = "CET",
    holders: List[str] = HOLDERS,
    genesis_height: int = 0,
) -> GatedLedger:
    """
    Ledger where ADMIN holds every role and `holders` are allowlisted.

    Height is left at genesis_height.
    """
    ledger = GatedLedger(ledger_id, symbol, ADMIN, genesis_height=genesis_height,
                         initial_time=T0 + timedelta(hours=genesis_height))
    ledger.grant_role(ADMIN, MINTER_ROLE, ADMIN)
    ledger.grant_role(ADMIN, APPROVER_ROLE, ADMIN)
    for holder in holders:
        ledger.approve_wallet(ADMIN, holder)
    return ledger


def at_height(ledger: GatedLedger, height: int) -> GatedLedger:
    """Advance to `height`, one hour per height after T0."""
    ledger.advance_height(height, T0 + timedelta(hours=height))
    return ledger


def transfer_event(source: str, dest: str, value: int, height: int, sequence: int) -> LedgerEvent:
    return ledger_event(
        EventKind.TRANSFER,
        {'from_account': source, 'to_account': dest, 'value': value},
        height=height, sequence=sequence,
    )


def mint_event(dest: str, value: int, height: int, sequence: int) -> LedgerEvent:
    return transfer_event(NULL_ACCOUNT, dest, value, height, sequence)


def split_event(factor: int, multiplier: int, height: int, sequence: int) -> LedgerEvent:
    return ledger_event(
        EventKind.SPLIT_EXECUTED,
        {'factor': factor, 'multiplier': multiplier, 'height': height},
        height=height, sequence=sequence,
    )


def state_of(ledger: GatedLedger) -> Dict:
    """Comparable summary of a ledger's live state."""
    return {
        'balances': {a: ledger.base_balance_of(a) for a in ledger.holders()},
        'allowlist': ledger.allowlisted_accounts(),
        'multiplier': ledger.multiplier,
        'symbol': ledger.symbol,
        'roles': {r: ledger.role_members(r) for r in (MINTER_ROLE, APPROVER_ROLE)},
        'allowances': ledger.allowances(),
    }
