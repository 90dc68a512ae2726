"""
history.py - Human-oriented transaction history derived from the event log

Each LedgerEvent becomes one HistoryEntry with a type:

    Mint            TRANSFER from NULL_ACCOUNT
    Burn            TRANSFER to NULL_ACCOUNT
    Transfer        any other TRANSFER
    Split           SPLIT_EXECUTED
    SymbolChange    SYMBOL_CHANGED
    AllowlistUpdate ALLOWLIST_UPDATED
    RoleChange      ROLE_GRANTED / ROLE_REVOKED
    Approval        APPROVAL (owner as sender, spender as recipient)

Entries can then be expanded into per-wallet rows for display: a transfer
becomes a linked recipient/sender pair (recipient first), a mint a single
recipient row, and splits and symbol changes unaddressed system rows.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .core import LedgerEvent, EventKind, NULL_ACCOUNT
from .event_log import verify_ordering
from .replay import _account_arg, _apply_split, _int_arg


# Entry types
MINT = "Mint"
BURN = "Burn"
TRANSFER = "Transfer"
SPLIT = "Split"
SYMBOL_CHANGE = "SymbolChange"
ALLOWLIST = "AllowlistUpdate"
ROLE = "RoleChange"
APPROVAL = "Approval"

ENTRY_TYPES = (MINT, BURN, TRANSFER, SPLIT, SYMBOL_CHANGE, ALLOWLIST, ROLE, APPROVAL)

# Wallet row roles
SENDER = "sender"
RECIPIENT = "recipient"
MINT_RECIPIENT = "mint-recipient"
SYSTEM_EVENT = "system-event"


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """
    One event as shown in a transaction history.

    Attributes:
        event_id: Id of the underlying LedgerEvent
        entry_type: One of ENTRY_TYPES
        height, sequence, timestamp: Copied from the event
        from_account: Sending party (None for mints and non-transfers)
        to_account: Receiving or affected party, if any
        amount: Base units moved (transfers only)
        displayed_amount: amount times the multiplier in effect at the event
        multiplier: Multiplier in effect right after the event
        details: Remaining payload fields as sorted (key, value) pairs
    """
    event_id: str
    entry_type: str
    height: int
    sequence: int
    timestamp: datetime
    from_account: Optional[str] = None
    to_account: Optional[str] = None
    amount: Optional[int] = None
    displayed_amount: Optional[int] = None
    multiplier: int = 1
    details: Tuple[Tuple[str, Any], ...] = ()

    @property
    def is_system(self) -> bool:
        return self.entry_type in (SPLIT, SYMBOL_CHANGE)

    def involves(self, account: str) -> bool:
        """Case-insensitive match against either party."""
        wanted = account.lower()
        return any(a is not None and a.lower() == wanted
                   for a in (self.from_account, self.to_account))


def classify_event(event: LedgerEvent, multiplier: int = 1) -> HistoryEntry:
    """
    Convert one event into a HistoryEntry.

    Args:
        event: The event to classify
        multiplier: Multiplier in effect at the event (after it, for splits)
    """
    args = event.args
    base = dict(
        event_id=event.event_id,
        height=event.height,
        sequence=event.sequence,
        timestamp=event.timestamp,
        multiplier=multiplier,
    )
    kind = event.kind
    if kind == EventKind.TRANSFER:
        source = _account_arg(event, args, 'from_account')
        dest = _account_arg(event, args, 'to_account')
        value = _int_arg(event, args, 'value', 0)
        if source == NULL_ACCOUNT:
            entry_type, source = MINT, None
        elif dest == NULL_ACCOUNT:
            entry_type, dest = BURN, None
        else:
            entry_type = TRANSFER
        return HistoryEntry(entry_type=entry_type, from_account=source, to_account=dest,
                            amount=value, displayed_amount=value * multiplier, **base)
    if kind == EventKind.SPLIT_EXECUTED:
        return HistoryEntry(entry_type=SPLIT, details=_details(args), **base)
    if kind == EventKind.SYMBOL_CHANGED:
        return HistoryEntry(entry_type=SYMBOL_CHANGE, details=_details(args), **base)
    if kind == EventKind.ALLOWLIST_UPDATED:
        return HistoryEntry(entry_type=ALLOWLIST, to_account=_account_arg(event, args, 'account'),
                            details=_details(args, 'account'), **base)
    if kind == EventKind.APPROVAL:
        return HistoryEntry(entry_type=APPROVAL,
                            from_account=_account_arg(event, args, 'owner'),
                            to_account=_account_arg(event, args, 'spender'),
                            details=_details(args, 'owner', 'spender'), **base)
    return HistoryEntry(entry_type=ROLE, to_account=_account_arg(event, args, 'account'),
                        details=_details({**args, 'granted': kind == EventKind.ROLE_GRANTED},
                                         'account'),
                        **base)


def _details(args: Dict[str, Any], *exclude: str) -> Tuple[Tuple[str, Any], ...]:
    return tuple(sorted((k, v) for k, v in args.items() if k not in exclude))


def transaction_history(
    events: Sequence[LedgerEvent],
    entry_types: Optional[Iterable[str]] = None,
    from_height: Optional[int] = None,
    to_height: Optional[int] = None,
    account: Optional[str] = None,
    newest_first: bool = True,
) -> List[HistoryEntry]:
    """
    Build a filtered history from an ordered event sequence.

    The multiplier is folded over the whole sequence, so displayed amounts
    reflect the splits executed before each event even when those splits
    fall outside the height window.

    Args:
        events: Ordered events from genesis
        entry_types: Keep only these entry types (default: all)
        from_height: Lowest height kept (inclusive)
        to_height: Highest height kept (inclusive)
        account: Keep only entries where this account is a party (case-insensitive)
        newest_first: Reverse chronological order (default: True)

    Raises:
        CorruptionError: If the events are out of order
        ValueError: If an unknown entry type is requested
    """
    verify_ordering(events)
    wanted = None
    if entry_types is not None:
        wanted = frozenset(entry_types)
        unknown = wanted - frozenset(ENTRY_TYPES)
        if unknown:
            raise ValueError(f"Unknown entry types: {sorted(unknown)}")

    entries = []
    multiplier = 1
    for event in events:
        if to_height is not None and event.height > to_height:
            break
        if event.kind == EventKind.SPLIT_EXECUTED:
            multiplier = _apply_split(multiplier, event)
        if from_height is not None and event.height < from_height:
            continue
        entry = classify_event(event, multiplier)
        if wanted is not None and entry.entry_type not in wanted:
            continue
        if account is not None and not entry.involves(account):
            continue
        entries.append(entry)

    if newest_first:
        entries.reverse()
    return entries


@dataclass(frozen=True, slots=True)
class WalletRow:
    """
    One wallet's view of a history entry.

    A transfer yields two rows pointing at each other through linked_row_id.
    """
    row_id: str
    entry: HistoryEntry
    address: str
    role: str
    linked_row_id: Optional[str] = None
    is_linked: bool = False


def wallet_rows(
    entries: Iterable[HistoryEntry],
    filter_address: Optional[str] = None,
) -> List[WalletRow]:
    """
    Expand history entries into per-wallet rows.

    With filter_address set, only rows for that address are produced
    (case-insensitive) and system rows are hidden.
    """
    def matches(address: Optional[str]) -> bool:
        if not filter_address or not address:
            return True
        return address.lower() == filter_address.lower()

    rows = []
    for entry in entries:
        eid = entry.event_id
        if entry.is_system:
            if not filter_address:
                rows.append(WalletRow(f"{eid}-system", entry, "", SYSTEM_EVENT))
        elif entry.entry_type == MINT:
            if entry.to_account and matches(entry.to_account):
                rows.append(WalletRow(f"{eid}-mint-recipient", entry, entry.to_account, MINT_RECIPIENT))
        elif entry.from_account and entry.to_account:
            sender_id, recipient_id = f"{eid}-sender", f"{eid}-recipient"
            if matches(entry.to_account):
                rows.append(WalletRow(recipient_id, entry, entry.to_account, RECIPIENT,
                                      linked_row_id=sender_id, is_linked=True))
            if matches(entry.from_account):
                rows.append(WalletRow(sender_id, entry, entry.from_account, SENDER,
                                      linked_row_id=recipient_id, is_linked=True))
        elif entry.to_account and matches(entry.to_account):
            rows.append(WalletRow(f"{eid}-recipient", entry, entry.to_account, RECIPIENT))
        elif entry.from_account and matches(entry.from_account):
            rows.append(WalletRow(f"{eid}-sender", entry, entry.from_account, SENDER))
    return rows
