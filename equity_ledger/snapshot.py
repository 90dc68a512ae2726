"""
snapshot.py - Cap table snapshots assembled from replayed state

A CapTableSnapshot answers "who owns what, and what fraction of the whole"
at one height. It is built only from the event log: base balances from the
replay fold, the multiplier from the split history at or below the same
height. Snapshots are disposable and always reproducible, so they are safe
to cache.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence, Tuple

from .core import LedgerEvent, PERCENTAGE_PRECISION, EPOCH
from .calculator import (
    displayed_balance, percentage_scaled, format_percentage,
    rounding_residual, rounding_note,
)
from .replay import CheckpointCache, replay_balances, multiplier_at
from .event_log import verify_ordering


@dataclass(frozen=True, slots=True)
class HolderEntry:
    """
    One row of a cap table.

    Attributes:
        address: Holder account
        balance: Displayed balance at the snapshot height
        base_balance: Base balance at the snapshot height
        percentage: Formatted ownership percentage (e.g. "66.666666")
        percentage_scaled: Same value as a fixed-point int
    """
    address: str
    balance: int
    base_balance: int
    percentage: str
    percentage_scaled: int


@dataclass(frozen=True, slots=True)
class CapTableSnapshot:
    """
    Ownership of every holder at a height.

    holders is ordered by balance descending, then address ascending.
    rounding_note is set exactly when rounding_residual != 0.
    """
    ledger_id: str
    height: int
    timestamp: datetime
    total_supply: int
    multiplier: int
    holders: Tuple[HolderEntry, ...]
    percentage_sum: str
    rounding_residual: int
    rounding_note: Optional[str] = None
    precision: int = PERCENTAGE_PRECISION

    @property
    def is_empty(self) -> bool:
        return not self.holders

    def holder(self, address: str) -> Optional[HolderEntry]:
        for entry in self.holders:
            if entry.address == address:
                return entry
        return None

    def __repr__(self) -> str:
        lines = [f"CapTableSnapshot({self.ledger_id!r} @ {self.height}, "
                 f"supply={self.total_supply}, multiplier={self.multiplier})"]
        for entry in self.holders:
            lines.append(f"  {entry.address:<44} {entry.balance:>20} {entry.percentage:>12}%")
        if self.rounding_note:
            lines.append(f"  note: {self.rounding_note}")
        return "\n".join(lines)


def assemble_snapshot(
    events: Sequence[LedgerEvent],
    height: Optional[int] = None,
    timestamp: Optional[datetime] = None,
    ledger_id: str = "",
    precision: int = PERCENTAGE_PRECISION,
    checkpoints: Optional[CheckpointCache] = None,
) -> CapTableSnapshot:
    """
    Build the cap table at `height` from an ordered event sequence.

    Args:
        events: Ordered ledger events (extra events past `height` are ignored)
        height: Snapshot height; None means the last event's height
        timestamp: Time of `height` (default: 1970-01-01)
        ledger_id: Copied into the snapshot
        precision: Fractional digits of the percentages
        checkpoints: Optional replay cache; never changes the result

    Returns:
        CapTableSnapshot. Zero supply gives an empty snapshot, not an error.

    Raises:
        CorruptionError: If the events are out of order or malformed
    """
    if height is None:
        verify_ordering(events)
        height = events[-1].height if events else 0

    if checkpoints is not None:
        state = checkpoints.state_at(events, height)
        balances, multiplier = dict(state.balances), state.multiplier
    else:
        balances = replay_balances(events, height)
        multiplier = multiplier_at(events, height)

    displayed = {a: displayed_balance(b, multiplier) for a, b in balances.items()}
    total_supply = sum(displayed.values())
    timestamp = timestamp or EPOCH

    if total_supply == 0:
        return CapTableSnapshot(
            ledger_id=ledger_id,
            height=height,
            timestamp=timestamp,
            total_supply=0,
            multiplier=multiplier,
            holders=(),
            percentage_sum=format_percentage(0, precision),
            rounding_residual=0,
            rounding_note=None,
            precision=precision,
        )

    ranked = sorted(displayed.items(), key=lambda kv: (-kv[1], kv[0]))
    holders = []
    for address, balance in ranked:
        scaled = percentage_scaled(balance, total_supply, precision)
        holders.append(HolderEntry(
            address=address,
            balance=balance,
            base_balance=balances[address],
            percentage=format_percentage(scaled, precision),
            percentage_scaled=scaled,
        ))

    total_scaled = sum(h.percentage_scaled for h in holders)
    residual = rounding_residual((h.percentage_scaled for h in holders), precision)
    return CapTableSnapshot(
        ledger_id=ledger_id,
        height=height,
        timestamp=timestamp,
        total_supply=total_supply,
        multiplier=multiplier,
        holders=tuple(holders),
        percentage_sum=format_percentage(total_scaled, precision),
        rounding_residual=residual,
        rounding_note=rounding_note(residual),
        precision=precision,
    )
