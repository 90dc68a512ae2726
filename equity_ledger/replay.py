"""
replay.py - Deterministic reconstruction of ledger state from the event log

=== FOLD ===

Every balance change is a TRANSFER event. For each one, in (height, sequence)
order:
    - subtract value from from_account unless it is NULL_ACCOUNT (mint)
    - add value to to_account unless it is NULL_ACCOUNT (burn)
Accounts whose balance ends at exactly zero are dropped.

APPROVAL events set the allowance of (owner, spender) to their value.

SPLIT_EXECUTED events multiply the effective multiplier by their factor.
The multiplier effective at height H is always rebuilt from the splits at or
below H, never read from live state.

=== PURITY ===

All functions here take an immutable event sequence and return fresh values.
Accumulators are local to each call, so replays for different heights can
run concurrently. A malformed or out-of-order event aborts the whole replay
with CorruptionError; nothing is skipped.

CheckpointCache is an optional speed-up. A checkpoint is only reused when the
log prefix it was built from still hashes the same; otherwise it is discarded
and the full replay from genesis is used.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Set, Tuple

from .core import (
    LedgerEvent, EventKind, NULL_ACCOUNT,
    CorruptionError,
    digest_events,
)
from .access import freeze_roles
from .event_log import verify_ordering


# =============================================================================
# STATE
# =============================================================================

@dataclass(frozen=True, slots=True)
class LedgerState:
    """
    Ledger aggregate as of a height, rebuilt from events.

    Attributes:
        height: Height of the last folded event (None if no events)
        balances: account -> base balance (non-zero only)
        allowlist: Accounts currently allowlisted
        roles: role -> accounts holding it
        multiplier: Product of all split factors folded so far
        symbol: Current symbol ("" before the genesis symbol event)
        allowances: (owner, spender) -> remaining allowance in displayed units (non-zero only)
        event_count: Number of events folded
    """
    height: Optional[int] = None
    balances: Mapping[str, int] = field(default_factory=dict)
    allowlist: FrozenSet[str] = frozenset()
    roles: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    multiplier: int = 1
    symbol: str = ""
    allowances: Mapping[Tuple[str, str], int] = field(default_factory=dict)
    event_count: int = 0

    @property
    def total_base_supply(self) -> int:
        return sum(self.balances[a] for a in sorted(self.balances))

    def displayed_balance(self, account: str) -> int:
        return self.balances.get(account, 0) * self.multiplier


class _Accumulator:
    """Mutable fold state owned by a single replay call."""

    __slots__ = ('height', 'balances', 'allowlist', 'roles', 'multiplier', 'symbol',
                 'allowances', 'event_count')

    def __init__(self, start: Optional[LedgerState] = None):
        start = start or LedgerState()
        self.height: Optional[int] = start.height
        self.balances: Dict[str, int] = dict(start.balances)
        self.allowlist: Set[str] = set(start.allowlist)
        self.roles: Dict[str, Set[str]] = {r: set(m) for r, m in start.roles.items()}
        self.multiplier: int = start.multiplier
        self.symbol: str = start.symbol
        self.allowances: Dict[Tuple[str, str], int] = dict(start.allowances)
        self.event_count: int = start.event_count

    def freeze(self) -> LedgerState:
        return LedgerState(
            height=self.height,
            balances={a: b for a, b in self.balances.items() if b != 0},
            allowlist=frozenset(self.allowlist),
            roles=freeze_roles(self.roles),
            multiplier=self.multiplier,
            symbol=self.symbol,
            allowances={k: v for k, v in self.allowances.items() if v != 0},
            event_count=self.event_count,
        )


# =============================================================================
# PAYLOAD CHECKS
# =============================================================================

def _arg(event: LedgerEvent, args: Dict[str, Any], key: str) -> Any:
    if key not in args:
        raise CorruptionError(f"Event {event.event_id} ({event.kind.value}) missing '{key}'")
    return args[key]


def _int_arg(event: LedgerEvent, args: Dict[str, Any], key: str, minimum: int) -> int:
    value = _arg(event, args, key)
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise CorruptionError(
            f"Event {event.event_id} ({event.kind.value}) has invalid {key}={value!r}"
        )
    return value


def _account_arg(event: LedgerEvent, args: Dict[str, Any], key: str) -> str:
    value = _arg(event, args, key)
    if not isinstance(value, str) or not value:
        raise CorruptionError(
            f"Event {event.event_id} ({event.kind.value}) has invalid {key}={value!r}"
        )
    return value


# =============================================================================
# FOLDS
# =============================================================================

def _apply_transfer(balances: Dict[str, int], event: LedgerEvent) -> None:
    args = event.args
    source = _account_arg(event, args, 'from_account')
    dest = _account_arg(event, args, 'to_account')
    value = _int_arg(event, args, 'value', 0)

    if source != NULL_ACCOUNT:
        remaining = balances.get(source, 0) - value
        if remaining < 0:
            raise CorruptionError(
                f"Event {event.event_id} overdraws {source}: balance would be {remaining}"
            )
        if remaining:
            balances[source] = remaining
        else:
            balances.pop(source, None)
    if dest != NULL_ACCOUNT:
        credited = balances.get(dest, 0) + value
        if credited:
            balances[dest] = credited
        else:
            balances.pop(dest, None)


def _apply_split(multiplier: int, event: LedgerEvent) -> int:
    args = event.args
    factor = _int_arg(event, args, 'factor', 1)
    new_multiplier = multiplier * factor
    recorded = args.get('multiplier')
    if recorded is not None and recorded != new_multiplier:
        raise CorruptionError(
            f"Event {event.event_id} records multiplier {recorded!r}, "
            f"but split history gives {new_multiplier}"
        )
    return new_multiplier


def _apply(acc: _Accumulator, event: LedgerEvent) -> None:
    kind = event.kind
    if kind == EventKind.TRANSFER:
        _apply_transfer(acc.balances, event)
    elif kind == EventKind.SPLIT_EXECUTED:
        acc.multiplier = _apply_split(acc.multiplier, event)
    elif kind == EventKind.ALLOWLIST_UPDATED:
        args = event.args
        account = _account_arg(event, args, 'account')
        approved = _arg(event, args, 'approved')
        if not isinstance(approved, bool):
            raise CorruptionError(f"Event {event.event_id} has invalid approved={approved!r}")
        if approved:
            acc.allowlist.add(account)
        else:
            acc.allowlist.discard(account)
    elif kind == EventKind.SYMBOL_CHANGED:
        args = event.args
        old_symbol = _arg(event, args, 'old_symbol')
        new_symbol = _arg(event, args, 'new_symbol')
        if old_symbol != acc.symbol:
            raise CorruptionError(
                f"Event {event.event_id} changes symbol from {old_symbol!r}, "
                f"but the symbol is {acc.symbol!r}"
            )
        if not isinstance(new_symbol, str) or not new_symbol.strip():
            raise CorruptionError(f"Event {event.event_id} sets an empty symbol")
        acc.symbol = new_symbol
    elif kind == EventKind.ROLE_GRANTED:
        args = event.args
        role = _account_arg(event, args, 'role')
        acc.roles.setdefault(role, set()).add(_account_arg(event, args, 'account'))
    elif kind == EventKind.ROLE_REVOKED:
        args = event.args
        role = _account_arg(event, args, 'role')
        acc.roles.get(role, set()).discard(_account_arg(event, args, 'account'))
    elif kind == EventKind.APPROVAL:
        args = event.args
        key = (_account_arg(event, args, 'owner'), _account_arg(event, args, 'spender'))
        acc.allowances[key] = _int_arg(event, args, 'value', 0)
    else:
        raise CorruptionError(f"Unknown event kind {kind!r}")
    acc.height = event.height
    acc.event_count += 1


def _prefix(events: Sequence[LedgerEvent], target_height: Optional[int]) -> List[LedgerEvent]:
    """
    Validate the full sequence, then return the events at or below target_height.

    The whole sequence is checked, not just the prefix: an event placed
    after a later height but carrying an earlier one is corruption either way.
    """
    verify_ordering(events)
    if target_height is None:
        return list(events)
    return [e for e in events if e.height <= target_height]


def replay_state(
    events: Sequence[LedgerEvent],
    target_height: Optional[int] = None,
) -> LedgerState:
    """
    Rebuild the full ledger aggregate as of target_height.

    Args:
        events: Ordered event log (or a prefix of one)
        target_height: Inclusive upper bound; None replays everything

    Raises:
        CorruptionError: If ordering or any payload invariant is violated
    """
    acc = _Accumulator()
    for event in _prefix(events, target_height):
        _apply(acc, event)
    return acc.freeze()


def replay_balances(
    events: Sequence[LedgerEvent],
    target_height: Optional[int] = None,
) -> Dict[str, int]:
    """
    Base balances of every holder as of target_height. Pure function.

    Only TRANSFER events are folded. Zero balances are omitted.

    Example:
        replay_balances(log.events, target_height=120)
        # {'alice': 900, 'bob': 100}
    """
    balances: Dict[str, int] = {}
    for event in _prefix(events, target_height):
        if event.kind == EventKind.TRANSFER:
            _apply_transfer(balances, event)
    return {a: b for a, b in balances.items() if b != 0}


def multiplier_at(
    events: Sequence[LedgerEvent],
    target_height: Optional[int] = None,
) -> int:
    """
    Split multiplier effective at target_height.

    Equals the product of every SPLIT_EXECUTED factor with height <= target_height,
    and 1 when there were none.
    """
    multiplier = 1
    for event in _prefix(events, target_height):
        if event.kind == EventKind.SPLIT_EXECUTED:
            multiplier = _apply_split(multiplier, event)
    return multiplier


def total_base_supply_at(
    events: Sequence[LedgerEvent],
    target_height: Optional[int] = None,
) -> int:
    balances = replay_balances(events, target_height)
    return sum(balances[a] for a in sorted(balances))


# =============================================================================
# CHECKPOINTS
# =============================================================================

@dataclass(frozen=True, slots=True)
class ReplayCheckpoint:
    """
    A replayed state together with the identity of the prefix that produced it.

    Attributes:
        height: Target height the state was replayed to
        index: Number of events in that prefix
        digest: digest_events() of that prefix
        state: The replayed LedgerState
    """
    height: int
    index: int
    digest: str
    state: LedgerState


class CheckpointCache:
    """
    Cache of intermediate replay states keyed by height.

    Never authoritative: a checkpoint whose prefix digest no longer matches
    the log being replayed is dropped and the replay starts from genesis.
    """

    def __init__(self, max_entries: int = 64):
        self.max_entries = max_entries
        self._checkpoints: Dict[int, ReplayCheckpoint] = {}
        self._lock = Lock()
        self.hits = 0
        self.misses = 0
        self.discarded = 0

    def __len__(self) -> int:
        return len(self._checkpoints)

    def clear(self) -> None:
        with self._lock:
            self._checkpoints.clear()

    def _resume_point(
        self,
        prefix: List[LedgerEvent],
        target_height: int,
    ) -> Optional[ReplayCheckpoint]:
        """Best checkpoint at or below target_height that still matches prefix."""
        with self._lock:
            candidates = [h for h in self._checkpoints if h <= target_height]
            if not candidates:
                self.misses += 1
                return None
            checkpoint = self._checkpoints[max(candidates)]
            if (checkpoint.index <= len(prefix)
                    and digest_events(prefix[:checkpoint.index]) == checkpoint.digest):
                self.hits += 1
                return checkpoint
            del self._checkpoints[checkpoint.height]
            self.discarded += 1
            self.misses += 1
            return None

    def _store(self, checkpoint: ReplayCheckpoint) -> None:
        with self._lock:
            self._checkpoints[checkpoint.height] = checkpoint
            while len(self._checkpoints) > self.max_entries:
                del self._checkpoints[min(self._checkpoints)]

    def state_at(self, events: Sequence[LedgerEvent], target_height: int) -> LedgerState:
        """
        Replay to target_height, resuming from the best still-valid checkpoint.

        The result always equals replay_state(events, target_height).
        """
        prefix = _prefix(events, target_height)
        checkpoint = self._resume_point(prefix, target_height)
        start: Optional[LedgerState] = None
        start_index = 0
        if checkpoint is not None:
            start = checkpoint.state
            start_index = checkpoint.index

        acc = _Accumulator(start)
        for event in prefix[start_index:]:
            _apply(acc, event)
        state = acc.freeze()
        self._store(ReplayCheckpoint(
            height=target_height,
            index=len(prefix),
            digest=digest_events(prefix),
            state=state,
        ))
        return state
