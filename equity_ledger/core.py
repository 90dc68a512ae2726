"""
Core types and pure functions for the gated equity ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access, EventFeed for event retrieval
2. Immutable data structures: LedgerEvent, operation records, SubmitResult
3. Exceptions: LedgerError and the rejection/replay error types
4. Constants: roles, the null account, percentage precision, feed sentinels
5. Canonical serialization used for content-addressed event identity

All amounts are Python ints. Stored and logged amounts are base units;
displayed units are base units times the split multiplier.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import hashlib
from typing import (
    Dict, List, Optional, Any, Protocol, Tuple,
    Iterable, Union, runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Designated "null" account. A Transfer from it is a mint, a Transfer to it
# is a burn. It never holds a balance.
NULL_ACCOUNT = "0x0000000000000000000000000000000000000000"

# Role identifiers (strings, not enum, like unit types in the ledger).
DEFAULT_ADMIN_ROLE = "DEFAULT_ADMIN_ROLE"
MINTER_ROLE = "MINTER_ROLE"
APPROVER_ROLE = "APPROVER_ROLE"

# Ownership percentages are fixed point: PERCENT * 10**PERCENTAGE_PRECISION
# is 100% (100_000_000 at the default 6 fractional digits).
PERCENTAGE_PRECISION = 6
PERCENT = 100

ROUNDING_NOTE = "Percentages may not sum to exactly 100% due to rounding"

# Event feed sentinels for from_height / to_height.
EARLIEST = "earliest"
LATEST = "latest"

DEFAULT_LEDGER_NAME = "Chain Equity Token"

# Logical clock origin when no initial time is supplied.
EPOCH = datetime(1970, 1, 1)

HeightBound = Union[int, str]


# ============================================================================
# ENUMS
# ============================================================================

class EventKind(Enum):
    """
    Kind of a logged ledger event.

    Mint is not a separate kind: it is a TRANSFER whose source is
    NULL_ACCOUNT, so a single fold handles every balance change.
    """
    TRANSFER = "Transfer"
    ALLOWLIST_UPDATED = "AllowlistUpdated"
    SPLIT_EXECUTED = "SplitExecuted"
    SYMBOL_CHANGED = "SymbolChanged"
    ROLE_GRANTED = "RoleGranted"
    ROLE_REVOKED = "RoleRevoked"
    APPROVAL = "Approval"


class ExecuteResult(Enum):
    """
    Outcome of submitting an operation.

    APPLIED: Operation validated, state mutated, events appended.
    REJECTED: A precondition failed; nothing changed and no event was appended.
    """
    APPLIED = "applied"
    REJECTED = "rejected"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class ValidationError(LedgerError):
    """Raised when an operation's precondition fails. No state change occurs."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class NotFoundError(LedgerError):
    """Raised for an unknown ledger, or when its genesis height cannot be determined."""
    pass


class OutOfRangeError(LedgerError):
    """Raised when a requested height precedes genesis or exceeds the current (final) height."""
    pass


class CorruptionError(LedgerError):
    """Raised when an event sequence violates ordering or payload invariants."""
    pass


# ============================================================================
# CANONICAL SERIALIZATION
# ============================================================================

def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Dict ordering never affects the output.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"I:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    return f"R:{repr(value)}"


def _freeze_args(args: Optional[Dict[str, Any]]) -> Tuple[Tuple[str, Any], ...]:
    """Convert an args dict to a sorted tuple of (key, value) pairs."""
    if not args:
        return ()
    return tuple(sorted(args.items()))


def _thaw_args(frozen_args: Tuple[Tuple[str, Any], ...]) -> Dict[str, Any]:
    return dict(frozen_args)


def _compute_event_id(
    height: int,
    sequence: int,
    kind: EventKind,
    frozen_args: Tuple[Tuple[str, Any], ...],
) -> str:
    """
    Deterministic content hash of an event.

    Depends on position and payload only, never on the wall clock, so the
    same log always hashes the same way.
    """
    content = f"{height}|{sequence}|{kind.value}|{_canonicalize(dict(frozen_args))}"
    return hashlib.sha256(content.encode()).hexdigest()[:16]


def digest_events(events: Iterable['LedgerEvent']) -> str:
    """Hash an ordered run of events; equal prefixes give equal digests."""
    h = hashlib.sha256()
    for event in events:
        h.update(event.event_id.encode())
        h.update(b"|")
    return h.hexdigest()


# ============================================================================
# LEDGER EVENT
# ============================================================================

@dataclass(frozen=True, slots=True)
class LedgerEvent:
    """
    An immutable record of an accepted operation.

    Attributes:
        height: Coarse ordering unit (block number)
        sequence: Tie-break ordering within a height (monotonic within a log)
        kind: EventKind of the record
        timestamp: Time of the height the event was recorded at
        _frozen_args: Kind-specific payload as sorted (key, value) pairs
        event_id: Content hash (auto-computed)

    Events are totally ordered by (height, sequence).
    """
    height: int
    sequence: int
    kind: EventKind
    timestamp: datetime = EPOCH
    _frozen_args: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)
    event_id: str = field(default="")

    def __post_init__(self):
        if isinstance(self.height, bool) or not isinstance(self.height, int):
            raise ValueError(f"Event height must be int, got {type(self.height)}")
        if isinstance(self.sequence, bool) or not isinstance(self.sequence, int):
            raise ValueError(f"Event sequence must be int, got {type(self.sequence)}")
        if self.height < 0 or self.sequence < 0:
            raise ValueError("Event height and sequence must be non-negative")
        if not isinstance(self.kind, EventKind):
            raise ValueError(f"Event kind must be EventKind, got {self.kind!r}")
        if not self.event_id:
            object.__setattr__(
                self, 'event_id',
                _compute_event_id(self.height, self.sequence, self.kind, self._frozen_args),
            )

    @property
    def args(self) -> Dict[str, Any]:
        """Payload as a new dict each time."""
        return _thaw_args(self._frozen_args)

    @property
    def position(self) -> Tuple[int, int]:
        return (self.height, self.sequence)

    def involves(self, account: str) -> bool:
        """True if the account appears as a party in the payload."""
        args = self.args
        return account in (
            args.get('from_account'), args.get('to_account'), args.get('account'),
            args.get('owner'), args.get('spender'),
        )

    def __repr__(self) -> str:
        return f"LedgerEvent({self.kind.value}@{self.height}.{self.sequence} {self.args})"


def ledger_event(
    kind: EventKind,
    args: Dict[str, Any],
    height: int,
    sequence: int,
    timestamp: Optional[datetime] = None,
) -> LedgerEvent:
    """
    Create a LedgerEvent from a plain args dict.

    Example:
        ev = ledger_event(EventKind.TRANSFER,
                          {'from_account': NULL_ACCOUNT, 'to_account': 'alice', 'value': 1000},
                          height=5, sequence=0)
    """
    return LedgerEvent(
        height=height,
        sequence=sequence,
        kind=kind,
        timestamp=timestamp or EPOCH,
        _frozen_args=_freeze_args(args),
    )


# ============================================================================
# OPERATIONS
# ============================================================================

def _require_account(value: str, label: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{label} cannot be empty")


def _require_int(value: Any, label: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{label} must be int, got {type(value)}")


@dataclass(frozen=True, slots=True)
class Transfer:
    """Move `amount` displayed units from `caller` to `to`."""
    caller: str
    to: str
    amount: int

    def __post_init__(self):
        _require_account(self.caller, "Transfer caller")
        _require_account(self.to, "Transfer recipient")
        _require_int(self.amount, "Transfer amount")


@dataclass(frozen=True, slots=True)
class Mint:
    """Issue `amount` base units to `to`."""
    caller: str
    to: str
    amount: int

    def __post_init__(self):
        _require_account(self.caller, "Mint caller")
        _require_account(self.to, "Mint recipient")
        _require_int(self.amount, "Mint amount")


@dataclass(frozen=True, slots=True)
class SetAllowlist:
    caller: str
    account: str
    approved: bool

    def __post_init__(self):
        _require_account(self.caller, "SetAllowlist caller")
        _require_account(self.account, "SetAllowlist account")
        if not isinstance(self.approved, bool):
            raise ValueError("SetAllowlist approved must be bool")


@dataclass(frozen=True, slots=True)
class ExecuteSplit:
    """Multiply the split multiplier by `factor`."""
    caller: str
    factor: int

    def __post_init__(self):
        _require_account(self.caller, "ExecuteSplit caller")
        _require_int(self.factor, "Split factor")


@dataclass(frozen=True, slots=True)
class ChangeSymbol:
    caller: str
    new_symbol: str

    def __post_init__(self):
        _require_account(self.caller, "ChangeSymbol caller")
        if not isinstance(self.new_symbol, str):
            raise ValueError("ChangeSymbol new_symbol must be str")


@dataclass(frozen=True, slots=True)
class GrantRole:
    caller: str
    role: str
    account: str

    def __post_init__(self):
        _require_account(self.caller, "GrantRole caller")
        _require_account(self.role, "GrantRole role")
        _require_account(self.account, "GrantRole account")


@dataclass(frozen=True, slots=True)
class RevokeRole:
    caller: str
    role: str
    account: str

    def __post_init__(self):
        _require_account(self.caller, "RevokeRole caller")
        _require_account(self.role, "RevokeRole role")
        _require_account(self.account, "RevokeRole account")


@dataclass(frozen=True, slots=True)
class Approve:
    """Let `spender` move up to `amount` displayed units of caller's balance."""
    caller: str
    spender: str
    amount: int

    def __post_init__(self):
        _require_account(self.caller, "Approve caller")
        _require_account(self.spender, "Approve spender")
        _require_int(self.amount, "Approve amount")


@dataclass(frozen=True, slots=True)
class TransferFrom:
    """Move `amount` displayed units from `from_account` to `to`, spending caller's allowance."""
    caller: str
    from_account: str
    to: str
    amount: int

    def __post_init__(self):
        _require_account(self.caller, "TransferFrom caller")
        _require_account(self.from_account, "TransferFrom owner")
        _require_account(self.to, "TransferFrom recipient")
        _require_int(self.amount, "TransferFrom amount")


Operation = Union[
    Transfer, Mint, SetAllowlist, ExecuteSplit, ChangeSymbol, GrantRole, RevokeRole,
    Approve, TransferFrom,
]


@dataclass(frozen=True, slots=True)
class SubmitResult:
    """
    Outcome of GatedLedger.submit(): exactly one of accepted or rejected.

    Attributes:
        result: APPLIED or REJECTED
        events: Events appended by the operation (empty when rejected)
        reason: Rejection reason (empty when applied)
    """
    result: ExecuteResult
    events: Tuple[LedgerEvent, ...] = ()
    reason: str = ""

    @property
    def accepted(self) -> bool:
        return self.result == ExecuteResult.APPLIED

    def __repr__(self) -> str:
        if self.accepted:
            return f"SubmitResult(applied, {len(self.events)} events)"
        return f"SubmitResult(rejected: {self.reason})"


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to live ledger state.

    Functions accepting a LedgerView declare their read-only intent.
    """

    @property
    def current_height(self) -> int:
        ...

    @property
    def multiplier(self) -> int:
        ...

    @property
    def symbol(self) -> str:
        ...

    def balance_of(self, account: str) -> int:
        """Displayed balance (base balance times the multiplier)."""
        ...

    def base_balance_of(self, account: str) -> int:
        ...

    def is_allowlisted(self, account: str) -> bool:
        ...

    def has_role(self, role: str, account: str) -> bool:
        ...

    def allowance(self, owner: str, spender: str) -> int:
        """Displayed units spender may still move out of owner's balance."""
        ...


@runtime_checkable
class EventFeed(Protocol):
    """
    Ordered source of ledger events.

    query_events must return events ordered by (height, sequence). Heights up
    to the requested bound are assumed final once queried.
    """

    def query_events(
        self,
        kinds: Optional[Iterable[EventKind]] = None,
        from_height: HeightBound = EARLIEST,
        to_height: HeightBound = LATEST,
    ) -> List[LedgerEvent]:
        ...

    @property
    def latest_height(self) -> Optional[int]:
        """Highest height the feed knows about, or None if it knows none."""
        ...

    def timestamp_at(self, height: int) -> datetime:
        ...
