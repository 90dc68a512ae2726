"""
ledger.py - Role-gated equity ledger state machine

GatedLedger is the only class that mutates ledger state.

Key responsibilities:
    - Implements LedgerView protocol for read-only access by pure functions
    - Validates every operation completely before mutating anything
    - Appends exactly the events of an accepted operation, none for a rejected one
    - Keeps base balances; displayed balances are derived from the multiplier
    - Tracks the logical block clock (height, time)
"""

from __future__ import annotations
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, Optional, Set, Tuple

from .core import (
    # Types
    LedgerEvent, EventKind, ExecuteResult, SubmitResult,
    Operation, Transfer, Mint, SetAllowlist, ExecuteSplit, ChangeSymbol,
    GrantRole, RevokeRole, Approve, TransferFrom,
    # Constants
    NULL_ACCOUNT, DEFAULT_ADMIN_ROLE, MINTER_ROLE, APPROVER_ROLE,
    DEFAULT_LEDGER_NAME, EPOCH,
    # Exceptions
    ValidationError, OutOfRangeError,
)
from .access import has_role, require_role, require_admin_of
from .event_log import EventLog
from .replay import replay_state


class GatedLedger:
    """
    Restricted equity ledger with allowlisted transfers and virtual splits.

    Implements the LedgerView protocol.

    Design Principles:
        - All-or-nothing: each handler runs every check before its first write,
          so a ValidationError leaves balances, roles and the log untouched.
        - Base units inside, displayed units outside: transfer inputs and
          balance_of() use displayed units (base * multiplier); storage and
          events use base units. Mint amounts are base units. Allowances are
          displayed units and are spent by the requested TransferFrom amount.
        - Every accepted change is logged, so replay() of the log rebuilds
          the same state.

    Thread Safety:
        Not thread-safe. One writer per GatedLedger.

    Example:
        ledger = GatedLedger("cet", symbol="CET", admin="issuer")
        ledger.grant_role("issuer", MINTER_ROLE, "issuer")
        ledger.grant_role("issuer", APPROVER_ROLE, "issuer")
        ledger.approve_wallet("issuer", "alice")
        ledger.mint("issuer", "alice", 1000)
        ledger.execute_split("issuer", 7)
        ledger.balance_of("alice")   # 7000
    """

    def __init__(
        self,
        ledger_id: str,
        symbol: str,
        admin: str,
        genesis_height: int = 0,
        initial_time: Optional[datetime] = None,
        name: str = DEFAULT_LEDGER_NAME,
        verbose: bool = False,
    ):
        """
        Create a ledger and record its genesis events.

        Args:
            ledger_id: Ledger identifier (e.g. a contract address)
            symbol: Initial symbol, must be non-empty
            admin: Account granted DEFAULT_ADMIN_ROLE at genesis
            genesis_height: Height the ledger is deployed at (default: 0)
            initial_time: Time of the genesis height (default: 1970-01-01)
            name: Display name
            verbose: Print one line per submitted operation (default: False)
        """
        if not isinstance(symbol, str) or not symbol.strip():
            raise ValueError("Symbol cannot be empty")
        if not isinstance(admin, str) or not admin.strip():
            raise ValueError("Admin account cannot be empty")
        if isinstance(genesis_height, bool) or not isinstance(genesis_height, int) or genesis_height < 0:
            raise ValueError(f"Genesis height must be a non-negative int, got {genesis_height!r}")

        self.ledger_id = ledger_id
        self.name = name
        self.verbose = verbose
        self.genesis_height = genesis_height
        self._current_height: int = genesis_height
        self._current_time: datetime = initial_time or EPOCH
        self._base_balances: Dict[str, int] = {}
        self._allowlist: Set[str] = set()
        self._roles: Dict[str, Set[str]] = defaultdict(set)
        self._multiplier: int = 1
        self._symbol: str = symbol
        # (owner, spender) -> remaining allowance, displayed units
        self._allowances: Dict[Tuple[str, str], int] = {}

        self.event_log = EventLog(ledger_id)
        self.event_log.mark_height(genesis_height, self._current_time)
        self._roles[DEFAULT_ADMIN_ROLE].add(admin)
        self._emit(EventKind.ROLE_GRANTED,
                   {'role': DEFAULT_ADMIN_ROLE, 'account': admin, 'sender': admin})
        self._emit(EventKind.SYMBOL_CHANGED, {'old_symbol': "", 'new_symbol': symbol})

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_height(self) -> int:
        return self._current_height

    @property
    def current_time(self) -> datetime:
        """Time of the current height."""
        return self._current_time

    @property
    def multiplier(self) -> int:
        """Product of every split factor executed so far."""
        return self._multiplier

    @property
    def symbol(self) -> str:
        return self._symbol

    def balance_of(self, account: str) -> int:
        """Displayed balance: base balance times the current multiplier."""
        return self._base_balances.get(account, 0) * self._multiplier

    def base_balance_of(self, account: str) -> int:
        return self._base_balances.get(account, 0)

    def is_allowlisted(self, account: str) -> bool:
        return account in self._allowlist

    def has_role(self, role: str, account: str) -> bool:
        return has_role(self._roles, role, account)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    # ========================================================================
    # ADDITIONAL QUERIES
    # ========================================================================

    def total_base_supply(self) -> int:
        return sum(self._base_balances.values())

    def total_supply(self) -> int:
        """Displayed total supply."""
        return self.total_base_supply() * self._multiplier

    def role_members(self, role: str) -> FrozenSet[str]:
        return frozenset(self._roles.get(role, ()))

    def allowlisted_accounts(self) -> FrozenSet[str]:
        return frozenset(self._allowlist)

    def allowances(self) -> Dict[Tuple[str, str], int]:
        """Every non-zero allowance, keyed by (owner, spender)."""
        return dict(self._allowances)

    def holders(self) -> Dict[str, int]:
        """
        Displayed balances of every non-zero holder.

        Ordered by balance descending, then account ascending.
        """
        ranked = sorted(self._base_balances.items(), key=lambda kv: (-kv[1], kv[0]))
        return {account: base * self._multiplier for account, base in ranked}

    @property
    def events(self) -> Tuple[LedgerEvent, ...]:
        return self.event_log.events

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_height(self, height: int, timestamp: Optional[datetime] = None) -> None:
        """
        Move the logical block clock forward.

        Args:
            height: New current height
            timestamp: Time of the new height (default: keep the current time)

        Raises:
            ValueError: If height or timestamp would move backwards
        """
        if isinstance(height, bool) or not isinstance(height, int):
            raise ValueError(f"Height must be int, got {type(height)}")
        if height < self._current_height:
            raise ValueError(
                f"Cannot move height backwards: {height} < {self._current_height}"
            )
        timestamp = timestamp or self._current_time
        if timestamp < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {timestamp} < {self._current_time}"
            )
        if height == self._current_height:
            return
        self._current_height = height
        self._current_time = timestamp
        self.event_log.mark_height(height, timestamp)

    # ========================================================================
    # SUBMISSION
    # ========================================================================

    def submit(self, op: Operation) -> SubmitResult:
        """
        Validate and apply one operation atomically.

        Never raises ValidationError: a failed precondition comes back as a
        REJECTED result carrying the reason, with no state change and no event.

        Returns:
            SubmitResult with the appended events, or the rejection reason
        """
        try:
            events = self._execute(op)
        except ValidationError as e:
            if self.verbose:
                print(f"✗ REJECTED: {type(op).__name__} by {op.caller}: {e.reason}")
            return SubmitResult(ExecuteResult.REJECTED, reason=e.reason)

        if self.verbose:
            kinds = ", ".join(ev.kind.value for ev in events) or "no change"
            print(f"✓ APPLIED @{self._current_height}: {type(op).__name__} by {op.caller} [{kinds}]")
        return SubmitResult(ExecuteResult.APPLIED, events=events)

    def _execute(self, op: Operation) -> Tuple[LedgerEvent, ...]:
        if isinstance(op, Transfer):
            return self._transfer(op)
        if isinstance(op, Mint):
            return self._mint(op)
        if isinstance(op, SetAllowlist):
            return self._set_allowlist(op)
        if isinstance(op, ExecuteSplit):
            return self._execute_split(op)
        if isinstance(op, ChangeSymbol):
            return self._change_symbol(op)
        if isinstance(op, GrantRole):
            return self._grant_role(op)
        if isinstance(op, RevokeRole):
            return self._revoke_role(op)
        if isinstance(op, Approve):
            return self._approve(op)
        if isinstance(op, TransferFrom):
            return self._transfer_from(op)
        raise TypeError(f"Unsupported operation: {op!r}")

    def _emit(self, kind: EventKind, args: Dict[str, Any]) -> LedgerEvent:
        return self.event_log.append(kind, args, self._current_height, self._current_time)

    # ------------------------------------------------------------------------
    # Handlers: every check precedes the first write.
    # ------------------------------------------------------------------------

    def _base_amount(self, source: str, to: str, amount: int) -> int:
        """Checks shared by Transfer and TransferFrom; returns the base units to move."""
        if source == NULL_ACCOUNT:
            raise ValidationError("Invalid sender")
        if to == NULL_ACCOUNT:
            raise ValidationError("Invalid recipient")
        if source not in self._allowlist:
            raise ValidationError("Sender not allowlisted")
        if to not in self._allowlist:
            raise ValidationError("Recipient not allowlisted")
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        base = amount // self._multiplier
        if base == 0:
            raise ValidationError("Transfer amount truncates to zero base units")
        return base

    def _move(self, source: str, to: str, base: int) -> LedgerEvent:
        self._credit(source, -base)
        self._credit(to, base)
        return self._emit(EventKind.TRANSFER,
                          {'from_account': source, 'to_account': to, 'value': base})

    def _transfer(self, op: Transfer) -> Tuple[LedgerEvent, ...]:
        base = self._base_amount(op.caller, op.to, op.amount)
        if self._base_balances.get(op.caller, 0) < base:
            raise ValidationError("Insufficient balance")

        return (self._move(op.caller, op.to, base),)

    def _transfer_from(self, op: TransferFrom) -> Tuple[LedgerEvent, ...]:
        base = self._base_amount(op.from_account, op.to, op.amount)
        key = (op.from_account, op.caller)
        allowed = self._allowances.get(key, 0)
        if allowed < op.amount:
            raise ValidationError("Insufficient allowance")
        if self._base_balances.get(op.from_account, 0) < base:
            raise ValidationError("Insufficient balance")

        self._set_allowance(key, allowed - op.amount)
        approval = self._emit(EventKind.APPROVAL, {
            'owner': op.from_account, 'spender': op.caller, 'value': allowed - op.amount,
        })
        return (approval, self._move(op.from_account, op.to, base))

    def _approve(self, op: Approve) -> Tuple[LedgerEvent, ...]:
        if op.caller == NULL_ACCOUNT:
            raise ValidationError("Invalid approver")
        if op.spender == NULL_ACCOUNT:
            raise ValidationError("Invalid spender")
        if op.amount < 0:
            raise ValidationError("Allowance cannot be negative")

        self._set_allowance((op.caller, op.spender), op.amount)
        return (self._emit(EventKind.APPROVAL,
                           {'owner': op.caller, 'spender': op.spender, 'value': op.amount}),)

    def _mint(self, op: Mint) -> Tuple[LedgerEvent, ...]:
        require_role(self._roles, MINTER_ROLE, op.caller)
        if op.to == NULL_ACCOUNT:
            raise ValidationError("Invalid recipient")
        if op.to not in self._allowlist:
            raise ValidationError("Recipient not allowlisted")
        if op.amount <= 0:
            raise ValidationError("Amount must be greater than zero")

        self._credit(op.to, op.amount)
        return (self._emit(EventKind.TRANSFER,
                           {'from_account': NULL_ACCOUNT, 'to_account': op.to, 'value': op.amount}),)

    def _set_allowlist(self, op: SetAllowlist) -> Tuple[LedgerEvent, ...]:
        require_role(self._roles, APPROVER_ROLE, op.caller)

        if op.approved:
            self._allowlist.add(op.account)
        else:
            self._allowlist.discard(op.account)
        return (self._emit(EventKind.ALLOWLIST_UPDATED,
                           {'account': op.account, 'approved': op.approved}),)

    def _execute_split(self, op: ExecuteSplit) -> Tuple[LedgerEvent, ...]:
        require_role(self._roles, DEFAULT_ADMIN_ROLE, op.caller)
        if op.factor <= 0:
            raise ValidationError("Multiplier must be greater than 0")

        self._multiplier *= op.factor
        return (self._emit(EventKind.SPLIT_EXECUTED, {
            'factor': op.factor,
            'multiplier': self._multiplier,
            'height': self._current_height,
        }),)

    def _change_symbol(self, op: ChangeSymbol) -> Tuple[LedgerEvent, ...]:
        require_role(self._roles, DEFAULT_ADMIN_ROLE, op.caller)
        if not op.new_symbol.strip():
            raise ValidationError("Symbol cannot be empty")

        old_symbol = self._symbol
        self._symbol = op.new_symbol
        return (self._emit(EventKind.SYMBOL_CHANGED,
                           {'old_symbol': old_symbol, 'new_symbol': op.new_symbol}),)

    def _grant_role(self, op: GrantRole) -> Tuple[LedgerEvent, ...]:
        require_admin_of(self._roles, op.role, op.caller)
        if op.account in self._roles[op.role]:
            return ()

        self._roles[op.role].add(op.account)
        return (self._emit(EventKind.ROLE_GRANTED,
                           {'role': op.role, 'account': op.account, 'sender': op.caller}),)

    def _revoke_role(self, op: RevokeRole) -> Tuple[LedgerEvent, ...]:
        require_admin_of(self._roles, op.role, op.caller)
        if op.account not in self._roles.get(op.role, ()):
            return ()

        self._roles[op.role].discard(op.account)
        return (self._emit(EventKind.ROLE_REVOKED,
                           {'role': op.role, 'account': op.account, 'sender': op.caller}),)

    def _credit(self, account: str, delta: int) -> None:
        balance = self._base_balances.get(account, 0) + delta
        if balance:
            self._base_balances[account] = balance
        else:
            self._base_balances.pop(account, None)

    def _set_allowance(self, key: Tuple[str, str], value: int) -> None:
        if value:
            self._allowances[key] = value
        else:
            self._allowances.pop(key, None)

    # ========================================================================
    # CONVENIENCE (raise ValidationError on rejection)
    # ========================================================================

    def _submit_or_raise(self, op: Operation) -> Tuple[LedgerEvent, ...]:
        result = self.submit(op)
        if not result.accepted:
            raise ValidationError(result.reason)
        return result.events

    def transfer(self, caller: str, to: str, amount: int) -> Tuple[LedgerEvent, ...]:
        """Transfer `amount` displayed units from caller to `to`."""
        return self._submit_or_raise(Transfer(caller, to, amount))

    def approve(self, caller: str, spender: str, amount: int) -> Tuple[LedgerEvent, ...]:
        """Set spender's allowance over caller's balance to `amount` displayed units."""
        return self._submit_or_raise(Approve(caller, spender, amount))

    def transfer_from(self, caller: str, from_account: str, to: str, amount: int) -> Tuple[LedgerEvent, ...]:
        """Transfer `amount` displayed units from `from_account`, spending caller's allowance."""
        return self._submit_or_raise(TransferFrom(caller, from_account, to, amount))

    def mint(self, caller: str, to: str, amount: int) -> Tuple[LedgerEvent, ...]:
        """Mint `amount` base units to `to`."""
        return self._submit_or_raise(Mint(caller, to, amount))

    def set_allowlist(self, caller: str, account: str, approved: bool) -> Tuple[LedgerEvent, ...]:
        return self._submit_or_raise(SetAllowlist(caller, account, approved))

    def approve_wallet(self, caller: str, account: str) -> Tuple[LedgerEvent, ...]:
        return self.set_allowlist(caller, account, True)

    def revoke_wallet(self, caller: str, account: str) -> Tuple[LedgerEvent, ...]:
        return self.set_allowlist(caller, account, False)

    def execute_split(self, caller: str, factor: int) -> Tuple[LedgerEvent, ...]:
        return self._submit_or_raise(ExecuteSplit(caller, factor))

    def change_symbol(self, caller: str, new_symbol: str) -> Tuple[LedgerEvent, ...]:
        return self._submit_or_raise(ChangeSymbol(caller, new_symbol))

    def grant_role(self, caller: str, role: str, account: str) -> Tuple[LedgerEvent, ...]:
        return self._submit_or_raise(GrantRole(caller, role, account))

    def revoke_role(self, caller: str, role: str, account: str) -> Tuple[LedgerEvent, ...]:
        return self._submit_or_raise(RevokeRole(caller, role, account))

    # ========================================================================
    # CLONING AND REPLAY
    # ========================================================================

    def clone(self) -> GatedLedger:
        """
        Create a fully independent copy of this ledger.

        Changes to the clone never affect the original, and vice versa.
        """
        cloned = GatedLedger.__new__(GatedLedger)
        cloned.ledger_id = self.ledger_id
        cloned.name = self.name
        cloned.verbose = self.verbose
        cloned.genesis_height = self.genesis_height
        cloned._current_height = self._current_height
        cloned._current_time = self._current_time
        cloned._base_balances = dict(self._base_balances)
        cloned._allowlist = set(self._allowlist)
        cloned._roles = defaultdict(set, {r: set(m) for r, m in self._roles.items()})
        cloned._multiplier = self._multiplier
        cloned._symbol = self._symbol
        cloned._allowances = dict(self._allowances)
        cloned.event_log = self.event_log.clone()
        return cloned

    @classmethod
    def from_events(
        cls,
        events: Iterable[LedgerEvent],
        ledger_id: str = "",
        name: str = DEFAULT_LEDGER_NAME,
        verbose: bool = False,
    ) -> GatedLedger:
        """
        Rebuild a live ledger by replaying an event log.

        The genesis height is the height of the first event.

        Raises:
            CorruptionError: If the events are out of order or malformed
            ValueError: If there are no events
        """
        log = EventLog.from_events(events, ledger_id)
        if not len(log):
            raise ValueError("Cannot rebuild a ledger from an empty event log")
        state = replay_state(log.events)

        ledger = cls.__new__(cls)
        ledger.ledger_id = ledger_id
        ledger.name = name
        ledger.verbose = verbose
        ledger.genesis_height = log.first_height
        ledger._current_height = log.latest_height
        ledger._current_time = log.timestamp_at(log.latest_height)
        ledger._base_balances = dict(state.balances)
        ledger._allowlist = set(state.allowlist)
        ledger._roles = defaultdict(set, {r: set(m) for r, m in state.roles.items()})
        ledger._multiplier = state.multiplier
        ledger._symbol = state.symbol
        ledger._allowances = dict(state.allowances)
        ledger.event_log = log
        return ledger

    def clone_at(self, height: int) -> GatedLedger:
        """
        Reconstruct this ledger as it was at `height` by replaying the log prefix.

        Raises:
            OutOfRangeError: If height is before genesis or after the current height
        """
        if height < self.genesis_height or height > self._current_height:
            raise OutOfRangeError(
                f"Height {height} outside [{self.genesis_height}, {self._current_height}]"
            )
        past = GatedLedger.from_events(
            self.event_log.prefix(height), self.ledger_id, self.name, self.verbose,
        )
        past.advance_height(height, self.event_log.timestamp_at(height))
        return past

    def replay(self) -> GatedLedger:
        """Rebuild from this ledger's own log; the result matches the live state."""
        rebuilt = GatedLedger.from_events(self.event_log.events, self.ledger_id, self.name, self.verbose)
        rebuilt.advance_height(self._current_height, self._current_time)
        return rebuilt

    def __repr__(self) -> str:
        return (f"GatedLedger({self.ledger_id!r}, symbol={self._symbol!r}, "
                f"height={self._current_height}, multiplier={self._multiplier}, "
                f"holders={len(self._base_balances)})")
