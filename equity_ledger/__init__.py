"""
equity_ledger - Gated Equity Ledger and Cap Table Replay

A role-gated ledger for a restricted security, plus deterministic
reconstruction of ownership snapshots ("cap tables") at any historical height.

Usage:
    from equity_ledger import (
        GatedLedger, CapTableService, MINTER_ROLE, APPROVER_ROLE,
    )

    ledger = GatedLedger("cet", symbol="CET", admin="issuer")
    ledger.grant_role("issuer", MINTER_ROLE, "issuer")
    ledger.grant_role("issuer", APPROVER_ROLE, "issuer")
    ledger.approve_wallet("issuer", "alice")
    ledger.approve_wallet("issuer", "bob")

    ledger.advance_height(10)
    ledger.mint("issuer", "alice", 2)
    ledger.mint("issuer", "bob", 1)

    ledger.advance_height(20)
    ledger.execute_split("issuer", 7)

    service = CapTableService()
    service.register_ledger(ledger)
    table = service.get_cap_table("cet", height=10)
    # alice 66.666666, bob 33.333333, with a rounding note
"""

# Core types
from .core import (
    LedgerView,
    EventFeed,
    LedgerEvent,
    EventKind,
    ExecuteResult,
    SubmitResult,
    ledger_event,
    digest_events,
    Transfer,
    Mint,
    SetAllowlist,
    ExecuteSplit,
    ChangeSymbol,
    GrantRole,
    RevokeRole,
    Approve,
    TransferFrom,
    Operation,
    LedgerError,
    ValidationError,
    NotFoundError,
    OutOfRangeError,
    CorruptionError,
    NULL_ACCOUNT,
    DEFAULT_ADMIN_ROLE,
    MINTER_ROLE,
    APPROVER_ROLE,
    PERCENTAGE_PRECISION,
    PERCENT,
    ROUNDING_NOTE,
    DEFAULT_LEDGER_NAME,
    EARLIEST,
    LATEST,
    EPOCH,
)

# Access control
from .access import (
    ROLE_ADMINS,
    has_role,
    admin_role_of,
    can_administer,
    require_role,
    require_admin_of,
)

# Event log
from .event_log import EventLog, verify_ordering

# Ledger
from .ledger import GatedLedger

# Replay
from .replay import (
    LedgerState,
    ReplayCheckpoint,
    CheckpointCache,
    replay_balances,
    replay_state,
    multiplier_at,
    total_base_supply_at,
)

# Calculator
from .calculator import (
    PercentageSum,
    displayed_balance,
    displayed_balances,
    full_scale,
    percentage_scaled,
    format_percentage,
    parse_percentage,
    ownership_percentage,
    rounding_residual,
    rounding_note,
    calculate_percentage_sum,
)

# Snapshots
from .snapshot import HolderEntry, CapTableSnapshot, assemble_snapshot

# Service
from .service import CapTableService, HeightLookup

# History
from .history import (
    HistoryEntry,
    WalletRow,
    classify_event,
    transaction_history,
    wallet_rows,
)

__all__ = [
    # Core types
    'LedgerView',
    'EventFeed',
    'LedgerEvent',
    'EventKind',
    'ExecuteResult',
    'SubmitResult',
    'ledger_event',
    'digest_events',
    'Transfer',
    'Mint',
    'SetAllowlist',
    'ExecuteSplit',
    'ChangeSymbol',
    'GrantRole',
    'RevokeRole',
    'Approve',
    'TransferFrom',
    'Operation',
    # Exceptions
    'LedgerError',
    'ValidationError',
    'NotFoundError',
    'OutOfRangeError',
    'CorruptionError',
    # Constants
    'NULL_ACCOUNT',
    'DEFAULT_ADMIN_ROLE',
    'MINTER_ROLE',
    'APPROVER_ROLE',
    'PERCENTAGE_PRECISION',
    'PERCENT',
    'ROUNDING_NOTE',
    'DEFAULT_LEDGER_NAME',
    'EARLIEST',
    'LATEST',
    'EPOCH',
    # Access control
    'ROLE_ADMINS',
    'has_role',
    'admin_role_of',
    'can_administer',
    'require_role',
    'require_admin_of',
    # Event log
    'EventLog',
    'verify_ordering',
    # Ledger
    'GatedLedger',
    # Replay
    'LedgerState',
    'ReplayCheckpoint',
    'CheckpointCache',
    'replay_balances',
    'replay_state',
    'multiplier_at',
    'total_base_supply_at',
    # Calculator
    'PercentageSum',
    'displayed_balance',
    'displayed_balances',
    'full_scale',
    'percentage_scaled',
    'format_percentage',
    'parse_percentage',
    'ownership_percentage',
    'rounding_residual',
    'rounding_note',
    'calculate_percentage_sum',
    # Snapshots
    'HolderEntry',
    'CapTableSnapshot',
    'assemble_snapshot',
    # Service
    'CapTableService',
    'HeightLookup',
    # History
    'HistoryEntry',
    'WalletRow',
    'classify_event',
    'transaction_history',
    'wallet_rows',
]

__version__ = '1.0.0'
