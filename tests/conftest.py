"""
conftest.py - Shared pytest fixtures for equity ledger tests

Provides common fixtures used across unit, functional and conformance tests:
- A bare ledger with only its admin
- An operational ledger (minter, approver, allowlisted holders)
- A funded ledger and a snapshot service
"""

import pytest

from equity_ledger import GatedLedger, CapTableService

from tests.helpers import ADMIN, T0, make_operational_ledger, at_height


@pytest.fixture
def ledger():
    """Ledger with only its genesis admin."""
    return GatedLedger("cet", "CET", ADMIN, initial_time=T0)


@pytest.fixture
def operational():
    """ADMIN holds every role; alice, bob, charlie and dave are allowlisted."""
    return make_operational_ledger()


@pytest.fixture
def funded():
    """Operational ledger at height 10 with alice=1000 and bob=500 base units."""
    ledger = at_height(make_operational_ledger(), 10)
    ledger.mint(ADMIN, "alice", 1000)
    ledger.mint(ADMIN, "bob", 500)
    return ledger


@pytest.fixture
def service():
    return CapTableService()
