"""
conftest.py - Shared pytest fixtures for tickmarket tests

Provides common fixtures used across unit, conformance and functional tests:
- Ledgers (funded players, listed stock and coin, products)
- Seeded settings and a manual clock
- A GameEconomy facade with registered players and an admin
"""

import numpy as np
import pytest

from tickmarket import GameEconomy, Role
from tickmarket.config.logging import setup_logging

from tests.helpers import (
    T0, ManualClock, make_settings, make_ledger, list_stock, launch_coin,
    open_company, add_product,
)


setup_logging("WARNING", "plain")


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def t0():
    return T0


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def ledger():
    """Ledger with alice (1,000,000 cents) and bob (500,000 cents)."""
    return make_ledger()


# =============================================================================
# MARKET FIXTURES
# =============================================================================

@pytest.fixture
def market_ledger():
    """Funded ledger with stock ACME (1,000 cents, 10,000 shares) and coin MOON (10 cents)."""
    ledger = make_ledger()
    open_company(ledger, "acme", "alice")
    list_stock(ledger, "ACME", price=1_000, total_shares=10_000, max_shares_per_account=5_000)
    launch_coin(ledger, "player:alice", "MOON")
    return ledger


@pytest.fixture
def shop_ledger():
    """Ledger with company acme selling two products."""
    ledger = make_ledger()
    open_company(ledger, "acme", "alice", reputation=0.8)
    add_product(ledger, "PROD-A", price=10_000, quality_rating=0.9, stock=50)
    add_product(ledger, "PROD-B", price=250_000, quality_rating=0.4)
    return ledger


# =============================================================================
# FACADE FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest.fixture
def economy(clock):
    """GameEconomy with an admin and players alice and bob (1,000,000 cents each)."""
    economy = GameEconomy(
        make_settings(ipo_min_company_balance=500_000),
        initial_time=T0,
        clock=clock,
    )
    economy.register_player("root", "Root", Role.ADMIN).unwrap()
    economy.register_player("alice", "Alice").unwrap()
    economy.register_player("bob", "Bob").unwrap()
    return economy
