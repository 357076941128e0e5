"""
helpers.py - Builders shared by unit, conformance and functional tests
"""

from __future__ import annotations
from datetime import datetime, timedelta
from typing import Tuple

from tickmarket.accounts import new_company, new_player
from tickmarket.config.settings import EconomySettings
from tickmarket.ledger import Ledger
from tickmarket.units.crypto import compute_create_cryptocurrency
from tickmarket.units.product import compute_add_product, create_product_unit
from tickmarket.units.stock import create_stock_unit


T0 = datetime(2025, 1, 1, 12, 0)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def make_settings(**overrides) -> EconomySettings:
    """Settings isolated from the environment, seeded for reproducibility."""
    values = {"random_seed": 42}
    values.update(overrides)
    return EconomySettings(_env_file=None, **values)


def make_ledger(balances=None, time: datetime = T0) -> Ledger:
    """Ledger with players alice and bob, funded from the system wallet."""
    if balances is None:
        balances = {"alice": 1_000_000, "bob": 500_000}
    ledger = Ledger("test", time)
    for player_id, amount in balances.items():
        wallet = ledger.register_account(new_player(player_id, player_id.title()))
        if amount:
            ledger.mint(wallet, amount, "funding")
    return ledger


def list_stock(
    ledger: Ledger,
    ticker: str = "ACME",
    price: int = 1_000,
    total_shares: int = 10_000,
    max_shares_per_account: int = 1_000_000,
    company_id: str = "acme",
) -> str:
    """Register a stock unit directly (no IPO checks)."""
    unit = create_stock_unit(
        ticker, company_id, price, total_shares, max_shares_per_account, listed_at=ledger.current_time,
    )
    ledger.register_unit(unit)
    return unit.symbol


def launch_coin(
    ledger: Ledger,
    creator: str = "player:alice",
    ticker: str = "MOON",
    creation_fee: int = 0,
    total_supply: int = 1_000_000,
    initial_supply: int = 100_000,
    initial_market_cap: int = 1_000_000,
    liquidity: int = 100_000,
) -> str:
    pending = compute_create_cryptocurrency(
        ledger, creator, "Moon Coin", ticker,
        creation_fee=creation_fee,
        total_supply=total_supply,
        initial_supply=initial_supply,
        initial_market_cap=initial_market_cap,
        liquidity=liquidity,
    )
    ledger.execute(pending)
    return ticker


def open_company(
    ledger: Ledger,
    company_id: str = "acme",
    owner_id: str = "alice",
    reputation: float = 0.5,
) -> str:
    return ledger.register_account(new_company(company_id, company_id.title(), owner_id, reputation))


def add_product(
    ledger: Ledger,
    symbol: str,
    company_id: str = "acme",
    price: int = 10_000,
    quality_rating: float = 0.8,
    stock=None,
    max_per_order=None,
) -> str:
    unit = create_product_unit(
        symbol, company_id, f"company:{company_id}", f"Product {symbol}", price,
        quality_rating=quality_rating, stock=stock, max_per_order=max_per_order,
        created_at=ledger.current_time,
    )
    ledger.execute(compute_add_product(ledger, unit))
    return symbol


def snapshot(ledger: Ledger) -> Tuple:
    """Comparable copy of balances, unit states and cost basis."""
    balances = {
        wallet: dict(sorted((u, q) for u, q in bals.items() if q != 0))
        for wallet, bals in sorted(ledger.balances.items())
    }
    states = {symbol: ledger.get_unit_state(symbol) for symbol in ledger.list_units()}
    return balances, states, dict(ledger.cost_basis), len(ledger.transaction_log)
