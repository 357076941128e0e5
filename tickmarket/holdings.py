"""
holdings.py - Holdings read model and weighted-average cost basis

A holding is (account, asset) -> quantity + average purchase price. Quantity is
the account's ledger balance of the asset unit; the average purchase price is
kept by the ledger and changed through CostBasisChange entries, so both move
inside the same atomic transaction.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional

from .core import (
    LedgerView, CostBasisChange, SYSTEM_WALLET, TRADABLE_UNIT_TYPES,
    check_positive_amount, checked_add, checked_mul, checked_sub,
)


@dataclass(frozen=True, slots=True)
class Holding:
    """A non-zero position of an account in a stock or coin."""
    wallet: str
    symbol: str
    quantity: int
    average_purchase_price: int

    @property
    def cost_total(self) -> int:
        return checked_mul(self.quantity, self.average_purchase_price)

    def market_value(self, price: int) -> int:
        return checked_mul(self.quantity, price)

    def unrealized_pnl(self, price: int) -> int:
        return checked_sub(self.market_value(price), self.cost_total)


def weighted_average_price(held_quantity: int, held_price: int, quantity: int, price: int) -> int:
    """
    Blend an existing position with a new lot: floor((Q*P + q*p) / (Q + q)).

    >>> weighted_average_price(1000, 100, 1000, 200)
    150
    """
    total_quantity = checked_add(held_quantity, quantity)
    if total_quantity <= 0:
        raise ValueError("Combined quantity must be positive")
    total_cost = checked_add(checked_mul(held_quantity, held_price), checked_mul(quantity, price))
    return total_cost // total_quantity


def get_holding(view: LedgerView, wallet: str, symbol: str) -> Optional[Holding]:
    """The holding of one account in one asset, or None if it holds none."""
    quantity = view.get_positions(symbol).get(wallet, 0)
    if quantity <= 0:
        return None
    return Holding(wallet, symbol, quantity, view.get_cost_basis(wallet, symbol) or 0)


def list_holdings(view: LedgerView, wallet: str, unit_type: Optional[str] = None) -> List[Holding]:
    """All stock and coin holdings of an account, sorted by symbol."""
    types = {unit_type} if unit_type else TRADABLE_UNIT_TYPES
    holdings = []
    for unit_type_ in sorted(types):
        for symbol in view.list_units(unit_type_):
            holding = get_holding(view, wallet, symbol)
            if holding is not None:
                holdings.append(holding)
    return sorted(holdings, key=lambda h: h.symbol)


def holders(view: LedgerView, symbol: str) -> List[Holding]:
    """Holders of an asset, largest position first (system wallet excluded)."""
    result = [
        Holding(wallet, symbol, quantity, view.get_cost_basis(wallet, symbol) or 0)
        for wallet, quantity in view.get_positions(symbol).items()
        if wallet != SYSTEM_WALLET and quantity > 0
    ]
    return sorted(result, key=lambda h: (-h.quantity, h.wallet))


def cost_basis_after_buy(
    view: LedgerView, wallet: str, symbol: str, quantity: int, price: int,
) -> CostBasisChange:
    """CostBasisChange for acquiring `quantity` units at `price`."""
    check_positive_amount(quantity, "quantity")
    held = view.get_positions(symbol).get(wallet, 0)
    old_price = view.get_cost_basis(wallet, symbol)
    if held <= 0 or old_price is None:
        new_price = price
    else:
        new_price = weighted_average_price(held, old_price, quantity, price)
    return CostBasisChange(wallet, symbol, old_price, new_price)


def cost_basis_after_sell(
    view: LedgerView, wallet: str, symbol: str, quantity: int,
) -> Optional[CostBasisChange]:
    """
    CostBasisChange for disposing of `quantity` units.

    Sells leave the average unchanged; closing the position removes it.
    """
    held = view.get_positions(symbol).get(wallet, 0)
    if quantity < held:
        return None
    return CostBasisChange(wallet, symbol, view.get_cost_basis(wallet, symbol), None)
