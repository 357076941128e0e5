"""
test_holdings_cost_basis.py - Unit tests for holdings and weighted-average cost

Tests:
- Weighted average blends lots and floors to cents
- Sells keep the average; closing a position removes it
- Holding read model (market value, unrealized P&L, holders ordering)
"""

import pytest

from tickmarket.core import SYSTEM_WALLET, UNIT_TYPE_STOCK, UNIT_TYPE_CRYPTO, InvalidAmount
from tickmarket.holdings import (
    Holding, cost_basis_after_buy, cost_basis_after_sell, get_holding, holders,
    list_holdings, weighted_average_price,
)

from tests.fake_view import FakeView, FakeUnit


ALICE = "player:alice"
BOB = "player:bob"


def _view(alice_qty=0, alice_price=None, bob_qty=0):
    balances = {
        SYSTEM_WALLET: {"ACME": -(alice_qty + bob_qty)},
        ALICE: {"ACME": alice_qty} if alice_qty else {},
        BOB: {"ACME": bob_qty} if bob_qty else {},
    }
    cost_basis = {(ALICE, "ACME"): alice_price} if alice_price is not None else {}
    return FakeView(
        balances,
        states={"ACME": {"price": 150}, "MOON": {"price": 10}},
        units={"ACME": FakeUnit("ACME", UNIT_TYPE_STOCK), "MOON": FakeUnit("MOON", UNIT_TYPE_CRYPTO)},
        cost_basis=cost_basis,
    )


class TestWeightedAverage:

    def test_equal_lots_average(self):
        assert weighted_average_price(100, 100, 100, 200) == 150

    def test_uneven_lots_floor(self):
        # (3*100 + 1*101) / 4 = 100.25
        assert weighted_average_price(3, 100, 1, 101) == 100

    def test_zero_combined_quantity(self):
        with pytest.raises(ValueError):
            weighted_average_price(0, 0, 0, 100)


class TestCostBasisChanges:

    def test_first_buy_sets_price(self):
        change = cost_basis_after_buy(_view(), ALICE, "ACME", 100, 100)
        assert change.old_price is None
        assert change.new_price == 100

    def test_second_buy_blends(self):
        change = cost_basis_after_buy(_view(100, 100), ALICE, "ACME", 100, 200)
        assert change.old_price == 100
        assert change.new_price == 150

    def test_buy_rejects_non_positive_quantity(self):
        with pytest.raises(InvalidAmount):
            cost_basis_after_buy(_view(), ALICE, "ACME", 0, 100)

    def test_partial_sell_keeps_average(self):
        assert cost_basis_after_sell(_view(200, 150), ALICE, "ACME", 50) is None

    def test_full_sell_removes_average(self):
        change = cost_basis_after_sell(_view(200, 150), ALICE, "ACME", 200)
        assert change.old_price == 150
        assert change.new_price is None


class TestHoldingReadModel:

    def test_holding_valuation(self):
        holding = Holding(ALICE, "ACME", 10, 100)
        assert holding.cost_total == 1_000
        assert holding.market_value(150) == 1_500
        assert holding.unrealized_pnl(90) == -100

    def test_get_holding(self):
        view = _view(200, 150)
        assert get_holding(view, ALICE, "ACME") == Holding(ALICE, "ACME", 200, 150)
        assert get_holding(view, BOB, "ACME") is None

    def test_list_holdings_filters_by_type(self):
        view = _view(5, 100)
        assert [h.symbol for h in list_holdings(view, ALICE)] == ["ACME"]
        assert list_holdings(view, ALICE, UNIT_TYPE_CRYPTO) == []

    def test_holders_largest_first_without_house(self):
        view = _view(alice_qty=5, alice_price=100, bob_qty=20)
        result = holders(view, "ACME")
        assert [h.wallet for h in result] == [BOB, ALICE]
        assert result[0].average_purchase_price == 0
