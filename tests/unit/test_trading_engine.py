"""
test_trading_engine.py - Unit tests for buying, selling and gifting assets

Tests:
- Stock trades fill at the stored price with no impact
- Buy by quantity or by cash amount
- Balance, holding cap and float/supply limits
- Coin trades fill pre-impact and then move price and supply
- Holding transfers carry the sender's average price
- Trade log and volume counters
"""

import pytest

from tickmarket.core import (
    CASH, SYSTEM_WALLET, AssetNotFound, HoldingLimitExceeded, InsufficientBalance,
    InsufficientHoldings, InvalidAmount,
)
from tickmarket.history import TradeLog
from tickmarket.pricing import CryptoModelParams, Side
from tickmarket.trading import TradingEngine, compute_buy, resolve_quantity
from tickmarket.units.stock import compute_set_price

from tests.helpers import add_product, launch_coin, list_stock


ALICE = "player:alice"
BOB = "player:bob"


@pytest.fixture
def engine(market_ledger):
    return TradingEngine(market_ledger, trade_log=TradeLog())


def _set_price(ledger, symbol, price):
    ledger.execute(compute_set_price(ledger, symbol, price, "player:root"))


class TestResolveQuantity:

    def test_amount_rounds_down(self):
        assert resolve_quantity(None, 2_500, 1_000) == 2

    def test_quantity_passes_through(self):
        assert resolve_quantity(7, None, 1_000) == 7

    @pytest.mark.parametrize("quantity, amount", [(None, None), (1, 1_000), (None, 999), (0, None)])
    def test_invalid(self, quantity, amount):
        with pytest.raises(InvalidAmount):
            resolve_quantity(quantity, amount, 1_000)


class TestStockTrades:

    def test_buy(self, engine, market_ledger):
        receipt = engine.buy(ALICE, "ACME", quantity=10)
        assert receipt.price == 1_000
        assert receipt.total == 10_000
        assert receipt.new_price == 1_000
        assert market_ledger.get_balance(ALICE) == 990_000
        assert market_ledger.get_balance(ALICE, "ACME") == 10
        assert market_ledger.get_cost_basis(ALICE, "ACME") == 1_000
        assert market_ledger.get_unit_state("ACME")['price'] == 1_000

    def test_buy_by_amount(self, engine, market_ledger):
        receipt = engine.buy(ALICE, "ACME", amount=2_500)
        assert receipt.quantity == 2
        assert market_ledger.get_balance(ALICE) == 998_000

    def test_buy_beyond_cash(self, engine, market_ledger):
        with pytest.raises(InsufficientBalance):
            engine.buy(BOB, "ACME", quantity=501)
        assert market_ledger.get_balance(BOB, "ACME") == 0

    def test_buy_beyond_account_cap(self, engine, market_ledger):
        market_ledger.mint(ALICE, 10_000_000)
        with pytest.raises(HoldingLimitExceeded):
            engine.buy(ALICE, "ACME", quantity=5_001)

    def test_buy_beyond_float(self, engine, market_ledger):
        list_stock(market_ledger, "TINY", price=1, total_shares=10)
        engine.buy(BOB, "TINY", quantity=10)
        with pytest.raises(HoldingLimitExceeded):
            engine.buy(ALICE, "TINY", quantity=1)

    def test_sell_keeps_average_until_closed(self, engine, market_ledger):
        engine.buy(ALICE, "ACME", quantity=10)
        engine.sell(ALICE, "ACME", 4)
        assert market_ledger.get_balance(ALICE) == 994_000
        assert market_ledger.get_cost_basis(ALICE, "ACME") == 1_000
        engine.sell(ALICE, "ACME", 6)
        assert market_ledger.get_balance(ALICE, "ACME") == 0
        assert market_ledger.get_cost_basis(ALICE, "ACME") is None

    def test_oversell(self, engine):
        engine.buy(ALICE, "ACME", quantity=3)
        with pytest.raises(InsufficientHoldings):
            engine.sell(ALICE, "ACME", 4)

    def test_average_price_blends_lots(self, engine, market_ledger):
        engine.buy(ALICE, "ACME", quantity=10)
        _set_price(market_ledger, "ACME", 2_000)
        engine.buy(ALICE, "ACME", quantity=10)
        assert market_ledger.get_cost_basis(ALICE, "ACME") == 1_500

    def test_sell_at_profit(self, engine, market_ledger):
        engine.buy(ALICE, "ACME", quantity=10)
        _set_price(market_ledger, "ACME", 1_500)
        receipt = engine.sell(ALICE, "ACME", 10)
        assert receipt.total == 15_000
        assert market_ledger.get_balance(ALICE) == 1_005_000

    @pytest.mark.parametrize("symbol", [CASH, "NOPE"])
    def test_untradable_symbols(self, engine, symbol):
        with pytest.raises(AssetNotFound):
            engine.buy(ALICE, symbol, quantity=1)

    def test_products_are_not_tradable(self, engine, market_ledger):
        add_product(market_ledger, "PROD-A")
        with pytest.raises(AssetNotFound):
            engine.buy(ALICE, "PROD-A", quantity=1)


class TestCryptoTrades:

    @pytest.fixture
    def gem(self, market_ledger):
        # 100,000 coins at 1,000 cents; shallow liquidity so impact is visible
        return launch_coin(market_ledger, ticker="GEM", initial_market_cap=100_000_000, liquidity=1_000)

    def test_buy_fills_before_impact(self, engine, market_ledger, gem):
        receipt = engine.buy(BOB, gem, quantity=100)
        state = market_ledger.get_unit_state(gem)
        assert receipt.price == 1_000
        assert receipt.total == 100_000
        assert receipt.quote.price_impact > 0
        assert receipt.new_price == 1_008
        assert state['price'] == 1_008
        assert state['previous_price'] == 1_000
        assert state['circulating_supply'] == 100_100
        assert state['market_cap'] == 1_008 * 100_100
        assert market_ledger.get_balance(BOB) == 400_000

    def test_sell_pushes_price_down(self, engine, market_ledger, gem):
        engine.buy(BOB, gem, quantity=100)
        receipt = engine.sell(BOB, gem, 100)
        state = market_ledger.get_unit_state(gem)
        assert receipt.price == 1_008
        assert receipt.quote.side == Side.SELL
        assert state['price'] < 1_008
        assert state['circulating_supply'] == 100_000

    def test_supply_cap(self, engine, market_ledger):
        launch_coin(market_ledger, ticker="FULL", total_supply=100_000, initial_supply=100_000)
        with pytest.raises(HoldingLimitExceeded):
            engine.buy(BOB, "FULL", quantity=1)

    def test_impact_parameters_are_used(self, market_ledger, gem):
        flat = CryptoModelParams(max_trade_impact=0.0)
        pending, quote = compute_buy(market_ledger, BOB, gem, 100, flat)
        assert quote.price_impact == 0.0
        assert quote.new_price == 1_000


class TestHoldingTransfers:

    def test_recipient_inherits_average(self, engine, market_ledger):
        engine.buy(ALICE, "ACME", quantity=10)
        engine.transfer_holding(ALICE, BOB, "ACME", 4)
        assert market_ledger.get_balance(BOB, "ACME") == 4
        assert market_ledger.get_cost_basis(BOB, "ACME") == 1_000
        assert market_ledger.get_cost_basis(ALICE, "ACME") == 1_000

    def test_recipient_average_blends(self, engine, market_ledger):
        engine.buy(BOB, "ACME", quantity=10)
        _set_price(market_ledger, "ACME", 3_000)
        engine.buy(ALICE, "ACME", quantity=10)
        engine.transfer_holding(ALICE, BOB, "ACME", 10)
        assert market_ledger.get_cost_basis(BOB, "ACME") == 2_000
        assert market_ledger.get_cost_basis(ALICE, "ACME") is None

    def test_transfer_more_than_held(self, engine):
        engine.buy(ALICE, "ACME", quantity=1)
        with pytest.raises(InsufficientHoldings):
            engine.transfer_holding(ALICE, BOB, "ACME", 2)

    def test_transfer_to_self(self, engine):
        engine.buy(ALICE, "ACME", quantity=1)
        with pytest.raises(InvalidAmount):
            engine.transfer_holding(ALICE, ALICE, "ACME", 1)

    def test_transfer_does_not_touch_house(self, engine, market_ledger):
        engine.buy(ALICE, "ACME", quantity=10)
        engine.transfer_holding(ALICE, BOB, "ACME", 10)
        assert market_ledger.get_positions("ACME")[SYSTEM_WALLET] == -10


class TestTradeLog:

    def test_trades_are_logged_with_volume(self, engine):
        engine.buy(ALICE, "ACME", quantity=10)
        engine.sell(ALICE, "ACME", 3)
        recent = engine.trade_log.recent("ACME")
        assert [t.side for t in recent] == ["sell", "buy"]
        assert engine.trade_log.drain_volume("ACME") == 13
        assert engine.trade_log.drain_volume("ACME") == 0

    def test_rejected_trade_is_not_logged(self, engine):
        with pytest.raises(InsufficientBalance):
            engine.buy(BOB, "ACME", quantity=501)
        assert len(engine.trade_log) == 0

    def test_ledger_stays_balanced(self, engine, market_ledger):
        engine.buy(ALICE, "ACME", quantity=10)
        engine.buy(BOB, "MOON", quantity=1_000)
        engine.sell(ALICE, "MOON", 50_000)
        assert market_ledger.verify_double_entry()['valid']
