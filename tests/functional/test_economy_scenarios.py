"""
test_economy_scenarios.py - End-to-end economy scenarios through GameEconomy

Tests complete game flows:
- Idle ticks produce one candle per asset and one tick record per tick
- Company lifecycle: products, bot revenue, IPO, trading, delisting
- Loan lifecycle over a game day of ticks
- Coin launch with buy pressure and a sell-off
- Concurrent trading while ticks run
"""

import threading

import pytest

from tickmarket import GameEconomy
from tickmarket.core import ErrorKind, LedgerError
from tickmarket.units.loan import LOAN_STATUS_ACTIVE, LOAN_STATUS_PAID

from tests.helpers import T0, ManualClock, make_settings


ALICE = "player:alice"
BOB = "player:bob"
ACME = "company:acme"


@pytest.fixture
def market(economy):
    """bob launches coin BOBC; alice funds acme and lists ACME."""
    economy.create_cryptocurrency("bob", "Bob Coin", "BOBC").unwrap()
    economy.create_company("alice", "Acme", company_id="acme").unwrap()
    economy.transfer_cash("alice", ACME, 600_000).unwrap()
    economy.go_public("alice", "acme", "ACME", total_shares=1_000).unwrap()
    return economy


class TestIdleTicks:

    def test_two_idle_ticks(self, market, clock):
        for _ in range(2):
            clock.advance(minutes=5)
            market.execute_tick().unwrap()

        records = market.get_tick_history().unwrap()
        assert [r.tick_number for r in records] == [2, 1]
        assert all(r.candles_recorded == 2 for r in records)
        assert all(not r.failed for r in records)
        assert all(r.bot_purchases == () for r in records)
        for symbol in ("ACME", "BOBC"):
            candles = market.get_price_history(symbol).unwrap()
            assert len(candles) == 2
            assert candles[0].timestamp < candles[1].timestamp
            assert candles[1].open == candles[0].close
            assert all(c.volume == 0 for c in candles)
        assert market.verify()['valid']


class TestCompanyLifecycle:

    def test_from_first_sale_to_delisting(self, economy, clock):
        company = economy.create_company("alice", "Acme", company_id="acme").unwrap()
        assert company.owner_id == "alice"
        widget = economy.add_product("alice", "acme", "Widget", 100_000, quality_rating=0.9).unwrap()

        # Bots are the only source of revenue
        clock.advance(minutes=5)
        tick = economy.execute_tick().unwrap()
        revenue = economy.get_balance(ACME).unwrap()
        assert revenue == tick.total_budget_spent > 500_000
        assert {s.product for s in economy.get_sales("acme").unwrap()} == {widget}

        symbol = economy.go_public("alice", "acme", "ACME").unwrap()
        state = economy.ledger.get_unit_state(symbol)
        assert state['price'] == revenue * 5 // 1_000_000
        assert economy.go_public("alice", "acme", "ACME2").error_kind == ErrorKind.INVALID_STATE

        economy.buy_stock("bob", symbol, quantity=1_000).unwrap()
        clock.advance(minutes=5)
        economy.execute_tick().unwrap()
        candle = economy.get_price_history(symbol).unwrap()[-1]
        assert candle.volume == 1_000

        held = economy.get_holdings(BOB).unwrap()
        assert [(h.symbol, h.quantity) for h in held] == [(symbol, 1_000)]
        bob_cash = economy.get_balance(BOB).unwrap()

        report = economy.delist_asset("root", symbol).unwrap()
        assert report.positions_removed[BOB] == 1_000
        assert economy.get_holdings(BOB).unwrap() == []
        assert economy.get_balance(BOB).unwrap() == bob_cash
        assert economy.verify()['valid']


class TestLoanLifecycle:

    def test_one_game_day_of_interest(self, economy, clock):
        loan = economy.create_loan("alice", 100_000).unwrap()

        accruals = 0
        for _ in range(72):
            clock.advance(minutes=20)
            record = economy.execute_tick().unwrap()
            accruals += len(record.loans_accrued)
        assert accruals == 72

        state = economy.get_loans("alice").unwrap()[0]
        assert state.status == LOAN_STATUS_ACTIVE
        # About 5% per day, compounded per accrual and floored to the cent
        assert 105_000 <= state.remaining_balance <= 105_130
        assert state.accrued_interest == state.remaining_balance - 100_000
        # Interest grows the debt, not anyone's cash
        assert economy.get_balance(ALICE).unwrap() == 1_100_000

        paid = economy.repay_loan("alice", loan, state.remaining_balance).unwrap()
        assert paid.status == LOAN_STATUS_PAID
        assert economy.get_balance(ALICE).unwrap() == 1_100_000 - state.remaining_balance

        clock.advance(minutes=20)
        assert economy.execute_tick().unwrap().loans_accrued == ()
        assert economy.verify()['valid']


class TestCoinMarket:

    @pytest.fixture
    def thin(self):
        clock = ManualClock(T0)
        economy = GameEconomy(
            make_settings(crypto_default_liquidity=1_000),
            initial_time=T0,
            clock=clock,
        )
        for player in ("alice", "bob", "carol"):
            economy.register_player(player, player.title()).unwrap()
        economy.create_cryptocurrency("alice", "Alice Coin", "ALC").unwrap()
        return economy

    def test_buy_pressure_then_sell_off(self, thin):
        prices = [thin.ledger.get_unit_state("ALC")['price']]
        for buyer in ("bob", "carol", "bob"):
            receipt = thin.buy_cryptocurrency(buyer, "ALC", quantity=5_000).unwrap()
            assert receipt.price == prices[-1]
            prices.append(thin.ledger.get_unit_state("ALC")['price'])
        assert prices == sorted(prices)
        assert prices[-1] > prices[0]

        peak = prices[-1]
        thin.sell_cryptocurrency("alice", "ALC", 50_000).unwrap()
        assert thin.ledger.get_unit_state("ALC")['price'] < peak
        assert thin.get_balance(ALICE).unwrap() == 50_000 * peak

        circulating = thin.ledger.circulating_supply("ALC")
        assert circulating == 100_000 - 50_000 + 15_000
        assert thin.verify()['valid']

    def test_trades_feed_recent_trades(self, thin):
        thin.buy_cryptocurrency("bob", "ALC", quantity=10).unwrap()
        thin.sell_cryptocurrency("bob", "ALC", 10).unwrap()
        trades = thin.get_recent_trades("ALC").unwrap()
        assert [t.side for t in trades] == ["sell", "buy"]
        assert all(t.wallet == BOB for t in trades)


class TestConcurrency:

    def test_parallel_buyers_and_ticks(self, market):
        errors = []

        def buyer(player):
            for _ in range(25):
                result = market.buy_stock(player, "ACME", quantity=1)
                if not result.ok:
                    errors.append(result.error_kind)

        def ticker():
            for _ in range(5):
                result = market.execute_tick()
                if not result.ok:
                    errors.append(result.error_kind)

        threads = [threading.Thread(target=buyer, args=(p,)) for p in ("alice", "root")]
        threads.append(threading.Thread(target=ticker))
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert not any(t.is_alive() for t in threads)
        assert set(errors) <= {ErrorKind.INVALID_STATE}
        held = sum(
            market.ledger.get_balance(wallet, "ACME") for wallet in (ALICE, "player:root")
        )
        assert held == 50
        assert market.ledger.circulating_supply("ACME") == 50
        assert market.verify()['valid']
        with pytest.raises(LedgerError):
            market.sell_stock("root", "ACME", 26).unwrap()
