"""
test_tick_engine.py - Unit tests for the TickEngine

Tests:
- A tick advances time, reprices every asset and records candles
- Loan accruals are reported on the TickRecord
- Step failures are recorded without stopping the tick
- Single-flight guard and tick numbering
- Assets delisted mid-tick are skipped, not reported as failures
- Trade volume flows into the next candle
"""

from datetime import timedelta

import numpy as np
import pytest

from tickmarket.core import UNIT_TYPE_CRYPTO, UNIT_TYPE_STOCK, InvalidState, empty_pending_transaction
from tickmarket.demand import DemandResult
from tickmarket.history import TickError
from tickmarket.locks import TickAlreadyRunning
from tickmarket.tick_engine import TickEngine, TickState
from tickmarket.trading import TradingEngine
from tickmarket.units.loan import compute_create_loan

from tests.helpers import T0, list_stock, make_settings


def _engine(ledger, seed=42, **kwargs):
    return TickEngine(ledger, make_settings(), rng=np.random.default_rng(seed), **kwargs)


def _at(minutes):
    return T0 + timedelta(minutes=minutes)


class TestTickExecution:

    def test_tick_reprices_and_records(self, market_ledger):
        engine = _engine(market_ledger)
        record = engine.execute_tick(_at(5))

        assert record.tick_number == 1
        assert record.timestamp == _at(5)
        assert market_ledger.current_time == _at(5)
        assert [d.symbol for d in record.stock_updates] == ["ACME"]
        assert [d.symbol for d in record.crypto_updates] == ["MOON"]
        assert record.candles_recorded == 2
        assert not record.failed
        assert engine.state == TickState.IDLE

        candle = engine.price_history.latest("ACME")
        assert candle.open == 1_000
        assert candle.close == market_ledger.get_unit_state("ACME")['price']
        assert record.stock_updates[0].new_price == candle.close

    def test_ticks_are_numbered(self, market_ledger):
        engine = _engine(market_ledger)
        engine.execute_tick(_at(5))
        record = engine.execute_tick(_at(10))
        assert record.tick_number == 2
        assert len(engine.tick_history) == 2
        assert engine.price_history.count("MOON") == 2

    def test_tick_cannot_go_back_in_time(self, market_ledger):
        engine = _engine(market_ledger)
        engine.execute_tick(_at(10))
        with pytest.raises(InvalidState):
            engine.execute_tick(_at(5))
        assert len(engine.tick_history) == 1

    def test_default_timestamp_not_before_ledger_time(self, market_ledger):
        engine = _engine(market_ledger)
        record = engine.execute_tick()
        assert record.timestamp >= T0

    def test_empty_economy(self, ledger):
        record = _engine(ledger).execute_tick(_at(5))
        assert record.stock_updates == ()
        assert record.candles_recorded == 0
        assert not record.failed

    def test_ledger_stays_balanced(self, market_ledger):
        engine = _engine(market_ledger)
        for i in range(1, 6):
            engine.execute_tick(_at(5 * i))
        assert market_ledger.verify_double_entry()['valid']


class TestLoanAccrual:

    def test_accrual_reported(self, ledger):
        ledger.execute(compute_create_loan(ledger, "LOAN-000001", "player:alice", 100_000, 5.0, 10 ** 9))
        engine = _engine(ledger)

        early = engine.execute_tick(_at(5))
        assert early.loans_accrued == ()

        record = engine.execute_tick(_at(20))
        assert len(record.loans_accrued) == 1
        accrual = record.loans_accrued[0]
        assert accrual.loan == "LOAN-000001"
        assert accrual.interest == 69
        assert accrual.remaining_balance == 100_069


class TestFailureIsolation:

    def test_failing_contract_does_not_stop_pricing(self, market_ledger):
        engine = _engine(market_ledger)

        def broken(view, symbol, timestamp):
            raise RuntimeError("boom")

        engine.register(UNIT_TYPE_STOCK, broken)
        record = engine.execute_tick(_at(5))
        assert record.failed
        assert [(e.step, e.symbol, e.error_type) for e in record.errors] == [
            ("contracts", "ACME", "RuntimeError"),
        ]
        assert len(record.stock_updates) == 1
        assert record.candles_recorded == 2

    def test_contract_must_return_pending_transaction(self, market_ledger):
        engine = _engine(market_ledger)
        engine.register(UNIT_TYPE_STOCK, lambda view, symbol, timestamp: None)
        record = engine.execute_tick(_at(5))
        assert record.errors[0].error_type == "InvalidState"

    def test_demand_failure_recorded(self, market_ledger):
        class BrokenDemand:
            def run(self, rng):
                raise RuntimeError("bots offline")

        engine = _engine(market_ledger, demand=BrokenDemand())
        record = engine.execute_tick(_at(5))
        assert record.errors[0].step == "demand"
        assert record.bot_budget == 0
        assert record.candles_recorded == 2

    def test_demand_errors_are_merged(self, market_ledger):
        class PartialDemand:
            def run(self, rng):
                return DemandResult(100, 0, (), (TickError("demand", "x", "InvalidState", "PROD-A"),))

        record = _engine(market_ledger, demand=PartialDemand()).execute_tick(_at(5))
        assert record.bot_budget == 100
        assert [e.symbol for e in record.errors] == ["PROD-A"]


class TestDelistingDuringTick:

    def test_asset_removed_by_earlier_contract(self, market_ledger):
        list_stock(market_ledger, "DEAD", company_id="dead")
        engine = _engine(market_ledger)

        def delist_dead(view, symbol, timestamp):
            if view.has_unit("DEAD"):
                view.remove_unit("DEAD")
            return empty_pending_transaction(view)

        engine.register(UNIT_TYPE_STOCK, delist_dead)
        record = engine.execute_tick(_at(5))
        assert not record.failed
        assert [d.symbol for d in record.stock_updates] == ["ACME"]
        assert record.candles_recorded == 2
        assert engine.price_history.count("DEAD") == 0

    def test_stale_unit_list_is_skipped(self, market_ledger, monkeypatch):
        list_stock(market_ledger, "DEAD", company_id="dead")
        listed = {t: market_ledger.list_units(t) for t in (None, UNIT_TYPE_STOCK, UNIT_TYPE_CRYPTO)}
        market_ledger.remove_unit("DEAD")
        real_list_units = market_ledger.list_units

        def stale_list_units(unit_type=None):
            return listed.get(unit_type) or real_list_units(unit_type)

        monkeypatch.setattr(market_ledger, "list_units", stale_list_units)
        record = _engine(market_ledger).execute_tick(_at(5))
        assert record.errors == ()
        assert [d.symbol for d in record.stock_updates] == ["ACME"]
        assert [d.symbol for d in record.crypto_updates] == ["MOON"]
        assert record.candles_recorded == 2


class TestSingleFlight:

    def test_concurrent_tick_rejected(self, market_ledger):
        engine = _engine(market_ledger)
        with engine._flight.enter():
            with pytest.raises(TickAlreadyRunning):
                engine.execute_tick(_at(5))
        assert engine.execute_tick(_at(5)).tick_number == 1

    def test_state_is_running_during_tick(self, market_ledger):
        engine = _engine(market_ledger)
        seen = []

        def observe(view, symbol, timestamp):
            seen.append(engine.state)
            return empty_pending_transaction(view)

        engine.register(UNIT_TYPE_STOCK, observe)
        engine.execute_tick(_at(5))
        assert seen == [TickState.RUNNING]
        assert engine.state == TickState.IDLE


class TestCandleVolume:

    def test_trade_volume_in_next_candle(self, market_ledger):
        engine = _engine(market_ledger)
        trader = TradingEngine(market_ledger, locks=engine.locks, trade_log=engine.trade_log)
        trader.buy("player:bob", "ACME", quantity=7)
        trader.sell("player:bob", "ACME", 2)

        engine.execute_tick(_at(5))
        assert engine.price_history.latest("ACME").volume == 9
        assert engine.price_history.latest("MOON").volume == 0

        engine.execute_tick(_at(10))
        assert engine.price_history.latest("ACME").volume == 0


class TestDeterminism:

    def test_same_seed_same_prices(self, market_ledger):
        twin = market_ledger.clone()
        a, b = _engine(market_ledger, seed=9), _engine(twin, seed=9)
        for i in range(1, 4):
            ra, rb = a.execute_tick(_at(5 * i)), b.execute_tick(_at(5 * i))
            assert ra.stock_updates == rb.stock_updates
            assert ra.crypto_updates == rb.crypto_updates
        assert market_ledger.get_unit_state("ACME") == twin.get_unit_state("ACME")
