"""
tick_engine.py - Periodic advance of the whole economy

Execution order each execute_tick():
1. Advance ledger time to the tick timestamp
2. Poll tick contracts (loan interest accrual)
3. Reprice every stock
4. Reprice every cryptocurrency
5. Run bot demand
6. Record one candle per stock and coin
7. Append the TickRecord

Every asset step is its own ledger transaction. A failure is logged, kept in
TickRecord.errors and does not stop the remaining steps. At most one tick runs
at a time; a concurrent request fails fast with TickAlreadyRunning.
"""

from __future__ import annotations
import time
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from .config.logging import get_logger, log_performance
from .core import (
    PendingTransaction, TickContract, Transaction,
    UNIT_TYPE_CRYPTO, UNIT_TYPE_LOAN, UNIT_TYPE_STOCK,
    InvalidState, utcnow,
)
from .demand import DemandResult, DemandSimulator
from .history import (
    Candle, LoanAccrual, PriceDelta, PriceHistory, SalesLog, TickError, TickHistory,
    TickRecord, TradeLog,
)
from .ledger import Ledger
from .locks import LockManager, SingleFlight
from .units.crypto import compute_crypto_tick, crypto_model_params
from .units.loan import loan_contract
from .units.stock import compute_stock_tick, stock_model_params


logger = get_logger(__name__)

# (open, high, low, close) of one asset within a tick
OHLC = Tuple[int, int, int, int]


class TickState(Enum):
    IDLE = "idle"
    RUNNING = "running"


class TickEngine:
    """
    Runs ticks against a shared ledger.

    Contracts are polled per unit type in symbol order, the same way for every
    tick, so a seeded generator reproduces a run exactly.
    """

    def __init__(
        self,
        ledger: Ledger,
        settings,
        rng: Optional[np.random.Generator] = None,
        locks: Optional[LockManager] = None,
        price_history: Optional[PriceHistory] = None,
        trade_log: Optional[TradeLog] = None,
        sales_log: Optional[SalesLog] = None,
        tick_history: Optional[TickHistory] = None,
        demand: Optional[DemandSimulator] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.ledger = ledger
        self.settings = settings
        self.rng = rng if rng is not None else np.random.default_rng(settings.random_seed)
        self.locks = locks or LockManager()
        self.price_history = price_history if price_history is not None else PriceHistory()
        self.trade_log = trade_log if trade_log is not None else TradeLog()
        self.sales_log = sales_log if sales_log is not None else SalesLog()
        self.tick_history = tick_history if tick_history is not None else TickHistory()
        self.demand = demand or DemandSimulator(ledger, settings, self.locks, self.sales_log)
        self.stock_params = stock_model_params(settings)
        self.crypto_params = crypto_model_params(settings)
        self.contracts: Dict[str, TickContract] = {
            UNIT_TYPE_LOAN: loan_contract(settings.ticks_per_day),
        }
        self._clock = clock or utcnow
        self._flight = SingleFlight("tick")
        self._state = TickState.IDLE

    @property
    def state(self) -> TickState:
        return self._state

    def register(self, unit_type: str, contract: TickContract) -> None:
        """Poll `contract` for every unit of `unit_type` at step 2 of each tick."""
        self.contracts[unit_type] = contract

    def execute_tick(self, timestamp: Optional[datetime] = None) -> TickRecord:
        """
        Run one tick.

        Args:
            timestamp: Tick time (default: now, or the ledger time if that is later)

        Raises:
            TickAlreadyRunning: If another tick is in progress
            InvalidState: If timestamp is before the ledger time
        """
        with self._flight.enter():
            self._state = TickState.RUNNING
            try:
                return self._run(timestamp)
            finally:
                self._state = TickState.IDLE

    # ========================================================================
    # STEPS
    # ========================================================================

    def _run(self, timestamp: Optional[datetime]) -> TickRecord:
        started = time.perf_counter()
        if timestamp is None:
            timestamp = max(self._clock(), self.ledger.current_time)
        self.ledger.advance_time(timestamp)
        tick_number = self.tick_history.next_tick_number()
        log = logger.bind(tick_number=tick_number)
        log.info("tick_started", timestamp=timestamp.isoformat())

        errors: List[TickError] = []
        accruals = self._poll_contracts(timestamp, errors)
        stock_deltas, stock_ohlc = self._reprice(
            UNIT_TYPE_STOCK, "stocks",
            lambda symbol: compute_stock_tick(self.ledger, symbol, self.rng, self.stock_params),
            errors,
        )
        crypto_deltas, crypto_ohlc = self._reprice(
            UNIT_TYPE_CRYPTO, "cryptos",
            lambda symbol: compute_crypto_tick(self.ledger, symbol, self.rng, self.crypto_params),
            errors,
        )
        demand = self._run_demand(errors)
        candles = self._record_candles(timestamp, {**stock_ohlc, **crypto_ohlc}, errors)

        duration_ms = (time.perf_counter() - started) * 1000
        record = TickRecord(
            tick_number=tick_number,
            timestamp=timestamp,
            loans_accrued=tuple(accruals),
            stock_updates=tuple(stock_deltas),
            crypto_updates=tuple(crypto_deltas),
            bot_purchases=demand.purchases,
            bot_budget=demand.budget,
            total_budget_spent=demand.spent,
            candles_recorded=candles,
            errors=tuple(errors),
            duration_ms=duration_ms,
        )
        self.tick_history.append(record)
        log.info(
            "tick_completed",
            loans=len(accruals),
            stocks=len(stock_deltas),
            cryptos=len(crypto_deltas),
            bot_purchases=len(demand.purchases),
            spent=demand.spent,
            candles=candles,
            errors=len(errors),
        )
        log_performance("execute_tick", duration_ms, tick_number=tick_number)
        return record

    def _poll_contracts(self, timestamp: datetime, errors: List[TickError]) -> List[LoanAccrual]:
        """Execute every contract that has something to do; returns loan accruals."""
        accruals: List[LoanAccrual] = []
        for symbol in self.ledger.list_units():
            try:
                with self.locks.hold(symbol):
                    # Delisted since the unit list was taken
                    if not self.ledger.has_unit(symbol):
                        continue
                    unit_type = self.ledger.get_unit(symbol).unit_type
                    contract = self.contracts.get(unit_type)
                    if contract is None:
                        continue
                    pending = contract(self.ledger, symbol, timestamp)
                    if not isinstance(pending, PendingTransaction):
                        raise InvalidState(
                            f"Contract for {symbol} must return PendingTransaction, got {type(pending)}"
                        )
                    tx = self.ledger.execute(pending)
            except Exception as exc:
                self._record_error(errors, "contracts", exc, symbol)
                continue
            if tx is not None and unit_type == UNIT_TYPE_LOAN:
                accruals.extend(_loan_accruals(tx))
        return accruals

    def _reprice(
        self,
        unit_type: str,
        step: str,
        compute: Callable[[str], Tuple[PendingTransaction, object]],
        errors: List[TickError],
    ) -> Tuple[List[PriceDelta], Dict[str, OHLC]]:
        deltas: List[PriceDelta] = []
        ohlc: Dict[str, OHLC] = {}
        for symbol in self.ledger.list_units(unit_type):
            try:
                with self.locks.hold(symbol):
                    if not self.ledger.has_unit(symbol):
                        continue
                    old_price = self.ledger.get_unit_state(symbol)['price']
                    pending, update = compute(symbol)
                    self.ledger.execute(pending)
            except Exception as exc:
                self._record_error(errors, step, exc, symbol)
                continue
            deltas.append(PriceDelta(symbol, old_price, update.price))
            ohlc[symbol] = (update.open, update.high, update.low, update.close)
        return deltas, ohlc

    def _run_demand(self, errors: List[TickError]) -> DemandResult:
        try:
            result = self.demand.run(self.rng)
        except Exception as exc:
            self._record_error(errors, "demand", exc)
            return DemandResult(budget=0, spent=0, purchases=())
        errors.extend(result.errors)
        return result

    def _record_candles(
        self,
        timestamp: datetime,
        ohlc: Dict[str, OHLC],
        errors: List[TickError],
    ) -> int:
        """One candle per listed stock and coin; unrepriced assets get a flat candle."""
        recorded = 0
        symbols = self.ledger.list_units(UNIT_TYPE_STOCK) + self.ledger.list_units(UNIT_TYPE_CRYPTO)
        for symbol in sorted(symbols):
            try:
                with self.locks.hold(symbol):
                    if not self.ledger.has_unit(symbol):
                        continue
                    if symbol in ohlc:
                        open_, high, low, close = ohlc[symbol]
                    else:
                        price = self.ledger.get_unit_state(symbol)['price']
                        open_ = high = low = close = price
                    self.price_history.record(Candle(
                        symbol=symbol,
                        timestamp=timestamp,
                        open=open_,
                        high=high,
                        low=low,
                        close=close,
                        volume=self.trade_log.drain_volume(symbol),
                    ))
            except Exception as exc:
                self._record_error(errors, "candles", exc, symbol)
                continue
            recorded += 1
        return recorded

    def _record_error(
        self,
        errors: List[TickError],
        step: str,
        exc: Exception,
        symbol: Optional[str] = None,
    ) -> None:
        logger.error(
            "tick_step_failed",
            step=step,
            symbol=symbol,
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=True,
        )
        errors.append(TickError(step, str(exc), type(exc).__name__, symbol))


def _loan_accruals(tx: Transaction) -> List[LoanAccrual]:
    accruals = []
    for sc in tx.state_changes:
        changed = sc.changed_fields().get('remaining_balance')
        if changed is None:
            continue
        old, new = changed
        accruals.append(LoanAccrual(sc.unit, new - old, new))
    return accruals
