"""
history.py - Append-only read models for charts, trade feeds and tick audit

Classes:
- PriceHistory: per-asset OHLCV candles, one per tick, with point-in-time lookup
- TradeLog: executed player trades
- SalesLog: bot marketplace sales
- TickHistory: one TickRecord per executed tick

None of these stores feed back into pricing; they are written by the tick
engine and the trading engine and read by the API.
"""

from __future__ import annotations
import threading
from bisect import bisect_left, bisect_right
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

import numpy as np

from .core import BOT_PURCHASER, check_safe_int


TIMEFRAMES: Dict[str, Optional[timedelta]] = {
    "1H": timedelta(hours=1),
    "1D": timedelta(days=1),
    "1W": timedelta(weeks=1),
    "1M": timedelta(days=30),
    "1Y": timedelta(days=365),
    "ALL": None,
}


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Candle:
    """OHLCV summary of one asset over one tick interval. Prices in cents."""
    symbol: str
    timestamp: datetime
    open: int
    high: int
    low: int
    close: int
    volume: int = 0

    def __post_init__(self):
        for name in ("open", "high", "low", "close", "volume"):
            check_safe_int(getattr(self, name), name)
        if self.low > min(self.open, self.close) or self.high < max(self.open, self.close):
            raise ValueError(f"Inconsistent candle for {self.symbol}: {self}")
        if self.volume < 0:
            raise ValueError("volume cannot be negative")


@dataclass(frozen=True, slots=True)
class TradeRecord:
    """One executed player trade."""
    symbol: str
    wallet: str
    side: str
    quantity: int
    price: int
    total: int
    price_impact: float
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class MarketplaceSale:
    """One bot purchase of a product."""
    product: str
    company_wallet: str
    quantity: int
    total_price: int
    timestamp: datetime
    purchaser: str = BOT_PURCHASER


@dataclass(frozen=True, slots=True)
class PriceDelta:
    """Price move of one asset within a tick."""
    symbol: str
    old_price: int
    new_price: int

    @property
    def change(self) -> float:
        return (self.new_price - self.old_price) / self.old_price if self.old_price else 0.0


@dataclass(frozen=True, slots=True)
class LoanAccrual:
    loan: str
    interest: int
    remaining_balance: int


@dataclass(frozen=True, slots=True)
class TickError:
    """A failure inside a tick step, kept for the audit record."""
    step: str
    message: str
    error_type: str
    symbol: Optional[str] = None


@dataclass(frozen=True)
class TickRecord:
    """Audit summary of one tick."""
    tick_number: int
    timestamp: datetime
    loans_accrued: Tuple[LoanAccrual, ...] = ()
    stock_updates: Tuple[PriceDelta, ...] = ()
    crypto_updates: Tuple[PriceDelta, ...] = ()
    bot_purchases: Tuple[MarketplaceSale, ...] = ()
    bot_budget: int = 0
    total_budget_spent: int = 0
    candles_recorded: int = 0
    errors: Tuple[TickError, ...] = ()
    duration_ms: float = 0.0

    @property
    def failed(self) -> bool:
        return bool(self.errors)


# ============================================================================
# STORES
# ============================================================================

class PriceHistory:
    """
    Per-asset candle series.

    Candles are appended in timestamp order; lookups use binary search on the
    candle timestamps. A candle timestamp earlier than the asset's last candle
    is rejected.
    """

    def __init__(self):
        self._candles: Dict[str, List[Candle]] = {}
        self._timestamps: Dict[str, List[datetime]] = {}
        self._lock = threading.Lock()

    def record(self, candle: Candle) -> None:
        with self._lock:
            series = self._candles.setdefault(candle.symbol, [])
            stamps = self._timestamps.setdefault(candle.symbol, [])
            if stamps and candle.timestamp < stamps[-1]:
                raise ValueError(
                    f"Candle for {candle.symbol} at {candle.timestamp} precedes {stamps[-1]}"
                )
            series.append(candle)
            stamps.append(candle.timestamp)

    def get_candles(
        self,
        symbol: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[Candle]:
        """Candles with since <= timestamp <= until, oldest first."""
        with self._lock:
            series = self._candles.get(symbol, [])
            stamps = self._timestamps.get(symbol, [])
            lo = bisect_left(stamps, since) if since is not None else 0
            hi = bisect_right(stamps, until) if until is not None else len(stamps)
            return series[lo:hi]

    def get_timeframe(self, symbol: str, timeframe: str, now: datetime) -> List[Candle]:
        """Candles for a chart timeframe ("1H", "1D", "1W", "1M", "1Y", "ALL")."""
        if timeframe not in TIMEFRAMES:
            raise ValueError(f"Unknown timeframe {timeframe!r}; expected one of {list(TIMEFRAMES)}")
        window = TIMEFRAMES[timeframe]
        return self.get_candles(symbol, since=None if window is None else now - window, until=now)

    def get_price(self, symbol: str, timestamp: datetime) -> Optional[int]:
        """Close of the most recent candle at or before timestamp."""
        with self._lock:
            stamps = self._timestamps.get(symbol, [])
            idx = bisect_right(stamps, timestamp)
            if idx == 0:
                return None
            return self._candles[symbol][idx - 1].close

    def latest(self, symbol: str) -> Optional[Candle]:
        with self._lock:
            series = self._candles.get(symbol)
            return series[-1] if series else None

    def count(self, symbol: str) -> int:
        with self._lock:
            return len(self._candles.get(symbol, []))

    def symbols(self) -> List[str]:
        with self._lock:
            return sorted(self._candles)

    def remove(self, symbol: str) -> int:
        """Drop an asset's history; returns the number of candles removed."""
        with self._lock:
            self._timestamps.pop(symbol, None)
            return len(self._candles.pop(symbol, []))

    def closes(self, symbol: str, since: Optional[datetime] = None) -> np.ndarray:
        """Close prices as an array, for charting and statistics."""
        return np.array([c.close for c in self.get_candles(symbol, since=since)], dtype=np.int64)

    def realized_volatility(self, symbol: str, since: Optional[datetime] = None) -> float:
        """Standard deviation of tick-over-tick log returns (0 with fewer than 3 candles)."""
        closes = self.closes(symbol, since)
        if len(closes) < 3:
            return 0.0
        returns = np.diff(np.log(closes.astype(np.float64)))
        return float(np.std(returns, ddof=1))

    def __repr__(self):
        with self._lock:
            total = sum(len(series) for series in self._candles.values())
            return f"PriceHistory({len(self._candles)} assets, {total} candles)"


class TradeLog:
    """Executed trades, oldest first, plus per-asset volume since the last candle."""

    def __init__(self):
        self._trades: List[TradeRecord] = []
        self._unrecorded_volume: Dict[str, int] = {}
        self._lock = threading.Lock()

    def append(self, trade: TradeRecord) -> None:
        with self._lock:
            self._trades.append(trade)
            self._unrecorded_volume[trade.symbol] = (
                self._unrecorded_volume.get(trade.symbol, 0) + trade.quantity
            )

    def drain_volume(self, symbol: str) -> int:
        """Quantity traded since the previous drain; resets the counter."""
        with self._lock:
            return self._unrecorded_volume.pop(symbol, 0)

    def recent(self, symbol: Optional[str] = None, limit: int = 50) -> List[TradeRecord]:
        """Most recent trades first, optionally for one asset."""
        with self._lock:
            trades = [t for t in reversed(self._trades) if symbol is None or t.symbol == symbol]
            return trades[:limit]

    def for_wallet(self, wallet: str, limit: int = 50) -> List[TradeRecord]:
        with self._lock:
            return [t for t in reversed(self._trades) if t.wallet == wallet][:limit]

    def remove(self, symbol: str) -> int:
        with self._lock:
            before = len(self._trades)
            self._trades = [t for t in self._trades if t.symbol != symbol]
            self._unrecorded_volume.pop(symbol, None)
            return before - len(self._trades)

    def __len__(self):
        return len(self._trades)


class SalesLog:
    """Bot marketplace sales, oldest first."""

    def __init__(self):
        self._sales: List[MarketplaceSale] = []
        self._lock = threading.Lock()

    def extend(self, sales: List[MarketplaceSale]) -> None:
        with self._lock:
            self._sales.extend(sales)

    def for_company(self, company_wallet: str, limit: int = 50) -> List[MarketplaceSale]:
        with self._lock:
            return [s for s in reversed(self._sales) if s.company_wallet == company_wallet][:limit]

    def for_product(self, product: str, limit: int = 50) -> List[MarketplaceSale]:
        with self._lock:
            return [s for s in reversed(self._sales) if s.product == product][:limit]

    def __len__(self):
        return len(self._sales)


@dataclass
class TickHistory:
    """Executed ticks, oldest first."""
    records: List[TickRecord] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def append(self, record: TickRecord) -> None:
        with self._lock:
            if self.records and record.tick_number <= self.records[-1].tick_number:
                raise ValueError(
                    f"Tick {record.tick_number} is not after tick {self.records[-1].tick_number}"
                )
            self.records.append(record)

    def next_tick_number(self) -> int:
        with self._lock:
            return self.records[-1].tick_number + 1 if self.records else 1

    def latest(self) -> Optional[TickRecord]:
        with self._lock:
            return self.records[-1] if self.records else None

    def recent(self, limit: int = 10) -> List[TickRecord]:
        """Most recent ticks first."""
        with self._lock:
            return list(reversed(self.records))[:limit]

    def __len__(self):
        return len(self.records)
