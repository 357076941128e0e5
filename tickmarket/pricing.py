"""
pricing.py - Stochastic price models for stocks and cryptocurrencies

Pure functions. All randomness is drawn from an injected numpy Generator
(numpy.random.default_rng(seed)), so a fixed seed reproduces every path.

Provides:
- Volatility clustering (GARCH-like persistence with a log-normal shock)
- Fundamentals-implied fair value for stocks
- Stock tick: mean reversion toward fair value + momentum + noise, sub-stepped
- Crypto tick: mean-reverting trend drift with random regime flips + noise
- Liquidity-based price impact for trades (saturating logistic curve)

Prices are integer cents on input and output. Intermediate paths are floats
and are rounded back to cents once per tick.
"""

from __future__ import annotations
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Tuple

import numpy as np
from scipy.special import expit

from .core import MAX_SAFE_INTEGER, OverflowDetected


# Floor for every simulated price, in cents
MIN_PRICE = 1

# GARCH(1,1)-style weights: variance = (1-a-b)*base^2 + a*shock^2 + b*prev^2
VOL_SHOCK_WEIGHT = 0.10
VOL_PERSISTENCE = 0.85


class Side(Enum):
    BUY = "buy"
    SELL = "sell"


# ============================================================================
# PARAMETERS
# ============================================================================

@dataclass(frozen=True)
class StockModelParams:
    mean_reversion_speed: float = 0.01
    momentum_weight: float = 0.3
    max_tick_change: float = 0.10
    sub_steps: int = 5
    growth_weight: float = 0.01
    sentiment_weight: float = 0.005
    flagged_discount: float = 0.02
    vol_of_vol: float = 0.10
    min_price: int = MIN_PRICE


@dataclass(frozen=True)
class CryptoModelParams:
    drift_reversion: float = 0.05
    drift_noise: float = 0.002
    max_drift: float = 0.02
    regime_flip_probability: float = 0.02
    max_tick_change: float = 0.25
    sub_steps: int = 5
    vol_of_vol: float = 0.15
    volatility_update_interval: timedelta = timedelta(hours=1)
    impact_factor: float = 0.08
    max_trade_impact: float = 0.15
    min_price: int = MIN_PRICE


# ============================================================================
# INPUTS / OUTPUTS
# ============================================================================

@dataclass(frozen=True)
class StockInputs:
    price: int
    base_volatility: float
    volatility: Optional[float] = None
    last_price_change: float = 0.0
    fair_value: Optional[float] = None
    growth_rate: float = 0.0
    sentiment: float = 0.0
    flagged: bool = False


@dataclass(frozen=True)
class StockPriceUpdate:
    price: int
    open: int
    high: int
    low: int
    close: int
    change: float
    volatility: float
    fair_value: float


@dataclass(frozen=True)
class CryptoInputs:
    price: int
    base_volatility: float
    now: datetime
    volatility: Optional[float] = None
    trend_drift: float = 0.0
    last_price_change: float = 0.0
    last_volatility_update: Optional[datetime] = None


@dataclass(frozen=True)
class CryptoPriceUpdate:
    price: int
    open: int
    high: int
    low: int
    close: int
    change: float
    volatility: float
    trend_drift: float
    volatility_updated_at: Optional[datetime]


# ============================================================================
# BUILDING BLOCKS
# ============================================================================

def cluster_volatility(
    previous: float,
    base: float,
    last_change: float,
    rng: np.random.Generator,
    vol_of_vol: float = 0.10,
) -> float:
    """
    Next volatility estimate.

    Large recent moves raise volatility and calm periods let it decay back to
    base. A log-normal shock keeps the estimate from being fully determined by
    the last move. The result is clamped to [base/4, base*4].
    """
    if base <= 0:
        return 0.0
    previous = base if previous is None or previous <= 0 else previous
    weight_base = 1.0 - VOL_SHOCK_WEIGHT - VOL_PERSISTENCE
    variance = (
        weight_base * base * base
        + VOL_SHOCK_WEIGHT * last_change * last_change
        + VOL_PERSISTENCE * previous * previous
    )
    shock = math.exp(vol_of_vol * rng.standard_normal() - 0.5 * vol_of_vol * vol_of_vol)
    vol = math.sqrt(variance) * shock
    return float(np.clip(vol, base / 4.0, base * 4.0))


def fair_value(
    anchor: float,
    growth_rate: float,
    sentiment: float,
    flagged: bool,
    params: StockModelParams = StockModelParams(),
) -> float:
    """
    Fundamentals-implied value of a share, in cents.

    Growth and sentiment (both roughly in [-1, 1]) nudge the anchor each tick;
    a flagged company is discounted.
    """
    adjustment = 1.0 + params.growth_weight * growth_rate + params.sentiment_weight * sentiment
    if flagged:
        adjustment -= params.flagged_discount
    return max(float(params.min_price), anchor * max(adjustment, 0.5))


def _to_cents(value: float, min_price: int) -> int:
    if not math.isfinite(value):
        raise OverflowDetected(f"Non-finite price {value}")
    cents = int(round(value))
    if cents > MAX_SAFE_INTEGER:
        raise OverflowDetected(f"Price {cents} exceeds the safe integer range")
    return max(min_price, cents)


def _simulate_path(
    start: float,
    steps: int,
    drift_fn,
    vol: float,
    rng: np.random.Generator,
    max_change: float,
    min_price: int,
) -> np.ndarray:
    """Sub-stepped multiplicative path, each point clamped to the tick band."""
    dt = 1.0 / steps
    shocks = rng.standard_normal(steps) * vol * math.sqrt(dt)
    lower = max(float(min_price), start * (1.0 - max_change))
    upper = start * (1.0 + max_change)
    path = np.empty(steps + 1)
    path[0] = start
    p = start
    for i in range(steps):
        p = p * (1.0 + drift_fn(p) * dt + shocks[i])
        p = min(max(p, lower), upper)
        path[i + 1] = p
    return path


def _ohlc(path: np.ndarray, open_price: int, min_price: int) -> Tuple[int, int, int, int]:
    close = _to_cents(path[-1], min_price)
    high = max(open_price, close, _to_cents(float(path.max()), min_price))
    low = min(open_price, close, _to_cents(float(path.min()), min_price))
    return open_price, high, low, close


# ============================================================================
# STOCKS
# ============================================================================

def next_stock_price(
    inputs: StockInputs,
    rng: np.random.Generator,
    params: StockModelParams = StockModelParams(),
) -> StockPriceUpdate:
    """
    Advance one stock by one tick.

    Each sub-step multiplies the price by (1 + drift + momentum + noise):
    drift pulls toward fair value, scaled by the current volatility estimate;
    momentum carries a fraction of the last tick's change; noise is N(0, 1)
    times volatility. The close is capped to +/- max_tick_change of the open
    and floored at min_price.
    """
    price = inputs.price
    if price < params.min_price:
        price = params.min_price
    vol = cluster_volatility(
        inputs.volatility, inputs.base_volatility, inputs.last_price_change, rng, params.vol_of_vol,
    )
    anchor = inputs.fair_value if inputs.fair_value else float(price)
    target = fair_value(anchor, inputs.growth_rate, inputs.sentiment, inputs.flagged, params)
    momentum = params.momentum_weight * inputs.last_price_change
    vol_scale = vol / inputs.base_volatility if inputs.base_volatility > 0 else 1.0

    def drift(p: float) -> float:
        gap = (target - p) / p
        return params.mean_reversion_speed * vol_scale * gap + momentum

    path = _simulate_path(
        float(price), params.sub_steps, drift, vol, rng, params.max_tick_change, params.min_price,
    )
    open_, high, low, close = _ohlc(path, price, params.min_price)
    return StockPriceUpdate(
        price=close,
        open=open_,
        high=high,
        low=low,
        close=close,
        change=(close - price) / price,
        volatility=vol,
        fair_value=target,
    )


# ============================================================================
# CRYPTOCURRENCIES
# ============================================================================

def next_crypto_price(
    inputs: CryptoInputs,
    rng: np.random.Generator,
    params: CryptoModelParams = CryptoModelParams(),
) -> CryptoPriceUpdate:
    """
    Advance one coin by one tick.

    The trend drift decays toward zero, takes a small random step, and flips
    sign with regime_flip_probability. Volatility is re-estimated at most once
    per volatility_update_interval. Trade volume plays no part here; trades move
    crypto prices through price_impact() instead.
    """
    price = max(inputs.price, params.min_price)

    trend = inputs.trend_drift * (1.0 - params.drift_reversion)
    trend += params.drift_noise * rng.standard_normal()
    if rng.random() < params.regime_flip_probability:
        trend = -trend
    trend = float(np.clip(trend, -params.max_drift, params.max_drift))

    vol = inputs.volatility if inputs.volatility else inputs.base_volatility
    updated_at = inputs.last_volatility_update
    if updated_at is None or inputs.now - updated_at >= params.volatility_update_interval:
        vol = cluster_volatility(
            vol, inputs.base_volatility, inputs.last_price_change, rng, params.vol_of_vol,
        )
        updated_at = inputs.now

    path = _simulate_path(
        float(price), params.sub_steps, lambda p: trend, vol, rng,
        params.max_tick_change, params.min_price,
    )
    open_, high, low, close = _ohlc(path, price, params.min_price)
    return CryptoPriceUpdate(
        price=close,
        open=open_,
        high=high,
        low=low,
        close=close,
        change=(close - price) / price,
        volatility=vol,
        trend_drift=trend,
        volatility_updated_at=updated_at,
    )


# ============================================================================
# PRICE IMPACT
# ============================================================================

def price_impact(
    quantity: int,
    liquidity: int,
    side: Side,
    params: CryptoModelParams = CryptoModelParams(),
) -> float:
    """
    Signed fractional price move caused by a trade.

    For small trades the impact is about impact_factor * quantity / liquidity;
    large trades saturate smoothly at max_trade_impact. Buys push the price
    up, sells push it down.
    """
    if quantity <= 0:
        return 0.0
    cap = params.max_trade_impact
    if cap <= 0:
        return 0.0
    if liquidity <= 0:
        magnitude = cap
    else:
        raw = params.impact_factor * quantity / liquidity
        magnitude = cap * (2.0 * float(expit(2.0 * raw / cap)) - 1.0)
    return magnitude if side == Side.BUY else -magnitude


def apply_price_impact(price: int, impact: float, min_price: int = MIN_PRICE) -> int:
    """New integer price after a fractional impact, floored at min_price."""
    return _to_cents(price * (1.0 + impact), min_price)
