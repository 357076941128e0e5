"""
stock.py - Company stock units

One stock per public company. The house (system wallet) is the issuer and
the market maker: buying shares moves them out of the system wallet, so the
system's (negative) position is minus the number of shares held by players
and companies. Shares in circulation may never exceed total_shares.

State:
    company_id, ticker, sector
    price, previous_price        - cents
    total_shares                 - shares issued at IPO
    market_cap                   - price * total_shares, recomputed on every price change
    last_price_change            - fractional change of the last tick (momentum)
    volatility, base_volatility  - clustered estimate and its long-run level
    fair_value                   - fundamentals anchor (float, cents)
    growth_rate, sentiment, flagged
    listed_at
"""

from __future__ import annotations
import re
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import numpy as np

from ..core import (
    LedgerView, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType, AssetKind,
    build_transaction, CASH, SYSTEM_WALLET, UNIT_TYPE_STOCK,
    InsufficientBalance, InvalidAmount, InvalidInput, InvalidState,
    _freeze_state, check_positive_amount, checked_mul,
)
from ..pricing import StockInputs, StockModelParams, StockPriceUpdate, next_stock_price


TICKER_PATTERN = re.compile(r"^[A-Z][A-Z0-9]{0,9}$")


def normalize_ticker(ticker: str) -> str:
    """Upper-case and validate a ticker (1-10 chars, letter first)."""
    normalized = (ticker or "").strip().upper()
    if not TICKER_PATTERN.match(normalized):
        raise InvalidInput(f"Invalid ticker {ticker!r}")
    return normalized


def stock_market_cap(price: int, total_shares: int) -> int:
    return checked_mul(price, total_shares)


def stock_model_params(settings) -> StockModelParams:
    return StockModelParams(
        mean_reversion_speed=settings.stock_mean_reversion_speed,
        momentum_weight=settings.stock_momentum_weight,
        max_tick_change=settings.stock_max_tick_change,
        sub_steps=settings.stock_sub_steps,
    )


def create_stock_unit(
    ticker: str,
    company_id: str,
    price: int,
    total_shares: int,
    max_shares_per_account: int,
    base_volatility: float = 0.02,
    sector: str = "general",
    listed_at: Optional[datetime] = None,
) -> Unit:
    """
    Create a stock unit for a company going public.

    The per-account share cap is the unit's max_balance, so the ledger itself
    refuses any move that would breach it.
    """
    check_positive_amount(price, "share price")
    check_positive_amount(total_shares, "total shares")
    ticker = normalize_ticker(ticker)
    return Unit(
        symbol=ticker,
        name=f"{ticker} shares",
        unit_type=UNIT_TYPE_STOCK,
        min_balance=0,
        max_balance=max_shares_per_account,
        _frozen_state=_freeze_state({
            'company_id': company_id,
            'ticker': ticker,
            'sector': sector,
            'price': price,
            'previous_price': price,
            'total_shares': total_shares,
            'market_cap': stock_market_cap(price, total_shares),
            'last_price_change': 0.0,
            'volatility': base_volatility,
            'base_volatility': base_volatility,
            'fair_value': float(price),
            'growth_rate': 0.0,
            'sentiment': 0.0,
            'flagged': False,
            'listed_at': listed_at,
        }),
    )


def with_price(state: Dict[str, Any], price: int) -> Dict[str, Any]:
    """New stock state at `price`, with previous_price and market_cap kept in step."""
    check_positive_amount(price, "share price")
    return {
        **state,
        'previous_price': state['price'],
        'price': price,
        'market_cap': stock_market_cap(price, state['total_shares']),
    }


def company_stock(view: LedgerView, company_id: str) -> Optional[str]:
    """Ticker of a company's stock, or None while the company is private."""
    for symbol in view.list_units(UNIT_TYPE_STOCK):
        if view.get_unit_state(symbol).get('company_id') == company_id:
            return symbol
    return None


def company_market_cap(view: LedgerView, company_id: str) -> int:
    """Derived market cap of a company (0 while private)."""
    symbol = company_stock(view, company_id)
    if symbol is None:
        return 0
    state = view.get_unit_state(symbol)
    return stock_market_cap(state['price'], state['total_shares'])


def shares_in_circulation(view: LedgerView, symbol: str) -> int:
    """Shares held outside the house."""
    return -view.get_positions(symbol).get(SYSTEM_WALLET, 0)


def shares_available(view: LedgerView, symbol: str) -> int:
    """Shares the house can still sell."""
    state = view.get_unit_state(symbol)
    return state['total_shares'] - shares_in_circulation(view, symbol)


# ============================================================================
# IPO
# ============================================================================

def compute_ipo(
    view: LedgerView,
    company_id: str,
    company_wallet: str,
    ticker: str,
    total_shares: int,
    min_company_balance: int,
    market_cap_multiple: int,
    max_shares_per_account: int,
    base_volatility: float = 0.02,
    sector: str = "general",
) -> PendingTransaction:
    """
    Take a company public.

    Market cap = company balance * market_cap_multiple and the listing price
    is market_cap // total_shares. The company's cash is not touched.

    Raises:
        InvalidState: If the company is already public
        InsufficientBalance: If the company balance is below the IPO minimum
        InvalidAmount: If the implied share price rounds to zero
        DuplicateTicker: Raised by the ledger if the ticker is taken
    """
    check_positive_amount(total_shares, "total shares")
    if company_stock(view, company_id) is not None:
        raise InvalidState(f"Company {company_id} is already public")
    balance = view.get_balance(company_wallet, CASH)
    if balance < min_company_balance:
        raise InsufficientBalance(
            f"Company balance {balance} is below the IPO minimum of {min_company_balance}"
        )
    market_cap = checked_mul(balance, market_cap_multiple)
    price = market_cap // total_shares
    if price <= 0:
        raise InvalidAmount(f"Market cap {market_cap} is too small for {total_shares} shares")

    unit = create_stock_unit(
        ticker, company_id, price, total_shares, max_shares_per_account,
        base_volatility=base_volatility, sector=sector, listed_at=view.current_time,
    )
    return build_transaction(
        view,
        [],
        origin=TransactionOrigin(OriginType.USER_ACTION, company_wallet, unit.symbol, "IPO"),
        units_to_create=(unit,),
        description=f"IPO of {unit.symbol} at {price}",
        asset_kind=AssetKind.STOCK,
    )


# ============================================================================
# REPRICING
# ============================================================================

def compute_stock_tick(
    view: LedgerView,
    symbol: str,
    rng: np.random.Generator,
    params: StockModelParams = StockModelParams(),
) -> Tuple[PendingTransaction, StockPriceUpdate]:
    """Reprice one stock for a tick. Pure apart from the rng draws."""
    state = view.get_unit_state(symbol)
    update = next_stock_price(
        StockInputs(
            price=state['price'],
            base_volatility=state['base_volatility'],
            volatility=state.get('volatility'),
            last_price_change=state.get('last_price_change', 0.0),
            fair_value=state.get('fair_value'),
            growth_rate=state.get('growth_rate', 0.0),
            sentiment=state.get('sentiment', 0.0),
            flagged=state.get('flagged', False),
        ),
        rng,
        params,
    )
    new_state = {
        **with_price(state, update.price),
        'last_price_change': update.change,
        'volatility': update.volatility,
        'fair_value': update.fair_value,
    }
    pending = build_transaction(
        view,
        [],
        [UnitStateChange(symbol, state, new_state)],
        origin=TransactionOrigin(OriginType.TICK, "stock_pricing", symbol, "REPRICE"),
        description=f"{symbol} {state['price']} -> {update.price}",
        asset_kind=AssetKind.STOCK,
    )
    return pending, update


def compute_set_price(
    view: LedgerView,
    symbol: str,
    price: int,
    actor_id: str,
) -> PendingTransaction:
    """Moderation override of a stock price; also resets the fair value anchor."""
    state = view.get_unit_state(symbol)
    if view.get_unit(symbol).unit_type != UNIT_TYPE_STOCK:
        raise InvalidState(f"{symbol} is not a stock")
    new_state = {**with_price(state, price), 'fair_value': float(price)}
    return build_transaction(
        view,
        [],
        [UnitStateChange(symbol, state, new_state)],
        origin=TransactionOrigin(OriginType.ADMIN, actor_id, symbol, "SET_PRICE"),
        description=f"{symbol} price set to {price}",
        asset_kind=AssetKind.STOCK,
    )
