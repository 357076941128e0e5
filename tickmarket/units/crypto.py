"""
crypto.py - Player-created cryptocurrencies

A player pays a creation fee (burned) and receives the whole initial supply.
Later buys are filled by the house, which mints new coins out of the system
wallet up to total_supply; sells return coins to the house. Every trade moves
the stored price through the liquidity-based impact curve.

State:
    creator_wallet, ticker, name
    price, previous_price        - cents
    circulating_supply           - coins held outside the house
    total_supply                 - hard cap on circulating_supply
    market_cap                   - price * circulating_supply
    liquidity                    - depth used by the impact curve
    base_volatility, volatility, trend_drift
    last_volatility_update, last_price_change
    created_at
"""

from __future__ import annotations
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

import numpy as np

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType, AssetKind, CostBasisChange,
    build_transaction, CASH, SYSTEM_WALLET, UNIT_TYPE_CRYPTO,
    InvalidState,
    _freeze_state, check_positive_amount, checked_mul,
)
from ..pricing import CryptoInputs, CryptoModelParams, CryptoPriceUpdate, next_crypto_price
from .stock import normalize_ticker


def crypto_market_cap(price: int, circulating_supply: int) -> int:
    """
    >>> crypto_market_cap(500, 1_000_000)
    500000000
    """
    return checked_mul(price, circulating_supply)


def crypto_model_params(settings) -> CryptoModelParams:
    return CryptoModelParams(
        max_tick_change=settings.crypto_max_tick_change,
        volatility_update_interval=timedelta(minutes=settings.crypto_volatility_update_minutes),
        impact_factor=settings.crypto_impact_factor,
        max_trade_impact=settings.crypto_max_trade_impact,
    )


def create_crypto_unit(
    ticker: str,
    name: str,
    creator_wallet: str,
    price: int,
    total_supply: int,
    circulating_supply: int,
    liquidity: int,
    base_volatility: float = 0.05,
    created_at: Optional[datetime] = None,
) -> Unit:
    """Create a coin unit. No wallet can hold more than total_supply."""
    check_positive_amount(price, "coin price")
    check_positive_amount(total_supply, "total supply")
    if not 0 <= circulating_supply <= total_supply:
        raise InvalidState("circulating supply must lie within [0, total_supply]")
    ticker = normalize_ticker(ticker)
    return Unit(
        symbol=ticker,
        name=name,
        unit_type=UNIT_TYPE_CRYPTO,
        min_balance=0,
        max_balance=total_supply,
        _frozen_state=_freeze_state({
            'creator_wallet': creator_wallet,
            'ticker': ticker,
            'name': name,
            'price': price,
            'previous_price': price,
            'circulating_supply': circulating_supply,
            'total_supply': total_supply,
            'market_cap': crypto_market_cap(price, circulating_supply),
            'liquidity': liquidity,
            'base_volatility': base_volatility,
            'volatility': base_volatility,
            'trend_drift': 0.0,
            'last_volatility_update': created_at,
            'last_price_change': 0.0,
            'created_at': created_at,
        }),
    )


def with_price(state: Dict[str, Any], price: int) -> Dict[str, Any]:
    """New coin state at `price`, market cap kept in step."""
    check_positive_amount(price, "coin price")
    return {
        **state,
        'previous_price': state['price'],
        'price': price,
        'market_cap': crypto_market_cap(price, state['circulating_supply']),
    }


def with_supply(state: Dict[str, Any], circulating_supply: int) -> Dict[str, Any]:
    """New coin state with a different circulating supply, market cap kept in step."""
    if not 0 <= circulating_supply <= state['total_supply']:
        raise InvalidState("circulating supply must lie within [0, total_supply]")
    return {
        **state,
        'circulating_supply': circulating_supply,
        'market_cap': crypto_market_cap(state['price'], circulating_supply),
    }


# ============================================================================
# CREATION
# ============================================================================

def compute_create_cryptocurrency(
    view: LedgerView,
    creator_wallet: str,
    name: str,
    ticker: str,
    creation_fee: int,
    total_supply: int,
    initial_supply: int,
    initial_market_cap: int,
    liquidity: int,
    base_volatility: float = 0.05,
) -> PendingTransaction:
    """
    Launch a coin: burn the creation fee and hand the creator the initial supply.

    The listing price is initial_market_cap // initial_supply (at least 1 cent).

    Raises:
        InsufficientBalance: Raised by the ledger if the creator cannot pay the fee
        DuplicateTicker: Raised by the ledger if the ticker is taken
    """
    check_positive_amount(initial_supply, "initial supply")
    price = max(1, initial_market_cap // initial_supply)
    unit = create_crypto_unit(
        ticker, name, creator_wallet, price, total_supply, initial_supply, liquidity,
        base_volatility=base_volatility, created_at=view.current_time,
    )
    moves = []
    if creation_fee > 0:
        moves.append(Move(creation_fee, CASH, creator_wallet, SYSTEM_WALLET, f"create_{unit.symbol}"))
    moves.append(Move(initial_supply, unit.symbol, SYSTEM_WALLET, creator_wallet, f"create_{unit.symbol}"))
    return build_transaction(
        view,
        moves,
        origin=TransactionOrigin(OriginType.USER_ACTION, creator_wallet, unit.symbol, "CREATE_CRYPTO"),
        units_to_create=(unit,),
        cost_basis_changes=[CostBasisChange(creator_wallet, unit.symbol, None, price)],
        description=f"Created {unit.symbol} ({name})",
        asset_kind=AssetKind.CRYPTO,
    )


# ============================================================================
# REPRICING
# ============================================================================

def compute_crypto_tick(
    view: LedgerView,
    symbol: str,
    rng: np.random.Generator,
    params: CryptoModelParams = CryptoModelParams(),
) -> Tuple[PendingTransaction, CryptoPriceUpdate]:
    """Reprice one coin for a tick. Pure apart from the rng draws."""
    state = view.get_unit_state(symbol)
    update = next_crypto_price(
        CryptoInputs(
            price=state['price'],
            base_volatility=state['base_volatility'],
            now=view.current_time,
            volatility=state.get('volatility'),
            trend_drift=state.get('trend_drift', 0.0),
            last_price_change=state.get('last_price_change', 0.0),
            last_volatility_update=state.get('last_volatility_update'),
        ),
        rng,
        params,
    )
    new_state = {
        **with_price(state, update.price),
        'last_price_change': update.change,
        'volatility': update.volatility,
        'trend_drift': update.trend_drift,
        'last_volatility_update': update.volatility_updated_at,
    }
    pending = build_transaction(
        view,
        [],
        [UnitStateChange(symbol, state, new_state)],
        origin=TransactionOrigin(OriginType.TICK, "crypto_pricing", symbol, "REPRICE"),
        description=f"{symbol} {state['price']} -> {update.price}",
        asset_kind=AssetKind.CRYPTO,
    )
    return pending, update
