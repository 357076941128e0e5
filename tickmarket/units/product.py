"""
product.py - Company products sold to bot demand

Products are catalogue entries, not holdings: their inventory and sales
counters live in the unit state and no wallet ever holds a product unit.
A bot purchase mints the sale total to the company wallet and updates the
product state in the same transaction.
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Optional

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType, AssetKind,
    build_transaction, CASH, SYSTEM_WALLET, BOT_PURCHASER, UNIT_TYPE_PRODUCT,
    InsufficientHoldings, InvalidAmount, InvalidInput, InvalidState,
    _freeze_state, check_positive_amount, checked_add, checked_mul, checked_sub,
)


def create_product_unit(
    symbol: str,
    company_id: str,
    company_wallet: str,
    name: str,
    price: int,
    quality_rating: float = 0.5,
    stock: Optional[int] = None,
    max_per_order: Optional[int] = None,
    created_at: Optional[datetime] = None,
) -> Unit:
    """
    Create a product unit.

    Args:
        stock: Units on hand, or None for unlimited inventory
        max_per_order: Largest quantity a single purchase may take (None: no cap)
    """
    check_positive_amount(price, "product price")
    if not 0.0 <= quality_rating <= 1.0:
        raise InvalidInput(f"quality_rating must be within [0, 1], got {quality_rating}")
    if stock is not None and stock < 0:
        raise InvalidAmount(f"stock cannot be negative, got {stock}")
    if max_per_order is not None:
        check_positive_amount(max_per_order, "max_per_order")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_PRODUCT,
        min_balance=0,
        max_balance=0,
        _frozen_state=_freeze_state({
            'company_id': company_id,
            'company_wallet': company_wallet,
            'name': name,
            'price': price,
            'quality_rating': float(quality_rating),
            'stock': stock,
            'max_per_order': max_per_order,
            'is_active': True,
            'is_archived': False,
            'total_sold': 0,
            'total_revenue': 0,
            'recent_sales_count': 0,
            'created_at': created_at,
        }),
    )


def compute_add_product(view: LedgerView, unit: Unit) -> PendingTransaction:
    """Register a product (fails with DuplicateTicker if the id is taken)."""
    state = unit.state
    return build_transaction(
        view,
        [],
        origin=TransactionOrigin(OriginType.USER_ACTION, state['company_wallet'], unit.symbol, "ADD_PRODUCT"),
        units_to_create=(unit,),
        description=f"Product {state['name']} added",
        asset_kind=AssetKind.PRODUCT,
    )


def is_purchasable(state: Dict[str, Any], max_price: int) -> bool:
    """Active, not archived, priced within (0, max_price] and in stock."""
    if not state.get('is_active') or state.get('is_archived'):
        return False
    price = state.get('price', 0)
    if price <= 0 or price > max_price:
        return False
    stock = state.get('stock')
    return stock is None or stock > 0


def max_order_quantity(state: Dict[str, Any]) -> Optional[int]:
    """Tightest of stock and max_per_order, or None when both are unlimited."""
    limits = [v for v in (state.get('stock'), state.get('max_per_order')) if v is not None]
    return min(limits) if limits else None


def compute_bot_purchase(
    view: LedgerView,
    symbol: str,
    quantity: int,
) -> PendingTransaction:
    """
    Sell `quantity` units of a product to the bot market.

    Raises:
        InvalidAmount: If quantity is not a positive safe integer or exceeds max_per_order
        InvalidState: If the product is inactive or archived
        InsufficientHoldings: If stock is below quantity
    """
    check_positive_amount(quantity, "purchase quantity")
    state = view.get_unit_state(symbol)
    if not state['is_active'] or state['is_archived']:
        raise InvalidState(f"Product {symbol} is not for sale")
    max_per_order = state.get('max_per_order')
    if max_per_order is not None and quantity > max_per_order:
        raise InvalidAmount(f"Order of {quantity} exceeds max_per_order {max_per_order}")
    stock = state.get('stock')
    if stock is not None and quantity > stock:
        raise InsufficientHoldings(f"Product {symbol} has {stock} in stock, order needs {quantity}")

    total = checked_mul(state['price'], quantity)
    new_state = {
        **state,
        'stock': None if stock is None else checked_sub(stock, quantity),
        'total_sold': checked_add(state['total_sold'], quantity),
        'total_revenue': checked_add(state['total_revenue'], total),
        'recent_sales_count': checked_add(state['recent_sales_count'], 1),
    }
    moves = [Move(
        total, CASH, SYSTEM_WALLET, state['company_wallet'], f"sale_{symbol}",
        metadata={'purchaser': BOT_PURCHASER, 'quantity': quantity},
    )]
    return build_transaction(
        view,
        moves,
        [UnitStateChange(symbol, state, new_state)],
        origin=TransactionOrigin(OriginType.TICK, BOT_PURCHASER, symbol, "BOT_PURCHASE"),
        description=f"Bot bought {quantity} x {state['name']}",
        asset_kind=AssetKind.PRODUCT,
    )
