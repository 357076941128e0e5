"""
trading.py - Buying and selling stocks and coins against the house

Pure compute_* functions quote a trade against a LedgerView and return the
PendingTransaction that settles it: one cash move, one asset move, the coin
state change (price impact, circulating supply) and the buyer's or seller's
cost basis change. TradingEngine serializes trades per asset and account,
executes the transaction and appends the trade to the TradeLog.

Stocks trade at the stored price with no impact. Coins fill at the pre-trade
price; the impact of the trade is applied to the stored price afterwards.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Tuple

from .config.logging import get_logger
from .core import (
    LedgerView, Move, PendingTransaction, Transaction, UnitStateChange, CostBasisChange,
    TransactionOrigin, OriginType, AssetKind,
    build_transaction, CASH, SYSTEM_WALLET,
    UNIT_TYPE_STOCK, UNIT_TYPE_CRYPTO, TRADABLE_UNIT_TYPES,
    AssetNotFound, HoldingLimitExceeded, InsufficientBalance, InsufficientHoldings,
    InvalidAmount,
    check_positive_amount, checked_add, checked_mul,
)
from .history import TradeLog, TradeRecord
from .holdings import cost_basis_after_buy, cost_basis_after_sell, weighted_average_price
from .ledger import Ledger
from .locks import LockManager
from .pricing import CryptoModelParams, Side, apply_price_impact, price_impact
from .units import crypto as crypto_unit


logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class TradeQuote:
    """What a trade will do, computed before execution."""
    symbol: str
    wallet: str
    side: Side
    quantity: int
    price: int
    total: int
    price_impact: float
    new_price: int


@dataclass(frozen=True)
class TradeReceipt:
    """Outcome of an executed trade."""
    quote: TradeQuote
    transaction: Transaction

    @property
    def quantity(self) -> int:
        return self.quote.quantity

    @property
    def price(self) -> int:
        return self.quote.price

    @property
    def total(self) -> int:
        return self.quote.total

    @property
    def new_price(self) -> int:
        return self.quote.new_price


def resolve_quantity(quantity: Optional[int], amount: Optional[int], price: int) -> int:
    """
    Turn either a unit quantity or a cash amount into a quantity.

    A cash amount converts at `price`, rounding down to whole units.

    Raises:
        InvalidAmount: If neither or both are given, or the result is not positive
    """
    if (quantity is None) == (amount is None):
        raise InvalidAmount("Specify exactly one of quantity or amount")
    if amount is not None:
        check_positive_amount(amount, "amount")
        quantity = amount // price
        if quantity <= 0:
            raise InvalidAmount(f"Amount {amount} buys no units at price {price}")
        return quantity
    return check_positive_amount(quantity, "quantity")


def _tradable_unit(view: LedgerView, symbol: str):
    unit = view.get_unit(symbol)
    if unit.unit_type not in TRADABLE_UNIT_TYPES:
        raise AssetNotFound(f"{symbol} is not a tradable asset")
    return unit


def _asset_kind(unit_type: str) -> AssetKind:
    return AssetKind.STOCK if unit_type == UNIT_TYPE_STOCK else AssetKind.CRYPTO


# ============================================================================
# PURE QUOTES
# ============================================================================

def compute_buy(
    view: LedgerView,
    wallet: str,
    symbol: str,
    quantity: int,
    params: CryptoModelParams = CryptoModelParams(),
) -> Tuple[PendingTransaction, TradeQuote]:
    """
    Quote and build a buy of `quantity` units from the house.

    Raises:
        InvalidAmount: If quantity is not a positive safe integer
        InsufficientBalance: If the cost exceeds the buyer's cash
        HoldingLimitExceeded: If the buyer's cap or the asset's supply would be breached
    """
    check_positive_amount(quantity, "quantity")
    unit = _tradable_unit(view, symbol)
    state = view.get_unit_state(symbol)
    price = state['price']
    cost = checked_mul(quantity, price)

    balance = view.get_balance(wallet, CASH)
    if cost > balance:
        raise InsufficientBalance(f"{wallet} has {balance} cents, buying {quantity} {symbol} costs {cost}")

    positions = view.get_positions(symbol)
    held = positions.get(wallet, 0)
    if checked_add(held, quantity) > unit.max_balance:
        raise HoldingLimitExceeded(
            f"{wallet} would hold {held + quantity} {symbol}, limit is {unit.max_balance}"
        )

    circulating = -positions.get(SYSTEM_WALLET, 0)
    state_changes = []
    impact = 0.0
    new_price = price
    if unit.unit_type == UNIT_TYPE_STOCK:
        if circulating + quantity > state['total_shares']:
            raise HoldingLimitExceeded(
                f"Only {state['total_shares'] - circulating} {symbol} shares remain available"
            )
    else:
        if circulating + quantity > state['total_supply']:
            raise HoldingLimitExceeded(
                f"Only {state['total_supply'] - circulating} {symbol} coins can still be issued"
            )
        impact = price_impact(quantity, state['liquidity'], Side.BUY, params)
        new_price = apply_price_impact(price, impact, params.min_price)
        new_state = crypto_unit.with_supply(
            crypto_unit.with_price(state, new_price), circulating + quantity,
        )
        state_changes.append(UnitStateChange(symbol, state, new_state))

    contract_id = f"buy_{symbol}"
    moves = [
        Move(cost, CASH, wallet, SYSTEM_WALLET, contract_id),
        Move(quantity, symbol, SYSTEM_WALLET, wallet, contract_id),
    ]
    pending = build_transaction(
        view,
        moves,
        state_changes,
        origin=TransactionOrigin(OriginType.USER_ACTION, wallet, symbol, "BUY"),
        cost_basis_changes=[cost_basis_after_buy(view, wallet, symbol, quantity, price)],
        description=f"Bought {quantity} {symbol} @ {price}",
        asset_kind=_asset_kind(unit.unit_type),
    )
    quote = TradeQuote(symbol, wallet, Side.BUY, quantity, price, cost, impact, new_price)
    return pending, quote


def compute_sell(
    view: LedgerView,
    wallet: str,
    symbol: str,
    quantity: int,
    params: CryptoModelParams = CryptoModelParams(),
) -> Tuple[PendingTransaction, TradeQuote]:
    """
    Quote and build a sale of `quantity` units to the house.

    Raises:
        InvalidAmount: If quantity is not a positive safe integer
        InsufficientHoldings: If the seller holds fewer than quantity units
    """
    check_positive_amount(quantity, "quantity")
    unit = _tradable_unit(view, symbol)
    state = view.get_unit_state(symbol)
    price = state['price']

    positions = view.get_positions(symbol)
    held = positions.get(wallet, 0)
    if quantity > held:
        raise InsufficientHoldings(f"{wallet} holds {held} {symbol}, cannot sell {quantity}")
    proceeds = checked_mul(quantity, price)

    state_changes = []
    impact = 0.0
    new_price = price
    if unit.unit_type == UNIT_TYPE_CRYPTO:
        circulating = -positions.get(SYSTEM_WALLET, 0)
        impact = price_impact(quantity, state['liquidity'], Side.SELL, params)
        new_price = apply_price_impact(price, impact, params.min_price)
        new_state = crypto_unit.with_supply(
            crypto_unit.with_price(state, new_price), circulating - quantity,
        )
        state_changes.append(UnitStateChange(symbol, state, new_state))

    contract_id = f"sell_{symbol}"
    moves = [Move(quantity, symbol, wallet, SYSTEM_WALLET, contract_id)]
    if proceeds > 0:
        moves.append(Move(proceeds, CASH, SYSTEM_WALLET, wallet, contract_id))
    basis = cost_basis_after_sell(view, wallet, symbol, quantity)
    pending = build_transaction(
        view,
        moves,
        state_changes,
        origin=TransactionOrigin(OriginType.USER_ACTION, wallet, symbol, "SELL"),
        cost_basis_changes=[basis] if basis else [],
        description=f"Sold {quantity} {symbol} @ {price}",
        asset_kind=_asset_kind(unit.unit_type),
    )
    quote = TradeQuote(symbol, wallet, Side.SELL, quantity, price, proceeds, impact, new_price)
    return pending, quote


def compute_transfer_holding(
    view: LedgerView,
    source: str,
    dest: str,
    symbol: str,
    quantity: int,
) -> PendingTransaction:
    """
    Give shares or coins to another account.

    The recipient's cost basis blends in the sender's average price.

    Raises:
        InvalidAmount: If quantity is not a positive safe integer
        InsufficientHoldings: If the sender holds fewer than quantity units
        HoldingLimitExceeded: If the recipient would exceed the per-account cap
    """
    check_positive_amount(quantity, "quantity")
    unit = _tradable_unit(view, symbol)
    if source == dest:
        raise InvalidAmount("Cannot transfer a holding to the same account")
    positions = view.get_positions(symbol)
    held = positions.get(source, 0)
    if quantity > held:
        raise InsufficientHoldings(f"{source} holds {held} {symbol}, cannot transfer {quantity}")
    dest_held = positions.get(dest, 0)
    if checked_add(dest_held, quantity) > unit.max_balance:
        raise HoldingLimitExceeded(
            f"{dest} would hold {dest_held + quantity} {symbol}, limit is {unit.max_balance}"
        )

    sender_price = view.get_cost_basis(source, symbol) or 0
    dest_price = view.get_cost_basis(dest, symbol)
    if dest_held > 0 and dest_price is not None:
        new_dest_price = weighted_average_price(dest_held, dest_price, quantity, sender_price)
    else:
        new_dest_price = sender_price
    changes = [CostBasisChange(dest, symbol, dest_price, new_dest_price)]
    sender_change = cost_basis_after_sell(view, source, symbol, quantity)
    if sender_change:
        changes.append(sender_change)

    return build_transaction(
        view,
        [Move(quantity, symbol, source, dest, f"transfer_{symbol}")],
        origin=TransactionOrigin(OriginType.USER_ACTION, source, symbol, "TRANSFER_HOLDING"),
        cost_basis_changes=changes,
        description=f"Transferred {quantity} {symbol} to {dest}",
        asset_kind=_asset_kind(unit.unit_type),
    )


# ============================================================================
# ENGINE
# ============================================================================

class TradingEngine:
    """
    Executes trades for players and companies.

    Every trade holds the locks of its asset and account from quote to
    commit, so the price it was quoted at is the price it settles at.
    """

    def __init__(
        self,
        ledger: Ledger,
        locks: Optional[LockManager] = None,
        trade_log: Optional[TradeLog] = None,
        crypto_params: CryptoModelParams = CryptoModelParams(),
    ):
        self.ledger = ledger
        self.locks = locks or LockManager()
        self.trade_log = trade_log if trade_log is not None else TradeLog()
        self.crypto_params = crypto_params

    def buy(
        self,
        wallet: str,
        symbol: str,
        quantity: Optional[int] = None,
        amount: Optional[int] = None,
    ) -> TradeReceipt:
        """Buy by unit quantity or by cash amount (exactly one of the two)."""
        with self.locks.hold(symbol, wallet):
            _tradable_unit(self.ledger, symbol)
            price = self.ledger.get_unit_state(symbol)["price"]
            quantity = resolve_quantity(quantity, amount, price)
            pending, quote = compute_buy(self.ledger, wallet, symbol, quantity, self.crypto_params)
            return self._settle(pending, quote)

    def sell(self, wallet: str, symbol: str, quantity: int) -> TradeReceipt:
        with self.locks.hold(symbol, wallet):
            pending, quote = compute_sell(self.ledger, wallet, symbol, quantity, self.crypto_params)
            return self._settle(pending, quote)

    def transfer_holding(self, source: str, dest: str, symbol: str, quantity: int) -> Transaction:
        with self.locks.hold(symbol, source, dest):
            pending = compute_transfer_holding(self.ledger, source, dest, symbol, quantity)
            return self.ledger.execute(pending)

    def _settle(self, pending: PendingTransaction, quote: TradeQuote) -> TradeReceipt:
        tx = self.ledger.execute(pending)
        self.trade_log.append(TradeRecord(
            symbol=quote.symbol,
            wallet=quote.wallet,
            side=quote.side.value,
            quantity=quote.quantity,
            price=quote.price,
            total=quote.total,
            price_impact=quote.price_impact,
            timestamp=tx.timestamp,
        ))
        logger.info(
            "trade_executed",
            symbol=quote.symbol,
            account=quote.wallet,
            side=quote.side.value,
            quantity=quote.quantity,
            price=quote.price,
            total=quote.total,
            new_price=quote.new_price,
        )
        return TradeReceipt(quote, tx)
