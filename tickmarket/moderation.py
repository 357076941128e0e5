"""
moderation.py - Admin overrides of prices, balances and listings

Overrides skip the economic rules (affordability, float, impact) but never
the monetary ones: values must be non-negative safe integers and balance
changes are still booked against the system wallet. Every override is written
to the audit log.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Optional

from .accounts import Account, AccountKind
from .config.logging import log_audit_event
from .core import (
    Transaction, UNIT_TYPE_CRYPTO, UNIT_TYPE_PRODUCT, UNIT_TYPE_STOCK,
    AccountNotFound, InvalidState, check_positive_amount,
)
from .history import PriceHistory, TradeLog
from .ledger import Ledger
from .locks import LockManager
from .permissions import Capability, require_capability
from .units.stock import compute_set_price


DELISTABLE_UNIT_TYPES = frozenset({UNIT_TYPE_STOCK, UNIT_TYPE_CRYPTO, UNIT_TYPE_PRODUCT})


@dataclass(frozen=True)
class DelistReport:
    symbol: str
    positions_removed: Dict[str, int]
    candles_removed: int
    trades_removed: int


class Moderator:
    """Admin-only operations. Every method takes the acting account first."""

    def __init__(
        self,
        ledger: Ledger,
        locks: Optional[LockManager] = None,
        price_history: Optional[PriceHistory] = None,
        trade_log: Optional[TradeLog] = None,
    ):
        self.ledger = ledger
        self.locks = locks or LockManager()
        self.price_history = price_history if price_history is not None else PriceHistory()
        self.trade_log = trade_log if trade_log is not None else TradeLog()

    def set_stock_price(self, actor: Account, symbol: str, price: int) -> Transaction:
        require_capability(actor, Capability.ADMIN)
        check_positive_amount(price, "share price")
        with self.locks.hold(symbol):
            old_price = self.ledger.get_unit_state(symbol).get('price')
            tx = self.ledger.execute(compute_set_price(self.ledger, symbol, price, actor.wallet))
        log_audit_event("set_stock_price", actor.wallet, symbol=symbol, old_price=old_price, new_price=price)
        return tx

    def set_player_balance(self, actor: Account, wallet: str, amount: int) -> Optional[Transaction]:
        return self._set_balance(actor, wallet, amount, AccountKind.PLAYER)

    def set_company_balance(self, actor: Account, wallet: str, amount: int) -> Optional[Transaction]:
        return self._set_balance(actor, wallet, amount, AccountKind.COMPANY)

    def _set_balance(
        self,
        actor: Account,
        wallet: str,
        amount: int,
        kind: AccountKind,
    ) -> Optional[Transaction]:
        require_capability(actor, Capability.ADMIN)
        target = self.ledger.get_account(wallet)
        if target.kind != kind:
            raise AccountNotFound(f"{wallet} is not a {kind.value} account")
        with self.locks.hold(wallet):
            old_balance = self.ledger.get_balance(wallet)
            tx = self.ledger.set_balance(
                wallet, amount, actor_id=actor.wallet,
                description=f"Admin set balance to {amount}",
            )
        log_audit_event(
            f"set_{kind.value}_balance", actor.wallet,
            account=wallet, old_balance=old_balance, new_balance=amount,
        )
        return tx

    def delist_asset(self, actor: Account, symbol: str) -> DelistReport:
        """
        Remove a stock, coin or product together with its holdings and history.

        Raises:
            PermissionDenied: If actor is not an admin
            AssetNotFound: If the symbol is not listed
            InvalidState: For cash and loans
        """
        require_capability(actor, Capability.ADMIN)
        with self.locks.hold(symbol):
            unit = self.ledger.get_unit(symbol)
            if unit.unit_type not in DELISTABLE_UNIT_TYPES:
                raise InvalidState(f"{symbol} ({unit.unit_type}) cannot be delisted")
            positions = self.ledger.remove_unit(symbol)
            candles = self.price_history.remove(symbol)
            trades = self.trade_log.remove(symbol)
        self.locks.discard(symbol)
        log_audit_event(
            "delist_asset", actor.wallet,
            symbol=symbol, holders=len(positions), candles=candles, trades=trades,
        )
        return DelistReport(symbol, positions, candles, trades)
