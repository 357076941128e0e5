"""
api.py - GameEconomy, the public entry point of the economy

Wires the ledger, trading engine, tick engine, demand simulator and read
models together and exposes every operation as a Result. Domain code below
this layer raises LedgerError subclasses; this is the only place they are
turned into values.

Callers identify themselves by player id (authentication happens elsewhere).
Acting for a company requires owning it.

Example:
    economy = GameEconomy(EconomySettings(random_seed=7))
    economy.register_player("alice", "Alice")
    coin = economy.create_cryptocurrency("alice", "Alice Coin", "ALC").unwrap()
    economy.execute_tick()
    economy.buy_cryptocurrency("alice", "ALC", quantity=10)
"""

from __future__ import annotations
import itertools
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, List, Optional

import numpy as np
from apscheduler.schedulers.background import BackgroundScheduler

from .accounts import (
    Account, AccountKind, Role,
    company_wallet, new_company, new_player, player_wallet, require_owner,
)
from .config.logging import get_logger
from .config.settings import EconomySettings, get_settings
from .core import (
    ErrorKind, Result, Transaction,
    CASH, UNIT_TYPE_CRYPTO, UNIT_TYPE_LOAN, UNIT_TYPE_STOCK,
    AssetNotFound, InsufficientBalance, InvalidAmount, InvalidInput, InvalidState, LedgerError,
    PermissionDenied,
    utcnow,
)
from .demand import DemandSimulator
from .history import PriceHistory, SalesLog, TickHistory, TickRecord, TradeLog, TIMEFRAMES
from .holdings import list_holdings
from .ledger import Ledger
from .locks import LockManager, TickAlreadyRunning
from .moderation import Moderator
from .permissions import Capability, require_capability
from .scheduler import add_tick_job, create_scheduler, shutdown_scheduler, start_scheduler
from .tick_engine import TickEngine
from .trading import TradingEngine
from .units.crypto import compute_create_cryptocurrency, crypto_model_params
from .units.loan import (
    compute_create_loan, compute_interest_accrual, compute_repayment, load_loan, loans_for,
)
from .units.product import compute_add_product, create_product_unit
from .units.stock import compute_ipo


logger = get_logger(__name__)


class GameEconomy:
    """
    Facade over one economy.

    Args:
        settings: Tunables (default: get_settings())
        name: Ledger name
        initial_time: Starting ledger time
        rng: Generator for every random draw (default: seeded from settings.random_seed)
        clock: Wall clock used to stamp operations (default: naive UTC now)
    """

    def __init__(
        self,
        settings: Optional[EconomySettings] = None,
        name: str = "economy",
        initial_time: Optional[datetime] = None,
        rng: Optional[np.random.Generator] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or get_settings()
        self._clock = clock or utcnow
        self.ledger = Ledger(name, initial_time or self._clock())
        self.locks = LockManager()
        self.price_history = PriceHistory()
        self.trade_log = TradeLog()
        self.sales_log = SalesLog()
        self.tick_history = TickHistory()
        self.rng = rng if rng is not None else np.random.default_rng(self.settings.random_seed)
        self.trading = TradingEngine(
            self.ledger, self.locks, self.trade_log, crypto_model_params(self.settings),
        )
        self.demand = DemandSimulator(self.ledger, self.settings, self.locks, self.sales_log)
        self.tick_engine = TickEngine(
            self.ledger,
            self.settings,
            rng=self.rng,
            locks=self.locks,
            price_history=self.price_history,
            trade_log=self.trade_log,
            sales_log=self.sales_log,
            tick_history=self.tick_history,
            demand=self.demand,
            clock=self._clock,
        )
        self.moderator = Moderator(self.ledger, self.locks, self.price_history, self.trade_log)
        self._counters: Dict[str, itertools.count] = {}
        self.scheduler: Optional[BackgroundScheduler] = None

    # ========================================================================
    # PLUMBING
    # ========================================================================

    def _call(self, operation: str, fn: Callable, **context) -> Result:
        try:
            return Result.success(fn())
        except LedgerError as exc:
            logger.info(
                "operation_failed",
                operation=operation,
                error_kind=exc.kind.value,
                reason=str(exc),
                **context,
            )
            return Result.failure(exc)

    def _now(self) -> datetime:
        """Move ledger time up to the wall clock (never backwards)."""
        with self.ledger.lock:
            now = max(self._clock(), self.ledger.current_time)
            self.ledger.advance_time(now)
            return now

    def _next_id(self, prefix: str) -> str:
        counter = self._counters.setdefault(prefix, itertools.count(1))
        return f"{prefix}-{next(counter):06d}"

    def _player(self, player_id: str) -> Account:
        return self.ledger.get_account(player_wallet(player_id))

    def _acting_wallet(
        self,
        actor_id: str,
        capability: Capability,
        company_id: Optional[str] = None,
    ) -> str:
        """Wallet an actor operates: their own, or a company they own."""
        actor = self._player(actor_id)
        require_capability(actor, capability)
        if company_id is None:
            return actor.wallet
        company = self.ledger.get_account(company_wallet(company_id))
        require_owner(company, actor_id)
        return company.wallet

    def _require_unit_type(self, symbol: str, unit_type: str) -> None:
        if self.ledger.get_unit(symbol).unit_type != unit_type:
            raise AssetNotFound(f"{symbol} is not a {unit_type.lower()}")

    # ========================================================================
    # TICK
    # ========================================================================

    def execute_tick(self, timestamp: Optional[datetime] = None) -> Result[TickRecord]:
        """Run one tick now (or at `timestamp`)."""
        if timestamp is None:
            timestamp = max(self._clock(), self.ledger.current_time)
        try:
            return self._call(
                "execute_tick",
                lambda: self.tick_engine.execute_tick(timestamp),
                timestamp=timestamp.isoformat(),
            )
        except TickAlreadyRunning as exc:
            return Result(ok=False, error_kind=ErrorKind.INVALID_STATE, message=str(exc))

    def start_scheduler(self) -> BackgroundScheduler:
        """Tick every settings.tick_interval_minutes on a background thread."""
        if self.scheduler is None:
            self.scheduler = create_scheduler()
        add_tick_job(self.scheduler, self.tick_engine, self.settings.tick_interval_minutes)
        start_scheduler(self.scheduler)
        return self.scheduler

    def stop_scheduler(self, wait: bool = True) -> None:
        if self.scheduler is not None:
            shutdown_scheduler(self.scheduler, wait=wait)
            self.scheduler = None

    # ========================================================================
    # TRADING
    # ========================================================================

    def buy_stock(
        self,
        actor_id: str,
        symbol: str,
        quantity: Optional[int] = None,
        amount: Optional[int] = None,
        company_id: Optional[str] = None,
    ) -> Result:
        return self._buy(actor_id, symbol, UNIT_TYPE_STOCK, quantity, amount, company_id)

    def sell_stock(
        self,
        actor_id: str,
        symbol: str,
        quantity: int,
        company_id: Optional[str] = None,
    ) -> Result:
        return self._sell(actor_id, symbol, UNIT_TYPE_STOCK, quantity, company_id)

    def buy_cryptocurrency(
        self,
        actor_id: str,
        symbol: str,
        quantity: Optional[int] = None,
        amount: Optional[int] = None,
        company_id: Optional[str] = None,
    ) -> Result:
        return self._buy(actor_id, symbol, UNIT_TYPE_CRYPTO, quantity, amount, company_id)

    def sell_cryptocurrency(
        self,
        actor_id: str,
        symbol: str,
        quantity: int,
        company_id: Optional[str] = None,
    ) -> Result:
        return self._sell(actor_id, symbol, UNIT_TYPE_CRYPTO, quantity, company_id)

    def _buy(self, actor_id, symbol, unit_type, quantity, amount, company_id) -> Result:
        def run():
            wallet = self._acting_wallet(actor_id, Capability.TRADE, company_id)
            self._require_unit_type(symbol, unit_type)
            self._now()
            return self.trading.buy(wallet, symbol, quantity=quantity, amount=amount)
        return self._call("buy", run, actor=actor_id, symbol=symbol)

    def _sell(self, actor_id, symbol, unit_type, quantity, company_id) -> Result:
        def run():
            wallet = self._acting_wallet(actor_id, Capability.TRADE, company_id)
            self._require_unit_type(symbol, unit_type)
            self._now()
            return self.trading.sell(wallet, symbol, quantity)
        return self._call("sell", run, actor=actor_id, symbol=symbol)

    def transfer_holding(
        self,
        actor_id: str,
        to_wallet: str,
        symbol: str,
        quantity: int,
        company_id: Optional[str] = None,
    ) -> Result[Transaction]:
        """Give shares or coins to another account."""
        def run():
            wallet = self._acting_wallet(actor_id, Capability.TRANSFER, company_id)
            self.ledger.get_account(to_wallet)
            self._now()
            return self.trading.transfer_holding(wallet, to_wallet, symbol, quantity)
        return self._call("transfer_holding", run, actor=actor_id, symbol=symbol)

    # ========================================================================
    # CASH
    # ========================================================================

    def transfer_cash(
        self,
        actor_id: str,
        to_wallet: str,
        amount: int,
        description: str = "",
        company_id: Optional[str] = None,
    ) -> Result[Transaction]:
        def run():
            wallet = self._acting_wallet(actor_id, Capability.TRANSFER, company_id)
            self.ledger.get_account(to_wallet)
            self._now()
            with self.locks.hold(wallet, to_wallet):
                return self.ledger.transfer(wallet, to_wallet, amount, description)
        return self._call("transfer_cash", run, actor=actor_id, to=to_wallet)

    # ========================================================================
    # LOANS
    # ========================================================================

    def create_loan(self, actor_id: str, amount: int, interest_rate: Optional[float] = None) -> Result[str]:
        """Borrow `amount` cents; returns the loan symbol."""
        rate = self.settings.loan_interest_rate if interest_rate is None else interest_rate

        def run():
            account = self._player(actor_id)
            require_capability(account, Capability.BORROW)
            if rate < 0:
                raise InvalidAmount(f"Interest rate cannot be negative: {rate}")
            self._now()
            symbol = self._next_id("LOAN")
            with self.locks.hold(account.wallet):
                pending = compute_create_loan(
                    self.ledger, symbol, account.wallet, amount, rate, self.settings.max_loan_amount,
                )
                self.ledger.execute(pending)
            logger.info("loan_created", loan=symbol, account=account.wallet, amount=amount, rate=rate)
            return symbol
        return self._call("create_loan", run, actor=actor_id, amount=amount)

    def repay_loan(self, actor_id: str, loan_symbol: str, amount: int) -> Result:
        """Repay part or all of one of the actor's loans; returns the loan snapshot."""
        def run():
            account = self._player(actor_id)
            self._require_unit_type(loan_symbol, UNIT_TYPE_LOAN)
            with self.locks.hold(loan_symbol, account.wallet):
                if load_loan(self.ledger, loan_symbol).player_wallet != account.wallet:
                    raise PermissionDenied(f"{loan_symbol} is not a loan of {account.wallet}")
                self._now()
                self.ledger.execute(compute_repayment(self.ledger, loan_symbol, amount))
                return load_loan(self.ledger, loan_symbol)
        return self._call("repay_loan", run, actor=actor_id, loan=loan_symbol)

    def apply_loan_interest(self, loan_symbol: str) -> Result:
        """Accrue one tick of interest now, regardless of when it last accrued."""
        def run():
            self._require_unit_type(loan_symbol, UNIT_TYPE_LOAN)
            with self.locks.hold(loan_symbol):
                self._now()
                self.ledger.execute(
                    compute_interest_accrual(self.ledger, loan_symbol, self.settings.ticks_per_day)
                )
                return load_loan(self.ledger, loan_symbol)
        return self._call("apply_loan_interest", run, loan=loan_symbol)

    def get_loans(self, actor_id: str) -> Result[List]:
        def run():
            wallet = self._player(actor_id).wallet
            return [load_loan(self.ledger, symbol) for symbol in loans_for(self.ledger, wallet)]
        return self._call("get_loans", run, actor=actor_id)

    # ========================================================================
    # REGISTRATION AND ASSET CREATION
    # ========================================================================

    def register_player(self, player_id: str, name: str, role: Role = Role.USER) -> Result[Account]:
        """Register a player and credit the starting balance."""
        def run():
            account = new_player(player_id, name, role)
            self._now()
            with self.ledger.lock:
                if self.ledger.is_registered(account.wallet):
                    raise InvalidState(f"Player {player_id} already exists")
                self.ledger.register_account(account)
                if self.settings.starting_player_balance > 0:
                    self.ledger.mint(account.wallet, self.settings.starting_player_balance, "Starting balance")
            return account
        return self._call("register_player", run, player=player_id)

    def create_company(
        self,
        actor_id: str,
        name: str,
        company_id: Optional[str] = None,
        reputation: float = 0.5,
    ) -> Result[Account]:
        """Found a company owned by the actor; the creation fee is burned."""
        def run():
            owner = self._player(actor_id)
            require_capability(owner, Capability.CREATE_ASSET)
            account = new_company(company_id or self._next_id("CO"), name, actor_id, reputation)
            fee = self.settings.company_creation_fee
            self._now()
            with self.locks.hold(owner.wallet), self.ledger.lock:
                if self.ledger.is_registered(account.wallet):
                    raise InvalidState(f"Company {account.account_id} already exists")
                balance = self.ledger.get_balance(owner.wallet)
                if balance < fee:
                    raise InsufficientBalance(f"{owner.wallet} has {balance} cents, company fee is {fee}")
                self.ledger.register_account(account)
                if fee > 0:
                    self.ledger.burn(owner.wallet, fee, f"Company creation fee for {name}")
            return account
        return self._call("create_company", run, actor=actor_id, name=name)

    def go_public(
        self,
        actor_id: str,
        company_id: str,
        ticker: str,
        total_shares: Optional[int] = None,
        sector: str = "general",
    ) -> Result[str]:
        """IPO a company; returns the ticker."""
        s = self.settings

        def run():
            wallet = self._acting_wallet(actor_id, Capability.CREATE_ASSET, company_id)
            self._now()
            with self.locks.hold(wallet):
                pending = compute_ipo(
                    self.ledger, company_id, wallet, ticker,
                    total_shares or s.ipo_default_shares,
                    s.ipo_min_company_balance,
                    s.ipo_market_cap_multiple,
                    s.max_shares_per_account,
                    base_volatility=s.stock_base_volatility,
                    sector=sector,
                )
                tx = self.ledger.execute(pending)
            symbol = tx.units_to_create[0].symbol
            logger.info("company_listed", company=company_id, symbol=symbol)
            return symbol
        return self._call("go_public", run, actor=actor_id, company=company_id)

    def add_product(
        self,
        actor_id: str,
        company_id: str,
        name: str,
        price: int,
        quality_rating: float = 0.5,
        stock: Optional[int] = None,
        max_per_order: Optional[int] = None,
    ) -> Result[str]:
        """List a product for the bot market; returns the product symbol."""
        def run():
            wallet = self._acting_wallet(actor_id, Capability.CREATE_ASSET, company_id)
            now = self._now()
            unit = create_product_unit(
                self._next_id("PROD"), company_id, wallet, name, price,
                quality_rating=quality_rating, stock=stock, max_per_order=max_per_order,
                created_at=now,
            )
            self.ledger.execute(compute_add_product(self.ledger, unit))
            return unit.symbol
        return self._call("add_product", run, actor=actor_id, company=company_id)

    def create_cryptocurrency(self, actor_id: str, name: str, ticker: str) -> Result[str]:
        """Launch a coin; the creator pays the fee and receives the initial supply."""
        s = self.settings

        def run():
            wallet = self._acting_wallet(actor_id, Capability.CREATE_ASSET)
            self._now()
            with self.locks.hold(wallet):
                pending = compute_create_cryptocurrency(
                    self.ledger, wallet, name, ticker,
                    creation_fee=s.crypto_creation_fee,
                    total_supply=s.crypto_total_supply,
                    initial_supply=s.crypto_initial_supply,
                    initial_market_cap=s.crypto_initial_market_cap,
                    liquidity=s.crypto_default_liquidity,
                    base_volatility=s.crypto_base_volatility,
                )
                tx = self.ledger.execute(pending)
            symbol = tx.units_to_create[0].symbol
            logger.info("cryptocurrency_created", symbol=symbol, creator=wallet)
            return symbol
        return self._call("create_cryptocurrency", run, actor=actor_id, ticker=ticker)

    # ========================================================================
    # MODERATION
    # ========================================================================

    def set_stock_price(self, actor_id: str, symbol: str, price: int) -> Result[Transaction]:
        def run():
            self._now()
            return self.moderator.set_stock_price(self._player(actor_id), symbol, price)
        return self._call("set_stock_price", run, actor=actor_id, symbol=symbol)

    def set_player_balance(self, actor_id: str, player_id: str, amount: int) -> Result:
        def run():
            self._now()
            return self.moderator.set_player_balance(self._player(actor_id), player_wallet(player_id), amount)
        return self._call("set_player_balance", run, actor=actor_id, player=player_id)

    def set_company_balance(self, actor_id: str, company_id: str, amount: int) -> Result:
        def run():
            self._now()
            return self.moderator.set_company_balance(self._player(actor_id), company_wallet(company_id), amount)
        return self._call("set_company_balance", run, actor=actor_id, company=company_id)

    def delist_asset(self, actor_id: str, symbol: str) -> Result:
        return self._call(
            "delist_asset",
            lambda: self.moderator.delist_asset(self._player(actor_id), symbol),
            actor=actor_id, symbol=symbol,
        )

    def set_role(self, actor_id: str, player_id: str, role: Role) -> Result[Account]:
        """Change a player's role (admin only)."""
        def run():
            require_capability(self._player(actor_id), Capability.ADMIN)
            target = self._player(player_id)
            updated = replace(target, role=role)
            self.ledger.replace_account(updated)
            return updated
        return self._call("set_role", run, actor=actor_id, player=player_id)

    # ========================================================================
    # READ MODELS
    # ========================================================================

    def get_balance(self, wallet: str) -> Result[int]:
        return self._call("get_balance", lambda: self.ledger.get_balance(wallet, CASH))

    def get_holdings(self, wallet: str) -> Result[List]:
        def run():
            self.ledger.get_account(wallet)
            return list_holdings(self.ledger, wallet)
        return self._call("get_holdings", run, account=wallet)

    def get_price_history(
        self,
        symbol: str,
        since: Optional[datetime] = None,
        timeframe: Optional[str] = None,
    ) -> Result[List]:
        """Candles since a time, or for a chart timeframe ("1H" ... "ALL")."""
        def run():
            if timeframe is not None:
                if timeframe not in TIMEFRAMES:
                    raise InvalidInput(f"Unknown timeframe {timeframe!r}")
                return self.price_history.get_timeframe(symbol, timeframe, self.ledger.current_time)
            return self.price_history.get_candles(symbol, since=since)
        return self._call("get_price_history", run, symbol=symbol)

    def get_recent_trades(self, symbol: Optional[str] = None, limit: int = 50) -> Result[List]:
        return Result.success(self.trade_log.recent(symbol, limit))

    def get_tick_history(self, limit: int = 10) -> Result[List[TickRecord]]:
        return Result.success(self.tick_history.recent(limit))

    def get_last_tick(self) -> Result[Optional[TickRecord]]:
        return Result.success(self.tick_history.latest())

    def get_sales(self, company_id: str, limit: int = 50) -> Result[List]:
        return Result.success(self.sales_log.for_company(company_wallet(company_id), limit))

    def list_accounts(self, kind: Optional[AccountKind] = None) -> List[Account]:
        return self.ledger.list_accounts(kind)

    def verify(self) -> Dict:
        """Double-entry check over the whole ledger."""
        return self.ledger.verify_double_entry()
