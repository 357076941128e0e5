"""
tickmarket - Economy core of a persistent multiplayer business game

A tick engine reprices stocks and player-made cryptocurrencies, bots buy
company products, and players trade against the house. Every cent moves
through one double-entry ledger.

Usage:
    from tickmarket import GameEconomy, EconomySettings

    economy = GameEconomy(EconomySettings(random_seed=42))
    economy.register_player("alice", "Alice")
    economy.create_cryptocurrency("alice", "Alice Coin", "ALC")
    record = economy.execute_tick().unwrap()
"""

# Core types
from .core import (
    LedgerView,
    TickContract,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    AssetKind,
    build_transaction,
    empty_pending_transaction,
    Unit,
    UnitStateChange,
    CostBasisChange,
    Result,
    ErrorKind,
    LedgerError,
    InvalidAmount,
    InsufficientBalance,
    InsufficientHoldings,
    HoldingLimitExceeded,
    LoanTooLarge,
    DuplicateTicker,
    AssetNotFound,
    AccountNotFound,
    OverflowDetected,
    PermissionDenied,
    InvalidState,
    InvalidInput,
    StaleState,
    cash,
    SYSTEM_WALLET,
    CASH,
    UNIT_TYPE_CASH,
    UNIT_TYPE_STOCK,
    UNIT_TYPE_CRYPTO,
    UNIT_TYPE_PRODUCT,
    UNIT_TYPE_LOAN,
)

# Ledger and accounts
from .ledger import Ledger
from .accounts import Account, AccountKind, Role, new_player, new_company, player_wallet, company_wallet

# Pricing
from .pricing import (
    Side,
    StockModelParams,
    CryptoModelParams,
    cluster_volatility,
    next_stock_price,
    next_crypto_price,
    price_impact,
    apply_price_impact,
)

# Engines
from .trading import TradingEngine, TradeReceipt
from .demand import DemandSimulator
from .tick_engine import TickEngine, TickState
from .history import Candle, PriceHistory, TradeLog, TradeRecord, TickHistory, TickRecord
from .locks import LockManager, TickAlreadyRunning

# Facade and configuration
from .api import GameEconomy
from .config import EconomySettings, get_settings, setup_logging
from .scheduler import TickFailed, create_scheduler, add_tick_job, start_scheduler, shutdown_scheduler
from .main import initialize_application

__version__ = "0.1.0"

__all__ = [
    # Core
    'LedgerView', 'TickContract', 'Move', 'Transaction', 'PendingTransaction',
    'TransactionOrigin', 'OriginType', 'AssetKind',
    'build_transaction', 'empty_pending_transaction',
    'Unit', 'UnitStateChange', 'CostBasisChange', 'Result', 'ErrorKind',
    'LedgerError', 'InvalidAmount', 'InsufficientBalance', 'InsufficientHoldings',
    'HoldingLimitExceeded', 'LoanTooLarge', 'DuplicateTicker', 'AssetNotFound',
    'AccountNotFound', 'OverflowDetected', 'PermissionDenied', 'InvalidState', 'InvalidInput',
    'StaleState',
    'cash', 'SYSTEM_WALLET', 'CASH',
    'UNIT_TYPE_CASH', 'UNIT_TYPE_STOCK', 'UNIT_TYPE_CRYPTO', 'UNIT_TYPE_PRODUCT', 'UNIT_TYPE_LOAN',
    # Ledger and accounts
    'Ledger', 'Account', 'AccountKind', 'Role', 'new_player', 'new_company',
    'player_wallet', 'company_wallet',
    # Pricing
    'Side', 'StockModelParams', 'CryptoModelParams', 'cluster_volatility',
    'next_stock_price', 'next_crypto_price', 'price_impact', 'apply_price_impact',
    # Engines
    'TradingEngine', 'TradeReceipt', 'DemandSimulator', 'TickEngine', 'TickState',
    'Candle', 'PriceHistory', 'TradeLog', 'TradeRecord', 'TickHistory', 'TickRecord',
    'LockManager', 'TickAlreadyRunning',
    # Facade
    'GameEconomy', 'EconomySettings', 'get_settings', 'setup_logging',
    'initialize_application',
    # Scheduling
    'TickFailed', 'create_scheduler', 'add_tick_job', 'start_scheduler', 'shutdown_scheduler',
]
