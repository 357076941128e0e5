"""
Core types and pure functions for the in-game economy.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and the error-kind taxonomy
4. Money arithmetic: safe-integer checks and overflow-detecting helpers
5. Result: typed success/failure value returned at the API boundary

All monetary amounts are Python ints in minor currency units (cents).
All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_FLOOR
from enum import Enum
from typing import (
    Any, Dict, FrozenSet, Generic, List, Optional, Protocol, Set, Tuple,
    TypeVar, runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for minting, burning and market making.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Synthetic purchaser recorded on bot marketplace sales.
BOT_PURCHASER = "bot"

# Symbol of the single in-game currency.
CASH = "CASH"

# Unit type constants (strings, not enum).
UNIT_TYPE_CASH = "CASH"
UNIT_TYPE_STOCK = "STOCK"
UNIT_TYPE_CRYPTO = "CRYPTO"
UNIT_TYPE_PRODUCT = "PRODUCT"
UNIT_TYPE_LOAN = "LOAN"

TRADABLE_UNIT_TYPES = frozenset({UNIT_TYPE_STOCK, UNIT_TYPE_CRYPTO})

# Largest integer a double can represent exactly. Every monetary value and
# quantity must stay within +/- this bound.
MAX_SAFE_INTEGER = 2 ** 53 - 1


def utcnow() -> datetime:
    """Naive UTC wall-clock time (the ledger works in naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, int]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, int]

# Internal state for a unit (price, supply, loan terms, product stock, ...).
UnitState = Dict[str, Any]


# ============================================================================
# ERROR TAXONOMY
# ============================================================================

class ErrorKind(Enum):
    """Kinds of failure a caller can branch on."""
    INVALID_AMOUNT = "invalid_amount"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    INSUFFICIENT_HOLDINGS = "insufficient_holdings"
    HOLDING_LIMIT_EXCEEDED = "holding_limit_exceeded"
    LOAN_TOO_LARGE = "loan_too_large"
    DUPLICATE_TICKER = "duplicate_ticker"
    ASSET_NOT_FOUND = "asset_not_found"
    ACCOUNT_NOT_FOUND = "account_not_found"
    OVERFLOW_DETECTED = "overflow_detected"
    PERMISSION_DENIED = "permission_denied"
    INVALID_STATE = "invalid_state"
    INVALID_INPUT = "invalid_input"
    STALE_STATE = "stale_state"


class LedgerError(Exception):
    """Base exception for all economy errors. Subclasses set ``kind``."""
    kind: ErrorKind = ErrorKind.INVALID_STATE


class InvalidAmount(LedgerError):
    """Raised when an amount or quantity is not a strictly positive safe integer."""
    kind = ErrorKind.INVALID_AMOUNT


class InsufficientBalance(LedgerError):
    """Raised when a cash debit would take an account below zero."""
    kind = ErrorKind.INSUFFICIENT_BALANCE


class InsufficientHoldings(LedgerError):
    """Raised when selling or transferring more units than are held."""
    kind = ErrorKind.INSUFFICIENT_HOLDINGS


class HoldingLimitExceeded(LedgerError):
    """Raised when a buy would breach a per-account cap or the asset's supply."""
    kind = ErrorKind.HOLDING_LIMIT_EXCEEDED


class LoanTooLarge(LedgerError):
    """Raised when a loan principal exceeds the configured ceiling."""
    kind = ErrorKind.LOAN_TOO_LARGE


class DuplicateTicker(LedgerError):
    """Raised when a ticker is already registered."""
    kind = ErrorKind.DUPLICATE_TICKER


class AssetNotFound(LedgerError):
    """Raised when operating on a unit that has not been registered."""
    kind = ErrorKind.ASSET_NOT_FOUND


class AccountNotFound(LedgerError):
    """Raised when operating on a wallet that has not been registered."""
    kind = ErrorKind.ACCOUNT_NOT_FOUND


class OverflowDetected(LedgerError):
    """Raised when integer arithmetic would leave the safe-integer range."""
    kind = ErrorKind.OVERFLOW_DETECTED


class PermissionDenied(LedgerError):
    """Raised when an actor lacks the capability for an operation."""
    kind = ErrorKind.PERMISSION_DENIED


class InvalidState(LedgerError):
    """Raised when an operation does not apply to the record's current state."""
    kind = ErrorKind.INVALID_STATE


class InvalidInput(LedgerError):
    """Raised when a request field is malformed (an id, ticker, rating or timeframe)."""
    kind = ErrorKind.INVALID_INPUT


class StaleState(LedgerError):
    """Raised when a transaction was built against unit state that has since changed."""
    kind = ErrorKind.STALE_STATE


# ============================================================================
# MONEY ARITHMETIC
# ============================================================================

def is_safe_int(value: Any) -> bool:
    """True for ints (not bools) within +/- MAX_SAFE_INTEGER."""
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and -MAX_SAFE_INTEGER <= value <= MAX_SAFE_INTEGER
    )


def check_safe_int(value: Any, what: str = "amount") -> int:
    """
    Validate that value is a safe integer.

    Raises:
        InvalidAmount: If value is not an int (floats, bools, Decimals are rejected)
        OverflowDetected: If value is outside the safe-integer range
    """
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidAmount(f"{what} must be an integer, got {value!r}")
    if not -MAX_SAFE_INTEGER <= value <= MAX_SAFE_INTEGER:
        raise OverflowDetected(f"{what} {value} exceeds the safe integer range")
    return value


def check_positive_amount(value: Any, what: str = "amount") -> int:
    """Validate a strictly positive safe integer."""
    check_safe_int(value, what)
    if value <= 0:
        raise InvalidAmount(f"{what} must be positive, got {value}")
    return value


def _checked(result: int, op: str) -> int:
    if not -MAX_SAFE_INTEGER <= result <= MAX_SAFE_INTEGER:
        raise OverflowDetected(f"{op} overflows the safe integer range")
    return result


def checked_add(a: int, b: int) -> int:
    return _checked(a + b, f"{a} + {b}")


def checked_sub(a: int, b: int) -> int:
    return _checked(a - b, f"{a} - {b}")


def checked_mul(a: int, b: int) -> int:
    return _checked(a * b, f"{a} * {b}")


def to_decimal(value: Any) -> Decimal:
    """Convert ints/floats/strings to Decimal without binary float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def floor_to_minor(value: Any) -> int:
    """Floor a Decimal/float amount to whole minor units."""
    result = int(to_decimal(value).to_integral_value(rounding=ROUND_FLOOR))
    return _checked(result, f"floor({value})")


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Pricing, trading, loan and demand functions accept a LedgerView to declare
    read-only intent. The Ledger class implements this protocol; FakeView in
    the test suite provides a standalone implementation.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str = CASH) -> int:
        """Return the balance of a unit in a wallet (0 if none)."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def get_cost_basis(self, wallet_id: str, unit_symbol: str) -> Optional[int]:
        """Return the average purchase price of a holding, if any."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...

    def list_units(self, unit_type: Optional[str] = None) -> List[str]:
        """Return registered unit symbols, optionally filtered by type."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class OriginType(Enum):
    """
    Classification of where a transaction originated.

    Used for audit trails and reconciliation.
    """
    USER_ACTION = "user_action"           # Player-initiated trade or transfer
    TICK = "tick"                         # Scheduled tick step (interest, repricing, bots)
    SYSTEM = "system"                     # Mint/burn, creation fees
    ADMIN = "admin"                       # Moderation override


class AssetKind(Enum):
    """What a ledger entry moved, for transaction history display."""
    CASH = "cash"
    STOCK = "stock"
    CRYPTO = "crypto"
    PRODUCT = "product"
    LOAN = "loan"


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the specific source (wallet, engine name, admin id)
        unit_symbol: Symbol of the unit that triggered this (if applicable)
        event_type: Specific event within the source (e.g., "BUY", "INTEREST", "BOT_PURCHASE")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# STATE CHANGES
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a unit state change.

    old_state doubles as an optimistic version check: the ledger rejects the
    change if the unit's current state no longer equals old_state.
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Fields that differ between old and new state, as (old, new) tuples."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            if old.get(key) != new.get(key):
                changes[key] = (old.get(key), new.get(key))
        return changes


@dataclass(frozen=True, slots=True)
class CostBasisChange:
    """
    Change of a holding's average purchase price.

    new_price of None removes the cost basis (holding closed out).
    """
    wallet: str
    unit: str
    old_price: Optional[int]
    new_price: Optional[int]


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: Strictly positive safe integer (cents for CASH, units otherwise)
        unit_symbol: The symbol of the unit being transferred
        source: The wallet ID from which value is debited
        dest: The wallet ID to which value is credited
        contract_id: Identifier of the operation generating this move
        metadata: Optional additional information about the move
    """
    quantity: int
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise InvalidInput("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise InvalidInput("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise InvalidInput("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise InvalidInput("Move contract_id cannot be empty")
        check_positive_amount(self.quantity, "Move quantity")
        if self.source == self.dest:
            raise InvalidInput("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Created by the pure compute_* functions and submitted to the ledger.

    Attributes:
        moves: Value transfers between wallets
        state_changes: Unit state changes (old_state is the version check)
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        units_to_create: Units to register before executing moves
        cost_basis_changes: Average purchase price updates for holdings
        description: Human-readable summary for transaction history
        asset_kind: What the transaction primarily moved
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    cost_basis_changes: Tuple[CostBasisChange, ...] = ()
    description: str = ""
    asset_kind: AssetKind = AssetKind.CASH

    def is_empty(self) -> bool:
        """True if there is nothing to apply."""
        return (
            not self.moves and not self.state_changes
            and not self.units_to_create and not self.cost_basis_changes
        )

    def __repr__(self) -> str:
        return (f"PendingTransaction({len(self.moves)} moves, "
                f"{len(self.state_changes)} deltas, {self.origin})")


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
    cost_basis_changes: Optional[List[CostBasisChange]] = None,
    description: str = "",
    asset_kind: AssetKind = AssetKind.CASH,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and state deltas.

    This is the standard way to create transactions.

    Example:
        def compute_repayment(view, symbol, amount):
            state = view.get_unit_state(symbol)
            moves = [Move(amount, CASH, state['player_wallet'], SYSTEM_WALLET, f"repay_{symbol}")]
            new_state = {**state, 'remaining_balance': state['remaining_balance'] - amount}
            changes = [UnitStateChange(symbol, state, new_state)]
            return build_transaction(view, moves, changes)
    """
    import copy

    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.USER_ACTION,
            source_id="user",
        )

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
        cost_basis_changes=tuple(cost_basis_changes or ()),
        description=description,
        asset_kind=asset_kind,
    )


def empty_pending_transaction(view: LedgerView) -> PendingTransaction:
    """
    Create an empty PendingTransaction (no moves, no state changes).

    Use this when a contract function has nothing to do.
    """
    return PendingTransaction(
        moves=(),
        state_changes=(),
        origin=TransactionOrigin(OriginType.SYSTEM, "noop"),
        timestamp=view.current_time,
    )


class TickContract(Protocol):
    """
    Per-unit hook polled by the tick engine.

    Receives a LedgerView and the tick timestamp and returns a
    PendingTransaction (empty when there is nothing to do).
    """

    def __call__(self, view: LedgerView, symbol: str, timestamp: datetime) -> PendingTransaction:
        ...


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Append-only: the ledger never mutates or deletes a Transaction.

    Attributes:
        moves: Value transfers between wallets
        state_changes: Unit state changes
        cost_basis_changes: Holding average price changes
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        exec_id: Unique execution identifier (ledger + sequence)
        ledger_name: Name of the ledger that executed this
        sequence_number: Monotonic sequence within the ledger
        description: Human-readable summary
        asset_kind: What the transaction primarily moved
        wallets: All wallets touched by moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    exec_id: str
    ledger_name: str
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    cost_basis_changes: Tuple[CostBasisChange, ...] = ()
    description: str = ""
    asset_kind: AssetKind = AssetKind.CASH
    wallets: FrozenSet[str] = None

    def __post_init__(self):
        if (not self.moves and not self.state_changes
                and not self.units_to_create and not self.cost_basis_changes):
            raise ValueError("Transaction must change something")
        if self.wallets is None:
            touched = set()
            for m in self.moves:
                touched.add(m.source)
                touched.add(m.dest)
            object.__setattr__(self, 'wallets', frozenset(touched))

    @property
    def cash_moves(self) -> Tuple[Move, ...]:
        return tuple(m for m in self.moves if m.unit_symbol == CASH)

    @property
    def amount(self) -> int:
        """Total cash moved by this transaction."""
        return sum(m.quantity for m in self.cash_moves)

    @property
    def from_wallet(self) -> Optional[str]:
        cash_moves = self.cash_moves
        return cash_moves[0].source if cash_moves else None

    @property
    def to_wallet(self) -> Optional[str]:
        cash_moves = self.cash_moves
        return cash_moves[0].dest if cash_moves else None

    def __repr__(self) -> str:
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   timestamp      : ' + str(self.timestamp))}│",
            f"│{pad('   ledger_name    : ' + self.ledger_name)}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
            f"│{pad('   description    : ' + self.description)}│",
        ]
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│")
        for i, move in enumerate(self.moves):
            move_str = f"   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}"
            lines.append(f"│{pad(move_str)}│")
        if self.state_changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' State Changes (' + str(len(self.state_changes)) + '):')}│")
            for sc in self.state_changes:
                lines.append(f"│{pad('   [' + sc.unit + ']')}│")
                for field_name, (old_val, new_val) in sc.changed_fields().items():
                    lines.append(f"│{pad(f'      {field_name}: {old_val!r} → {new_val!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a mutable state dict to a tuple of (key, value) pairs sorted by key."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a mutable dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit in the ledger: cash, a stock, a coin, a product or a loan.

    Attributes:
        symbol: Unique identifier (ticker for stocks and coins)
        name: Human-readable name
        unit_type: One of the UNIT_TYPE_* constants
        min_balance: Minimum balance in any non-system wallet (0: no overdraft, no shorting)
        max_balance: Maximum balance in any non-system wallet
        _frozen_state: Internal frozen state representation
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: int = 0
    max_balance: int = MAX_SAFE_INTEGER
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """The unit's state as a new mutable dictionary."""
        return _thaw_state(self._frozen_state)


# ============================================================================
# RESULT
# ============================================================================

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Outcome of a public API call.

    Callers branch on ``ok`` and ``error_kind`` instead of matching messages.
    """
    ok: bool
    value: Optional[T] = None
    error_kind: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def success(cls, value: T = None) -> 'Result[T]':
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: LedgerError) -> 'Result[T]':
        return cls(ok=False, error_kind=error.kind, message=str(error))

    def unwrap(self) -> T:
        """Return the value or re-raise the failure as its LedgerError kind."""
        if self.ok:
            return self.value
        raise ERROR_TYPES[self.error_kind](self.message)


ERROR_TYPES: Dict[ErrorKind, type] = {
    ErrorKind.INVALID_AMOUNT: InvalidAmount,
    ErrorKind.INSUFFICIENT_BALANCE: InsufficientBalance,
    ErrorKind.INSUFFICIENT_HOLDINGS: InsufficientHoldings,
    ErrorKind.HOLDING_LIMIT_EXCEEDED: HoldingLimitExceeded,
    ErrorKind.LOAN_TOO_LARGE: LoanTooLarge,
    ErrorKind.DUPLICATE_TICKER: DuplicateTicker,
    ErrorKind.ASSET_NOT_FOUND: AssetNotFound,
    ErrorKind.ACCOUNT_NOT_FOUND: AccountNotFound,
    ErrorKind.OVERFLOW_DETECTED: OverflowDetected,
    ErrorKind.PERMISSION_DENIED: PermissionDenied,
    ErrorKind.INVALID_STATE: InvalidState,
    ErrorKind.INVALID_INPUT: InvalidInput,
    ErrorKind.STALE_STATE: StaleState,
}


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def cash(symbol: str = CASH, name: str = "Game Dollar") -> Unit:
    """
    Create the cash unit.

    Balances are integer cents; non-system wallets may not overdraw.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_CASH,
        min_balance=0,
    )
