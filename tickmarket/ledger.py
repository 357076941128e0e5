"""
ledger.py - Stateful Double-Entry Ledger for the game economy

The Ledger class is the central state manager of the economy.
It is the only module that mutates state, ensuring controlled and auditable changes.

Key responsibilities:
    - Implements LedgerView protocol for safe read-only access by pure functions
    - Executes transactions atomically (all moves succeed or all fail)
    - Maintains wallet balances, holding cost basis and unit definitions
    - Registers player and company accounts
    - Always validates and always logs - no exceptions
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Set, Optional, Tuple, Any
import copy
import threading

from .accounts import Account, AccountKind
from .config.logging import get_logger
from .core import (
    # Types
    Move, Transaction, Unit,
    PendingTransaction, TransactionOrigin, OriginType, AssetKind,
    LedgerView, build_transaction,
    Positions, UnitState, BalanceMap,
    # Constants
    CASH, SYSTEM_WALLET, UNIT_TYPE_CASH,
    # Exceptions
    AccountNotFound, AssetNotFound, DuplicateTicker, InsufficientBalance,
    InsufficientHoldings, HoldingLimitExceeded, InvalidAmount, InvalidState,
    OverflowDetected, StaleState,
    # Helper functions
    _freeze_state, check_positive_amount, check_safe_int, checked_add, checked_sub,
    is_safe_int, cash, utcnow,
)


logger = get_logger(__name__)


class Ledger:
    """
    Double-entry ledger with full validation and audit trail.

    Implements the LedgerView protocol, allowing the ledger to be passed to pure
    functions that access only read-only methods.

    Design Principles:
        - Always validates: Every transaction is validated against balance constraints,
          safe-integer bounds, unit state versions and timestamps before anything
          is mutated.
        - Always logs: Every transaction is recorded in the append-only audit trail.

    Thread Safety:
        execute() and the registration methods run under a re-entrant ledger
        lock, so a single Ledger can be shared by the tick engine and
        concurrent player requests.

    Example:
        ledger = Ledger("main")
        ledger.register_account(new_player("p1", "Alice"))
        ledger.register_account(new_player("p2", "Bob"))
        ledger.mint("player:p1", 10_000, "starting balance")
        ledger.transfer("player:p1", "player:p2", 2_500, "gift")
    """

    def __init__(self, name: str, initial_time: Optional[datetime] = None):
        """
        Create a ledger with the cash unit and the system wallet registered.

        Args:
            name: Ledger identifier
            initial_time: Starting time for the ledger (default: now, naive UTC)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, int]] = {}
        self.units: Dict[str, Unit] = {}
        self.accounts: Dict[str, Account] = {}
        self.registered_wallets: Set[str] = set()
        # (wallet, unit) -> average purchase price in cents
        self.cost_basis: Dict[Tuple[str, str], int] = {}
        self.transaction_log: List[Transaction] = []
        self._current_time: datetime = initial_time or utcnow()
        # Monotonic sequence counter for execution ordering
        self._next_sequence: int = 0
        # Inverted index mapping unit -> {wallet -> quantity} for O(1) position lookups
        self._positions_by_unit: Dict[str, Dict[str, int]] = defaultdict(dict)
        self._lock = threading.RLock()

        # Auto-register the system wallet (mint/burn counterparty and market maker)
        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(int)
        self.register_unit(cash())

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def get_balance(self, wallet_id: str, unit_symbol: str = CASH) -> int:
        """
        Get the balance of a specific unit in a wallet.

        Returns:
            Current balance (0 if wallet has no balance for this unit)

        Raises:
            AccountNotFound: If wallet is not registered
            AssetNotFound: If unit is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise AccountNotFound(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise AssetNotFound(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id].get(unit_symbol, 0)

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """
        Get a deep copy of a unit's internal state.

        Raises:
            AssetNotFound: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise AssetNotFound(f"Unit {unit_symbol} not registered")
        unit_obj = self.units[unit_symbol]
        return copy.deepcopy(unit_obj.state) if unit_obj.state else {}

    def get_positions(self, unit_symbol: str) -> Positions:
        """
        Get all non-zero positions for a specific unit across all wallets.

        Uses an inverted index for O(1) lookup performance.
        """
        return dict(self._positions_by_unit.get(unit_symbol, {}))

    def get_cost_basis(self, wallet_id: str, unit_symbol: str) -> Optional[int]:
        """Average purchase price of a holding, or None if there is no holding."""
        return self.cost_basis.get((wallet_id, unit_symbol))

    def list_wallets(self) -> Set[str]:
        """List all registered wallet IDs."""
        return self.registered_wallets.copy()

    def list_units(self, unit_type: Optional[str] = None) -> List[str]:
        """List registered unit symbols, optionally filtered by unit type."""
        return sorted(
            symbol for symbol, unit in self.units.items()
            if unit_type is None or unit.unit_type == unit_type
        )

    def get_unit(self, symbol: str) -> Unit:
        """Return the Unit object for a given symbol."""
        if symbol not in self.units:
            raise AssetNotFound(f"Unit {symbol} not registered")
        return self.units[symbol]

    def has_unit(self, symbol: str) -> bool:
        return symbol in self.units

    def get_wallet_balances(self, wallet_id: str) -> BalanceMap:
        """Get all non-zero balances for a wallet."""
        if wallet_id not in self.registered_wallets:
            raise AccountNotFound(f"Wallet {wallet_id} not registered")
        return {u: q for u, q in self.balances[wallet_id].items() if q != 0}

    def get_account(self, wallet_id: str) -> Account:
        """
        Return the account registered under a wallet id.

        Raises:
            AccountNotFound: If no account owns that wallet
        """
        account = self.accounts.get(wallet_id)
        if account is None:
            raise AccountNotFound(f"Account {wallet_id} not registered")
        return account

    def list_accounts(self, kind: Optional[AccountKind] = None) -> List[Account]:
        """Registered accounts in wallet-id order, optionally filtered by kind."""
        return [
            self.accounts[w] for w in sorted(self.accounts)
            if kind is None or self.accounts[w].kind == kind
        ]

    def transactions_for(self, wallet_id: str, limit: Optional[int] = None) -> List[Transaction]:
        """Transactions touching a wallet, newest first."""
        matches = [tx for tx in reversed(self.transaction_log) if wallet_id in tx.wallets]
        return matches[:limit] if limit is not None else matches

    def total_supply(self, unit_symbol: str) -> int:
        """
        Sum of a unit's balances across all wallets (system wallet included).

        Under double entry this is always zero.
        """
        if unit_symbol not in self.units:
            raise AssetNotFound(f"Unit {unit_symbol} not registered")
        return sum(self.balances[w].get(unit_symbol, 0) for w in sorted(self.registered_wallets))

    def circulating_supply(self, unit_symbol: str) -> int:
        """Quantity of a unit held outside the system wallet."""
        return sum(q for w, q in self.get_positions(unit_symbol).items() if w != SYSTEM_WALLET)

    def verify_double_entry(self) -> Dict[str, Any]:
        """
        Verify that conservation laws hold for all units.

        Every move debits one wallet and credits another, so for every unit the
        sum of all balances across all wallets (system included) must be zero.
        Also checks that no non-system wallet holds a negative balance.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all conservation laws hold
            - 'supplies': Dict[str, int] - Sum of balances per unit
            - 'discrepancies': List[Dict] - Details of any violations

        Example:
            result = ledger.verify_double_entry()
            assert result['valid'], f"Conservation violated: {result['discrepancies']}"
        """
        supplies = {}
        discrepancies = []

        with self._lock:
            for unit_symbol in sorted(self.units):
                total = self.total_supply(unit_symbol)
                supplies[unit_symbol] = total
                if total != 0:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'expected': 0,
                        'actual': total,
                        'difference': total,
                    })
                for wallet, quantity in self.get_positions(unit_symbol).items():
                    if wallet != SYSTEM_WALLET and quantity < 0:
                        discrepancies.append({
                            'unit': unit_symbol,
                            'wallet': wallet,
                            'actual': quantity,
                            'error': 'negative balance',
                        })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock to a new time.

        Time can only move forward, never backward.

        Raises:
            InvalidState: If new_time is before the current time
        """
        with self._lock:
            if new_time < self._current_time:
                raise InvalidState(
                    f"Cannot move time backwards: {new_time} < {self._current_time}"
                )
            self._current_time = new_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet in the ledger.

        Raises:
            ValueError: If wallet is already registered
        """
        with self._lock:
            if wallet_id in self.registered_wallets:
                raise ValueError(f"Wallet {wallet_id} already registered")
            self.registered_wallets.add(wallet_id)
            self.balances[wallet_id] = defaultdict(int)
            return wallet_id

    def register_account(self, account: Account) -> str:
        """
        Register a player or company and its wallet.

        Returns:
            The account's wallet id
        """
        with self._lock:
            self.register_wallet(account.wallet)
            self.accounts[account.wallet] = account
            logger.info("account_registered", account=account.wallet, name=account.name)
            return account.wallet

    def replace_account(self, account: Account) -> None:
        """Replace the record of an already registered account (role, reputation)."""
        with self._lock:
            if account.wallet not in self.accounts:
                raise AccountNotFound(f"Account {account.wallet} not registered")
            self.accounts[account.wallet] = account

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new unit (asset type) in the ledger.

        Raises:
            DuplicateTicker: If unit symbol is already registered
        """
        with self._lock:
            if unit.symbol in self.units:
                raise DuplicateTicker(f"Unit {unit.symbol} already registered")
            self.units[unit.symbol] = unit
            logger.debug("unit_registered", symbol=unit.symbol, unit_type=unit.unit_type)

    def remove_unit(self, unit_symbol: str) -> Dict[str, int]:
        """
        Delete a unit together with every balance and cost basis held in it.

        Used by moderation to delist an asset. Cash cannot be removed.

        Returns:
            The positions that were dropped (wallet -> quantity)
        """
        with self._lock:
            unit = self.get_unit(unit_symbol)
            if unit.unit_type == UNIT_TYPE_CASH:
                raise InvalidState("The cash unit cannot be removed")
            dropped = self.get_positions(unit_symbol)
            for wallet in dropped:
                self.balances[wallet].pop(unit_symbol, None)
            for key in [k for k in self.cost_basis if k[1] == unit_symbol]:
                del self.cost_basis[key]
            self._positions_by_unit.pop(unit_symbol, None)
            del self.units[unit_symbol]
            logger.info("unit_removed", symbol=unit_symbol, positions=len(dropped))
            return dropped

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{ledger_name}:{sequence:012d}
        """
        return f"exec:{self.name}:{sequence:012d}"

    def execute(self, pending: PendingTransaction) -> Optional[Transaction]:
        """
        Execute a PendingTransaction atomically.

        All moves, unit state changes, cost basis changes and unit creations
        succeed together or fail together. Validation runs to completion before
        anything is mutated, so a rejected transaction leaves no trace.

        Returns:
            The recorded Transaction, or None for an empty pending transaction

        Raises:
            LedgerError subclass describing why the transaction was rejected
        """
        if pending.is_empty():
            return None

        with self._lock:
            try:
                self._validate_pending(pending)
            except Exception as exc:
                logger.info(
                    "transaction_rejected",
                    origin=repr(pending.origin),
                    reason=str(exc),
                    error_type=type(exc).__name__,
                )
                raise

            sequence = self._next_sequence
            self._next_sequence += 1

            tx = Transaction(
                moves=pending.moves,
                state_changes=pending.state_changes,
                origin=pending.origin,
                timestamp=pending.timestamp,
                exec_id=self._generate_exec_id(sequence),
                ledger_name=self.name,
                sequence_number=sequence,
                units_to_create=pending.units_to_create,
                cost_basis_changes=pending.cost_basis_changes,
                description=pending.description,
                asset_kind=pending.asset_kind,
            )

            for unit in tx.units_to_create:
                self.units[unit.symbol] = unit

            self._execute_moves(tx.moves)

            # Since Unit is frozen, state changes replace the Unit instance
            for sc in tx.state_changes:
                old_unit = self.units[sc.unit]
                new_state = copy.deepcopy(sc.new_state if isinstance(sc.new_state, dict) else {})
                self.units[sc.unit] = replace(old_unit, _frozen_state=_freeze_state(new_state))

            for cbc in tx.cost_basis_changes:
                key = (cbc.wallet, cbc.unit)
                if cbc.new_price is None:
                    self.cost_basis.pop(key, None)
                else:
                    self.cost_basis[key] = cbc.new_price

            # A closed holding never keeps a stale cost basis
            for move in tx.moves:
                if self.balances[move.source].get(move.unit_symbol, 0) == 0:
                    self.cost_basis.pop((move.source, move.unit_symbol), None)

            self.transaction_log.append(tx)
            logger.debug(
                "transaction_applied",
                exec_id=tx.exec_id,
                origin=repr(tx.origin),
                moves=len(tx.moves),
                description=tx.description,
            )
            return tx

    def _validate_pending(self, pending: PendingTransaction) -> None:
        """
        Validate pending transaction against all constraints.

        Checks performed:
        1. Timestamp validation (transaction must not be from the future)
        2. New units do not collide with registered symbols
        3. Unit and wallet registration
        4. Balance constraints with overflow detection (system wallet exempt
           from the min/max limits, never from overflow)
        5. Unit state versions (optimistic concurrency) and state value bounds
        6. Cost basis values

        Raises:
            LedgerError subclass describing the first violation found
        """
        if pending.timestamp > self._current_time:
            raise InvalidState(
                f"Transaction timestamp {pending.timestamp} is after ledger time {self._current_time}"
            )

        created: Dict[str, Unit] = {}
        for unit in pending.units_to_create:
            if unit.symbol in self.units or unit.symbol in created:
                raise DuplicateTicker(f"Ticker {unit.symbol} already exists")
            _check_state_values(unit.symbol, unit.state)
            created[unit.symbol] = unit

        def lookup(symbol: str) -> Unit:
            unit = self.units.get(symbol) or created.get(symbol)
            if unit is None:
                raise AssetNotFound(f"Unit {symbol} not registered")
            return unit

        for move in pending.moves:
            lookup(move.unit_symbol)
            if not self.is_registered(move.source):
                raise AccountNotFound(f"Wallet {move.source} not registered")
            if not self.is_registered(move.dest):
                raise AccountNotFound(f"Wallet {move.dest} not registered")

        # Net balance changes per (wallet, unit)
        net: Dict[Tuple[str, str], int] = {}
        for move in pending.moves:
            key_src = (move.source, move.unit_symbol)
            key_dst = (move.dest, move.unit_symbol)
            net[key_src] = checked_sub(net.get(key_src, 0), move.quantity)
            net[key_dst] = checked_add(net.get(key_dst, 0), move.quantity)

        for (wallet, unit_sym), delta in sorted(net.items()):
            current = self.balances[wallet].get(unit_sym, 0)
            proposed = checked_add(current, delta)

            # SYSTEM_WALLET is exempt from balance limits - it can hold any balance
            if wallet == SYSTEM_WALLET:
                continue

            unit = lookup(unit_sym)
            if proposed < unit.min_balance:
                if unit.unit_type == UNIT_TYPE_CASH:
                    raise InsufficientBalance(
                        f"{wallet} has {current} cents, needs {-delta}"
                    )
                raise InsufficientHoldings(
                    f"{wallet} holds {current} {unit_sym}, needs {-delta}"
                )
            if proposed > unit.max_balance:
                raise HoldingLimitExceeded(
                    f"{wallet} {unit_sym}: {proposed} > max {unit.max_balance}"
                )

        seen_units: Set[str] = set()
        for sc in pending.state_changes:
            if sc.unit in seen_units:
                raise InvalidState(f"Multiple state changes for {sc.unit} in one transaction")
            seen_units.add(sc.unit)
            if sc.unit in created:
                current_state = created[sc.unit].state
            elif sc.unit in self.units:
                current_state = self.units[sc.unit].state
            else:
                raise AssetNotFound(f"Unit {sc.unit} not registered")
            if sc.old_state is not None and sc.old_state != current_state:
                raise StaleState(f"State of {sc.unit} changed since the transaction was built")
            _check_state_values(sc.unit, sc.new_state)

        for cbc in pending.cost_basis_changes:
            if cbc.new_price is not None:
                check_safe_int(cbc.new_price, "average purchase price")
                if cbc.new_price < 0:
                    raise InvalidAmount(f"Negative cost basis for {cbc.wallet} {cbc.unit}")

    def _update_position_index(self, wallet_id: str, unit_symbol: str, quantity: int) -> None:
        """
        Update the inverted position index after a balance change.

        Zero balances are removed from the index to keep it compact.
        """
        if quantity != 0:
            self._positions_by_unit[unit_symbol][wallet_id] = quantity
        else:
            self._positions_by_unit[unit_symbol].pop(wallet_id, None)

    def _execute_moves(self, moves) -> None:
        """
        Apply all moves to wallet balances and update the position index.

        For each move:
        1. Subtract quantity from source wallet
        2. Add quantity to destination wallet
        3. Update position index for both wallets (zero entries dropped)
        """
        for move in moves:
            new_src_balance = self.balances[move.source][move.unit_symbol] - move.quantity
            self._store_balance(move.source, move.unit_symbol, new_src_balance)
            new_dst_balance = self.balances[move.dest][move.unit_symbol] + move.quantity
            self._store_balance(move.dest, move.unit_symbol, new_dst_balance)

    def _store_balance(self, wallet_id: str, unit_symbol: str, quantity: int) -> None:
        if quantity == 0:
            self.balances[wallet_id].pop(unit_symbol, None)
        else:
            self.balances[wallet_id][unit_symbol] = quantity
        self._update_position_index(wallet_id, unit_symbol, quantity)

    # ========================================================================
    # CASH OPERATIONS
    # ========================================================================

    def _cash_transaction(
        self,
        source: str,
        dest: str,
        amount: int,
        description: str,
        origin: TransactionOrigin,
        contract_id: str,
    ) -> Transaction:
        check_positive_amount(amount)
        if source == dest:
            raise InvalidAmount(f"Cannot move cash from {source} to itself")
        pending = build_transaction(
            self,
            [Move(amount, CASH, source, dest, contract_id)],
            origin=origin,
            description=description,
            asset_kind=AssetKind.CASH,
        )
        return self.execute(pending)

    def transfer(self, source: str, dest: str, amount: int, description: str = "") -> Transaction:
        """
        Move cash between two accounts.

        Raises:
            InvalidAmount: If amount is not a positive safe integer, or source is dest
            InsufficientBalance: If the source cannot cover the amount
        """
        return self._cash_transaction(
            source, dest, amount, description or "Transfer",
            TransactionOrigin(OriginType.USER_ACTION, source, CASH, "TRANSFER"),
            "transfer",
        )

    def mint(self, dest: str, amount: int, description: str = "") -> Transaction:
        """Create cash in an account (the system wallet is the counterparty)."""
        return self._cash_transaction(
            SYSTEM_WALLET, dest, amount, description or "Mint",
            TransactionOrigin(OriginType.SYSTEM, SYSTEM_WALLET, CASH, "MINT"),
            "mint",
        )

    def burn(self, source: str, amount: int, description: str = "") -> Transaction:
        """Destroy cash from an account; the account must cover the amount."""
        return self._cash_transaction(
            source, SYSTEM_WALLET, amount, description or "Burn",
            TransactionOrigin(OriginType.SYSTEM, source, CASH, "BURN"),
            "burn",
        )

    def set_balance(
        self,
        wallet_id: str,
        amount: int,
        unit_symbol: str = CASH,
        actor_id: str = SYSTEM_WALLET,
        description: str = "",
    ) -> Optional[Transaction]:
        """
        Force a wallet's balance to an exact value.

        The difference is booked against the system wallet so double entry
        still holds. Only safe-integer and non-negativity checks apply.

        Returns:
            The adjustment Transaction, or None if the balance was already equal
        """
        check_safe_int(amount, "balance")
        if amount < 0:
            raise InvalidAmount(f"Balance cannot be negative: {amount}")
        with self._lock:
            current = self.get_balance(wallet_id, unit_symbol)
            delta = checked_sub(amount, current)
            if delta == 0:
                return None
            if delta > 0:
                move = Move(delta, unit_symbol, SYSTEM_WALLET, wallet_id, "admin_adjustment")
            else:
                move = Move(-delta, unit_symbol, wallet_id, SYSTEM_WALLET, "admin_adjustment")
            pending = build_transaction(
                self,
                [move],
                origin=TransactionOrigin(OriginType.ADMIN, actor_id, unit_symbol, "SET_BALANCE"),
                description=description or f"Balance set to {amount}",
            )
            return self.execute(pending)

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Create a deep copy of this ledger.

        All state is fully independent: modifications to the clone will not
        affect the original ledger, and vice versa.

        Returns:
            A new Ledger instance with identical state
        """
        with self._lock:
            cloned = Ledger.__new__(Ledger)
            cloned.name = self.name
            cloned._current_time = self._current_time
            cloned._lock = threading.RLock()
            cloned.units = dict(self.units)
            cloned.accounts = dict(self.accounts)
            cloned.registered_wallets = self.registered_wallets.copy()
            cloned.cost_basis = dict(self.cost_basis)
            cloned.transaction_log = list(self.transaction_log)
            cloned._next_sequence = self._next_sequence

            cloned.balances = {}
            for wallet, bals in self.balances.items():
                cloned.balances[wallet] = defaultdict(int, bals)

            cloned._positions_by_unit = defaultdict(dict)
            for unit_symbol, positions in self._positions_by_unit.items():
                cloned._positions_by_unit[unit_symbol] = dict(positions)

            return cloned


def _check_state_values(unit_symbol: str, state: Any) -> None:
    """Integer fields of a unit state must be non-negative safe integers."""
    if not isinstance(state, dict):
        return
    for key, value in state.items():
        if isinstance(value, bool) or not isinstance(value, int):
            continue
        if not is_safe_int(value):
            raise OverflowDetected(f"{unit_symbol}.{key}={value} exceeds the safe integer range")
        if value < 0:
            raise InvalidAmount(f"{unit_symbol}.{key} cannot be negative: {value}")


__all__ = ["Ledger", "LedgerView"]
