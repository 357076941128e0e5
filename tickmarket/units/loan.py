"""
loan.py - Player loans with per-tick interest accrual

A loan is minted cash: issuing one credits the player from the system wallet,
repaying burns the payment back into it. The loan record itself lives in the
unit state; no wallet ever holds a balance of a loan unit.

State:
    player_wallet: str         - Borrower
    principal: int             - Amount issued, in cents
    remaining_balance: int     - Outstanding amount including accrued interest
    interest_rate: float       - Percent per day
    accrued_interest: int      - Total interest added so far
    status: str                - active | paid | defaulted
    created_at: datetime
    last_interest_applied: datetime

Interest per tick:
    floor(remaining_balance * interest_rate / 100 / ticks_per_day)

"defaulted" is reserved: no operation moves a loan into it.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType, AssetKind,
    build_transaction, empty_pending_transaction,
    CASH, SYSTEM_WALLET, UNIT_TYPE_LOAN,
    InsufficientBalance, InvalidAmount, InvalidState, LoanTooLarge,
    _freeze_state, check_positive_amount, checked_add, checked_sub, floor_to_minor, to_decimal,
)


LOAN_STATUS_ACTIVE = "active"
LOAN_STATUS_PAID = "paid"
LOAN_STATUS_DEFAULTED = "defaulted"


@dataclass(frozen=True, slots=True)
class LoanState:
    """Typed snapshot of a loan's unit state."""
    symbol: str
    player_wallet: str
    principal: int
    remaining_balance: int
    interest_rate: float
    accrued_interest: int
    status: str
    created_at: datetime
    last_interest_applied: Optional[datetime]

    @property
    def is_active(self) -> bool:
        return self.status == LOAN_STATUS_ACTIVE


def load_loan(view: LedgerView, symbol: str) -> LoanState:
    """Load a loan from ledger state as a typed frozen dataclass."""
    raw = view.get_unit_state(symbol)
    return LoanState(
        symbol=symbol,
        player_wallet=raw['player_wallet'],
        principal=raw['principal'],
        remaining_balance=raw['remaining_balance'],
        interest_rate=raw['interest_rate'],
        accrued_interest=raw.get('accrued_interest', 0),
        status=raw['status'],
        created_at=raw['created_at'],
        last_interest_applied=raw.get('last_interest_applied'),
    )


# ============================================================================
# PURE CALCULATIONS
# ============================================================================

def calculate_interest(remaining_balance: int, interest_rate: float, ticks_per_day: int) -> int:
    """
    Interest added by one accrual: floor(balance * rate / 100 / ticks_per_day).

    >>> calculate_interest(100_000, 5, 72)
    69
    """
    if remaining_balance <= 0 or ticks_per_day <= 0:
        return 0
    rate = to_decimal(interest_rate) / Decimal(100)
    return floor_to_minor(Decimal(remaining_balance) * rate / Decimal(ticks_per_day))


def accrual_interval(ticks_per_day: int) -> timedelta:
    return timedelta(days=1) / ticks_per_day


def is_accrual_due(state: Dict[str, Any], now: datetime, ticks_per_day: int) -> bool:
    """True when the last accrual is at least one accrual interval old."""
    if state.get('status') != LOAN_STATUS_ACTIVE or state.get('remaining_balance', 0) <= 0:
        return False
    last = state.get('last_interest_applied') or state.get('created_at')
    if last is None:
        return True
    return now - last >= accrual_interval(ticks_per_day)


# ============================================================================
# LOAN CREATION
# ============================================================================

def create_loan_unit(
    symbol: str,
    player_wallet: str,
    amount: int,
    interest_rate: float,
    created_at: datetime,
) -> Unit:
    """
    Create the unit describing a new loan.

    Raises:
        InvalidAmount: If amount is not a positive safe integer or interest_rate is negative
    """
    check_positive_amount(amount, "loan amount")
    if interest_rate < 0:
        raise InvalidAmount(f"interest_rate cannot be negative, got {interest_rate}")
    return Unit(
        symbol=symbol,
        name=f"Loan {symbol} to {player_wallet}",
        unit_type=UNIT_TYPE_LOAN,
        min_balance=0,
        max_balance=0,
        _frozen_state=_freeze_state({
            'player_wallet': player_wallet,
            'principal': amount,
            'remaining_balance': amount,
            'interest_rate': float(interest_rate),
            'accrued_interest': 0,
            'status': LOAN_STATUS_ACTIVE,
            'created_at': created_at,
            'last_interest_applied': created_at,
        }),
    )


def loans_for(view: LedgerView, player_wallet: str) -> List[str]:
    """Symbols of every loan taken by a player, oldest first."""
    return [
        symbol for symbol in view.list_units(UNIT_TYPE_LOAN)
        if view.get_unit_state(symbol).get('player_wallet') == player_wallet
    ]


def outstanding_debt(view: LedgerView, player_wallet: str) -> int:
    """Sum of remaining balances over a player's active loans."""
    total = 0
    for symbol in loans_for(view, player_wallet):
        state = view.get_unit_state(symbol)
        if state['status'] == LOAN_STATUS_ACTIVE:
            total = checked_add(total, state['remaining_balance'])
    return total


def compute_create_loan(
    view: LedgerView,
    symbol: str,
    player_wallet: str,
    amount: int,
    interest_rate: float,
    max_loan_amount: int,
) -> PendingTransaction:
    """
    Issue a loan: register the loan unit and mint the principal to the player.

    Raises:
        InvalidAmount: If amount is not a positive safe integer
        LoanTooLarge: If amount, or the player's total active debt after this
            loan, exceeds max_loan_amount
    """
    check_positive_amount(amount, "loan amount")
    if amount > max_loan_amount:
        raise LoanTooLarge(f"Loan of {amount} exceeds the maximum of {max_loan_amount}")
    debt_after = checked_add(outstanding_debt(view, player_wallet), amount)
    if debt_after > max_loan_amount:
        raise LoanTooLarge(
            f"Outstanding debt would reach {debt_after}, above the maximum of {max_loan_amount}"
        )

    unit = create_loan_unit(symbol, player_wallet, amount, interest_rate, view.current_time)
    moves = [Move(amount, CASH, SYSTEM_WALLET, player_wallet, f"loan_{symbol}")]
    return build_transaction(
        view,
        moves,
        origin=TransactionOrigin(OriginType.USER_ACTION, player_wallet, symbol, "LOAN_ISSUED"),
        units_to_create=(unit,),
        description=f"Loan {symbol} issued",
        asset_kind=AssetKind.LOAN,
    )


# ============================================================================
# INTEREST ACCRUAL
# ============================================================================

def compute_interest_accrual(
    view: LedgerView,
    loan_symbol: str,
    ticks_per_day: int,
) -> PendingTransaction:
    """
    Add one tick's worth of interest to the remaining balance.

    Only the loan record changes; the player's cash balance is untouched.
    Returns an empty transaction for paid or defaulted loans.

    Example:
        # 100,000 at 5% per day over 72 ticks -> +69
        pending = compute_interest_accrual(view, "LOAN-000001", 72)
        ledger.execute(pending)
    """
    state = view.get_unit_state(loan_symbol)
    if state['status'] != LOAN_STATUS_ACTIVE:
        return empty_pending_transaction(view)

    interest = calculate_interest(state['remaining_balance'], state['interest_rate'], ticks_per_day)
    new_state = {
        **state,
        'remaining_balance': checked_add(state['remaining_balance'], interest),
        'accrued_interest': checked_add(state.get('accrued_interest', 0), interest),
        'last_interest_applied': view.current_time,
    }
    state_changes = [UnitStateChange(unit=loan_symbol, old_state=state, new_state=new_state)]
    return build_transaction(
        view,
        [],
        state_changes,
        origin=TransactionOrigin(OriginType.TICK, "loan_interest", loan_symbol, "INTEREST"),
        description=f"Interest {interest} on {loan_symbol}",
        asset_kind=AssetKind.LOAN,
    )


# ============================================================================
# REPAYMENT
# ============================================================================

def compute_repayment(
    view: LedgerView,
    loan_symbol: str,
    amount: int,
) -> PendingTransaction:
    """
    Repay part or all of a loan.

    The payment is clamped to the remaining balance and burned. The loan
    becomes paid exactly when the remaining balance reaches zero.

    Raises:
        InvalidAmount: If amount is not a positive safe integer
        InvalidState: If the loan is not active
        InsufficientBalance: If the player cannot cover the requested amount
    """
    check_positive_amount(amount, "repayment amount")
    state = view.get_unit_state(loan_symbol)
    if state['status'] != LOAN_STATUS_ACTIVE:
        raise InvalidState(f"Loan {loan_symbol} is {state['status']}")

    player = state['player_wallet']
    balance = view.get_balance(player, CASH)
    if balance < amount:
        raise InsufficientBalance(f"{player} has {balance} cents, repayment needs {amount}")

    payment = min(amount, state['remaining_balance'])
    remaining = checked_sub(state['remaining_balance'], payment)
    new_state = {
        **state,
        'remaining_balance': remaining,
        'status': LOAN_STATUS_PAID if remaining == 0 else LOAN_STATUS_ACTIVE,
    }
    moves = []
    if payment > 0:
        moves.append(Move(payment, CASH, player, SYSTEM_WALLET, f"repayment_{loan_symbol}"))
    state_changes = [UnitStateChange(unit=loan_symbol, old_state=state, new_state=new_state)]
    return build_transaction(
        view,
        moves,
        state_changes,
        origin=TransactionOrigin(OriginType.USER_ACTION, player, loan_symbol, "REPAYMENT"),
        description=f"Repayment of {payment} on {loan_symbol}",
        asset_kind=AssetKind.LOAN,
    )


# ============================================================================
# TICK CONTRACT
# ============================================================================

def loan_contract(ticks_per_day: int):
    """
    TickContract accruing interest on loans that are due.

    Returns a function(view, symbol, timestamp) -> PendingTransaction.
    """
    def contract(view: LedgerView, symbol: str, timestamp: datetime) -> PendingTransaction:
        state = view.get_unit_state(symbol)
        if not is_accrual_due(state, timestamp, ticks_per_day):
            return empty_pending_transaction(view)
        return compute_interest_accrual(view, symbol, ticks_per_day)
    return contract
