"""
Units module - Factory functions and pure transitions for game assets.

This module provides:
- Stock units (IPO, repricing, moderation price override)
- Cryptocurrency units (creation, repricing)
- Product units (catalogue entries, bot purchases)
- Loan units (issuance, interest accrual, repayment)

All unit factories and related functions are re-exported here for convenience.
"""

# Stock units
from .stock import (
    create_stock_unit,
    compute_ipo,
    compute_stock_tick,
    compute_set_price,
    company_stock,
    company_market_cap,
    normalize_ticker,
    shares_available,
    stock_market_cap,
)

# Cryptocurrency units
from .crypto import (
    create_crypto_unit,
    compute_create_cryptocurrency,
    compute_crypto_tick,
    crypto_market_cap,
)

# Product units
from .product import (
    create_product_unit,
    compute_add_product,
    compute_bot_purchase,
    is_purchasable,
)

# Loan units
from .loan import (
    LoanState,
    LOAN_STATUS_ACTIVE,
    LOAN_STATUS_PAID,
    LOAN_STATUS_DEFAULTED,
    create_loan_unit,
    compute_create_loan,
    compute_interest_accrual,
    compute_repayment,
    calculate_interest,
    load_loan,
    loan_contract,
    loans_for,
    outstanding_debt,
)

__all__ = [
    # Stock
    'create_stock_unit',
    'compute_ipo',
    'compute_stock_tick',
    'compute_set_price',
    'company_stock',
    'company_market_cap',
    'normalize_ticker',
    'shares_available',
    'stock_market_cap',
    # Crypto
    'create_crypto_unit',
    'compute_create_cryptocurrency',
    'compute_crypto_tick',
    'crypto_market_cap',
    # Product
    'create_product_unit',
    'compute_add_product',
    'compute_bot_purchase',
    'is_purchasable',
    # Loan
    'LoanState',
    'LOAN_STATUS_ACTIVE',
    'LOAN_STATUS_PAID',
    'LOAN_STATUS_DEFAULTED',
    'create_loan_unit',
    'compute_create_loan',
    'compute_interest_accrual',
    'compute_repayment',
    'calculate_interest',
    'load_loan',
    'loan_contract',
    'loans_for',
    'outstanding_debt',
]
