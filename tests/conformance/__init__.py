"""
Conformance Test Suite

Invariants every economy run must keep, whatever the seed or the order of
player actions:
1. test_conservation.py - Every unit sums to zero across wallets through
   trades, bot sales, admin overrides and ticks
2. test_atomicity.py - Cash moves, trades, unit creation and bot purchases
   apply fully or leave the ledger untouched
3. test_determinism.py - The same seed and inputs replay to the same prices,
   candles and balances
4. test_non_negativity.py - Players and companies never go below zero or above
   an asset's holding cap, and prices never drop under one cent

Property-based cases use hypothesis; each module also has worked examples.
"""
