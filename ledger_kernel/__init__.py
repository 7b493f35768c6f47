"""
Ledger Kernel

A double-entry accounting ledger core with:
- Chart of accounts with a closed type/subtype classification
- Validated, balanced journal entries (exact two-place decimals)
- Draft -> posted -> voided lifecycle with compensating reversals
- Row-locked, atomic balance application and an append-only movement log
- Balance projections (trial balance, P&L, balance sheet, cash flow)
"""

__version__ = "0.1.0"
