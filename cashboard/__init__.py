"""
Cashboard - Source Package

A personal-finance dashboard backend: accounts, goals, transactions and
automatic rules that move money when income arrives.

DESIGN PRINCIPLES:
1. Balances are the source of truth, never recomputed from history
2. A fund movement is all-or-nothing
3. A failed rollback is always surfaced
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Cashboard Team"
