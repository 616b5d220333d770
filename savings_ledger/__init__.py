"""
Savings Ledger - Source Package

The savings-goal ledger of a personal finance tracker: keeps goals,
their savings accounts, their source accounts and the transaction
history consistent, and projects contribution schedules.

DESIGN PRINCIPLES:
1. Money only moves, it is never created or destroyed
2. Validate everything before the first write
3. A failed write is compensated or reported, never ignored
4. Completion is an explicit user action
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Savings Ledger Team"
