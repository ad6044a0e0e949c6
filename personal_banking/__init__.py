"""
Personal Banking Core

Balance and transaction-history core for a personal banking front-end:
validated deposits and withdrawals, per-owner serialisation, atomic
balance-plus-log commits and ledger reconciliation. All money is Decimal.
"""

__version__ = "1.0.0"
