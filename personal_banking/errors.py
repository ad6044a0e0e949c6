"""
Error Taxonomy

Typed exceptions raised by the stores and read projections. The balance
mutation service converts them into explicit outcome values, so callers of
``apply_transaction`` never see them raised.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Classification carried by every banking error"""
    VALIDATION = "validation_error"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAVAILABLE = "unavailable"
    RECONCILIATION = "reconciliation"


class BankingError(Exception):
    """Base class for all personal banking errors"""

    kind: ErrorKind = ErrorKind.UNAVAILABLE

    def __init__(self, message: str, owner_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.owner_id = owner_id


class ValidationError(BankingError):
    """Input rejected before any store access"""
    kind = ErrorKind.VALIDATION


class InsufficientFundsError(BankingError):
    """Withdrawal would drive the balance below zero"""
    kind = ErrorKind.INSUFFICIENT_FUNDS


class StoreError(BankingError):
    """Failure surfaced by the account or transaction log store"""
    kind = ErrorKind.UNAVAILABLE


class AccountNotFoundError(StoreError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, owner_id: str):
        super().__init__(f"Account for owner {owner_id} not found", owner_id=owner_id)


class ConflictError(StoreError):
    """Balance changed between read and conditional write"""
    kind = ErrorKind.CONFLICT


class StoreUnavailableError(StoreError):
    """Transient store failure; the caller may retry"""
    kind = ErrorKind.UNAVAILABLE


class ReconciliationError(BankingError):
    """
    Balance and transaction log have diverged and need out-of-band
    correction. Never retried automatically.
    """
    kind = ErrorKind.RECONCILIATION
