"""
Request dependencies and error mapping
"""

from typing import Optional

from fastapi import HTTPException, Request

from ..config import get_config
from ..errors import BankingError, ErrorKind
from ..service import TransactionOutcome
from ..system import BankingSystem


ERROR_STATUS = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.INSUFFICIENT_FUNDS: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.UNAVAILABLE: 503,
    ErrorKind.RECONCILIATION: 500,
}


_banking_system: Optional[BankingSystem] = None


def get_banking_system() -> BankingSystem:
    """Lazily built process-wide banking system"""
    global _banking_system
    if _banking_system is None:
        _banking_system = BankingSystem()
    return _banking_system


def get_owner_id(request: Request) -> str:
    """
    Owner identity for the request. Authentication happens upstream; the
    authenticated principal arrives as an explicit header.
    """
    header = get_config().owner_header
    owner_id = request.headers.get(header)
    if not owner_id or not owner_id.strip():
        raise HTTPException(status_code=401, detail=f"Missing {header} header")
    return owner_id.strip()


def http_error(error: BankingError) -> HTTPException:
    return HTTPException(
        status_code=ERROR_STATUS.get(error.kind, 500),
        detail={"error_kind": error.kind.value, "message": error.message}
    )


def outcome_error(outcome: TransactionOutcome) -> HTTPException:
    return HTTPException(
        status_code=ERROR_STATUS.get(outcome.error_kind, 500),
        detail=outcome.to_dict()
    )
