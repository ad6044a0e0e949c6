"""
Transaction endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from .deps import BankingSystem, get_banking_system, get_owner_id, http_error, outcome_error
from .schemas import (
    HistoryResponse, ReconciliationResponse, SummaryResponse,
    TransactionRequest, TransactionResponse, TransactionResultResponse
)
from ..currency import format_currency
from ..errors import BankingError
from ..transactions import TransactionKind


router = APIRouter()


def _apply(system: BankingSystem, owner_id: str, kind: TransactionKind,
           request: TransactionRequest) -> TransactionResultResponse:
    outcome = system.mutation_service.apply_transaction(
        owner_id, kind, request.amount, request.memo
    )
    if not outcome.is_success:
        raise outcome_error(outcome)

    amount = format_currency(outcome.record.amount, system.config.currency_symbol)
    return TransactionResultResponse(
        status=outcome.status.value,
        new_balance=str(outcome.new_balance),
        transaction=TransactionResponse.from_record(outcome.record),
        message=f"{kind.label} of {amount} completed successfully"
    )


@router.post("/deposit", response_model=TransactionResultResponse)
async def deposit(
    request: TransactionRequest,
    owner_id: str = Depends(get_owner_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Make a deposit"""
    return _apply(system, owner_id, TransactionKind.DEPOSIT, request)


@router.post("/withdraw", response_model=TransactionResultResponse)
async def withdraw(
    request: TransactionRequest,
    owner_id: str = Depends(get_owner_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Make a withdrawal"""
    return _apply(system, owner_id, TransactionKind.WITHDRAW, request)


@router.get("", response_model=HistoryResponse)
async def get_history(
    limit: Optional[int] = Query(None, ge=1, description="Maximum records; all when omitted"),
    owner_id: str = Depends(get_owner_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Transaction history, newest first"""
    try:
        records = system.mutation_service.get_history(owner_id, limit=limit)
    except BankingError as e:
        raise http_error(e)
    return HistoryResponse(
        owner_id=owner_id,
        count=len(records),
        transactions=[TransactionResponse.from_record(r) for r in records]
    )


@router.get("/recent", response_model=HistoryResponse)
async def get_recent(
    owner_id: str = Depends(get_owner_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """The last few transactions, as shown on the dashboard"""
    try:
        records = system.mutation_service.get_history(
            owner_id, limit=system.config.default_history_limit
        )
    except BankingError as e:
        raise http_error(e)
    return HistoryResponse(
        owner_id=owner_id,
        count=len(records),
        transactions=[TransactionResponse.from_record(r) for r in records]
    )


@router.get("/summary", response_model=SummaryResponse)
async def get_summary(
    owner_id: str = Depends(get_owner_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Deposit and withdrawal statistics"""
    try:
        summary = system.reporting_engine.get_summary(owner_id)
    except BankingError as e:
        raise http_error(e)
    return SummaryResponse(**summary.to_dict())


@router.get("/reconcile", response_model=ReconciliationResponse)
async def reconcile(
    owner_id: str = Depends(get_owner_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Replay the transaction log against the stored balance"""
    try:
        report = system.reporting_engine.reconcile(owner_id)
    except BankingError as e:
        raise http_error(e)
    return ReconciliationResponse(**report.to_dict())
