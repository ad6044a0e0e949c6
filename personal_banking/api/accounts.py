"""
Account endpoints
"""

from fastapi import APIRouter, HTTPException, Depends

from .deps import BankingSystem, get_banking_system, get_owner_id, http_error
from .schemas import AccountResponse, BalanceResponse, OpenAccountRequest, UpdateProfileRequest
from ..currency import format_currency
from ..errors import BankingError


router = APIRouter()


@router.post("", status_code=201, response_model=AccountResponse)
async def open_account(
    request: OpenAccountRequest,
    owner_id: str = Depends(get_owner_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Open the caller's account"""
    try:
        account = system.account_service.open_account(
            owner_id,
            name=request.name,
            phone=request.phone,
            account_type=request.account_type,
            initial_balance=request.initial_balance
        )
    except BankingError as e:
        raise http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return AccountResponse.from_account(account)


@router.get("/me", response_model=AccountResponse)
async def get_profile(
    owner_id: str = Depends(get_owner_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get the caller's profile and balance"""
    try:
        account = system.account_service.get_profile(owner_id)
    except BankingError as e:
        raise http_error(e)
    return AccountResponse.from_account(account)


@router.patch("/me", response_model=AccountResponse)
async def update_profile(
    request: UpdateProfileRequest,
    owner_id: str = Depends(get_owner_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Update name, phone or account type"""
    try:
        account = system.account_service.update_profile(
            owner_id,
            name=request.name,
            phone=request.phone,
            account_type=request.account_type
        )
    except BankingError as e:
        raise http_error(e)
    return AccountResponse.from_account(account)


@router.get("/me/balance", response_model=BalanceResponse)
async def get_balance(
    owner_id: str = Depends(get_owner_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get the caller's current balance"""
    try:
        balance = system.mutation_service.get_balance(owner_id)
    except BankingError as e:
        raise http_error(e)
    return BalanceResponse(
        owner_id=owner_id,
        balance=str(balance),
        formatted=format_currency(balance, system.config.currency_symbol)
    )
