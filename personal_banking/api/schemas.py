"""
Pydantic schemas for API requests and responses
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from ..accounts import Account
from ..transactions import TransactionRecord


class TransactionRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string, e.g. \"500.00\"")
    memo: Optional[str] = Field(None, description="Optional note; defaulted when empty")


class OpenAccountRequest(BaseModel):
    name: str = "User"
    phone: str = ""
    account_type: str = Field("savings", description="Account type (savings, current)")
    initial_balance: str = Field("0.00", description="Opening balance as decimal string")


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    account_type: Optional[str] = None


class AccountResponse(BaseModel):
    account_id: str
    owner_id: str
    name: str
    phone: str
    account_type: str
    balance: str
    created_at: str
    updated_at: str

    @classmethod
    def from_account(cls, account: Account) -> 'AccountResponse':
        return cls(
            account_id=account.id,
            owner_id=account.owner_id,
            name=account.name,
            phone=account.phone,
            account_type=account.account_type.value,
            balance=str(account.balance),
            created_at=account.created_at.isoformat(),
            updated_at=account.updated_at.isoformat(),
        )


class BalanceResponse(BaseModel):
    owner_id: str
    balance: str
    formatted: str


class TransactionResponse(BaseModel):
    transaction_id: str
    kind: str
    amount: str
    memo: str
    balance_after: str
    sequence: int
    created_at: str

    @classmethod
    def from_record(cls, record: TransactionRecord) -> 'TransactionResponse':
        return cls(
            transaction_id=record.id,
            kind=record.kind.value,
            amount=str(record.amount),
            memo=record.memo,
            balance_after=str(record.balance_after),
            sequence=record.sequence,
            created_at=record.created_at.isoformat(),
        )


class TransactionResultResponse(BaseModel):
    status: str
    new_balance: str
    transaction: TransactionResponse
    message: str


class HistoryResponse(BaseModel):
    owner_id: str
    count: int
    transactions: List[TransactionResponse]


class SummaryResponse(BaseModel):
    owner_id: str
    total_transactions: int
    deposit_count: int
    withdrawal_count: int
    total_deposited: str
    total_withdrawn: str
    net_flow: str


class ReconciliationResponse(BaseModel):
    owner_id: str
    consistent: bool
    stored_balance: str
    replayed_balance: str
    records_checked: int
    discrepancies: List[Dict[str, Any]]
    checked_at: str
