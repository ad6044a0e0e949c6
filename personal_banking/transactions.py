"""
Transaction Log Module

Immutable deposit/withdrawal records in the ``transactions`` table. Each
record carries the balance immediately after it was applied and a per-owner
sequence number that fixes creation order even when timestamps tie.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from enum import Enum

from .currency import to_money, signed_amount
from .storage import StorageInterface, StorageRecord
from .errors import ValidationError


class TransactionKind(Enum):
    """Canonical transaction kinds as stored"""
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"

    @classmethod
    def parse(cls, value: Union['TransactionKind', str]) -> 'TransactionKind':
        """
        Parse a kind, normalising the legacy ``withdrawal`` spelling.

        Raises:
            ValidationError: If the value names no known kind
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized == "withdrawal":
                return cls.WITHDRAW
            try:
                return cls(normalized)
            except ValueError:
                pass
        raise ValidationError(f"Invalid transaction kind '{value}'. Expected deposit or withdraw")

    @property
    def is_credit(self) -> bool:
        return self == TransactionKind.DEPOSIT

    @property
    def label(self) -> str:
        """Human label used in default memos"""
        return "Deposit" if self == TransactionKind.DEPOSIT else "Withdrawal"

    def default_memo(self) -> str:
        return f"{self.label} transaction"


@dataclass
class TransactionRecord(StorageRecord):
    """One applied deposit or withdrawal"""
    owner_id: str
    amount: Decimal
    kind: TransactionKind
    memo: str
    balance_after: Decimal
    sequence: int

    @property
    def signed_amount(self) -> Decimal:
        return signed_amount(self.amount, self.kind.is_credit)

    @property
    def sort_key(self):
        return (self.created_at, self.sequence)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransactionRecord':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            owner_id=data['owner_id'],
            amount=to_money(data['amount']),
            kind=TransactionKind.parse(data['kind']),
            memo=data.get('memo') or "",
            balance_after=to_money(data['balance_after']),
            sequence=int(data.get('sequence', 0)),
        )


class TransactionLogStore:
    """Append-only Transaction Log Store over a storage backend"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "transactions"

    def append_record(self, record: TransactionRecord) -> None:
        """
        Append a record. Records are never updated, so an id collision is
        a programming error.

        Raises:
            ValueError: If a record with the same id exists
            StoreUnavailableError: If the backend fails
        """
        if self.storage.exists(self.table_name, record.id):
            raise ValueError(f"Transaction {record.id} already exists")
        self.storage.save(self.table_name, record.id, record.to_dict())

    def get_record(self, record_id: str) -> Optional[TransactionRecord]:
        data = self.storage.load(self.table_name, record_id)
        if data:
            return TransactionRecord.from_dict(data)
        return None

    def list_records(self, owner_id: str, limit: Optional[int] = None) -> List[TransactionRecord]:
        """
        Records of an owner, newest first.

        Args:
            owner_id: Owner whose history to read
            limit: Maximum number of records; None returns all

        Returns:
            List of TransactionRecord objects
        """
        records = [
            TransactionRecord.from_dict(data)
            for data in self.storage.find(self.table_name, {"owner_id": owner_id})
        ]
        records.sort(key=lambda r: r.sort_key, reverse=True)

        if limit is not None:
            records = records[:limit]

        return records
