"""
Reporting Module

History statistics and ledger reconciliation. Reconciliation replays an
owner's transaction log in creation order and checks it against the stored
balance; it reports divergence and never corrects it.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .accounts import AccountStore, validate_owner_id
from .transactions import TransactionKind, TransactionLogStore
from .currency import ZERO
from .events import EventDispatcher, EventPayload, DomainEvent
from .logging_config import get_logger, log_action


@dataclass
class HistorySummary:
    """Counts and totals over an owner's full history"""
    owner_id: str
    total_transactions: int = 0
    deposit_count: int = 0
    withdrawal_count: int = 0
    total_deposited: Decimal = ZERO
    total_withdrawn: Decimal = ZERO

    @property
    def net_flow(self) -> Decimal:
        return self.total_deposited - self.total_withdrawn

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "total_transactions": self.total_transactions,
            "deposit_count": self.deposit_count,
            "withdrawal_count": self.withdrawal_count,
            "total_deposited": str(self.total_deposited),
            "total_withdrawn": str(self.total_withdrawn),
            "net_flow": str(self.net_flow),
        }


@dataclass
class Discrepancy:
    """One broken link in the balance chain"""
    transaction_id: Optional[str]
    sequence: Optional[int]
    expected: Decimal
    actual: Decimal
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "sequence": self.sequence,
            "expected": str(self.expected),
            "actual": str(self.actual),
            "description": self.description,
        }


@dataclass
class ReconciliationReport:
    """Outcome of replaying an owner's log against the stored balance"""
    owner_id: str
    stored_balance: Decimal
    replayed_balance: Decimal
    records_checked: int
    discrepancies: List[Discrepancy] = field(default_factory=list)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_consistent(self) -> bool:
        return not self.discrepancies

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "consistent": self.is_consistent,
            "stored_balance": str(self.stored_balance),
            "replayed_balance": str(self.replayed_balance),
            "records_checked": self.records_checked,
            "discrepancies": [d.to_dict() for d in self.discrepancies],
            "checked_at": self.checked_at.isoformat(),
        }


class ReportingEngine:
    """Read-only summaries and reconciliation over the two stores"""

    def __init__(
        self,
        account_store: AccountStore,
        log_store: TransactionLogStore,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.account_store = account_store
        self.log_store = log_store
        self._event_dispatcher = event_dispatcher
        self.logger = get_logger("personal_banking.reporting")

    def get_summary(self, owner_id: str) -> HistorySummary:
        """
        Summarise an owner's history.

        Raises:
            ValidationError: If the owner id is invalid
            AccountNotFoundError: If the owner has no account
        """
        self.account_store.read_account(validate_owner_id(owner_id))
        summary = HistorySummary(owner_id=owner_id)
        for record in self.log_store.list_records(owner_id):
            summary.total_transactions += 1
            if record.kind == TransactionKind.DEPOSIT:
                summary.deposit_count += 1
                summary.total_deposited += record.amount
            else:
                summary.withdrawal_count += 1
                summary.total_withdrawn += record.amount
        return summary

    def reconcile(self, owner_id: str) -> ReconciliationReport:
        """
        Replay the log oldest first from a zero balance.

        Checks that each record's balance_after equals the previous one
        plus its signed amount, and that the replayed total equals the
        stored balance.

        Raises:
            ValidationError: If the owner id is invalid
            AccountNotFoundError: If the owner has no account
        """
        account = self.account_store.read_account(validate_owner_id(owner_id))
        records = sorted(self.log_store.list_records(owner_id), key=lambda r: r.sort_key)

        discrepancies: List[Discrepancy] = []
        running = ZERO
        for record in records:
            running += record.signed_amount
            if record.balance_after != running:
                discrepancies.append(Discrepancy(
                    transaction_id=record.id,
                    sequence=record.sequence,
                    expected=running,
                    actual=record.balance_after,
                    description="balance_after does not follow from the previous record"
                ))
                # Resynchronise so one bad record is reported once
                running = record.balance_after

        replayed = sum((r.signed_amount for r in records), ZERO)
        if replayed != account.balance:
            discrepancies.append(Discrepancy(
                transaction_id=None,
                sequence=None,
                expected=replayed,
                actual=account.balance,
                description="stored balance differs from the replayed transaction log"
            ))

        report = ReconciliationReport(
            owner_id=owner_id,
            stored_balance=account.balance,
            replayed_balance=replayed,
            records_checked=len(records),
            discrepancies=discrepancies,
        )

        if report.is_consistent:
            log_action(
                self.logger, "info", "Reconciliation passed",
                owner_id=owner_id, action="reconcile",
                extra={"records_checked": report.records_checked}
            )
        else:
            log_action(
                self.logger, "error", "Reconciliation failed",
                owner_id=owner_id, action="reconcile",
                extra=report.to_dict()
            )
            if self._event_dispatcher:
                self._event_dispatcher.publish(EventPayload(
                    event_type=DomainEvent.RECONCILIATION_FAILED,
                    owner_id=owner_id,
                    entity_id=account.id,
                    data=report.to_dict()
                ))
        return report
