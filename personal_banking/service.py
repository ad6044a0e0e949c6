"""
Balance Mutation Service

The single entry point for changing a balance. A deposit or withdrawal is
validated, checked for sufficient funds against a freshly read balance, and
committed as one unit: the balance write and the log append succeed or fail
together. Mutations of the same owner are serialised in-process by a lock
and across processes by a compare-and-set on the stored balance.

Every failure is reported as a ``TransactionOutcome``; nothing expected is
raised to the caller.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple, Union
from enum import Enum
import uuid

from .accounts import Account, AccountStore, WriteResult, validate_owner_id
from .transactions import TransactionKind, TransactionLogStore, TransactionRecord
from .currency import ZERO, AmountLike, parse_amount, signed_amount, format_currency
from .errors import (
    AccountNotFoundError, BankingError, ConflictError, ErrorKind,
    InsufficientFundsError, ReconciliationError, StoreUnavailableError,
    ValidationError
)
from .events import EventDispatcher, EventPayload, DomainEvent, create_transaction_event
from .locks import OwnerLockRegistry
from .logging_config import get_logger, log_action


class OutcomeStatus(Enum):
    """Top-level result of apply_transaction"""
    SUCCESS = "success"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    VALIDATION_ERROR = "validation_error"
    STORE_ERROR = "store_error"
    RECONCILIATION = "reconciliation"


_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: OutcomeStatus.VALIDATION_ERROR,
    ErrorKind.INSUFFICIENT_FUNDS: OutcomeStatus.INSUFFICIENT_FUNDS,
    ErrorKind.NOT_FOUND: OutcomeStatus.STORE_ERROR,
    ErrorKind.CONFLICT: OutcomeStatus.STORE_ERROR,
    ErrorKind.UNAVAILABLE: OutcomeStatus.STORE_ERROR,
    ErrorKind.RECONCILIATION: OutcomeStatus.RECONCILIATION,
}


@dataclass
class TransactionOutcome:
    """
    Result of a balance mutation.

    ``new_balance`` and ``record`` are set only on success. For store
    errors ``error_kind`` says which one (NOT_FOUND, CONFLICT, UNAVAILABLE).
    """
    status: OutcomeStatus
    owner_id: Optional[str]
    new_balance: Optional[Decimal] = None
    record: Optional[TransactionRecord] = None
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    attempts: int = 0
    error: Optional[BankingError] = field(default=None, repr=False, compare=False)

    @property
    def is_success(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    @property
    def is_retryable(self) -> bool:
        """Transient failures the caller may retry unchanged"""
        return self.error_kind in (ErrorKind.CONFLICT, ErrorKind.UNAVAILABLE)

    @classmethod
    def success(cls, record: TransactionRecord, attempts: int) -> 'TransactionOutcome':
        return cls(
            status=OutcomeStatus.SUCCESS,
            owner_id=record.owner_id,
            new_balance=record.balance_after,
            record=record,
            attempts=attempts,
        )

    @classmethod
    def failure(cls, error: BankingError, owner_id: Optional[str], attempts: int = 0) -> 'TransactionOutcome':
        return cls(
            status=_STATUS_BY_KIND[error.kind],
            owner_id=owner_id,
            error_kind=error.kind,
            message=error.message,
            attempts=attempts,
            error=error,
        )

    def raise_for_error(self) -> None:
        """Raise the underlying error unless the outcome is a success"""
        if self.is_success:
            return
        if self.error is not None:
            raise self.error
        raise BankingError(self.message or self.status.value, owner_id=self.owner_id)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "owner_id": self.owner_id,
            "new_balance": str(self.new_balance) if self.new_balance is not None else None,
            "transaction_id": self.record.id if self.record else None,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "message": self.message,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BalanceMutationService:
    """
    Applies deposits and withdrawals and serves the balance and history
    read projections.
    """

    def __init__(
        self,
        account_store: AccountStore,
        log_store: TransactionLogStore,
        lock_registry: Optional[OwnerLockRegistry] = None,
        event_dispatcher: Optional[EventDispatcher] = None,
        max_conflict_retries: int = 3,
        lock_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
        currency_symbol: str = "₹"
    ):
        self.account_store = account_store
        self.log_store = log_store
        self.locks = lock_registry or OwnerLockRegistry()
        self.max_conflict_retries = max_conflict_retries
        self.lock_timeout = lock_timeout
        self.currency_symbol = currency_symbol
        self._clock = clock
        self._event_dispatcher = event_dispatcher
        self.logger = get_logger("personal_banking.service")

    @property
    def is_atomic(self) -> bool:
        """Balance write and log append commit as one storage transaction"""
        storage = self.account_store.storage
        return storage is self.log_store.storage and storage.supports_transactions

    def _publish_event(self, event: EventPayload) -> None:
        if self._event_dispatcher:
            self._event_dispatcher.publish(event)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def apply_transaction(
        self,
        owner_id: str,
        kind: Union[TransactionKind, str],
        amount: AmountLike,
        memo: Optional[str] = None
    ) -> TransactionOutcome:
        """
        Apply a deposit or withdrawal.

        Args:
            owner_id: Owner of the account
            kind: deposit or withdraw ("withdrawal" is accepted)
            amount: Strictly positive amount with at most two decimals
            memo: Optional note; "<Kind> transaction" when empty

        Returns:
            TransactionOutcome; SUCCESS carries the new balance and record
        """
        try:
            owner_id = validate_owner_id(owner_id)
            kind = TransactionKind.parse(kind)
            amount = parse_amount(amount)
        except ValidationError as e:
            return self._rejected(e, owner_id if isinstance(owner_id, str) else None, kind, amount)

        memo = (memo or "").strip() or kind.default_memo()

        try:
            with self.locks.hold(owner_id, timeout=self.lock_timeout):
                outcome = self._apply_with_retry(owner_id, kind, amount, memo)
        except BankingError as e:
            outcome = TransactionOutcome.failure(e, owner_id)

        self.publish_outcome(outcome, kind, amount)
        return outcome

    def apply_locked(
        self,
        owner_id: str,
        kind: TransactionKind,
        amount: Decimal,
        memo: str
    ) -> TransactionOutcome:
        """
        Apply an already validated mutation for a caller that holds the
        owner's lock, for example inside a wider storage transaction.

        Nothing is published; the caller reports the outcome with
        publish_outcome once its own unit of work has ended.
        """
        return self._apply_with_retry(owner_id, kind, amount, memo)

    def publish_outcome(self, outcome: TransactionOutcome, kind: TransactionKind, amount: Decimal) -> None:
        """Log and publish the result of a mutation"""
        if outcome.is_success:
            self._publish_event(create_transaction_event(DomainEvent.TRANSACTION_APPLIED, outcome.record))
        else:
            self._report_failure(outcome, kind, amount)

    def deposit(self, owner_id: str, amount: AmountLike, memo: Optional[str] = None) -> TransactionOutcome:
        """Convenience method for deposits"""
        return self.apply_transaction(owner_id, TransactionKind.DEPOSIT, amount, memo)

    def withdraw(self, owner_id: str, amount: AmountLike, memo: Optional[str] = None) -> TransactionOutcome:
        """Convenience method for withdrawals"""
        return self.apply_transaction(owner_id, TransactionKind.WITHDRAW, amount, memo)

    def _apply_with_retry(
        self,
        owner_id: str,
        kind: TransactionKind,
        amount: Decimal,
        memo: str
    ) -> TransactionOutcome:
        attempts = 0
        while True:
            attempts += 1
            try:
                record = self._apply_once(owner_id, kind, amount, memo)
            except ConflictError as e:
                if attempts > self.max_conflict_retries:
                    return TransactionOutcome.failure(e, owner_id, attempts)
                log_action(
                    self.logger, "debug", "Balance changed concurrently, retrying",
                    owner_id=owner_id, action="apply_transaction",
                    extra={"attempt": attempts}
                )
                continue
            except BankingError as e:
                return TransactionOutcome.failure(e, owner_id, attempts)
            except OSError as e:
                return TransactionOutcome.failure(
                    StoreUnavailableError(f"Store I/O failure: {e}", owner_id=owner_id),
                    owner_id, attempts
                )

            log_action(
                self.logger, "info", f"Transaction applied: {kind.value}",
                owner_id=owner_id, action="apply_transaction",
                resource=f"transaction:{record.id}",
                extra={
                    "kind": kind.value,
                    "amount": str(amount),
                    "balance_after": str(record.balance_after),
                    "attempts": attempts,
                }
            )
            return TransactionOutcome.success(record, attempts)

    def _apply_once(
        self,
        owner_id: str,
        kind: TransactionKind,
        amount: Decimal,
        memo: str
    ) -> TransactionRecord:
        # Always re-read; callers' balance snapshots may be stale
        account = self.account_store.read_account(owner_id)
        new_balance = account.balance + signed_amount(amount, kind.is_credit)

        if new_balance < ZERO:
            raise InsufficientFundsError(
                f"Insufficient funds: available {format_currency(account.balance, self.currency_symbol)}, "
                f"requested {format_currency(amount, self.currency_symbol)}",
                owner_id=owner_id
            )

        record = self._next_record(account, kind, amount, memo, new_balance)
        prior_position = (account.last_sequence, account.last_transaction_at)
        new_position = (record.sequence, record.created_at)

        if self.is_atomic:
            with self.account_store.storage.atomic():
                self._write_balance(owner_id, new_balance, account.balance, new_position)
                self.log_store.append_record(record)
        else:
            self._write_balance(owner_id, new_balance, account.balance, new_position)
            try:
                self.log_store.append_record(record)
            except BaseException as append_error:
                self._compensate(owner_id, account.balance, new_balance, prior_position, append_error)
                raise

        return record

    def _next_record(
        self,
        account: Account,
        kind: TransactionKind,
        amount: Decimal,
        memo: str,
        new_balance: Decimal
    ) -> TransactionRecord:
        created_at = self._clock()
        last = account.last_transaction_at
        if last is not None and created_at < last:
            # Keep created_at non-decreasing per owner despite clock skew
            created_at = last
        return TransactionRecord(
            id=str(uuid.uuid4()),
            created_at=created_at,
            owner_id=account.owner_id,
            amount=amount,
            kind=kind,
            memo=memo,
            balance_after=new_balance,
            sequence=account.last_sequence + 1,
        )

    def _write_balance(
        self,
        owner_id: str,
        new_balance: Decimal,
        prior: Decimal,
        log_position: Tuple[int, Optional[datetime]]
    ) -> None:
        result = self.account_store.write_balance(
            owner_id, new_balance, expected_prior_balance=prior, log_position=log_position
        )
        if result is WriteResult.CONFLICT:
            raise ConflictError("Balance changed since it was read", owner_id=owner_id)
        if result is WriteResult.NOT_FOUND:
            raise AccountNotFoundError(owner_id)

    def _compensate(
        self,
        owner_id: str,
        prior: Decimal,
        written: Decimal,
        prior_position: Tuple[int, Optional[datetime]],
        cause: BaseException
    ) -> None:
        """
        Undo a balance write whose log append failed, on stores without
        rollback. Raises ReconciliationError if the undo cannot be applied.
        """
        try:
            result = self.account_store.write_balance(
                owner_id, prior, expected_prior_balance=written, log_position=prior_position
            )
        except Exception as e:
            result = None
            self.logger.error(f"Compensating balance write failed for {owner_id}: {e}")

        if result is not WriteResult.OK:
            raise ReconciliationError(
                f"Balance for owner {owner_id} was set to {written} but the transaction "
                f"log append failed ({cause}) and the balance could not be restored to {prior}",
                owner_id=owner_id
            ) from cause

        log_action(
            self.logger, "warning", "Balance write compensated after log append failure",
            owner_id=owner_id, action="compensate",
            extra={"restored_balance": str(prior), "cause": str(cause)}
        )

    def _rejected(self, error: ValidationError, owner_id: Optional[str], kind: Any, amount: Any) -> TransactionOutcome:
        outcome = TransactionOutcome.failure(error, owner_id)
        log_action(
            self.logger, "warning", f"Transaction rejected: {error.message}",
            owner_id=owner_id, action="apply_transaction",
            extra={"kind": str(getattr(kind, "value", kind)), "amount": str(amount)}
        )
        return outcome

    def _report_failure(self, outcome: TransactionOutcome, kind: TransactionKind, amount: Decimal) -> None:
        level = "error" if outcome.status == OutcomeStatus.RECONCILIATION else "warning"
        log_action(
            self.logger, level, f"Transaction not applied: {outcome.message}",
            owner_id=outcome.owner_id, action="apply_transaction",
            extra={
                "status": outcome.status.value,
                "error_kind": outcome.error_kind.value if outcome.error_kind else None,
                "kind": kind.value,
                "amount": str(amount),
                "attempts": outcome.attempts,
            }
        )
        event_type = (DomainEvent.RECONCILIATION_FAILED
                      if outcome.status == OutcomeStatus.RECONCILIATION
                      else DomainEvent.TRANSACTION_REJECTED)
        self._publish_event(EventPayload(
            event_type=event_type,
            owner_id=outcome.owner_id,
            entity_id=outcome.owner_id,
            data={**outcome.to_dict(), "kind": kind.value, "amount": str(amount)}
        ))

    # ------------------------------------------------------------------
    # Read projections
    # ------------------------------------------------------------------

    def get_balance(self, owner_id: str) -> Decimal:
        """
        Point read of the account balance.

        Raises:
            ValidationError: If the owner id is invalid
            AccountNotFoundError: If the owner has no account
        """
        return self.account_store.read_account(validate_owner_id(owner_id)).balance

    def get_history(self, owner_id: str, limit: Optional[int] = None) -> List[TransactionRecord]:
        """
        Transaction records of an owner, newest first.

        Raises:
            ValidationError: If the owner id or limit is invalid
            AccountNotFoundError: If the owner has no account
        """
        validate_owner_id(owner_id)
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0):
            raise ValidationError("Limit must be a positive integer", owner_id=owner_id)
        # Surface NotFound rather than an empty history for unknown owners
        self.account_store.read_account(owner_id)
        return self.log_store.list_records(owner_id, limit=limit)
