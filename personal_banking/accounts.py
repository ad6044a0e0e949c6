"""
Account Management Module

Owns the ``profiles`` table: one account per owner holding the
authoritative balance, plus the profile fields shown to the user.
Balances change only through the balance mutation service, which uses
``AccountStore.write_balance`` as a compare-and-set.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union, TYPE_CHECKING
from enum import Enum
import uuid

from .currency import ZERO, to_money, parse_balance, AmountLike
from .storage import StorageInterface, StorageRecord
from .errors import AccountNotFoundError, BankingError, ConflictError, ValidationError
from .events import EventDispatcher, DomainEvent, create_account_event
from .transactions import TransactionKind
from .logging_config import get_logger, log_action

if TYPE_CHECKING:
    from .service import BalanceMutationService


class AccountType(Enum):
    """Account product types; informational only"""
    SAVINGS = "savings"
    CURRENT = "current"

    @classmethod
    def parse(cls, value: Union['AccountType', str]) -> 'AccountType':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(t.value for t in cls)
            raise ValidationError(f"Invalid account type '{value}'. Expected one of: {allowed}")


class WriteResult(Enum):
    """Result of a conditional balance write"""
    OK = "ok"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


def validate_owner_id(owner_id: Any) -> str:
    """Owner ids are opaque non-empty strings"""
    if not isinstance(owner_id, str) or not owner_id.strip():
        raise ValidationError("Owner id must be a non-empty string")
    return owner_id


@dataclass
class Account(StorageRecord):
    """
    Account row; ``balance`` is always >= 0.

    ``last_sequence`` and ``last_transaction_at`` describe the newest record
    in the owner's transaction log and move together with the balance.
    """
    owner_id: str
    name: str
    phone: str
    account_type: AccountType
    balance: Decimal
    updated_at: datetime
    last_sequence: int = 0
    last_transaction_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            owner_id=data['owner_id'],
            name=data['name'],
            phone=data['phone'],
            account_type=AccountType(data['account_type']),
            balance=to_money(data['balance']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            last_sequence=int(data.get('last_sequence') or 0),
            last_transaction_at=(datetime.fromisoformat(data['last_transaction_at'])
                                 if data.get('last_transaction_at') else None),
        )


class AccountStore:
    """Account Store over a storage backend, keyed by owner id"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "profiles"

    def create_account(
        self,
        owner_id: str,
        name: str = "User",
        phone: str = "",
        account_type: Union[AccountType, str] = AccountType.SAVINGS
    ) -> Account:
        """
        Create a zero-balance account for an owner.

        Raises:
            ValidationError: If the owner id or account type is invalid
            ValueError: If the owner already has an account
        """
        validate_owner_id(owner_id)
        account_type = AccountType.parse(account_type)
        now = datetime.now(timezone.utc)
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            owner_id=owner_id,
            name=(name or "").strip() or "User",
            phone=phone or "",
            account_type=account_type,
            balance=ZERO,
            updated_at=now,
        )
        with self.storage.atomic():
            if self.storage.exists(self.table_name, owner_id):
                raise ValueError(f"Account for owner {owner_id} already exists")
            self.storage.save(self.table_name, owner_id, account.to_dict())
        return account

    def read_account(self, owner_id: str) -> Account:
        """
        Read the account of an owner.

        Raises:
            AccountNotFoundError: If the owner has no account
        """
        data = self.storage.load(self.table_name, owner_id)
        if data is None:
            raise AccountNotFoundError(owner_id)
        return Account.from_dict(data)

    def write_balance(
        self,
        owner_id: str,
        new_balance: Decimal,
        expected_prior_balance: Optional[Decimal] = None,
        log_position: Optional[Tuple[int, Optional[datetime]]] = None
    ) -> WriteResult:
        """
        Persist a new balance.

        With ``expected_prior_balance`` the write only happens if the stored
        balance still equals it; otherwise CONFLICT is returned and nothing
        changes. The row is also guarded on ``updated_at`` so a concurrent
        profile edit is never overwritten.

        ``log_position`` is the (sequence, created_at) of the newest log
        record after this change; when given it is stored with the balance.
        """
        new_balance = to_money(new_balance)
        if new_balance < ZERO:
            raise ValidationError("Balance cannot be negative", owner_id=owner_id)

        current = self.storage.load(self.table_name, owner_id)
        if current is None:
            return WriteResult.NOT_FOUND

        if expected_prior_balance is not None and \
                to_money(current['balance']) != to_money(expected_prior_balance):
            return WriteResult.CONFLICT

        updated = dict(current)
        updated['balance'] = str(new_balance)
        updated['updated_at'] = datetime.now(timezone.utc).isoformat()
        if log_position is not None:
            sequence, transaction_at = log_position
            updated['last_sequence'] = sequence
            updated['last_transaction_at'] = transaction_at.isoformat() if transaction_at else None

        guard = {'balance': current['balance'], 'updated_at': current['updated_at']}
        if self.storage.compare_and_save(self.table_name, owner_id, updated, guard):
            return WriteResult.OK

        if self.storage.exists(self.table_name, owner_id):
            return WriteResult.CONFLICT
        return WriteResult.NOT_FOUND

    def update_profile(self, owner_id: str, changes: Dict[str, Any]) -> Account:
        """
        Apply profile field changes (never the balance).

        Raises:
            AccountNotFoundError: If the owner has no account
            ConflictError: If the row changed underneath the update
        """
        current = self.storage.load(self.table_name, owner_id)
        if current is None:
            raise AccountNotFoundError(owner_id)

        updated = dict(current)
        updated.update(changes)
        updated['updated_at'] = datetime.now(timezone.utc).isoformat()

        guard = {'balance': current['balance'], 'updated_at': current['updated_at']}
        if not self.storage.compare_and_save(self.table_name, owner_id, updated, guard):
            raise ConflictError("Account changed during profile update", owner_id=owner_id)
        return Account.from_dict(updated)

    def delete_account(self, owner_id: str) -> bool:
        """Remove an account row; only used to undo a failed opening"""
        return self.storage.delete(self.table_name, owner_id)


class AccountService:
    """
    Account onboarding and profile management.

    Provisioning replaces the sign-up trigger of the hosted backend: the
    account starts at zero and any initial balance is booked as an opening
    deposit, so the transaction log always replays to the balance.
    """

    def __init__(
        self,
        account_store: AccountStore,
        mutation_service: 'BalanceMutationService',
        event_dispatcher: Optional[EventDispatcher] = None,
        opening_balance_memo: str = "Opening balance",
        max_update_retries: int = 3
    ):
        self.account_store = account_store
        self.mutation_service = mutation_service
        self.opening_balance_memo = opening_balance_memo
        self.max_update_retries = max_update_retries
        self.logger = get_logger("personal_banking.accounts")
        self._event_dispatcher = event_dispatcher

    def _publish_event(self, event_type: DomainEvent, account: Account) -> None:
        if self._event_dispatcher:
            self._event_dispatcher.publish(create_account_event(event_type, account))

    def open_account(
        self,
        owner_id: str,
        name: str = "User",
        phone: str = "",
        account_type: Union[AccountType, str] = AccountType.SAVINGS,
        initial_balance: AmountLike = ZERO
    ) -> Account:
        """
        Create an account and book its opening balance.

        The account row and the opening deposit are one unit: if the
        deposit fails no account is left behind, so the call can be retried.

        Raises:
            ValidationError: For an invalid owner id, account type or a
                negative initial balance
            ValueError: If the owner already has an account
            BankingError: If the opening deposit fails
        """
        validate_owner_id(owner_id)
        opening = parse_balance(initial_balance)
        storage = self.account_store.storage
        mutations = self.mutation_service
        outcome = None

        try:
            with mutations.locks.hold(owner_id, timeout=mutations.lock_timeout):
                with storage.atomic():
                    account = self.account_store.create_account(owner_id, name, phone, account_type)
                    if opening > ZERO:
                        outcome = mutations.apply_locked(
                            owner_id, TransactionKind.DEPOSIT, opening, self.opening_balance_memo
                        )
                        if not outcome.is_success:
                            if not storage.supports_transactions:
                                self.account_store.delete_account(owner_id)
                            outcome.raise_for_error()
                        account = self.account_store.read_account(owner_id)
        except BankingError as e:
            if outcome is not None and not outcome.is_success:
                mutations.publish_outcome(outcome, TransactionKind.DEPOSIT, opening)
            log_action(
                self.logger, "warning", f"Account opening failed: {e.message}",
                owner_id=owner_id, action="open_account",
                extra={"initial_balance": str(opening), "error_kind": e.kind.value}
            )
            raise

        if outcome is not None:
            mutations.publish_outcome(outcome, TransactionKind.DEPOSIT, opening)
        log_action(
            self.logger, "info", "Account opened",
            owner_id=owner_id, action="open_account", resource=f"account:{account.id}",
            extra={"account_type": account.account_type.value, "initial_balance": str(opening)}
        )
        self._publish_event(DomainEvent.ACCOUNT_OPENED, account)
        return account

    def get_profile(self, owner_id: str) -> Account:
        """Read the account including its current balance"""
        return self.account_store.read_account(validate_owner_id(owner_id))

    def update_profile(
        self,
        owner_id: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        account_type: Optional[Union[AccountType, str]] = None
    ) -> Account:
        """
        Update name, phone or account type. Omitted fields are left as is.
        Retried on a concurrent balance change, which never touches these fields.
        """
        validate_owner_id(owner_id)
        changes: Dict[str, Any] = {}
        if name is not None:
            if not name.strip():
                raise ValidationError("Name cannot be empty", owner_id=owner_id)
            changes['name'] = name.strip()
        if phone is not None:
            changes['phone'] = phone.strip()
        if account_type is not None:
            changes['account_type'] = AccountType.parse(account_type).value

        if not changes:
            return self.account_store.read_account(owner_id)

        for attempt in range(self.max_update_retries + 1):
            try:
                account = self.account_store.update_profile(owner_id, changes)
                break
            except ConflictError:
                if attempt == self.max_update_retries:
                    raise
                self.logger.debug(f"Profile update conflict for {owner_id}, retrying")

        log_action(
            self.logger, "info", "Profile updated",
            owner_id=owner_id, action="update_profile", resource=f"account:{account.id}",
            extra={"fields": sorted(changes)}
        )
        self._publish_event(DomainEvent.ACCOUNT_UPDATED, account)
        return account
