"""
Tests for the account store and account service
"""

import pytest
from decimal import Decimal
from unittest.mock import Mock, patch

from personal_banking.accounts import AccountStore, AccountType, WriteResult, validate_owner_id
from personal_banking.config import BankingConfig
from personal_banking.events import DomainEvent
from personal_banking.storage import InMemoryStorage, SQLiteStorage
from personal_banking.system import BankingSystem
from personal_banking.transactions import TransactionKind
from personal_banking.errors import AccountNotFoundError, ConflictError, StoreUnavailableError, ValidationError


class TestOwnerIdValidation:

    def test_valid(self):
        assert validate_owner_id("0b6f1c5e") == "0b6f1c5e"

    @pytest.mark.parametrize("value", ["", "   ", None, 42])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            validate_owner_id(value)


class TestAccountStore:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.store = AccountStore(self.storage)

    def test_create_and_read(self):
        created = self.store.create_account("owner-1", name="Asha", phone="98450 12345")

        account = self.store.read_account("owner-1")
        assert account == created
        assert account.balance == Decimal('0.00')
        assert account.account_type == AccountType.SAVINGS
        assert account.name == "Asha"

    def test_blank_name_defaults(self):
        assert self.store.create_account("owner-1", name="  ").name == "User"

    def test_duplicate_account_rejected(self):
        self.store.create_account("owner-1")
        with pytest.raises(ValueError):
            self.store.create_account("owner-1")

    def test_invalid_account_type(self):
        with pytest.raises(ValidationError):
            self.store.create_account("owner-1", account_type="checking")

    def test_read_missing(self):
        with pytest.raises(AccountNotFoundError) as exc_info:
            self.store.read_account("ghost")
        assert exc_info.value.owner_id == "ghost"

    def test_write_balance(self):
        self.store.create_account("owner-1")

        assert self.store.write_balance("owner-1", Decimal('250.00')) is WriteResult.OK
        assert self.store.read_account("owner-1").balance == Decimal('250.00')

    def test_write_balance_conditional(self):
        self.store.create_account("owner-1")
        self.store.write_balance("owner-1", Decimal('100.00'))

        stale = self.store.write_balance("owner-1", Decimal('500.00'), expected_prior_balance=Decimal('0.00'))
        assert stale is WriteResult.CONFLICT
        assert self.store.read_account("owner-1").balance == Decimal('100.00')

        fresh = self.store.write_balance("owner-1", Decimal('500.00'), expected_prior_balance=Decimal('100.00'))
        assert fresh is WriteResult.OK

    def test_write_balance_missing_account(self):
        assert self.store.write_balance("ghost", Decimal('1.00')) is WriteResult.NOT_FOUND

    def test_negative_balance_never_written(self):
        self.store.create_account("owner-1")
        with pytest.raises(ValidationError):
            self.store.write_balance("owner-1", Decimal('-0.01'))
        assert self.store.read_account("owner-1").balance == Decimal('0.00')

    def test_update_profile_keeps_balance(self):
        self.store.create_account("owner-1")
        self.store.write_balance("owner-1", Decimal('42.00'))

        account = self.store.update_profile("owner-1", {"name": "Ravi"})
        assert account.name == "Ravi"
        assert account.balance == Decimal('42.00')

    def test_update_profile_missing(self):
        with pytest.raises(AccountNotFoundError):
            self.store.update_profile("ghost", {"name": "x"})


class TestAccountStoreSQLite(TestAccountStore):
    """Same behaviour on the persistent backend"""

    def setup_method(self):
        self.storage = SQLiteStorage(":memory:")
        self.store = AccountStore(self.storage)

    def teardown_method(self):
        self.storage.close()


class TestAccountService:

    def setup_method(self):
        self.system = BankingSystem(storage=InMemoryStorage(), config=BankingConfig(database_url="memory://"))
        self.service = self.system.account_service

    def test_open_account_with_opening_balance(self):
        account = self.service.open_account("owner-1", name="Asha", initial_balance="1000")

        assert account.balance == Decimal('1000.00')
        history = self.system.mutation_service.get_history("owner-1")
        assert len(history) == 1
        assert history[0].kind == TransactionKind.DEPOSIT
        assert history[0].memo == "Opening balance"
        assert history[0].balance_after == Decimal('1000.00')

    def test_open_account_zero_balance_books_nothing(self):
        account = self.service.open_account("owner-1")
        assert account.balance == Decimal('0.00')
        assert self.system.mutation_service.get_history("owner-1") == []

    def test_open_account_negative_balance_rejected(self):
        with pytest.raises(ValidationError):
            self.service.open_account("owner-1", initial_balance="-10")
        assert not self.system.storage.exists("profiles", "owner-1")

    def test_open_account_publishes_event(self):
        handler = Mock()
        self.system.event_dispatcher.subscribe(DomainEvent.ACCOUNT_OPENED, handler)

        self.service.open_account("owner-1", initial_balance="50")

        event = handler.call_args[0][0]
        assert event.owner_id == "owner-1"
        assert event.data["balance"] == "50.00"

    def test_get_profile(self):
        self.service.open_account("owner-1", name="Asha", phone="123")
        profile = self.service.get_profile("owner-1")
        assert profile.name == "Asha"
        assert profile.phone == "123"

        with pytest.raises(AccountNotFoundError):
            self.service.get_profile("ghost")

    def test_update_profile(self):
        self.service.open_account("owner-1", name="Asha")

        account = self.service.update_profile("owner-1", phone=" 555 ", account_type="current")
        assert account.name == "Asha"
        assert account.phone == "555"
        assert account.account_type == AccountType.CURRENT

    def test_update_profile_without_changes(self):
        self.service.open_account("owner-1", name="Asha")
        assert self.service.update_profile("owner-1").name == "Asha"

    def test_update_profile_validation(self):
        self.service.open_account("owner-1")
        with pytest.raises(ValidationError):
            self.service.update_profile("owner-1", name="  ")
        with pytest.raises(ValidationError):
            self.service.update_profile("owner-1", account_type="gold")

    def test_update_profile_retries_conflict(self):
        self.service.open_account("owner-1")
        store = self.system.account_store
        original = store.update_profile
        store.update_profile = Mock(side_effect=[ConflictError("changed"), original("owner-1", {"name": "Ravi"})])

        account = self.service.update_profile("owner-1", name="Ravi")

        assert account.name == "Ravi"
        assert store.update_profile.call_count == 2

    def test_update_profile_gives_up(self):
        self.service.open_account("owner-1")
        self.system.account_store.update_profile = Mock(side_effect=ConflictError("changed"))

        with pytest.raises(ConflictError):
            self.service.update_profile("owner-1", name="Ravi")
        assert self.system.account_store.update_profile.call_count == self.service.max_update_retries + 1


class NonTransactionalStorage(InMemoryStorage):
    """In-memory backend whose rollback undoes nothing"""

    @property
    def supports_transactions(self) -> bool:
        return False

    def begin_transaction(self) -> None:
        pass

    def commit(self) -> None:
        pass

    def rollback(self) -> None:
        pass


class TestAccountOpeningFailures:
    """A failed opening deposit leaves nothing behind and can be retried"""

    storage_class = InMemoryStorage

    def setup_method(self):
        self.system = BankingSystem(storage=self.storage_class(), config=BankingConfig(database_url="memory://"))
        self.service = self.system.account_service

    def test_failed_opening_deposit_leaves_no_account(self):
        with patch.object(self.system.log_store, "append_record",
                          side_effect=StoreUnavailableError("disk full")):
            with pytest.raises(StoreUnavailableError):
                self.service.open_account("owner-1", initial_balance="500.00")

        assert not self.system.storage.exists("profiles", "owner-1")
        assert self.system.storage.count("transactions") == 0

    def test_retry_after_failed_opening(self):
        with patch.object(self.system.log_store, "append_record",
                          side_effect=StoreUnavailableError("disk full")):
            with pytest.raises(StoreUnavailableError):
                self.service.open_account("owner-1", initial_balance="500.00")

        account = self.service.open_account("owner-1", initial_balance="500.00")

        assert account.balance == Decimal('500.00')
        history = self.system.mutation_service.get_history("owner-1")
        assert [r.amount for r in history] == [Decimal('500.00')]
        assert history[0].sequence == 1

    def test_failed_opening_events(self):
        opened = Mock()
        rejected = Mock()
        self.system.event_dispatcher.subscribe(DomainEvent.ACCOUNT_OPENED, opened)
        self.system.event_dispatcher.subscribe(DomainEvent.TRANSACTION_REJECTED, rejected)

        with patch.object(self.system.log_store, "append_record",
                          side_effect=StoreUnavailableError("disk full")):
            with pytest.raises(StoreUnavailableError):
                self.service.open_account("owner-1", initial_balance="500.00")

        opened.assert_not_called()
        assert rejected.call_args[0][0].data["error_kind"] == "unavailable"

    def test_lock_timeout_creates_nothing(self):
        self.system.mutation_service.lock_timeout = 0.05

        with self.system.mutation_service.locks.hold("owner-1"):
            with pytest.raises(StoreUnavailableError):
                self.service.open_account("owner-1", initial_balance="10")

        assert not self.system.storage.exists("profiles", "owner-1")

    def test_invalid_account_type_with_balance(self):
        with pytest.raises(ValidationError):
            self.service.open_account("owner-1", account_type="gold", initial_balance="10")
        assert not self.system.storage.exists("profiles", "owner-1")


class TestAccountOpeningFailuresWithoutRollback(TestAccountOpeningFailures):
    storage_class = NonTransactionalStorage


class TestAccountOpeningFailuresSQLite(TestAccountOpeningFailures):
    storage_class = staticmethod(lambda: SQLiteStorage(":memory:"))
