"""
Banking system assembly

Wires storage, stores, services and the event dispatcher from configuration.
"""

from typing import Optional

from .config import BankingConfig, get_config
from .storage import StorageInterface, create_storage
from .accounts import AccountStore, AccountService
from .transactions import TransactionLogStore
from .service import BalanceMutationService
from .reporting import ReportingEngine
from .events import EventDispatcher
from .locks import OwnerLockRegistry


class BankingSystem:
    """Banking core with all components initialized"""

    def __init__(self, storage: Optional[StorageInterface] = None,
                 config: Optional[BankingConfig] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)

        self.event_dispatcher = EventDispatcher() if self.config.enable_events else None
        self.account_store = AccountStore(self.storage)
        self.log_store = TransactionLogStore(self.storage)

        self.mutation_service = BalanceMutationService(
            self.account_store, self.log_store,
            lock_registry=OwnerLockRegistry(),
            event_dispatcher=self.event_dispatcher,
            max_conflict_retries=self.config.max_conflict_retries,
            lock_timeout=self.config.lock_timeout_seconds,
            currency_symbol=self.config.currency_symbol
        )
        self.account_service = AccountService(
            self.account_store, self.mutation_service,
            event_dispatcher=self.event_dispatcher,
            opening_balance_memo=self.config.opening_balance_memo,
            max_update_retries=self.config.max_conflict_retries
        )
        self.reporting_engine = ReportingEngine(
            self.account_store, self.log_store,
            event_dispatcher=self.event_dispatcher
        )

    def close(self) -> None:
        self.storage.close()
