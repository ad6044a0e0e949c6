"""
Tests for transaction kinds and the transaction log store
"""

import pytest
from datetime import datetime, timezone, timedelta
from decimal import Decimal

from personal_banking.transactions import TransactionKind, TransactionRecord, TransactionLogStore
from personal_banking.storage import InMemoryStorage
from personal_banking.errors import ValidationError


BASE_TIME = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)


def make_record(record_id, owner_id="owner-1", kind=TransactionKind.DEPOSIT,
                amount="100.00", balance_after="100.00", sequence=1, created_at=BASE_TIME):
    return TransactionRecord(
        id=record_id,
        created_at=created_at,
        owner_id=owner_id,
        amount=Decimal(amount),
        kind=kind,
        memo=kind.default_memo(),
        balance_after=Decimal(balance_after),
        sequence=sequence,
    )


class TestTransactionKind:

    def test_parse_canonical_values(self):
        assert TransactionKind.parse("deposit") == TransactionKind.DEPOSIT
        assert TransactionKind.parse("withdraw") == TransactionKind.WITHDRAW
        assert TransactionKind.parse(TransactionKind.DEPOSIT) is TransactionKind.DEPOSIT

    def test_parse_normalises_case_and_legacy_spelling(self):
        assert TransactionKind.parse(" DEPOSIT ") == TransactionKind.DEPOSIT
        assert TransactionKind.parse("withdrawal") == TransactionKind.WITHDRAW
        assert TransactionKind.parse("Withdrawal") == TransactionKind.WITHDRAW

    @pytest.mark.parametrize("value", ["transfer", "", None, 1])
    def test_parse_rejects_unknown(self, value):
        with pytest.raises(ValidationError):
            TransactionKind.parse(value)

    def test_default_memos(self):
        assert TransactionKind.DEPOSIT.default_memo() == "Deposit transaction"
        assert TransactionKind.WITHDRAW.default_memo() == "Withdrawal transaction"

    def test_credit_direction(self):
        assert TransactionKind.DEPOSIT.is_credit
        assert not TransactionKind.WITHDRAW.is_credit


class TestTransactionRecord:

    def test_signed_amount(self):
        assert make_record("t1").signed_amount == Decimal('100.00')
        withdrawal = make_record("t2", kind=TransactionKind.WITHDRAW, amount="40.00")
        assert withdrawal.signed_amount == Decimal('-40.00')

    def test_dict_round_trip(self):
        record = make_record("t1", amount="12.50", balance_after="12.50")
        data = record.to_dict()

        assert data["kind"] == "deposit"
        assert data["amount"] == "12.50"
        assert data["created_at"] == BASE_TIME.isoformat()
        assert TransactionRecord.from_dict(data) == record


class TestTransactionLogStore:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.log_store = TransactionLogStore(self.storage)

    def test_append_and_get(self):
        record = make_record("t1")
        self.log_store.append_record(record)

        assert self.log_store.get_record("t1") == record
        assert self.log_store.get_record("missing") is None

    def test_duplicate_id_rejected(self):
        self.log_store.append_record(make_record("t1"))
        with pytest.raises(ValueError):
            self.log_store.append_record(make_record("t1"))
        assert self.storage.count("transactions") == 1

    def test_list_newest_first(self):
        for i in range(3):
            self.log_store.append_record(make_record(
                f"t{i}", sequence=i + 1, created_at=BASE_TIME + timedelta(minutes=i)
            ))
        self.log_store.append_record(make_record("other", owner_id="owner-2"))

        records = self.log_store.list_records("owner-1")
        assert [r.id for r in records] == ["t2", "t1", "t0"]

    def test_sequence_breaks_timestamp_ties(self):
        # Inserted out of order, identical timestamps
        self.log_store.append_record(make_record("second", sequence=2))
        self.log_store.append_record(make_record("first", sequence=1))
        self.log_store.append_record(make_record("third", sequence=3))

        assert [r.id for r in self.log_store.list_records("owner-1")] == ["third", "second", "first"]

    def test_limit(self):
        for i in range(5):
            self.log_store.append_record(make_record(f"t{i}", sequence=i + 1))

        assert [r.sequence for r in self.log_store.list_records("owner-1", limit=2)] == [5, 4]
        assert len(self.log_store.list_records("owner-1", limit=50)) == 5

    def test_unknown_owner_has_no_records(self):
        assert self.log_store.list_records("nobody") == []

    def test_legacy_withdrawal_rows_are_normalised(self):
        row = make_record("legacy", kind=TransactionKind.WITHDRAW).to_dict()
        row["kind"] = "withdrawal"
        self.storage.save("transactions", "legacy", row)

        record = self.log_store.get_record("legacy")
        assert record.kind == TransactionKind.WITHDRAW
