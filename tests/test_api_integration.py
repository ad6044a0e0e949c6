"""
Integration tests for the Personal Banking API
Tests end-to-end flows using FastAPI TestClient
"""

import pytest
from unittest.mock import patch

from fastapi.testclient import TestClient

from personal_banking.api import app
from personal_banking.api.deps import get_banking_system
from personal_banking.config import BankingConfig
from personal_banking.errors import StoreUnavailableError
from personal_banking.storage import InMemoryStorage
from personal_banking.system import BankingSystem


OWNER = {"X-Owner-Id": "8d2c7f3a-owner"}


@pytest.fixture
def banking_system():
    return BankingSystem(storage=InMemoryStorage(), config=BankingConfig(database_url="memory://"))


@pytest.fixture
def client(banking_system):
    """Test client backed by a fresh in-memory banking system"""
    app.dependency_overrides[get_banking_system] = lambda: banking_system
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def funded_client(client):
    r = client.post("/accounts", json={"name": "Asha", "initial_balance": "1000.00"}, headers=OWNER)
    assert r.status_code == 201
    return client


class TestHealth:

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"


class TestAccounts:

    def test_missing_owner_header(self, client):
        assert client.get("/accounts/me").status_code == 401
        assert client.post("/transactions/deposit", json={"amount": "1"}).status_code == 401

    def test_open_account(self, client):
        r = client.post("/accounts", json={
            "name": "Asha",
            "phone": "98450 12345",
            "account_type": "current",
            "initial_balance": "1000"
        }, headers=OWNER)

        assert r.status_code == 201
        data = r.json()
        assert data["owner_id"] == OWNER["X-Owner-Id"]
        assert data["balance"] == "1000.00"
        assert data["account_type"] == "current"

    def test_open_account_twice(self, funded_client):
        r = funded_client.post("/accounts", json={}, headers=OWNER)
        assert r.status_code == 409

    def test_open_account_invalid_type(self, client):
        r = client.post("/accounts", json={"account_type": "gold"}, headers=OWNER)
        assert r.status_code == 422
        assert r.json()["detail"]["error_kind"] == "validation_error"

    def test_open_account_malformed_balance(self, client):
        r = client.post("/accounts", json={"initial_balance": "12abc34"}, headers=OWNER)
        assert r.status_code == 422
        assert client.get("/accounts/me", headers=OWNER).status_code == 404

    def test_open_account_retry_after_store_failure(self, client, banking_system):
        with patch.object(banking_system.log_store, "append_record",
                          side_effect=StoreUnavailableError("disk full")):
            r = client.post("/accounts", json={"initial_balance": "500"}, headers=OWNER)
        assert r.status_code == 503

        r = client.post("/accounts", json={"initial_balance": "500"}, headers=OWNER)
        assert r.status_code == 201
        assert r.json()["balance"] == "500.00"

    def test_unknown_account(self, client):
        r = client.get("/accounts/me", headers=OWNER)
        assert r.status_code == 404
        assert r.json()["detail"]["error_kind"] == "not_found"

    def test_profile_update(self, funded_client):
        r = funded_client.patch("/accounts/me", json={"phone": "12345"}, headers=OWNER)
        assert r.status_code == 200
        assert r.json()["phone"] == "12345"
        assert r.json()["name"] == "Asha"
        assert r.json()["balance"] == "1000.00"

    def test_balance(self, funded_client):
        r = funded_client.get("/accounts/me/balance", headers=OWNER)
        assert r.status_code == 200
        assert r.json()["balance"] == "1000.00"
        assert r.json()["formatted"] == "₹1,000.00"


class TestTransactions:

    def test_deposit(self, funded_client):
        r = funded_client.post("/transactions/deposit", json={"amount": "500.00", "memo": "Salary"}, headers=OWNER)

        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "success"
        assert data["new_balance"] == "1500.00"
        assert data["transaction"]["kind"] == "deposit"
        assert data["transaction"]["memo"] == "Salary"
        assert data["message"] == "Deposit of ₹500.00 completed successfully"

    def test_withdraw(self, funded_client):
        r = funded_client.post("/transactions/withdraw", json={"amount": "300"}, headers=OWNER)

        assert r.status_code == 200
        assert r.json()["new_balance"] == "700.00"
        assert r.json()["transaction"]["memo"] == "Withdrawal transaction"

    def test_insufficient_funds(self, funded_client):
        r = funded_client.post("/transactions/withdraw", json={"amount": "1500"}, headers=OWNER)

        assert r.status_code == 409
        assert r.json()["detail"]["status"] == "insufficient_funds"
        assert funded_client.get("/accounts/me/balance", headers=OWNER).json()["balance"] == "1000.00"

    @pytest.mark.parametrize("amount", ["0", "-10", "abc", "1.234", "1e3", "12abc34", "5 0", "1,2,3"])
    def test_invalid_amount(self, funded_client, amount):
        r = funded_client.post("/transactions/deposit", json={"amount": amount}, headers=OWNER)
        assert r.status_code == 422
        assert r.json()["detail"]["status"] == "validation_error"

    def test_deposit_unknown_account(self, client):
        r = client.post("/transactions/deposit", json={"amount": "10"}, headers=OWNER)
        assert r.status_code == 404
        assert r.json()["detail"]["error_kind"] == "not_found"

    def test_history(self, funded_client):
        for amount in ["1", "2", "3"]:
            funded_client.post("/transactions/deposit", json={"amount": amount}, headers=OWNER)

        r = funded_client.get("/transactions", headers=OWNER)
        assert r.status_code == 200
        data = r.json()
        assert data["count"] == 4
        assert [t["amount"] for t in data["transactions"]] == ["3.00", "2.00", "1.00", "1000.00"]

        limited = funded_client.get("/transactions", params={"limit": 2}, headers=OWNER).json()
        assert limited["count"] == 2

    def test_history_bad_limit(self, funded_client):
        r = funded_client.get("/transactions", params={"limit": 0}, headers=OWNER)
        assert r.status_code == 422

    def test_recent(self, funded_client):
        for _ in range(12):
            funded_client.post("/transactions/deposit", json={"amount": "1"}, headers=OWNER)

        r = funded_client.get("/transactions/recent", headers=OWNER)
        assert r.json()["count"] == 10

    def test_summary_and_reconcile(self, funded_client):
        funded_client.post("/transactions/withdraw", json={"amount": "100"}, headers=OWNER)

        summary = funded_client.get("/transactions/summary", headers=OWNER).json()
        assert summary["deposit_count"] == 1
        assert summary["withdrawal_count"] == 1
        assert summary["net_flow"] == "900.00"

        report = funded_client.get("/transactions/reconcile", headers=OWNER).json()
        assert report["consistent"] is True
        assert report["records_checked"] == 2

    def test_owners_are_isolated(self, funded_client):
        other = {"X-Owner-Id": "someone-else"}
        funded_client.post("/accounts", json={}, headers=other)
        funded_client.post("/transactions/deposit", json={"amount": "5"}, headers=other)

        r = funded_client.get("/transactions", headers=OWNER)
        assert r.json()["count"] == 1
