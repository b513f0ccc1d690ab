"""
Ledger bookkeeping: every write moves the cached account balances, and the
cached balance always equals the sum of the account's ledger effects.
"""

import pytest

from fambudget.errors import ConsistencyError, NotFoundError, ValidationError
from tests.conftest import balance


def expense(account, amount, **extra):
    request = {
        "account_id": account["id"],
        "amount": amount,
        "type": "expense",
        "description": "Groceries run",
        "date": "2026-03-01",
    }
    request.update(extra)
    return request


class TestCreateAndDelete:

    def test_expense_then_delete_restores_balance(self, services, family):
        admin, checking = family["admin"], family["checking"]
        services.ledger.create_transaction(admin["id"], expense(checking, 20000, type="income"))
        assert balance(services, checking["id"]) == 20000

        txn = services.ledger.create_transaction(admin["id"], expense(checking, -5000))
        assert balance(services, checking["id"]) == 15000

        services.ledger.delete_transaction(txn["id"])
        assert balance(services, checking["id"]) == 20000

    def test_expense_income_then_delete_expense(self, services, family):
        admin, checking = family["admin"], family["checking"]
        groceries = services.ledger.create_transaction(admin["id"], expense(checking, -5000))
        assert balance(services, checking["id"]) == -5000

        services.ledger.create_transaction(admin["id"], expense(checking, 20000, type="income"))
        assert balance(services, checking["id"]) == 15000

        services.ledger.delete_transaction(groceries["id"])
        assert balance(services, checking["id"]) == 20000

    def test_created_transaction_round_trips_fields(self, services, family):
        txn = services.ledger.create_transaction(
            family["admin"]["id"],
            expense(family["checking"], -1250, category_id=family["groceries"]["id"],
                    is_shared=True, tags=["food", " weekly "]),
        )
        assert txn["amount"] == -1250
        assert txn["category_id"] == family["groceries"]["id"]
        assert txn["is_shared"] is True
        assert txn["is_recurring"] is False
        assert txn["tags"] == ["food", "weekly"]
        assert txn["template_id"] is None

    @pytest.mark.parametrize("field, value", [
        ("type", "gift"),
        ("amount", 0),
        ("amount", "12.50"),
        ("date", "01/03/2026"),
        ("tags", "food"),
    ])
    def test_invalid_requests_are_rejected(self, services, family, field, value):
        request = expense(family["checking"], -100)
        request[field] = value
        with pytest.raises(ValidationError):
            services.ledger.create_transaction(family["admin"]["id"], request)
        assert balance(services, family["checking"]["id"]) == 0
        assert services.ledger.list_transactions(family["admin"]["id"]) == []

    def test_unknown_account_is_not_found(self, services, family):
        with pytest.raises(NotFoundError):
            services.ledger.create_transaction(family["admin"]["id"], expense({"id": 9999}, -100))

    def test_unknown_category_is_rejected(self, services, family):
        with pytest.raises(ValidationError):
            services.ledger.create_transaction(family["admin"]["id"], expense(family["checking"], -100, category_id=9999))

    def test_delete_missing_transaction(self, services, family):
        with pytest.raises(NotFoundError):
            services.ledger.delete_transaction(424242)

    def test_destination_only_allowed_on_transfers(self, services, family):
        with pytest.raises(ValidationError):
            services.ledger.create_transaction(
                family["admin"]["id"],
                expense(family["checking"], -100, transfer_to_account_id=family["savings"]["id"]),
            )


class TestUpdate:

    def test_amount_change_reverses_original(self, services, family):
        checking = family["checking"]
        txn = services.ledger.create_transaction(family["admin"]["id"], expense(checking, -5000))

        services.ledger.update_transaction(txn["id"], {"amount": -7000})
        assert balance(services, checking["id"]) == -7000

    def test_account_change_moves_effect(self, services, family):
        checking, savings = family["checking"], family["savings"]
        txn = services.ledger.create_transaction(family["admin"]["id"], expense(checking, -5000))

        updated = services.ledger.update_transaction(txn["id"], {"account_id": savings["id"], "amount": -3000})
        assert updated["account_id"] == savings["id"]
        assert balance(services, checking["id"]) == 0
        assert balance(services, savings["id"]) == -3000

    def test_metadata_change_leaves_balance_alone(self, services, family):
        checking = family["checking"]
        txn = services.ledger.create_transaction(family["admin"]["id"], expense(checking, -5000))

        updated = services.ledger.update_transaction(txn["id"], {"description": "Farmers market", "tags": ["market"]})
        assert updated["description"] == "Farmers market"
        assert updated["tags"] == ["market"]
        assert balance(services, checking["id"]) == -5000

    def test_update_missing_transaction(self, services, family):
        with pytest.raises(NotFoundError):
            services.ledger.update_transaction(424242, {"amount": -1})


class TestTransfers:

    def test_transfer_moves_money_between_accounts(self, services, family):
        checking, savings = family["checking"], family["savings"]
        services.ledger.create_transaction(family["admin"]["id"], expense(checking, 50000, type="income"))

        txn = services.ledger.create_transfer(family["admin"]["id"], checking["id"], savings["id"], 20000,
                                              txn_date="2026-03-02")
        assert txn["type"] == "transfer"
        assert txn["amount"] == -20000
        assert txn["category_id"] is None
        assert txn["is_shared"] is True
        assert txn["description"] == "Account transfer"
        assert balance(services, checking["id"]) == 30000
        assert balance(services, savings["id"]) == 20000

        services.ledger.delete_transaction(txn["id"])
        assert balance(services, checking["id"]) == 50000
        assert balance(services, savings["id"]) == 0

    def test_same_account_transfer_is_rejected(self, services, family):
        checking = family["checking"]
        with pytest.raises(ValidationError):
            services.ledger.create_transfer(family["admin"]["id"], checking["id"], checking["id"], 100,
                                            txn_date="2026-03-02")

    @pytest.mark.parametrize("amount", [0, -100])
    def test_transfer_amount_must_be_positive(self, services, family, amount):
        with pytest.raises(ValidationError):
            services.ledger.create_transfer(family["admin"]["id"], family["checking"]["id"],
                                            family["savings"]["id"], amount, txn_date="2026-03-02")

    def test_transfer_to_missing_account_changes_nothing(self, services, family):
        checking = family["checking"]
        with pytest.raises(NotFoundError):
            services.ledger.create_transfer(family["admin"]["id"], checking["id"], 9999, 100, txn_date="2026-03-02")
        assert balance(services, checking["id"]) == 0
        assert services.ledger.list_transactions(family["admin"]["id"]) == []

    def test_transfer_amount_edit_is_locked(self, services, family):
        txn = services.ledger.create_transfer(family["admin"]["id"], family["checking"]["id"],
                                              family["savings"]["id"], 1000, txn_date="2026-03-02")
        with pytest.raises(ValidationError):
            services.ledger.update_transaction(txn["id"], {"amount": -2000})

        updated = services.ledger.update_transaction(txn["id"], {"description": "Rainy day fund"})
        assert updated["description"] == "Rainy day fund"
        assert balance(services, family["savings"]["id"]) == 1000


class TestAtomicity:

    def test_failed_balance_adjustment_rolls_back_insert(self, services, family, monkeypatch):
        checking, savings = family["checking"], family["savings"]
        real_adjust = services.ledger.accounts.adjust_balance

        def adjust(conn, account_id, delta):
            if account_id == savings["id"]:
                raise ConsistencyError("balance update failed")
            return real_adjust(conn, account_id, delta)

        monkeypatch.setattr(services.ledger.accounts, "adjust_balance", adjust)
        with pytest.raises(ConsistencyError):
            services.ledger.create_transfer(family["admin"]["id"], checking["id"], savings["id"], 500,
                                            txn_date="2026-03-02")
        monkeypatch.undo()

        assert balance(services, checking["id"]) == 0
        assert services.ledger.list_transactions(family["admin"]["id"]) == []


class TestRecalculate:

    def test_drifted_balance_is_corrected(self, services, family):
        checking = family["checking"]
        services.ledger.create_transaction(family["admin"]["id"], expense(checking, -4000))
        with services.pool.unit_of_work() as conn:
            conn.exec_driver_sql("UPDATE accounts SET balance = 123 WHERE id = ?", (checking["id"],))

        result = services.ledger.recalculate_balances()
        assert result["checked"] == 2
        assert result["corrected"] == [
            {"account_id": checking["id"], "name": "Checking", "was": 123, "now": -4000}
        ]
        assert balance(services, checking["id"]) == -4000

    def test_consistent_ledger_needs_no_correction(self, services, family):
        services.ledger.create_transfer(family["admin"]["id"], family["checking"]["id"],
                                        family["savings"]["id"], 700, txn_date="2026-03-02")
        assert services.ledger.recalculate_balances(family["admin"]["id"])["corrected"] == []
