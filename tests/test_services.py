from datetime import date

import pytest

from fambudget.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from tests.conftest import PASSWORD, balance


def book(services, user, account, amount, txn_date, category=None, description="Purchase", tags=None):
    return services.ledger.create_transaction(user["id"], {
        "account_id": account["id"],
        "category_id": category["id"] if category else None,
        "amount": amount,
        "type": "income" if amount > 0 else "expense",
        "description": description,
        "date": txn_date,
        "tags": tags,
    })


# ===== USERS & AUTH =====

class TestAuth:

    def test_first_user_is_admin_then_members(self, services):
        first = services.auth.register({"email": "First@Example.com", "password": PASSWORD, "name": "First"})
        second = services.auth.register({"email": "second@example.com", "password": PASSWORD, "name": "Second"})
        assert first["role"] == "admin"
        assert first["email"] == "first@example.com"
        assert second["role"] == "member"
        assert "password_hash" not in first

    def test_duplicate_email_conflicts(self, services, family):
        with pytest.raises(ConflictError):
            services.auth.register({"email": "ann@example.com", "password": PASSWORD, "name": "Ann Again"})

    def test_login(self, services, family):
        user = services.auth.login("ANN@example.com", PASSWORD)
        assert user["id"] == family["admin"]["id"]
        assert "password_hash" not in user

    @pytest.mark.parametrize("email, password", [
        ("ann@example.com", "wrong-password"),
        ("nobody@example.com", PASSWORD),
    ])
    def test_bad_credentials(self, services, family, email, password):
        with pytest.raises(AuthenticationError):
            services.auth.login(email, password)

    def test_short_password_is_rejected(self, services):
        with pytest.raises(ValidationError):
            services.auth.register({"email": "x@example.com", "password": "short", "name": "Xavier"})

    def test_admin_cannot_delete_self(self, services, family):
        with pytest.raises(PermissionDeniedError):
            services.auth.delete_user(family["admin"]["id"], family["admin"]["id"])

    def test_update_and_delete_user(self, services, family):
        updated = services.auth.update_user(family["member"]["id"], {"role": "admin", "name": "Mark M."})
        assert updated["role"] == "admin"
        services.auth.delete_user(family["member"]["id"], family["admin"]["id"])
        with pytest.raises(NotFoundError):
            services.auth.get_user(family["member"]["id"])

    def test_delete_refused_while_user_transferred_to_others(self, services, family):
        member, checking = family["member"], family["checking"]
        wallet = services.accounts.create(member["id"], {"name": "Wallet", "type": "cash", "balance": 10000},
                                          today=date(2026, 3, 1))
        services.ledger.create_transfer(member["id"], wallet["id"], checking["id"], 3000, txn_date="2026-03-02")

        with pytest.raises(ConflictError):
            services.auth.delete_user(member["id"], family["admin"]["id"])

        assert services.auth.get_user(member["id"])["id"] == member["id"]
        assert balance(services, checking["id"]) == 3000
        assert services.ledger.recalculate_balances()["corrected"] == []

    def test_delete_refused_while_user_booked_on_others_account(self, services, family):
        book(services, family["member"], family["checking"], -700, "2026-03-01")
        with pytest.raises(ConflictError):
            services.auth.delete_user(family["member"]["id"], family["admin"]["id"])
        assert balance(services, family["checking"]["id"]) == -700

    def test_delete_user_with_only_own_ledger(self, services, family):
        member = family["member"]
        wallet = services.accounts.create(member["id"], {"name": "Wallet", "type": "cash", "balance": 10000},
                                          today=date(2026, 3, 1))
        book(services, member, wallet, -2500, "2026-03-02")

        services.auth.delete_user(member["id"], family["admin"]["id"])

        with pytest.raises(NotFoundError):
            services.accounts.get(wallet["id"])
        assert services.ledger.recalculate_balances()["corrected"] == []

    def test_delete_missing_user(self, services, family):
        with pytest.raises(NotFoundError):
            services.auth.delete_user(424242, family["admin"]["id"])


# ===== ACCOUNTS =====

class TestAccounts:

    def test_opening_balance_is_booked_in_the_ledger(self, services, family):
        account = services.accounts.create(family["admin"]["id"], {"name": "Wallet", "type": "cash", "balance": 4200},
                                           today=date(2026, 1, 1))
        assert account["balance"] == 4200
        assert account["currency"] == "EUR"
        opening = services.ledger.list_transactions(family["admin"]["id"], {"account_id": account["id"]})
        assert [(t["description"], t["amount"], t["date"]) for t in opening] == [
            ("Opening balance", 4200, "2026-01-01")
        ]
        assert services.ledger.recalculate_balances()["corrected"] == []

    def test_invalid_type(self, services, family):
        with pytest.raises(ValidationError):
            services.accounts.create(family["admin"]["id"], {"name": "Wallet", "type": "crypto"})

    def test_delete_removes_own_transactions(self, services, family):
        book(services, family["admin"], family["checking"], -500, "2026-03-01")
        services.accounts.delete(family["checking"]["id"])
        with pytest.raises(NotFoundError):
            services.accounts.get(family["checking"]["id"])
        assert services.ledger.list_transactions(family["admin"]["id"]) == []

    def test_delete_refused_when_part_of_transfer(self, services, family):
        services.ledger.create_transfer(family["admin"]["id"], family["checking"]["id"],
                                        family["savings"]["id"], 100, txn_date="2026-03-01")
        with pytest.raises(ConflictError):
            services.accounts.delete(family["savings"]["id"])
        assert balance(services, family["savings"]["id"]) == 100


# ===== CATEGORIES =====

class TestCategories:

    def test_subcategory(self, services, family):
        child = services.categories.create({"name": "Bakery", "type": "expense",
                                            "parent_id": family["groceries"]["id"]})
        assert child["parent_id"] == family["groceries"]["id"]

    def test_category_cannot_parent_itself(self, services, family):
        with pytest.raises(ValidationError):
            services.categories.update(family["groceries"]["id"], {"parent_id": family["groceries"]["id"]})

    def test_deleting_category_keeps_transactions(self, services, family):
        txn = book(services, family["admin"], family["checking"], -500, "2026-03-01", family["groceries"])
        services.categories.delete(family["groceries"]["id"])
        assert services.ledger.get_transaction(txn["id"])["category_id"] is None


# ===== BUDGETS =====

class TestBudgets:

    def test_summary_compares_budget_with_spending(self, services, family):
        groceries = family["groceries"]
        services.budgets.create({"category_id": groceries["id"], "amount": 40000, "month": 3, "year": 2026})
        book(services, family["admin"], family["checking"], -12000, "2026-03-03", groceries)
        book(services, family["admin"], family["checking"], -8000, "2026-03-31", groceries)
        book(services, family["admin"], family["checking"], -9900, "2026-04-01", groceries)

        summary = services.budgets.summary(3, 2026)

        assert summary == [{
            "category_id": groceries["id"],
            "category_name": "Groceries",
            "budget_amount": 40000,
            "actual_amount": 20000,
            "remaining": 20000,
        }]

    def test_one_budget_per_category_and_month(self, services, family):
        data = {"category_id": family["groceries"]["id"], "amount": 100, "month": 3, "year": 2026}
        services.budgets.create(data)
        with pytest.raises(ConflictError):
            services.budgets.create(data)

    @pytest.mark.parametrize("month, year", [(0, 2026), (13, 2026), (3, 1999)])
    def test_month_and_year_are_validated(self, services, family, month, year):
        with pytest.raises(ValidationError):
            services.budgets.create({"category_id": family["groceries"]["id"], "amount": 100,
                                     "month": month, "year": year})


# ===== SAVING GOALS =====

class TestSavingGoals:

    def test_contributions_complete_the_goal(self, services, family):
        goal = services.goals.create({"name": "Bike", "target_amount": 30000})
        assert goal["status"] == "active"
        assert goal["current_amount"] == 0

        goal = services.goals.contribute(goal["id"], 10000)
        assert goal["current_amount"] == 10000
        assert goal["status"] == "active"

        goal = services.goals.contribute(goal["id"], 25000)
        assert goal["current_amount"] == 35000
        assert goal["status"] == "completed"

        with pytest.raises(ValidationError):
            services.goals.contribute(goal["id"], 100)

    def test_contribution_must_be_positive(self, services, family):
        goal = services.goals.create({"name": "Bike", "target_amount": 30000})
        with pytest.raises(ValidationError):
            services.goals.contribute(goal["id"], 0)


# ===== ALLOWANCES =====

class TestAllowances:

    def test_spent_and_remaining_cover_the_period(self, services, family):
        child = family["child"]
        pocket = services.accounts.create(child["id"], {"name": "Pocket", "type": "cash"})
        allowance = services.allowances.create({"user_id": child["id"], "amount": 3000, "period_start": "2026-03-01"})

        book(services, child, pocket, -400, "2026-03-02")
        book(services, child, pocket, -350, "2026-03-31")
        book(services, child, pocket, -999, "2026-04-01")
        book(services, child, pocket, 500, "2026-03-10")

        current = services.allowances.get(allowance["id"])
        assert current["spent"] == 750
        assert current["remaining"] == 2250
        assert services.allowances.get_for_user(child["id"])["id"] == allowance["id"]

    def test_only_children_get_allowances(self, services, family):
        with pytest.raises(ValidationError):
            services.allowances.create({"user_id": family["member"]["id"], "amount": 3000,
                                        "period_start": "2026-03-01"})

    def test_user_without_allowance(self, services, family):
        with pytest.raises(NotFoundError):
            services.allowances.get_for_user(family["child"]["id"])


# ===== REPORTS =====

class TestReports:

    @pytest.fixture
    def march(self, services, family):
        admin, member = family["admin"], family["member"]
        shared = services.accounts.create(member["id"], {"name": "Joint", "type": "checking"})
        book(services, admin, family["checking"], 300000, "2026-03-01", family["salary"], "Salary")
        book(services, admin, family["checking"], -30000, "2026-03-05", family["groceries"], "Market",
             tags=["food"])
        book(services, member, shared, -10000, "2026-03-06", family["groceries"], "Bakery", tags=["food", "treat"])
        book(services, admin, family["checking"], -5000, "2026-02-20", family["groceries"], "Old market")
        return family

    def test_monthly_summary(self, services, march):
        summary = services.reports.monthly_summary(march["admin"]["id"], 3, 2026)
        assert summary == {"month": 3, "year": 2026, "total_income": 300000, "total_expense": 30000, "net": 270000}

    def test_family_scope_covers_everyone(self, services, march):
        summary = services.reports.monthly_summary(None, 3, 2026)
        assert summary["total_expense"] == 40000

    def test_spending_by_category_percentages(self, services, family):
        admin, checking = family["admin"], family["checking"]
        transport = services.categories.create({"name": "Transport", "type": "expense"})
        book(services, admin, checking, -7500, "2026-03-05", family["groceries"])
        book(services, admin, checking, -2500, "2026-03-06", transport)

        rows = services.reports.spending_by_category(admin["id"], 3, 2026)

        assert [(r["category_name"], r["total_amount"], r["percentage"]) for r in rows] == [
            ("Groceries", 7500, 75.0),
            ("Transport", 2500, 25.0),
        ]

    def test_spending_by_category_empty_month(self, services, family):
        assert services.reports.spending_by_category(family["admin"]["id"], 3, 2026) == []

    def test_spending_by_member_orders_by_expense(self, services, march):
        rows = services.reports.spending_by_member(3, 2026)
        assert [(r["user_name"], r["total_expense"], r["net"]) for r in rows] == [
            ("Ann Admin", 30000, 270000),
            ("Mark Member", 10000, -10000),
        ]

    def test_trends(self, services, march):
        rows = services.reports.trends(march["admin"]["id"], months=2, today=date(2026, 3, 31))
        assert [(r["year"], r["month"], r["total_expense"]) for r in rows] == [(2026, 2, 5000), (2026, 3, 30000)]

    def test_dashboard(self, services, march):
        dashboard = services.reports.dashboard(march["admin"]["id"], 3, 2026)
        assert {a["name"] for a in dashboard["accounts"]} == {"Checking", "Savings"}
        assert dashboard["month_summary"]["net"] == 270000
        assert dashboard["recent_transactions"][0]["description"] == "Market"

    def test_search_filters(self, services, march):
        result = services.reports.search({"description": "MARKET", "min_amount": "10000"})
        assert [t["description"] for t in result["transactions"]] == ["Market"]
        assert result["total_count"] == 1

        by_tag = services.reports.search({"tags": ["treat"]})
        assert [t["description"] for t in by_tag["transactions"]] == ["Bakery"]

        scoped = services.reports.search({"user_id": march["admin"]["id"], "start_date": "2026-03-01"})
        assert scoped["total_count"] == 2

    def test_search_caps_results(self, services, family):
        for day in range(1, 29):
            for _ in range(4):
                book(services, family["admin"], family["checking"], -100, f"2026-02-{day:02d}")
        result = services.reports.search({})
        assert result["total_count"] == 112
        assert len(result["transactions"]) == 100
