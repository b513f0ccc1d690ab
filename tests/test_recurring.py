from datetime import date

import pytest

from fambudget.errors import ValidationError
from tests.conftest import balance


def make_template(services, family, rule, amount=-1000, txn_date="2026-01-01", description="Streaming"):
    return services.ledger.create_transaction(family["admin"]["id"], {
        "account_id": family["checking"]["id"],
        "amount": amount,
        "type": "expense",
        "description": description,
        "date": txn_date,
        "is_recurring": True,
        "recurring_rule": rule,
        "tags": ["subscription"],
    })


def occurrences(services, family):
    txns = services.ledger.list_transactions(family["admin"]["id"])
    return sorted((t for t in txns if not t["is_recurring"]), key=lambda t: t["date"])


class TestGenerate:

    def test_monthly_template_fills_gap_to_cutoff(self, services, family):
        template = make_template(services, family, {"frequency": "monthly", "day": 1})

        result = services.recurring.generate(family["admin"]["id"], date(2026, 3, 1))

        assert result.generated == 2
        assert result.templates == 1
        assert result.errors == []
        generated = occurrences(services, family)
        assert [t["date"] for t in generated] == ["2026-02-01", "2026-03-01"]
        assert all(t["template_id"] == template["id"] for t in generated)
        assert all(t["tags"] == ["subscription"] for t in generated)
        # template itself plus two copies
        assert balance(services, family["checking"]["id"]) == -3000

    def test_second_run_creates_nothing(self, services, family):
        make_template(services, family, {"frequency": "monthly", "day": 1})
        services.recurring.generate(family["admin"]["id"], "2026-03-01")

        result = services.recurring.generate(family["admin"]["id"], "2026-03-01")

        assert result.generated == 0
        assert len(occurrences(services, family)) == 2

    def test_later_cutoff_continues_from_latest(self, services, family):
        make_template(services, family, {"frequency": "weekly"}, txn_date="2026-01-01")
        services.recurring.generate(family["admin"]["id"], "2026-01-15")

        result = services.recurring.generate(family["admin"]["id"], "2026-01-29")

        assert result.generated == 2
        assert [t["date"] for t in occurrences(services, family)] == [
            "2026-01-08", "2026-01-15", "2026-01-22", "2026-01-29",
        ]

    def test_cutoff_before_first_occurrence(self, services, family):
        make_template(services, family, {"frequency": "yearly"})
        result = services.recurring.generate(family["admin"]["id"], "2026-12-31")
        assert result.generated == 0
        assert result.templates == 1

    def test_month_end_day_rolls_into_following_month(self, services, family):
        make_template(services, family, {"frequency": "monthly", "day": 31}, txn_date="2026-01-31")
        services.recurring.generate(family["admin"]["id"], "2026-04-30")
        assert [t["date"] for t in occurrences(services, family)] == ["2026-03-31"]

    def test_month_end_without_pinned_day_rolls_over(self, services, family):
        make_template(services, family, {"frequency": "monthly"}, txn_date="2026-01-31")
        result = services.recurring.generate(family["admin"]["id"], "2026-03-31")
        assert result.generated == 1
        assert [t["date"] for t in occurrences(services, family)] == ["2026-03-03"]

    def test_recurring_transfer_moves_both_balances(self, services, family):
        services.ledger.create_transaction(family["admin"]["id"], {
            "account_id": family["checking"]["id"],
            "amount": -2500,
            "type": "transfer",
            "description": "Savings sweep",
            "date": "2026-01-05",
            "is_recurring": True,
            "recurring_rule": {"frequency": "monthly", "day": 5},
            "transfer_to_account_id": family["savings"]["id"],
        })
        result = services.recurring.generate(family["admin"]["id"], "2026-02-28")
        assert result.generated == 1
        assert balance(services, family["checking"]["id"]) == -5000
        assert balance(services, family["savings"]["id"]) == 5000

    def test_unknown_frequency_is_rejected_on_create(self, services, family):
        with pytest.raises(ValidationError):
            make_template(services, family, {"frequency": "fortnightly"})

    def test_stored_unknown_frequency_falls_back_to_monthly(self, services, family):
        template = make_template(services, family, {"frequency": "monthly"})
        with services.pool.unit_of_work() as conn:
            conn.exec_driver_sql(
                "UPDATE transactions SET recurring_rule = ? WHERE id = ?",
                ('{"frequency": "fortnightly", "day": 0, "day_of_week": 0}', template["id"]),
            )

        result = services.recurring.generate(family["admin"]["id"], "2026-02-15")

        assert result.generated == 1
        assert [t["date"] for t in occurrences(services, family)] == ["2026-02-01"]


class TestFailureIsolation:

    def test_failing_template_does_not_stop_others(self, services, family):
        broken = make_template(services, family, {"frequency": "monthly"}, description="Gym")
        make_template(services, family, {"frequency": "monthly"}, description="Music")
        with services.pool.unit_of_work() as conn:
            conn.exec_driver_sql(
                "UPDATE transactions SET recurring_rule = ? WHERE id = ?",
                ('{"frequency": "monthly", "day": 45}', broken["id"]),
            )

        result = services.recurring.generate(family["admin"]["id"], "2026-03-01")

        assert result.templates == 2
        assert result.generated == 2
        assert len(result.errors) == 1
        assert result.errors[0].startswith(f"template {broken['id']}:")
        assert {t["description"] for t in occurrences(services, family)} == {"Music"}

    def test_occurrence_error_is_reported_with_date(self, services, family):
        template = make_template(services, family, {"frequency": "monthly"})
        with services.pool.unit_of_work() as conn:
            conn.exec_driver_sql("UPDATE transactions SET amount = 0 WHERE id = ?", (template["id"],))

        result = services.recurring.generate(family["admin"]["id"], "2026-03-01")

        assert result.generated == 0
        assert result.errors == [f"template {template['id']} date 2026-02-01: amount must be non-zero"]

    def test_other_users_templates_are_ignored(self, services, family):
        make_template(services, family, {"frequency": "monthly"})
        result = services.recurring.generate(family["member"]["id"], "2026-03-01")
        assert result.templates == 0
        assert result.generated == 0
