"""
Small value types shared by the ledger and the recurring generator.

Everything else moves around as plain dicts built from result rows.
"""

import json
from dataclasses import dataclass, field, asdict

from .dates import RECURRING_FREQUENCIES
from .db import row_to_dict
from .errors import ValidationError

TRANSACTION_TYPES = ("expense", "income", "transfer")
ACCOUNT_TYPES = ("checking", "savings", "credit", "cash")
CATEGORY_TYPES = ("expense", "income")
ROLES = ("admin", "member", "child")
GOAL_STATUSES = ("active", "completed", "cancelled")


@dataclass
class RecurringRule:
    """How often a recurring template repeats. `day_of_week` is stored but never consulted."""

    frequency: str
    day: int = 0
    day_of_week: int = 0

    @classmethod
    def from_dict(cls, data, strict=True):
        if isinstance(data, RecurringRule):
            return data
        if not isinstance(data, dict):
            raise ValidationError("recurring_rule must be an object")
        frequency = str(data.get("frequency") or "").lower()
        if strict and frequency not in RECURRING_FREQUENCIES:
            raise ValidationError(
                f"invalid recurring frequency '{frequency}', "
                f"expected one of {', '.join(RECURRING_FREQUENCIES)}"
            )
        try:
            day = int(data.get("day") or 0)
            day_of_week = int(data.get("day_of_week", data.get("dayOfWeek")) or 0)
        except (TypeError, ValueError):
            raise ValidationError("recurring_rule day and day_of_week must be integers")
        if not 0 <= day <= 31:
            raise ValidationError("recurring_rule day must be between 0 (unset) and 31")
        return cls(frequency=frequency, day=day, day_of_week=day_of_week)

    @classmethod
    def from_json(cls, text):
        """Load a stored rule. Unknown frequencies are kept; the generator falls back to monthly."""
        if not text:
            return None
        return cls.from_dict(json.loads(text), strict=False)

    def to_json(self):
        return json.dumps(asdict(self))


@dataclass
class GenerateResult:
    generated: int = 0
    templates: int = 0
    errors: list = field(default_factory=list)

    def to_dict(self):
        return {"generated": self.generated, "templates": self.templates, "errors": list(self.errors)}


def decode_transaction(row):
    """Turn a transactions row into an API dict (JSON columns decoded, flags as bools)."""
    if row is None:
        return None
    txn = row_to_dict(row)
    txn["is_shared"] = bool(txn.get("is_shared"))
    txn["is_recurring"] = bool(txn.get("is_recurring"))
    rule = txn.get("recurring_rule")
    txn["recurring_rule"] = json.loads(rule) if rule else None
    tags = txn.get("tags")
    txn["tags"] = json.loads(tags) if tags else []
    return txn
