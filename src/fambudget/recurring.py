"""
fambudget - Recurring Transaction Generator

A recurring template is a transaction with `is_recurring = 1` and a
`recurring_rule`. Generating materializes ordinary (non-recurring) copies of
each template for every occurrence date after the latest existing copy, up
to and including the cutoff date.

Each occurrence is written in its own unit of work through the ledger, so a
copy moves its account balance exactly like a hand-entered transaction. A
failing occurrence is rolled back on its own, recorded in the result, and
stops that template; the other templates still run. Running the generator
twice with the same cutoff creates nothing the second time.
"""

from sqlalchemy.exc import SQLAlchemyError

from .dates import next_occurrence, parse_date
from .errors import FambudgetError
from .log import get_logger
from .models import GenerateResult, RecurringRule

logger = get_logger(__name__)


class RecurringGenerator:

    def __init__(self, pool, transactions, ledger):
        self.pool = pool
        self.transactions = transactions
        self.ledger = ledger

    def generate(self, user_id, cutoff):
        """Create every due occurrence of the user's templates up to `cutoff` (inclusive)."""
        cutoff = parse_date(cutoff, "cutoff")
        result = GenerateResult()

        with self.pool.connection() as conn:
            templates = self.transactions.find_recurring_templates(conn, user_id)
        result.templates = len(templates)

        for template in templates:
            try:
                result.generated += self._generate_for_template(template, cutoff, result)
            except FambudgetError as e:
                result.errors.append(f"template {template['id']}: {e.message}")
                logger.warning("recurring_template_skipped", template_id=template["id"], error=e.message)

        logger.info(
            "recurring_generated",
            user_id=user_id,
            cutoff=str(cutoff),
            generated=result.generated,
            templates=result.templates,
            errors=len(result.errors),
        )
        return result

    def _generate_for_template(self, template, cutoff, result):
        rule = RecurringRule.from_dict(template["recurring_rule"], strict=False)

        with self.pool.connection() as conn:
            latest = self.transactions.find_latest_occurrence(conn, template)
        start = parse_date(latest["date"] if latest else template["date"])

        created = 0
        occurrence = next_occurrence(start, rule)
        while occurrence <= cutoff:
            request = {
                "account_id": template["account_id"],
                "category_id": template["category_id"],
                "amount": template["amount"],
                "type": template["type"],
                "description": template["description"],
                "date": occurrence,
                "is_shared": template["is_shared"],
                "is_recurring": False,
                "tags": template["tags"] or None,
                "transfer_to_account_id": template["transfer_to_account_id"],
            }
            try:
                with self.pool.unit_of_work() as conn:
                    self.ledger.record(conn, template["user_id"], request, template_id=template["id"])
            except (FambudgetError, SQLAlchemyError) as e:
                message = getattr(e, "message", str(e))
                result.errors.append(f"template {template['id']} date {occurrence}: {message}")
                logger.warning(
                    "recurring_occurrence_failed",
                    template_id=template["id"],
                    date=str(occurrence),
                    error=message,
                )
                break

            created += 1
            occurrence = next_occurrence(occurrence, rule)

        return created
