"""
fambudget - Ledger Bookkeeping

LedgerService owns every write that moves money. Each public method runs in
exactly one unit of work: the transaction row and the balance adjustments
it implies either all commit or all roll back.

Balance rules (amounts are signed minor units, positive = inflow):

    create    balance[account] += amount
              balance[destination] -= amount          (transfers only)
    delete    the exact reverse of create
    update    if amount or account changed:
                  balance[original account] -= original amount
                  balance[effective account] += effective amount

A transfer is one row on the source account with a negative amount and
`transfer_to_account_id` set, so the destination gains `-amount`.
"""

from .dates import advance_due_date, format_date, parse_date
from .errors import NotFoundError, ValidationError
from .log import get_logger
from .models import TRANSACTION_TYPES, RecurringRule

logger = get_logger(__name__)


def parse_amount(value, field="amount"):
    """Accept integers (or integral strings) only; money is never fractional here."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} is required and must be an integer (minor units)")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValidationError(f"{field} must be an integer (minor units), got {value!r}")


def _parse_id(value, field):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"invalid {field} {value!r}")


def _parse_tags(value):
    if value is None:
        return None
    if not isinstance(value, (list, tuple)) or not all(isinstance(t, str) for t in value):
        raise ValidationError("tags must be a list of strings")
    return [t.strip() for t in value if t.strip()]


class LedgerService:

    def __init__(self, pool, transactions, accounts, categories, bills, lock_transfer_edits=True):
        self.pool = pool
        self.transactions = transactions
        self.accounts = accounts
        self.categories = categories
        self.bills = bills
        self.lock_transfer_edits = lock_transfer_edits

    # =========================================================================
    # VALIDATION HELPERS
    # =========================================================================

    def _require_account(self, conn, account_id, field="account_id"):
        account_id = _parse_id(account_id, field)
        if not self.accounts.find_by_id(conn, account_id):
            raise NotFoundError("account", account_id)
        return account_id

    def _optional_category(self, conn, category_id):
        if category_id in (None, ""):
            return None
        category_id = _parse_id(category_id, "category_id")
        if not self.categories.find_by_id(conn, category_id):
            raise ValidationError(f"category {category_id} does not exist")
        return category_id

    def _validate_create(self, conn, request):
        txn_type = request.get("type")
        if txn_type not in TRANSACTION_TYPES:
            raise ValidationError(
                f"invalid type '{txn_type}', expected one of {', '.join(TRANSACTION_TYPES)}"
            )

        amount = parse_amount(request.get("amount"))
        if amount == 0:
            raise ValidationError("amount must be non-zero")

        txn_date = parse_date(request.get("date"))
        account_id = self._require_account(conn, request.get("account_id"))

        destination = request.get("transfer_to_account_id")
        if txn_type == "transfer":
            if destination in (None, ""):
                raise ValidationError("transfer_to_account_id is required for transfers")
            destination = self._require_account(conn, destination, "transfer_to_account_id")
            if destination == account_id:
                raise ValidationError("cannot transfer to the same account")
        elif destination not in (None, ""):
            raise ValidationError("transfer_to_account_id is only allowed on transfers")
        else:
            destination = None

        rule = request.get("recurring_rule")
        if rule is not None:
            rule = RecurringRule.from_dict(rule)

        description = request.get("description") or ""
        if not isinstance(description, str):
            raise ValidationError("description must be a string")

        return {
            "account_id": account_id,
            "category_id": self._optional_category(conn, request.get("category_id")),
            "amount": amount,
            "type": txn_type,
            "description": description,
            "date": format_date(txn_date),
            "is_shared": bool(request.get("is_shared")),
            "is_recurring": bool(request.get("is_recurring")),
            "recurring_rule": rule,
            "tags": _parse_tags(request.get("tags")),
            "transfer_to_account_id": destination,
        }

    # =========================================================================
    # WRITES
    # =========================================================================

    def record(self, conn, user_id, request, template_id=None):
        """Insert and apply balance effects on the caller's connection (no commit)."""
        data = self._validate_create(conn, request)
        data["template_id"] = template_id
        txn_id = self.transactions.create(conn, user_id, data)

        self.accounts.adjust_balance(conn, data["account_id"], data["amount"])
        if data["type"] == "transfer":
            self.accounts.adjust_balance(conn, data["transfer_to_account_id"], -data["amount"])

        return self.transactions.find_by_id(conn, txn_id)

    def create_transaction(self, user_id, request):
        """Record a transaction and move the balance(s) it affects."""
        with self.pool.unit_of_work() as conn:
            txn = self.record(conn, user_id, request)
        logger.info(
            "transaction_created",
            transaction_id=txn["id"],
            user_id=user_id,
            account_id=txn["account_id"],
            amount=txn["amount"],
            type=txn["type"],
        )
        return txn

    def update_transaction(self, transaction_id, request):
        """
        Partially update a transaction.

        When `amount` or `account_id` is supplied the original amount is
        taken back off the original account and the effective amount is
        applied to the effective account. The transfer destination is never
        re-adjusted; editing amount/account of a transfer is refused while
        lock_transfer_edits is on.
        """
        with self.pool.unit_of_work() as conn:
            original = self.transactions.find_by_id(conn, transaction_id)
            if not original:
                raise NotFoundError("transaction", transaction_id)

            changes = {}
            if request.get("account_id") is not None:
                changes["account_id"] = self._require_account(conn, request["account_id"])
            if request.get("amount") is not None:
                changes["amount"] = parse_amount(request["amount"])
                if changes["amount"] == 0:
                    raise ValidationError("amount must be non-zero")
            if "category_id" in request and request["category_id"] is not None:
                changes["category_id"] = self._optional_category(conn, request["category_id"])
            if request.get("description") is not None:
                changes["description"] = str(request["description"])
            if request.get("date") is not None:
                changes["date"] = format_date(parse_date(request["date"]))
            if request.get("is_shared") is not None:
                changes["is_shared"] = bool(request["is_shared"])
            if request.get("tags") is not None:
                changes["tags"] = _parse_tags(request["tags"])

            moves_money = "amount" in changes or "account_id" in changes
            if moves_money and original["type"] == "transfer":
                if self.lock_transfer_edits:
                    raise ValidationError(
                        "amount and account of a transfer cannot be edited; delete and re-create it"
                    )
                if changes.get("account_id", original["account_id"]) == original["transfer_to_account_id"]:
                    raise ValidationError("cannot transfer to the same account")

            self.transactions.update(conn, transaction_id, changes)

            if moves_money:
                effective_account = changes.get("account_id", original["account_id"])
                effective_amount = changes.get("amount", original["amount"])
                self.accounts.adjust_balance(conn, original["account_id"], -original["amount"])
                self.accounts.adjust_balance(conn, effective_account, effective_amount)

            updated = self.transactions.find_by_id(conn, transaction_id)

        logger.info(
            "transaction_updated",
            transaction_id=transaction_id,
            fields=sorted(changes),
            balance_adjusted=moves_money,
        )
        return updated

    def delete_transaction(self, transaction_id):
        """Reverse the balance effects of a transaction, then remove it."""
        with self.pool.unit_of_work() as conn:
            txn = self.transactions.find_by_id(conn, transaction_id)
            if not txn:
                raise NotFoundError("transaction", transaction_id)

            self.accounts.adjust_balance(conn, txn["account_id"], -txn["amount"])
            if txn["type"] == "transfer" and txn["transfer_to_account_id"]:
                self.accounts.adjust_balance(conn, txn["transfer_to_account_id"], txn["amount"])

            self.transactions.delete(conn, transaction_id)

        logger.info(
            "transaction_deleted",
            transaction_id=transaction_id,
            account_id=txn["account_id"],
            amount=txn["amount"],
        )
        return txn

    def create_transfer(self, user_id, from_account_id, to_account_id, amount, description="", txn_date=None):
        """Move `amount` (> 0) from one account to another as a single transfer row."""
        amount = parse_amount(amount)
        if amount <= 0:
            raise ValidationError("transfer amount must be positive")
        if str(from_account_id) == str(to_account_id):
            raise ValidationError("cannot transfer to the same account")

        txn = self.create_transaction(user_id, {
            "account_id": from_account_id,
            "category_id": None,
            "amount": -amount,
            "type": "transfer",
            "description": description or "Account transfer",
            "date": txn_date,
            "is_shared": True,
            "transfer_to_account_id": to_account_id,
        })
        logger.info("transfer_created", transaction_id=txn["id"], from_account=from_account_id,
                    to_account=to_account_id, amount=amount)
        return txn

    def pay_bill(self, user_id, bill_id, account_id=None, txn_date=None):
        """
        Pay a bill: record the expense and roll `next_due_date` forward one period.

        The account defaults to the bill's own account when none is given.
        """
        with self.pool.unit_of_work() as conn:
            bill = self.bills.find_by_id(conn, bill_id)
            if not bill:
                raise NotFoundError("bill reminder", bill_id)

            if account_id in (None, ""):
                account_id = bill.get("account_id")
            if account_id in (None, ""):
                raise ValidationError("account_id is required to pay this bill")

            txn = self.record(conn, user_id, {
                "account_id": account_id,
                "category_id": bill.get("category_id"),
                "amount": -bill["amount"],
                "type": "expense",
                "description": f"Bill payment: {bill['name']}",
                "date": txn_date,
                "is_shared": True,
            })

            next_due = advance_due_date(parse_date(bill["next_due_date"], "next_due_date"), bill["frequency"])
            self.bills.advance_next_due_date(conn, bill_id, format_date(next_due))

        logger.info(
            "bill_paid",
            bill_id=bill_id,
            transaction_id=txn["id"],
            amount=bill["amount"],
            next_due_date=format_date(next_due),
        )
        return txn

    def recalculate_balances(self, user_id=None):
        """Rewrite cached balances from the ledger. Returns the accounts that were off."""
        corrected = []
        with self.pool.unit_of_work() as conn:
            if user_id is None:
                accounts = self.accounts.find_all(conn)
            else:
                accounts = self.accounts.find_by_user(conn, user_id)

            for account in accounts:
                ledger_balance = self.accounts.ledger_balance(conn, account["id"])
                if ledger_balance != account["balance"]:
                    self.accounts.set_balance(conn, account["id"], ledger_balance)
                    corrected.append({
                        "account_id": account["id"],
                        "name": account["name"],
                        "was": account["balance"],
                        "now": ledger_balance,
                    })

        if corrected:
            logger.warning("balances_corrected", count=len(corrected), accounts=corrected)
        return {"checked": len(accounts), "corrected": corrected}

    # =========================================================================
    # READS
    # =========================================================================

    def get_transaction(self, transaction_id):
        with self.pool.connection() as conn:
            txn = self.transactions.find_by_id(conn, transaction_id)
        if not txn:
            raise NotFoundError("transaction", transaction_id)
        return txn

    def list_transactions(self, user_id, filters=None):
        with self.pool.connection() as conn:
            return self.transactions.find_by_user(conn, user_id, filters)

    def list_all_transactions(self, filters=None):
        with self.pool.connection() as conn:
            return self.transactions.find_all(conn, filters)
