"""
fambudget - Application Services

Everything outside the ledger core: users and authentication, accounts,
categories, budgets, saving goals, bill reminders, allowances and reports.

Services validate input, open one unit of work per write, and raise
fambudget.errors exceptions; they never build HTTP responses.
"""

from datetime import date

import bcrypt
from sqlalchemy.exc import IntegrityError

from .dates import BILL_FREQUENCIES, add_months, first_due_date, format_date, month_bounds, parse_date
from .errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .ledger import parse_amount
from .log import get_logger
from .models import ACCOUNT_TYPES, CATEGORY_TYPES, GOAL_STATUSES, ROLES

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 8


def _text(data, field, min_len=1, max_len=200, required=True):
    value = data.get(field)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if not min_len <= len(value) <= max_len:
        raise ValidationError(f"{field} must be between {min_len} and {max_len} characters")
    return value


def _positive(data, field, required=True):
    if data.get(field) is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    value = parse_amount(data[field], field)
    if value <= 0:
        raise ValidationError(f"{field} must be greater than zero")
    return value


def _choice(data, field, choices, required=True):
    value = data.get(field)
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if value not in choices:
        raise ValidationError(f"invalid {field} '{value}', expected one of {', '.join(choices)}")
    return value


def _int_in_range(data, field, low, high=None, required=True):
    value = data.get(field)
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")
    if value < low or (high is not None and value > high):
        bound = f"between {low} and {high}" if high is not None else f"at least {low}"
        raise ValidationError(f"{field} must be {bound}")
    return value


def validate_month_year(month, year):
    month = _int_in_range({"month": month}, "month", 1, 12)
    year = _int_in_range({"year": year}, "year", 2000)
    return month, year


# =============================================================================
# USERS & AUTHENTICATION
# =============================================================================

class AuthService:
    """Registration, login (bcrypt) and admin user management."""

    def __init__(self, pool, users):
        self.pool = pool
        self.users = users

    @staticmethod
    def _hash_password(password):
        if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    @staticmethod
    def _email(data):
        email = _text(data, "email", 3, 254)
        if "@" not in email or email.startswith("@") or email.endswith("@"):
            raise ValidationError(f"invalid email '{email}'")
        return email.lower()

    def _create(self, data, role=None):
        email = self._email(data)
        name = _text(data, "name", 2, 100)
        password_hash = self._hash_password(data.get("password"))

        with self.pool.unit_of_work() as conn:
            if self.users.find_by_email(conn, email):
                raise ConflictError("user with this email already exists")
            if role is None:
                # The first person to register runs the household.
                role = "admin" if self.users.count(conn) == 0 else "member"
            user_id = self.users.create(conn, email, password_hash, name, role)
            user = self.users.find_by_id(conn, user_id)

        logger.info("user_created", user_id=user_id, role=role)
        return user

    def register(self, data):
        return self._create(data)

    def create_user(self, data):
        role = _choice(data, "role", ROLES)
        return self._create(data, role=role)

    def login(self, email, password):
        if not email or not password:
            raise ValidationError("email and password are required")
        with self.pool.connection() as conn:
            record = self.users.find_by_email(conn, str(email).strip().lower())

        if not record or not bcrypt.checkpw(password.encode("utf-8"), record["password_hash"].encode("utf-8")):
            logger.info("login_failed", email=email)
            raise AuthenticationError("invalid email or password")

        record.pop("password_hash")
        logger.info("login_succeeded", user_id=record["id"])
        return record

    def get_user(self, user_id):
        with self.pool.connection() as conn:
            user = self.users.find_by_id(conn, user_id)
        if not user:
            raise NotFoundError("user", user_id)
        return user

    def list_users(self):
        with self.pool.connection() as conn:
            return self.users.find_all(conn)

    def update_user(self, user_id, data):
        changes = {}
        if data.get("name") is not None:
            changes["name"] = _text(data, "name", 2, 100)
        if data.get("role") is not None:
            changes["role"] = _choice(data, "role", ROLES)

        with self.pool.unit_of_work() as conn:
            if not self.users.find_by_id(conn, user_id):
                raise NotFoundError("user", user_id)
            self.users.update(conn, user_id, changes)
            return self.users.find_by_id(conn, user_id)

    def delete_user(self, user_id, acting_user_id=None):
        if acting_user_id is not None and int(user_id) == int(acting_user_id):
            raise PermissionDeniedError("you cannot delete your own user")
        try:
            with self.pool.unit_of_work() as conn:
                if not self.users.find_by_id(conn, user_id):
                    raise NotFoundError("user", user_id)
                # Cascading these rows away would leave the other account's balance unbacked.
                if self.users.has_ledger_on_others_accounts(conn, user_id):
                    raise ConflictError("user has transactions on other members' accounts; delete those first")
                self.users.delete(conn, user_id)
        except IntegrityError:
            raise ConflictError("user has accounts used by other members' transactions")
        logger.info("user_deleted", user_id=user_id)


# =============================================================================
# ACCOUNTS
# =============================================================================

class AccountService:

    def __init__(self, pool, accounts, ledger):
        self.pool = pool
        self.accounts = accounts
        self.ledger = ledger

    def create(self, user_id, data, today=None):
        """
        Open an account. A non-zero opening balance is booked as an
        "Opening balance" transaction so the balance always equals the ledger.
        """
        name = _text(data, "name", 2, 100)
        acc_type = _choice(data, "type", ACCOUNT_TYPES)
        currency = _text(data, "currency", 3, 3, required=False) or "EUR"
        opening = parse_amount(data.get("balance") or 0, "balance")

        with self.pool.unit_of_work() as conn:
            account_id = self.accounts.create(conn, user_id, name, acc_type, currency.upper())
            if opening:
                self.ledger.record(conn, user_id, {
                    "account_id": account_id,
                    "amount": opening,
                    "type": "income" if opening > 0 else "expense",
                    "description": "Opening balance",
                    "date": today or date.today(),
                })
            account = self.accounts.find_by_id(conn, account_id)

        logger.info("account_created", account_id=account_id, user_id=user_id, opening_balance=opening)
        return account

    def get(self, account_id):
        with self.pool.connection() as conn:
            account = self.accounts.find_by_id(conn, account_id)
        if not account:
            raise NotFoundError("account", account_id)
        return account

    def list_for_user(self, user_id):
        with self.pool.connection() as conn:
            return self.accounts.find_by_user(conn, user_id)

    def list_all(self):
        with self.pool.connection() as conn:
            return self.accounts.find_all(conn)

    def update(self, account_id, data):
        changes = {}
        if data.get("name"):
            changes["name"] = _text(data, "name", 2, 100)
        if data.get("type"):
            changes["type"] = _choice(data, "type", ACCOUNT_TYPES)
        if data.get("currency"):
            changes["currency"] = _text(data, "currency", 3, 3).upper()

        with self.pool.unit_of_work() as conn:
            if not self.accounts.find_by_id(conn, account_id):
                raise NotFoundError("account", account_id)
            self.accounts.update(conn, account_id, changes)
            return self.accounts.find_by_id(conn, account_id)

    def delete(self, account_id):
        """Delete an account with its own ledger rows. Accounts involved in transfers are kept."""
        with self.pool.unit_of_work() as conn:
            if not self.accounts.find_by_id(conn, account_id):
                raise NotFoundError("account", account_id)
            if self.accounts.has_transfers(conn, account_id):
                raise ConflictError("account is part of transfers; delete those transfers first")
            removed = self.accounts.delete_transactions(conn, account_id)
            self.accounts.delete(conn, account_id)
        logger.info("account_deleted", account_id=account_id, transactions_removed=removed)


# =============================================================================
# CATEGORIES
# =============================================================================

class CategoryService:

    def __init__(self, pool, categories):
        self.pool = pool
        self.categories = categories

    def _parent(self, conn, parent_id):
        if parent_id in (None, ""):
            return None
        if not self.categories.find_by_id(conn, parent_id):
            raise ValidationError(f"parent category {parent_id} does not exist")
        return int(parent_id)

    def create(self, data):
        name = _text(data, "name", 2, 100)
        cat_type = _choice(data, "type", CATEGORY_TYPES)
        icon = _text(data, "icon", 1, 50, required=False)
        sort_order = _int_in_range(data, "sort_order", 0, required=False) or 0

        with self.pool.unit_of_work() as conn:
            parent_id = self._parent(conn, data.get("parent_id"))
            category_id = self.categories.create(conn, name, cat_type, parent_id, icon, sort_order)
            return self.categories.find_by_id(conn, category_id)

    def get(self, category_id):
        with self.pool.connection() as conn:
            category = self.categories.find_by_id(conn, category_id)
        if not category:
            raise NotFoundError("category", category_id)
        return category

    def list(self):
        with self.pool.connection() as conn:
            return self.categories.find_all(conn)

    def update(self, category_id, data):
        changes = {}
        if data.get("name"):
            changes["name"] = _text(data, "name", 2, 100)
        if data.get("icon"):
            changes["icon"] = _text(data, "icon", 1, 50)
        if data.get("sort_order") is not None:
            changes["sort_order"] = _int_in_range(data, "sort_order", 0)

        with self.pool.unit_of_work() as conn:
            if not self.categories.find_by_id(conn, category_id):
                raise NotFoundError("category", category_id)
            if data.get("parent_id") is not None:
                parent_id = self._parent(conn, data["parent_id"])
                if parent_id == int(category_id):
                    raise ValidationError("a category cannot be its own parent")
                changes["parent_id"] = parent_id
            self.categories.update(conn, category_id, changes)
            return self.categories.find_by_id(conn, category_id)

    def delete(self, category_id):
        with self.pool.unit_of_work() as conn:
            if not self.categories.delete(conn, category_id):
                raise NotFoundError("category", category_id)


# =============================================================================
# BUDGETS
# =============================================================================

class BudgetService:

    def __init__(self, pool, budgets, categories):
        self.pool = pool
        self.budgets = budgets
        self.categories = categories

    def create(self, data):
        amount = _positive(data, "amount")
        month, year = validate_month_year(data.get("month"), data.get("year"))
        category_id = data.get("category_id")
        if category_id in (None, ""):
            raise ValidationError("category_id is required")

        try:
            with self.pool.unit_of_work() as conn:
                if not self.categories.find_by_id(conn, category_id):
                    raise ValidationError(f"category {category_id} does not exist")
                budget_id = self.budgets.create(conn, category_id, amount, month, year)
                return self.budgets.find_by_id(conn, budget_id)
        except IntegrityError:
            raise ConflictError(f"a budget for category {category_id} in {year}-{month:02d} already exists")

    def get(self, budget_id):
        with self.pool.connection() as conn:
            budget = self.budgets.find_by_id(conn, budget_id)
        if not budget:
            raise NotFoundError("budget", budget_id)
        return budget

    def list(self, month=None, year=None):
        with self.pool.connection() as conn:
            return self.budgets.find_all(conn, month, year)

    def update(self, budget_id, data):
        amount = _positive(data, "amount")
        with self.pool.unit_of_work() as conn:
            if not self.budgets.find_by_id(conn, budget_id):
                raise NotFoundError("budget", budget_id)
            self.budgets.update_amount(conn, budget_id, amount)
            return self.budgets.find_by_id(conn, budget_id)

    def delete(self, budget_id):
        with self.pool.unit_of_work() as conn:
            if not self.budgets.delete(conn, budget_id):
                raise NotFoundError("budget", budget_id)

    def summary(self, month, year):
        """Budgeted amount, actual spend and remaining per category for one month."""
        month, year = validate_month_year(month, year)
        start, end = month_bounds(year, month)
        with self.pool.connection() as conn:
            return self.budgets.summary(conn, format_date(start), format_date(end), month, year)


# =============================================================================
# SAVING GOALS
# =============================================================================

class SavingGoalService:

    def __init__(self, pool, goals):
        self.pool = pool
        self.goals = goals

    def create(self, data):
        name = _text(data, "name", 1, 200)
        target = _positive(data, "target_amount")
        priority = _int_in_range(data, "priority", 1, required=False) or 1
        target_date = data.get("target_date")
        if target_date:
            target_date = format_date(parse_date(target_date, "target_date"))

        with self.pool.unit_of_work() as conn:
            goal_id = self.goals.create(conn, name, target, target_date, priority)
            return self.goals.find_by_id(conn, goal_id)

    def get(self, goal_id):
        with self.pool.connection() as conn:
            goal = self.goals.find_by_id(conn, goal_id)
        if not goal:
            raise NotFoundError("saving goal", goal_id)
        return goal

    def list(self):
        with self.pool.connection() as conn:
            return self.goals.find_all(conn)

    def update(self, goal_id, data):
        changes = {}
        if data.get("name") is not None:
            changes["name"] = _text(data, "name", 1, 200)
        if data.get("target_amount") is not None:
            changes["target_amount"] = _positive(data, "target_amount")
        if data.get("target_date"):
            changes["target_date"] = format_date(parse_date(data["target_date"], "target_date"))
        if data.get("priority") is not None:
            changes["priority"] = _int_in_range(data, "priority", 1)
        if data.get("status") is not None:
            changes["status"] = _choice(data, "status", GOAL_STATUSES)

        with self.pool.unit_of_work() as conn:
            if not self.goals.find_by_id(conn, goal_id):
                raise NotFoundError("saving goal", goal_id)
            self.goals.update(conn, goal_id, changes)
            return self.goals.find_by_id(conn, goal_id)

    def contribute(self, goal_id, amount):
        """Add to an active goal; it completes itself once the target is reached."""
        amount = _positive({"amount": amount}, "amount")
        with self.pool.unit_of_work() as conn:
            goal = self.goals.find_by_id(conn, goal_id)
            if not goal:
                raise NotFoundError("saving goal", goal_id)
            if goal["status"] != "active":
                raise ValidationError(f"cannot contribute to a {goal['status']} goal")

            self.goals.add_contribution(conn, goal_id, amount)
            goal = self.goals.find_by_id(conn, goal_id)
            if goal["current_amount"] >= goal["target_amount"]:
                self.goals.update(conn, goal_id, {"status": "completed"})
                goal = self.goals.find_by_id(conn, goal_id)
                logger.info("saving_goal_completed", goal_id=goal_id)
        return goal


# =============================================================================
# BILL REMINDERS
# =============================================================================

class BillReminderService:
    """Bill CRUD and the upcoming-bills view. Paying a bill is LedgerService.pay_bill."""

    def __init__(self, pool, bills, ledger):
        self.pool = pool
        self.bills = bills
        self.ledger = ledger

    def create(self, data, today=None):
        due_day = _int_in_range(data, "due_day", 1, 31)
        bill = {
            "name": _text(data, "name", 1, 200),
            "amount": _positive(data, "amount"),
            "due_day": due_day,
            "frequency": _choice(data, "frequency", BILL_FREQUENCIES),
            "category_id": data.get("category_id") or None,
            "account_id": data.get("account_id") or None,
        }
        if data.get("next_due_date"):
            next_due = parse_date(data["next_due_date"], "next_due_date")
        else:
            next_due = first_due_date(due_day, today or date.today())
        bill["next_due_date"] = format_date(next_due)

        try:
            with self.pool.unit_of_work() as conn:
                bill_id = self.bills.create(conn, bill)
                return self.bills.find_by_id(conn, bill_id)
        except IntegrityError:
            raise ValidationError("category_id or account_id does not exist")

    def get(self, bill_id):
        with self.pool.connection() as conn:
            bill = self.bills.find_by_id(conn, bill_id)
        if not bill:
            raise NotFoundError("bill reminder", bill_id)
        return bill

    def list(self):
        with self.pool.connection() as conn:
            return self.bills.find_all(conn)

    def upcoming(self, days=7, today=None):
        """Active bills due within `days` days of `today` (overdue ones included)."""
        days = _int_in_range({"days": days}, "days", 0)
        until = (today or date.today()).toordinal() + days
        with self.pool.connection() as conn:
            return self.bills.find_upcoming(conn, format_date(date.fromordinal(until)))

    def update(self, bill_id, data):
        changes = {}
        if data.get("name") is not None:
            changes["name"] = _text(data, "name", 1, 200)
        if data.get("amount") is not None:
            changes["amount"] = _positive(data, "amount")
        if data.get("due_day") is not None:
            changes["due_day"] = _int_in_range(data, "due_day", 1, 31)
        if data.get("frequency") is not None:
            changes["frequency"] = _choice(data, "frequency", BILL_FREQUENCIES)
        for field in ("category_id", "account_id"):
            if data.get(field) is not None:
                changes[field] = data[field] or None
        if data.get("is_active") is not None:
            changes["is_active"] = bool(data["is_active"])
        if data.get("next_due_date"):
            changes["next_due_date"] = format_date(parse_date(data["next_due_date"], "next_due_date"))

        try:
            with self.pool.unit_of_work() as conn:
                if not self.bills.find_by_id(conn, bill_id):
                    raise NotFoundError("bill reminder", bill_id)
                self.bills.update(conn, bill_id, changes)
                return self.bills.find_by_id(conn, bill_id)
        except IntegrityError:
            raise ValidationError("category_id or account_id does not exist")

    def delete(self, bill_id):
        with self.pool.unit_of_work() as conn:
            if not self.bills.delete(conn, bill_id):
                raise NotFoundError("bill reminder", bill_id)

    def pay(self, user_id, bill_id, account_id=None, txn_date=None):
        return self.ledger.pay_bill(user_id, bill_id, account_id, txn_date or date.today())


# =============================================================================
# ALLOWANCES
# =============================================================================

class AllowanceService:

    def __init__(self, pool, allowances, users):
        self.pool = pool
        self.allowances = allowances
        self.users = users

    def _with_spending(self, conn, allowance):
        start = parse_date(allowance["period_start"], "period_start")
        end = add_months(start, 1)
        spent = self.allowances.spent_in_period(
            conn, allowance["user_id"], format_date(start), format_date(end)
        )
        allowance["spent"] = spent
        allowance["remaining"] = allowance["amount"] - spent
        return allowance

    def create(self, data):
        amount = _positive(data, "amount")
        period_start = format_date(parse_date(data.get("period_start"), "period_start"))
        user_id = data.get("user_id")
        if user_id in (None, ""):
            raise ValidationError("user_id is required")

        with self.pool.unit_of_work() as conn:
            user = self.users.find_by_id(conn, user_id)
            if not user:
                raise NotFoundError("user", user_id)
            if user["role"] != "child":
                raise ValidationError("allowances can only be given to child users")
            allowance_id = self.allowances.create(conn, user["id"], amount, period_start)
            return self._with_spending(conn, self.allowances.find_by_id(conn, allowance_id))

    def get(self, allowance_id):
        with self.pool.connection() as conn:
            allowance = self.allowances.find_by_id(conn, allowance_id)
            if not allowance:
                raise NotFoundError("allowance", allowance_id)
            return self._with_spending(conn, allowance)

    def get_for_user(self, user_id):
        with self.pool.connection() as conn:
            allowance = self.allowances.find_by_user(conn, user_id)
            if not allowance:
                raise NotFoundError("allowance for user", user_id)
            return self._with_spending(conn, allowance)

    def list(self):
        with self.pool.connection() as conn:
            return [self._with_spending(conn, a) for a in self.allowances.find_all(conn)]

    def update(self, allowance_id, data):
        changes = {}
        if data.get("amount") is not None:
            changes["amount"] = _positive(data, "amount")
        if data.get("period_start"):
            changes["period_start"] = format_date(parse_date(data["period_start"], "period_start"))

        with self.pool.unit_of_work() as conn:
            if not self.allowances.find_by_id(conn, allowance_id):
                raise NotFoundError("allowance", allowance_id)
            self.allowances.update(conn, allowance_id, changes)
            return self._with_spending(conn, self.allowances.find_by_id(conn, allowance_id))


# =============================================================================
# REPORTS
# =============================================================================

class ReportService:
    """Read-only reporting. Pass `user_id=None` for family-wide (admin) figures."""

    def __init__(self, pool, reports, accounts):
        self.pool = pool
        self.reports = reports
        self.accounts = accounts

    def _month_summary(self, conn, user_id, month, year):
        start, end = month_bounds(year, month)
        income, expense = self.reports.month_summary(conn, user_id, format_date(start), format_date(end))
        return {
            "month": month,
            "year": year,
            "total_income": income,
            "total_expense": expense,
            "net": income - expense,
        }

    def monthly_summary(self, user_id, month, year):
        month, year = validate_month_year(month, year)
        with self.pool.connection() as conn:
            return self._month_summary(conn, user_id, month, year)

    def dashboard(self, user_id, month, year):
        month, year = validate_month_year(month, year)
        with self.pool.connection() as conn:
            if user_id is None:
                accounts = self.accounts.find_all(conn)
            else:
                accounts = self.accounts.find_by_user(conn, user_id)
            return {
                "accounts": accounts,
                "month_summary": self._month_summary(conn, user_id, month, year),
                "recent_transactions": self.reports.recent_transactions(conn, user_id, 10),
            }

    def spending_by_category(self, user_id, month, year):
        month, year = validate_month_year(month, year)
        start, end = month_bounds(year, month)
        with self.pool.connection() as conn:
            rows = self.reports.spending_by_category(conn, user_id, format_date(start), format_date(end))

        grand_total = sum(row["total_amount"] for row in rows)
        for row in rows:
            row["percentage"] = round(row["total_amount"] / grand_total * 100, 2) if grand_total else 0.0
        return rows

    def spending_by_member(self, month, year):
        month, year = validate_month_year(month, year)
        start, end = month_bounds(year, month)
        with self.pool.connection() as conn:
            rows = self.reports.spending_by_member(conn, format_date(start), format_date(end))
        for row in rows:
            row["net"] = row["total_income"] - row["total_expense"]
        return rows

    def trends(self, user_id, months=6, today=None):
        """Income, expense and net per calendar month over the last `months` months."""
        months = _int_in_range({"months": months}, "months", 1, 120)
        since = add_months(today or date.today(), -months)
        with self.pool.connection() as conn:
            rows = self.reports.monthly_totals(conn, user_id, format_date(since))
        for row in rows:
            row["net"] = row["total_income"] - row["total_expense"]
        return rows

    def search(self, filters):
        filters = dict(filters)
        for field in ("min_amount", "max_amount"):
            if filters.get(field) not in (None, ""):
                filters[field] = parse_amount(filters[field], field)
            else:
                filters[field] = None
        for field in ("start_date", "end_date"):
            if filters.get(field):
                filters[field] = format_date(parse_date(filters[field], field))

        with self.pool.connection() as conn:
            transactions, total = self.reports.search(conn, filters)
        return {"transactions": transactions, "total_count": total}
