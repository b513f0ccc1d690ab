"""
fambudget - Persistence Stores

One store class per table. Stores hold no connection of their own: every
method takes the SQLAlchemy connection of the caller's unit of work as its first
argument, so a service can run several store calls inside one database
transaction.

Stores return plain dicts (see db.row_to_dict) and raise ConsistencyError
only where a missing row would corrupt a multi-step write.
"""

import json

from .db import row_to_dict, rows_to_dicts
from .errors import ConsistencyError
from .models import decode_transaction

TRANSACTION_COLUMNS = (
    "id, user_id, account_id, category_id, amount, type, description, date, "
    "is_shared, is_recurring, recurring_rule, tags, transfer_to_account_id, "
    "template_id, created_at, updated_at"
)


def _update_statement(table, entity_id, changes, allowed, touch=True):
    """Build `UPDATE table SET ... WHERE id = ?` for the allowed keys present in `changes`."""
    sets = []
    params = []
    for column in allowed:
        if column in changes:
            sets.append(f"{column} = ?")
            params.append(changes[column])
    if not sets:
        return None, None
    if touch:
        sets.append("updated_at = CURRENT_TIMESTAMP")
    params.append(entity_id)
    return f"UPDATE {table} SET {', '.join(sets)} WHERE id = ?", tuple(params)


# =============================================================================
# USERS
# =============================================================================

class UserStore:
    PUBLIC_COLUMNS = "id, email, name, role, created_at, updated_at"

    def create(self, conn, email, password_hash, name, role):
        cursor = conn.exec_driver_sql(
            "INSERT INTO users (email, password_hash, name, role) VALUES (?, ?, ?, ?)",
            (email, password_hash, name, role),
        )
        return cursor.lastrowid

    def count(self, conn):
        return conn.exec_driver_sql("SELECT COUNT(*) FROM users").fetchone()[0]

    def find_by_id(self, conn, user_id):
        row = conn.exec_driver_sql(
            f"SELECT {self.PUBLIC_COLUMNS} FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        return row_to_dict(row)

    def find_by_email(self, conn, email):
        """Includes password_hash; only the auth service should call this."""
        row = conn.exec_driver_sql("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
        return row_to_dict(row)

    def find_all(self, conn):
        rows = conn.exec_driver_sql(
            f"SELECT {self.PUBLIC_COLUMNS} FROM users ORDER BY created_at, id"
        ).fetchall()
        return rows_to_dicts(rows)

    def update(self, conn, user_id, changes):
        sql, params = _update_statement("users", user_id, changes, ("name", "role", "password_hash"))
        if sql:
            conn.exec_driver_sql(sql, params)

    def delete(self, conn, user_id):
        return conn.exec_driver_sql("DELETE FROM users WHERE id = ?", (user_id,)).rowcount

    def has_ledger_on_others_accounts(self, conn, user_id):
        """True when one of the user's transactions posts to, or transfers into, another member's account."""
        row = conn.exec_driver_sql(
            """
            SELECT 1
            FROM transactions t
            JOIN accounts src ON src.id = t.account_id
            LEFT JOIN accounts dst ON dst.id = t.transfer_to_account_id
            WHERE t.user_id = ?
              AND (src.user_id != ? OR (dst.id IS NOT NULL AND dst.user_id != ?))
            LIMIT 1
            """,
            (user_id, user_id, user_id),
        ).fetchone()
        return row is not None


# =============================================================================
# ACCOUNTS
# =============================================================================

class AccountStore:

    def create(self, conn, user_id, name, acc_type, currency, balance=0):
        cursor = conn.exec_driver_sql(
            "INSERT INTO accounts (user_id, name, type, currency, balance) VALUES (?, ?, ?, ?, ?)",
            (user_id, name, acc_type, currency, balance),
        )
        return cursor.lastrowid

    def find_by_id(self, conn, account_id):
        row = conn.exec_driver_sql("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
        return row_to_dict(row)

    def find_by_user(self, conn, user_id):
        rows = conn.exec_driver_sql(
            "SELECT * FROM accounts WHERE user_id = ? ORDER BY name", (user_id,)
        ).fetchall()
        return rows_to_dicts(rows)

    def find_all(self, conn):
        rows = conn.exec_driver_sql("SELECT * FROM accounts ORDER BY user_id, name").fetchall()
        return rows_to_dicts(rows)

    def update(self, conn, account_id, changes):
        sql, params = _update_statement(
            "accounts", account_id, changes, ("name", "type", "currency"), touch=False
        )
        if sql:
            conn.exec_driver_sql(sql, params)

    def delete(self, conn, account_id):
        return conn.exec_driver_sql("DELETE FROM accounts WHERE id = ?", (account_id,)).rowcount

    def adjust_balance(self, conn, account_id, delta):
        """Add `delta` to the cached balance in a single statement."""
        cursor = conn.exec_driver_sql(
            "UPDATE accounts SET balance = balance + ? WHERE id = ?", (delta, account_id)
        )
        if cursor.rowcount != 1:
            raise ConsistencyError(f"balance update failed: account {account_id} not found")

    def ledger_balance(self, conn, account_id):
        """Balance implied by the ledger: inflows on the account minus transfers into it."""
        row = conn.exec_driver_sql(
            """
            SELECT
                COALESCE((SELECT SUM(amount) FROM transactions WHERE account_id = ?), 0)
              - COALESCE((SELECT SUM(amount) FROM transactions WHERE transfer_to_account_id = ?), 0)
            """,
            (account_id, account_id),
        ).fetchone()
        return row[0]

    def set_balance(self, conn, account_id, balance):
        conn.exec_driver_sql("UPDATE accounts SET balance = ? WHERE id = ?", (balance, account_id))

    def has_transfers(self, conn, account_id):
        row = conn.exec_driver_sql(
            "SELECT 1 FROM transactions WHERE type = 'transfer' "
            "AND (account_id = ? OR transfer_to_account_id = ?) LIMIT 1",
            (account_id, account_id),
        ).fetchone()
        return row is not None

    def delete_transactions(self, conn, account_id):
        """Remove the account's own (non-transfer) ledger rows before the account itself."""
        return conn.exec_driver_sql(
            "DELETE FROM transactions WHERE account_id = ? AND transfer_to_account_id IS NULL",
            (account_id,),
        ).rowcount


# =============================================================================
# CATEGORIES
# =============================================================================

class CategoryStore:

    def create(self, conn, name, cat_type, parent_id=None, icon=None, sort_order=0):
        cursor = conn.exec_driver_sql(
            "INSERT INTO categories (parent_id, name, type, icon, sort_order) VALUES (?, ?, ?, ?, ?)",
            (parent_id, name, cat_type, icon, sort_order),
        )
        return cursor.lastrowid

    def find_by_id(self, conn, category_id):
        row = conn.exec_driver_sql("SELECT * FROM categories WHERE id = ?", (category_id,)).fetchone()
        return row_to_dict(row)

    def find_all(self, conn):
        rows = conn.exec_driver_sql("SELECT * FROM categories ORDER BY sort_order, name").fetchall()
        return rows_to_dicts(rows)

    def update(self, conn, category_id, changes):
        sql, params = _update_statement(
            "categories", category_id, changes, ("name", "type", "parent_id", "icon", "sort_order"), touch=False
        )
        if sql:
            conn.exec_driver_sql(sql, params)

    def delete(self, conn, category_id):
        return conn.exec_driver_sql("DELETE FROM categories WHERE id = ?", (category_id,)).rowcount


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionStore:

    def create(self, conn, user_id, data):
        """
        Insert a transaction row and return its id.

        `data` holds already-validated values; `recurring_rule` is a
        RecurringRule or None and `tags` a list or None.
        """
        rule = data.get("recurring_rule")
        tags = data.get("tags")
        cursor = conn.exec_driver_sql(
            """
            INSERT INTO transactions
                (user_id, account_id, category_id, amount, type, description, date,
                 is_shared, is_recurring, recurring_rule, tags, transfer_to_account_id, template_id)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user_id,
                data["account_id"],
                data.get("category_id"),
                data["amount"],
                data["type"],
                data.get("description") or "",
                data["date"],
                1 if data.get("is_shared") else 0,
                1 if data.get("is_recurring") else 0,
                rule.to_json() if rule else None,
                json.dumps(list(tags)) if tags else None,
                data.get("transfer_to_account_id"),
                data.get("template_id"),
            ),
        )
        return cursor.lastrowid

    def find_by_id(self, conn, transaction_id):
        row = conn.exec_driver_sql(
            f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE id = ?", (transaction_id,)
        ).fetchone()
        return decode_transaction(row)

    def _filtered(self, conn, where, params, filters):
        filters = filters or {}
        if filters.get("account_id"):
            where.append("(account_id = ? OR transfer_to_account_id = ?)")
            params.extend([filters["account_id"], filters["account_id"]])
        if filters.get("category_id"):
            where.append("category_id = ?")
            params.append(filters["category_id"])
        if filters.get("type"):
            where.append("type = ?")
            params.append(filters["type"])
        if filters.get("start_date"):
            where.append("date >= ?")
            params.append(filters["start_date"])
        if filters.get("end_date"):
            where.append("date <= ?")
            params.append(filters["end_date"])
        if filters.get("is_shared") is not None:
            where.append("is_shared = ?")
            params.append(1 if filters["is_shared"] else 0)

        sql = f"SELECT {TRANSACTION_COLUMNS} FROM transactions"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY date DESC, id DESC"
        return [decode_transaction(row) for row in conn.exec_driver_sql(sql, tuple(params)).fetchall()]

    def find_by_user(self, conn, user_id, filters=None):
        return self._filtered(conn, ["user_id = ?"], [user_id], filters)

    def find_all(self, conn, filters=None):
        return self._filtered(conn, [], [], filters)

    def update(self, conn, transaction_id, changes):
        """Write the supplied columns; `tags` is encoded here."""
        changes = dict(changes)
        if "tags" in changes:
            changes["tags"] = json.dumps(list(changes["tags"])) if changes["tags"] else None
        if "is_shared" in changes:
            changes["is_shared"] = 1 if changes["is_shared"] else 0
        sql, params = _update_statement(
            "transactions",
            transaction_id,
            changes,
            ("account_id", "category_id", "amount", "description", "date", "is_shared", "tags"),
        )
        if sql:
            conn.exec_driver_sql(sql, params)

    def delete(self, conn, transaction_id):
        return conn.exec_driver_sql("DELETE FROM transactions WHERE id = ?", (transaction_id,)).rowcount

    def find_recurring_templates(self, conn, user_id):
        rows = conn.exec_driver_sql(
            f"""
            SELECT {TRANSACTION_COLUMNS} FROM transactions
            WHERE user_id = ? AND is_recurring = 1 AND recurring_rule IS NOT NULL
            ORDER BY date DESC, id DESC
            """,
            (user_id,),
        ).fetchall()
        return [decode_transaction(row) for row in rows]

    def find_latest_occurrence(self, conn, template):
        """
        The most recent generated copy of `template`.

        Linked rows (template_id) always match; unlinked rows match on
        account, category and description.
        """
        row = conn.exec_driver_sql(
            f"""
            SELECT {TRANSACTION_COLUMNS} FROM transactions
            WHERE user_id = ?
              AND is_recurring = 0
              AND (
                    template_id = ?
                 OR (template_id IS NULL
                     AND account_id = ?
                     AND category_id IS ?
                     AND description = ?)
              )
            ORDER BY date DESC, id DESC
            LIMIT 1
            """,
            (
                template["user_id"],
                template["id"],
                template["account_id"],
                template["category_id"],
                template["description"],
            ),
        ).fetchone()
        return decode_transaction(row)

    def find_for_export(self, conn, user_id, start_date=None, end_date=None):
        where = ["user_id = ?"]
        params = [user_id]
        if start_date:
            where.append("date >= ?")
            params.append(start_date)
        if end_date:
            where.append("date <= ?")
            params.append(end_date)
        rows = conn.exec_driver_sql(
            "SELECT date, amount, type, description, category_id, account_id, is_shared "
            f"FROM transactions WHERE {' AND '.join(where)} ORDER BY date, id",
            tuple(params),
        ).fetchall()
        return rows_to_dicts(rows)


# =============================================================================
# BUDGETS
# =============================================================================

class BudgetStore:

    def create(self, conn, category_id, amount, month, year):
        cursor = conn.exec_driver_sql(
            "INSERT INTO budgets (category_id, amount, month, year) VALUES (?, ?, ?, ?)",
            (category_id, amount, month, year),
        )
        return cursor.lastrowid

    def find_by_id(self, conn, budget_id):
        row = conn.exec_driver_sql("SELECT * FROM budgets WHERE id = ?", (budget_id,)).fetchone()
        return row_to_dict(row)

    def find_all(self, conn, month=None, year=None):
        where = []
        params = []
        if month:
            where.append("month = ?")
            params.append(month)
        if year:
            where.append("year = ?")
            params.append(year)
        sql = "SELECT * FROM budgets"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY year DESC, month DESC"
        return rows_to_dicts(conn.exec_driver_sql(sql, tuple(params)).fetchall())

    def update_amount(self, conn, budget_id, amount):
        conn.exec_driver_sql("UPDATE budgets SET amount = ? WHERE id = ?", (amount, budget_id))

    def delete(self, conn, budget_id):
        return conn.exec_driver_sql("DELETE FROM budgets WHERE id = ?", (budget_id,)).rowcount

    def summary(self, conn, start_date, end_date, month, year):
        """Budgeted vs. actual spend per category for one month (`end_date` exclusive)."""
        rows = conn.exec_driver_sql(
            """
            SELECT
                c.id AS category_id,
                c.name AS category_name,
                b.amount AS budget_amount,
                COALESCE(ABS(SUM(CASE WHEN t.amount < 0 THEN t.amount ELSE 0 END)), 0) AS actual_amount
            FROM budgets b
            JOIN categories c ON c.id = b.category_id
            LEFT JOIN transactions t ON t.category_id = b.category_id
                AND t.date >= ? AND t.date < ?
            WHERE b.month = ? AND b.year = ?
            GROUP BY c.id, c.name, b.amount
            ORDER BY c.name
            """,
            (start_date, end_date, month, year),
        ).fetchall()
        summaries = rows_to_dicts(rows)
        for item in summaries:
            item["remaining"] = item["budget_amount"] - item["actual_amount"]
        return summaries


# =============================================================================
# SAVING GOALS
# =============================================================================

class SavingGoalStore:

    def create(self, conn, name, target_amount, target_date=None, priority=1):
        cursor = conn.exec_driver_sql(
            "INSERT INTO saving_goals (name, target_amount, target_date, priority) VALUES (?, ?, ?, ?)",
            (name, target_amount, target_date, priority),
        )
        return cursor.lastrowid

    def find_by_id(self, conn, goal_id):
        row = conn.exec_driver_sql("SELECT * FROM saving_goals WHERE id = ?", (goal_id,)).fetchone()
        return row_to_dict(row)

    def find_all(self, conn):
        rows = conn.exec_driver_sql("SELECT * FROM saving_goals ORDER BY priority, name").fetchall()
        return rows_to_dicts(rows)

    def update(self, conn, goal_id, changes):
        sql, params = _update_statement(
            "saving_goals", goal_id, changes, ("name", "target_amount", "target_date", "priority", "status")
        )
        if sql:
            conn.exec_driver_sql(sql, params)

    def add_contribution(self, conn, goal_id, amount):
        conn.exec_driver_sql(
            "UPDATE saving_goals SET current_amount = current_amount + ?, updated_at = CURRENT_TIMESTAMP "
            "WHERE id = ?",
            (amount, goal_id),
        )


# =============================================================================
# BILL REMINDERS
# =============================================================================

class BillReminderStore:

    def create(self, conn, data):
        cursor = conn.exec_driver_sql(
            """
            INSERT INTO bill_reminders
                (name, amount, due_day, frequency, category_id, account_id, next_due_date)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                data["name"],
                data["amount"],
                data["due_day"],
                data["frequency"],
                data.get("category_id"),
                data.get("account_id"),
                data["next_due_date"],
            ),
        )
        return cursor.lastrowid

    def find_by_id(self, conn, bill_id):
        row = conn.exec_driver_sql("SELECT * FROM bill_reminders WHERE id = ?", (bill_id,)).fetchone()
        return _decode_bill(row)

    def find_all(self, conn):
        rows = conn.exec_driver_sql("SELECT * FROM bill_reminders ORDER BY next_due_date").fetchall()
        return [_decode_bill(row) for row in rows]

    def find_upcoming(self, conn, until_date):
        rows = conn.exec_driver_sql(
            "SELECT * FROM bill_reminders WHERE is_active = 1 AND next_due_date <= ? "
            "ORDER BY next_due_date",
            (until_date,),
        ).fetchall()
        return [_decode_bill(row) for row in rows]

    def update(self, conn, bill_id, changes):
        changes = dict(changes)
        if "is_active" in changes:
            changes["is_active"] = 1 if changes["is_active"] else 0
        sql, params = _update_statement(
            "bill_reminders",
            bill_id,
            changes,
            ("name", "amount", "due_day", "frequency", "category_id", "account_id", "is_active", "next_due_date"),
        )
        if sql:
            conn.exec_driver_sql(sql, params)

    def advance_next_due_date(self, conn, bill_id, next_due_date):
        cursor = conn.exec_driver_sql(
            "UPDATE bill_reminders SET next_due_date = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (next_due_date, bill_id),
        )
        if cursor.rowcount != 1:
            raise ConsistencyError(f"due date update failed: bill reminder {bill_id} not found")

    def delete(self, conn, bill_id):
        return conn.exec_driver_sql("DELETE FROM bill_reminders WHERE id = ?", (bill_id,)).rowcount


def _decode_bill(row):
    bill = row_to_dict(row)
    if bill is not None:
        bill["is_active"] = bool(bill["is_active"])
    return bill


# =============================================================================
# ALLOWANCES
# =============================================================================

class AllowanceStore:

    def create(self, conn, user_id, amount, period_start):
        cursor = conn.exec_driver_sql(
            "INSERT INTO allowances (user_id, amount, period_start) VALUES (?, ?, ?)",
            (user_id, amount, period_start),
        )
        return cursor.lastrowid

    def find_by_id(self, conn, allowance_id):
        row = conn.exec_driver_sql("SELECT * FROM allowances WHERE id = ?", (allowance_id,)).fetchone()
        return row_to_dict(row)

    def find_by_user(self, conn, user_id):
        row = conn.exec_driver_sql(
            "SELECT * FROM allowances WHERE user_id = ? ORDER BY period_start DESC, id DESC LIMIT 1",
            (user_id,),
        ).fetchone()
        return row_to_dict(row)

    def find_all(self, conn):
        rows = conn.exec_driver_sql("SELECT * FROM allowances ORDER BY created_at, id").fetchall()
        return rows_to_dicts(rows)

    def update(self, conn, allowance_id, changes):
        sql, params = _update_statement("allowances", allowance_id, changes, ("amount", "period_start"))
        if sql:
            conn.exec_driver_sql(sql, params)

    def spent_in_period(self, conn, user_id, start_date, end_date):
        """Sum of abs(amount) of the user's outflows in [start_date, end_date)."""
        row = conn.exec_driver_sql(
            "SELECT COALESCE(SUM(ABS(amount)), 0) FROM transactions "
            "WHERE user_id = ? AND amount < 0 AND date >= ? AND date < ?",
            (user_id, start_date, end_date),
        ).fetchone()
        return row[0]


# =============================================================================
# REPORTS
# =============================================================================

class ReportStore:
    """Read-only aggregate queries. `user_id=None` means the whole family."""

    @staticmethod
    def _scope(user_id, column="user_id"):
        if user_id is None:
            return "1 = 1", []
        return f"{column} = ?", [user_id]

    def month_summary(self, conn, user_id, start_date, end_date):
        scope, params = self._scope(user_id)
        row = conn.exec_driver_sql(
            f"""
            SELECT
                COALESCE(SUM(CASE WHEN amount > 0 THEN amount ELSE 0 END), 0) AS total_income,
                COALESCE(SUM(CASE WHEN amount < 0 THEN ABS(amount) ELSE 0 END), 0) AS total_expense
            FROM transactions
            WHERE {scope} AND date >= ? AND date < ?
            """,
            tuple(params + [start_date, end_date]),
        ).fetchone()
        return row.total_income, row.total_expense

    def recent_transactions(self, conn, user_id, limit=10):
        scope, params = self._scope(user_id)
        rows = conn.exec_driver_sql(
            f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE {scope} "
            "ORDER BY date DESC, created_at DESC, id DESC LIMIT ?",
            tuple(params + [limit]),
        ).fetchall()
        return [decode_transaction(row) for row in rows]

    def spending_by_category(self, conn, user_id, start_date, end_date):
        scope, params = self._scope(user_id, "t.user_id")
        rows = conn.exec_driver_sql(
            f"""
            SELECT
                t.category_id,
                c.name AS category_name,
                COALESCE(SUM(ABS(t.amount)), 0) AS total_amount
            FROM transactions t
            JOIN categories c ON c.id = t.category_id
            WHERE {scope} AND t.amount < 0 AND t.date >= ? AND t.date < ?
            GROUP BY t.category_id, c.name
            ORDER BY total_amount DESC
            """,
            tuple(params + [start_date, end_date]),
        ).fetchall()
        return rows_to_dicts(rows)

    def spending_by_member(self, conn, start_date, end_date):
        rows = conn.exec_driver_sql(
            """
            SELECT
                t.user_id,
                u.name AS user_name,
                COALESCE(SUM(CASE WHEN t.amount < 0 THEN ABS(t.amount) ELSE 0 END), 0) AS total_expense,
                COALESCE(SUM(CASE WHEN t.amount > 0 THEN t.amount ELSE 0 END), 0) AS total_income
            FROM transactions t
            JOIN users u ON u.id = t.user_id
            WHERE t.date >= ? AND t.date < ?
            GROUP BY t.user_id, u.name
            ORDER BY total_expense DESC
            """,
            (start_date, end_date),
        ).fetchall()
        return rows_to_dicts(rows)

    def monthly_totals(self, conn, user_id, start_date):
        scope, params = self._scope(user_id)
        rows = conn.exec_driver_sql(
            f"""
            SELECT
                CAST(strftime('%m', date) AS INTEGER) AS month,
                CAST(strftime('%Y', date) AS INTEGER) AS year,
                COALESCE(SUM(CASE WHEN amount > 0 THEN amount ELSE 0 END), 0) AS total_income,
                COALESCE(SUM(CASE WHEN amount < 0 THEN ABS(amount) ELSE 0 END), 0) AS total_expense
            FROM transactions
            WHERE {scope} AND date >= ?
            GROUP BY year, month
            ORDER BY year, month
            """,
            tuple(params + [start_date]),
        ).fetchall()
        return rows_to_dicts(rows)

    def search(self, conn, filters, limit=100):
        where = []
        params = []
        if filters.get("user_id") is not None:
            where.append("user_id = ?")
            params.append(filters["user_id"])
        if filters.get("description"):
            where.append("LOWER(description) LIKE ?")
            params.append(f"%{filters['description'].lower()}%")
        if filters.get("min_amount") is not None:
            where.append("ABS(amount) >= ?")
            params.append(filters["min_amount"])
        if filters.get("max_amount") is not None:
            where.append("ABS(amount) <= ?")
            params.append(filters["max_amount"])
        if filters.get("start_date"):
            where.append("date >= ?")
            params.append(filters["start_date"])
        if filters.get("end_date"):
            where.append("date <= ?")
            params.append(filters["end_date"])
        if filters.get("category_id"):
            where.append("category_id = ?")
            params.append(filters["category_id"])
        if filters.get("account_id"):
            where.append("account_id = ?")
            params.append(filters["account_id"])
        tags = filters.get("tags") or []
        if tags:
            placeholders = ", ".join("?" for _ in tags)
            where.append(
                f"EXISTS (SELECT 1 FROM json_each(transactions.tags) WHERE json_each.value IN ({placeholders}))"
            )
            params.extend(tags)

        clause = " WHERE " + " AND ".join(where) if where else ""
        total = conn.exec_driver_sql(f"SELECT COUNT(*) FROM transactions{clause}", tuple(params)).fetchone()[0]
        rows = conn.exec_driver_sql(
            f"SELECT {TRANSACTION_COLUMNS} FROM transactions{clause} "
            "ORDER BY date DESC, created_at DESC, id DESC LIMIT ?",
            tuple(params + [limit]),
        ).fetchall()
        return [decode_transaction(row) for row in rows], total
