"""
fambudget - SQLite Database Setup & Initialization

Creates the fambudget schema. Every statement is idempotent
(`IF NOT EXISTS`), so `create_database` is safe to call on every start-up;
later changes ship as numbered migrations (see migrations.py).

Database Schema Overview:
------------------------
- users: Family members with a role (admin, member, child)
- accounts: Checking, savings, credit and cash accounts with a cached balance
- categories: Expense and income categories, optionally nested
- transactions: The ledger; one row per transaction, transfers included
- budgets: Monthly spending limits per category
- saving_goals: Family saving targets and progress
- bill_reminders: Regular bills with their next due date
- allowances: Monthly spending allowances for child users
- schema_version: Track applied database migrations

Key Design Features:
- Amounts are INTEGER minor units (cents); never floating point
- accounts.balance is derived data, kept equal to the ledger sum
- Foreign key constraints for referential integrity
- Accounts referenced by transactions cannot be deleted
- Cascade deletes for user data (complete user removal)
"""

from contextlib import closing
from pathlib import Path

from .db import open_connection
from .log import get_logger
from .migrations import run_all_pending

logger = get_logger(__name__)

EXPECTED_TABLES = (
    "users",
    "accounts",
    "categories",
    "transactions",
    "budgets",
    "saving_goals",
    "bill_reminders",
    "allowances",
    "schema_version",
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    name TEXT NOT NULL,
    role TEXT CHECK(role IN ('admin', 'member', 'child')) NOT NULL DEFAULT 'member',
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    type TEXT CHECK(type IN ('checking', 'savings', 'credit', 'cash')) NOT NULL,
    currency TEXT NOT NULL DEFAULT 'EUR',
    balance INTEGER NOT NULL DEFAULT 0,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_accounts_user_id ON accounts(user_id);

CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    parent_id INTEGER DEFAULT NULL,
    name TEXT NOT NULL,
    type TEXT CHECK(type IN ('expense', 'income')) NOT NULL,
    icon TEXT DEFAULT NULL,
    sort_order INTEGER NOT NULL DEFAULT 0,
    FOREIGN KEY (parent_id) REFERENCES categories(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    account_id INTEGER NOT NULL,
    category_id INTEGER DEFAULT NULL,
    amount INTEGER NOT NULL,
    type TEXT CHECK(type IN ('expense', 'income', 'transfer')) NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    date TEXT NOT NULL,
    is_shared INTEGER NOT NULL DEFAULT 0,
    is_recurring INTEGER NOT NULL DEFAULT 0,
    recurring_rule TEXT DEFAULT NULL,
    tags TEXT DEFAULT NULL,
    transfer_to_account_id INTEGER DEFAULT NULL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
    FOREIGN KEY (account_id) REFERENCES accounts(id),
    FOREIGN KEY (transfer_to_account_id) REFERENCES accounts(id),
    FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE SET NULL
);
CREATE INDEX IF NOT EXISTS idx_transactions_user_date ON transactions(user_id, date DESC);
CREATE INDEX IF NOT EXISTS idx_transactions_account ON transactions(account_id);
CREATE INDEX IF NOT EXISTS idx_transactions_category ON transactions(category_id);
CREATE INDEX IF NOT EXISTS idx_transactions_recurring ON transactions(user_id, is_recurring);

CREATE TABLE IF NOT EXISTS budgets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    category_id INTEGER NOT NULL,
    amount INTEGER NOT NULL,
    month INTEGER NOT NULL CHECK(month BETWEEN 1 AND 12),
    year INTEGER NOT NULL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE CASCADE,
    UNIQUE(category_id, month, year)
);

CREATE TABLE IF NOT EXISTS saving_goals (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    target_amount INTEGER NOT NULL,
    current_amount INTEGER NOT NULL DEFAULT 0,
    target_date TEXT DEFAULT NULL,
    priority INTEGER NOT NULL DEFAULT 1,
    status TEXT CHECK(status IN ('active', 'completed', 'cancelled')) NOT NULL DEFAULT 'active',
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS bill_reminders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    amount INTEGER NOT NULL CHECK(amount > 0),
    due_day INTEGER NOT NULL CHECK(due_day BETWEEN 1 AND 31),
    frequency TEXT CHECK(frequency IN ('monthly', 'quarterly', 'yearly')) NOT NULL,
    category_id INTEGER DEFAULT NULL,
    account_id INTEGER DEFAULT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    next_due_date TEXT NOT NULL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE SET NULL,
    FOREIGN KEY (account_id) REFERENCES accounts(id) ON DELETE SET NULL
);
CREATE INDEX IF NOT EXISTS idx_bill_reminders_due ON bill_reminders(is_active, next_due_date);

CREATE TABLE IF NOT EXISTS allowances (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    amount INTEGER NOT NULL,
    period_start TEXT NOT NULL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_allowances_user_id ON allowances(user_id);

CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    description TEXT NOT NULL,
    applied_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""


def create_database(db_path):
    """
    Create every fambudget table and index that does not exist yet.

    Existing tables and data are left untouched. Use reset_database() to
    start from an empty file.
    """
    with closing(open_connection(db_path)) as conn:
        conn.executescript(SCHEMA)
    logger.info("database_schema_ready", db_path=str(db_path))
    return True


def initialize_database(db_path):
    """Create the base schema, then apply any pending migrations. Returns migrations applied."""
    create_database(db_path)
    return run_all_pending(db_path)


def reset_database(db_path):
    """
    [WARNING] Delete the database file and create a fresh one.
    All data will be permanently lost!
    """
    db_path = Path(db_path)
    if db_path.exists():
        logger.warning("database_deleted", db_path=str(db_path))
        db_path.unlink()
    return initialize_database(db_path)


def verify_schema(db_path):
    """Return the list of expected tables missing from the database (empty when healthy)."""
    with closing(open_connection(db_path)) as conn:
        rows = conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table'"
        ).fetchall()
    present = {row["name"] for row in rows}
    missing = [table for table in EXPECTED_TABLES if table not in present]
    if missing:
        logger.error("schema_tables_missing", missing=missing)
    return missing
