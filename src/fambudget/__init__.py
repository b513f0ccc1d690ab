"""
fambudget - Family Budgeting REST Backend

Accounts, a balance-keeping transaction ledger, recurring transaction
generation, bill reminders, allowances, budgets, saving goals and reports,
served over a Flask JSON API on top of SQLite.

License: MIT
"""

__version__ = "1.0.0"
