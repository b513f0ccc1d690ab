"""
Composition root: builds the connection pool, the stores and every service
from a Config. The Flask app, the CLI and the tests all start here.
"""

from dataclasses import dataclass

from .csv_io import CsvService
from .db import ConnectionPool
from .ledger import LedgerService
from .recurring import RecurringGenerator
from .repositories import (
    AccountStore,
    AllowanceStore,
    BillReminderStore,
    BudgetStore,
    CategoryStore,
    ReportStore,
    SavingGoalStore,
    TransactionStore,
    UserStore,
)
from .schema import initialize_database
from .services import (
    AccountService,
    AllowanceService,
    AuthService,
    BillReminderService,
    BudgetService,
    CategoryService,
    ReportService,
    SavingGoalService,
)


@dataclass
class Services:
    config: object
    pool: ConnectionPool
    ledger: LedgerService
    recurring: RecurringGenerator
    auth: AuthService
    accounts: AccountService
    categories: CategoryService
    budgets: BudgetService
    goals: SavingGoalService
    bills: BillReminderService
    allowances: AllowanceService
    reports: ReportService
    csv: CsvService

    def close(self):
        self.pool.close()


def build_services(config, initialize=True):
    """Wire everything for `config`. With `initialize`, create/migrate the database first."""
    if initialize:
        initialize_database(config.db_path)

    pool = ConnectionPool(config.db_path, max_size=config.pool_size, timeout=config.pool_timeout)

    users = UserStore()
    accounts = AccountStore()
    categories = CategoryStore()
    transactions = TransactionStore()
    bills = BillReminderStore()

    ledger = LedgerService(
        pool,
        transactions,
        accounts,
        categories,
        bills,
        lock_transfer_edits=config.lock_transfer_edits,
    )

    return Services(
        config=config,
        pool=pool,
        ledger=ledger,
        recurring=RecurringGenerator(pool, transactions, ledger),
        auth=AuthService(pool, users),
        accounts=AccountService(pool, accounts, ledger),
        categories=CategoryService(pool, categories),
        budgets=BudgetService(pool, BudgetStore(), categories),
        goals=SavingGoalService(pool, SavingGoalStore()),
        bills=BillReminderService(pool, bills, ledger),
        allowances=AllowanceService(pool, AllowanceStore(), users),
        reports=ReportService(pool, ReportStore(), accounts),
        csv=CsvService(pool, transactions, ledger),
    )
