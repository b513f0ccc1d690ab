"""
fambudget - Demo Data Generator

Generates a realistic fake household for demo mode: an admin parent, a
second parent and a child, their accounts, the standard categories and a few
months of transaction history. Everything is written through the services,
so balances stay consistent with the ledger.
"""

import random
from datetime import date, timedelta

from faker import Faker

from .dates import add_months, format_date
from .log import get_logger

logger = get_logger(__name__)

DEMO_PASSWORD = "demo-password"

DEFAULT_CATEGORIES = [
    {"name": "Salary", "type": "income", "icon": "briefcase"},
    {"name": "Housing", "type": "expense", "icon": "home"},
    {"name": "Utilities", "type": "expense", "icon": "bolt"},
    {"name": "Groceries", "type": "expense", "icon": "cart"},
    {"name": "Dining", "type": "expense", "icon": "utensils"},
    {"name": "Transportation", "type": "expense", "icon": "car"},
    {"name": "Entertainment", "type": "expense", "icon": "film"},
    {"name": "Healthcare", "type": "expense", "icon": "heart"},
    {"name": "Kids", "type": "expense", "icon": "child"},
]

# Amounts are in cents.
EXPENSE_TEMPLATES = [
    {"category": "Groceries", "descriptions": ["Lidl", "Aldi", "Farmers Market", "Corner Shop"], "min": 2500, "max": 12000, "frequency": 4},
    {"category": "Dining", "descriptions": ["Pizza Place", "Thai Restaurant", "Coffee Shop", "Burger Bar"], "min": 800, "max": 6500, "frequency": 5},
    {"category": "Transportation", "descriptions": ["Fuel Station", "Bus Pass", "Parking"], "min": 300, "max": 6000, "frequency": 7},
    {"category": "Entertainment", "descriptions": ["Cinema", "Concert Tickets", "Bowling", "Streaming Rental"], "min": 1000, "max": 8000, "frequency": 14},
    {"category": "Healthcare", "descriptions": ["Pharmacy", "Doctor Copay", "Dentist"], "min": 1500, "max": 15000, "frequency": 30},
]

CHILD_SPENDING = ["Comic Shop", "Ice Cream", "Cinema Snacks", "Game Store"]


def generate_demo_data(services, months=3, today=None, seed=None):
    """
    Populate an empty database with a demo family.

    Creates:
    - admin, member and child users (password DEMO_PASSWORD)
    - checking, savings and cash accounts with opening balances
    - default categories, monthly salary and rent templates
    - `months` months of random expenses, a few transfers
    - bill reminders, a budget, a saving goal and the child's allowance

    Returns a dict with the created users, account ids and counts.
    """
    today = today or date.today()
    fake = Faker()
    rng = random.Random(seed)
    if seed is not None:
        Faker.seed(seed)

    start_date = add_months(today.replace(day=1), -months)
    logger.info("demo_data_started", start_date=str(start_date), end_date=str(today))

    # ===== USERS =====

    family_name = fake.last_name()
    users = {}
    for role, first_name in (("admin", fake.first_name()), ("member", fake.first_name()), ("child", fake.first_name())):
        data = {
            "email": f"{first_name}.{family_name}.{role}@example.com".lower(),
            "password": DEMO_PASSWORD,
            "name": f"{first_name} {family_name}",
        }
        if role == "admin" and not services.auth.list_users():
            users[role] = services.auth.register(data)
        else:
            users[role] = services.auth.create_user(dict(data, role=role))

    admin_id = users["admin"]["id"]
    child_id = users["child"]["id"]

    # ===== CATEGORIES =====

    categories = {cat["name"]: cat["id"] for cat in services.categories.list()}
    for cat in DEFAULT_CATEGORIES:
        if cat["name"] not in categories:
            categories[cat["name"]] = services.categories.create(cat)["id"]

    # ===== ACCOUNTS =====

    checking = services.accounts.create(
        admin_id, {"name": "Family Checking", "type": "checking", "currency": "EUR", "balance": 350000}, today=start_date
    )
    savings = services.accounts.create(
        admin_id, {"name": "Rainy Day Savings", "type": "savings", "currency": "EUR", "balance": 1200000}, today=start_date
    )
    pocket = services.accounts.create(
        child_id, {"name": "Pocket Money", "type": "cash", "currency": "EUR", "balance": 2000}, today=start_date
    )

    # ===== RECURRING TEMPLATES =====

    templates = [
        {"description": "Salary - " + fake.company(), "amount": 420000, "type": "income",
         "category_id": categories["Salary"], "rule": {"frequency": "monthly", "day": 25}},
        {"description": "Rent", "amount": -145000, "type": "expense",
         "category_id": categories["Housing"], "rule": {"frequency": "monthly", "day": 1}},
    ]
    for tmpl in templates:
        services.ledger.create_transaction(admin_id, {
            "account_id": checking["id"],
            "category_id": tmpl["category_id"],
            "amount": tmpl["amount"],
            "type": tmpl["type"],
            "description": tmpl["description"],
            "date": start_date,
            "is_shared": True,
            "is_recurring": True,
            "recurring_rule": tmpl["rule"],
        })
    generated = services.recurring.generate(admin_id, today)

    # ===== RANDOM EXPENSES =====

    expense_count = 0
    day = start_date
    while day <= today:
        for template in EXPENSE_TEMPLATES:
            if rng.random() < 1.0 / template["frequency"]:
                services.ledger.create_transaction(admin_id, {
                    "account_id": checking["id"],
                    "category_id": categories[template["category"]],
                    "amount": -rng.randint(template["min"], template["max"]),
                    "type": "expense",
                    "description": rng.choice(template["descriptions"]),
                    "date": day,
                    "is_shared": True,
                    "tags": ["demo"],
                })
                expense_count += 1
        if rng.random() < 0.15:
            services.ledger.create_transaction(child_id, {
                "account_id": pocket["id"],
                "category_id": categories["Kids"],
                "amount": -rng.randint(100, 900),
                "type": "expense",
                "description": rng.choice(CHILD_SPENDING),
                "date": day,
            })
            expense_count += 1
        day += timedelta(days=1)

    # ===== TRANSFERS =====

    transfer_count = 0
    month_start = start_date
    while month_start <= today:
        services.ledger.create_transfer(
            admin_id, checking["id"], savings["id"], 25000,
            description="Monthly savings", txn_date=month_start + timedelta(days=1),
        )
        transfer_count += 1
        month_start = add_months(month_start, 1)

    # ===== PLANNING =====

    for bill in (
        {"name": "Electricity", "amount": 8500, "due_day": 15, "frequency": "monthly", "category_id": categories["Utilities"]},
        {"name": "Internet", "amount": 4000, "due_day": 10, "frequency": "monthly", "category_id": categories["Utilities"]},
        {"name": "Car Insurance", "amount": 48000, "due_day": 1, "frequency": "yearly", "category_id": categories["Transportation"]},
    ):
        services.bills.create(dict(bill, account_id=checking["id"]), today=today)

    services.budgets.create({
        "category_id": categories["Groceries"], "amount": 60000, "month": today.month, "year": today.year,
    })
    services.goals.create({
        "name": "Family Holiday", "target_amount": 300000,
        "target_date": format_date(add_months(today, 8)), "priority": 1,
    })
    services.allowances.create({
        "user_id": child_id, "amount": 3000, "period_start": format_date(today.replace(day=1)),
    })

    summary = {
        "users": {role: user["email"] for role, user in users.items()},
        "accounts": {"checking": checking["id"], "savings": savings["id"], "pocket": pocket["id"]},
        "recurring_generated": generated.generated,
        "expenses": expense_count,
        "transfers": transfer_count,
    }
    logger.info("demo_data_finished", **summary)
    return summary
