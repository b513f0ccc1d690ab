"""
fambudget - Flask REST API

RESTful API for the family budgeting backend. Flask with Flask-Login for
session-based authentication; endpoints for:

Authentication & Users:
- Registration (first user becomes admin), login, logout, current user
- Admin management of family members and their roles

Money:
- Accounts, transactions, transfers
- Recurring transaction generation
- Bill reminders and bill payment
- CSV import/export

Planning & Analytics:
- Categories, monthly budgets with budget-vs-actual summary
- Saving goals and contributions
- Child allowances with spent/remaining
- Dashboard, monthly summary, spending by category/member, trends, search

Security:
- Flask-Login session cookies
- Role gates (admin, member, child) per route
- CORS enabled with credentials for the web client
- bcrypt password hashing (handled by the auth service)

Author: fambudget contributors
License: MIT
"""

import datetime

from flask import Blueprint, Flask, Response, current_app, jsonify, request
from flask.json.provider import DefaultJSONProvider
from flask_cors import CORS
from flask_login import current_user, login_required
from werkzeug.exceptions import HTTPException

from .auth import SessionController, role_required
from .config import Config
from .container import build_services
from .dates import parse_date
from .errors import FambudgetError, PermissionDeniedError, ValidationError
from .log import configure_logging, get_logger

logger = get_logger(__name__)


class CustomJSONProvider(DefaultJSONProvider):
    """Serialize dates as ISO 8601 strings and keep field order."""

    sort_keys = False

    def default(self, obj):
        if isinstance(obj, (datetime.datetime, datetime.date)):
            return obj.isoformat()
        return super().default(obj)


api = Blueprint("api", __name__)


# =============================================================================
# REQUEST HELPERS
# =============================================================================

def _services():
    return current_app.extensions["fambudget"]


def _json():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("invalid request body")
    return data


def _query_int(name, default=None, low=None, high=None):
    raw = request.args.get(name)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f"invalid {name}")
    if (low is not None and value < low) or (high is not None and value > high):
        raise ValidationError(f"invalid {name}")
    return value


def _month_year(required=True):
    """month/year query parameters; default to the current month when not required."""
    today = datetime.date.today()
    month = _query_int("month", None if required else today.month, 1, 12)
    year = _query_int("year", None if required else today.year, 2000)
    if month is None or year is None:
        raise ValidationError("month and year are required")
    return month, year


def _today_or(name):
    raw = request.args.get(name)
    if not raw:
        return datetime.date.today()
    return parse_date(raw, name)


def _scope_user():
    """The current user's id, or None (whole family) for an admin passing ?scope=family."""
    if current_user.is_admin and request.args.get("scope") == "family":
        return None
    return current_user.user_id


def _ensure_owner(owner_id):
    if not current_user.is_admin and int(owner_id) != current_user.user_id:
        raise PermissionDeniedError("access denied")


def _transaction_filters():
    filters = {
        "account_id": request.args.get("account_id"),
        "category_id": request.args.get("category_id"),
        "type": request.args.get("type"),
        "start_date": request.args.get("start_date"),
        "end_date": request.args.get("end_date"),
    }
    is_shared = request.args.get("is_shared")
    if is_shared not in (None, ""):
        filters["is_shared"] = is_shared.lower() == "true"
    return filters


# =============================================================================
# HEALTH
# =============================================================================

@api.route("/health", methods=["GET"])
def health():
    with _services().pool.connection() as conn:
        conn.exec_driver_sql("SELECT 1").scalar()
    return jsonify({"status": "ok"})


# =============================================================================
# AUTHENTICATION
# =============================================================================

@api.route("/api/auth/register", methods=["POST"])
def register():
    user = _services().auth.register(_json())
    current_app.extensions["fambudget_sessions"].login(user)
    return jsonify({"success": True, "message": "User registered successfully.", "user": user}), 201


@api.route("/api/auth/login", methods=["POST"])
def login():
    data = _json()
    user = _services().auth.login(data.get("email"), data.get("password"))
    current_app.extensions["fambudget_sessions"].login(user)
    return jsonify({"success": True, "message": "Login successful.", "user": user})


@api.route("/api/auth/logout", methods=["POST"])
@login_required
def logout():
    current_app.extensions["fambudget_sessions"].logout()
    return jsonify({"success": True, "message": "Logged out."})


@api.route("/api/auth/me", methods=["GET"])
@login_required
def me():
    return jsonify(_services().auth.get_user(current_user.user_id))


# =============================================================================
# USERS (admin)
# =============================================================================

@api.route("/api/users", methods=["GET"])
@login_required
@role_required("admin")
def list_users():
    return jsonify(_services().auth.list_users())


@api.route("/api/users", methods=["POST"])
@login_required
@role_required("admin")
def create_user():
    user = _services().auth.create_user(_json())
    return jsonify({"success": True, "user": user}), 201


@api.route("/api/users/<int:user_id>", methods=["GET", "PUT", "DELETE"])
@login_required
@role_required("admin")
def manage_user(user_id):
    auth = _services().auth
    if request.method == "GET":
        return jsonify(auth.get_user(user_id))
    if request.method == "PUT":
        return jsonify({"success": True, "user": auth.update_user(user_id, _json())})
    auth.delete_user(user_id, acting_user_id=current_user.user_id)
    return jsonify({"success": True, "message": f"User {user_id} deleted."})


# =============================================================================
# ACCOUNTS
# =============================================================================

@api.route("/api/accounts", methods=["GET"])
@login_required
def get_accounts():
    accounts = _services().accounts
    if current_user.is_admin:
        return jsonify(accounts.list_all())
    return jsonify(accounts.list_for_user(current_user.user_id))


@api.route("/api/accounts", methods=["POST"])
@login_required
def add_account():
    account = _services().accounts.create(current_user.user_id, _json())
    return jsonify({"success": True, "account": account}), 201


@api.route("/api/accounts/<int:account_id>", methods=["GET", "PUT", "DELETE"])
@login_required
def manage_account(account_id):
    accounts = _services().accounts
    account = accounts.get(account_id)
    _ensure_owner(account["user_id"])

    if request.method == "GET":
        return jsonify(account)
    if request.method == "PUT":
        return jsonify({"success": True, "account": accounts.update(account_id, _json())})
    accounts.delete(account_id)
    return jsonify({"success": True, "message": f"Account {account_id} deleted."})


@api.route("/api/accounts/recalculate", methods=["POST"])
@login_required
@role_required("admin")
def recalculate_balances():
    return jsonify(_services().ledger.recalculate_balances())


# =============================================================================
# CATEGORIES
# =============================================================================

@api.route("/api/categories", methods=["GET"])
@login_required
def get_categories():
    return jsonify(_services().categories.list())


@api.route("/api/categories", methods=["POST"])
@login_required
@role_required("admin", "member")
def add_category():
    category = _services().categories.create(_json())
    return jsonify({"success": True, "category": category}), 201


@api.route("/api/categories/<int:category_id>", methods=["GET"])
@login_required
def get_category(category_id):
    return jsonify(_services().categories.get(category_id))


@api.route("/api/categories/<int:category_id>", methods=["PUT", "DELETE"])
@login_required
@role_required("admin")
def manage_category(category_id):
    categories = _services().categories
    if request.method == "PUT":
        return jsonify({"success": True, "category": categories.update(category_id, _json())})
    categories.delete(category_id)
    return jsonify({"success": True, "message": f"Category {category_id} deleted."})


# =============================================================================
# TRANSACTIONS & TRANSFERS
# =============================================================================

@api.route("/api/transactions", methods=["GET"])
@login_required
def get_transactions():
    ledger = _services().ledger
    user_id = _scope_user()
    if user_id is None:
        return jsonify(ledger.list_all_transactions(_transaction_filters()))
    return jsonify(ledger.list_transactions(user_id, _transaction_filters()))


@api.route("/api/transactions", methods=["POST"])
@login_required
def add_transaction():
    txn = _services().ledger.create_transaction(current_user.user_id, _json())
    return jsonify({"success": True, "transaction": txn}), 201


@api.route("/api/transactions/<int:transaction_id>", methods=["GET", "PUT", "DELETE"])
@login_required
def manage_transaction(transaction_id):
    ledger = _services().ledger
    txn = ledger.get_transaction(transaction_id)
    _ensure_owner(txn["user_id"])

    if request.method == "GET":
        return jsonify(txn)
    if request.method == "PUT":
        return jsonify({"success": True, "transaction": ledger.update_transaction(transaction_id, _json())})
    ledger.delete_transaction(transaction_id)
    return jsonify({"success": True, "message": f"Transaction {transaction_id} deleted."})


@api.route("/api/transactions/generate-recurring", methods=["POST"])
@login_required
@role_required("admin", "member")
def generate_recurring():
    up_to = _today_or("up_to")
    result = _services().recurring.generate(current_user.user_id, up_to)
    return jsonify(result.to_dict())


@api.route("/api/transfers", methods=["POST"])
@login_required
@role_required("admin", "member")
def add_transfer():
    data = _json()
    txn = _services().ledger.create_transfer(
        current_user.user_id,
        data.get("from_account_id"),
        data.get("to_account_id"),
        data.get("amount"),
        description=data.get("description") or "",
        txn_date=data.get("date"),
    )
    return jsonify({"success": True, "transaction": txn}), 201


# =============================================================================
# BUDGETS
# =============================================================================

@api.route("/api/budgets", methods=["GET"])
@login_required
@role_required("admin", "member")
def get_budgets():
    month = _query_int("month", None, 1, 12)
    year = _query_int("year", None, 2000)
    return jsonify(_services().budgets.list(month, year))


@api.route("/api/budgets/summary", methods=["GET"])
@login_required
@role_required("admin", "member")
def budget_summary():
    month, year = _month_year()
    return jsonify(_services().budgets.summary(month, year))


@api.route("/api/budgets/<int:budget_id>", methods=["GET"])
@login_required
@role_required("admin", "member")
def get_budget(budget_id):
    return jsonify(_services().budgets.get(budget_id))


@api.route("/api/budgets", methods=["POST"])
@login_required
@role_required("admin")
def add_budget():
    return jsonify({"success": True, "budget": _services().budgets.create(_json())}), 201


@api.route("/api/budgets/<int:budget_id>", methods=["PUT", "DELETE"])
@login_required
@role_required("admin")
def manage_budget(budget_id):
    budgets = _services().budgets
    if request.method == "PUT":
        return jsonify({"success": True, "budget": budgets.update(budget_id, _json())})
    budgets.delete(budget_id)
    return jsonify({"success": True, "message": f"Budget {budget_id} deleted."})


# =============================================================================
# SAVING GOALS
# =============================================================================

@api.route("/api/saving-goals", methods=["GET"])
@login_required
@role_required("admin", "member")
def get_saving_goals():
    return jsonify(_services().goals.list())


@api.route("/api/saving-goals/<int:goal_id>", methods=["GET"])
@login_required
@role_required("admin", "member")
def get_saving_goal(goal_id):
    return jsonify(_services().goals.get(goal_id))


@api.route("/api/saving-goals", methods=["POST"])
@login_required
@role_required("admin")
def add_saving_goal():
    return jsonify({"success": True, "goal": _services().goals.create(_json())}), 201


@api.route("/api/saving-goals/<int:goal_id>", methods=["PUT"])
@login_required
@role_required("admin")
def update_saving_goal(goal_id):
    return jsonify({"success": True, "goal": _services().goals.update(goal_id, _json())})


@api.route("/api/saving-goals/<int:goal_id>/contribute", methods=["POST"])
@login_required
@role_required("admin")
def contribute_saving_goal(goal_id):
    goal = _services().goals.contribute(goal_id, _json().get("amount"))
    return jsonify({"success": True, "goal": goal})


# =============================================================================
# BILL REMINDERS
# =============================================================================

@api.route("/api/bill-reminders", methods=["GET"])
@login_required
@role_required("admin", "member")
def get_bill_reminders():
    return jsonify(_services().bills.list())


@api.route("/api/bill-reminders/upcoming", methods=["GET"])
@login_required
@role_required("admin", "member")
def upcoming_bills():
    days = _query_int("days", 7, 0)
    return jsonify(_services().bills.upcoming(days))


@api.route("/api/bill-reminders/<int:bill_id>", methods=["GET"])
@login_required
@role_required("admin", "member")
def get_bill_reminder(bill_id):
    return jsonify(_services().bills.get(bill_id))


@api.route("/api/bill-reminders/<int:bill_id>/pay", methods=["POST"])
@login_required
@role_required("admin", "member")
def pay_bill(bill_id):
    data = request.get_json(silent=True) or {}
    txn = _services().bills.pay(
        current_user.user_id,
        bill_id,
        account_id=data.get("account_id"),
        txn_date=data.get("date"),
    )
    return jsonify({"success": True, "transaction": txn}), 201


@api.route("/api/bill-reminders", methods=["POST"])
@login_required
@role_required("admin")
def add_bill_reminder():
    return jsonify({"success": True, "bill": _services().bills.create(_json())}), 201


@api.route("/api/bill-reminders/<int:bill_id>", methods=["PUT", "DELETE"])
@login_required
@role_required("admin")
def manage_bill_reminder(bill_id):
    bills = _services().bills
    if request.method == "PUT":
        return jsonify({"success": True, "bill": bills.update(bill_id, _json())})
    bills.delete(bill_id)
    return jsonify({"success": True, "message": f"Bill reminder {bill_id} deleted."})


# =============================================================================
# ALLOWANCES
# =============================================================================

@api.route("/api/allowances", methods=["GET"])
@login_required
def get_allowances():
    allowances = _services().allowances
    if current_user.role == "child":
        return jsonify(allowances.get_for_user(current_user.user_id))
    return jsonify(allowances.list())


@api.route("/api/allowances/<int:allowance_id>", methods=["GET"])
@login_required
def get_allowance(allowance_id):
    allowance = _services().allowances.get(allowance_id)
    if current_user.role == "child":
        _ensure_owner(allowance["user_id"])
    return jsonify(allowance)


@api.route("/api/allowances", methods=["POST"])
@login_required
@role_required("admin")
def add_allowance():
    return jsonify({"success": True, "allowance": _services().allowances.create(_json())}), 201


@api.route("/api/allowances/<int:allowance_id>", methods=["PUT"])
@login_required
@role_required("admin")
def update_allowance(allowance_id):
    allowance = _services().allowances.update(allowance_id, _json())
    return jsonify({"success": True, "allowance": allowance})


# =============================================================================
# REPORTS & SEARCH
# =============================================================================

@api.route("/api/reports/dashboard", methods=["GET"])
@login_required
def dashboard():
    month, year = _month_year(required=False)
    return jsonify(_services().reports.dashboard(_scope_user(), month, year))


@api.route("/api/reports/monthly", methods=["GET"])
@login_required
def monthly_report():
    month, year = _month_year()
    return jsonify(_services().reports.monthly_summary(_scope_user(), month, year))


@api.route("/api/reports/by-category", methods=["GET"])
@login_required
def spending_by_category():
    month, year = _month_year()
    return jsonify(_services().reports.spending_by_category(_scope_user(), month, year))


@api.route("/api/reports/by-member", methods=["GET"])
@login_required
@role_required("admin")
def spending_by_member():
    month, year = _month_year()
    return jsonify(_services().reports.spending_by_member(month, year))


@api.route("/api/reports/trends", methods=["GET"])
@login_required
def trends():
    months = _query_int("months", 6, 1, 120)
    return jsonify(_services().reports.trends(_scope_user(), months))


@api.route("/api/search", methods=["GET"])
@login_required
def search():
    tags = request.args.get("tags")
    filters = {
        "user_id": _scope_user(),
        "description": request.args.get("description"),
        "min_amount": request.args.get("min_amount"),
        "max_amount": request.args.get("max_amount"),
        "start_date": request.args.get("start_date"),
        "end_date": request.args.get("end_date"),
        "category_id": request.args.get("category_id"),
        "account_id": request.args.get("account_id"),
        "tags": [t.strip() for t in tags.split(",") if t.strip()] if tags else [],
    }
    return jsonify(_services().reports.search(filters))


# =============================================================================
# CSV IMPORT / EXPORT
# =============================================================================

@api.route("/api/export/csv", methods=["GET"])
@login_required
@role_required("admin", "member")
def export_csv():
    text = _services().csv.export_csv(
        current_user.user_id,
        start_date=request.args.get("start_date"),
        end_date=request.args.get("end_date"),
    )
    return Response(
        text,
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=transactions.csv"},
    )


@api.route("/api/import/csv", methods=["POST"])
@login_required
@role_required("admin", "member")
def import_csv():
    upload = request.files.get("file")
    if upload is not None:
        content = upload.read()
    elif request.mimetype == "text/csv":
        content = request.get_data()
    else:
        raise ValidationError("missing CSV file")
    return jsonify(_services().csv.import_csv(current_user.user_id, content))


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def _register_error_handlers(app):

    @app.errorhandler(FambudgetError)
    def handle_domain_error(e):
        if e.status_code >= 500:
            logger.error("request_failed", path=request.path, status=e.status_code, error=e.message)
        else:
            logger.info("request_rejected", path=request.path, status=e.status_code, error=e.message)
        return jsonify({"success": False, "message": e.message}), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({"success": False, "message": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        logger.exception("unhandled_error", path=request.path)
        return jsonify({"success": False, "message": "internal server error"}), 500


def create_app(config=None, services=None):
    """
    Build the Flask application.

    `services` defaults to build_services(config); tests pass their own.
    """
    config = config or Config.from_env()
    configure_logging(config)
    services = services or build_services(config)

    app = Flask(__name__)
    app.json = CustomJSONProvider(app)
    app.config["SECRET_KEY"] = config.secret_key
    app.config["TESTING"] = config.testing

    # Enable CORS for the web client (cookies included)
    CORS(app, supports_credentials=True)

    sessions = SessionController(app, services.auth, {
        "SESSION_COOKIE_SAMESITE": "None" if config.session_cookie_secure else "Lax",
        "SESSION_COOKIE_SECURE": config.session_cookie_secure,
        "SESSION_COOKIE_HTTPONLY": True,
    })

    app.extensions["fambudget"] = services
    app.extensions["fambudget_sessions"] = sessions
    app.register_blueprint(api)
    _register_error_handlers(app)

    logger.info("app_created", db_path=str(config.db_path), pool_size=config.pool_size)
    return app
