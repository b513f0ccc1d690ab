"""
fambudget - Command Line Interface

Usage:
    fambudget init-db [--reset]
    fambudget migrate [--list]
    fambudget seed [--months N] [--seed S]
    fambudget generate-recurring --user ID [--until YYYY-MM-DD]
    fambudget recalculate-balances [--user ID]
    fambudget serve [--host H] [--port P] [--debug]

Settings come from the environment / .env (see config.py); --db overrides
FAMBUDGET_DB_PATH for a single run.
"""

import argparse
import json
import sys
from dataclasses import replace
from datetime import date

from .config import Config
from .errors import FambudgetError
from .log import configure_logging, get_logger

logger = get_logger(__name__)


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def cmd_init_db(config, args):
    from .schema import initialize_database, reset_database, verify_schema

    if args.reset:
        applied = reset_database(config.db_path)
    else:
        applied = initialize_database(config.db_path)
    missing = verify_schema(config.db_path)
    if missing:
        print(f"[ERROR] Missing tables: {', '.join(missing)}")
        return 1
    print(f"[OK] Database ready at {config.db_path} ({applied} migration(s) applied)")
    return 0


def cmd_migrate(config, args):
    from .migrations import list_migrations, run_all_pending
    from .schema import create_database

    create_database(config.db_path)
    if args.list:
        print("Migration Status:")
        print("=" * 60)
        for version, description, applied in list_migrations(config.db_path):
            status = "[APPLIED]" if applied else "[PENDING]"
            print(f"{version:03d}. {description:<40} {status}")
        return 0

    applied = run_all_pending(config.db_path)
    if applied:
        print(f"[OK] Applied {applied} migration(s) successfully!")
    else:
        print("[OK] No pending migrations.")
    return 0


def cmd_seed(config, args):
    from .container import build_services
    from .demo_data import DEMO_PASSWORD, generate_demo_data

    services = build_services(config)
    try:
        summary = generate_demo_data(services, months=args.months, seed=args.seed)
    finally:
        services.close()
    _print_json(summary)
    print(f"Demo users log in with password: {DEMO_PASSWORD}")
    return 0


def cmd_generate_recurring(config, args):
    from .container import build_services

    services = build_services(config)
    try:
        result = services.recurring.generate(args.user, args.until or date.today())
    finally:
        services.close()
    _print_json(result.to_dict())
    return 1 if result.errors else 0


def cmd_recalculate(config, args):
    from .container import build_services

    services = build_services(config)
    try:
        result = services.ledger.recalculate_balances(args.user)
    finally:
        services.close()
    _print_json(result)
    return 0


def cmd_serve(config, args):
    from .api import create_app

    app = create_app(config)
    app.run(
        host=args.host or config.server_host,
        port=args.port or config.server_port,
        debug=args.debug,
    )
    return 0


def build_parser():
    parser = argparse.ArgumentParser(prog="fambudget", description="Family budgeting backend.")
    parser.add_argument("--db", help="SQLite database file (overrides FAMBUDGET_DB_PATH).")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create the schema and apply migrations.")
    p.add_argument("--reset", action="store_true", help="Delete the database file first.")
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("migrate", help="Apply pending migrations.")
    p.add_argument("--list", action="store_true", help="Show migration status and exit.")
    p.set_defaults(func=cmd_migrate)

    p = sub.add_parser("seed", help="Generate a demo family with Faker.")
    p.add_argument("--months", type=int, default=3, help="Months of history to generate.")
    p.add_argument("--seed", type=int, help="Random seed for reproducible data.")
    p.set_defaults(func=cmd_seed)

    p = sub.add_parser("generate-recurring", help="Materialize recurring transactions.")
    p.add_argument("--user", type=int, required=True, help="User id owning the templates.")
    p.add_argument("--until", help="Cutoff date YYYY-MM-DD (default: today).")
    p.set_defaults(func=cmd_generate_recurring)

    p = sub.add_parser("recalculate-balances", help="Rewrite cached balances from the ledger.")
    p.add_argument("--user", type=int, help="Only this user's accounts.")
    p.set_defaults(func=cmd_recalculate)

    p = sub.add_parser("serve", help="Run the development server.")
    p.add_argument("--host")
    p.add_argument("--port", type=int)
    p.add_argument("--debug", action="store_true")
    p.set_defaults(func=cmd_serve)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    config = Config.from_env()
    if args.db:
        config = replace(config, db_path=args.db)
    configure_logging(config)

    try:
        return args.func(config, args)
    except FambudgetError as e:
        logger.error("command_failed", command=args.command, error=e.message)
        print(f"[ERROR] {e.message}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
