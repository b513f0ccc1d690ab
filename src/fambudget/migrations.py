"""
fambudget - Database Migration Runner

Handles schema migrations for the SQLite database. Migrations are SQL files
shipped inside the package (fambudget/sql/) and applied in order.

Migration files are named: 001_description.sql, 002_description.sql, etc.

The schema_version table tracks which migrations have been applied.
"""

import re
import sqlite3
from contextlib import closing
from pathlib import Path

from .db import open_connection
from .log import get_logger

logger = get_logger(__name__)

MIGRATION_PATTERN = re.compile(r"^(\d{3})_(.+)\.sql$")


def get_migrations_path():
    """Return the path to the bundled migrations folder"""
    return Path(__file__).parent / "sql"


def get_current_version(conn):
    """
    Get the current schema version from the database.

    Returns:
        int: The highest migration version applied, or 0 if no migrations
    """
    try:
        row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] if row[0] is not None else 0
    except sqlite3.OperationalError:
        # schema_version table doesn't exist yet (fresh database)
        return 0


def get_all_migrations(migrations_path=None):
    """
    List every migration file, sorted by version.

    Returns:
        list: List of tuples (version, filepath, description)
    """
    migrations_path = Path(migrations_path or get_migrations_path())

    migrations = []
    if migrations_path.exists():
        for file in sorted(migrations_path.glob("*.sql")):
            match = MIGRATION_PATTERN.match(file.name)
            if match:
                version = int(match.group(1))
                description = match.group(2).replace("_", " ")
                migrations.append((version, file, description))

    return migrations


def apply_migration(conn, version, filepath, description):
    """
    Apply a single migration file and record it in schema_version.

    The file body and the version row go in one transaction; a failure
    rolls both back and re-raises.
    """
    sql = Path(filepath).read_text(encoding="utf-8")

    try:
        # BEGIN inside the script: executescript() commits any pending transaction first.
        conn.executescript(f"BEGIN;\n{sql}")
        conn.execute(
            "INSERT INTO schema_version (version, description) VALUES (?, ?)",
            (version, description),
        )
        conn.execute("COMMIT")
    except sqlite3.Error as e:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        logger.error("migration_failed", version=version, description=description, error=str(e))
        raise

    logger.info("migration_applied", version=version, description=description)


def run_all_pending(db_path, migrations_path=None):
    """
    Run all pending migrations.

    Returns:
        int: Number of migrations applied
    """
    with closing(open_connection(db_path)) as conn:
        current_version = get_current_version(conn)
        pending = [m for m in get_all_migrations(migrations_path) if m[0] > current_version]

        if not pending:
            logger.debug("migrations_up_to_date", version=current_version)
            return 0

        logger.info("migrations_pending", count=len(pending), current_version=current_version)

        applied = 0
        for version, filepath, description in pending:
            apply_migration(conn, version, filepath, description)
            applied += 1

        return applied


def list_migrations(db_path, migrations_path=None):
    """Return (version, description, applied) for every known migration."""
    with closing(open_connection(db_path)) as conn:
        current_version = get_current_version(conn)

    return [
        (version, description, version <= current_version)
        for version, _, description in get_all_migrations(migrations_path)
    ]
