"""
fambudget - Database Connections & Units of Work

All request-time persistence goes through one SQLAlchemy engine backed by a
bounded QueuePool of SQLite connections.

* `ConnectionPool.connection()` checks out a connection for read-only work
  (`engine.connect()`).
* `ConnectionPool.unit_of_work()` checks out a connection and wraps the block
  in one database transaction (`engine.begin()`): COMMIT when the block
  finishes, ROLLBACK when anything escapes it. The connection goes back to
  the pool on every exit path.

The pysqlite driver runs in autocommit mode (`isolation_level=None`) and the
engine's `begin` listener emits the BEGIN itself. Writers use
`BEGIN IMMEDIATE`, which takes the database write lock up front; two units
of work touching the same account therefore never interleave.

Stores talk to the connection with plain qmark SQL through
`Connection.exec_driver_sql`.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy import exc as sa_exc
from sqlalchemy.pool import QueuePool

from .errors import PoolExhaustedError
from .log import get_logger

logger = get_logger(__name__)

# Seconds SQLite waits on a locked database before raising "database is locked".
BUSY_TIMEOUT = 30.0

BEGIN_MODE_OPTION = "fambudget_begin_mode"


def row_to_dict(row):
    """Convert a result row to a dictionary for JSON serialization"""
    if row is None:
        return None
    return dict(row._mapping)


def rows_to_dicts(rows):
    """Convert a list of result rows to a list of dicts"""
    return [row_to_dict(row) for row in rows]


def open_connection(db_path):
    """
    Open a bare sqlite3 connection for schema scripts and migrations.

    Foreign keys are enforced and rows come back as sqlite3.Row so callers
    can use dictionary-style access.
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(
        str(db_path),
        timeout=BUSY_TIMEOUT,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.row_factory = sqlite3.Row
    return conn


def create_sqlite_engine(db_path, pool_size=10, pool_timeout=5.0):
    """
    Build the SQLAlchemy engine for `db_path`.

    The pool never grows past `pool_size` connections; a checkout waits up to
    `pool_timeout` seconds.
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(
        f"sqlite:///{db_path}",
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=0,
        pool_timeout=pool_timeout,
        connect_args={"timeout": BUSY_TIMEOUT, "check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Hand transaction control to the begin listener below.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        mode = conn.get_execution_options().get(BEGIN_MODE_OPTION, "DEFERRED")
        conn.exec_driver_sql(f"BEGIN {mode}")

    return engine


class ConnectionPool:
    """
    The shared engine plus the two ways of borrowing a connection from it.

    At most `max_size` connections exist at once. Checking out blocks for up
    to `timeout` seconds, then raises PoolExhaustedError.
    """

    def __init__(self, db_path, max_size=10, timeout=5.0):
        self.db_path = Path(db_path)
        self.max_size = max_size
        self.timeout = timeout
        self.engine = create_sqlite_engine(self.db_path, pool_size=max_size, pool_timeout=timeout)
        self._writer = self.engine.execution_options(**{BEGIN_MODE_OPTION: "IMMEDIATE"})
        self._closed = False

    def _connect(self, engine):
        if self._closed:
            raise PoolExhaustedError("Connection pool is closed")
        try:
            return engine.connect()
        except sa_exc.TimeoutError:
            raise PoolExhaustedError(
                f"No database connection available within {self.timeout}s "
                f"(pool size {self.max_size})"
            )

    @contextmanager
    def connection(self):
        """Check out a connection for reads; returned to the pool afterwards."""
        with self._connect(self.engine) as conn:
            yield conn

    @contextmanager
    def unit_of_work(self):
        """
        Run the block as one all-or-nothing database transaction.

        Usage:
            with pool.unit_of_work() as conn:
                conn.exec_driver_sql("INSERT ...", (...))
                conn.exec_driver_sql("UPDATE ...", (...))
        """
        with self._connect(self._writer) as conn:
            try:
                with conn.begin():
                    yield conn
            except BaseException as e:
                logger.warning(
                    "unit_of_work_rolled_back",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise

    def close(self):
        """Close pooled connections and refuse new checkouts."""
        self._closed = True
        self.engine.dispose()
