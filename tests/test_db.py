import sqlite3

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import QueuePool

from fambudget.db import ConnectionPool, row_to_dict
from fambudget.errors import PoolExhaustedError
from fambudget.schema import EXPECTED_TABLES, initialize_database, verify_schema


@pytest.fixture
def pool(tmp_path):
    db_path = tmp_path / "pool.db"
    initialize_database(db_path)
    pool = ConnectionPool(db_path, max_size=2, timeout=0.2)
    yield pool
    pool.close()


def count_categories(pool):
    with pool.connection() as conn:
        return conn.exec_driver_sql("SELECT COUNT(*) FROM categories").scalar()


class TestConnectionPool:

    def test_engine_uses_bounded_queue_pool(self, pool):
        assert isinstance(pool.engine.pool, QueuePool)
        assert pool.engine.pool.size() == 2

    def test_exhausted_pool_times_out(self, pool):
        with pool.connection(), pool.connection():
            with pytest.raises(PoolExhaustedError):
                with pool.connection():
                    pass

    def test_exhausted_pool_times_out_for_writers(self, pool):
        with pool.connection(), pool.connection():
            with pytest.raises(PoolExhaustedError):
                with pool.unit_of_work():
                    pass

    def test_connections_are_reused(self, pool):
        with pool.connection() as first:
            first_dbapi = first.connection.driver_connection
        with pool.connection() as second:
            assert second.connection.driver_connection is first_dbapi

    def test_closed_pool_refuses_checkout(self, pool):
        pool.close()
        with pytest.raises(PoolExhaustedError):
            with pool.connection():
                pass

    def test_foreign_keys_are_enforced(self, pool):
        with pool.connection() as conn:
            assert conn.exec_driver_sql("PRAGMA foreign_keys").scalar() == 1

    def test_rows_convert_to_dicts(self, pool):
        with pool.connection() as conn:
            row = conn.exec_driver_sql("SELECT 1 AS one, 'two' AS two").fetchone()
        assert row_to_dict(row) == {"one": 1, "two": "two"}
        assert row_to_dict(None) is None


class TestUnitOfWork:

    def test_commit(self, pool):
        with pool.unit_of_work() as conn:
            conn.exec_driver_sql("INSERT INTO categories (name, type) VALUES (?, ?)", ("Food", "expense"))
        assert count_categories(pool) == 1

    def test_rollback_on_error(self, pool):
        with pytest.raises(RuntimeError):
            with pool.unit_of_work() as conn:
                conn.exec_driver_sql("INSERT INTO categories (name, type) VALUES (?, ?)", ("Food", "expense"))
                raise RuntimeError("boom")

        assert count_categories(pool) == 0
        with pool.connection() as conn:
            assert not conn.in_transaction()

    def test_constraint_violation_rolls_back_whole_unit(self, pool):
        with pytest.raises(IntegrityError):
            with pool.unit_of_work() as conn:
                conn.exec_driver_sql("INSERT INTO categories (name, type) VALUES (?, ?)", ("Food", "expense"))
                conn.exec_driver_sql("INSERT INTO accounts (user_id, name, type) VALUES (?, ?, ?)",
                                     (999, "Orphan", "cash"))
        assert count_categories(pool) == 0

    def test_writer_takes_the_write_lock_up_front(self, pool):
        other = sqlite3.connect(str(pool.db_path), timeout=0, isolation_level=None)
        try:
            with pool.unit_of_work():
                with pytest.raises(sqlite3.OperationalError):
                    other.execute("BEGIN IMMEDIATE")
        finally:
            other.close()

    def test_readers_do_not_take_the_write_lock(self, pool):
        other = sqlite3.connect(str(pool.db_path), timeout=0, isolation_level=None)
        try:
            with pool.connection() as conn:
                conn.exec_driver_sql("SELECT COUNT(*) FROM categories").scalar()
                other.execute("BEGIN IMMEDIATE")
                other.execute("ROLLBACK")
        finally:
            other.close()

    def test_connection_returned_after_rollback(self, pool):
        for _ in range(3):
            with pytest.raises(RuntimeError):
                with pool.unit_of_work():
                    raise RuntimeError("boom")
        with pool.connection(), pool.connection():
            pass


class TestSchema:

    def test_initialized_database_has_every_table(self, tmp_path):
        db_path = tmp_path / "fresh.db"
        initialize_database(db_path)
        assert verify_schema(db_path) == []

    def test_missing_tables_are_reported(self, tmp_path):
        db_path = tmp_path / "empty.db"
        assert verify_schema(db_path) == list(EXPECTED_TABLES)
