"""
Unit tests for the SQLite database layer
"""

import threading

import pytest

from rescuelink.core.database import (
    ConnectionPool, DatabaseError, DatabaseManager, IntegrityViolation
)


def insert_signal(conn, signal_id):
    conn.execute(
        """
        INSERT INTO sos_signals (
            id, reporter_id, location_lat, location_lng, level, priority, emergency_type, status, created_at
        )
        VALUES (?, 'victim', 6.9, 79.8, 1, 'medium', 'other', 'pending', '2024-01-01T00:00:00+00:00')
        """,
        (signal_id,)
    )


def insert_responder(conn, responder_id):
    conn.execute(
        "INSERT INTO civilian_responders (id, full_name) VALUES (?, 'Test Responder')",
        (responder_id,)
    )


def insert_response(conn, response_id, signal_id, responder_id, status="assigned"):
    conn.execute(
        """
        INSERT INTO sos_responses (id, signal_id, responder_id, status, assigned_at)
        VALUES (?, ?, ?, ?, '2024-01-01T00:00:00+00:00')
        """,
        (response_id, signal_id, responder_id, status)
    )


class TestDatabaseManager:
    """Test migrations, transactions and pooling"""

    def test_migrations_applied(self, database):
        assert database.get_schema_version() == len(database.migrations)

        tables = {row[0] for row in database.execute_query(
            "SELECT name FROM sqlite_master WHERE type = 'table'"
        )}
        assert {"sos_signals", "sos_responses", "civilian_responders"} <= tables

        columns = {row[1] for row in database.execute_query("PRAGMA table_info(sos_responses)")}
        assert "victim_rating" in columns

    def test_reopen_does_not_rerun_migrations(self, temp_dir):
        path = str(temp_dir / "reopen.db")
        DatabaseManager(path).close()

        again = DatabaseManager(path)
        try:
            rows = again.execute_query("SELECT COUNT(*) FROM migrations")
            assert rows[0][0] == len(again.migrations)
        finally:
            again.close()

    def test_one_active_response_per_signal(self, database):
        with database.transaction() as conn:
            insert_signal(conn, "s-1")
            insert_responder(conn, "r-1")
            insert_responder(conn, "r-2")
            insert_response(conn, "resp-1", "s-1", "r-1")

        with pytest.raises(IntegrityViolation):
            with database.transaction(immediate=True) as conn:
                insert_response(conn, "resp-2", "s-1", "r-2")

    def test_closed_responses_do_not_block(self, database):
        with database.transaction() as conn:
            insert_signal(conn, "s-1")
            insert_responder(conn, "r-1")
            insert_response(conn, "resp-1", "s-1", "r-1", status="cancelled")
            insert_response(conn, "resp-2", "s-1", "r-1", status="completed")
            insert_response(conn, "resp-3", "s-1", "r-1")

        assert database.get_stats()["sos_responses"] == 3

    def test_transaction_rolls_back_on_error(self, database):
        with pytest.raises(RuntimeError):
            with database.transaction() as conn:
                insert_signal(conn, "s-rollback")
                raise RuntimeError("abort")

        assert database.execute_query("SELECT * FROM sos_signals WHERE id = 's-rollback'") == []

    def test_bad_sql_raises_database_error(self, database):
        with pytest.raises(DatabaseError):
            database.execute_query("SELECT * FROM no_such_table")

        with pytest.raises(DatabaseError):
            with database.transaction() as conn:
                conn.execute("INSERT INTO no_such_table VALUES (1)")

    def test_execute_update_and_many(self, database):
        with database.transaction() as conn:
            insert_signal(conn, "s-1")

        changed = database.execute_update("UPDATE sos_signals SET message = ? WHERE id = ?", ("hi", "s-1"))
        assert changed == 1

        count = database.execute_many(
            "INSERT INTO civilian_responders (id, full_name) VALUES (?, ?)",
            [("a", "A"), ("b", "B")]
        )
        assert count == 2

    def test_backup(self, database, temp_dir):
        backup_path = database.backup_database(str(temp_dir / "backup" / "copy.db"))

        copy = DatabaseManager(backup_path)
        try:
            assert copy.get_schema_version() == database.get_schema_version()
        finally:
            copy.close()


class TestConnectionPool:
    """Test connection reuse and exhaustion"""

    def test_connection_reused(self, temp_dir):
        pool = ConnectionPool(str(temp_dir / "pool.db"), max_connections=2)
        first = pool.get_connection()
        pool.return_connection(first)

        assert pool.get_connection() is first
        pool.close_all()

    def test_exhausted_pool_times_out(self, temp_dir):
        pool = ConnectionPool(str(temp_dir / "pool.db"), max_connections=1, acquire_timeout=0.05)
        pool.get_connection()

        with pytest.raises(DatabaseError):
            pool.get_connection()
        pool.close_all()

    def test_waiter_gets_returned_connection(self, temp_dir):
        pool = ConnectionPool(str(temp_dir / "pool.db"), max_connections=1, acquire_timeout=5)
        held = pool.get_connection()
        acquired = []

        waiter = threading.Thread(target=lambda: acquired.append(pool.get_connection()))
        waiter.start()
        pool.return_connection(held)
        waiter.join(timeout=5)

        assert acquired == [held]
        pool.close_all()
