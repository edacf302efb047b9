"""
Database Infrastructure for RescueLink

Provides SQLite database management, connection pooling, migrations,
and transaction management for the SOS coordination services.
"""

import sqlite3
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass
from datetime import datetime


@dataclass
class Migration:
    """Database migration definition"""
    version: int
    name: str
    sql: str
    rollback_sql: Optional[str] = None


class DatabaseError(Exception):
    """Database-related errors"""
    pass


class IntegrityViolation(DatabaseError):
    """A write was rejected by a uniqueness or foreign key constraint"""
    pass


class ConnectionPool:
    """Simple SQLite connection pool"""

    def __init__(self, database_path: str, max_connections: int = 10,
                 acquire_timeout: float = 30.0):
        self.database_path = database_path
        self.max_connections = max_connections
        self.acquire_timeout = acquire_timeout
        self.connections = []
        self.in_use = set()
        self.lock = threading.Lock()
        self.available = threading.Condition(self.lock)
        self.logger = logging.getLogger(__name__)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.database_path,
            check_same_thread=False,
            timeout=30.0
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection from the pool, waiting until one is free"""
        with self.available:
            while True:
                # Try to reuse an existing connection
                for conn in self.connections:
                    if conn not in self.in_use:
                        self.in_use.add(conn)
                        return conn

                # Create new connection if under limit
                if len(self.connections) < self.max_connections:
                    conn = self._connect()
                    self.connections.append(conn)
                    self.in_use.add(conn)
                    return conn

                if not self.available.wait(timeout=self.acquire_timeout):
                    raise DatabaseError("Connection pool exhausted")

    def return_connection(self, conn: sqlite3.Connection):
        """Return a connection to the pool"""
        with self.available:
            if conn in self.in_use:
                self.in_use.remove(conn)
                self.available.notify()

    def close_all(self):
        """Close all connections in the pool"""
        with self.available:
            for conn in self.connections:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    self.logger.warning(f"Error closing connection: {e}")
            self.connections.clear()
            self.in_use.clear()


class DatabaseManager:
    """
    Manages SQLite database operations, migrations, and connection pooling
    """

    def __init__(self, database_path: str, max_connections: int = 10):
        self.database_path = Path(database_path)
        self.pool = ConnectionPool(str(self.database_path), max_connections)
        self.logger = logging.getLogger(__name__)
        self.migrations = self._get_migrations()

        # Ensure database directory exists
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

        # Initialize database
        self._initialize_database()

    @contextmanager
    def get_connection(self):
        """Context manager for database connections"""
        conn = None
        try:
            conn = self.pool.get_connection()
            yield conn
        except Exception:
            if conn:
                conn.rollback()
            raise
        finally:
            if conn:
                self.pool.return_connection(conn)

    @contextmanager
    def transaction(self, immediate: bool = False):
        """
        Context manager for database transactions

        With ``immediate`` the write lock is taken up front, so concurrent
        writers are serialized before they read anything.
        """
        with self.get_connection() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
                yield conn
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise IntegrityViolation(str(e)) from e
            except sqlite3.Error as e:
                conn.rollback()
                self.logger.error(f"Transaction failed: {e}")
                raise DatabaseError(f"Transaction failed: {e}") from e
            except Exception:
                conn.rollback()
                raise

    def _initialize_database(self):
        """Initialize database with schema and migrations"""
        self.logger.info(f"Initializing database at {self.database_path}")

        # Create migrations table if it doesn't exist
        with self.get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS migrations (
                    version INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()

        # Run migrations
        self._run_migrations()

    def _get_migrations(self) -> List[Migration]:
        """Get all database migrations"""
        return [
            Migration(
                version=1,
                name="initial_schema",
                sql="""
                -- Civilian responder profiles
                CREATE TABLE civilian_responders (
                    id TEXT PRIMARY KEY,
                    full_name TEXT NOT NULL,
                    phone TEXT,
                    verification_status TEXT NOT NULL DEFAULT 'pending',
                    available BOOLEAN DEFAULT TRUE,
                    location_lat REAL,
                    location_lng REAL,
                    location_updated_at DATETIME,
                    availability_radius_km REAL DEFAULT 5,
                    certifications TEXT, -- JSON array
                    allowed_levels TEXT, -- JSON array
                    total_responses INTEGER DEFAULT 0,
                    successful_responses INTEGER DEFAULT 0,
                    failed_responses INTEGER DEFAULT 0,
                    rating REAL DEFAULT 0,
                    total_ratings INTEGER DEFAULT 0,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                );

                -- SOS signals raised by victims
                CREATE TABLE sos_signals (
                    id TEXT PRIMARY KEY,
                    reporter_id TEXT NOT NULL,
                    location_lat REAL NOT NULL,
                    location_lng REAL NOT NULL,
                    address TEXT,
                    level INTEGER NOT NULL,
                    message TEXT,
                    priority TEXT NOT NULL,
                    emergency_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    contact_phone TEXT,
                    assigned_responder TEXT,
                    active_response_id TEXT,
                    response_time DATETIME,
                    resolution_time DATETIME,
                    escalation_level INTEGER DEFAULT 0,
                    escalated_at DATETIME,
                    status_updates TEXT, -- JSON array
                    safe_confirmed_at DATETIME,
                    safe_location_lat REAL,
                    safe_location_lng REAL,
                    transported_to_camp BOOLEAN DEFAULT FALSE,
                    relief_camp_id TEXT,
                    relief_camp_name TEXT,
                    created_at DATETIME NOT NULL,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                );

                -- Responder assignments
                CREATE TABLE sos_responses (
                    id TEXT PRIMARY KEY,
                    signal_id TEXT NOT NULL,
                    responder_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    status_history TEXT, -- JSON array
                    responder_lat REAL,
                    responder_lng REAL,
                    distance_to_victim_km REAL,
                    chat_messages TEXT, -- JSON array
                    completion TEXT, -- JSON object
                    cancellation_reason TEXT,
                    assigned_at DATETIME NOT NULL,
                    en_route_at DATETIME,
                    arrived_at DATETIME,
                    completed_at DATETIME,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (signal_id) REFERENCES sos_signals (id),
                    FOREIGN KEY (responder_id) REFERENCES civilian_responders (id)
                );

                -- At most one non-terminal response per signal
                CREATE UNIQUE INDEX idx_sos_responses_one_active
                    ON sos_responses (signal_id)
                    WHERE status NOT IN ('completed', 'cancelled');

                -- Create indexes for better performance
                CREATE INDEX idx_sos_signals_status ON sos_signals (status);
                CREATE INDEX idx_sos_signals_created ON sos_signals (created_at);
                CREATE INDEX idx_sos_responses_responder ON sos_responses (responder_id);
                CREATE INDEX idx_sos_responses_status ON sos_responses (status);
                CREATE INDEX idx_civilian_responders_status ON civilian_responders (verification_status);
                """
            ),
            Migration(
                version=2,
                name="response_feedback",
                sql="""
                -- Victim rating of the responder, one per completed response
                ALTER TABLE sos_responses ADD COLUMN victim_rating INTEGER;
                """
            )
        ]

    def _run_migrations(self):
        """Run pending database migrations"""
        with self.get_connection() as conn:
            # Get current migration version
            cursor = conn.execute("SELECT MAX(version) FROM migrations")
            result = cursor.fetchone()
            current_version = result[0] if result[0] is not None else 0

            # Run pending migrations
            for migration in self.migrations:
                if migration.version > current_version:
                    self.logger.info(f"Running migration {migration.version}: {migration.name}")

                    try:
                        # Execute migration SQL
                        conn.executescript(migration.sql)

                        # Record migration
                        conn.execute(
                            "INSERT INTO migrations (version, name) VALUES (?, ?)",
                            (migration.version, migration.name)
                        )

                        conn.commit()
                        self.logger.info(f"Migration {migration.version} completed successfully")

                    except sqlite3.Error as e:
                        conn.rollback()
                        self.logger.error(f"Migration {migration.version} failed: {e}")
                        raise DatabaseError(f"Migration failed: {e}")

    def get_schema_version(self) -> int:
        """Get the latest applied migration version"""
        rows = self.execute_query("SELECT MAX(version) FROM migrations")
        return rows[0][0] if rows and rows[0][0] is not None else 0

    def backup_database(self, backup_path: Optional[str] = None) -> str:
        """Create a backup of the database"""
        if backup_path is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            backup_path = f"{self.database_path}.backup_{timestamp}"

        backup_path = Path(backup_path)
        backup_path.parent.mkdir(parents=True, exist_ok=True)

        with self.get_connection() as conn:
            with sqlite3.connect(str(backup_path)) as backup_conn:
                conn.backup(backup_conn)

        self.logger.info(f"Database backed up to {backup_path}")
        return str(backup_path)

    def execute_query(self, query: str, params: Tuple = ()) -> List[sqlite3.Row]:
        """Execute a SELECT query and return results"""
        try:
            with self.get_connection() as conn:
                cursor = conn.execute(query, params)
                return cursor.fetchall()
        except sqlite3.Error as e:
            raise DatabaseError(f"Query failed: {e}") from e

    def execute_update(self, query: str, params: Tuple = ()) -> int:
        """Execute an INSERT/UPDATE/DELETE query and return affected rows"""
        with self.transaction() as conn:
            cursor = conn.execute(query, params)
            return cursor.rowcount

    def execute_many(self, query: str, params_list: List[Tuple]) -> int:
        """Execute a query with multiple parameter sets"""
        with self.transaction() as conn:
            cursor = conn.executemany(query, params_list)
            return cursor.rowcount

    def get_stats(self) -> Dict[str, Any]:
        """Get database statistics"""
        stats = {}

        for table in ('civilian_responders', 'sos_signals', 'sos_responses'):
            rows = self.execute_query(f"SELECT COUNT(*) FROM {table}")
            stats[table] = rows[0][0] if rows else 0

        # Database file size
        if self.database_path.exists():
            stats['database_size_bytes'] = self.database_path.stat().st_size
        else:
            stats['database_size_bytes'] = 0

        return stats

    def close(self):
        """Close all database connections"""
        self.pool.close_all()


# Global database manager instance (will be initialized by the application)
db_manager: Optional[DatabaseManager] = None


def initialize_database(database_path: str, max_connections: int = 10) -> DatabaseManager:
    """Initialize the global database manager"""
    global db_manager
    db_manager = DatabaseManager(database_path, max_connections)
    return db_manager


def get_database() -> DatabaseManager:
    """Get the global database manager instance"""
    if db_manager is None:
        raise DatabaseError("Database not initialized. Call initialize_database() first.")
    return db_manager
