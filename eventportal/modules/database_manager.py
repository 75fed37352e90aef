"""
Database Manager Module - Event Attendance Portal

This module handles all database operations for the portal. It owns the
SQLite connection lifecycle, applies the versioned schema migrations once at
startup and exposes small query helpers used by the other managers.

Features:
- Explicit startup (initialize_database) and shutdown (close_all_connections)
- Versioned schema migrations tracked with PRAGMA user_version
- Unique indexes backing the registration and attendance invariants
- Default admin bootstrap
- Transaction support
"""

import sqlite3
import logging
import os
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from werkzeug.security import generate_password_hash


def generate_id():
    """Return a new 32 character hex identifier."""
    return uuid.uuid4().hex


def timestamp_now():
    """Return the current local time as an ISO 8601 string."""
    return datetime.now().isoformat(timespec='seconds')


class DatabaseManager:
    """
    Data-access object for the portal's SQLite database.
    Constructed by the application factory, initialized once at startup and
    closed on shutdown.
    """

    def __init__(self, db_path, default_admin=None):
        """
        Initialize the database manager with the specified database path.

        Args:
            db_path (str): Path to the SQLite database file
            default_admin (dict): Bootstrap admin (email, password, full_name)
        """
        if not db_path:
            raise ValueError("A database path is required")
        if str(db_path) == ':memory:':
            raise ValueError("In-memory databases are not supported; use a database file")

        self.db_path = str(db_path)
        self.default_admin = default_admin
        self.logger = logging.getLogger(__name__)
        self._local = threading.local()
        self._connections = []
        self._connections_lock = threading.Lock()
        self._generation = 0

        self.migrations = [
            (1, 'initial schema', self._migration_001_initial_schema),
            (2, 'multi-day events and attendance dates', self._migration_002_event_date_range),
            (3, 'contact normalization and unique indexes', self._migration_003_unique_constraints),
            (4, 'notification outbox', self._migration_004_notification_outbox),
            (5, 'event theme', self._migration_005_event_theme),
        ]

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.
        Provides thread-local connections for thread safety.

        Yields:
            sqlite3.Connection: Database connection object
        """
        if getattr(self._local, 'generation', None) != self._generation:
            db_dir = os.path.dirname(self.db_path)
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)

            connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=30.0
            )
            connection.row_factory = sqlite3.Row
            self._local.connection = connection
            self._local.generation = self._generation
            with self._connections_lock:
                self._connections.append(connection)

        try:
            yield self._local.connection
        except Exception as e:
            self._local.connection.rollback()
            if isinstance(e, sqlite3.IntegrityError):
                self.logger.warning(f"Constraint violation: {str(e)}")
            else:
                self.logger.error(f"Database operation failed: {str(e)}")
            raise

    def initialize_database(self):
        """
        Bring the schema up to date and insert the bootstrap admin.
        Idempotent: migrations already applied are skipped.
        """
        try:
            with self.get_connection() as conn:
                current_version = self.get_schema_version()

                for version, description, migration in self.migrations:
                    if version <= current_version:
                        continue

                    cursor = conn.cursor()
                    migration(cursor)
                    cursor.execute(f"PRAGMA user_version = {version}")
                    conn.commit()
                    self.logger.info(f"Applied migration {version:03d}: {description}")

                self._insert_default_data(conn.cursor())
                conn.commit()

            self.logger.info("Database initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize database: {str(e)}")
            raise

    def get_schema_version(self):
        with self.get_connection() as conn:
            return conn.execute("PRAGMA user_version").fetchone()[0]

    def _migration_001_initial_schema(self, cursor):
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id VARCHAR(32) PRIMARY KEY,
                full_name VARCHAR(100) NOT NULL,
                email VARCHAR(100) UNIQUE NOT NULL,
                password_hash VARCHAR(255) NOT NULL,
                role VARCHAR(20) DEFAULT 'user',
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)

        # Events started out as single-day with one free date column
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS events (
                id VARCHAR(32) PRIMARY KEY,
                name VARCHAR(200) NOT NULL,
                slug VARCHAR(100) UNIQUE NOT NULL,
                date VARCHAR(10),
                location VARCHAR(200) NOT NULL,
                description TEXT DEFAULT '',
                is_active BOOLEAN,
                is_internal BOOLEAN DEFAULT 0,
                department VARCHAR(100),
                position VARCHAR(100),
                assigned_staff TEXT DEFAULT '[]',
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)

        # No foreign key on event_id: deleting an event leaves its participants
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS participants (
                id VARCHAR(32) PRIMARY KEY,
                name VARCHAR(100) NOT NULL,
                organization VARCHAR(200) DEFAULT '',
                designation VARCHAR(100) DEFAULT '',
                department VARCHAR(100),
                position VARCHAR(100),
                contact VARCHAR(100) NOT NULL,
                phone VARCHAR(30) NOT NULL,
                event_id VARCHAR(32) NOT NULL,
                qr_email_sent BOOLEAN DEFAULT 0,
                onboarded_by VARCHAR(32),
                onboarding_date TIMESTAMP,
                created_at TIMESTAMP NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS attendance (
                id VARCHAR(32) PRIMARY KEY,
                participant_id VARCHAR(32) NOT NULL,
                event_id VARCHAR(32) NOT NULL,
                checked_in_at TIMESTAMP NOT NULL,
                participant_name VARCHAR(100),
                participant_organization VARCHAR(200),
                participant_position VARCHAR(100),
                checked_in_by VARCHAR(32),
                signed_by VARCHAR(100)
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_participants_event ON participants(event_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_attendance_event ON attendance(event_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_attendance_participant ON attendance(participant_id)")

    def _migration_002_event_date_range(self, cursor):
        # Rebuild instead of DROP COLUMN, which older SQLite builds lack
        cursor.execute("""
            CREATE TABLE events_new (
                id VARCHAR(32) PRIMARY KEY,
                name VARCHAR(200) NOT NULL,
                slug VARCHAR(100) UNIQUE NOT NULL,
                start_date VARCHAR(10),
                end_date VARCHAR(10),
                location VARCHAR(200) NOT NULL,
                description TEXT DEFAULT '',
                is_active BOOLEAN,
                is_internal BOOLEAN DEFAULT 0,
                department VARCHAR(100),
                position VARCHAR(100),
                assigned_staff TEXT DEFAULT '[]',
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)
        cursor.execute("""
            INSERT INTO events_new (id, name, slug, start_date, end_date, location, description,
                                    is_active, is_internal, department, position, assigned_staff,
                                    created_at, updated_at)
            SELECT id, name, slug, date, date, location, description,
                   is_active, is_internal, department, position, assigned_staff,
                   created_at, updated_at
            FROM events
        """)
        cursor.execute("DROP TABLE events")
        cursor.execute("ALTER TABLE events_new RENAME TO events")

        cursor.execute("ALTER TABLE attendance ADD COLUMN attendance_date VARCHAR(10)")
        cursor.execute("""
            UPDATE attendance SET attendance_date = substr(checked_in_at, 1, 10)
            WHERE attendance_date IS NULL
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_attendance_date ON attendance(attendance_date)")

    def _migration_003_unique_constraints(self, cursor):
        cursor.execute("UPDATE participants SET contact = lower(trim(contact))")

        # Staff-assisted registrations are exempt from the uniqueness rules
        cursor.execute("ALTER TABLE participants ADD COLUMN registration_source VARCHAR(10) DEFAULT 'self'")
        cursor.execute("UPDATE participants SET registration_source = 'staff' WHERE onboarded_by IS NOT NULL")

        # Keep the earliest row of any pre-existing duplicate group
        for column in ('contact', 'phone'):
            cursor.execute(f"""
                UPDATE participants SET registration_source = 'legacy'
                WHERE registration_source = 'self' AND rowid NOT IN (
                    SELECT MIN(rowid) FROM participants
                    WHERE registration_source = 'self'
                    GROUP BY event_id, {column}
                )
            """)
        cursor.execute("""
            DELETE FROM attendance WHERE rowid NOT IN (
                SELECT MIN(rowid) FROM attendance
                GROUP BY participant_id, event_id, attendance_date
            )
        """)

        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_participants_event_contact
            ON participants(event_id, contact) WHERE registration_source = 'self'
        """)
        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_participants_event_phone
            ON participants(event_id, phone) WHERE registration_source = 'self'
        """)
        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_attendance_participant_event_date
            ON attendance(participant_id, event_id, attendance_date)
        """)

    def _migration_004_notification_outbox(self, cursor):
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS notification_outbox (
                id VARCHAR(32) PRIMARY KEY,
                kind VARCHAR(30) NOT NULL,
                participant_id VARCHAR(32) NOT NULL,
                status VARCHAR(10) NOT NULL DEFAULT 'pending',
                attempts INTEGER NOT NULL DEFAULT 0,
                last_error TEXT,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_outbox_status ON notification_outbox(status)")

    def _migration_005_event_theme(self, cursor):
        cursor.execute("ALTER TABLE events ADD COLUMN theme VARCHAR(200) DEFAULT ''")

    def _insert_default_data(self, cursor):
        """
        Insert the bootstrap admin user when no admin exists yet.

        Args:
            cursor: Database cursor object
        """
        if not self.default_admin:
            return

        cursor.execute("SELECT COUNT(*) FROM users WHERE role = 'admin'")
        if cursor.fetchone()[0] > 0:
            return

        now = timestamp_now()
        cursor.execute("""
            INSERT INTO users (id, full_name, email, password_hash, role, created_at, updated_at)
            VALUES (?, ?, ?, ?, 'admin', ?, ?)
        """, (
            generate_id(),
            self.default_admin.get('full_name', 'System Administrator'),
            self.default_admin['email'],
            generate_password_hash(self.default_admin['password']),
            now,
            now
        ))
        self.logger.info(f"Default admin user created: {self.default_admin['email']}")

    def execute_query(self, query, params=None, fetch_all=True):
        """
        Execute a SELECT query and return results.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters
            fetch_all (bool): Whether to fetch all results or just one

        Returns:
            list or dict: Query results
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(query, params or ())

                if fetch_all:
                    return [dict(row) for row in cursor.fetchall()]

                result = cursor.fetchone()
                return dict(result) if result else None

        except Exception as e:
            self.logger.error(f"Query execution failed: {str(e)}")
            raise

    def execute_update(self, query, params=None):
        """
        Execute an INSERT, UPDATE, or DELETE query.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters

        Returns:
            int: Number of affected rows
        """
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params or ())
            conn.commit()
            return cursor.rowcount

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions with automatic rollback on error.

        Yields:
            sqlite3.Connection: Database connection within transaction
        """
        with self.get_connection() as conn:
            try:
                yield conn
                conn.commit()
            except Exception as e:
                conn.rollback()
                self.logger.error(f"Transaction rolled back: {str(e)}")
                raise

    def ping(self):
        """Return True when the database answers a trivial query."""
        with self.get_connection() as conn:
            conn.execute("SELECT 1")
        return True

    def close_all_connections(self):
        """Close every connection opened by this manager."""
        with self._connections_lock:
            connections, self._connections = self._connections, []
            # Threads holding a closed connection reconnect on next use
            self._generation += 1

        for connection in connections:
            try:
                connection.close()
            except sqlite3.Error as e:
                self.logger.error(f"Error closing connection: {str(e)}")

        self.logger.info("Database connections closed")
