import sqlite3
import threading

import pytest

from app import create_app
from config import TestingConfig, validate_config
from eventportal.modules.database_manager import DatabaseManager, generate_id, timestamp_now

ADMIN = {'email': 'root@example.com', 'password': 'secret1', 'full_name': 'Root'}


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(str(tmp_path / 'nested' / 'portal.db'), default_admin=ADMIN)
    yield manager
    manager.close_all_connections()


def test_initialize_applies_all_migrations(db):
    db.initialize_database()

    assert db.get_schema_version() == len(db.migrations)
    tables = {row['name'] for row in db.execute_query("SELECT name FROM sqlite_master WHERE type = 'table'")}
    assert {'users', 'events', 'participants', 'attendance', 'notification_outbox'} <= tables
    assert db.ping()


def test_initialize_is_idempotent_and_seeds_one_admin(db):
    db.initialize_database()
    db.initialize_database()

    admins = db.execute_query("SELECT email FROM users WHERE role = 'admin'")
    assert admins == [{'email': 'root@example.com'}]


def test_empty_path_rejected():
    with pytest.raises(ValueError):
        DatabaseManager('')


def test_legacy_schema_is_upgraded(db):
    with db.get_connection() as conn:
        db._migration_001_initial_schema(conn.cursor())
        conn.execute("PRAGMA user_version = 1")
        now = timestamp_now()
        event_id, participant_id = generate_id(), generate_id()
        conn.execute(
            """INSERT INTO events (id, name, slug, date, location, created_at, updated_at)
               VALUES (?, 'Legacy Meetup', 'legacy', '2024-05-01', 'Hall', ?, ?)""",
            (event_id, now, now)
        )
        for contact in ('Bob@X.com', 'bob@x.com'):
            conn.execute(
                """INSERT INTO participants (id, name, contact, phone, event_id, created_at)
                   VALUES (?, 'Bob', ?, '08000000000', ?, ?)""",
                (generate_id(), contact, event_id, now)
            )
        for _ in range(2):
            conn.execute(
                """INSERT INTO attendance (id, participant_id, event_id, checked_in_at)
                   VALUES (?, ?, ?, '2024-05-01T09:30:00')""",
                (generate_id(), participant_id, event_id)
            )
        conn.commit()

    db.initialize_database()

    event = db.execute_query("SELECT * FROM events WHERE id = ?", (event_id,), fetch_all=False)
    assert (event['start_date'], event['end_date']) == ('2024-05-01', '2024-05-01')
    assert 'date' not in event

    records = db.execute_query("SELECT attendance_date FROM attendance")
    assert records == [{'attendance_date': '2024-05-01'}]

    sources = db.execute_query("SELECT contact, registration_source FROM participants ORDER BY rowid")
    assert sources == [
        {'contact': 'bob@x.com', 'registration_source': 'self'},
        {'contact': 'bob@x.com', 'registration_source': 'legacy'},
    ]


def test_unique_index_blocks_duplicate_self_registration(db):
    db.initialize_database()
    now = timestamp_now()
    insert = """INSERT INTO participants (id, name, contact, phone, event_id, registration_source, created_at)
                VALUES (?, 'Bob', 'bob@x.com', ?, 'evt', ?, ?)"""

    db.execute_update(insert, (generate_id(), '08000000000', 'self', now))
    with pytest.raises(sqlite3.IntegrityError):
        db.execute_update(insert, (generate_id(), '08000000001', 'self', now))

    db.execute_update(insert, (generate_id(), '08000000000', 'staff', now))


def test_unique_index_blocks_duplicate_attendance(db):
    db.initialize_database()
    insert = """INSERT INTO attendance (id, participant_id, event_id, checked_in_at, attendance_date)
                VALUES (?, 'p', 'e', ?, '2025-01-01')"""

    db.execute_update(insert, (generate_id(), timestamp_now()))
    with pytest.raises(sqlite3.IntegrityError):
        db.execute_update(insert, (generate_id(), timestamp_now()))


def test_transaction_rolls_back(db):
    db.initialize_database()
    with pytest.raises(RuntimeError):
        with db.transaction() as conn:
            conn.execute("DELETE FROM users")
            raise RuntimeError("boom")

    assert len(db.execute_query("SELECT id FROM users")) == 1


def test_missing_database_url_fails_startup():
    with pytest.raises(RuntimeError, match='DATABASE_URL'):
        create_app('testing', DATABASE_URL=None)


def test_validate_config_reports_errors():
    settings = {key: getattr(TestingConfig, key) for key in dir(TestingConfig) if key.isupper()}
    settings['DATABASE_URL'] = 'portal.db'
    assert validate_config(settings) == []

    settings['NOTIFICATION_BATCH_SIZE'] = 0
    settings['QR_ENCRYPTION_KEY'] = ''
    assert len(validate_config(settings)) == 2


def test_in_memory_path_rejected():
    with pytest.raises(ValueError):
        DatabaseManager(':memory:')


def test_connections_reopen_after_close(db):
    db.initialize_database()
    db.close_all_connections()

    assert db.ping()
    assert db.get_schema_version() == len(db.migrations)


def test_connection_closed_from_another_thread_is_reopened(db):
    db.initialize_database()

    closer = threading.Thread(target=db.close_all_connections)
    closer.start()
    closer.join()

    assert len(db.execute_query("SELECT id FROM users")) == 1
