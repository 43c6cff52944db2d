import sqlite3

import pytest

from emberorm.adapters import (
    AdapterConnectionError,
    AdapterExecutionError,
    ConnectionConfig,
    ConstraintViolationError,
    SQLiteAdapter,
)


@pytest.fixture
def adapter(tmp_path):
    adapter = SQLiteAdapter()
    config = ConnectionConfig(url=f"sqlite:///{tmp_path / 'test.db'}")
    adapter.connect(config)
    yield adapter
    adapter.close()


def test_connect_creates_database(tmp_path):
    adapter = SQLiteAdapter()
    config = ConnectionConfig(url=f"sqlite:///{tmp_path / 'connect.db'}")
    connection = adapter.connect(config)
    assert isinstance(connection, sqlite3.Connection)
    assert (tmp_path / "connect.db").exists()
    adapter.close()


def test_execute_and_last_insert_id(adapter):
    adapter.execute("CREATE TABLE example (id INTEGER PRIMARY KEY, name TEXT NOT NULL)")
    cursor = adapter.execute("INSERT INTO example (name) VALUES (?)", ("Alice",))
    inserted_id = adapter.last_insert_id(cursor, "example", "id")
    assert inserted_id == 1
    rows = adapter.execute("SELECT name FROM example WHERE id = ?", (inserted_id,)).fetchall()
    assert rows[0]["name"] == "Alice"


def test_transaction_commit_and_rollback(adapter):
    adapter.execute("CREATE TABLE item (id INTEGER PRIMARY KEY, value INTEGER)")

    adapter.begin()
    adapter.execute("INSERT INTO item (value) VALUES (?)", (10,))
    assert adapter.in_transaction
    adapter.commit()
    assert adapter.execute("SELECT COUNT(*) FROM item").fetchone()[0] == 1

    adapter.begin()
    adapter.execute("INSERT INTO item (value) VALUES (?)", (20,))
    adapter.rollback()
    assert not adapter.in_transaction
    assert adapter.execute("SELECT COUNT(*) FROM item").fetchone()[0] == 1


def test_integrity_errors_become_constraint_violations(adapter):
    adapter.execute("CREATE TABLE tag (id INTEGER PRIMARY KEY, label TEXT UNIQUE)")
    adapter.execute("INSERT INTO tag (label) VALUES (?)", ("red",))
    with pytest.raises(ConstraintViolationError) as excinfo:
        adapter.execute("INSERT INTO tag (label) VALUES (?)", ("red",))
    assert isinstance(excinfo.value.__cause__, sqlite3.IntegrityError)


def test_foreign_keys_are_enforced(adapter):
    adapter.execute("CREATE TABLE parent (id INTEGER PRIMARY KEY)")
    adapter.execute("CREATE TABLE child (id INTEGER PRIMARY KEY, parent_id INTEGER REFERENCES parent (id))")
    with pytest.raises(ConstraintViolationError):
        adapter.execute("INSERT INTO child (parent_id) VALUES (?)", (99,))


def test_foreign_keys_can_be_disabled(tmp_path):
    adapter = SQLiteAdapter()
    adapter.connect(ConnectionConfig(url=f"sqlite:///{tmp_path / 'loose.db'}", foreign_keys=False))
    adapter.execute("CREATE TABLE parent (id INTEGER PRIMARY KEY)")
    adapter.execute("CREATE TABLE child (id INTEGER PRIMARY KEY, parent_id INTEGER REFERENCES parent (id))")
    adapter.execute("INSERT INTO child (parent_id) VALUES (?)", (99,))
    adapter.close()


def test_bad_sql_raises_execution_error(adapter):
    with pytest.raises(AdapterExecutionError) as excinfo:
        adapter.execute("SELEC nothing")
    assert not isinstance(excinfo.value, ConstraintViolationError)
    assert "SELEC nothing" in str(excinfo.value)


def test_execute_requires_connection():
    adapter = SQLiteAdapter()
    with pytest.raises(AdapterConnectionError):
        adapter.execute("SELECT 1")


def test_in_memory_database():
    adapter = SQLiteAdapter()
    config = ConnectionConfig(url="sqlite:///:memory:")
    adapter.connect(config)
    adapter.execute("CREATE TABLE sample (value TEXT)")
    adapter.execute("INSERT INTO sample (value) VALUES (?)", ("hello",))
    row = adapter.execute("SELECT value FROM sample").fetchone()
    assert row[0] == "hello"
    adapter.close()
    adapter.close()
