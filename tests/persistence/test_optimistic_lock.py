import pytest

from emberorm.adapters import ConnectionConfig, SQLiteAdapter
from emberorm.core import IntegerField, Model, StringField, VersionField
from emberorm.persistence import InvalidStateError, OptimisticLockError, Session
from emberorm.schema import SchemaBuilder


class Document(Model):
    title = StringField(nullable=False)
    revision_note = StringField(nullable=True)
    words = IntegerField(default=0)
    version = VersionField()


class Note(Model):
    text = StringField()


def make_session(path):
    adapter = SQLiteAdapter()
    config = ConnectionConfig(url=f"sqlite:///{path}")
    session = Session(adapter, connection_config=config)
    SchemaBuilder(session.dialect).create_all(session, [Document, Note])
    return session


def seed(tmp_path):
    session = make_session(tmp_path / "lock.db")
    document = Document(title="Draft")
    session.persist(document)
    session.flush()
    document_id = document.id
    session.close()
    return document_id


def test_insert_sets_version_and_updates_bump_it(tmp_path):
    session = make_session(tmp_path / "lock.db")
    document = Document(title="Draft")
    session.persist(document)
    session.flush()
    assert document.version == 1

    document.words = 10
    session.flush()
    assert document.version == 2
    row = session.execute('SELECT version FROM "document" WHERE id = ?', (document.id,)).fetchone()
    assert row["version"] == 2
    session.close()


def test_concurrent_update_raises_optimistic_lock_error(tmp_path):
    document_id = seed(tmp_path)
    first = make_session(tmp_path / "lock.db")
    second = make_session(tmp_path / "lock.db")

    mine = first.find(Document, document_id)
    theirs = second.find(Document, document_id)
    theirs.title = "Their edit"
    second.flush()

    mine.title = "My edit"
    with pytest.raises(OptimisticLockError) as excinfo:
        first.flush()
    assert excinfo.value.entity is mine
    assert excinfo.value.expected == 1
    assert excinfo.value.actual == 2
    assert mine.version == 1

    row = first.execute('SELECT title FROM "document" WHERE id = ?', (document_id,)).fetchone()
    assert row["title"] == "Their edit"
    first.close()
    second.close()


def test_concurrent_delete_raises_optimistic_lock_error(tmp_path):
    document_id = seed(tmp_path)
    first = make_session(tmp_path / "lock.db")
    second = make_session(tmp_path / "lock.db")

    mine = first.find(Document, document_id)
    theirs = second.find(Document, document_id)
    theirs.words = 99
    second.flush()

    first.remove(mine)
    with pytest.raises(OptimisticLockError):
        first.flush()
    assert first.execute('SELECT COUNT(*) FROM "document"').fetchone()[0] == 1
    first.close()
    second.close()


def test_update_of_deleted_row_raises_optimistic_lock_error(tmp_path):
    document_id = seed(tmp_path)
    first = make_session(tmp_path / "lock.db")
    mine = first.find(Document, document_id)
    first.execute('DELETE FROM "document" WHERE id = ?', (document_id,))

    mine.words = 5
    with pytest.raises(OptimisticLockError) as excinfo:
        first.flush()
    assert excinfo.value.actual is None
    first.close()


def test_find_with_lock_version(tmp_path):
    document_id = seed(tmp_path)
    session = make_session(tmp_path / "lock.db")

    assert session.find(Document, document_id, lock_version=1).title == "Draft"
    with pytest.raises(OptimisticLockError):
        session.find(Document, document_id, lock_version=3)
    session.close()


def test_lock_requires_versioned_managed_entity(tmp_path):
    session = make_session(tmp_path / "lock.db")
    note = Note(text="plain")
    with pytest.raises(InvalidStateError):
        session.lock(note, 1)
    session.persist(note)
    with pytest.raises(InvalidStateError):
        session.lock(note, 1)
    session.close()


def test_merge_of_stale_copy_raises_optimistic_lock_error(tmp_path):
    document_id = seed(tmp_path)
    session = make_session(tmp_path / "lock.db")
    stale = session.find(Document, document_id)
    session.detach(stale)

    current = session.find(Document, document_id)
    current.words = 1
    session.flush()

    stale.title = "Old edit"
    with pytest.raises(OptimisticLockError):
        session.merge(stale)
    session.close()
