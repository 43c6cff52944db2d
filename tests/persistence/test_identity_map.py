import pytest

from emberorm.adapters import ConnectionConfig, SQLiteAdapter
from emberorm.core import IntegerField, Model, StringField
from emberorm.persistence import (
    ConflictError,
    IdentityKey,
    IdentityMap,
    Session,
)
from emberorm.schema import SchemaBuilder


class Account(Model):
    owner = StringField(nullable=False)
    balance = IntegerField(default=0)


class Ledger(Model):
    year = IntegerField(primary_key=True)
    branch = StringField(primary_key=True)
    total = IntegerField(default=0)


def make_session(tmp_path):
    adapter = SQLiteAdapter()
    config = ConnectionConfig(url=f"sqlite:///{tmp_path / 'identity.db'}")
    session = Session(adapter, connection_config=config)
    SchemaBuilder(session.dialect).create_all(session, [Account, Ledger])
    return session


def test_identity_key_normalizes_scalar_and_tuple_keys():
    assert IdentityKey.build(Account, 5) == IdentityKey.build(Account, (5,))
    assert IdentityKey.build(Account, "5") == IdentityKey(Account, (5,))
    assert IdentityKey.build(Ledger, (2024, "north")).pk == (2024, "north")


def test_identity_key_rejects_wrong_arity_and_none():
    with pytest.raises(ValueError):
        IdentityKey.build(Ledger, 2024)
    with pytest.raises(ValueError):
        IdentityKey.build(Account, None)


def test_identity_key_of_unsaved_instance_is_none():
    assert IdentityKey.of(Account(owner="a")) is None
    account = Account(owner="a")
    account.id = 3
    assert IdentityKey.of(account) == IdentityKey.build(Account, 3)


def test_register_rejects_a_second_instance_for_the_same_key():
    identity_map = IdentityMap()
    first = Account(owner="a")
    first.id = 1
    second = Account(owner="b")
    second.id = 1

    identity_map.add(first)
    identity_map.add(first)
    with pytest.raises(ConflictError) as excinfo:
        identity_map.add(second)
    assert excinfo.value.existing is first
    assert excinfo.value.incoming is second
    assert identity_map.get(Account, 1) is first
    assert len(identity_map) == 1


def test_remove_only_drops_the_registered_instance():
    identity_map = IdentityMap()
    first = Account(owner="a")
    first.id = 1
    impostor = Account(owner="b")
    impostor.id = 1
    identity_map.add(first)

    identity_map.remove(impostor)
    assert first in identity_map
    assert impostor not in identity_map

    identity_map.remove(first)
    assert identity_map.get(Account, 1) is None


def test_find_returns_same_instance_for_same_key(tmp_path):
    session = make_session(tmp_path)
    session.execute('INSERT INTO "account" (owner, balance) VALUES (?, ?)', ("Bob", 10))

    first = session.find(Account, 1)
    second = session.find(Account, "1")
    assert first is second
    assert session.get_repository(Account).find_one_by(owner="Bob") is first
    session.close()


def test_composite_keys_share_the_identity_map(tmp_path):
    session = make_session(tmp_path)
    session.execute('INSERT INTO "ledger" (year, branch, total) VALUES (?, ?, ?)', (2024, "north", 12))

    entry = session.find(Ledger, (2024, "north"))
    assert entry.total == 12
    assert session.get(Ledger, [2024, "north"]) is entry
    assert session.get(Ledger, (2024, "south")) is None
    session.close()


def test_persist_with_taken_key_raises_conflict(tmp_path):
    session = make_session(tmp_path)
    session.execute('INSERT INTO "ledger" (year, branch, total) VALUES (?, ?, ?)', (2024, "north", 12))
    session.find(Ledger, (2024, "north"))

    duplicate = Ledger(year=2024, branch="north", total=0)
    with pytest.raises(ConflictError):
        session.persist(duplicate)
    assert not session.contains(duplicate)
    session.close()
