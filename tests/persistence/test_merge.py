import pytest

from emberorm.adapters import ConnectionConfig, SQLiteAdapter
from emberorm.core import ForeignKey, IntegerField, Model, OneToMany, StringField
from emberorm.persistence import (
    EntityNotFoundError,
    EntityState,
    InvalidStateError,
    Session,
    is_proxy,
)
from emberorm.schema import SchemaBuilder


class Region(Model):
    name = StringField(nullable=False)


class Store(Model):
    name = StringField(nullable=False)
    region = ForeignKey(Region, nullable=True)
    shelves = OneToMany("Shelf", mapped_by="store", cascade=("persist", "merge"))


class Shelf(Model):
    label = StringField(nullable=False)
    capacity = IntegerField(default=10)
    store = ForeignKey(Store)


class Coupon(Model):
    code = StringField(primary_key=True)
    percent = IntegerField(default=5)


def make_session(tmp_path):
    adapter = SQLiteAdapter()
    config = ConnectionConfig(url=f"sqlite:///{tmp_path / 'merge.db'}")
    session = Session(adapter, connection_config=config)
    SchemaBuilder(session.dialect).create_all(session, [Region, Store, Shelf, Coupon])
    return session


def seed_store(session):
    region = Region(name="North")
    store = Store(name="Main", region=region)
    store.shelves.append(Shelf(label="A", store=store))
    session.persist(region)
    session.persist(store)
    session.flush()
    return store


def test_merge_copies_state_into_managed_instance(tmp_path):
    session = make_session(tmp_path)
    store = seed_store(session)
    session.detach(store)

    managed = session.find(Store, store.id)
    store.name = "Renamed"
    merged = session.merge(store)

    assert merged is managed
    assert merged is not store
    assert merged.name == "Renamed"
    assert session.get_entity_state(store) is EntityState.DETACHED
    session.flush()
    row = session.execute('SELECT name FROM "store" WHERE id = ?', (store.id,)).fetchone()
    assert row["name"] == "Renamed"
    session.close()


def test_merge_loads_counterpart_when_not_tracked(tmp_path):
    session = make_session(tmp_path)
    store = seed_store(session)
    session.clear()

    store.name = "Offline edit"
    merged = session.merge(store)
    assert merged is not store
    assert session.contains(merged)
    assert merged.name == "Offline edit"
    assert session.unit_of_work.get_changeset(merged).fields()[0].name == "name"
    session.close()


def test_merge_of_managed_entity_returns_it(tmp_path):
    session = make_session(tmp_path)
    store = seed_store(session)
    assert session.merge(store) is store
    session.close()


def test_merge_of_new_entity_schedules_insert_of_a_copy(tmp_path):
    session = make_session(tmp_path)
    fresh = Region(name="South")
    merged = session.merge(fresh)

    assert merged is not fresh
    assert session.get_entity_state(fresh) is EntityState.NEW
    assert session.unit_of_work.is_scheduled_for_insert(merged)
    session.flush()
    assert merged.id is not None
    assert fresh.id is None
    session.close()


def test_merge_of_unknown_assigned_key_inserts(tmp_path):
    session = make_session(tmp_path)
    coupon = Coupon(code="SPRING", percent=15)
    merged = session.merge(coupon)
    session.flush()

    assert session.find(Coupon, "SPRING") is merged
    assert merged.percent == 15
    session.close()


def test_merge_of_deleted_row_with_generated_key_fails(tmp_path):
    session = make_session(tmp_path)
    store = seed_store(session)
    session.clear()
    session.execute('DELETE FROM "shelf"')
    session.execute('DELETE FROM "store"')

    with pytest.raises(EntityNotFoundError):
        session.merge(store)
    session.close()


def test_merge_cascades_and_repoints_associations(tmp_path):
    session = make_session(tmp_path)
    store = seed_store(session)
    shelf = store.shelves[0]
    session.clear()

    shelf.capacity = 50
    store.shelves.append(Shelf(label="B", store=store))
    merged = session.merge(store)

    merged_shelves = list(merged.shelves)
    assert [item.label for item in merged_shelves] == ["A", "B"]
    assert merged_shelves[0] is not shelf
    assert merged_shelves[0].capacity == 50
    assert all(item.store is merged for item in merged_shelves)
    assert is_proxy(merged.region) or session.contains(merged.region)
    assert merged.region is not store.region

    session.flush()
    rows = session.execute('SELECT label, capacity FROM "shelf" ORDER BY label').fetchall()
    assert [(row["label"], row["capacity"]) for row in rows] == [("A", 50), ("B", 10)]
    session.close()


def test_merge_of_removed_entity_fails(tmp_path):
    session = make_session(tmp_path)
    store = seed_store(session)
    duplicate = store.clone()
    session.remove(store)

    with pytest.raises(InvalidStateError):
        session.merge(store)
    with pytest.raises(InvalidStateError):
        session.merge(duplicate)
    session.close()
