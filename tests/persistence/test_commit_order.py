import pytest

from emberorm.adapters import ConnectionConfig, SQLiteAdapter
from emberorm.core import ForeignKey, Model, StringField
from emberorm.persistence import CommitOrderCalculator, CommitOrderError, Session
from emberorm.schema import SchemaBuilder


class Department(Model):
    name = StringField(nullable=False)
    head = ForeignKey("Employee", nullable=True)


class Employee(Model):
    name = StringField(nullable=False)
    department = ForeignKey(Department)


class Chicken(Model):
    egg = ForeignKey("Egg", cascade="persist")


class Egg(Model):
    chicken = ForeignKey(Chicken, cascade="persist")


class RecordingAdapter(SQLiteAdapter):
    def __init__(self) -> None:
        super().__init__()
        self.statements = []

    def execute(self, sql, params=None):
        self.statements.append(sql)
        return super().execute(sql, params)

    def writes(self):
        return [sql for sql in self.statements if sql.split()[0] in {"INSERT", "UPDATE", "DELETE"}]


def make_session(tmp_path, adapter=None):
    adapter = adapter or SQLiteAdapter()
    config = ConnectionConfig(url=f"sqlite:///{tmp_path / 'order.db'}")
    session = Session(adapter, connection_config=config)
    SchemaBuilder(session.dialect).create_all(session, [Department, Employee, Chicken, Egg])
    return session


def test_calculator_orders_targets_before_holders():
    sales = Department(name="Sales")
    ann = Employee(name="Ann", department=sales)
    calculator = CommitOrderCalculator()
    calculator.add_node(ann)
    calculator.add_node(sales)
    calculator.add_dependency(sales, ann, Employee._meta.get_relation("department"), holder=ann)

    order = calculator.sort()
    assert order.entities == [sales, ann]
    assert order.broken == []


def test_calculator_keeps_insertion_order_for_independent_entities():
    departments = [Department(name=str(index)) for index in range(5)]
    calculator = CommitOrderCalculator()
    for department in departments:
        calculator.add_node(department)
    assert calculator.sort().entities == departments


def test_calculator_breaks_nullable_edge_on_cycle():
    sales = Department(name="Sales")
    ann = Employee(name="Ann", department=sales)
    sales.head = ann
    calculator = CommitOrderCalculator()
    calculator.add_node(sales)
    calculator.add_node(ann)
    calculator.add_dependency(sales, ann, Employee._meta.get_relation("department"), holder=ann)
    calculator.add_dependency(ann, sales, Department._meta.get_relation("head"), holder=sales)

    order = calculator.sort()
    assert order.entities == [sales, ann]
    assert len(order.broken) == 1
    assert order.broken[0].holder is sales
    assert order.broken[0].field.name == "head"


def test_calculator_rejects_non_nullable_cycle():
    hen = Chicken()
    egg = Egg(chicken=hen)
    hen.egg = egg
    calculator = CommitOrderCalculator()
    calculator.add_node(hen)
    calculator.add_node(egg)
    calculator.add_dependency(hen, egg, Egg._meta.get_relation("chicken"), holder=egg)
    calculator.add_dependency(egg, hen, Chicken._meta.get_relation("egg"), holder=hen)

    with pytest.raises(CommitOrderError) as excinfo:
        calculator.sort()
    assert set(map(id, excinfo.value.entities)) == {id(hen), id(egg)}

    relaxed = calculator.sort(strict=False)
    assert relaxed.entities == [hen, egg]


def test_mutual_non_nullable_references_fail_before_any_write(tmp_path):
    adapter = RecordingAdapter()
    session = make_session(tmp_path, adapter)
    hen = Chicken()
    egg = Egg(chicken=hen)
    hen.egg = egg
    session.persist(hen)
    adapter.statements.clear()

    with pytest.raises(CommitOrderError):
        session.flush()
    assert adapter.writes() == []
    assert session.unit_of_work.is_scheduled_for_insert(hen)
    session.close()


def test_nullable_cycle_inserts_null_then_updates(tmp_path):
    adapter = RecordingAdapter()
    session = make_session(tmp_path, adapter)
    sales = Department(name="Sales")
    ann = Employee(name="Ann", department=sales)
    sales.head = ann
    session.persist(sales)
    session.persist(ann)
    adapter.statements.clear()
    session.flush()

    writes = adapter.writes()
    assert writes[0].startswith('INSERT INTO "department"')
    assert writes[1].startswith('INSERT INTO "employee"')
    assert writes[2].startswith('UPDATE "department" SET "head_id"')
    row = session.execute('SELECT head_id FROM "department" WHERE id = ?', (sales.id,)).fetchone()
    assert row["head_id"] == ann.id

    adapter.statements.clear()
    session.flush()
    assert adapter.writes() == []
    session.close()


def test_dependents_are_inserted_first_regardless_of_persist_order(tmp_path):
    session = make_session(tmp_path)
    sales = Department(name="Sales")
    ann = Employee(name="Ann", department=sales)
    session.persist(ann)
    session.persist(sales)
    session.flush()

    row = session.execute('SELECT department_id FROM "employee" WHERE id = ?', (ann.id,)).fetchone()
    assert row["department_id"] == sales.id
    session.close()


def test_deletions_run_holders_first(tmp_path):
    adapter = RecordingAdapter()
    session = make_session(tmp_path, adapter)
    sales = Department(name="Sales")
    ann = Employee(name="Ann", department=sales)
    session.persist(sales)
    session.persist(ann)
    session.flush()

    session.remove(sales)
    session.remove(ann)
    adapter.statements.clear()
    session.flush()

    writes = adapter.writes()
    assert writes[0].startswith('DELETE FROM "employee"')
    assert writes[1].startswith('DELETE FROM "department"')
    session.close()


def test_deleting_a_nullable_cycle_nulls_the_reference_first(tmp_path):
    adapter = RecordingAdapter()
    session = make_session(tmp_path, adapter)
    sales = Department(name="Sales")
    ann = Employee(name="Ann", department=sales)
    sales.head = ann
    session.persist(sales)
    session.persist(ann)
    session.flush()

    session.remove(sales)
    session.remove(ann)
    adapter.statements.clear()
    session.flush()

    writes = adapter.writes()
    assert writes[0].startswith('UPDATE "department" SET "head_id"')
    assert session.execute('SELECT COUNT(*) FROM "department"').fetchone()[0] == 0
    assert session.execute('SELECT COUNT(*) FROM "employee"').fetchone()[0] == 0
    session.close()
