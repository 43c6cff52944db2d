import pytest

from emberorm.adapters import ConnectionConfig, SQLiteAdapter
from emberorm.core import ForeignKey, ManyToManyField, Model, OneToMany, StringField
from emberorm.persistence import ConstraintViolationError, Session, is_initialized
from emberorm.schema import SchemaBuilder


class Student(Model):
    name = StringField(nullable=False)
    courses = ManyToManyField("Course", cascade="persist")


class Course(Model):
    title = StringField(nullable=False, unique=True)
    students = ManyToManyField(Student, mapped_by="courses")
    lessons = OneToMany("Lesson", mapped_by="course", fetch="eager")


class Lesson(Model):
    topic = StringField(nullable=False)
    course = ForeignKey(Course)


def make_session(tmp_path):
    adapter = SQLiteAdapter()
    config = ConnectionConfig(url=f"sqlite:///{tmp_path / 'collections.db'}")
    session = Session(adapter, connection_config=config)
    SchemaBuilder(session.dialect).create_all(session, [Student, Course, Lesson])
    return session


def join_rows(session):
    rows = session.execute('SELECT student_id, course_id FROM "student_course" ORDER BY course_id').fetchall()
    return [(row["student_id"], row["course_id"]) for row in rows]


def enrol(session):
    math = Course(title="Math")
    art = Course(title="Art")
    ada = Student(name="Ada", courses=[math, art])
    session.persist(ada)
    session.flush()
    return ada, math, art


def test_new_members_are_inserted_into_join_table(tmp_path):
    session = make_session(tmp_path)
    ada, math, art = enrol(session)

    assert join_rows(session) == [(ada.id, math.id), (ada.id, art.id)]
    assert not ada.courses.is_dirty
    session.close()


def test_membership_changes_write_only_the_diff(tmp_path):
    session = make_session(tmp_path)
    ada, math, art = enrol(session)
    music = Course(title="Music")

    ada.courses.remove(math)
    ada.courses.append(music)
    session.flush()

    assert sorted(join_rows(session)) == sorted([(ada.id, art.id), (ada.id, music.id)])
    session.close()


def test_collections_load_lazily_from_both_sides(tmp_path):
    session = make_session(tmp_path)
    ada, math, art = enrol(session)
    session.clear()

    student = session.find(Student, ada.id)
    courses = student.courses
    assert not is_initialized(courses)
    assert [course.title for course in courses] == ["Math", "Art"]
    assert is_initialized(courses)

    course = session.find(Course, math.id)
    assert course is courses[0]
    assert list(course.students) == [student]
    session.close()


def test_eager_collection_is_loaded_with_its_owner(tmp_path):
    session = make_session(tmp_path)
    ada, math, art = enrol(session)
    session.persist(Lesson(topic="Algebra", course=math))
    session.persist(Lesson(topic="Geometry", course=math))
    session.flush()
    session.clear()

    course = session.find(Course, math.id)
    assert is_initialized(course.lessons)
    assert [lesson.topic for lesson in course.lessons] == ["Algebra", "Geometry"]
    assert all(lesson.course is course for lesson in course.lessons)
    session.close()


def test_inverse_side_changes_are_not_written(tmp_path):
    session = make_session(tmp_path)
    ada, math, art = enrol(session)
    bob = Student(name="Bob")
    session.persist(bob)
    session.flush()

    math.students.append(bob)
    session.flush()
    assert (bob.id, math.id) not in join_rows(session)
    session.close()


def test_removing_an_owner_deletes_its_join_rows(tmp_path):
    session = make_session(tmp_path)
    ada, math, art = enrol(session)

    session.remove(ada)
    session.flush()
    assert join_rows(session) == []
    assert session.execute('SELECT COUNT(*) FROM "course"').fetchone()[0] == 2
    session.close()


def test_removing_a_member_entity_deletes_join_rows(tmp_path):
    session = make_session(tmp_path)
    ada, math, art = enrol(session)

    session.remove(math)
    session.flush()
    assert join_rows(session) == [(ada.id, art.id)]
    session.close()


def test_clearing_a_collection_deletes_all_its_rows(tmp_path):
    session = make_session(tmp_path)
    ada, math, art = enrol(session)

    ada.courses.clear()
    session.flush()
    assert join_rows(session) == []
    session.close()


def test_failed_flush_resyncs_collection_snapshot(tmp_path):
    session = make_session(tmp_path)
    ada, math, art = enrol(session)
    clash = Course(title="Math")

    ada.courses.remove(art)
    ada.courses.append(clash)
    with pytest.raises(ConstraintViolationError):
        session.flush()

    assert [course.title for course in ada.courses.snapshot] == ["Math", "Art"]
    assert ada.courses.delete_diff() == [art]

    clash.title = "Physics"
    session.flush()
    assert sorted(join_rows(session)) == sorted([(ada.id, math.id), (ada.id, clash.id)])
    session.close()
