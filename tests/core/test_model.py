import copy

import pytest

from emberorm.core import (
    AutoField,
    ForeignKey,
    IntegerField,
    JSONField,
    Model,
    ModelConfigurationError,
    StringField,
    VersionField,
)


class Publisher(Model):
    name = StringField(nullable=False)


class Book(Model):
    title = StringField(nullable=False, max_length=20)
    pages = IntegerField(default=100)
    tags = JSONField(default=list)
    publisher = ForeignKey(Publisher, nullable=True)
    version = VersionField()

    class Meta:
        table = "books"


class LineItem(Model):
    order_no = IntegerField(primary_key=True)
    position = IntegerField(primary_key=True)
    sku = StringField()


class Annotated(Model):
    title = StringField()

    def on_clone(self):
        self.cloned = True


def test_model_metadata_collects_fields_in_order():
    fields = list(Book._meta.fields)
    assert fields == ["id", "title", "pages", "tags", "publisher", "version"]
    assert isinstance(Book._meta.primary_key, AutoField)
    assert Book._meta.table_name == "books"
    assert Publisher._meta.table_name == "publisher"
    assert Book._meta.version_field is Book._meta.get_field("version")
    assert list(Book._meta.relations) == ["publisher"]


def test_composite_identifier_has_no_single_primary_key():
    meta = LineItem._meta
    assert meta.primary_key is None
    assert meta.identifier_names == ("order_no", "position")
    assert not meta.is_identifier_generated
    item = LineItem(order_no=7, position=2, sku="X-1")
    assert item.identifier() == (7, 2)
    assert item.pk == (7, 2)


def test_defaults_are_applied_and_not_shared():
    first = Book(title="Dune")
    second = Book(title="Emma")
    assert first.pages == 100
    first.tags.append("sci-fi")
    assert second.tags == []
    assert first.id is None


def test_unknown_kwargs_raise_type_error():
    with pytest.raises(TypeError):
        Book(title="Dune", author="Herbert")


def test_non_nullable_field_rejects_none():
    book = Book(title="Dune")
    with pytest.raises(ValueError):
        book.title = None


def test_string_field_enforces_max_length():
    with pytest.raises(ValueError):
        Book(title="x" * 21)


def test_foreign_key_requires_model_instance_of_target():
    book = Book(title="Dune")
    with pytest.raises(TypeError):
        book.publisher = 3
    with pytest.raises(TypeError):
        book.publisher = Book(title="Other")
    publisher = Publisher(name="Chilton")
    book.publisher = publisher
    assert book.publisher is publisher
    assert Book._meta.get_field("publisher").column_name() == "publisher_id"


def test_multiple_version_fields_are_rejected():
    with pytest.raises(ModelConfigurationError):

        class Twice(Model):
            first = VersionField()
            second = VersionField()


def test_id_field_without_primary_key_is_rejected():
    with pytest.raises(ModelConfigurationError):

        class Shadowed(Model):
            id = IntegerField()


def test_foreign_key_cannot_be_primary_key():
    with pytest.raises(ModelConfigurationError):

        class KeyedByAssociation(Model):
            publisher = ForeignKey(Publisher, primary_key=True)


def test_to_dict_flattens_associations():
    publisher = Publisher(name="Chilton")
    publisher.id = 4
    book = Book(title="Dune", publisher=publisher)
    data = book.to_dict()
    assert data["publisher"] == 4
    assert data["title"] == "Dune"


def test_clone_copies_state_and_keeps_identifier():
    publisher = Publisher(name="Chilton")
    book = Book(title="Dune", tags=["classic"], publisher=publisher)
    book.id = 9
    book._persisted = True

    duplicate = book.clone()
    assert duplicate is not book
    assert type(duplicate) is Book
    assert duplicate.id == 9
    assert duplicate._persisted is True
    assert duplicate.publisher is publisher
    assert duplicate.tags is book.tags

    deep = copy.deepcopy(book)
    assert deep.tags == ["classic"]
    assert deep.tags is not book.tags
    assert deep.publisher is publisher


def test_clone_invokes_on_clone_on_the_copy():
    original = Annotated(title="a")
    duplicate = copy.copy(original)
    assert duplicate.cloned is True
    assert not hasattr(original, "cloned")


def test_repr_lists_field_values():
    book = Book(title="Dune")
    assert "title='Dune'" in repr(book)
