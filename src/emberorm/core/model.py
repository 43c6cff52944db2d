"""
Model base classes and metadata orchestration for emberorm.
"""

from __future__ import annotations

import copy
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type, TypeVar

from ..utils import camel_to_snake
from .fields import AutoField, Field
from .relations import CollectionField, RelatedField, relation_registry


class ModelConfigurationError(Exception):
    """Raised when a model class is misconfigured."""


@dataclass
class ModelOptions:
    """
    Mapping metadata calculated by :class:`ModelMeta`.

    This is the read-only descriptor the unit of work consumes: column
    fields, identifier fields, associations in declaration order and the
    optional version field.
    """

    model: Type["Model"]
    table_name: str = ""
    abstract: bool = False
    repository: Optional[type] = None
    fields: "OrderedDict[str, Field]" = field(default_factory=OrderedDict)
    primary_keys: List[Field] = field(default_factory=list)
    relations: "OrderedDict[str, RelatedField]" = field(default_factory=OrderedDict)
    version_field: Optional[Field] = None

    def add_field(self, field_obj: Field) -> None:
        if field_obj.name in self.fields or field_obj.name in self.relations:
            raise ModelConfigurationError(
                f"Duplicate field name '{field_obj.name}' on model '{self.model.__name__}'"
            )
        if isinstance(field_obj, CollectionField):
            self.relations[field_obj.require_name()] = field_obj
            return
        self.fields[field_obj.require_name()] = field_obj
        if isinstance(field_obj, RelatedField):
            if field_obj.primary_key:
                raise ModelConfigurationError(
                    f"Association '{field_obj.name}' on '{self.model.__name__}' cannot be part of the primary key."
                )
            self.relations[field_obj.require_name()] = field_obj
        if field_obj.primary_key:
            self.primary_keys.append(field_obj)
        if field_obj.is_version:
            if self.version_field is not None:
                raise ModelConfigurationError(
                    f"Multiple version fields defined on model '{self.model.__name__}'"
                )
            self.version_field = field_obj

    @property
    def primary_key(self) -> Optional[Field]:
        """
        The identifier field, or ``None`` for composite keys.
        """
        if len(self.primary_keys) == 1:
            return self.primary_keys[0]
        return None

    @property
    def is_identifier_generated(self) -> bool:
        return len(self.primary_keys) == 1 and self.primary_keys[0].is_generated

    @property
    def identifier_names(self) -> Tuple[str, ...]:
        return tuple(f.require_name() for f in self.primary_keys)

    def get_field(self, name: str) -> Field:
        try:
            return self.fields[name]
        except KeyError as exc:
            raise KeyError(f"Unknown field '{name}' on model '{self.model.__name__}'") from exc

    def get_fields(self) -> Iterable[Field]:
        return self.fields.values()

    def get_relation(self, name: str) -> RelatedField:
        try:
            return self.relations[name]
        except KeyError as exc:
            raise KeyError(f"Unknown association '{name}' on model '{self.model.__name__}'") from exc

    def get_relations(self) -> Iterable[RelatedField]:
        return self.relations.values()

    def get_collections(self) -> List[CollectionField]:
        return [rel for rel in self.relations.values() if isinstance(rel, CollectionField)]


TModel = TypeVar("TModel", bound="Model")


class ModelMeta(type):
    """
    Metaclass responsible for collecting fields and establishing metadata.
    """

    def __new__(mcls, name: str, bases: tuple[type, ...], attrs: Dict[str, Any]) -> "ModelMeta":
        # The base Model class and generated proxy subclasses share metadata.
        if (name == "Model" and bases == (object,)) or attrs.get("_is_proxy"):
            return super().__new__(mcls, name, bases, attrs)

        declared_fields: Dict[str, Field] = {}
        for attr_name, value in list(attrs.items()):
            if isinstance(value, Field):
                declared_fields[attr_name] = attrs.pop(attr_name)

        cls = super().__new__(mcls, name, bases, attrs)

        meta = getattr(cls, "Meta", None)
        table_name = camel_to_snake(name)
        abstract = False
        repository = None
        if meta:
            table_name = getattr(meta, "table", table_name)
            abstract = getattr(meta, "abstract", False)
            repository = getattr(meta, "repository", None)

        cls._meta = ModelOptions(
            model=cls, table_name=table_name, abstract=abstract, repository=repository
        )

        # TODO: Support inheriting fields from abstract base models.
        sorted_fields = sorted(declared_fields.items(), key=lambda item: item[1].creation_counter)
        for attr_name, field_obj in sorted_fields:
            field_obj.contribute_to_class(cls, attr_name)
            cls._meta.add_field(field_obj)
            if isinstance(field_obj, RelatedField):
                relation_registry.register_field(cls, field_obj)

        if not cls._meta.primary_keys and not cls._meta.abstract:
            if "id" in cls._meta.fields:
                raise ModelConfigurationError(
                    f"Model '{cls.__name__}' defines a field named 'id' but no primary key. "
                    "Either set primary_key=True on that field or define a different name."
                )
            auto_field = AutoField()
            auto_field.contribute_to_class(cls, "id")
            cls._meta.add_field(auto_field)
            cls._meta.fields = OrderedDict(
                sorted(
                    cls._meta.fields.items(),
                    key=lambda item: (0 if item[0] == "id" else 1, item[1].creation_counter),
                )
            )

        relation_registry.register_model(cls)
        return cls


class Model(metaclass=ModelMeta):
    """
    Base class for mapped entities.

    Instances are plain objects; persistence is handled by a
    :class:`~emberorm.persistence.Session`. ``_persisted`` is set once the
    instance has been loaded, written or detached by a session; it tells an
    untracked instance apart as NEW or DETACHED.
    """

    _meta: ModelOptions
    _is_proxy = False

    def __init__(self, **kwargs: Any) -> None:
        self._field_values: Dict[str, Any] = {}
        self._related_cache: Dict[str, Any] = {}
        self._persisted = False

        for field_obj in self._meta.get_fields():
            if field_obj.name in kwargs:
                setattr(self, field_obj.name, kwargs.pop(field_obj.name))
            elif field_obj.has_default and not field_obj.primary_key:
                default_value = field_obj.get_default()
                if default_value is not None:
                    setattr(self, field_obj.name, default_value)

        for collection in self._meta.get_collections():
            if collection.name in kwargs:
                setattr(self, collection.name, kwargs.pop(collection.name))

        if kwargs:
            unknown = ", ".join(sorted(kwargs))
            raise TypeError(f"{self.__class__.__name__} got unexpected field(s): {unknown}")

    def __repr__(self) -> str:
        field_parts = ", ".join(
            f"{name}={self._repr_value(value)}" for name, value in self._field_values.items()
        )
        return f"<{self.__class__.__name__} {field_parts}>"

    @staticmethod
    def _repr_value(value: Any) -> str:
        if isinstance(value, Model):
            return f"<{type(value).__name__} pk={value.identifier()!r}>"
        return repr(value)

    def _ensure_loaded(self) -> None:
        """
        Overridden by proxies to load their state on first access.
        """
        return None

    @property
    def pk(self) -> Any:
        names = self._meta.identifier_names
        if not names:
            raise ModelConfigurationError(
                f"Model '{self.__class__.__name__}' does not define a primary key."
            )
        if len(names) == 1:
            return getattr(self, names[0])
        return tuple(getattr(self, name) for name in names)

    def identifier(self) -> Tuple[Any, ...]:
        """
        Primary-key values as a tuple, read without triggering any loading.
        """
        return tuple(self._field_values.get(name) for name in self._meta.identifier_names)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for field_obj in self._meta.get_fields():
            value = getattr(self, field_obj.require_name())
            if isinstance(value, Model):
                value = value.pk
            data[field_obj.require_name()] = value
        return data

    # Cloning -----------------------------------------------------------
    def clone(self: TModel, *, deep: bool = False) -> TModel:
        """
        Return an unmanaged copy of this entity.

        Proxies are loaded first and the copy is always an instance of the
        real model class. Associations are shared, collections are copied
        into fresh collections. The copy keeps the identifier, so a session
        treats it as detached.
        """
        self._ensure_loaded()
        real_class = type(self)._real_class()
        duplicate = real_class.__new__(real_class)
        duplicate._field_values = {}
        duplicate._related_cache = {}
        duplicate._persisted = self._persisted
        for name, value in self._field_values.items():
            field_obj = self._meta.fields.get(name)
            if deep and field_obj is not None and not field_obj.is_relation:
                value = copy.deepcopy(value)
            duplicate._field_values[name] = value
        for name, collection in self._related_cache.items():
            setattr(duplicate, name, list(collection))
        for attr_name, value in self.__dict__.items():
            if attr_name.startswith("_") or attr_name in duplicate.__dict__:
                continue
            duplicate.__dict__[attr_name] = copy.deepcopy(value) if deep else value
        duplicate.on_clone()
        return duplicate

    def __copy__(self):
        return self.clone()

    def __deepcopy__(self, memo):
        return self.clone(deep=True)

    def on_clone(self) -> None:
        """
        Hook invoked on the copy produced by :meth:`clone`.
        """
        return None

    @classmethod
    def _real_class(cls) -> Type["Model"]:
        return cls

    @classmethod
    def register_hook(cls, event: str, handler) -> None:
        from ..hooks import hooks

        hooks.register(event, handler, model=cls)
