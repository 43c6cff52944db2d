"""
Association field implementations and the registry resolving their targets.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Tuple, Type, Union, cast

from ..utils.naming import foreign_key_column, join_table_name
from .collections import PersistentCollection
from .fields import Field

if TYPE_CHECKING:
    from .model import Model


CASCADE_OPERATIONS = ("persist", "remove", "merge", "detach", "refresh")
FETCH_MODES = ("lazy", "eager")

CascadeSpec = Union[str, Iterable[str], None]


class RelationshipError(RuntimeError):
    pass


def normalize_cascade(cascade: CascadeSpec) -> frozenset[str]:
    """
    Expand a cascade declaration into the set of operations it covers.

    ``"all"`` stands for every operation in :data:`CASCADE_OPERATIONS`.
    """
    if cascade is None:
        return frozenset()
    items = (cascade,) if isinstance(cascade, str) else tuple(cascade)
    operations: set[str] = set()
    for item in items:
        if item == "all":
            operations.update(CASCADE_OPERATIONS)
        elif item in CASCADE_OPERATIONS:
            operations.add(item)
        else:
            raise RelationshipError(
                f"Unknown cascade operation '{item}'. Expected one of {CASCADE_OPERATIONS} or 'all'."
            )
    return frozenset(operations)


class RelatedField(Field):
    """
    Base class for association metadata (an association edge).
    """

    is_relation = True
    relation_type = "many-to-one"

    def __init__(
        self,
        to: Type | str,
        *,
        cascade: CascadeSpec = None,
        fetch: str = "lazy",
        **kwargs: Any,
    ) -> None:
        if fetch not in FETCH_MODES:
            raise RelationshipError(f"Unknown fetch mode '{fetch}'. Expected one of {FETCH_MODES}.")
        super().__init__(**kwargs)
        self.to = to
        self.cascade = normalize_cascade(cascade)
        self.fetch = fetch
        self.remote_model: Optional[Type["Model"]] = to if isinstance(to, type) else None

    @property
    def is_owning(self) -> bool:
        return True

    def cascades(self, operation: str) -> bool:
        return operation in self.cascade

    def resolve_model(self, model: Type["Model"]) -> None:
        self.remote_model = model

    def require_remote_model(self) -> Type["Model"]:
        if self.remote_model is None and self.model is not None:
            self.remote_model = relation_registry.resolve(self.model, self.to)
        if self.remote_model is None:
            raise RelationshipError(
                f"Relation target '{self.to}' of '{self.model.__name__ if self.model else '?'}."
                f"{self.name}' is not resolved."
            )
        return self.remote_model


class ForeignKey(RelatedField):
    """
    Owning side of a many-to-one association.

    The attribute holds the target entity (or a lazy proxy of it); the column
    holds the target's primary key.
    """

    relation_type = "many-to-one"

    def __init__(self, to: Type | str, **kwargs: Any) -> None:
        kwargs.setdefault("nullable", False)
        kwargs.setdefault("db_type", "INTEGER")
        super().__init__(to, **kwargs)

    def bind(self, model: Type["Model"], name: str) -> None:
        if self.db_column is None:
            self.db_column = foreign_key_column(name)
        super().bind(model, name)

    def __set__(self, instance: object, value: Any) -> None:
        if value is not None:
            remote = self.require_remote_model()
            if not hasattr(value, "_meta"):
                raise TypeError(
                    f"'{self.name}' expects a model instance, got {type(value).__name__}; "
                    "use Session.get_reference() to point at a row by key."
                )
            if not isinstance(value, remote):
                raise TypeError(
                    f"'{self.name}' expects a {remote.__name__} instance, got {type(value).__name__}."
                )
        super().__set__(instance, value)

    def snapshot_value(self, value: Any) -> Any:
        return value

    def has_changed(self, old: Any, new: Any) -> bool:
        return old is not new

    def to_db(self, value: Any) -> Any:
        if value is None:
            return None
        return value.pk


class OneToOneField(ForeignKey):
    relation_type = "one-to-one"

    def __init__(self, to: Type | str, **kwargs: Any) -> None:
        kwargs.setdefault("unique", True)
        super().__init__(to, **kwargs)


class CollectionField(RelatedField):
    """
    Base class for to-many associations exposed as :class:`PersistentCollection`.
    """

    is_collection = True

    def __init__(self, to: Type | str, *, mapped_by: Optional[str] = None, **kwargs: Any) -> None:
        kwargs.pop("db_type", None)
        super().__init__(to, db_type=None, **kwargs)
        self.mapped_by = mapped_by

    @property
    def is_owning(self) -> bool:
        return self.mapped_by is None

    def contribute_to_class(self, model: Type["Model"], name: str) -> None:
        self.model = model
        self.name = name
        setattr(model, name, self)

    def __get__(self, instance: object | None, owner: type | None = None) -> Any:
        if instance is None:
            return self
        model_instance = cast("Model", instance)
        model_instance._ensure_loaded()
        name = self.require_name()
        collection = model_instance._related_cache.get(name)
        if collection is None:
            collection = PersistentCollection(model_instance, self)
            model_instance._related_cache[name] = collection
        return collection

    def __set__(self, instance: object, value: Any) -> None:
        model_instance = cast("Model", instance)
        model_instance._ensure_loaded()
        name = self.require_name()
        items = list(value or [])
        existing = model_instance._related_cache.get(name)
        if existing is value:
            return
        if existing is None:
            model_instance._related_cache[name] = PersistentCollection(model_instance, self, items)
        else:
            existing.replace(items)

    def inverse_field(self) -> RelatedField:
        remote = self.require_remote_model()
        if self.mapped_by is None:
            raise RelationshipError(f"'{self.name}' is the owning side and has no mapped_by.")
        return remote._meta.get_relation(self.mapped_by)


class OneToMany(CollectionField):
    """
    Inverse side of a :class:`ForeignKey`; never written.
    """

    relation_type = "one-to-many"

    def __init__(self, to: Type | str, *, mapped_by: str, **kwargs: Any) -> None:
        super().__init__(to, mapped_by=mapped_by, **kwargs)


class ManyToManyField(CollectionField):
    """
    Many-to-many association backed by a join table.

    The side without ``mapped_by`` owns the join table rows.
    """

    relation_type = "many-to-many"

    def __init__(
        self,
        to: Type | str,
        *,
        through: Optional[str] = None,
        mapped_by: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(to, mapped_by=mapped_by, **kwargs)
        self.through = through

    def owning_field(self) -> "ManyToManyField":
        if self.is_owning:
            return self
        return cast("ManyToManyField", self.inverse_field())

    def through_table(self) -> str:
        owning = self.owning_field()
        if owning.through:
            return owning.through
        return join_table_name(
            owning.require_model()._meta.table_name,
            owning.require_remote_model()._meta.table_name,
        )

    def left_column(self) -> str:
        """
        Join column pointing at the owning model.
        """
        owning = self.owning_field()
        return foreign_key_column(owning.require_model()._meta.table_name)

    def right_column(self) -> str:
        """
        Join column pointing at the owned (target) model.
        """
        owning = self.owning_field()
        owner_table = owning.require_model()._meta.table_name
        target_table = owning.require_remote_model()._meta.table_name
        if owner_table == target_table:
            return foreign_key_column(f"{owning.require_name()}_{target_table}")
        return foreign_key_column(target_table)

    def own_column(self) -> str:
        """
        Join column holding this side's key.
        """
        return self.left_column() if self.is_owning else self.right_column()

    def other_column(self) -> str:
        return self.right_column() if self.is_owning else self.left_column()


class RelationRegistry:
    """
    Resolves string targets (``ForeignKey("Author")``) on first use.

    A plain name prefers a model defined in the same module as the field's
    model, then a unique model with that name anywhere. ``"pkg.module.Name"``
    names one model exactly and ``"self"`` is the declaring model.
    """

    def __init__(self) -> None:
        self.models: Dict[str, List[Type["Model"]]] = {}
        self.qualified: Dict[str, Type["Model"]] = {}

    def register_model(self, model: Type["Model"]) -> None:
        self.models.setdefault(model.__name__, []).append(model)
        self.qualified[f"{model.__module__}.{model.__name__}"] = model

    def register_field(self, model: Type["Model"], field: RelatedField) -> None:
        if isinstance(field.to, type):
            field.resolve_model(field.to)
        elif field.to == "self":
            field.resolve_model(model)

    def resolve(self, model: Type["Model"], target: Type | str) -> Optional[Type["Model"]]:
        if isinstance(target, type):
            return target
        if target == "self":
            return model
        if "." in target:
            return self.qualified.get(target)
        local = self.qualified.get(f"{model.__module__}.{target}")
        if local is not None:
            return local
        candidates = self.models.get(target, [])
        if len(candidates) > 1:
            raise RelationshipError(
                f"Relation target '{target}' on '{model.__name__}' is ambiguous; "
                "use the module-qualified name."
            )
        return candidates[0] if candidates else None


relation_registry = RelationRegistry()
