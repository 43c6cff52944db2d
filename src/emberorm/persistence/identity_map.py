"""
Identity map ensuring a single in-memory instance per row.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple, Type

from ..core.model import Model
from .errors import ConflictError


def real_model(model: Type[Model]) -> Type[Model]:
    return model._real_class()


@dataclass(frozen=True)
class IdentityKey:
    """
    ``(model, primary-key tuple)``; proxies share their real class's key.
    """

    model: Type[Model]
    pk: Tuple[Any, ...]

    @classmethod
    def build(cls, model: Type[Model], pk: Any) -> "IdentityKey":
        values = tuple(pk) if isinstance(pk, (tuple, list)) else (pk,)
        fields = model._meta.primary_keys
        if len(values) != len(fields):
            raise ValueError(
                f"{model.__name__} is identified by {model._meta.identifier_names!r}; "
                f"got {len(values)} value(s)."
            )
        if any(value is None for value in values):
            raise ValueError(f"{model.__name__} identifier cannot contain None.")
        converted = tuple(field.to_python(value) for field, value in zip(fields, values))
        return cls(real_model(model), converted)

    @classmethod
    def of(cls, instance: Model) -> Optional["IdentityKey"]:
        values = instance.identifier()
        if not values or any(value is None for value in values):
            return None
        return cls(real_model(type(instance)), values)

    def __repr__(self) -> str:
        shown = self.pk[0] if len(self.pk) == 1 else self.pk
        return f"{self.model.__name__}({shown!r})"


class IdentityMap:
    """
    Stores model instances keyed by :class:`IdentityKey`.
    """

    def __init__(self) -> None:
        self._store: Dict[IdentityKey, Model] = {}

    def register(self, key: IdentityKey, instance: Model) -> None:
        existing = self._store.get(key)
        if existing is not None and existing is not instance:
            raise ConflictError(key.model, key.pk, existing, instance)
        self._store[key] = instance

    def add(self, instance: Model) -> IdentityKey:
        key = IdentityKey.of(instance)
        if key is None:
            raise ValueError(f"Cannot register {type(instance).__name__} without a primary key.")
        self.register(key, instance)
        return key

    def lookup(self, key: IdentityKey) -> Optional[Model]:
        return self._store.get(key)

    def get(self, model: Type[Model], pk: Any) -> Optional[Model]:
        return self.lookup(IdentityKey.build(model, pk))

    def forget(self, key: IdentityKey) -> None:
        self._store.pop(key, None)

    def remove(self, instance: Model) -> None:
        key = IdentityKey.of(instance)
        if key is not None and self._store.get(key) is instance:
            del self._store[key]

    def clear(self) -> None:
        self._store.clear()

    def values(self) -> List[Model]:
        return list(self._store.values())

    def items(self) -> List[Tuple[IdentityKey, Model]]:
        return list(self._store.items())

    def __contains__(self, instance: Model) -> bool:
        key = IdentityKey.of(instance)
        if key is None:
            return False
        return self._store.get(key) is instance

    def __iter__(self) -> Iterator[Model]:
        return iter(self.values())

    def __len__(self) -> int:
        return len(self._store)
