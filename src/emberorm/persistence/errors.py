"""
Error taxonomy raised by the unit of work.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Type

from ..adapters.base import ConstraintViolationError


class PersistenceError(RuntimeError):
    """Base class for unit-of-work failures."""


class ConflictError(PersistenceError):
    """A different live instance is already registered under the identity key."""

    def __init__(self, model: Type[Any], key: tuple, existing: Any, incoming: Any) -> None:
        super().__init__(
            f"Identity map already holds another {model.__name__} instance for key {key!r}."
        )
        self.model = model
        self.key = key
        self.existing = existing
        self.incoming = incoming


class InvalidStateError(PersistenceError):
    """The requested operation is illegal for the entity's lifecycle state."""


class EntityNotFoundError(PersistenceError):
    """No row exists for the requested identity key."""

    def __init__(self, model: Type[Any], key: tuple) -> None:
        shown = key[0] if len(key) == 1 else key
        super().__init__(f"{model.__name__} with identifier {shown!r} was not found.")
        self.model = model
        self.key = key


class CommitOrderError(PersistenceError):
    """
    New entities reference each other only through non-nullable foreign keys.
    """

    def __init__(self, entities: Iterable[Any]) -> None:
        self.entities = list(entities)
        names = ", ".join(sorted({type(entity).__name__ for entity in self.entities}))
        super().__init__(
            f"Cannot order inserts: non-nullable foreign keys form a cycle between {names}."
        )


class OptimisticLockError(PersistenceError):
    """A version check failed; the row was changed or removed concurrently."""

    def __init__(
        self,
        entity: Any,
        *,
        expected: Optional[int] = None,
        actual: Optional[int] = None,
        message: Optional[str] = None,
    ) -> None:
        if message is None:
            message = (
                f"{type(entity).__name__} {entity.identifier()!r} was modified concurrently "
                f"(expected version {expected!r}, found {actual!r})."
            )
        super().__init__(message)
        self.entity = entity
        self.expected = expected
        self.actual = actual


__all__ = [
    "CommitOrderError",
    "ConflictError",
    "ConstraintViolationError",
    "EntityNotFoundError",
    "InvalidStateError",
    "OptimisticLockError",
    "PersistenceError",
]
