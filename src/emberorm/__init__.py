"""
emberorm public package initialization.

Exposes the model layer, the session (entity manager) and the error types
most applications need.
"""

from .core.model import Model, ModelConfigurationError  # noqa: F401
from .core.fields import (
    AutoField,
    BooleanField,
    DateTimeField,
    FloatField,
    IntegerField,
    JSONField,
    StringField,
    VersionField,
)  # noqa: F401
from .core.relations import ForeignKey, ManyToManyField, OneToMany, OneToOneField  # noqa: F401
from .hooks import hooks  # noqa: F401
from .persistence import (  # noqa: F401
    CommitOrderError,
    ConflictError,
    ConstraintViolationError,
    EntityNotFoundError,
    EntityState,
    InvalidStateError,
    OptimisticLockError,
    Repository,
    Session,
)
from .schema import SchemaBuilder  # noqa: F401

__all__ = [
    "Model",
    "AutoField",
    "BooleanField",
    "DateTimeField",
    "FloatField",
    "IntegerField",
    "JSONField",
    "StringField",
    "VersionField",
    "ForeignKey",
    "OneToOneField",
    "OneToMany",
    "ManyToManyField",
    "ModelConfigurationError",
    "Session",
    "Repository",
    "EntityState",
    "CommitOrderError",
    "ConflictError",
    "ConstraintViolationError",
    "EntityNotFoundError",
    "InvalidStateError",
    "OptimisticLockError",
    "SchemaBuilder",
    "hooks",
]
