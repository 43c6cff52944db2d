"""
Core model, field and association primitives.
"""

from .collections import PersistentCollection
from .fields import (
    AutoField,
    BooleanField,
    DateTimeField,
    Field,
    FieldError,
    FloatField,
    IntegerField,
    JSONField,
    StringField,
    VersionField,
)
from .model import Model, ModelConfigurationError, ModelOptions
from .relations import (
    CASCADE_OPERATIONS,
    CollectionField,
    ForeignKey,
    ManyToManyField,
    OneToMany,
    OneToOneField,
    RelatedField,
    RelationRegistry,
    RelationshipError,
    relation_registry,
)

__all__ = [
    "AutoField",
    "BooleanField",
    "CASCADE_OPERATIONS",
    "CollectionField",
    "DateTimeField",
    "Field",
    "FieldError",
    "FloatField",
    "ForeignKey",
    "IntegerField",
    "JSONField",
    "ManyToManyField",
    "Model",
    "ModelConfigurationError",
    "ModelOptions",
    "OneToMany",
    "OneToOneField",
    "PersistentCollection",
    "RelatedField",
    "RelationRegistry",
    "RelationshipError",
    "StringField",
    "VersionField",
    "relation_registry",
]
